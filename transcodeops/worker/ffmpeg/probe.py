import json
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from transcodeops.worker.errors import CommandError, NotFoundError
from transcodeops.worker.rules.models import Media

logger = logging.getLogger(__name__)


def media_from_probe(media_id: str, source_path: str, data: Dict[str, Any],
                     title: Optional[str] = None) -> Media:
    """Build a Media descriptor from ffprobe JSON output"""
    media = Media(id=media_id, source_path=source_path, title=title or Path(source_path).stem)

    fmt = data.get("format", {})
    if fmt.get("duration") not in (None, "N/A"):
        try:
            media.duration = float(fmt["duration"])
        except (TypeError, ValueError):
            logger.warning(f"Unparseable duration '{fmt.get('duration')}' for {source_path}")
    if fmt.get("format_name"):
        media.container = fmt["format_name"].split(",")[0]

    for stream in data.get("streams", []):
        if stream.get("codec_type") == "video":
            media.video_codec = stream.get("codec_name")
            media.width = stream.get("width")
            media.height = stream.get("height")
            break

    return media


async def probe_media(media_id: str, source_path: str, ffprobe_path: str = "ffprobe",
                      title: Optional[str] = None) -> Media:
    """Extract media info using ffprobe"""
    if not Path(source_path).exists():
        raise NotFoundError(f"Media source not found: {source_path}")

    cmd = [
        ffprobe_path, "-v", "quiet", "-print_format", "json",
        "-show_format", "-show_streams", source_path
    ]

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise CommandError(f"Failed to spawn ffprobe '{ffprobe_path}': {e}")

    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise CommandError(
            f"ffprobe failed for {source_path}: {stderr.decode(errors='ignore')}",
            proc.returncode,
            stderr.decode(errors="ignore"),
        )

    try:
        data = json.loads(stdout)
    except json.JSONDecodeError:
        raise CommandError(f"Failed to parse probe data for {source_path}")

    return media_from_probe(media_id, source_path, data, title)
