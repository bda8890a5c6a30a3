"""
HLS manifest and segment option helpers.

Every segment is SEGMENT_LENGTH seconds long except the last, which carries
whatever duration remains.
"""
import os
import sys
import math
import tempfile
from pathlib import Path
from typing import Optional

from transcodeops.worker.errors import ResourceError
from transcodeops.worker.ffmpeg.options import Options, merge

SEGMENT_LENGTH = 5
SEGMENT_FILE_FORMAT = "%d.ts"
SEGMENT_EXTENSION = "ts"
PLAYLIST_EXTENSION = "m3u8"


def segment_count(duration: float, segment_length: int = SEGMENT_LENGTH) -> int:
    if not duration or duration <= 0:
        return 0
    return math.ceil(duration / segment_length)


def _format_duration(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.3f}"


def generate_manifest(duration: float, segment_length: int = SEGMENT_LENGTH) -> str:
    """VOD playlist listing every segment of a media item of the given duration"""
    lines = [
        "#EXTM3U",
        "#EXT-X-PLAYLIST-TYPE:VOD",
        "#EXT-X-VERSION:3",
        f"#EXT-X-TARGETDURATION:{segment_length}",
        "#EXT-X-MEDIA-SEQUENCE:0",
    ]

    for index in range(segment_count(duration, segment_length)):
        length = min(segment_length, duration - index * segment_length)
        lines.append(f"#EXTINF:{_format_duration(length)},")
        lines.append(SEGMENT_FILE_FORMAT % index)

    lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


def resolve_temp_root(temp_root: Optional[str] = None) -> Path:
    """
    Temp root with symlinks resolved.

    macOS hands out /var/folders/... which is a symlink into /private and
    ffmpeg refuses to follow it for segment output.
    """
    root = temp_root or tempfile.gettempdir()
    if sys.platform == "darwin" and not root.startswith("/private"):
        root = os.path.join("/private", root.lstrip("/"))
    return Path(os.path.realpath(root))


def ensure_output_directory(media_id: str, temp_root: Optional[str] = None) -> Path:
    """Stream output directory for a media item, created if missing"""
    output_dir = resolve_temp_root(temp_root) / media_id
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ResourceError(f"Unable to create segment output directory {output_dir}: {e}")
    return output_dir


def segment_path(output_dir: Path, index: int) -> Path:
    return output_dir / (SEGMENT_FILE_FORMAT % index)


def playlist_path(output_dir: Path, index: int) -> Path:
    """Playlist written by the run that produces one segment"""
    return output_dir / f"{index}.{PLAYLIST_EXTENSION}"


def segment_options(base: Options, output_dir: Path, index: int,
                    segment_length: int = SEGMENT_LENGTH) -> Options:
    """
    Options producing exactly segment `index` into output_dir.

    The run is limited to one segment length so that concurrent runs for
    different indices never write the same files.
    """
    override = Options(
        output_format="hls",
        hls_segment_filename=str(output_dir / SEGMENT_FILE_FORMAT),
        hls_segment_duration=segment_length,
        hls_playlist_type="vod",
        hls_list_size=0,
        # Segments are written under a temp name and renamed once finished
        hls_flags="temp_file",
        preset="veryfast",
        seek_time=index * segment_length,
        duration=segment_length,
        extra_args={
            "-start_number": index,
            "-segment_start_number": index,
        },
    )
    return merge(base, override)
