"""
On-demand HLS segment production.

Segments for a media item live in one directory under the temp root, named by
index. Requesting a segment that already exists launches nothing; requesting
one that is already being produced joins that production.
"""
import shutil
import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from transcodeops.worker.errors import (
    CommandError,
    SegmentNotFoundError,
    SegmentTimeoutError,
    ValidationError,
)
from transcodeops.worker.ffmpeg.options import Options
from transcodeops.worker.ffmpeg.target import Target
from transcodeops.worker.rules.models import Media
from transcodeops.worker.transcode.task import TaskStatus, TranscodeTask
from .hls import (
    SEGMENT_LENGTH,
    ensure_output_directory,
    generate_manifest,
    playlist_path,
    resolve_temp_root,
    segment_count,
    segment_options,
    segment_path,
)

logger = logging.getLogger(__name__)

DEFAULT_STREAM_TARGET = Target(
    id="hls",
    label="HLS stream",
    extension="m3u8",
    options=Options(video_codec="libx264", audio_codec="aac", pixel_format="yuv420p"),
)

Production = Tuple[TranscodeTask, asyncio.Task]


class HLSSegmenter:
    """Produces manifests and segments for streaming a media item"""

    def __init__(self, target: Optional[Target] = None, temp_root: Optional[str] = None,
                 ffmpeg_path: str = "ffmpeg", command_factory: Callable[..., Any] = None,
                 max_wait_sec: float = 30.0, poll_interval_sec: float = 1.0,
                 segment_length: int = SEGMENT_LENGTH):
        self.target = target or DEFAULT_STREAM_TARGET
        self.temp_root = temp_root
        self.ffmpeg_path = ffmpeg_path
        self.command_factory = command_factory
        self.max_wait_sec = max_wait_sec
        self.poll_interval_sec = poll_interval_sec
        self.segment_length = segment_length
        self._productions: Dict[Tuple[str, int], Production] = {}

    def _require_duration(self, media: Media) -> float:
        if not media.duration or media.duration <= 0:
            raise ValidationError(f"{media} has no known duration, cannot stream it")
        return media.duration

    def get_manifest(self, media: Media) -> str:
        return generate_manifest(self._require_duration(media), self.segment_length)

    def output_directory(self, media: Media) -> Path:
        return ensure_output_directory(media.id, self.temp_root)

    async def get_segment(self, media: Media, index: int, target: Optional[Target] = None) -> Path:
        """
        Path of segment `index`, producing it first if needed.

        Raises:
            ValidationError: index outside the media's segments
            ResourceError: the output directory could not be created
            SegmentTimeoutError: the segment did not appear within max_wait_sec
            CommandError: the encoder failed producing the segment
            SegmentNotFoundError: production ended without the segment file
        """
        count = segment_count(self._require_duration(media), self.segment_length)
        if index < 0 or index >= count:
            raise ValidationError(f"segment {index} out of range for {media} ({count} segments)")

        output_dir = self.output_directory(media)
        path = segment_path(output_dir, index)

        key = (media.id, index)
        production = self._productions.get(key)
        if production is None:
            if path.exists():
                logger.debug(f"Segment {index} of {media} already produced")
                return path
            production = self._start_production(media, index, output_dir, target or self.target)

        await self._wait_for(production, path, media, index)
        return path

    def _start_production(self, media: Media, index: int, output_dir: Path,
                          target: Target) -> Production:
        options = segment_options(target.options, output_dir, index, self.segment_length)
        kwargs = {"ffmpeg_path": self.ffmpeg_path}
        if self.command_factory is not None:
            kwargs["command_factory"] = self.command_factory

        task = TranscodeTask(media, target.with_options(options), playlist_path(output_dir, index), **kwargs)
        job = asyncio.create_task(task.run())
        key = (media.id, index)
        self._productions[key] = (task, job)
        job.add_done_callback(lambda fut: self._production_done(key, fut, task, segment_path(output_dir, index)))

        logger.info(f"Producing segment {index} of {media}")
        return task, job

    def _production_done(self, key: Tuple[str, int], fut: asyncio.Task,
                         task: TranscodeTask, path: Path) -> None:
        self._productions.pop(key, None)
        if not fut.cancelled() and fut.exception() is not None:
            logger.error(f"Segment production {key} raised: {fut.exception()}")

        # Only a completed run may leave a segment on disk
        if fut.cancelled() or task.status != TaskStatus.complete:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove partial segment {path}: {e}")

    async def _wait_for(self, production: Production, path: Path, media: Media, index: int) -> None:
        task, job = production
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_wait_sec

        while not job.done():
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise SegmentTimeoutError(
                    f"segment {index} of {media} not ready after {self.max_wait_sec}s",
                    self.max_wait_sec,
                )
            await asyncio.wait({job}, timeout=min(self.poll_interval_sec, remaining))

        if task.status == TaskStatus.complete and path.exists():
            return

        if task.status == TaskStatus.troubled:
            path.unlink(missing_ok=True)
            raise CommandError(f"segment {index} of {media} failed: {task.error}")

        raise SegmentNotFoundError(f"segment {index} of {media} was not produced ({task.status.value})")

    async def cleanup(self, media_id: str) -> None:
        """Stop productions for a media item and remove its segments"""
        jobs = [job for (m_id, _), (_, job) in list(self._productions.items()) if m_id == media_id]
        for job in jobs:
            job.cancel()
        await asyncio.gather(*jobs, return_exceptions=True)

        output_dir = resolve_temp_root(self.temp_root) / media_id
        shutil.rmtree(output_dir, ignore_errors=True)
        logger.info(f"Removed stream output for media {media_id}")

    async def shutdown(self) -> None:
        jobs = [job for _, job in self._productions.values()]
        for job in jobs:
            job.cancel()
        await asyncio.gather(*jobs, return_exceptions=True)
