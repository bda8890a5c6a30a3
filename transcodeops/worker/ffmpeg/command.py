"""
Encoder invocation boundary.

FFmpegCommand runs one ffmpeg process for a source/output pair with a given
option set, streaming progress via `-progress pipe:1`. Failures surface as
CommandError; the caller decides what the failure means for its task.
"""
import os
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from transcodeops.worker.errors import CommandError, CommandInterrupted, ResourceError
from .options import Options

logger = logging.getLogger(__name__)

TERMINATE_GRACE_SEC = 5.0
STDERR_TAIL_LINES = 20


@dataclass(frozen=True)
class Progress:
    """Point-in-time snapshot of an encode. Replaced wholesale on every update."""
    fraction: Optional[float] = None          # 0.0 - 1.0, None if duration unknown
    processed_sec: float = 0.0
    speed: Optional[float] = None             # encoder speed multiplier, e.g. 1.5x
    eta_sec: Optional[float] = None
    frames: int = 0
    bitrate: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "fraction": self.fraction,
            "processed_sec": self.processed_sec,
            "speed": self.speed,
            "eta_sec": self.eta_sec,
            "frames": self.frames,
            "bitrate": self.bitrate,
        }


ProgressCallback = Callable[[Progress], None]


def parse_progress_block(fields: Dict[str, str], duration: Optional[float] = None) -> Progress:
    """Build a Progress snapshot from one block of ffmpeg `-progress` key=value pairs"""
    processed = 0.0
    if "out_time_us" in fields:
        raw, scale = fields["out_time_us"], 1_000_000
    else:
        # out_time_ms is also microseconds, ffmpeg names it badly
        raw, scale = fields.get("out_time_ms", "0"), 1_000_000
    try:
        processed = max(int(raw) / scale, 0.0)
    except ValueError:
        processed = 0.0

    speed = None
    speed_text = fields.get("speed", "").strip().rstrip("x")
    if speed_text and speed_text != "N/A":
        try:
            speed = float(speed_text)
        except ValueError:
            speed = None

    frames = 0
    try:
        frames = int(fields.get("frame", "0"))
    except ValueError:
        pass

    bitrate = fields.get("bitrate")
    if bitrate == "N/A":
        bitrate = None

    fraction = None
    eta = None
    if duration and duration > 0:
        if fields.get("progress") == "end":
            processed = max(processed, duration)
        fraction = min(processed / duration, 1.0)
        if speed:
            eta = max(duration - processed, 0.0) / speed

    return Progress(
        fraction=fraction,
        processed_sec=processed,
        speed=speed,
        eta_sec=eta,
        frames=frames,
        bitrate=bitrate,
    )


class FFmpegCommand:
    """One encoder process converting source_path to output_path"""

    def __init__(self, source_path: str, output_path: str, options: Options,
                 ffmpeg_path: str = "ffmpeg", duration: Optional[float] = None):
        self.source_path = source_path
        self.output_path = output_path
        self.options = options
        self.ffmpeg_path = ffmpeg_path
        self.duration = duration
        self.process: Optional[asyncio.subprocess.Process] = None
        self._terminated = False

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def build_args(self) -> List[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-y",
            *self.options.input_args(),
            "-i", self.source_path,
            *self.options.output_args(),
            "-progress", "pipe:1",
            "-nostats",
            self.output_path,
        ]

    async def run(self, progress_callback: Optional[ProgressCallback] = None) -> None:
        """
        Run the encoder to completion.

        Raises:
            ResourceError: output directory could not be created
            CommandInterrupted: terminate() was called before or during the run
            CommandError: the encoder could not be spawned or exited non-zero
        """
        if self._terminated:
            raise CommandInterrupted(f"{self} terminated before start")

        try:
            Path(self.output_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(f"Unable to create output directory for {self.output_path}: {e}")

        cmd = self.build_args()
        logger.debug(f"Spawning encoder: {' '.join(cmd)}")

        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise CommandError(f"Failed to spawn encoder '{self.ffmpeg_path}': {e}")

        # A terminate() that raced the spawn has nothing to signal yet
        if self._terminated:
            await self._stop_process()

        stderr_task = asyncio.create_task(self.process.stderr.read())
        await self._read_progress(progress_callback)
        returncode = await self.process.wait()
        stderr = (await stderr_task).decode("utf-8", errors="ignore")

        if returncode == 0:
            logger.debug(f"{self} exited cleanly")
            return

        tail = "\n".join(stderr.strip().splitlines()[-STDERR_TAIL_LINES:])
        if self._terminated:
            raise CommandInterrupted(f"{self} terminated (exit {returncode})", returncode, tail)
        raise CommandError(f"Encoder exited with code {returncode}: {tail}", returncode, tail)

    async def _read_progress(self, progress_callback: Optional[ProgressCallback]) -> None:
        fields: Dict[str, str] = {}
        while True:
            line = await self.process.stdout.readline()
            if not line:
                return

            text = line.decode("utf-8", errors="ignore").strip()
            if "=" not in text:
                continue
            key, _, value = text.partition("=")
            fields[key.strip()] = value.strip()

            # Each block ends with progress=continue|end
            if key == "progress":
                if progress_callback is not None:
                    try:
                        progress_callback(parse_progress_block(fields, self.duration))
                    except Exception as e:
                        logger.error(f"Progress callback for {self} failed: {e}")
                fields = {}

    async def terminate(self) -> None:
        """Ask the encoder to stop. Escalates to kill after a grace period."""
        self._terminated = True
        if self.process is None:
            return
        await self._stop_process()

    async def _stop_process(self) -> None:
        if self.process.returncode is not None:
            return
        try:
            self.process.terminate()
            await asyncio.wait_for(self.process.wait(), timeout=TERMINATE_GRACE_SEC)
        except asyncio.TimeoutError:
            logger.warning(f"{self} ignored SIGTERM, killing")
            self.process.kill()
            await self.process.wait()
        except ProcessLookupError:
            pass

    def __str__(self) -> str:
        return f"{{ffmpeg pid={self.pid} in={self.source_path} out={os.path.basename(self.output_path)}}}"
