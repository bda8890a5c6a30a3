import os
import pytest
import asyncio
import tempfile
import shutil
from pathlib import Path
from unittest.mock import Mock, AsyncMock

from transcodeops.api.db.database import init_db, close_db, get_db
from transcodeops.api.services.nats_service import NATSService
from transcodeops.worker.errors import CommandError, CommandInterrupted
from transcodeops.worker.ffmpeg.options import Options
from transcodeops.worker.ffmpeg.target import Target
from transcodeops.worker.rules.models import Media


class FakeCommand:
    """Stands in for FFmpegCommand. Writes its output instead of encoding."""

    def __init__(self, encoder, source_path, output_path, options):
        self.encoder = encoder
        self.source_path = source_path
        self.output_path = output_path
        self.options = options
        self.started = asyncio.Event()
        self.released = asyncio.Event()
        self.terminated = False

    async def run(self, progress_callback=None):
        self.started.set()
        for progress in self.encoder.progress:
            if progress_callback:
                progress_callback(progress)

        if self.encoder.write_partial:
            self._write_segment(b"trunc")

        if self.encoder.block and not self.terminated:
            await self.released.wait()

        if self.terminated and not self.encoder.finish_despite_terminate:
            raise CommandInterrupted("terminated", -15)
        if self.encoder.error is not None:
            raise self.encoder.error
        if self.encoder.fail:
            raise CommandError("Encoder exited with code 1: Invalid data found", 1)
        if self.encoder.write_output:
            self._write_output()

    def _write_output(self):
        output = Path(self.output_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"encoded")
        self._write_segment(b"segment")

    def _write_segment(self, content):
        if self.options.hls_segment_filename:
            index = self.options.extra_args["-start_number"]
            Path(self.options.hls_segment_filename % index).write_bytes(content)

    async def terminate(self):
        self.terminated = True
        self.released.set()

    def release(self):
        self.released.set()


class FakeEncoder:
    """Command factory recording every command it hands out"""

    def __init__(self):
        self.commands = []
        self.progress = []
        self.block = False
        self.fail = False
        self.error = None
        self.write_partial = False
        self.write_output = True
        self.finish_despite_terminate = False

    def __call__(self, source_path, output_path, options, ffmpeg_path="ffmpeg", duration=None):
        command = FakeCommand(self, source_path, output_path, options)
        self.commands.append(command)
        return command

    @property
    def calls(self):
        return len(self.commands)

    def release_all(self):
        for command in self.commands:
            command.release()


@pytest.fixture
async def test_db():
    """Create a test database."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    os.environ["DB_PATH"] = db_path

    await init_db()
    db = await get_db()

    yield db

    await close_db()
    Path(db_path).unlink(missing_ok=True)


@pytest.fixture
def mock_nats():
    """Create a mock NATS service."""
    nats = Mock(spec=NATSService)
    nats.connect = AsyncMock()
    nats.disconnect = AsyncMock()
    nats.publish_event = AsyncMock()
    nats.is_connected = True

    return nats


@pytest.fixture
def temp_media_dir():
    """Create a temporary directory with test media files."""
    temp_dir = tempfile.mkdtemp()
    media_dir = Path(temp_dir) / "media"
    media_dir.mkdir()

    (media_dir / "movie.mkv").write_text("fake video content")
    (media_dir / "episode.mp4").write_text("fake video content")

    yield media_dir

    shutil.rmtree(temp_dir)


@pytest.fixture
def output_dir():
    temp_dir = tempfile.mkdtemp(prefix="transcodeops_out_")
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def fake_encoder():
    return FakeEncoder()


@pytest.fixture
def sample_media(temp_media_dir):
    """1080p h264 movie, 23 seconds long."""
    return Media(
        id="media_123",
        source_path=str(temp_media_dir / "movie.mkv"),
        title="Big Buck Bunny",
        duration=23.0,
        width=1920,
        height=1080,
        video_codec="h264",
        container="matroska",
    )


@pytest.fixture
def sample_episode(temp_media_dir):
    return Media(
        id="media_456",
        source_path=str(temp_media_dir / "episode.mp4"),
        title="Pilot",
        duration=1800.0,
        width=1280,
        height=720,
        video_codec="vp9",
        container="mov",
        series_title="Example Show",
        season_number=1,
        episode_number=1,
    )


@pytest.fixture
def sample_target():
    return Target(
        id="target_h264",
        label="H264 1080p",
        extension="mp4",
        options=Options(video_codec="libx264", crf=23, audio_codec="aac"),
    )


@pytest.fixture
def other_target():
    return Target(
        id="target_hevc",
        label="HEVC",
        extension="mkv",
        options=Options(video_codec="libx265"),
    )


@pytest.fixture
def wait_until():
    """Poll a condition until it holds or the timeout passes."""
    async def _wait_until(condition, timeout=2.0, interval=0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)
    return _wait_until
