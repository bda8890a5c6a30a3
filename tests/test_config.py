import json
import pytest
from pydantic import ValidationError as PydanticValidationError

from transcodeops.api.services.config_service import ConfigService


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    path = tmp_path / "config" / "config.json"
    monkeypatch.setenv("CONFIG_PATH", str(path))
    for key in ("FFMPEG_PATH", "FFPROBE_PATH", "OUTPUT_PATH", "STREAM_TEMP_DIR",
                "MAX_THREAD_CONSUMPTION", "CPU_GUARD_PCT", "ENABLE_EVENTS"):
        monkeypatch.delenv(key, raising=False)
    return path


class TestConfigService:

    @pytest.mark.unit
    async def test_defaults_written_on_first_load(self, config_path):
        config = await ConfigService().load_config()

        assert config.max_thread_consumption == 8
        assert config.ffmpeg_path == "ffmpeg"
        assert json.loads(config_path.read_text())["output_path"] == "/data/transcodes"

    @pytest.mark.unit
    async def test_file_values_loaded(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text(json.dumps({"max_thread_consumption": 12, "stream_segment_wait_sec": 10}))

        service = ConfigService()
        await service.load_config()

        assert service.get("max_thread_consumption") == 12
        assert service.get("stream_segment_wait_sec") == 10
        assert service.get("missing_key", "fallback") == "fallback"

    @pytest.mark.unit
    async def test_env_overrides_file(self, config_path, monkeypatch):
        config_path.parent.mkdir(parents=True)
        config_path.write_text(json.dumps({"ffmpeg_path": "/opt/ffmpeg", "cpu_guard_pct": 70}))
        monkeypatch.setenv("FFMPEG_PATH", "/usr/local/bin/ffmpeg")
        monkeypatch.setenv("MAX_THREAD_CONSUMPTION", "16")
        monkeypatch.setenv("ENABLE_EVENTS", "false")

        config = await ConfigService().load_config()

        assert config.ffmpeg_path == "/usr/local/bin/ffmpeg"
        assert config.max_thread_consumption == 16
        assert config.enable_events is False
        assert config.cpu_guard_pct == 70

    @pytest.mark.unit
    async def test_bad_env_value_ignored(self, config_path, monkeypatch):
        monkeypatch.setenv("CPU_GUARD_PCT", "lots")

        config = await ConfigService().load_config()
        assert config.cpu_guard_pct == 85

    @pytest.mark.unit
    async def test_update_config(self, config_path):
        service = ConfigService()
        await service.load_config()

        config = await service.update_config({"max_thread_consumption": 4, "unknown": "ignored"})

        assert config.max_thread_consumption == 4
        assert "unknown" not in service.get_all()
        assert json.loads(config_path.read_text())["max_thread_consumption"] == 4

    @pytest.mark.unit
    async def test_update_config_validates(self, config_path):
        service = ConfigService()
        await service.load_config()

        with pytest.raises(PydanticValidationError):
            await service.update_config({"max_thread_consumption": 0})
        assert service.get("max_thread_consumption") == 8


class TestLogging:

    @pytest.mark.unit
    def test_setup_logging_writes_files(self, tmp_path):
        import logging
        from transcodeops.api.utils.logging_config import setup_logging

        paths = setup_logging("test", log_dir=str(tmp_path))
        logging.getLogger("transcodeops.worker.transcode.task").info("task moved to working")
        logging.getLogger("transcodeops.api.main").error("request failed")
        for handler in logging.getLogger().handlers + logging.getLogger("transcodeops.worker.transcode").handlers:
            handler.flush()

        assert "task moved to working" in paths["transcodes"].read_text()
        assert "task moved to working" in paths["main"].read_text()
        assert "request failed" in paths["errors"].read_text()
        assert "request failed" not in paths["transcodes"].read_text()


class TestEventPublishing:

    @pytest.mark.unit
    async def test_publish_goes_to_instance_subject(self):
        from unittest.mock import AsyncMock, Mock
        from transcodeops.api.services.nats_service import NATSService

        service = NATSService("Studio A")
        service.nc = Mock(is_closed=False)
        service.nc.publish = AsyncMock()
        service._connected = True

        await service.publish_event("transcode.complete", {"id": "task_1"})

        subject, payload = service.nc.publish.await_args.args
        assert subject == "transcodeops.studio-a.transcode.complete"
        message = json.loads(payload)
        assert message["instance"] == "studio-a"
        assert message["data"] == {"id": "task_1"}
        assert service.published == 1

    @pytest.mark.unit
    async def test_publish_skipped_while_disconnected(self):
        from transcodeops.api.services.nats_service import NATSService

        service = NATSService()
        await service.publish_event("transcode.created", {})
        assert service.published == 0
        assert not service.is_connected
