import time
import pytest
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.testclient import TestClient

from transcodeops.api.db.database import close_db, get_db
from transcodeops.api.routers import catalog, health, stream, transcodes
from transcodeops.api.routers import config as config_router
from transcodeops.api.services.catalog_service import CatalogService
from transcodeops.api.services.config_service import ConfigService
from transcodeops.api.services.transcode_store import TranscodeStore
from transcodeops.worker.stream.segmenter import HLSSegmenter
from transcodeops.worker.transcode.scheduler import TaskScheduler


@pytest.fixture
def app(output_dir, tmp_path, monkeypatch, fake_encoder, sample_media, sample_target):
    monkeypatch.setenv("DB_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "config.json"))
    catalog_service = CatalogService()
    catalog_service.add_media(sample_media)
    catalog_service.add_target(sample_target)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config_service = ConfigService()
        await config_service.load_config()
        store = TranscodeStore(await get_db())
        scheduler = TaskScheduler(str(output_dir), max_thread_consumption=4,
                                  command_factory=fake_encoder, store=store)
        await scheduler.start()
        app.state.config = config_service
        app.state.store = store
        app.state.catalog = catalog_service
        app.state.scheduler = scheduler
        app.state.segmenter = HLSSegmenter(temp_root=str(tmp_path / "stream"),
                                           command_factory=fake_encoder,
                                           max_wait_sec=2.0, poll_interval_sec=0.01)
        yield
        fake_encoder.release_all()
        await app.state.segmenter.shutdown()
        await scheduler.stop()
        await close_db()

    app = FastAPI(lifespan=lifespan)
    app.include_router(health.router, prefix="/health")
    app.include_router(transcodes.router, prefix="/api/transcodes")
    app.include_router(catalog.router, prefix="/api")
    app.include_router(stream.router, prefix="/api/stream")
    app.include_router(config_router.router, prefix="/api/config")
    return app


@pytest.fixture
def client(app):
    """Create test client."""
    with TestClient(app) as c:
        yield c


def wait_for_status(client, task_id, status, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"/api/transcodes/{task_id}/status").json()
        if data["status"] == status:
            return data
        time.sleep(0.01)
    raise AssertionError(f"transcode {task_id} never reached {status}")


class TestHealthEndpoints:

    @pytest.mark.unit
    def test_liveness_check(self, client):
        """Test liveness check endpoint."""
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    @pytest.mark.unit
    def test_stats_include_scheduler(self, client):
        response = client.get("/health/stats")
        assert response.status_code == 200
        data = response.json()
        assert data["scheduler"]["thread_budget"] == 4
        assert data["scheduler"]["live_tasks"] == 0


class TestTranscodeEndpoints:

    @pytest.mark.api
    def test_create_transcode(self, client):
        response = client.post("/api/transcodes/", json={"media_id": "media_123", "target_id": "target_h264"})
        assert response.status_code == 201
        data = response.json()
        assert data["media_id"] == "media_123"
        assert data["target_id"] == "target_h264"

        wait_for_status(client, data["id"], "complete")

        listing = client.get("/api/transcodes/", params={"media_id": "media_123"}).json()
        assert listing["total"] == 1
        assert listing["items"][0]["status"] == "complete"

    @pytest.mark.api
    def test_duplicate_transcode_conflicts(self, client, fake_encoder):
        fake_encoder.block = True
        payload = {"media_id": "media_123", "target_id": "target_h264"}

        assert client.post("/api/transcodes/", json=payload).status_code == 201
        response = client.post("/api/transcodes/", json=payload)
        assert response.status_code == 409

    @pytest.mark.api
    def test_unknown_media_or_target(self, client):
        response = client.post("/api/transcodes/", json={"media_id": "nope", "target_id": "target_h264"})
        assert response.status_code == 404

        response = client.post("/api/transcodes/", json={"media_id": "media_123", "target_id": "nope"})
        assert response.status_code == 404

    @pytest.mark.api
    def test_status_of_unknown_task(self, client):
        assert client.get("/api/transcodes/missing/status").status_code == 404

    @pytest.mark.api
    def test_cancel_running_transcode(self, client, fake_encoder):
        fake_encoder.block = True
        task_id = client.post(
            "/api/transcodes/", json={"media_id": "media_123", "target_id": "target_h264"}
        ).json()["id"]
        wait_for_status(client, task_id, "working")

        response = client.post(f"/api/transcodes/{task_id}/cancel")
        assert response.status_code == 200
        assert response.json()["interrupted"] is True

        wait_for_status(client, task_id, "cancelled")
        assert client.delete(f"/api/transcodes/{task_id}").status_code == 200
        assert client.get(f"/api/transcodes/{task_id}").status_code == 404

    @pytest.mark.api
    def test_suspend_waiting_transcode_conflicts(self, client, app):
        # Nothing starts while the scheduler is under pressure
        app.state.scheduler._under_pressure = True
        task_id = client.post(
            "/api/transcodes/", json={"media_id": "media_123", "target_id": "target_h264"}
        ).json()["id"]

        assert client.post(f"/api/transcodes/{task_id}/suspend").status_code == 409
        assert client.post(f"/api/transcodes/{task_id}/resume").status_code == 409
        assert client.delete(f"/api/transcodes/{task_id}").status_code == 409


class TestCatalogEndpoints:

    @pytest.mark.api
    def test_create_target(self, client):
        response = client.post("/api/targets", json={
            "label": "AV1",
            "extension": ".mkv",
            "options": {"video_codec": "libsvtav1", "crf": 30},
        })
        assert response.status_code == 201
        assert response.json()["extension"] == "mkv"

        labels = [t["label"] for t in client.get("/api/targets").json()]
        assert "AV1" in labels

    @pytest.mark.api
    def test_illegal_workflow_rejected(self, client):
        response = client.post("/api/workflows", json={
            "label": "Broken",
            "criteria": [{"key": "media_title", "type": "less_than", "value": "abc"}],
            "target_ids": ["target_h264"],
        })
        assert response.status_code == 400
        assert client.get("/api/workflows").json() == []

    @pytest.mark.api
    def test_workflow_dispatch(self, client):
        response = client.post("/api/workflows", json={
            "label": "HD",
            "criteria": [{"key": "resolution", "type": "less_than", "value": "720p"}],
            "target_ids": ["target_h264"],
        })
        assert response.status_code == 201

        response = client.post("/api/medias/media_123/workflows/dispatch")
        assert response.status_code == 200
        tasks = response.json()["tasks"]
        assert [t["target_id"] for t in tasks] == ["target_h264"]


class TestStreamEndpoints:

    @pytest.mark.stream
    def test_manifest(self, client):
        response = client.get("/api/stream/media_123/hls/index.m3u8")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/vnd.apple.mpegurl")
        assert response.text.startswith("#EXTM3U\n")
        assert "4.ts" in response.text

    @pytest.mark.stream
    def test_segment(self, client, fake_encoder):
        response = client.get("/api/stream/media_123/hls/1.ts")
        assert response.status_code == 200
        assert response.headers["content-type"] == "video/mp2t"
        assert response.content == b"segment"
        assert fake_encoder.calls == 1

        client.get("/api/stream/media_123/hls/1.ts")
        assert fake_encoder.calls == 1

    @pytest.mark.stream
    def test_segment_out_of_range(self, client):
        assert client.get("/api/stream/media_123/hls/9.ts").status_code == 400

    @pytest.mark.stream
    def test_segment_encoder_failure(self, client, fake_encoder):
        fake_encoder.fail = True
        assert client.get("/api/stream/media_123/hls/0.ts").status_code == 502


class TestHistoryEndpoints:

    @pytest.mark.api
    def test_completed_transcode_history(self, client):
        payload = {"media_id": "media_123", "target_id": "target_h264"}
        task_id = client.post("/api/transcodes/", json=payload).json()["id"]
        wait_for_status(client, task_id, "complete")

        deadline = time.monotonic() + 2.0
        history = []
        while not history and time.monotonic() < deadline:
            history = client.get("/api/medias/media_123/history").json()
            time.sleep(0.01)
        assert [r["id"] for r in history] == [task_id]
        assert history[0]["target_id"] == "target_h264"

        record = client.get(f"/api/history/{task_id}").json()
        assert record["media_id"] == "media_123"
        assert client.get("/api/history/missing").status_code == 404

        # A recorded pair is not encoded twice until its history is cleared
        assert client.post("/api/transcodes/", json=payload).status_code == 409
        response = client.delete("/api/medias/media_123/history")
        assert response.json() == {"media_id": "media_123", "deleted": 1}
        assert client.get("/api/medias/media_123/history").json() == []
        assert client.post("/api/transcodes/", json=payload).status_code == 201


class TestConfigEndpoints:

    @pytest.mark.api
    def test_get_config(self, client):
        response = client.get("/api/config/")
        assert response.status_code == 200
        data = response.json()
        assert data["instance_name"] == "TranscodeOps"
        assert data["max_thread_consumption"] == 8

    @pytest.mark.api
    def test_update_applies_at_runtime(self, client, app, tmp_path):
        response = client.patch("/api/config/", json={
            "max_thread_consumption": 2,
            "stream_segment_wait_sec": 5,
            "unknown_setting": "ignored",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["max_thread_consumption"] == 2
        assert "unknown_setting" not in data

        assert app.state.scheduler.max_thread_consumption == 2
        assert app.state.segmenter.max_wait_sec == 5
        assert '"max_thread_consumption": 2' in (tmp_path / "config.json").read_text()

    @pytest.mark.api
    def test_invalid_update_rejected(self, client, app):
        response = client.patch("/api/config/", json={"max_thread_consumption": 0})
        assert response.status_code == 400
        assert app.state.scheduler.max_thread_consumption == 4
        assert client.get("/api/config/").json()["max_thread_consumption"] == 8
