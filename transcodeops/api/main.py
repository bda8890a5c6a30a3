from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import os
import logging

from transcodeops.api.routers import health, transcodes, catalog, stream
from transcodeops.api.routers import config as config_router
from transcodeops.api.db.database import init_db, close_db, get_db
from transcodeops.api.services.catalog_service import CatalogService
from transcodeops.api.services.config_service import ConfigService
from transcodeops.api.services.nats_service import NATSService
from transcodeops.api.services.transcode_store import TranscodeStore
from transcodeops.api.utils.logging_config import setup_logging
from transcodeops.worker.stream.segmenter import HLSSegmenter
from transcodeops.worker.transcode.guardrails import ResourceGuardrail
from transcodeops.worker.transcode.scheduler import TaskScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging("api")
    logger.info("Starting TranscodeOps API...")

    logger.info("Initializing configuration...")
    config_service = ConfigService()
    config = await config_service.load_config()
    app.state.config = config_service

    logger.info("Initializing database...")
    await init_db()
    store = TranscodeStore(await get_db())
    app.state.store = store

    nats_service = None
    if config.enable_events:
        logger.info("Initializing NATS...")
        nats_service = NATSService(config.instance_name)
        try:
            await nats_service.connect()
        except Exception as e:
            logger.warning(f"Continuing without event publishing: {e}")
    app.state.nats = nats_service

    app.state.catalog = CatalogService(ffprobe_path=config.ffprobe_path)

    scheduler = TaskScheduler(
        output_path=config.output_path,
        max_thread_consumption=config.max_thread_consumption,
        ffmpeg_path=config.ffmpeg_path,
        guardrail=ResourceGuardrail(config.cpu_guard_pct, config.min_memory_gb),
        guard_check_interval_sec=config.guard_check_interval_sec,
        nats_service=nats_service,
        store=store,
    )
    await scheduler.start()
    app.state.scheduler = scheduler

    app.state.segmenter = HLSSegmenter(
        temp_root=config.stream_temp_dir,
        ffmpeg_path=config.ffmpeg_path,
        max_wait_sec=config.stream_segment_wait_sec,
        poll_interval_sec=config.stream_poll_interval_sec,
    )
    logger.info("TranscodeOps API started")

    yield

    # Shutdown
    logger.info("Shutting down TranscodeOps API...")
    await app.state.segmenter.shutdown()
    await scheduler.stop()
    if nats_service is not None:
        await nats_service.disconnect()
    await close_db()
    logger.info("TranscodeOps API shutdown complete")


app = FastAPI(
    title="TranscodeOps API",
    description="Workflow driven transcoding and on-demand HLS streaming",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(transcodes.router, prefix="/api/transcodes", tags=["transcodes"])
app.include_router(catalog.router, prefix="/api", tags=["catalog"])
app.include_router(stream.router, prefix="/api/stream", tags=["stream"])
app.include_router(config_router.router, prefix="/api/config", tags=["config"])


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled errors and return a plain 500"""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error: {str(exc)}"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "transcodeops.api.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "7768")),
        reload=os.getenv("ENV", "production") == "development"
    )
