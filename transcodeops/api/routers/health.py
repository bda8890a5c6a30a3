from fastapi import APIRouter, Request
from typing import Dict, Any
import psutil
import shutil
from datetime import datetime

from transcodeops.api.db.database import get_db

router = APIRouter()


@router.get("/")
async def health_check() -> Dict[str, Any]:
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": "TranscodeOps API",
        "version": "1.0.0"
    }


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Kubernetes liveness probe endpoint"""
    return {"status": "alive"}


@router.get("/ready")
async def readiness_check(request: Request) -> Dict[str, Any]:
    """Kubernetes readiness probe endpoint"""
    state = request.app.state
    checks = {
        "database": False,
        "ffmpeg": False,
        "scheduler": False,
        "nats": None,
    }

    try:
        db = await get_db()
        async with db.execute("SELECT 1") as cursor:
            await cursor.fetchone()
        checks["database"] = True
    except Exception:
        checks["database"] = False

    config = getattr(state, "config", None)
    ffmpeg_path = config.get("ffmpeg_path", "ffmpeg") if config else "ffmpeg"
    checks["ffmpeg"] = shutil.which(ffmpeg_path) is not None

    checks["scheduler"] = getattr(state, "scheduler", None) is not None

    nats_service = getattr(state, "nats", None)
    if nats_service is not None:
        checks["nats"] = nats_service.is_connected

    all_ready = all(v for v in checks.values() if v is not None)

    return {
        "ready": all_ready,
        "checks": checks,
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/stats")
async def scheduler_stats(request: Request) -> Dict[str, Any]:
    """Scheduler load alongside system load"""
    scheduler = getattr(request.app.state, "scheduler", None)
    memory = psutil.virtual_memory()

    stats: Dict[str, Any] = {
        "cpu_percent": psutil.cpu_percent(interval=None),
        "memory_percent": memory.percent,
        "memory_available_gb": memory.available / (1024**3),
        "timestamp": datetime.utcnow().isoformat(),
    }
    if scheduler is not None:
        stats["scheduler"] = {
            "running": scheduler.running_count,
            "threads_in_use": scheduler.threads_in_use,
            "thread_budget": scheduler.max_thread_consumption,
            "under_pressure": scheduler.under_pressure,
            "live_tasks": len(scheduler.registry),
        }
    return stats
