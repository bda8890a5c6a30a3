from fastapi import APIRouter, Depends, HTTPException, Request
from typing import Any, Dict
import logging
import pydantic

from transcodeops.api.deps import get_config_service, http_error
from transcodeops.api.services.config_service import ConfigService
from transcodeops.worker.errors import TranscodeOpsError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
async def get_config(config_service: ConfigService = Depends(get_config_service)) -> Dict[str, Any]:
    return config_service.get_all()


@router.patch("/")
async def update_config(
    updates: Dict[str, Any],
    request: Request,
    config_service: ConfigService = Depends(get_config_service)
) -> Dict[str, Any]:
    """
    Update settings and persist them.

    The thread budget and segment wait apply immediately. Binary paths,
    output location and event settings take effect on restart.
    """
    try:
        config = await config_service.update_config(updates)
    except pydantic.ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    state = request.app.state
    try:
        scheduler = getattr(state, "scheduler", None)
        if scheduler is not None and scheduler.max_thread_consumption != config.max_thread_consumption:
            scheduler.set_thread_budget(config.max_thread_consumption)
    except TranscodeOpsError as e:
        raise http_error(e)

    segmenter = getattr(state, "segmenter", None)
    if segmenter is not None:
        segmenter.max_wait_sec = config.stream_segment_wait_sec
        segmenter.poll_interval_sec = config.stream_poll_interval_sec

    logger.info(f"Config updated: {sorted(updates)}")
    return config_service.get_all()
