from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional
import logging

from transcodeops.api.deps import get_catalog, get_scheduler, http_error
from transcodeops.api.schemas.transcodes import (
    TranscodeActionResponse, TranscodeCreate, TranscodeListResponse,
    TranscodeResponse, TranscodeStatusResponse, ProgressResponse
)
from transcodeops.api.services.catalog_service import CatalogService
from transcodeops.worker.errors import TranscodeOpsError
from transcodeops.worker.transcode.scheduler import TaskScheduler
from transcodeops.worker.transcode.task import TaskStatus

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=TranscodeListResponse)
async def list_transcodes(
    media_id: Optional[str] = Query(None, description="Filter by media ID"),
    status: Optional[TaskStatus] = Query(None, description="Filter by status"),
    scheduler: TaskScheduler = Depends(get_scheduler)
) -> TranscodeListResponse:
    """List known transcode tasks"""
    tasks = scheduler.list_tasks(media_id=media_id, status=status)
    return TranscodeListResponse(
        items=[TranscodeResponse.from_task(t) for t in tasks],
        total=len(tasks)
    )


@router.post("/", response_model=TranscodeResponse, status_code=201)
async def create_transcode(
    request: TranscodeCreate,
    scheduler: TaskScheduler = Depends(get_scheduler),
    catalog: CatalogService = Depends(get_catalog)
) -> TranscodeResponse:
    """Dispatch a transcode of a media item against a target"""
    try:
        media = catalog.get_media(request.media_id)
        target = catalog.get_target(request.target_id)
        task = await scheduler.dispatch(media, target)
    except TranscodeOpsError as e:
        raise http_error(e)
    return TranscodeResponse.from_task(task)


@router.get("/{task_id}", response_model=TranscodeResponse)
async def get_transcode(task_id: str, scheduler: TaskScheduler = Depends(get_scheduler)) -> TranscodeResponse:
    """Get a transcode task"""
    try:
        return TranscodeResponse.from_task(scheduler.get_task(task_id))
    except TranscodeOpsError as e:
        raise http_error(e)


@router.get("/{task_id}/status", response_model=TranscodeStatusResponse)
async def get_transcode_status(task_id: str, scheduler: TaskScheduler = Depends(get_scheduler)) -> TranscodeStatusResponse:
    """Poll status and progress of a task"""
    try:
        status, progress = scheduler.status(task_id)
    except TranscodeOpsError as e:
        raise http_error(e)
    return TranscodeStatusResponse(
        id=task_id,
        status=status,
        progress=ProgressResponse(**progress.to_dict()) if progress else None
    )


@router.post("/{task_id}/cancel", response_model=TranscodeActionResponse)
async def cancel_transcode(task_id: str, scheduler: TaskScheduler = Depends(get_scheduler)) -> TranscodeActionResponse:
    """Cancel a task. The encode stops once the encoder exits."""
    try:
        interrupted = await scheduler.cancel(task_id)
        task = scheduler.get_task(task_id)
    except TranscodeOpsError as e:
        raise http_error(e)
    logger.info(f"Cancel requested for transcode {task_id} (interrupted={interrupted})")
    return TranscodeActionResponse(id=task_id, status=task.status, interrupted=interrupted)


@router.post("/{task_id}/suspend", response_model=TranscodeActionResponse)
async def suspend_transcode(task_id: str, scheduler: TaskScheduler = Depends(get_scheduler)) -> TranscodeActionResponse:
    """Suspend a running task. Resuming restarts the encode from the beginning."""
    try:
        suspended = await scheduler.suspend(task_id)
        task = scheduler.get_task(task_id)
    except TranscodeOpsError as e:
        raise http_error(e)
    if not suspended:
        raise HTTPException(status_code=409, detail=f"Transcode {task_id} is {task.status.value}, not working")
    return TranscodeActionResponse(id=task_id, status=task.status, interrupted=True)


@router.post("/{task_id}/resume", response_model=TranscodeActionResponse)
async def resume_transcode(task_id: str, scheduler: TaskScheduler = Depends(get_scheduler)) -> TranscodeActionResponse:
    """Requeue a suspended task"""
    try:
        resumed = await scheduler.resume(task_id)
        task = scheduler.get_task(task_id)
    except TranscodeOpsError as e:
        raise http_error(e)
    if not resumed:
        raise HTTPException(status_code=409, detail=f"Transcode {task_id} is {task.status.value}, not suspended")
    return TranscodeActionResponse(id=task_id, status=task.status)


@router.post("/{task_id}/retry", response_model=TranscodeResponse)
async def retry_transcode(task_id: str, scheduler: TaskScheduler = Depends(get_scheduler)) -> TranscodeResponse:
    """Retry a troubled task"""
    try:
        task = await scheduler.retry(task_id)
    except TranscodeOpsError as e:
        raise http_error(e)
    return TranscodeResponse.from_task(task)


@router.delete("/{task_id}")
async def dispose_transcode(task_id: str, scheduler: TaskScheduler = Depends(get_scheduler)):
    """Forget a finished task"""
    try:
        scheduler.dispose(task_id)
    except TranscodeOpsError as e:
        raise http_error(e)
    return {"message": "Transcode disposed", "id": task_id}
