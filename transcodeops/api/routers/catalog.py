from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
import logging

from transcodeops.api.deps import get_catalog, get_scheduler, get_store, http_error
from transcodeops.api.schemas.transcodes import TranscodeResponse, WorkflowDispatchResponse
from transcodeops.api.services.catalog_service import CatalogService
from transcodeops.api.services.transcode_store import TranscodeStore
from transcodeops.worker.errors import NotFoundError, TranscodeOpsError
from transcodeops.worker.ffmpeg.target import Target
from transcodeops.worker.rules.models import Workflow
from transcodeops.worker.transcode.scheduler import TaskScheduler

logger = logging.getLogger(__name__)

router = APIRouter()


class MediaCreate(BaseModel):
    """Catalogue a media file by probing it"""
    source_path: str = Field(..., description="Absolute path of the source file")
    title: Optional[str] = Field(None, description="Title, defaults to the file name")


def _media_dict(media) -> Dict[str, Any]:
    return {
        "id": media.id,
        "title": media.title,
        "source_path": media.source_path,
        "duration": media.duration,
        "resolution": media.resolution,
        "video_codec": media.video_codec,
        "container": media.container,
    }


@router.get("/medias")
async def list_medias(catalog: CatalogService = Depends(get_catalog)) -> List[Dict[str, Any]]:
    return [_media_dict(m) for m in catalog.list_media()]


@router.post("/medias", status_code=201)
async def create_media(request: MediaCreate, catalog: CatalogService = Depends(get_catalog)) -> Dict[str, Any]:
    try:
        media = await catalog.probe_and_add(request.source_path, request.title)
    except TranscodeOpsError as e:
        raise http_error(e)
    return _media_dict(media)


@router.get("/targets", response_model=List[Target])
async def list_targets(catalog: CatalogService = Depends(get_catalog)) -> List[Target]:
    return list(catalog.targets().values())


@router.post("/targets", response_model=Target, status_code=201)
async def create_target(target: Target, catalog: CatalogService = Depends(get_catalog)) -> Target:
    try:
        return catalog.add_target(target)
    except TranscodeOpsError as e:
        raise http_error(e)


@router.get("/workflows", response_model=List[Workflow])
async def list_workflows(catalog: CatalogService = Depends(get_catalog)) -> List[Workflow]:
    return catalog.workflows()


@router.post("/workflows", response_model=Workflow, status_code=201)
async def create_workflow(workflow: Workflow, catalog: CatalogService = Depends(get_catalog)) -> Workflow:
    """Create a workflow. Criteria are validated before it is stored."""
    try:
        return catalog.add_workflow(workflow)
    except TranscodeOpsError as e:
        raise http_error(e)


@router.post("/medias/{media_id}/workflows/dispatch", response_model=WorkflowDispatchResponse)
async def dispatch_workflows(
    media_id: str,
    catalog: CatalogService = Depends(get_catalog),
    scheduler: TaskScheduler = Depends(get_scheduler)
) -> WorkflowDispatchResponse:
    """Match the media against workflows and queue transcodes for the first match"""
    try:
        media = catalog.get_media(media_id)
        tasks = await scheduler.dispatch_workflows(media, catalog.workflows(), catalog.targets())
    except TranscodeOpsError as e:
        raise http_error(e)
    return WorkflowDispatchResponse(
        media_id=media_id,
        tasks=[TranscodeResponse.from_task(t) for t in tasks]
    )


@router.get("/medias/{media_id}/history")
async def media_history(media_id: str, store: TranscodeStore = Depends(get_store)) -> List[Dict[str, Any]]:
    """Completed transcodes recorded for the media, oldest first"""
    return await store.list_for_media(media_id)


@router.delete("/medias/{media_id}/history")
async def clear_media_history(media_id: str, store: TranscodeStore = Depends(get_store)) -> Dict[str, Any]:
    """Forget completed transcodes so the media's targets can be encoded again"""
    deleted = await store.delete_for_media(media_id)
    logger.info(f"Cleared {deleted} history record(s) for media {media_id}")
    return {"media_id": media_id, "deleted": deleted}


@router.get("/history/{transcode_id}")
async def get_history_record(transcode_id: str, store: TranscodeStore = Depends(get_store)) -> Dict[str, Any]:
    record = await store.get(transcode_id)
    if record is None:
        raise http_error(NotFoundError(f"Transcode record {transcode_id} not found"))
    return record
