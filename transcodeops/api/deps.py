from fastapi import HTTPException, Request

from transcodeops.api.services.catalog_service import CatalogService
from transcodeops.api.services.config_service import ConfigService
from transcodeops.api.services.transcode_store import TranscodeStore
from transcodeops.worker.errors import (
    CommandError,
    ConflictError,
    NotFoundError,
    ResourceError,
    SegmentNotFoundError,
    SegmentTimeoutError,
    TranscodeOpsError,
    ValidationError,
)
from transcodeops.worker.stream.segmenter import HLSSegmenter
from transcodeops.worker.transcode.scheduler import TaskScheduler

_STATUS_CODES = (
    (NotFoundError, 404),
    (SegmentNotFoundError, 404),
    (ValidationError, 400),
    (ConflictError, 409),
    (SegmentTimeoutError, 504),
    (CommandError, 502),
    (ResourceError, 500),
)


def http_error(error: TranscodeOpsError) -> HTTPException:
    """Translate an engine error into the matching HTTP error"""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=500, detail=error.message)


def get_scheduler(request: Request) -> TaskScheduler:
    return request.app.state.scheduler


def get_catalog(request: Request) -> CatalogService:
    return request.app.state.catalog


def get_segmenter(request: Request) -> HLSSegmenter:
    return request.app.state.segmenter


def get_config_service(request: Request) -> ConfigService:
    return request.app.state.config


def get_store(request: Request) -> TranscodeStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Transcode history is not available")
    return store
