from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse, PlainTextResponse
import logging

from transcodeops.api.deps import get_catalog, get_segmenter, http_error
from transcodeops.api.services.catalog_service import CatalogService
from transcodeops.worker.errors import TranscodeOpsError
from transcodeops.worker.stream.segmenter import HLSSegmenter

logger = logging.getLogger(__name__)

router = APIRouter()

HLS_PLAYLIST_TYPE = "application/vnd.apple.mpegurl"
HLS_SEGMENT_TYPE = "video/mp2t"


@router.get("/{media_id}/hls/index.m3u8")
async def get_manifest(
    media_id: str,
    catalog: CatalogService = Depends(get_catalog),
    segmenter: HLSSegmenter = Depends(get_segmenter)
) -> PlainTextResponse:
    """HLS manifest for a media item"""
    try:
        manifest = segmenter.get_manifest(catalog.get_media(media_id))
    except TranscodeOpsError as e:
        raise http_error(e)
    return PlainTextResponse(manifest, media_type=HLS_PLAYLIST_TYPE)


@router.get("/{media_id}/hls/{index}.ts")
async def get_segment(
    media_id: str,
    index: int,
    catalog: CatalogService = Depends(get_catalog),
    segmenter: HLSSegmenter = Depends(get_segmenter)
) -> FileResponse:
    """One HLS segment, produced on demand"""
    try:
        path = await segmenter.get_segment(catalog.get_media(media_id), index)
    except TranscodeOpsError as e:
        logger.warning(f"Segment {index} of media {media_id} unavailable: {e.message}")
        raise http_error(e)
    return FileResponse(path, media_type=HLS_SEGMENT_TYPE)
