import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, status

from video_api.api.deps import ChunkBody, Exports, Registry, limit_json_body
from video_api.exceptions import InvalidRequestError
from video_api.schemas.export import (
    AckResponse,
    ChunkUploadResponse,
    JobCreatedResponse,
    JobIdRequest,
    PodcastExportRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["podcast"])


def _int_header(name: str, value: Optional[str]) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"Missing or invalid {name} header") from None


@router.post("/podcast-upload-chunk", response_model=ChunkUploadResponse)
async def upload_chunk(
    body: ChunkBody,
    registry: Registry,
    x_session_id: Annotated[Optional[str], Header()] = None,
    x_chunk_index: Annotated[Optional[str], Header()] = None,
    x_total_chunks: Annotated[Optional[str], Header()] = None,
    x_file_ext: Annotated[Optional[str], Header()] = None,
) -> ChunkUploadResponse:
    """Receive one raw binary chunk of a podcast audio upload."""
    chunk_index = _int_header("x-chunk-index", x_chunk_index)
    total_chunks = _int_header("x-total-chunks", x_total_chunks)
    receipt = await registry.uploads.append_chunk(
        x_session_id or "", chunk_index, total_chunks, x_file_ext, body
    )
    return ChunkUploadResponse(**receipt.to_dict())


@router.post(
    "/podcast-export",
    response_model=JobCreatedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(limit_json_body)],
)
async def create_podcast_export(payload: PodcastExportRequest, exports: Exports) -> JobCreatedResponse:
    """Start a podcast render from a completed upload session.

    Only one podcast render runs at a time; a second request gets 429.
    """
    job = exports.start_podcast_export(payload)
    return JobCreatedResponse(job_id=job.id)


@router.post("/podcast-cancel", response_model=AckResponse, response_model_exclude_none=True)
async def cancel_podcast(payload: JobIdRequest, exports: Exports) -> AckResponse:
    exports.cancel(payload.job_id)
    return AckResponse(ok=True)


@router.post("/podcast-downloaded", response_model=AckResponse, response_model_exclude_none=True)
async def podcast_downloaded(payload: JobIdRequest, exports: Exports) -> AckResponse:
    """Client has fetched the result; schedule deletion after a grace period."""
    exports.acknowledge_download(payload.job_id)
    return AckResponse(ok=True, queued=True)
