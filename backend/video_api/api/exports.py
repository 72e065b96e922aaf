import logging

from fastapi import APIRouter, Depends, status

from video_api.api.deps import Exports, Registry, limit_json_body
from video_api.schemas.export import (
    ExportRequest,
    GifExportRequest,
    GifExportResponse,
    JobCreatedResponse,
    JobStatusResponse,
    ServiceStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["exports"])


@router.get("/status", response_model=ServiceStatusResponse)
async def service_status(registry: Registry) -> ServiceStatusResponse:
    """Liveness probe with the number of tracked jobs."""
    return ServiceStatusResponse(ok=True, jobs=len(registry))


@router.get("/status/{job_id}", response_model=JobStatusResponse)
async def job_status(job_id: str, registry: Registry) -> JobStatusResponse:
    """Poll a job. Each poll also counts as a keep-alive for the job."""
    job = registry.touch(job_id)
    return JobStatusResponse(**job.to_dict())


@router.post(
    "/export",
    response_model=JobCreatedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(limit_json_body)],
)
async def create_export(payload: ExportRequest, exports: Exports) -> JobCreatedResponse:
    """Start an overlay export of a remote video. Poll ``/status/{jobId}`` for the result."""
    job = exports.start_overlay_export(payload)
    return JobCreatedResponse(job_id=job.id)


@router.post(
    "/gif-export",
    response_model=GifExportResponse,
    dependencies=[Depends(limit_json_body)],
)
async def create_gif_export(payload: GifExportRequest, exports: Exports) -> GifExportResponse:
    """Loop a remote GIF under an overlay PNG and return the published MP4 URL."""
    url = await exports.export_gif(payload)
    return GifExportResponse(url=url)
