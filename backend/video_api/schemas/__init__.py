from video_api.schemas.export import (
    AckResponse,
    ChunkUploadResponse,
    ExportRequest,
    GifExportRequest,
    GifExportResponse,
    JobCreatedResponse,
    JobIdRequest,
    JobStatusResponse,
    PodcastExportRequest,
    Rect,
    ServiceStatusResponse,
    TimerInfo,
)

__all__ = [
    "ExportRequest",
    "PodcastExportRequest",
    "GifExportRequest",
    "JobIdRequest",
    "Rect",
    "TimerInfo",
    "ServiceStatusResponse",
    "JobCreatedResponse",
    "JobStatusResponse",
    "ChunkUploadResponse",
    "AckResponse",
    "GifExportResponse",
]
