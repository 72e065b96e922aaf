from video_api.models.job import (
    CANCELLED_ABANDONED,
    CANCELLED_BY_USER,
    Job,
    JobKind,
    JobStatus,
    can_transition,
)
from video_api.models.upload import ChunkReceipt, UploadSession

__all__ = [
    "CANCELLED_ABANDONED",
    "CANCELLED_BY_USER",
    "ChunkReceipt",
    "Job",
    "JobKind",
    "JobStatus",
    "UploadSession",
    "can_transition",
]
