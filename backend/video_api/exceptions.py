"""Custom exceptions for the video export API.

Every error the service raises on purpose derives from ``VideoApiError`` and
carries a machine-readable code from ``constants.error_codes``. The HTTP layer
turns these into ``{"error", "code", "retryable"}`` payloads; the job runner
turns them into a job's ``error`` state.
"""

from typing import Any

from video_api.constants.error_codes import get_error_spec


class VideoApiError(Exception):
    """Base exception for all video export errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return get_error_spec(self.code).get("retryable", False)

    def to_payload(self) -> dict[str, Any]:
        """Convert exception to the JSON body returned to callers."""
        payload: dict[str, Any] = {
            "error": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }
        suggested_fix = get_error_spec(self.code).get("suggested_fix")
        if suggested_fix:
            payload["suggested_fix"] = suggested_fix
        return payload


# =============================================================================
# Request Errors (400 / 413)
# =============================================================================


class InvalidRequestError(VideoApiError):
    code = "INVALID_REQUEST"
    status_code = 400
    message = "Invalid request"


class PayloadTooLargeError(VideoApiError):
    code = "PAYLOAD_TOO_LARGE"
    status_code = 413
    message = "Request body too large"


# =============================================================================
# Resource Errors
# =============================================================================


class JobNotFoundError(VideoApiError):
    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Job not found"

    def __init__(self, job_id: str | None = None):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}" if job_id else None)


class UploadSessionNotFoundError(VideoApiError):
    code = "UPLOAD_SESSION_NOT_FOUND"
    status_code = 400
    message = "Invalid or expired sessionId. Upload audio chunks first."


class UploadIncompleteError(VideoApiError):
    code = "UPLOAD_INCOMPLETE"
    status_code = 400
    message = "Audio upload incomplete"

    def __init__(self, received: int, total: int):
        self.received = received
        self.total = total
        super().__init__(f"Audio upload incomplete: {received}/{total} chunks received.")


class ChunkConflictError(VideoApiError):
    """Chunk headers disagree with the session they target."""

    code = "CHUNK_CONFLICT"
    status_code = 400
    message = "Chunk does not match upload session"


class UploadTooLargeError(VideoApiError):
    code = "UPLOAD_TOO_LARGE"
    status_code = 413
    message = "Upload exceeds the maximum allowed size"


class SourceDownloadError(VideoApiError):
    """The external downloader failed; the partial file has been removed."""

    code = "SOURCE_DOWNLOAD_FAILED"
    status_code = 502
    message = "Source download failed"


class UpstreamFetchError(VideoApiError):
    code = "UPSTREAM_FETCH_FAILED"
    status_code = 502
    message = "Upstream fetch failed"


# =============================================================================
# Concurrency / Processing Errors
# =============================================================================


class PodcastRenderBusyError(VideoApiError):
    code = "PODCAST_RENDER_BUSY"
    status_code = 429
    message = "A podcast render is already in progress. Please wait."


class TranscodeError(VideoApiError):
    """ffmpeg exited non-zero. ``diagnostics`` holds the stderr tail."""

    code = "TRANSCODE_FAILED"
    status_code = 500
    message = "Transcoding failed"

    def __init__(self, returncode: int | None, diagnostics: str = ""):
        self.returncode = returncode
        self.diagnostics = diagnostics
        message = f"ffmpeg exited with code {returncode}"
        if diagnostics:
            message = f"{message}: {diagnostics.strip()[-500:]}"
        super().__init__(message)
