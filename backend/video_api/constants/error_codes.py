"""Error codes dictionary for the export API.

Single source of truth for every error code the service emits and whether a
caller may retry the same request unchanged.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Request errors
    # ==========================================================================
    "INVALID_REQUEST": {
        "retryable": False,
    },
    "PAYLOAD_TOO_LARGE": {
        "retryable": False,
        "suggested_fix": "Split the upload into smaller chunks",
    },
    # ==========================================================================
    # Resource errors
    # ==========================================================================
    "JOB_NOT_FOUND": {
        "retryable": False,
    },
    "UPLOAD_SESSION_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Upload audio chunks first",
    },
    "UPLOAD_INCOMPLETE": {
        "retryable": True,
        "suggested_fix": "Send the remaining chunks, then retry",
    },
    "CHUNK_CONFLICT": {
        "retryable": False,
    },
    "UPLOAD_TOO_LARGE": {
        "retryable": False,
    },
    "SOURCE_DOWNLOAD_FAILED": {
        "retryable": True,
        "suggested_fix": "Submit the export again",
    },
    "UPSTREAM_FETCH_FAILED": {
        "retryable": True,
    },
    # ==========================================================================
    # Concurrency / processing errors
    # ==========================================================================
    "PODCAST_RENDER_BUSY": {
        "retryable": True,
        "suggested_fix": "Wait for the active podcast render to finish",
    },
    "TRANSCODE_FAILED": {
        "retryable": False,
    },
    "INTERNAL_ERROR": {
        "retryable": False,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code."""
    return ERROR_CODES.get(code, {"retryable": False})
