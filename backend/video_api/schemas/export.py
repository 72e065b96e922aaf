"""Request/response schemas for the export endpoints.

Wire names are camelCase (the browser client's convention); Python attributes
are snake_case. Request models are frozen: a job keeps the validated request
as its immutable options snapshot.
"""

import re
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from video_api.render.colors import is_safe_color

PNG_DATA_URL_PREFIX = "data:image/png;base64,"
SOURCE_ID_PATTERN = r"^[a-zA-Z0-9_-]{11}$"
SESSION_ID_PATTERN = r"^[a-f0-9]{16}$"
JOB_ID_PATTERN = r"^[a-zA-Z0-9_-]{1,64}$"


def _round_number(value: Any) -> int:
    """Coerce loose numeric input (``"12.6"``, ``None``) to an int like the client expects."""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError("expected a number")
    return int(round(float(value)))


def _positive_or_none(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    number = float(value)
    return number if number > 0 else None


def _check_png_data_url(value: str) -> str:
    if not value.startswith(PNG_DATA_URL_PREFIX):
        raise ValueError("must be PNG data URL")
    return value


def _check_color(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if not is_safe_color(value):
        raise ValueError(f"unsupported color: {value!r}")
    return value


PngDataUrl = Annotated[str, AfterValidator(_check_png_data_url)]
Color = Annotated[Optional[str], BeforeValidator(_check_color)]
Duration = Annotated[Optional[float], BeforeValidator(_positive_or_none)]


# =============================================================================
# Overlay geometry
# =============================================================================


class Rect(BaseModel):
    """Pixel rectangle in output-frame coordinates."""

    model_config = ConfigDict(frozen=True)

    x: int = 0
    y: int = 0
    w: int = 0
    h: int = 0

    @field_validator("x", "y", "w", "h", mode="before")
    @classmethod
    def _round(cls, v: Any) -> int:
        return _round_number(v)


class TimerInfo(BaseModel):
    """Position and style of the elapsed-time text."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    x: int = 0
    y: int = 0
    font_size: Optional[int] = Field(None, alias="fontSize", gt=0, le=512)
    color: str = "#FFFFFF"
    opacity: float = Field(0.5, ge=0, le=1)

    @field_validator("x", "y", mode="before")
    @classmethod
    def _round(cls, v: Any) -> int:
        return _round_number(v)

    @field_validator("font_size", mode="before")
    @classmethod
    def _round_font(cls, v: Any) -> Optional[int]:
        rounded = _round_number(v)
        return rounded or None

    @field_validator("opacity", mode="before")
    @classmethod
    def _default_opacity(cls, v: Any) -> float:
        # A zero/missing opacity means "use the default", not "invisible".
        if v is None or v == "" or float(v) == 0:
            return 0.5
        return float(v)

    @field_validator("color", mode="before")
    @classmethod
    def _color(cls, v: Any) -> str:
        return _check_color(str(v) if v is not None else None) or "#FFFFFF"


# =============================================================================
# Requests
# =============================================================================


class ExportRequest(BaseModel):
    """``POST /export``: remote video + transparent overlay PNG."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    video_id: str = Field(..., alias="videoId", pattern=SOURCE_ID_PATTERN)
    overlay_png: PngDataUrl = Field(..., alias="overlayPng")
    duration: Duration = None
    with_audio: bool = Field(False, alias="withAudio")
    width: int = Field(1080, gt=0, le=7680)
    height: int = Field(1350, gt=0, le=7680)
    progress_bar: Optional[Rect] = Field(None, alias="progressBar")
    timer_info: Optional[TimerInfo] = Field(None, alias="timerInfo")
    accent_color: Color = Field(None, alias="accentColor")


class PodcastExportRequest(BaseModel):
    """``POST /podcast-export``: uploaded audio + full-frame still image(s)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    session_id: str = Field(..., alias="sessionId", pattern=SESSION_ID_PATTERN)
    frame_png: PngDataUrl = Field(..., alias="framePng")
    frame_lit_png: Optional[str] = Field(None, alias="frameLitPng")
    duration: Duration = None
    width: int = Field(1920, gt=0, le=7680)
    height: int = Field(1080, gt=0, le=7680)
    progress_bar: Optional[Rect] = Field(None, alias="progressBar")
    timer_info: Optional[TimerInfo] = Field(None, alias="timerInfo")
    waveform_region: Optional[Rect] = Field(None, alias="waveformRegion")
    accent_color: Color = Field(None, alias="accentColor")

    @field_validator("frame_lit_png")
    @classmethod
    def _check_lit(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        return _check_png_data_url(v)


class GifExportRequest(BaseModel):
    """``POST /gif-export``: animated GIF URL + overlay PNG."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    gif_url: str = Field(..., alias="gifUrl", min_length=1)
    overlay_png: PngDataUrl = Field(..., alias="overlayPng")
    width: int = Field(1080, gt=0, le=7680)
    height: int = Field(1350, gt=0, le=7680)
    duration: Duration = None

    @field_validator("gif_url")
    @classmethod
    def _check_scheme(cls, v: str) -> str:
        if not re.match(r"^https?://", v):
            raise ValueError("only http/https URLs allowed")
        return v


class JobIdRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId", pattern=JOB_ID_PATTERN)


# =============================================================================
# Responses
# =============================================================================


class ServiceStatusResponse(BaseModel):
    ok: bool = True
    jobs: int


class JobCreatedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")


class JobStatusResponse(BaseModel):
    status: str
    progress: float
    url: Optional[str] = None
    error: Optional[str] = None


class ChunkUploadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    received: int
    total_chunks: int = Field(..., alias="totalChunks")
    complete: bool
    duplicate: bool = False


class AckResponse(BaseModel):
    ok: bool = True
    queued: Optional[bool] = None


class GifExportResponse(BaseModel):
    url: str
