"""Time-varying overlay descriptors.

An export's animated decorations are a list of these variants. The filter
graph builder dispatches on the variant type, so a new kind of overlay is a
new dataclass plus one builder method.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Optional, Union

from video_api.render.colors import to_ffmpeg_color

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Region:
    x: int
    y: int
    w: int
    h: int

    def clamp(self, frame_w: int, frame_h: int) -> Optional["Region"]:
        """Clamp into the frame. Returns None if nothing visible remains."""
        x = max(0, min(frame_w - 1, self.x))
        y = max(0, min(frame_h - 1, self.y))
        w = max(0, min(frame_w - x, self.w))
        h = max(0, min(frame_h - y, self.h))
        if w <= 0 or h <= 0:
            return None
        return Region(x, y, w, h)


@dataclass(frozen=True)
class WipeBlendOverlay:
    """Left-to-right reveal from the dim frame to the lit frame.

    Pixel column X shows the lit frame once ``X < W * t / duration``. With a
    region, only that sub-rectangle is swept; the rest stays dim.
    """

    kind: ClassVar[str] = "wipe_blend"
    stage: ClassVar[int] = 0

    region: Optional[Region] = None


@dataclass(frozen=True)
class ProgressBarOverlay:
    """Solid bar whose width grows linearly to ``w`` at ``t = duration``."""

    kind: ClassVar[str] = "progress_bar"
    stage: ClassVar[int] = 1

    x: int
    y: int
    w: int
    h: int
    color: str


@dataclass(frozen=True)
class TimerOverlay:
    """``m:ss`` elapsed text driven by the transcoder's own clock."""

    kind: ClassVar[str] = "timer"
    stage: ClassVar[int] = 2

    x: int
    y: int
    font_size: int
    color: str
    opacity: float
    font_path: str


Overlay = Union[WipeBlendOverlay, ProgressBarOverlay, TimerOverlay]


def progress_bar_overlay(rect, accent_color: Optional[str]) -> Optional[ProgressBarOverlay]:
    """Build a bar from request geometry; None unless geometry and color are usable."""
    if rect is None or not accent_color:
        return None
    if rect.w <= 0 or rect.h <= 0:
        return None
    return ProgressBarOverlay(
        x=max(0, rect.x),
        y=max(0, rect.y),
        w=max(1, rect.w),
        h=max(1, rect.h),
        color=to_ffmpeg_color(accent_color),
    )


def timer_overlay(timer_info, font_path: str, default_font_size: int) -> Optional[TimerOverlay]:
    """Build a timer from request style; None when no font file is available."""
    if timer_info is None:
        return None
    if not font_path or "'" in font_path or not Path(font_path).is_file():
        logger.warning(f"[RENDER] Timer font not found ({font_path}); timer overlay skipped")
        return None
    return TimerOverlay(
        x=timer_info.x,
        y=timer_info.y,
        font_size=timer_info.font_size or default_font_size,
        color=to_ffmpeg_color(timer_info.color),
        opacity=timer_info.opacity,
        font_path=font_path,
    )


def wipe_blend_overlay(region_rect, width: int, height: int) -> WipeBlendOverlay:
    region = None
    if region_rect is not None:
        region = Region(region_rect.x, region_rect.y, region_rect.w, region_rect.h).clamp(width, height)
    return WipeBlendOverlay(region=region)
