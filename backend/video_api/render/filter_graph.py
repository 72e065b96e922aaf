"""
Filter graph construction for single-pass ffmpeg composition.

A composition is a base chain (how the source frames become a WxH canvas)
followed by the overlay variants in stage order:

1. wipe blend (dim -> lit reveal, podcast only)
2. progress bar (color source scaled with t)
3. elapsed timer (drawtext)
4. optional sharpening pass

Everything is emitted as one ``-filter_complex`` graph of named pads so the
transcoder produces the output without intermediate files.
"""

from dataclasses import dataclass, field
from typing import Optional

from video_api.render.overlays import (
    Overlay,
    ProgressBarOverlay,
    TimerOverlay,
    WipeBlendOverlay,
)

# drawtext expansion for m:ss. "\:" keeps colons away from the option parser.
TIMER_TEXT_EXPR = r"%{eif\:floor(t/60)\:d}\:%{eif\:mod(floor(t)\,60)\:d\:2}"
SHARPEN_FILTER = "unsharp=5:5:0.45:3:3:0.0"


def format_seconds(value: float) -> str:
    """Render a duration without float noise (``12`` not ``12.0``)."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.3f}".rstrip("0").rstrip(".")


@dataclass
class Composition:
    """What to build: canvas size, clock length and overlay list."""

    width: int
    height: int
    duration: float
    fps: int
    overlays: list[Overlay] = field(default_factory=list)
    sharpen: bool = False

    @property
    def has_wipe(self) -> bool:
        return any(isinstance(o, WipeBlendOverlay) for o in self.overlays)


class FilterGraphBuilder:
    """Accumulates ``[in]filter[out]`` statements and tracks the current pad."""

    def __init__(self, composition: Composition):
        self.composition = composition
        self._filters: list[str] = []
        self._current: str = ""
        self._dispatch = {
            WipeBlendOverlay: self._add_wipe_blend,
            ProgressBarOverlay: self._add_progress_bar,
            TimerOverlay: self._add_timer,
        }

    @property
    def current(self) -> str:
        return self._current

    def add(self, statement: str, output: str) -> str:
        self._filters.append(statement)
        self._current = output
        return output

    def render(self) -> str:
        return ";".join(self._filters)

    # ------------------------------------------------------------------
    # Base chains
    # ------------------------------------------------------------------

    def add_video_base(self, video_pad: str, overlay_pad: str) -> None:
        """Cover-scale the source video to the canvas, then lay the static PNG on top."""
        w, h = self.composition.width, self.composition.height
        self.add(
            f"[{video_pad}]scale={w}:{h}:force_original_aspect_ratio=increase,crop={w}:{h},setsar=1[vid]",
            "vid",
        )
        self.add(f"[vid][{overlay_pad}]overlay=0:0[comp]", "comp")

    def set_still_base(self, frame_pad: str) -> None:
        self._current = frame_pad

    # ------------------------------------------------------------------
    # Overlay variants
    # ------------------------------------------------------------------

    def apply_overlays(self, *, lit_pad: Optional[str] = None) -> None:
        for overlay in sorted(self.composition.overlays, key=lambda o: o.stage):
            handler = self._dispatch[type(overlay)]
            if isinstance(overlay, WipeBlendOverlay):
                if lit_pad is None:
                    continue
                handler(overlay, lit_pad)
            else:
                handler(overlay)

    def _add_wipe_blend(self, overlay: WipeBlendOverlay, lit_pad: str) -> None:
        dur = format_seconds(self.composition.duration)
        # Uppercase T is the timestamp inside blend expressions.
        blend = f"blend=all_expr='if(lt(X\\,W*T/{dur})\\,B\\,A)'"
        region = overlay.region
        if region is None:
            self.add(f"[{self._current}][{lit_pad}]{blend}[blended]", "blended")
            return

        # Blend only inside the strip, then put it back onto the dim frame.
        crop = f"crop={region.w}:{region.h}:{region.x}:{region.y}"
        self.add(f"[{self._current}]split=2[base][dimsrc]", "base")
        self.add(f"[dimsrc]{crop}[dimcrop]", "dimcrop")
        self.add(f"[{lit_pad}]{crop}[litcrop]", "litcrop")
        self.add(f"[dimcrop][litcrop]{blend}[waveblend]", "waveblend")
        self.add(f"[base][waveblend]overlay={region.x}:{region.y}[blended]", "blended")

    def _add_progress_bar(self, overlay: ProgressBarOverlay) -> None:
        # drawbox's "t" is thickness, so the bar is a scaled color source instead.
        canvas = self._current
        dur = format_seconds(self.composition.duration)
        fps = self.composition.fps
        self.add(f"color=c={overlay.color}:s={overlay.w}x{overlay.h}:d={dur}:r={fps}[barsrc]", "barsrc")
        self.add(
            f"[barsrc]scale=w='max(2\\,trunc({overlay.w}*t/{dur}/2)*2)':h={overlay.h}"
            f":eval=frame:flags=fast_bilinear[bar]",
            "bar",
        )
        self.add(f"[{canvas}][bar]overlay={overlay.x}:{overlay.y}:eval=frame:shortest=1[withbar]", "withbar")

    def _add_timer(self, overlay: TimerOverlay) -> None:
        self.add(
            f"[{self._current}]drawtext=fontfile='{overlay.font_path}':text='{TIMER_TEXT_EXPR}'"
            f":fontsize={overlay.font_size}:fontcolor={overlay.color}@{overlay.opacity:g}"
            f":x={overlay.x}:y={overlay.y}[withtimer]",
            "withtimer",
        )

    def add_sharpen(self) -> None:
        self.add(f"[{self._current}]{SHARPEN_FILTER}[final]", "final")


def _build(builder: FilterGraphBuilder, lit_pad: Optional[str]) -> tuple[str, str]:
    builder.apply_overlays(lit_pad=lit_pad)
    if builder.composition.sharpen:
        builder.add_sharpen()
    return builder.render(), builder.current


def build_video_graph(composition: Composition, video_pad: str = "0:v", overlay_pad: str = "1:v") -> tuple[str, str]:
    """Graph for a video source with a static overlay PNG.

    Returns (filter_complex, output pad label).
    """
    builder = FilterGraphBuilder(composition)
    builder.add_video_base(video_pad, overlay_pad)
    return _build(builder, lit_pad=None)


def build_still_graph(composition: Composition, frame_pad: str = "0:v", lit_pad: Optional[str] = None) -> tuple[str, str]:
    """Graph for looped still frame(s); ``lit_pad`` enables the wipe blend."""
    builder = FilterGraphBuilder(composition)
    builder.set_still_base(frame_pad)
    return _build(builder, lit_pad=lit_pad)
