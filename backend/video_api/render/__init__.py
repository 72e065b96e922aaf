from video_api.render.commands import build_gif_command, build_overlay_export_command, build_podcast_command
from video_api.render.compositor import Compositor, parse_elapsed
from video_api.render.filter_graph import Composition, build_still_graph, build_video_graph
from video_api.render.overlays import (
    ProgressBarOverlay,
    Region,
    TimerOverlay,
    WipeBlendOverlay,
    progress_bar_overlay,
    timer_overlay,
    wipe_blend_overlay,
)

__all__ = [
    "Composition",
    "Compositor",
    "ProgressBarOverlay",
    "Region",
    "TimerOverlay",
    "WipeBlendOverlay",
    "build_gif_command",
    "build_overlay_export_command",
    "build_podcast_command",
    "build_still_graph",
    "build_video_graph",
    "parse_elapsed",
    "progress_bar_overlay",
    "timer_overlay",
    "wipe_blend_overlay",
]
