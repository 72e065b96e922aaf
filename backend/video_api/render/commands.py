"""ffmpeg argument lists for each export kind.

Builders only assemble argv; running them is ``Compositor``'s job, so tests
can assert on the exact command without a transcoder installed.
"""

from pathlib import Path
from typing import Optional

from video_api.config import Settings
from video_api.render.filter_graph import Composition, build_still_graph, build_video_graph, format_seconds

# Containers whose audio can be muxed into MP4 without re-encoding.
COPYABLE_AUDIO_EXTS = frozenset({".m4a", ".aac", ".mp4"})


def can_copy_audio(audio_path: str | Path) -> bool:
    return Path(audio_path).suffix.lower() in COPYABLE_AUDIO_EXTS


def _map_pad(label: str) -> str:
    # Stream specifiers ("0:v") are mapped bare; graph pads need brackets.
    return label if ":" in label else f"[{label}]"


def build_overlay_export_command(
    settings: Settings,
    video_path: str | Path,
    overlay_path: str | Path,
    output_path: str | Path,
    composition: Composition,
    with_audio: bool,
) -> list[str]:
    """Source video + overlay PNG (+ animated bar/timer) -> H.264 MP4."""
    filter_complex, out_label = build_video_graph(composition)
    audio_args = (
        ["-map", "0:a?", "-c:a", "aac", "-b:a", settings.overlay_audio_bitrate]
        if with_audio
        else ["-an"]
    )
    return [
        settings.ffmpeg_path,
        "-y",
        "-i", str(video_path),
        "-i", str(overlay_path),
        "-filter_complex", filter_complex,
        "-map", _map_pad(out_label),
        *audio_args,
        "-c:v", "libx264",
        "-preset", "fast",
        "-crf", str(settings.overlay_crf),
        "-t", format_seconds(composition.duration),
        "-movflags", "+faststart",
        "-pix_fmt", "yuv420p",
        str(output_path),
    ]


def build_podcast_command(
    settings: Settings,
    audio_path: str | Path,
    frame_path: str | Path,
    output_path: str | Path,
    composition: Composition,
    frame_lit_path: Optional[str | Path] = None,
) -> list[str]:
    """Looped still frame(s) + audio track -> MP4 with the wipe/bar/timer graph."""
    fps = str(composition.fps)
    cmd = [settings.ffmpeg_path, "-y", "-loop", "1", "-framerate", fps, "-i", str(frame_path)]
    if frame_lit_path is not None:
        cmd += ["-loop", "1", "-framerate", fps, "-i", str(frame_lit_path)]
        audio_index = 2
        lit_pad = "1:v"
    else:
        audio_index = 1
        lit_pad = None
    cmd += ["-i", str(audio_path)]

    filter_complex, out_label = build_still_graph(composition, frame_pad="0:v", lit_pad=lit_pad)
    if filter_complex:
        cmd += ["-filter_complex", filter_complex]
    cmd += ["-map", _map_pad(out_label), "-map", f"{audio_index}:a"]

    copy_audio = can_copy_audio(audio_path)
    cmd += [
        "-c:v", "libx264",
        "-preset", "fast",
        "-tune", "stillimage",
        "-crf", str(settings.podcast_crf),
        "-c:a", "copy" if copy_audio else "aac",
    ]
    if not copy_audio:
        cmd += ["-b:a", settings.podcast_audio_bitrate]
    cmd += [
        "-t", format_seconds(composition.duration),
        "-movflags", "+faststart",
        "-pix_fmt", "yuv420p",
        "-threads", "0",
        "-shortest",
        str(output_path),
    ]
    return cmd


def build_gif_command(
    settings: Settings,
    gif_path: str | Path,
    overlay_path: str | Path,
    output_path: str | Path,
    composition: Composition,
) -> list[str]:
    """Loop an animated GIF to the duration and lay the overlay PNG on it."""
    filter_complex, out_label = build_video_graph(composition)
    return [
        settings.ffmpeg_path,
        "-y",
        "-ignore_loop", "0",
        "-i", str(gif_path),
        "-i", str(overlay_path),
        "-filter_complex", filter_complex,
        "-map", _map_pad(out_label),
        "-an",
        "-c:v", "libx264",
        "-preset", "fast",
        "-crf", str(settings.overlay_crf),
        "-t", format_seconds(composition.duration),
        "-movflags", "+faststart",
        "-pix_fmt", "yuv420p",
        "-r", str(composition.fps),
        str(output_path),
    ]
