"""Media file information utilities using FFprobe."""

import asyncio
import json
from pathlib import Path


async def _run_ffprobe(ffprobe_path: str, file_path: str | Path, *args: str) -> dict:
    """Run ffprobe and return parsed JSON."""
    cmd = [
        ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        str(file_path),
    ]
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {stderr.decode('utf-8', errors='replace')}")

    try:
        return json.loads(stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")


async def get_media_duration(ffprobe_path: str, file_path: str | Path) -> float:
    """
    Get media file duration in seconds.

    Args:
        ffprobe_path: ffprobe executable
        file_path: Path to media file

    Returns:
        Duration in seconds

    Raises:
        RuntimeError: If ffprobe fails or duration not found
    """
    data = await _run_ffprobe(ffprobe_path, file_path, "-show_format")
    format_info = data.get("format", {})

    if "duration" not in format_info:
        raise RuntimeError(f"Duration not found in: {file_path}")

    return float(format_info["duration"])
