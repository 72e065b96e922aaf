"""Runs one ffmpeg command and reports its progress.

ffmpeg prints ``time=HH:MM:SS.xx`` status lines on stderr, separated by
carriage returns rather than newlines, so stderr is read in raw chunks and
scanned with a small carry-over buffer.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from video_api.exceptions import TranscodeError
from video_api.utils.process import kill_process

logger = logging.getLogger(__name__)

TIME_MARKER_RE = re.compile(r"time=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
# Longest plausible partial marker kept between reads.
_CARRY_CHARS = 64
DIAGNOSTIC_TAIL_CHARS = 800
MAX_RUNNING_PROGRESS = 0.99

ProgressCallback = Callable[[float], None]
ProcessHook = Callable[[Any], None]


def parse_elapsed(text: str) -> Optional[float]:
    """Return the last ``time=`` marker in ``text`` as seconds, or None."""
    last = None
    for match in TIME_MARKER_RE.finditer(text):
        hours, minutes, seconds = match.groups()
        last = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    return last


class Compositor:
    """Spawns ffmpeg, streams stderr for progress, and checks the result."""

    async def run(
        self,
        cmd: Sequence[str],
        *,
        duration: float,
        output_path: str | Path,
        on_progress: Optional[ProgressCallback] = None,
        on_spawn: Optional[ProcessHook] = None,
        on_exit: Optional[ProcessHook] = None,
    ) -> Path:
        """Run ``cmd`` to completion.

        Progress is reported as a 0..0.99 fraction of ``duration``; reaching
        1.0 is the caller's decision once the output is confirmed.

        Raises:
            TranscodeError: non-zero exit, or exit 0 without an output file.
        """
        output = Path(output_path)
        logger.info(f"[FFMPEG] Starting: {' '.join(cmd[:3])} ... -> {output.name}")
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        if on_spawn is not None:
            on_spawn(proc)

        tail = ""
        carry = ""
        last_fraction = 0.0
        try:
            while True:
                chunk = await proc.stderr.read(4096)
                if not chunk:
                    break
                text = chunk.decode("utf-8", errors="replace")
                tail = (tail + text)[-DIAGNOSTIC_TAIL_CHARS:]

                elapsed = parse_elapsed(carry + text)
                carry = (carry + text)[-_CARRY_CHARS:]
                if elapsed is None or on_progress is None or duration <= 0:
                    continue
                fraction = min(elapsed / duration, MAX_RUNNING_PROGRESS)
                if fraction > last_fraction:
                    last_fraction = fraction
                    on_progress(fraction)
            returncode = await proc.wait()
        except asyncio.CancelledError:
            kill_process(proc)
            raise
        finally:
            if on_exit is not None:
                on_exit(proc)

        if returncode != 0:
            logger.error(f"[FFMPEG] Exited with code {returncode}: {tail[-500:]}")
            raise TranscodeError(returncode, tail)
        if not output.exists():
            raise TranscodeError(returncode, f"output file missing: {output.name}")

        logger.info(f"[FFMPEG] Finished: {output.name}")
        return output
