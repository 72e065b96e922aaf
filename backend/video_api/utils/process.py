from typing import Any


def kill_process(proc: Any) -> bool:
    """SIGKILL a subprocess if it is still running. Returns True if a signal was sent."""
    if proc is None or getattr(proc, "returncode", None) is not None:
        return False
    try:
        proc.kill()
        return True
    except ProcessLookupError:
        return False
