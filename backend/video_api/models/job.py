import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

CANCELLED_BY_USER = "Cancelled by user"
CANCELLED_ABANDONED = "Cancelled (abandoned)"


class JobKind(str, Enum):
    """Export class. Governs retention and concurrency gating."""

    OVERLAY = "overlay"
    PODCAST = "podcast"


class JobStatus(str, Enum):
    DOWNLOADING = "downloading"
    RENDERING = "rendering"
    COMPOSITING = "compositing"
    READY = "ready"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.READY, JobStatus.ERROR)


# Non-terminal forward edges. Any non-terminal state may also go to ERROR.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.DOWNLOADING: frozenset({JobStatus.COMPOSITING, JobStatus.RENDERING}),
    JobStatus.RENDERING: frozenset({JobStatus.COMPOSITING, JobStatus.READY}),
    JobStatus.COMPOSITING: frozenset({JobStatus.READY}),
    JobStatus.READY: frozenset(),
    JobStatus.ERROR: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    if current.is_terminal:
        return False
    if target is JobStatus.ERROR:
        return True
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class Job:
    """One export request tracked from creation to a terminal state.

    Only ``JobRegistry`` mutates these. ``process`` is a back-reference to the
    running transcoder, used for cancellation only; it is cleared when the
    process exits or is killed.
    """

    id: str
    kind: JobKind
    options: Any
    status: JobStatus = JobStatus.DOWNLOADING
    progress: float = 0.0
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    last_polled_at: Optional[float] = None
    finished_at: Optional[float] = None
    output_path: Optional[Path] = None
    source_path: Optional[Path] = None
    temp_paths: list[Path] = field(default_factory=list)
    process: Any = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def owned_paths(self) -> list[Path]:
        """Files removed when this job is cancelled or fails."""
        paths = list(self.temp_paths)
        if self.source_path is not None:
            paths.append(self.source_path)
        if self.output_path is not None:
            paths.append(self.output_path)
        return paths

    def to_dict(self) -> dict[str, Any]:
        """Status payload returned to pollers."""
        return {
            "status": self.status.value,
            "progress": round(self.progress, 4),
            "url": self.result_url,
            "error": self.error_message,
        }

    def __repr__(self) -> str:
        return f"<Job {self.id} {self.kind.value} ({self.status.value} {self.progress:.2f})>"
