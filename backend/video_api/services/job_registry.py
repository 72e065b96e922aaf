"""In-memory job registry and state machine.

``JobRegistry`` is the only writer of ``Job`` and ``UploadSession`` state.
Every method here is synchronous: each call completes without yielding to
the event loop, so multi-step updates (check the podcast slot, create the
job, take the slot, consume the upload) cannot interleave with another
request.
"""

import logging
import secrets
import time
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from video_api.exceptions import JobNotFoundError, PodcastRenderBusyError
from video_api.models.job import (
    CANCELLED_BY_USER,
    Job,
    JobKind,
    JobStatus,
    can_transition,
)
from video_api.services.asset_store import AssetStore
from video_api.services.upload_sessions import UploadSessionManager
from video_api.utils.process import kill_process

logger = logging.getLogger(__name__)


class JobRegistry:
    def __init__(self, store: AssetStore, uploads: UploadSessionManager):
        self.store = store
        self.uploads = uploads
        self._jobs: dict[str, Job] = {}
        self._podcast_slot: Optional[str] = None

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(list(self._jobs.values()))

    # =========================================================================
    # Lookup
    # =========================================================================

    def find(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def touch(self, job_id: str) -> Job:
        """Record a status poll. Feeds abandonment detection."""
        job = self.get(job_id)
        job.last_polled_at = time.time()
        return job

    # =========================================================================
    # Creation
    # =========================================================================

    def new_id(self) -> str:
        job_id = secrets.token_hex(8)
        while job_id in self._jobs:
            job_id = secrets.token_hex(8)
        return job_id

    def create(self, kind: JobKind, options: Any, status: JobStatus = JobStatus.DOWNLOADING) -> Job:
        job_id = self.new_id()
        now = time.time()
        job = Job(id=job_id, kind=kind, options=options, status=status, created_at=now, last_polled_at=now)
        job.output_path = self.store.output_path(job_id)
        self._jobs[job_id] = job
        logger.info(f"[JOBS] Created {job!r}")
        return job

    def admit_podcast(
        self,
        options: Any,
        session_id: str,
        resolve_upload: Optional[Callable[[str], Path]] = None,
    ) -> Job:
        """Create a podcast job from a completed upload, taking the single render slot.

        ``resolve_upload`` turns the session into the job's source file; it
        must not await. Defaults to consuming the session directly.

        Raises:
            PodcastRenderBusyError: another podcast job holds the slot. No job
                is created and the upload session is left untouched.
            UploadSessionNotFoundError / UploadIncompleteError: the session
                cannot be consumed.
        """
        self.check_podcast_slot()
        self.uploads.check_ready(session_id)

        job = self.create(JobKind.PODCAST, options, status=JobStatus.RENDERING)
        self._podcast_slot = job.id
        job.source_path = (resolve_upload or self.uploads.consume)(session_id)
        return job

    # =========================================================================
    # Podcast slot
    # =========================================================================

    @property
    def podcast_slot_holder(self) -> Optional[str]:
        return self._podcast_slot

    @property
    def podcast_busy(self) -> bool:
        return self._podcast_slot is not None

    def check_podcast_slot(self) -> None:
        if self._podcast_slot is not None:
            raise PodcastRenderBusyError()

    def release_podcast_slot(self, job_id: str) -> bool:
        if self._podcast_slot != job_id:
            return False
        self._podcast_slot = None
        logger.info(f"[PODCAST] Render slot released by {job_id}")
        return True

    # =========================================================================
    # Transitions
    # =========================================================================

    def set_status(self, job: Job, status: JobStatus) -> bool:
        if not can_transition(job.status, status):
            logger.debug(f"[JOBS] Ignored transition {job.status.value} -> {status.value} for {job.id}")
            return False
        job.status = status
        return True

    def update_progress(self, job: Job, progress: float) -> float:
        """Raise progress to ``progress``; lower or late values are ignored."""
        if job.is_terminal:
            return job.progress
        job.progress = max(job.progress, min(1.0, max(0.0, progress)))
        return job.progress

    def complete(self, job: Job, result_url: str) -> bool:
        if not self.set_status(job, JobStatus.READY):
            return False
        job.progress = 1.0
        job.result_url = result_url
        job.finished_at = time.time()
        job.process = None
        self.release_podcast_slot(job.id)
        logger.info(f"[JOBS] {job.id} ready -> {result_url}")
        return True

    def fail(self, job: Job, message: str) -> bool:
        if not self.set_status(job, JobStatus.ERROR):
            return False
        job.error_message = message
        job.finished_at = time.time()
        job.process = None
        self.release_podcast_slot(job.id)
        logger.warning(f"[JOBS] {job.id} failed: {message}")
        return True

    def cancel(self, job_id: str, message: str = CANCELLED_BY_USER) -> Job:
        """Kill the job's subprocess, mark it failed and delete its files.

        Cancelling a terminal job changes nothing.
        """
        job = self.get(job_id)
        if job.is_terminal:
            return job
        proc = job.process
        if kill_process(proc):
            logger.info(f"[JOBS] Killed ffmpeg pid={getattr(proc, 'pid', '?')} for {job.id}")
        self.fail(job, message)
        self.store.remove_all(job.owned_paths())
        return job

    # =========================================================================
    # Subprocess back-reference
    # =========================================================================

    def attach_process(self, job: Job, proc: Any) -> None:
        """Remember the running subprocess; kill it at once if the job already ended."""
        if job.is_terminal:
            kill_process(proc)
            return
        job.process = proc

    def detach_process(self, job: Job, proc: Any) -> None:
        if job.process is proc:
            job.process = None

    # =========================================================================
    # Removal
    # =========================================================================

    def remove(self, job_id: str) -> Optional[Job]:
        """Forget a finished job and release its slot. Running jobs are kept."""
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if not job.is_terminal:
            logger.warning(f"[JOBS] Refused to remove {job.id} while {job.status.value}")
            return None
        del self._jobs[job_id]
        self.release_podcast_slot(job_id)
        return job
