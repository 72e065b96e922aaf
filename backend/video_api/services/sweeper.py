"""Periodic housekeeping.

Each policy is a separate ``SweepRule`` working over the shared stores; the
``Sweeper`` runs them in sequence on a timer. A rule that raises is logged and
does not stop the others.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from video_api.config import Settings
from video_api.models.job import CANCELLED_ABANDONED, JobKind
from video_api.services.asset_store import AssetStore
from video_api.services.job_registry import JobRegistry
from video_api.services.source_resolver import SourceResolver

logger = logging.getLogger(__name__)


@dataclass
class SweepContext:
    settings: Settings
    store: AssetStore
    registry: JobRegistry
    resolver: SourceResolver

    def output_retention(self, kind: Optional[JobKind]) -> float:
        if kind is JobKind.PODCAST:
            return self.settings.podcast_output_retention_s
        return self.settings.output_retention_s

    def active_paths(self) -> set:
        """Files owned by jobs that are still running."""
        paths = set()
        for job in self.registry:
            if not job.is_terminal:
                paths.update(job.owned_paths())
        return paths


class SweepRule(Protocol):
    name: str

    def apply(self, ctx: SweepContext, now: float) -> int:
        """Run the policy once. Returns how many things it removed."""
        ...


# =============================================================================
# Rules
# =============================================================================


class OutputRetentionRule:
    name = "output_retention"

    def apply(self, ctx: SweepContext, now: float) -> int:
        removed = 0
        for path in ctx.store.files_in(ctx.store.output_dir):
            job = ctx.registry.find(path.stem)
            if job is not None and not job.is_terminal:
                continue
            retention = ctx.output_retention(job.kind if job else None)
            try:
                age = now - path.stat().st_mtime
            except FileNotFoundError:
                continue
            if age > retention and ctx.store.remove(path):
                removed += 1
                logger.info(f"[SWEEP] Deleted output {path.name} ({age / 60:.0f} min old)")
        return removed


class TempRetentionRule:
    name = "temp_retention"

    def apply(self, ctx: SweepContext, now: float) -> int:
        active = ctx.active_paths()
        cutoff = now - ctx.settings.temp_retention_s
        removed = 0
        for path in ctx.store.files_older_than(ctx.store.temp_dir, cutoff):
            if path in active:
                continue
            if ctx.store.remove(path):
                removed += 1
                logger.info(f"[SWEEP] Deleted temp file {path.name}")
        return removed


class CacheTrimRule:
    name = "cache_trim"

    def apply(self, ctx: SweepContext, now: float) -> int:
        return len(ctx.resolver.trim_cache())


class JobPurgeRule:
    name = "job_purge"

    def apply(self, ctx: SweepContext, now: float) -> int:
        expired = [
            job.id
            for job in ctx.registry
            if job.is_terminal
            and job.finished_at is not None
            and now - job.finished_at > ctx.output_retention(job.kind)
        ]
        for job_id in expired:
            ctx.registry.remove(job_id)
            logger.info(f"[SWEEP] Purged job record {job_id}")
        return len(expired)


class AbandonedJobRule:
    """Cancel podcast renders whose client stopped polling. Frees the render slot."""

    name = "abandoned_jobs"

    def apply(self, ctx: SweepContext, now: float) -> int:
        timeout = ctx.settings.abandon_timeout_s
        abandoned = [
            job
            for job in ctx.registry
            if job.kind is JobKind.PODCAST
            and not job.is_terminal
            and now - (job.last_polled_at or job.created_at) > timeout
        ]
        for job in abandoned:
            idle = now - (job.last_polled_at or job.created_at)
            logger.warning(f"[SWEEP] Podcast job {job.id} abandoned (no poll for {idle:.0f}s), cancelling")
            ctx.registry.cancel(job.id, CANCELLED_ABANDONED)
        return len(abandoned)


class UploadSessionPurgeRule:
    name = "upload_sessions"

    def apply(self, ctx: SweepContext, now: float) -> int:
        return len(ctx.registry.uploads.purge_stale(ctx.settings.temp_retention_s, now=now))


DEFAULT_RULES: tuple[SweepRule, ...] = (
    AbandonedJobRule(),
    OutputRetentionRule(),
    TempRetentionRule(),
    CacheTrimRule(),
    JobPurgeRule(),
    UploadSessionPurgeRule(),
)


# =============================================================================
# Scheduler
# =============================================================================


class Sweeper:
    def __init__(self, ctx: SweepContext, rules: Sequence[SweepRule] = DEFAULT_RULES):
        self.ctx = ctx
        self.rules = list(rules)
        self.interval = ctx.settings.sweep_interval_s
        self._task: Optional[asyncio.Task] = None

    def startup_wipe(self) -> None:
        """Clear temp and output areas left behind by a previous process."""
        self.ctx.store.wipe()

    def run_once(self, now: Optional[float] = None) -> dict[str, int]:
        now = time.time() if now is None else now
        results: dict[str, int] = {}
        for rule in self.rules:
            try:
                results[rule.name] = rule.apply(self.ctx, now)
            except Exception:
                logger.exception(f"[SWEEP] Rule {rule.name} failed")
                results[rule.name] = 0
        if any(results.values()):
            logger.info(f"[SWEEP] {results}")
        return results

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.run_once()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="sweeper")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
