"""Export orchestration.

Request handlers call ``start_*``; those validate, register the job and
schedule its processing as a background task, then return immediately.
Every failure inside a background task ends as the job's ``error`` state.
"""

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Any, Coroutine, Optional

from video_api.config import Settings
from video_api.exceptions import VideoApiError
from video_api.models.job import CANCELLED_BY_USER, Job, JobKind, JobStatus
from video_api.render.commands import build_gif_command, build_overlay_export_command, build_podcast_command
from video_api.render.compositor import Compositor
from video_api.render.filter_graph import Composition
from video_api.render.images import decode_png_data_url
from video_api.render.overlays import progress_bar_overlay, timer_overlay, wipe_blend_overlay
from video_api.schemas.export import ExportRequest, GifExportRequest, PodcastExportRequest
from video_api.services.asset_store import AssetStore
from video_api.services.job_registry import JobRegistry
from video_api.services.remote_fetch import RemoteFetcher
from video_api.services.source_resolver import SourceResolver
from video_api.utils.media_info import get_media_duration
from video_api.utils.process import kill_process

logger = logging.getLogger(__name__)

OVERLAY_TIMER_FONT_SIZE = 27
PODCAST_TIMER_FONT_SIZE = 24
GIF_MAX_REDIRECTS = 3

# Overlay job progress milestones
OVERLAY_DOWNLOAD_START = 0.1
OVERLAY_DOWNLOAD_DONE = 0.6
OVERLAY_COMPOSITE_START = 0.65
OVERLAY_COMPOSITE_SPAN = 0.3

# Podcast job progress milestones
PODCAST_RENDER_START = 0.05
PODCAST_RENDER_SPAN = 0.9
PODCAST_RENDER_DONE = 0.97


def _capped(value: Optional[float], default: float, cap: float) -> float:
    return min(value or default, cap)


class ExportService:
    def __init__(
        self,
        settings: Settings,
        store: AssetStore,
        registry: JobRegistry,
        resolver: SourceResolver,
        fetcher: RemoteFetcher,
        compositor: Optional[Compositor] = None,
    ):
        self.settings = settings
        self.store = store
        self.registry = registry
        self.resolver = resolver
        self.fetcher = fetcher
        self.compositor = compositor or Compositor()
        self._tasks: set[asyncio.Task] = set()
        if settings.overlay_max_concurrency > 0:
            self._overlay_gate: Any = asyncio.Semaphore(settings.overlay_max_concurrency)
        else:
            self._overlay_gate = contextlib.nullcontext()

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    # =========================================================================
    # Overlay export
    # =========================================================================

    def start_overlay_export(self, request: ExportRequest) -> Job:
        overlay_png = decode_png_data_url(request.overlay_png)

        job = self.registry.create(JobKind.OVERLAY, request)
        overlay_path = self.store.temp_path(f"{job.id}_overlay.png")
        overlay_path.write_bytes(overlay_png)
        job.temp_paths.append(overlay_path)
        self.registry.update_progress(job, 0.05)

        duration = _capped(
            request.duration,
            self.settings.default_overlay_duration_s,
            self.settings.max_overlay_duration_s,
        )
        logger.info(
            f"[EXPORT] Job {job.id} created for {request.video_id} "
            f"({duration:g}s, audio={request.with_audio}, "
            f"bar={'yes' if request.progress_bar else 'none'}, accent={request.accent_color or 'none'})"
        )
        self._spawn(self._process_overlay(job, overlay_path, duration), name=f"overlay-{job.id}")
        return job

    def _overlay_composition(self, request: ExportRequest, duration: float) -> Composition:
        overlays = [
            progress_bar_overlay(request.progress_bar, request.accent_color),
            timer_overlay(request.timer_info, self.settings.timer_font_path, OVERLAY_TIMER_FONT_SIZE),
        ]
        return Composition(
            width=request.width,
            height=request.height,
            duration=duration,
            fps=self.settings.overlay_fps,
            overlays=[o for o in overlays if o is not None],
        )

    async def _process_overlay(self, job: Job, overlay_path: Path, duration: float) -> None:
        request: ExportRequest = job.options
        try:
            async with self._overlay_gate:
                self.registry.update_progress(job, OVERLAY_DOWNLOAD_START)
                source = await self.resolver.resolve_remote(request.video_id, request.with_audio)
                self.registry.update_progress(job, OVERLAY_DOWNLOAD_DONE)

                if not self.registry.set_status(job, JobStatus.COMPOSITING):
                    return
                self.registry.update_progress(job, OVERLAY_COMPOSITE_START)

                composition = self._overlay_composition(request, duration)
                cmd = build_overlay_export_command(
                    self.settings, source, overlay_path, job.output_path, composition, request.with_audio
                )
                await self._run_ffmpeg(
                    job,
                    cmd,
                    duration,
                    lambda f: self.registry.update_progress(job, OVERLAY_COMPOSITE_START + f * OVERLAY_COMPOSITE_SPAN),
                )
            self._finish(job)
        except asyncio.CancelledError:
            self._fail(job, "Export interrupted")
            raise
        except Exception as e:
            self._fail(job, e)
        finally:
            self.store.remove_all(job.temp_paths)

    # =========================================================================
    # Podcast export
    # =========================================================================

    def start_podcast_export(self, request: PodcastExportRequest) -> Job:
        """Admit a podcast render. Never awaits, so the slot check is atomic."""
        self.registry.check_podcast_slot()
        frame_png = decode_png_data_url(request.frame_png)
        frame_lit_png = decode_png_data_url(request.frame_lit_png) if request.frame_lit_png else None

        job = self.registry.admit_podcast(request, request.session_id, self.resolver.resolve_upload)
        frame_path = self.store.temp_path(f"{job.id}_frame.png")
        lit_path = None
        try:
            job.temp_paths.append(frame_path)
            frame_path.write_bytes(frame_png)
            if frame_lit_png is not None:
                lit_path = self.store.temp_path(f"{job.id}_frame_lit.png")
                job.temp_paths.append(lit_path)
                lit_path.write_bytes(frame_lit_png)
        except OSError as e:
            logger.error(f"[PODCAST] Job {job.id}: could not write frames: {e}")
            self.registry.fail(job, f"Could not write frames: {e}")
            self.store.remove_all(job.owned_paths())
            raise

        logger.info(
            f"[PODCAST] Job {job.id} created from session {request.session_id} "
            f"({request.width}x{request.height}, wipe={'yes' if lit_path else 'no'})"
        )
        self._spawn(self._process_podcast(job, frame_path, lit_path), name=f"podcast-{job.id}")
        return job

    async def _podcast_duration(self, request: PodcastExportRequest, audio_path: Path) -> float:
        duration = request.duration
        if duration is None:
            try:
                duration = await get_media_duration(self.settings.ffprobe_path, audio_path)
            except (RuntimeError, OSError) as e:
                logger.warning(f"[PODCAST] Could not probe duration of {audio_path.name}: {e}")
        return _capped(
            duration,
            self.settings.default_podcast_duration_s,
            self.settings.max_podcast_duration_s,
        )

    def _podcast_composition(self, request: PodcastExportRequest, duration: float, has_lit: bool) -> Composition:
        overlays = [
            wipe_blend_overlay(request.waveform_region, request.width, request.height) if has_lit else None,
            progress_bar_overlay(request.progress_bar, request.accent_color),
            timer_overlay(request.timer_info, self.settings.timer_font_path, PODCAST_TIMER_FONT_SIZE),
        ]
        return Composition(
            width=request.width,
            height=request.height,
            duration=duration,
            fps=self.settings.podcast_fps,
            overlays=[o for o in overlays if o is not None],
            sharpen=True,
        )

    async def _process_podcast(self, job: Job, frame_path: Path, lit_path: Optional[Path]) -> None:
        request: PodcastExportRequest = job.options
        audio_path = job.source_path
        try:
            self.registry.update_progress(job, PODCAST_RENDER_START)
            duration = await self._podcast_duration(request, audio_path)
            if job.is_terminal:
                return

            composition = self._podcast_composition(request, duration, lit_path is not None)
            cmd = build_podcast_command(
                self.settings, audio_path, frame_path, job.output_path, composition, frame_lit_path=lit_path
            )
            logger.info(f"[PODCAST] Job {job.id}: rendering {duration:g}s")
            await self._run_ffmpeg(
                job,
                cmd,
                duration,
                lambda f: self.registry.update_progress(job, PODCAST_RENDER_START + f * PODCAST_RENDER_SPAN),
            )
            self.registry.update_progress(job, PODCAST_RENDER_DONE)
            self._finish(job)
        except asyncio.CancelledError:
            self._fail(job, "Render interrupted")
            raise
        except Exception as e:
            self._fail(job, e)
        finally:
            self.store.remove_all(job.temp_paths)
            self.store.remove(audio_path)

    # =========================================================================
    # Shared job plumbing
    # =========================================================================

    async def _run_ffmpeg(self, job: Job, cmd: list[str], duration: float, on_progress) -> None:
        await self.compositor.run(
            cmd,
            duration=duration,
            output_path=job.output_path,
            on_progress=on_progress,
            on_spawn=lambda proc: self.registry.attach_process(job, proc),
            on_exit=lambda proc: self.registry.detach_process(job, proc),
        )

    def _finish(self, job: Job) -> None:
        if not self.registry.complete(job, self.store.output_url(job.id)):
            # Cancelled while ffmpeg was finishing.
            self.store.remove(job.output_path)

    def _fail(self, job: Job, error: Exception | str) -> None:
        if job.status is JobStatus.READY:
            return
        if job.is_terminal:
            # Cancelled; the killed subprocess may still have left a partial file.
            logger.debug(f"[EXPORT] Job {job.id} already ended ({job.error_message}): {error}")
            self.store.remove(job.output_path)
            return
        if isinstance(error, VideoApiError):
            logger.error(f"[EXPORT] Job {job.id} failed: {error.message}")
            message = error.message
        elif isinstance(error, Exception):
            logger.exception(f"[EXPORT] Job {job.id} crashed")
            message = str(error) or error.__class__.__name__
        else:
            message = error
        self.registry.fail(job, message)
        self.store.remove(job.output_path)

    # =========================================================================
    # Client actions
    # =========================================================================

    def cancel(self, job_id: str) -> Job:
        job = self.registry.cancel(job_id, CANCELLED_BY_USER)
        logger.info(f"[EXPORT] Job {job_id} cancel requested ({job.status.value})")
        return job

    def acknowledge_download(self, job_id: str) -> None:
        """Delete the output and the job record after the download grace period."""
        delay = self.settings.downloaded_delete_delay_s
        self._spawn(self._delete_later(job_id, delay), name=f"downloaded-{job_id}")
        logger.info(f"[PODCAST] Job {job_id}: output deletion queued in {delay:g}s")

    async def _delete_later(self, job_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        job = self.registry.find(job_id)
        if job is not None and not job.is_terminal:
            # Still rendering: the output is not ours to delete and the slot stays taken.
            logger.warning(f"[PODCAST] Job {job_id}: download acknowledged while {job.status.value}, ignored")
            return
        if self.store.remove(self.store.output_path(job_id)):
            logger.info(f"[PODCAST] Job {job_id}: output deleted after download grace period")
        self.registry.remove(job_id)

    # =========================================================================
    # GIF export
    # =========================================================================

    async def export_gif(self, request: GifExportRequest) -> str:
        """Loop a remote GIF under an overlay PNG. Runs inline; returns the output URL."""
        overlay_png = decode_png_data_url(request.overlay_png)
        export_id = self.registry.new_id()
        gif_path = self.store.temp_path(f"{export_id}_gif.gif")
        overlay_path = self.store.temp_path(f"{export_id}_overlay.png")
        output_path = self.store.output_path(export_id)
        overlay_path.write_bytes(overlay_png)

        duration = _capped(
            request.duration,
            self.settings.default_gif_duration_s,
            self.settings.max_gif_duration_s,
        )
        published = False
        try:
            logger.info(f"[EXPORT] GIF {export_id}: downloading {request.gif_url}")
            size = await self.fetcher.download(
                request.gif_url,
                gif_path,
                max_redirects=GIF_MAX_REDIRECTS,
                timeout=self.settings.gif_fetch_timeout_s,
            )
            logger.info(f"[EXPORT] GIF {export_id}: downloaded {size / 1024:.0f} KB")

            composition = Composition(
                width=request.width,
                height=request.height,
                duration=duration,
                fps=self.settings.gif_fps,
            )
            cmd = build_gif_command(self.settings, gif_path, overlay_path, output_path, composition)
            await self.compositor.run(cmd, duration=duration, output_path=output_path)
            published = True
        finally:
            self.store.remove_all([gif_path, overlay_path])
            if not published:
                self.store.remove(output_path)
        return self.store.output_url(export_id)

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self) -> None:
        """Kill running subprocesses and cancel background tasks. No drain."""
        for job in self.registry:
            if not job.is_terminal:
                kill_process(job.process)
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"[EXPORT] Shutdown: cancelled {len(tasks)} background task(s)")
