"""Input media resolution for export jobs.

Remote videos are downloaded with yt-dlp into the raw source cache, one slot
per ``(source id, audio flag)``. The cache is bounded by entry count and
evicts the least recently modified slots; a cache hit touches its slot.
"""

import asyncio
import contextlib
import logging
import os
from pathlib import Path
from typing import AsyncIterator

from video_api.config import Settings
from video_api.exceptions import SourceDownloadError
from video_api.services.asset_store import AssetStore
from video_api.services.upload_sessions import UploadSessionManager
from video_api.utils.process import kill_process

logger = logging.getLogger(__name__)

MIN_CACHED_BYTES = 1000
FORMAT_WITH_AUDIO = "bv*[height<=1080]+ba/b[height<=1080]"
FORMAT_VIDEO_ONLY = "bv*[height<=1080]/b[height<=1080]"
CACHE_SUFFIX = ".mp4"


def cache_slot_name(source_id: str, include_audio: bool) -> str:
    return f"{source_id}{'' if include_audio else '_noaudio'}{CACHE_SUFFIX}"


class SourceResolver:
    def __init__(self, settings: Settings, store: AssetStore, uploads: UploadSessionManager):
        self.settings = settings
        self.store = store
        self.uploads = uploads
        self.max_entries = settings.max_cached_sources
        # Only slots with a resolve in flight have an entry.
        self._slot_locks: dict[str, asyncio.Lock] = {}
        self._slot_users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def _slot_lock(self, slot: str) -> AsyncIterator[None]:
        lock = self._slot_locks.setdefault(slot, asyncio.Lock())
        self._slot_users[slot] = self._slot_users.get(slot, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._slot_users[slot] -= 1
            if self._slot_users[slot] == 0:
                del self._slot_users[slot]
                del self._slot_locks[slot]

    @property
    def active_slots(self) -> int:
        return len(self._slot_locks)

    @staticmethod
    def _is_usable(path: Path) -> bool:
        try:
            return path.stat().st_size > MIN_CACHED_BYTES
        except FileNotFoundError:
            return False

    def build_download_command(self, source_id: str, include_audio: bool, target: Path) -> list[str]:
        settings = self.settings
        cmd = [
            settings.yt_dlp_path,
            "--no-playlist",
            "--no-warnings",
            "-f", FORMAT_WITH_AUDIO if include_audio else FORMAT_VIDEO_ONLY,
            "--merge-output-format", "mp4",
        ]
        # Bare names are resolved on PATH by yt-dlp itself.
        if os.sep in settings.ffmpeg_path:
            cmd += ["--ffmpeg-location", settings.ffmpeg_path]
        cmd += ["-o", str(target), settings.source_url_template.format(source_id=source_id)]
        return cmd

    async def resolve_remote(self, source_id: str, include_audio: bool) -> Path:
        """Return a local file for the remote source, downloading on a cache miss.

        Raises:
            SourceDownloadError: downloader failed or timed out. Any partial
                file is removed first.
        """
        slot = cache_slot_name(source_id, include_audio)
        target = self.store.cache_path(slot)

        async with self._slot_lock(slot):
            if self._is_usable(target):
                os.utime(target)
                logger.info(f"[CACHE] Hit: {slot}")
                return target

            self.store.remove(target)
            target.parent.mkdir(parents=True, exist_ok=True)
            await self._download(source_id, include_audio, target)

        self.trim_cache()
        return target

    async def _download(self, source_id: str, include_audio: bool, target: Path) -> None:
        cmd = self.build_download_command(source_id, include_audio, target)
        logger.info(f"[CACHE] Downloading {source_id} (audio={include_audio})")
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.settings.downloader_timeout_s)
        except asyncio.TimeoutError:
            if kill_process(proc):
                await proc.wait()
            self.store.remove(target)
            raise SourceDownloadError(
                f"yt-dlp timed out after {self.settings.downloader_timeout_s:g}s for {source_id}"
            )
        except asyncio.CancelledError:
            kill_process(proc)
            self.store.remove(target)
            raise

        if proc.returncode != 0 or not self._is_usable(target):
            detail = stderr.decode("utf-8", errors="replace").strip()[-500:]
            logger.error(f"[CACHE] yt-dlp failed for {source_id} (code {proc.returncode}): {detail}")
            self.store.remove(target)
            raise SourceDownloadError(f"yt-dlp failed (code {proc.returncode}): {detail}")

        size_mb = target.stat().st_size / (1024 * 1024)
        logger.info(f"[CACHE] Downloaded {target.name} ({size_mb:.1f} MB)")

    def resolve_upload(self, session_id: str) -> Path:
        """Take over a completed upload as a job source. Consumes the session."""
        return self.uploads.consume(session_id)

    def cached_entries(self) -> list[Path]:
        """Cache slots, most recently modified first."""
        entries = []
        for path in self.store.files_in(self.store.cache_dir):
            if path.suffix != CACHE_SUFFIX:
                continue
            try:
                entries.append((path.stat().st_mtime, path))
            except FileNotFoundError:
                continue
        entries.sort(key=lambda item: item[0], reverse=True)
        return [path for _, path in entries]

    def trim_cache(self) -> list[Path]:
        """Delete the least recently modified slots beyond ``max_entries``."""
        evicted = []
        for path in self.cached_entries()[self.max_entries:]:
            if path.name in self._slot_locks:
                continue
            if self.store.remove(path):
                evicted.append(path)
                logger.info(f"[CACHE] Evicted {path.name}")
        return evicted
