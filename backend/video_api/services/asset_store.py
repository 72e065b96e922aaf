import logging
import shutil
from pathlib import Path
from typing import Iterable, Iterator

from video_api.config import Settings

logger = logging.getLogger(__name__)


class AssetStore:
    """On-disk areas: raw source cache, temp staging and published outputs."""

    def __init__(self, settings: Settings) -> None:
        self.cache_dir = settings.cache_dir
        self.temp_dir = settings.temp_dir
        self.output_dir = settings.output_dir
        self.output_url_prefix = settings.output_url_prefix.rstrip("/")

    def ensure_dirs(self) -> None:
        for path in (self.cache_dir, self.temp_dir, self.output_dir):
            path.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def cache_path(self, name: str) -> Path:
        return self.cache_dir / name

    def temp_path(self, name: str) -> Path:
        return self.temp_dir / name

    def output_path(self, job_id: str) -> Path:
        return self.output_dir / f"{job_id}.mp4"

    def output_url(self, job_id: str) -> str:
        return f"{self.output_url_prefix}/{job_id}.mp4"

    def published_file(self, filename: str) -> Path | None:
        """Resolve a published output by name; None unless it is a plain file in the output area."""
        if "/" in filename or "\\" in filename or filename.startswith("."):
            return None
        path = self.output_dir / filename
        return path if path.is_file() else None

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    @staticmethod
    def remove(path: Path | None) -> bool:
        """Delete a file if present. Returns True if something was removed."""
        if path is None:
            return False
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"[CLEANUP] Could not delete {path}: {e}")
            return False

    def remove_all(self, paths: Iterable[Path]) -> int:
        return sum(1 for path in paths if self.remove(path))

    def wipe(self) -> None:
        """Empty the temp and output areas. The raw source cache survives restarts."""
        for area in (self.temp_dir, self.output_dir):
            if area.exists():
                shutil.rmtree(area, ignore_errors=True)
            area.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[CLEANUP] Wiped {self.temp_dir} and {self.output_dir}")

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    @staticmethod
    def files_in(area: Path) -> Iterator[Path]:
        if not area.exists():
            return
        for entry in area.iterdir():
            if entry.is_file():
                yield entry

    def files_older_than(self, area: Path, cutoff: float) -> list[Path]:
        """Files in ``area`` whose mtime is before ``cutoff`` (epoch seconds)."""
        old = []
        for path in self.files_in(area):
            try:
                if path.stat().st_mtime < cutoff:
                    old.append(path)
            except FileNotFoundError:
                continue
        return old
