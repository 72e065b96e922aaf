"""Chunked upload reassembly.

Clients send a large audio file as numbered chunks. Chunks are written to the
session's target file strictly in index order: a chunk that arrives ahead of a
gap is parked in its own part file and appended once every lower index is on
disk. A chunk index counts as received only after its bytes are written, so a
complete session always has a fully assembled target file.

A session id is single-use. Once consumed or discarded, further chunks for it
are rejected until the id's tombstone ages out with the stale-session purge.
"""

import asyncio
import logging
import re
import secrets
import shutil
import time
from pathlib import Path
from typing import Optional

from video_api.config import Settings
from video_api.exceptions import (
    ChunkConflictError,
    InvalidRequestError,
    UploadIncompleteError,
    UploadSessionNotFoundError,
    UploadTooLargeError,
)
from video_api.models.upload import ChunkReceipt, UploadSession
from video_api.services.asset_store import AssetStore

logger = logging.getLogger(__name__)

SESSION_ID_RE = re.compile(r"^[a-f0-9]{16}$")
DEFAULT_EXT = ".m4a"


def sanitize_ext(raw: Optional[str]) -> str:
    """Reduce a client-supplied extension to ``[a-z0-9.]`` with a leading dot."""
    ext = re.sub(r"[^a-z0-9.]", "", (raw or "").lower())
    ext = "." + ext.lstrip(".") if ext.strip(".") else ""
    return ext[:10] if ext else DEFAULT_EXT


def _append_bytes(path: Path, data: bytes) -> None:
    with path.open("ab") as fh:
        fh.write(data)


def _append_file(target: Path, part: Path) -> None:
    with target.open("ab") as dst, part.open("rb") as src:
        shutil.copyfileobj(src, dst)
    part.unlink()


class UploadSessionManager:
    def __init__(self, settings: Settings, store: AssetStore):
        self.store = store
        self.max_upload_bytes = settings.max_upload_bytes
        self._sessions: dict[str, UploadSession] = {}
        # Closed session id -> time it was consumed or discarded.
        self._closed: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Optional[UploadSession]:
        return self._sessions.get(session_id)

    def is_closed(self, session_id: str) -> bool:
        return session_id in self._closed

    def _close(self, session_id: str) -> None:
        self._closed[session_id] = time.time()

    def _open(self, session_id: str, total_chunks: int, ext: str) -> UploadSession:
        if session_id in self._closed:
            raise ChunkConflictError(f"Upload session {session_id} is already closed; start a new session")
        session = self._sessions.get(session_id)
        if session is not None:
            if session.total_chunks != total_chunks:
                raise ChunkConflictError(
                    f"totalChunks mismatch for session {session_id}: "
                    f"expected {session.total_chunks}, got {total_chunks}"
                )
            return session

        target = self.store.temp_path(f"podcast_{session_id}{ext}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(b"")
        session = UploadSession(id=session_id, target_path=target, total_chunks=total_chunks, ext=ext)
        self._sessions[session_id] = session
        logger.info(f"[UPLOAD] Session {session_id} opened: {total_chunks} chunks, ext={ext}")
        return session

    async def append_chunk(
        self,
        session_id: str,
        chunk_index: int,
        total_chunks: int,
        ext: Optional[str],
        data: bytes,
    ) -> ChunkReceipt:
        """Record one chunk.

        Raises:
            InvalidRequestError: malformed session id or index out of range.
            ChunkConflictError: ``total_chunks`` disagrees with the session,
                or the session was already consumed or discarded.
            UploadTooLargeError: the session would exceed ``max_upload_bytes``;
                the session is discarded.
        """
        if not SESSION_ID_RE.match(session_id or ""):
            raise InvalidRequestError("Invalid or missing x-session-id")
        if total_chunks < 1:
            raise InvalidRequestError("x-total-chunks must be at least 1")
        if not 0 <= chunk_index < total_chunks:
            raise InvalidRequestError(f"x-chunk-index {chunk_index} out of range for {total_chunks} chunks")

        session = self._open(session_id, total_chunks, sanitize_ext(ext))

        async with session.lock:
            if self._sessions.get(session_id) is not session:
                # Consumed or purged while this chunk waited for the lock.
                raise UploadSessionNotFoundError()

            if chunk_index in session.received:
                logger.info(f"[UPLOAD] Session {session_id}: duplicate chunk {chunk_index} ignored")
                return self._receipt(session, duplicate=True)

            if session.bytes_received + len(data) > self.max_upload_bytes:
                self.discard(session_id)
                raise UploadTooLargeError(
                    f"Upload exceeds {self.max_upload_bytes // (1024 * 1024)} MB limit"
                )

            if chunk_index == session.next_index:
                await asyncio.to_thread(_append_bytes, session.target_path, data)
                session.next_index += 1
                while session.next_index in session.parked:
                    part = session.parked.pop(session.next_index)
                    await asyncio.to_thread(_append_file, session.target_path, part)
                    session.next_index += 1
            else:
                part = session.part_path(chunk_index)
                await asyncio.to_thread(part.write_bytes, data)
                session.parked[chunk_index] = part

            session.bytes_received += len(data)
            session.received.add(chunk_index)
            receipt = self._receipt(session)

        if receipt.complete:
            size_mb = session.bytes_received / (1024 * 1024)
            logger.info(f"[UPLOAD] Session {session_id} complete: {size_mb:.1f} MB")
        return receipt

    @staticmethod
    def _receipt(session: UploadSession, duplicate: bool = False) -> ChunkReceipt:
        return ChunkReceipt(
            received=len(session.received),
            total_chunks=session.total_chunks,
            complete=session.complete,
            duplicate=duplicate,
        )

    def check_ready(self, session_id: str) -> UploadSession:
        """Return the session if it can be consumed, without consuming it."""
        session = self._sessions.get(session_id)
        if session is None:
            raise UploadSessionNotFoundError()
        if not session.complete:
            raise UploadIncompleteError(len(session.received), session.total_chunks)
        return session

    def consume(self, session_id: str) -> Path:
        """Hand the assembled file over to a job and forget the session.

        Never awaits, so it runs atomically with the caller's other registry
        updates.
        """
        session = self.check_ready(session_id)
        # Move the file out of the session's name so it belongs to the job alone.
        source = session.target_path.with_name(
            f"source_{session.id}_{secrets.token_hex(4)}{session.ext}"
        )
        session.target_path.rename(source)
        del self._sessions[session_id]
        self._close(session_id)
        logger.info(f"[UPLOAD] Session {session_id} consumed -> {source.name}")
        return source

    def discard(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        self._close(session_id)
        self.store.remove_all(session.owned_paths())
        return True

    def purge_stale(self, max_age_s: float, now: Optional[float] = None) -> list[str]:
        """Drop sessions created more than ``max_age_s`` ago, deleting their files.

        Tombstones of closed sessions older than ``max_age_s`` are forgotten too.
        """
        now = time.time() if now is None else now
        for sid, closed_at in list(self._closed.items()):
            if now - closed_at > max_age_s:
                del self._closed[sid]

        stale = [
            sid
            for sid, session in self._sessions.items()
            if now - session.created_at > max_age_s and not session.lock.locked()
        ]
        for sid in stale:
            self.discard(sid)
            logger.info(f"[UPLOAD] Purged stale session {sid}")
        return stale
