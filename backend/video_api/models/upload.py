import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class UploadSession:
    """Chunk-reassembly tracker for one uploaded audio file.

    ``next_index`` is the first chunk index not yet written to ``target_path``.
    Chunks that arrive ahead of it are parked in ``parked`` (index -> part file)
    until the gap closes.
    """

    id: str
    target_path: Path
    total_chunks: int
    ext: str
    created_at: float = field(default_factory=time.time)
    received: set[int] = field(default_factory=set)
    next_index: int = 0
    parked: dict[int, Path] = field(default_factory=dict)
    bytes_received: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def complete(self) -> bool:
        return len(self.received) >= self.total_chunks

    def part_path(self, index: int) -> Path:
        return self.target_path.with_name(f"{self.id}_part{index}")

    def owned_paths(self) -> list[Path]:
        return [self.target_path, *self.parked.values()]


@dataclass
class ChunkReceipt:
    received: int
    total_chunks: int
    complete: bool
    duplicate: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "received": self.received,
            "totalChunks": self.total_chunks,
            "complete": self.complete,
            "duplicate": self.duplicate,
        }
