# services/shards.py
import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from settings import IMAGES_DIR, MAX_FILES_PER_DIR

logger = logging.getLogger(__name__)

SHARD_WIDTH = 3


def shard_name(ordinal: int) -> str:
    return str(ordinal).zfill(SHARD_WIDTH)


def _existing_ordinals(root: Path) -> list[int]:
    out = []
    with os.scandir(root) as it:
        for entry in it:
            if entry.is_dir() and entry.name.isdigit():
                out.append(int(entry.name))
    return out


def _count_entries(path: Path) -> int:
    with os.scandir(path) as it:
        return sum(1 for _ in it)


class ShardAllocator:
    """
    Picks the directory the next downloaded file goes into.

    Always the highest-numbered shard under `root`, unless it already holds
    `max_files` entries, in which case the next ordinal is created. Shards are
    never merged or rebalanced.

    Decisions are serialized by a lock, but nothing is reserved: the caller's
    write happens after `allocate()` returns, so sources running side by side
    can push a shard slightly past the cap.
    """

    def __init__(self, root: Optional[os.PathLike] = None, max_files: int = MAX_FILES_PER_DIR):
        self.root = Path(root or IMAGES_DIR)
        self.max_files = max_files
        self._lock = asyncio.Lock()

    def _allocate_sync(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        ordinals = _existing_ordinals(self.root)
        if not ordinals:
            current = 1
        else:
            current = max(ordinals)
            if _count_entries(self.root / shard_name(current)) >= self.max_files:
                current += 1
                logger.info("Shard %s is full, opening %s", shard_name(current - 1), shard_name(current))
        shard = self.root / shard_name(current)
        shard.mkdir(exist_ok=True)
        return shard

    async def allocate(self) -> Path:
        """Return an existing shard directory with room for one more file."""
        async with self._lock:
            return await asyncio.to_thread(self._allocate_sync)
