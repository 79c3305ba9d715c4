"""
Named Block Directory
=====================
Maps short ASCII names to block ids. The directory lives in block 0 (the
allocator block) right after the padded descriptor array:

  count(4B)
  count * [name_len(1B)] [name(name_len B)] [block_id(4B)]

The free lists follow it in the same block.

Only "DSDB" (the B-tree master block) is needed by the reader; any other
entries are kept as-is.
"""

import logging
from typing import Dict, List, Tuple

from storage.block_store import BlockStore
from storage.cursor import Cursor
from storage.errors import NameNotFoundError

logger = logging.getLogger(__name__)

DIRECTORY_BLOCK_ID = 0
MASTER_BLOCK_NAME = "DSDB"


class NamedBlockDirectory:
    """Ordered (name, block_id) entries as stored in the container."""

    def __init__(self, entries: List[Tuple[str, int]], end: int):
        self._entries = list(entries)
        self._index: Dict[str, int] = {}
        for name, block_id in self._entries:
            # First occurrence wins on duplicates
            self._index.setdefault(name, block_id)
        self._end = end

    @classmethod
    def parse(cls, store: BlockStore) -> "NamedBlockDirectory":
        """Parse the directory out of block 0."""
        cursor = store.reader(DIRECTORY_BLOCK_ID)
        if cursor.start != store.header.allocator_start:
            logger.warning(
                "Block 0 starts at 0x%x but the header places the allocator "
                "at 0x%x", cursor.start, store.header.allocator_start)
        cursor.skip(store.table_size)
        return cls.read(cursor)

    @classmethod
    def read(cls, cursor: Cursor) -> "NamedBlockDirectory":
        count = cursor.read_u32()
        entries = []
        for _ in range(count):
            name_len = cursor.read_u8()
            name = cursor.read(name_len).decode("ascii", errors="replace")
            block_id = cursor.read_u32()
            entries.append((name, block_id))
        return cls(entries, cursor.position)

    @property
    def end(self) -> int:
        """Absolute buffer position just past the directory (free lists start here)."""
        return self._end

    def lookup(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise NameNotFoundError(name) from None

    def names(self) -> List[str]:
        return [name for name, _ in self._entries]

    def entries(self) -> List[Tuple[str, int]]:
        return list(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"NamedBlockDirectory({self._entries!r})"
