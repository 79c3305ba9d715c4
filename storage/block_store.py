"""
DS_Store Buddy-Allocated Block Store
====================================
Decodes the container header and the allocator's address table, and maps
block ids to byte ranges inside the immutable input buffer.

Container layout (all integers BIG-ENDIAN):
  [0..3]    magic 0x00000001
  [4..7]    b"Bud1"
  [8..11]   allocator block offset
  [12..15]  allocator block size
  [16..19]  allocator block offset (second copy, must match)
  [20..35]  reserved

All stored offsets are relative to byte 4 (the "Bud1" marker), so the
resolver adds ADDRESS_BASE to every offset it reads.

Allocator block:
  count(4B) reserved(4B) descriptor[count] (padded to a multiple of 256)
  named-block directory (see storage/directory.py)
  32 free lists: count(4B) + count * entry(4B)

Descriptor packing:
  A descriptor is one 32-bit word. The low 5 bits are the size order
  (block size = 1 << order) and the remaining bits are the offset, which
  is always 32-byte aligned: offset = (word >> 5) << 5. A zero word marks
  an unused slot.
"""

import logging
import math
import struct
from dataclasses import dataclass
from typing import List, Optional, Tuple

from storage.cursor import Cursor
from storage.errors import (
    BadMagicError, HeaderMismatchError, OutOfRangeError, TruncatedError,
)

logger = logging.getLogger(__name__)

# ─── Constants ──────────────────────────────────────────────────────────────

MAGIC = 0x00000001
BUD1_MAGIC = b"Bud1"
ADDRESS_BASE = 4            # stored offsets are relative to the Bud1 marker
HEADER_SIZE = 36
DESCRIPTOR_PADDING = 256    # descriptor array is padded to this many entries
OFFSET_GRANULARITY = 32     # offset = (word >> 5) * 32
ORDER_MASK = 0x1F
FREE_LIST_COUNT = 32

# Header struct: magic(I) bud1(4s) offset(I) size(I) offset_copy(I) reserved(16s)
HEADER_FMT = ">I4sIII16s"
HEADER_STRUCT = struct.Struct(HEADER_FMT)


@dataclass(frozen=True)
class Header:
    """Fixed 36-byte container header."""
    magic: int
    allocator_offset: int
    allocator_size: int
    reserved: bytes

    @property
    def allocator_start(self) -> int:
        """Absolute buffer position of the allocator block."""
        return self.allocator_offset + ADDRESS_BASE

    @classmethod
    def parse(cls, data) -> "Header":
        if len(data) < HEADER_SIZE:
            raise BadMagicError(
                f"Buffer of {len(data)} bytes is shorter than the "
                f"{HEADER_SIZE}-byte header")
        magic, bud1, offset, size, offset_copy, reserved = \
            HEADER_STRUCT.unpack_from(data, 0)
        if magic != MAGIC or bud1 != BUD1_MAGIC:
            raise BadMagicError(
                f"Signature does not match a DS_Store file "
                f"(got 0x{magic:08x} {bud1!r})")
        if offset != offset_copy:
            raise HeaderMismatchError(offset, offset_copy)
        if reserved.strip(b"\x00"):
            logger.debug("Header reserved bytes are not zero: %s", reserved.hex())
        return cls(magic=magic, allocator_offset=offset,
                   allocator_size=size, reserved=reserved)


@dataclass(frozen=True)
class BlockAddress:
    """
    One packed allocator descriptor.

    ``offset`` is relative to the Bud1 marker, ``start``/``end`` are absolute
    buffer positions.
    """
    raw: int
    offset: int
    order: int

    @classmethod
    def from_word(cls, word: int) -> "BlockAddress":
        order = word & ORDER_MASK
        offset = (word >> 5) * OFFSET_GRANULARITY
        return cls(raw=word, offset=offset, order=order)

    @property
    def size(self) -> int:
        return 1 << self.order

    @property
    def start(self) -> int:
        return self.offset + ADDRESS_BASE

    @property
    def end(self) -> int:
        return self.start + self.size

    def __repr__(self) -> str:
        return f"BlockAddress(offset=0x{self.offset:x}, size=0x{self.size:x})"


class BlockStore:
    """
    Resolves block ids to byte ranges.

    Usage:
        store = BlockStore(data)
        start, end = store.resolve(block_id)
        cursor = store.reader(block_id)

    Invariants enforced at resolve time:
      - block_id indexes a used slot of the address table
      - start + size <= len(data)
    """

    def __init__(self, data):
        self._data = data
        self._header = Header.parse(data)

        start = self._header.allocator_start
        end = start + self._header.allocator_size
        if end > len(data):
            raise TruncatedError(
                f"Allocator block 0x{start:x}..0x{end:x} exceeds buffer "
                f"length 0x{len(data):x}")

        cursor = Cursor(data, start, end)
        count = cursor.read_u32()
        cursor.skip(4)  # reserved

        self._addresses: List[Optional[BlockAddress]] = []
        for _ in range(count):
            word = cursor.read_u32()
            # Zero descriptors mark free slots, not blocks at offset 0
            self._addresses.append(BlockAddress.from_word(word) if word else None)

        padded = math.ceil(count / DESCRIPTOR_PADDING) * DESCRIPTOR_PADDING
        # count + reserved + padded descriptor array
        self._table_size = 8 + padded * 4

        logger.debug("Allocator at 0x%x: %d descriptors (%d used)",
                     start, count, self.used_block_count)

    @property
    def data(self):
        return self._data

    @property
    def header(self) -> Header:
        return self._header

    @property
    def block_count(self) -> int:
        """Number of descriptor slots, used or not."""
        return len(self._addresses)

    @property
    def used_block_count(self) -> int:
        return sum(1 for a in self._addresses if a is not None)

    @property
    def table_size(self) -> int:
        """Bytes taken by count, reserved and the padded descriptor array."""
        return self._table_size

    def addresses(self) -> List[Tuple[int, BlockAddress]]:
        """All used (block_id, address) pairs in id order."""
        return [(i, a) for i, a in enumerate(self._addresses) if a is not None]

    def address(self, block_id: int) -> BlockAddress:
        if block_id < 0 or block_id >= len(self._addresses):
            raise OutOfRangeError(
                block_id,
                f"Block {block_id} is outside the address table "
                f"({len(self._addresses)} entries)")
        addr = self._addresses[block_id]
        if addr is None:
            raise OutOfRangeError(block_id, f"Block {block_id} is unallocated")
        return addr

    def resolve(self, block_id: int) -> Tuple[int, int]:
        """Return the absolute (start, end) byte range of a block."""
        addr = self.address(block_id)
        if addr.end > len(self._data):
            raise TruncatedError(
                f"Block {block_id} range 0x{addr.start:x}..0x{addr.end:x} "
                f"exceeds buffer length 0x{len(self._data):x}")
        return addr.start, addr.end

    def reader(self, block_id: int) -> Cursor:
        start, end = self.resolve(block_id)
        return Cursor(self._data, start, end)

    def __repr__(self) -> str:
        return (f"BlockStore(blocks={self.block_count}, "
                f"allocator=0x{self._header.allocator_offset:x})")


# ─── Free lists ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FreeLists:
    """
    Per-order free lists of the buddy allocator.

    ``lists[order]`` holds the offsets (relative to the Bud1 marker) of free
    blocks of size 1 << order. Informational only; traversal never reads it.
    """
    lists: Tuple[Tuple[int, ...], ...]

    @property
    def total(self) -> int:
        return sum(len(entries) for entries in self.lists)

    def validate(self, store: BlockStore) -> List[str]:
        """
        Check the buddy invariants against the address table.
        Returns a list of issues (empty = consistent).
        """
        issues: List[str] = []
        allocated = store.addresses()
        for order, entries in enumerate(self.lists):
            size = 1 << order
            for offset in entries:
                if offset % size:
                    issues.append(
                        f"Free block 0x{offset:x} of order {order} is not "
                        f"aligned to its size")
                for block_id, addr in allocated:
                    if offset < addr.offset + addr.size and addr.offset < offset + size:
                        issues.append(
                            f"Free block 0x{offset:x} of order {order} "
                            f"overlaps allocated block {block_id}")
        return issues


def read_free_lists(cursor: Cursor) -> FreeLists:
    """Read the 32 free lists starting at the cursor position."""
    lists = []
    for _ in range(FREE_LIST_COUNT):
        count = cursor.read_u32()
        lists.append(tuple(cursor.read_u32() for _ in range(count)))
    return FreeLists(lists=tuple(lists))
