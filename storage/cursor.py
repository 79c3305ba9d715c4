"""
Block Cursor
============
Bounds-checked sequential reader over one byte range of the container.

Every read checks against the range end, not the buffer end, so a record
that overruns its node is reported as Truncated instead of silently
reading the neighbouring block.

Endianness: ALL multi-byte integers are BIG-ENDIAN.
"""

import struct

from storage.errors import TruncatedError

U32 = struct.Struct(">I")
U64 = struct.Struct(">Q")
I32 = struct.Struct(">i")
SHORT_PADDED = struct.Struct(">2xh")  # high 16 bits ignored, low 16 signed


class Cursor:
    """Read-only cursor over ``data[start:end]``. Positions are absolute."""

    __slots__ = ("_data", "_start", "_end", "_pos")

    def __init__(self, data, start: int = 0, end: int = None):
        if end is None:
            end = len(data)
        self._data = data
        self._start = start
        self._end = end
        self._pos = start

    @property
    def position(self) -> int:
        return self._pos

    @property
    def start(self) -> int:
        return self._start

    @property
    def end(self) -> int:
        return self._end

    @property
    def remaining(self) -> int:
        return self._end - self._pos

    def seek(self, position: int) -> None:
        if position < self._start or position > self._end:
            raise TruncatedError(
                f"Seek to 0x{position:x} outside range "
                f"[0x{self._start:x}, 0x{self._end:x})")
        self._pos = position

    def skip(self, length: int) -> None:
        self._require(length)
        self._pos += length

    def _require(self, length: int) -> None:
        if length < 0 or self._pos + length > self._end:
            raise TruncatedError(
                f"Read of {length} bytes at 0x{self._pos:x} exceeds "
                f"range end 0x{self._end:x}")

    def read(self, length: int) -> bytes:
        self._require(length)
        value = bytes(self._data[self._pos:self._pos + length])
        self._pos += length
        return value

    def _unpack(self, fmt: struct.Struct):
        self._require(fmt.size)
        value = fmt.unpack_from(self._data, self._pos)[0]
        self._pos += fmt.size
        return value

    def read_u8(self) -> int:
        self._require(1)
        value = self._data[self._pos]
        self._pos += 1
        return value

    def read_u32(self) -> int:
        return self._unpack(U32)

    def read_i32(self) -> int:
        return self._unpack(I32)

    def read_u64(self) -> int:
        return self._unpack(U64)

    def read_padded_i16(self) -> int:
        return self._unpack(SHORT_PADDED)

    def read_tag(self) -> str:
        """Read a 4-character code. Latin-1 keeps every byte value representable."""
        return self.read(4).decode("latin-1")

    def read_utf16(self) -> str:
        """Read a 32-bit code-unit count followed by UTF-16BE code units."""
        count = self.read_u32()
        # count is in 16-bit units; check before multiplying into a huge read
        if count > self.remaining // 2:
            raise TruncatedError(
                f"String of {count} code units at 0x{self._pos:x} exceeds "
                f"range end 0x{self._end:x}")
        return self.read(count * 2).decode("utf-16-be", errors="replace")

    def rest(self) -> bytes:
        """Return the unread bytes without advancing."""
        return bytes(self._data[self._pos:self._end])

    def __repr__(self) -> str:
        return (f"Cursor(0x{self._start:x}..0x{self._end:x}, "
                f"pos=0x{self._pos:x})")
