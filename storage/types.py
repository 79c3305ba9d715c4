"""
DS_Store Value Type System
==========================
Closed set of record value encodings, keyed by the 4-character type tag
stored in front of every value:

  long  int32 big-endian
  shor  4 bytes, low 16 bits are a signed int16, high 16 ignored
  bool  1 byte, nonzero = true
  blob  uint32 length + bytes
  type  4-character code
  ustr  uint32 code-unit count + UTF-16BE code units
  comp  8 bytes, opaque uint64
  dutc  8 bytes, uint64 in 1/65536 second ticks since 1904-01-01 UTC

Anything else is UNKNOWN. Its length cannot be known, so the decoder
raises UnknownTypeError and the caller stops reading that node.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from storage.cursor import Cursor
from storage.errors import UnknownTypeError


class ValueType(Enum):
    """Supported value encodings, plus UNKNOWN for unrecognised tags."""
    LONG = "long"
    SHOR = "shor"
    BOOL = "bool"
    BLOB = "blob"
    TYPE = "type"
    USTR = "ustr"
    COMP = "comp"
    DUTC = "dutc"
    UNKNOWN = "????"


# Epoch for dutc timestamps
_DUTC_EPOCH = datetime(1904, 1, 1, tzinfo=timezone.utc)
_DUTC_TICKS_PER_SECOND = 65536


@dataclass(frozen=True)
class Value:
    """
    One decoded record value.

    ``data`` holds the Python-native payload for ``kind``:
    int (LONG, SHOR, COMP, DUTC), bool (BOOL), bytes (BLOB, UNKNOWN),
    str (TYPE, USTR). ``tag`` is the raw type tag as stored, which only
    differs from ``kind.value`` for UNKNOWN.
    """
    kind: ValueType
    data: Any
    tag: str = ""

    def __post_init__(self):
        if not self.tag:
            object.__setattr__(self, "tag", self.kind.value)

    @classmethod
    def unknown(cls, tag: str, raw: bytes) -> "Value":
        return cls(ValueType.UNKNOWN, raw, tag)

    def as_datetime(self) -> datetime:
        """Convert a dutc value to an aware UTC datetime."""
        if self.kind != ValueType.DUTC:
            raise TypeError(f"{self.tag!r} value is not a date")
        try:
            return _DUTC_EPOCH + timedelta(
                seconds=self.data / _DUTC_TICKS_PER_SECOND)
        except OverflowError:
            raise ValueError(f"dutc value {self.data} is out of range") from None

    def to_json(self) -> Dict[str, Any]:
        """JSON-safe rendering: bytes become hex strings."""
        data = self.data
        if isinstance(data, bytes):
            data = data.hex()
        result = {"type": self.tag, "value": data}
        if self.kind == ValueType.DUTC:
            try:
                result["datetime"] = self.as_datetime().isoformat()
            except ValueError:
                pass  # out-of-range dates are left as raw ticks
        return result

    def __repr__(self) -> str:
        return f"Value({self.tag}, {self.data!r})"


# ─── Deserialization ────────────────────────────────────────────────────────

def _read_blob(cursor: Cursor) -> bytes:
    length = cursor.read_u32()
    return cursor.read(length)


_READERS: Dict[ValueType, Callable[[Cursor], Any]] = {
    ValueType.LONG: Cursor.read_i32,
    ValueType.SHOR: Cursor.read_padded_i16,
    ValueType.BOOL: lambda c: c.read_u8() != 0,
    ValueType.BLOB: _read_blob,
    ValueType.TYPE: Cursor.read_tag,
    ValueType.USTR: Cursor.read_utf16,
    ValueType.COMP: Cursor.read_u64,
    ValueType.DUTC: Cursor.read_u64,
}

_TAGS: Dict[str, ValueType] = {t.value: t for t in _READERS}


def type_from_tag(tag: str) -> Optional[ValueType]:
    """Map a stored type tag to its ValueType, or None if unrecognised."""
    return _TAGS.get(tag)


def deserialize_value(cursor: Cursor, tag: str) -> Value:
    """
    Read the payload for ``tag`` at the cursor.

    Raises UnknownTypeError (cursor left just past the tag) for tags outside
    the table, and TruncatedError if the payload runs past the cursor's range.
    """
    kind = _TAGS.get(tag)
    if kind is None:
        raise UnknownTypeError(tag, cursor.position)
    return Value(kind, _READERS[kind](cursor))
