"""
DS_Store Record Decoder
=======================
Decodes one B-tree record from a cursor into a node's byte range.

Record binary layout:
  [name_len: 4B] [name: name_len * 2B UTF-16BE] [code: 4B] [type: 4B] [value...]

The decoder advances the cursor exactly past the bytes it consumes. When
the type tag is unknown the value length cannot be determined, so
UnknownTypeError is raised with the partial record attached; the caller
treats that as the end of usable data in the node.

Collation: filenames compare case-insensitively, with raw code-point order
as the tie-break, then by attribute code.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple

from storage.cursor import Cursor
from storage.errors import UnknownTypeError
from storage.types import Value, deserialize_value


@dataclass(frozen=True)
class Record:
    """One (filename, attribute code, value) entry of the index."""
    filename: str
    code: str
    value: Value

    @property
    def sort_key(self) -> Tuple[str, str, str]:
        return record_sort_key(self.filename, self.code)

    def to_json(self) -> Dict[str, Any]:
        result = {"filename": self.filename, "code": self.code}
        result.update(self.value.to_json())
        return result

    def __repr__(self) -> str:
        return f"Record({self.filename!r}, {self.code!r}, {self.value!r})"


def record_sort_key(filename: str, code: str) -> Tuple[str, str, str]:
    """Ordering key for (filename, code) under the container collation."""
    return filename.casefold(), filename, code


def decode_record(cursor: Cursor) -> Record:
    """
    Decode one record at the cursor position.

    Raises:
      TruncatedError — any field runs past the cursor's range
      UnknownTypeError — the data-type tag is not recognised; ``err.record``
        holds the partial record (value = UNKNOWN with the remaining bytes)
    """
    filename = cursor.read_utf16()
    code = cursor.read_tag()
    tag = cursor.read_tag()
    try:
        value = deserialize_value(cursor, tag)
    except UnknownTypeError as e:
        e.record = Record(filename, code, Value.unknown(tag, cursor.rest()))
        raise
    return Record(filename, code, value)
