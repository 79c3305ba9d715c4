"""
DS_Store Storage Layer
======================
Public API for the block store, named-block directory and record decoder.

Usage:
    from storage import BlockStore, NamedBlockDirectory, decode_record
    from storage import Record, Value, ValueType
"""

from storage.errors import (
    DSStoreError, BadMagicError, HeaderMismatchError, OutOfRangeError,
    TruncatedError, NameNotFoundError, UnknownTypeError,
)
from storage.cursor import Cursor
from storage.block_store import (
    BlockStore, BlockAddress, Header, FreeLists, read_free_lists,
)
from storage.directory import NamedBlockDirectory, MASTER_BLOCK_NAME
from storage.types import ValueType, Value, deserialize_value, type_from_tag
from storage.record import Record, decode_record, record_sort_key

__all__ = [
    "DSStoreError", "BadMagicError", "HeaderMismatchError", "OutOfRangeError",
    "TruncatedError", "NameNotFoundError", "UnknownTypeError",
    "Cursor",
    "BlockStore", "BlockAddress", "Header", "FreeLists", "read_free_lists",
    "NamedBlockDirectory", "MASTER_BLOCK_NAME",
    "ValueType", "Value", "deserialize_value", "type_from_tag",
    "Record", "decode_record", "record_sort_key",
]
