"""
DS_Store Reader Errors
======================
Exception taxonomy shared by the storage, indexing and catalog layers.

Header-level errors (BadMagic, HeaderMismatch, NameNotFound) abort a parse.
Traversal-level errors (OutOfRange, Truncated, UnknownType) are caught at
B-tree subtree boundaries and turned into corruption markers.
"""

from typing import Optional


class DSStoreError(Exception):
    """Base class for every error raised while reading a container."""
    kind = "Error"


class BadMagicError(DSStoreError):
    """The file does not start with the fixed container signature."""
    kind = "BadMagic"


class HeaderMismatchError(DSStoreError):
    """The two redundant copies of the allocator offset disagree."""
    kind = "HeaderMismatch"

    def __init__(self, first: int, second: int):
        super().__init__(
            f"Allocator offsets do not match: 0x{first:x} != 0x{second:x}")
        self.first = first
        self.second = second


class OutOfRangeError(DSStoreError):
    """A block id is outside the address table or names an unused slot."""
    kind = "OutOfRange"

    def __init__(self, block_id: int, message: Optional[str] = None):
        super().__init__(message or f"Block {block_id} is not in the address table")
        self.block_id = block_id


class TruncatedError(DSStoreError):
    """A computed byte range runs past the end of the buffer or block."""
    kind = "Truncated"


class NameNotFoundError(DSStoreError):
    """A required named block is missing from the directory."""
    kind = "NameNotFound"

    def __init__(self, name: str):
        super().__init__(f"Named block '{name}' not found")
        self.name = name


class UnknownTypeError(DSStoreError):
    """
    A record carries a data-type tag outside the known table.

    ``record`` is the partially decoded record (filename and code known,
    value of type UNKNOWN holding the tag and the bytes left in the node).
    """
    kind = "UnknownType"

    def __init__(self, tag: str, offset: int, record=None):
        super().__init__(f"Unknown data type {tag!r} at offset 0x{offset:x}")
        self.tag = tag
        self.offset = offset
        self.record = record
