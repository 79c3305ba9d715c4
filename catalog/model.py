"""
Directory Model
===============
Assembles the full decoded view of one container: header, named blocks,
B-tree master, the in-order record sequence, corruption markers and
integrity warnings.

Fatal (raised): BadMagic, HeaderMismatch, NameNotFound, and any failure to
read the allocator or master block. Nothing is traversed in that case.

Non-fatal (collected):
  - CorruptMarker per failed subtree (from the B-tree walk)
  - IntegrityWarning for count mismatch, ordering, node count, page size
    and free-list inconsistencies
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from indexing.btree import (
    BTreeIndex, BTreeMaster, CorruptMarker, EXPECTED_PAGE_SIZE,
)
from storage.block_store import BlockStore, FreeLists, Header, read_free_lists
from storage.cursor import Cursor
from storage.directory import DIRECTORY_BLOCK_ID, MASTER_BLOCK_NAME, NamedBlockDirectory
from storage.errors import DSStoreError
from storage.record import Record

logger = logging.getLogger(__name__)


class WarningKind(Enum):
    COUNT_MISMATCH = "CountMismatch"
    ORDER = "OrderViolation"
    NODE_COUNT = "NodeCountMismatch"
    PAGE_SIZE = "PageSize"
    FREE_LIST = "FreeList"


@dataclass(frozen=True)
class IntegrityWarning:
    kind: WarningKind
    message: str

    def to_json(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "message": self.message}

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass
class DirectoryModel:
    """Everything decoded from one container buffer."""
    header: Header
    named_blocks: List[Tuple[str, int]]
    master: BTreeMaster
    records: List[Record] = field(default_factory=list)
    corrupt: List[CorruptMarker] = field(default_factory=list)
    warnings: List[IntegrityWarning] = field(default_factory=list)
    free_lists: Optional[FreeLists] = None

    @classmethod
    def from_bytes(cls, data, master_name: str = MASTER_BLOCK_NAME,
                   workers: int = 1) -> "DirectoryModel":
        """
        Decode a whole container.

        Raises DSStoreError subclasses for header-level failures only.
        """
        store = BlockStore(data)
        directory = NamedBlockDirectory.parse(store)
        index = BTreeIndex.open(store, directory, master_name)

        result = index.traverse(workers=workers)
        model = cls(
            header=store.header,
            named_blocks=directory.entries(),
            master=index.master,
            records=result.records,
            corrupt=result.corrupt,
        )
        model._validate(result.nodes_visited)
        model._read_free_lists(store, directory)

        for warning in model.warnings:
            logger.warning("%s", warning)
        logger.debug("Decoded %d record(s), %d corrupt subtree(s)",
                     len(model.records), len(model.corrupt))
        return model

    # ─── Validation ─────────────────────────────────────────────────

    def _warn(self, kind: WarningKind, message: str) -> None:
        self.warnings.append(IntegrityWarning(kind, message))

    def _validate(self, nodes_visited: int) -> None:
        declared = self.master.record_count
        if len(self.records) != declared:
            self._warn(WarningKind.COUNT_MISMATCH,
                       f"Traversal yielded {len(self.records)} record(s), "
                       f"master declares {declared}")

        if not self.corrupt and nodes_visited != self.master.node_count:
            self._warn(WarningKind.NODE_COUNT,
                       f"Traversal visited {nodes_visited} node(s), "
                       f"master declares {self.master.node_count}")

        if self.master.page_size != EXPECTED_PAGE_SIZE:
            self._warn(WarningKind.PAGE_SIZE,
                       f"Page size 0x{self.master.page_size:x}, "
                       f"expected 0x{EXPECTED_PAGE_SIZE:x}")

        violations = [i for i in range(1, len(self.records))
                      if self.records[i - 1].sort_key >= self.records[i].sort_key]
        if violations:
            first = self.records[violations[0]]
            self._warn(WarningKind.ORDER,
                       f"{len(violations)} record(s) out of key order, first at "
                       f"position {violations[0]} ({first.filename!r}, {first.code!r})")

    def _read_free_lists(self, store: BlockStore,
                         directory: NamedBlockDirectory) -> None:
        try:
            _, end = store.resolve(DIRECTORY_BLOCK_ID)
            self.free_lists = read_free_lists(Cursor(store.data, directory.end, end))
        except DSStoreError as e:
            self._warn(WarningKind.FREE_LIST, f"Cannot read free lists: {e}")
            return
        for issue in self.free_lists.validate(store):
            self._warn(WarningKind.FREE_LIST, issue)

    # ─── Accessors ──────────────────────────────────────────────────

    @property
    def has_corruption(self) -> bool:
        return bool(self.corrupt)

    def records_for(self, filename: str) -> List[Record]:
        """All records of one file, in code order."""
        return [r for r in self.records if r.filename == filename]

    def filenames(self) -> List[str]:
        """Distinct filenames in key order."""
        seen = []
        for r in self.records:
            if not seen or seen[-1] != r.filename:
                seen.append(r.filename)
        return seen

    def to_json(self) -> Dict[str, Any]:
        return {
            "master": {
                "root_node": self.master.root_node,
                "depth": self.master.depth,
                "record_count": self.master.record_count,
                "node_count": self.master.node_count,
            },
            "named_blocks": {name: block for name, block in self.named_blocks},
            "records": [r.to_json() for r in self.records],
            "corrupt": [m.to_json() for m in self.corrupt],
            "warnings": [w.to_json() for w in self.warnings],
        }
