"""
DS_Store B-Tree Index
=====================
Read-only in-order traversal of the container's record B-tree.

Architecture:
  - Master block (named "DSDB"): five uint32 fields
      root_node, depth, record_count, node_count, page_size (0x1000)
  - Node blocks:
      [P: 4B] [count: 4B] then
      LEAF:     count * record
      INTERNAL: count * ([child: 4B] record), P is the trailing child

Depth is tracked per stack frame: the root starts at master.depth and every
descent decrements it; depth 0 is a leaf. For an internal node with N
records there are N + 1 children (N inline, plus P). The walk keeps its own
stack of node frames, so tree depth is limited by the block count only.
Each node block is entered at most once per traversal.

Failure isolation:
  A walk produces TraversalResults (records + corruption markers) that are
  merged in position order. A failure while resolving or reading a node
  becomes a CorruptMarker for that subtree; sibling subtrees still yield.
  A record that cannot be decoded (unknown type, truncated) ends its node:
  earlier records of the node are kept, later ones are dropped. The
  trailing child P of an internal node is still visited, since its id
  comes from the node header.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Set, Union

from storage.block_store import BlockStore
from storage.cursor import Cursor
from storage.directory import MASTER_BLOCK_NAME, NamedBlockDirectory
from storage.errors import DSStoreError, UnknownTypeError
from storage.record import Record, decode_record

logger = logging.getLogger(__name__)

# ─── Constants ──────────────────────────────────────────────────────────────

EXPECTED_PAGE_SIZE = 0x1000
NO_CHILD = 0  # block 0 is the allocator block, never a node


@dataclass(frozen=True)
class BTreeMaster:
    """Tree master record stored in the DSDB block."""
    root_node: int
    depth: int
    record_count: int
    node_count: int
    page_size: int

    @classmethod
    def read(cls, cursor: Cursor) -> "BTreeMaster":
        root_node = cursor.read_u32()
        depth = cursor.read_u32()
        record_count = cursor.read_u32()
        node_count = cursor.read_u32()
        page_size = cursor.read_u32()
        return cls(root_node, depth, record_count, node_count, page_size)


@dataclass(frozen=True)
class CorruptMarker:
    """A subtree (or the tail of one node) that could not be decoded."""
    block_id: int
    depth: int
    kind: str
    message: str
    salvaged: int = 0                 # records of this node emitted before the failure
    record: Optional[Record] = None   # partial record for UnknownType

    def to_json(self) -> Dict[str, Any]:
        result = {
            "block": self.block_id,
            "depth": self.depth,
            "kind": self.kind,
            "message": self.message,
            "salvaged": self.salvaged,
        }
        if self.record is not None:
            result["record"] = self.record.to_json()
        return result

    def __str__(self) -> str:
        return f"block {self.block_id} (depth {self.depth}): {self.kind}: {self.message}"


@dataclass
class TraversalResult:
    """Records and markers produced by one subtree walk, in key order."""
    records: List[Record] = field(default_factory=list)
    corrupt: List[CorruptMarker] = field(default_factory=list)
    nodes_visited: int = 0
    blocks: Set[int] = field(default_factory=set, repr=False)  # node blocks claimed

    def merge(self, other: "TraversalResult") -> None:
        self.records.extend(other.records)
        self.corrupt.extend(other.corrupt)
        self.nodes_visited += other.nodes_visited
        self.blocks |= other.blocks

    @property
    def ok(self) -> bool:
        return not self.corrupt


# A part of a walk's output: either already computed, or pending on a worker
_Part = Union[TraversalResult, "Future[TraversalResult]"]


@dataclass
class _Frame:
    """One node on the explicit walk stack."""
    block_id: int
    depth: int
    cursor: Cursor
    pointer: int
    count: int
    index: int = 0            # records (with their inline children) started
    emitted: int = 0
    key_pending: bool = False  # inline child walked, its record not yet read
    stopped: bool = False      # a record failed; the rest of the node is dropped
    trailing_done: bool = False

    @property
    def is_leaf(self) -> bool:
        return self.depth == 0


class _SubtreeWalk:
    """
    In-order walk of one subtree over an explicit stack of node frames.

    Every block is entered at most once per walk. A pointer to a block on
    the current path, or to one already walked from another position,
    becomes a Corrupt marker instead of a descent.

    With ``spawn`` set, the children of the first node are handed to it and
    come back as Futures in their output position.
    """

    def __init__(self, store: BlockStore, outer: FrozenSet[int] = frozenset(),
                 spawn: Optional[Callable[[int, int], Future]] = None):
        self._store = store
        self._outer = outer
        self._spawn = spawn
        self._visited: Set[int] = set()
        self._on_path: Set[int] = set()
        self._stack: List[_Frame] = []
        self._current = TraversalResult()
        self._parts: List[_Part] = [self._current]

    def run(self, block_id: int, depth: int) -> List[_Part]:
        self._enter(block_id, depth)
        while self._stack:
            self._step(self._stack[-1])
        self._parts[0].blocks.update(self._visited)
        return self._parts

    def _step(self, frame: _Frame) -> None:
        if frame.key_pending:
            frame.key_pending = False
            self._decode(frame)
        elif not frame.stopped and frame.index < frame.count:
            frame.index += 1
            if frame.is_leaf:
                self._decode(frame)
                return
            try:
                child = frame.cursor.read_u32()
            except DSStoreError as e:
                self._stop(frame, e)
                return
            frame.key_pending = True
            self._descend(child, frame.depth - 1)
        elif not frame.is_leaf and not frame.trailing_done:
            frame.trailing_done = True
            if frame.pointer == NO_CHILD:
                self._mark(CorruptMarker(
                    frame.block_id, frame.depth, "Corrupt",
                    "Internal node has no trailing child pointer", frame.emitted))
            else:
                self._descend(frame.pointer, frame.depth - 1)
        else:
            self._stack.pop()
            self._on_path.discard(frame.block_id)

    def _descend(self, child: int, depth: int) -> None:
        if self._spawn is not None and len(self._stack) == 1:
            self._parts.append(self._spawn(child, depth))
            self._current = TraversalResult()
            self._parts.append(self._current)
        else:
            self._enter(child, depth)

    def _enter(self, block_id: int, depth: int) -> None:
        if block_id in self._on_path or block_id in self._outer:
            self._mark(CorruptMarker(
                block_id, depth, "Corrupt",
                f"Child pointer loops back to ancestor block {block_id}"))
            return
        if block_id in self._visited:
            self._mark(CorruptMarker(
                block_id, depth, "Corrupt",
                f"Block {block_id} already visited from another position"))
            return
        self._visited.add(block_id)

        try:
            cursor = self._store.reader(block_id)
            pointer = cursor.read_u32()
            count = cursor.read_u32()
        except DSStoreError as e:
            logger.warning("Cannot read node %d: %s", block_id, e)
            self._mark(CorruptMarker(block_id, depth, e.kind, str(e)))
            return

        logger.debug("Node %d: depth=%d count=%d P=%d", block_id, depth, count, pointer)
        if depth == 0 and pointer != NO_CHILD:
            logger.warning("Node %d is at leaf depth but has child pointer %d",
                           block_id, pointer)
        self._current.nodes_visited += 1
        self._stack.append(_Frame(block_id, depth, cursor, pointer, count))
        self._on_path.add(block_id)

    def _decode(self, frame: _Frame) -> None:
        try:
            record = decode_record(frame.cursor)
        except DSStoreError as e:
            self._stop(frame, e)
            return
        self._current.records.append(record)
        frame.emitted += 1

    def _stop(self, frame: _Frame, error: DSStoreError) -> None:
        frame.stopped = True
        if isinstance(error, UnknownTypeError):
            logger.warning("Node %d: %s; dropping %d remaining record(s)",
                           frame.block_id, error, frame.count - frame.emitted - 1)
            partial = error.record
        else:
            logger.warning("Node %d: %s after %d record(s)",
                           frame.block_id, error, frame.emitted)
            partial = None
        self._mark(CorruptMarker(frame.block_id, frame.depth, error.kind,
                                 str(error), frame.emitted, partial))

    def _mark(self, marker: CorruptMarker) -> None:
        self._current.corrupt.append(marker)


class BTreeIndex:
    """
    In-order reader over the record B-tree.

    Usage:
        store = BlockStore(data)
        directory = NamedBlockDirectory.parse(store)
        index = BTreeIndex.open(store, directory)
        result = index.traverse()
        for record in result.records: ...
    """

    def __init__(self, store: BlockStore, master_block: int):
        self._store = store
        self._master_block = master_block
        self._master = BTreeMaster.read(store.reader(master_block))
        if self._master.page_size != EXPECTED_PAGE_SIZE:
            logger.warning("Unexpected B-tree page size 0x%x (expected 0x%x)",
                           self._master.page_size, EXPECTED_PAGE_SIZE)
        logger.debug("B-tree master in block %d: %r", master_block, self._master)

    @classmethod
    def open(cls, store: BlockStore, directory: NamedBlockDirectory,
             name: str = MASTER_BLOCK_NAME) -> "BTreeIndex":
        """Locate the master block by name. Raises NameNotFoundError."""
        return cls(store, directory.lookup(name))

    @property
    def master(self) -> BTreeMaster:
        return self._master

    @property
    def master_block(self) -> int:
        return self._master_block

    # ─── Traversal ──────────────────────────────────────────────────

    def traverse(self, workers: int = 1) -> TraversalResult:
        """
        Walk the whole tree in key order.

        With workers > 1 the root's child subtrees are decoded on a thread
        pool; results are merged back by position, so the output is the
        same as a sequential walk.
        """
        master = self._master
        if master.depth > self._store.block_count:
            # Each level needs its own node; a deeper tree cannot exist
            return TraversalResult(corrupt=[CorruptMarker(
                master.root_node, master.depth, "Corrupt",
                f"Declared depth {master.depth} exceeds the "
                f"{self._store.block_count} blocks in the container")])

        if workers <= 1 or master.depth == 0:
            return self._walk(master.root_node, master.depth)

        root = master.root_node
        outer = frozenset([root])
        shared = False
        with ThreadPoolExecutor(max_workers=workers) as pool:
            def spawn(child: int, depth: int) -> Future:
                return pool.submit(self._walk, child, depth, outer)

            result = TraversalResult()
            for part in _SubtreeWalk(self._store, spawn=spawn).run(root, master.depth):
                if isinstance(part, Future):
                    part = part.result()
                if part.blocks & result.blocks:
                    shared = True
                result.merge(part)

        if shared:
            # Subtrees walked apart cannot see each other's blocks
            logger.warning("Root subtrees share node blocks; repeating the walk sequentially")
            return self._walk(root, master.depth)
        return result

    def _walk(self, block_id: int, depth: int,
              outer: FrozenSet[int] = frozenset()) -> TraversalResult:
        """Walk one subtree. Never raises DSStoreError: failures become markers."""
        result = TraversalResult()
        for part in _SubtreeWalk(self._store, outer).run(block_id, depth):
            result.merge(part)
        return result

    def __repr__(self) -> str:
        return f"BTreeIndex(master={self._master_block}, {self._master!r})"
