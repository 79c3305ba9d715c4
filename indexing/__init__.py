"""
DS_Store Indexing Module
========================
Read-only traversal of the container's record B-tree.

Components:
  - btree: master record, in-order traversal, per-subtree corruption markers
"""

from indexing.btree import BTreeIndex, BTreeMaster, CorruptMarker, TraversalResult
