"""
DS_Store Storage Layer Tests
============================
Covers the block store, header checks, named-block directory, free lists,
value type dispatch and record decoding.
"""

import struct
from datetime import datetime, timezone

import pytest

from storage.block_store import (
    BlockAddress, BlockStore, FreeLists, Header, ADDRESS_BASE, read_free_lists,
)
from storage.cursor import Cursor
from storage.directory import NamedBlockDirectory
from storage.errors import (
    BadMagicError, DSStoreError, HeaderMismatchError, NameNotFoundError,
    OutOfRangeError, TruncatedError, UnknownTypeError,
)
from storage.record import Record, decode_record, record_sort_key
from storage.types import Value, ValueType, deserialize_value, type_from_tag

from dsstore_builder import (
    ContainerBuilder, Leaf, Rec, encode_record, encode_value,
)


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def builder():
    b = ContainerBuilder()
    b.add_tree(Leaf([Rec("a", "Iloc", "long", 1), Rec("b", "Iloc", "long", 2)]))
    return b


@pytest.fixture
def store(builder):
    return BlockStore(builder.build())


def _cursor(data: bytes) -> Cursor:
    return Cursor(data, 0, len(data))


# ═══════════════════════════════════════════════════════════════════════════
# 1. Cursor
# ═══════════════════════════════════════════════════════════════════════════

class TestCursor:

    def test_sequential_reads(self):
        c = _cursor(struct.pack(">IiQ", 7, -3, 2**40) + b"\x05")
        assert c.read_u32() == 7
        assert c.read_i32() == -3
        assert c.read_u64() == 2**40
        assert c.read_u8() == 5
        assert c.remaining == 0

    def test_padded_short_ignores_high_half(self):
        c = _cursor(b"\xAB\xCD\xFF\xFE")
        assert c.read_padded_i16() == -2
        assert c.position == 4

    def test_read_past_range_end(self):
        data = b"\x00" * 16
        c = Cursor(data, 0, 6)
        c.read_u32()
        with pytest.raises(TruncatedError):
            c.read_u32()
        # Failed read leaves the position untouched
        assert c.position == 4

    def test_utf16_count_too_large(self):
        c = _cursor(struct.pack(">I", 0x7FFFFFFF) + b"\x00a")
        with pytest.raises(TruncatedError):
            c.read_utf16()

    def test_utf16_non_bmp(self):
        c = _cursor(encode_value("ustr", "snow ☃ 🍺"))
        assert c.read_utf16() == "snow ☃ 🍺"

    def test_seek_outside_range(self):
        c = Cursor(b"\x00" * 8, 2, 6)
        with pytest.raises(TruncatedError):
            c.seek(7)
        c.seek(6)
        assert c.remaining == 0


# ═══════════════════════════════════════════════════════════════════════════
# 2. Header & Block Store
# ═══════════════════════════════════════════════════════════════════════════

class TestHeader:

    def test_valid_header(self, builder):
        data = builder.build()
        header = Header.parse(data)
        assert header.allocator_offset == builder.offsets[0]
        assert header.allocator_start == builder.offsets[0] + ADDRESS_BASE

    def test_bad_magic(self, builder):
        builder.magic = b"\x00\x00\x00\x02Bud1"
        with pytest.raises(BadMagicError):
            BlockStore(builder.build())

    def test_bad_secondary_magic(self, builder):
        builder.magic = b"\x00\x00\x00\x01Bud2"
        with pytest.raises(BadMagicError):
            BlockStore(builder.build())

    def test_short_buffer(self):
        with pytest.raises(BadMagicError):
            BlockStore(b"\x00\x00\x00\x01Bud1")

    def test_offset_copies_disagree(self, builder):
        builder.offset_copy = 0x1000
        with pytest.raises(HeaderMismatchError) as exc:
            BlockStore(builder.build())
        assert exc.value.second == 0x1000

    def test_allocator_past_buffer_end(self, builder):
        data = builder.build()
        with pytest.raises(TruncatedError):
            BlockStore(data[:builder.offsets[0] + 16])


class TestBlockAddress:

    def test_unpack(self):
        addr = BlockAddress.from_word(0x0000100C)
        assert addr.order == 12
        assert addr.size == 4096
        assert addr.offset == 0x1000
        assert addr.start == 0x1004
        assert addr.end == 0x2004

    def test_low_bits_are_not_offset(self):
        addr = BlockAddress.from_word(0x0000203F)
        assert addr.offset == 0x2020
        assert addr.order == 31


class TestBlockStore:

    def test_resolve_all_blocks(self, builder):
        data = builder.build()
        store = BlockStore(data)
        for block_id in range(store.block_count):
            start, end = store.resolve(block_id)
            assert start == builder.offsets[block_id] + ADDRESS_BASE
            assert end - start == 1 << builder.orders[block_id]
            assert end <= len(data)

    def test_block_id_beyond_table(self, store):
        with pytest.raises(OutOfRangeError) as exc:
            store.resolve(store.block_count)
        assert exc.value.block_id == store.block_count

    def test_negative_block_id(self, store):
        with pytest.raises(OutOfRangeError):
            store.resolve(-1)

    def test_unused_slot(self):
        b = ContainerBuilder()
        unused = b.add_unused_slot()
        b.add_tree(Leaf([Rec("a", "Iloc", "long", 1)]))
        store = BlockStore(b.build())
        assert store.used_block_count == store.block_count - 1
        with pytest.raises(OutOfRangeError, match="unallocated"):
            store.resolve(unused)

    def test_padding_entries_are_not_blocks(self, store):
        # Three real blocks; the 253 padding zeros are not counted
        assert store.block_count == 3
        assert store.table_size == 8 + 256 * 4

    def test_range_past_buffer(self, builder):
        builder.build()
        leaf_id = builder.node_ids[0]
        builder.descriptor_overrides[leaf_id] = builder.offsets[leaf_id] | 20
        store = BlockStore(builder.build())
        with pytest.raises(TruncatedError):
            store.resolve(leaf_id)

    def test_errors_share_base(self):
        for cls in (BadMagicError, TruncatedError):
            assert issubclass(cls, DSStoreError)
        assert issubclass(OutOfRangeError, DSStoreError)


# ═══════════════════════════════════════════════════════════════════════════
# 3. Named Block Directory & Free Lists
# ═══════════════════════════════════════════════════════════════════════════

class TestDirectory:

    def test_lookup(self, builder, store):
        directory = NamedBlockDirectory.parse(store)
        assert directory.lookup("DSDB") == builder.directory[0][1]
        assert "DSDB" in directory
        assert len(directory) == 1

    def test_missing_name(self, store):
        directory = NamedBlockDirectory.parse(store)
        with pytest.raises(NameNotFoundError) as exc:
            directory.lookup("DSDX")
        assert exc.value.name == "DSDX"

    def test_extra_names_preserved(self, builder):
        extra = builder.add_block(b"\x00" * 8)
        builder.directory.append(("xtra", extra))
        directory = NamedBlockDirectory.parse(BlockStore(builder.build()))
        assert directory.names() == ["DSDB", "xtra"]
        assert directory.entries()[1] == ("xtra", extra)


class TestFreeLists:

    def test_read_empty(self, store):
        directory = NamedBlockDirectory.parse(store)
        _, end = store.resolve(0)
        free = read_free_lists(Cursor(store.data, directory.end, end))
        assert len(free.lists) == 32
        assert free.total == 0
        assert free.validate(store) == []

    def test_read_entries(self, builder):
        builder.free_lists[12] = [0x1000, 0x3000]
        store = BlockStore(builder.build())
        directory = NamedBlockDirectory.parse(store)
        _, end = store.resolve(0)
        free = read_free_lists(Cursor(store.data, directory.end, end))
        assert free.lists[12] == (0x1000, 0x3000)
        assert free.total == 2

    def test_validate_overlap_and_alignment(self, builder):
        data = builder.build()
        store = BlockStore(data)
        free = FreeLists(lists=tuple(
            (builder.offsets[1],) if order == 5 else
            (0x30,) if order == 6 else ()
            for order in range(32)))
        issues = free.validate(store)
        assert any("overlaps allocated block 1" in i for i in issues)
        assert any("not aligned" in i for i in issues)


# ═══════════════════════════════════════════════════════════════════════════
# 4. Value Types
# ═══════════════════════════════════════════════════════════════════════════

class TestValueTypes:

    @pytest.mark.parametrize("tag,data", [
        ("long", 42), ("long", -7), ("shor", -300), ("bool", True),
        ("bool", False), ("blob", b"\x01\x02\x03"), ("blob", b""),
        ("type", "icnv"), ("ustr", "Finder comment"), ("comp", 2**63 + 5),
        ("dutc", 123456789),
    ])
    def test_dispatch(self, tag, data):
        payload = encode_value(tag, data)
        c = _cursor(payload + b"\xEE")
        value = deserialize_value(c, tag)
        assert value.kind == type_from_tag(tag)
        assert value.data == data
        assert value.tag == tag
        # Exactly the payload was consumed
        assert c.position == len(payload)

    def test_bool_any_nonzero(self):
        assert deserialize_value(_cursor(b"\x7f"), "bool").data is True

    def test_long_is_signed(self):
        assert deserialize_value(_cursor(b"\xff\xff\xff\xfe"), "long").data == -2

    def test_unknown_tag(self):
        c = _cursor(b"\x00" * 8)
        with pytest.raises(UnknownTypeError) as exc:
            deserialize_value(c, "zzzz")
        assert exc.value.tag == "zzzz"
        assert c.position == 0
        assert type_from_tag("zzzz") is None

    def test_tags_are_case_sensitive(self):
        assert type_from_tag("LONG") is None

    def test_blob_truncated(self):
        c = _cursor(struct.pack(">I", 10) + b"abc")
        with pytest.raises(TruncatedError):
            deserialize_value(c, "blob")

    def test_dutc_datetime(self):
        ticks = 86400 * 65536  # one day after the 1904 epoch
        value = Value(ValueType.DUTC, ticks)
        assert value.as_datetime() == datetime(1904, 1, 2, tzinfo=timezone.utc)

    def test_dutc_json_has_iso(self):
        value = Value(ValueType.DUTC, 0)
        assert value.to_json()["datetime"].startswith("1904-01-01")

    def test_as_datetime_wrong_type(self):
        with pytest.raises(TypeError):
            Value(ValueType.LONG, 1).as_datetime()

    def test_blob_json_is_hex(self):
        assert Value(ValueType.BLOB, b"\x01\xff").to_json() == {
            "type": "blob", "value": "01ff"}


# ═══════════════════════════════════════════════════════════════════════════
# 5. Record Decoding
# ═══════════════════════════════════════════════════════════════════════════

class TestRecordDecoder:

    def test_decode_sequence(self):
        recs = [Rec("Photos", "Iloc", "blob", b"\x00" * 16),
                Rec("Photos", "cmmt", "ustr", "holiday"),
                Rec("Photos", "dscl", "bool", True)]
        data = b"".join(encode_record(r) for r in recs)
        c = _cursor(data)
        decoded = [decode_record(c) for _ in recs]
        assert [(r.filename, r.code, r.value.data) for r in decoded] == \
            [(r.filename, r.code, r.data) for r in recs]
        assert c.remaining == 0

    def test_unknown_type_carries_partial_record(self):
        data = encode_record(Rec("x", "Iloc", "zzzz", b"\x01\x02"))
        c = _cursor(data)
        with pytest.raises(UnknownTypeError) as exc:
            decode_record(c)
        partial = exc.value.record
        assert isinstance(partial, Record)
        assert partial.filename == "x"
        assert partial.code == "Iloc"
        assert partial.value.kind == ValueType.UNKNOWN
        assert partial.value.tag == "zzzz"
        assert partial.value.data == b"\x01\x02"

    def test_truncated_filename(self):
        data = encode_record(Rec("abcdef", "Iloc", "long", 1))
        with pytest.raises(TruncatedError):
            decode_record(_cursor(data[:8]))

    def test_collation_case_insensitive(self):
        assert record_sort_key("apple", "Iloc") < record_sort_key("Banana", "Iloc")
        assert record_sort_key("Same", "Iloc") < record_sort_key("same", "Iloc")
        assert record_sort_key("x", "Iloc") < record_sort_key("x", "cmmt")
