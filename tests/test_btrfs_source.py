"""
Tests for the btrfs ioctl source.

The kernel is replaced by a fake ioctl that fills the argument block the
way BTRFS_IOC_TREE_SEARCH and BTRFS_IOC_INO_LOOKUP do.
"""

import errno
import struct

import pytest

from subvols.errors import EnumerationError, NameLookupError
from subvols.sources.base import ROOT_BACKREF_KEY, U64_MAX, SearchQuery
from subvols.sources.btrfs import (
    ARGS_SIZE,
    BTRFS_IOC_INO_LOOKUP,
    BTRFS_IOC_TREE_SEARCH,
    NR_ITEMS_OFFSET,
    ROOT_REF_FMT,
    SEARCH_HEADER_FMT,
    SEARCH_KEY_FMT,
    SEARCH_KEY_SIZE,
    BtrfsFilesystem,
    next_key,
    open_filesystem,
    pack_search_args,
    unpack_search_page,
    unpack_search_results,
)


ROOT_ITEM_KEY = 132
ROOT_REF_KEY = 156


def write_items(args, items):
    """Write (objectid, offset, dirid, name[, type]) items after the search key.

    Items default to ROOT_BACKREF. Other types get a dummy body.
    """
    off = SEARCH_KEY_SIZE
    for objectid, offset, dirid, name, *rest in items:
        item_type = rest[0] if rest else ROOT_BACKREF_KEY
        raw = name.encode("utf-8")
        if item_type == ROOT_BACKREF_KEY:
            item = struct.pack(ROOT_REF_FMT, dirid, 0, len(raw)) + raw
        else:
            item = b"\xaa" * 40
        struct.pack_into(SEARCH_HEADER_FMT, args, off, 1, objectid, offset,
                         item_type, len(item))
        off += struct.calcsize(SEARCH_HEADER_FMT)
        args[off:off + len(item)] = item
        off += len(item)
    struct.pack_into("=I", args, NR_ITEMS_OFFSET, len(items))


class FakeKernel:
    """Stands in for fcntl.ioctl."""

    def __init__(self, items=None, dirs=None, error=None):
        self.items = items or []
        self.dirs = dirs or {}
        self.error = error
        self.calls = []

    def __call__(self, fd, request, args, mutate):
        self.calls.append((fd, request, bytes(args), mutate))
        if self.error is not None:
            raise OSError(self.error, "fake failure")
        if request == BTRFS_IOC_TREE_SEARCH:
            write_items(args, self.items)
        elif request == BTRFS_IOC_INO_LOOKUP:
            treeid, objectid = struct.unpack_from("=2Q", args, 0)
            if (treeid, objectid) not in self.dirs:
                raise OSError(errno.ENOENT, "No such file or directory")
            raw = self.dirs[(treeid, objectid)].encode("utf-8") + b"\0"
            args[16:16 + len(raw)] = raw
        return 0


class PagedKernel(FakeKernel):
    """Serves one scripted page per tree search, then empty pages."""

    def __init__(self, pages, dirs=None):
        super().__init__(dirs=dirs)
        self.pages = list(pages)
        self.min_keys = []

    def __call__(self, fd, request, args, mutate):
        if request == BTRFS_IOC_TREE_SEARCH:
            fields = struct.unpack_from(SEARCH_KEY_FMT, args, 0)
            # (min_objectid, min_type, min_offset)
            self.min_keys.append((fields[1], fields[7], fields[3]))
            self.items = self.pages.pop(0) if self.pages else []
        return super().__call__(fd, request, args, mutate)


class TestRequestNumbers:
    """Test the encoded ioctl request numbers."""

    def test_tree_search(self):
        assert BTRFS_IOC_TREE_SEARCH == 0xD0009411

    def test_ino_lookup(self):
        assert BTRFS_IOC_INO_LOOKUP == 0xD0009412

    def test_search_key_size(self):
        assert SEARCH_KEY_SIZE == 104


class TestSearchArgs:
    """Test packing and parsing of the search argument block."""

    def test_pack_layout(self):
        """The key fields land at their kernel offsets."""
        query = SearchQuery(min_objectid=257, min_offset=5, nr_items=16)
        args = pack_search_args(query)

        assert len(args) == ARGS_SIZE
        fields = struct.unpack_from(SEARCH_KEY_FMT, args, 0)
        assert fields[0] == 1                     # tree_id
        assert fields[1] == 257                   # min_objectid
        assert fields[3] == 5                     # min_offset
        assert fields[7] == ROOT_BACKREF_KEY      # min_type
        assert fields[8] == ROOT_BACKREF_KEY      # max_type
        assert fields[9] == 16                    # nr_items

    def test_unpack_items(self):
        """Items are read back with their variable length names."""
        args = bytearray(ARGS_SIZE)
        write_items(args, [(257, 5, 256, "home"), (258, 257, 300, "a-longer-name")])

        entries = unpack_search_results(args)

        assert [(e.root_id, e.ref_tree, e.dir_id, e.name) for e in entries] == [
            (257, 5, 256, "home"),
            (258, 257, 300, "a-longer-name"),
        ]

    def test_unpack_empty(self):
        assert unpack_search_results(bytearray(ARGS_SIZE)) == []

    def test_non_utf8_names_survive(self):
        """Undecodable bytes are kept via surrogateescape."""
        args = bytearray(ARGS_SIZE)
        raw = b"bad\xff"
        item = struct.pack(ROOT_REF_FMT, 256, 0, len(raw)) + raw
        struct.pack_into(SEARCH_HEADER_FMT, args, SEARCH_KEY_SIZE, 1, 257, 5,
                         ROOT_BACKREF_KEY, len(item))
        start = SEARCH_KEY_SIZE + struct.calcsize(SEARCH_HEADER_FMT)
        args[start:start + len(item)] = item
        struct.pack_into("=I", args, NR_ITEMS_OFFSET, 1)

        name = unpack_search_results(args)[0].name

        assert name.encode("utf-8", errors="surrogateescape") == raw


    def test_unpack_skips_other_item_types(self):
        """Root items and forward refs sharing the page are not entries."""
        args = bytearray(ARGS_SIZE)
        write_items(args, [
            (257, 0, 0, "", ROOT_ITEM_KEY),
            (257, 5, 256, "home"),
            (257, 300, 0, "", ROOT_REF_KEY),
            (258, 257, 300, "alice"),
        ])

        entries, last_key = unpack_search_page(args)

        assert [(e.root_id, e.ref_tree, e.name) for e in entries] == [
            (257, 5, "home"),
            (258, 257, "alice"),
        ]
        assert last_key == (258, ROOT_BACKREF_KEY, 257)

    def test_unpack_page_without_backrefs(self):
        args = bytearray(ARGS_SIZE)
        write_items(args, [(256, 0, 0, "", ROOT_ITEM_KEY)])

        assert unpack_search_page(args) == ([], (256, ROOT_ITEM_KEY, 0))

    def test_unpack_empty_page_has_no_last_key(self):
        assert unpack_search_page(bytearray(ARGS_SIZE)) == ([], None)


class TestNextKey:
    """Test stepping past the last key of a page."""

    def test_bumps_offset(self):
        assert next_key((257, ROOT_ITEM_KEY, 0)) == (257, ROOT_ITEM_KEY, 1)

    def test_offset_carries_into_type(self):
        assert next_key((257, ROOT_ITEM_KEY, U64_MAX)) == (257, ROOT_ITEM_KEY + 1, 0)

    def test_type_carries_into_objectid(self):
        assert next_key((257, 0xff, U64_MAX)) == (258, 0, 0)

    def test_end_of_key_space(self):
        assert next_key((U64_MAX, 0xff, U64_MAX)) is None


class TestBtrfsFilesystem:
    """Test the source against the fake kernel."""

    def test_search_returns_entries(self):
        kernel = FakeKernel(items=[(257, 5, 256, "home")])
        fs = BtrfsFilesystem(3, ioctl=kernel)
        query = SearchQuery()

        entries = fs.search(query)

        assert [(e.root_id, e.name) for e in entries] == [(257, "home")]
        assert query.nr_items == 1
        fd, request, _, mutate = kernel.calls[0]
        assert fd == 3
        assert request == BTRFS_IOC_TREE_SEARCH
        assert mutate is True

    def test_search_failure(self):
        fs = BtrfsFilesystem(3, ioctl=FakeKernel(error=errno.EPERM))

        with pytest.raises(EnumerationError):
            fs.search(SearchQuery())

    def test_search_skips_other_item_types(self):
        kernel = FakeKernel(items=[
            (257, 0, 0, "", ROOT_ITEM_KEY),
            (257, 5, 256, "home"),
        ])
        fs = BtrfsFilesystem(3, ioctl=kernel)
        query = SearchQuery()

        entries = fs.search(query)

        assert [(e.root_id, e.ref_tree, e.name) for e in entries] == [(257, 5, "home")]
        assert query.nr_items == 1
        assert len(kernel.calls) == 1

    def test_search_continues_past_page_without_backrefs(self):
        """A page of root items alone does not end the search."""
        kernel = PagedKernel([
            [(256, 0, 0, "", ROOT_ITEM_KEY), (257, 0, 0, "", ROOT_ITEM_KEY)],
            [(257, 5, 256, "home")],
        ])
        fs = BtrfsFilesystem(3, ioctl=kernel)
        query = SearchQuery(min_objectid=256)

        entries = fs.search(query)

        assert [(e.root_id, e.name) for e in entries] == [(257, "home")]
        assert kernel.min_keys == [
            (256, ROOT_BACKREF_KEY, 0),
            (257, ROOT_ITEM_KEY, 1),
        ]
        # the caller's bounds are untouched
        assert query.min_objectid == 256
        assert query.min_type == ROOT_BACKREF_KEY
        assert query.nr_items == 1

    def test_search_ends_when_only_other_items_remain(self):
        kernel = PagedKernel([[(300, 0, 0, "", ROOT_ITEM_KEY)]])
        fs = BtrfsFilesystem(3, ioctl=kernel)
        query = SearchQuery()

        assert fs.search(query) == []
        assert query.nr_items == 0
        assert len(kernel.min_keys) == 2

    def test_listing_with_interleaved_root_items(self):
        """Enumeration does not stop at a page holding no backrefs."""
        from subvols.services import ListingService

        kernel = PagedKernel(
            [
                [(257, 0, 0, "", ROOT_ITEM_KEY), (257, 5, 256, "home")],
                [(258, 0, 0, "", ROOT_ITEM_KEY)],
                [(258, 257, 256, "alice")],
            ],
            dirs={(5, 256): "", (257, 256): ""},
        )
        result = ListingService(BtrfsFilesystem(3, ioctl=kernel)).run()

        assert [s.format_line() for s in result.subvolumes] == [
            "ID 258 top level 5 path home/alice",
            "ID 257 top level 5 path home",
        ]

    def test_lookup_dir_path(self):
        kernel = FakeKernel(dirs={(5, 300): "a/b/", (5, 256): ""})
        fs = BtrfsFilesystem(3, ioctl=kernel)

        assert fs.lookup_dir_path(5, 300) == "a/b/"
        assert fs.lookup_dir_path(5, 256) == ""
        assert kernel.calls[0][1] == BTRFS_IOC_INO_LOOKUP

    def test_lookup_failure(self):
        fs = BtrfsFilesystem(3, ioctl=FakeKernel())

        with pytest.raises(NameLookupError) as exc_info:
            fs.lookup_dir_path(5, 999)

        assert exc_info.value.tree_id == 5
        assert exc_info.value.dir_id == 999

    def test_listing_through_fake_kernel(self):
        """End to end through the ioctl codec."""
        from subvols.services import ListingService

        class OnePageKernel(FakeKernel):
            def __call__(self, fd, request, args, mutate):
                # second search finds nothing left
                if request == BTRFS_IOC_TREE_SEARCH and self.calls:
                    self.items = []
                return super().__call__(fd, request, args, mutate)

        kernel = OnePageKernel(
            items=[(257, 5, 256, "home"), (258, 257, 256, "alice")],
            dirs={(5, 256): "", (257, 256): ""},
        )
        result = ListingService(BtrfsFilesystem(3, ioctl=kernel)).run()

        assert [s.format_line() for s in result.subvolumes] == [
            "ID 258 top level 5 path home/alice",
            "ID 257 top level 5 path home",
        ]


class TestOpenFilesystem:
    """Test descriptor ownership."""

    def test_context_manager_closes_fd(self, tmp_path):
        fs = open_filesystem(str(tmp_path))
        fd = fs.fd
        with fs:
            assert fd >= 0
        assert fs.fd == -1

    def test_borrowed_fd_is_not_closed(self):
        fs = BtrfsFilesystem(3, ioctl=FakeKernel())
        fs.close()
        assert fs.fd == 3

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            open_filesystem(str(tmp_path / "missing"))
