"""
btrfs ioctl data source.

Talks to the kernel through BTRFS_IOC_TREE_SEARCH (root backref items in the
tree of tree roots) and BTRFS_IOC_INO_LOOKUP (directory path of an inode
inside a subvolume). Both ioctls take a 4096 byte argument block.

Layout of btrfs_ioctl_search_args:

    key   104 bytes  tree_id, min/max objectid, min/max offset,
                     min/max transid (u64 x7), min/max type, nr_items,
                     unused (u32 x4), unused1-4 (u64 x4)
    buf  3992 bytes  repeated (search header, item data)

Search header: transid, objectid, offset (u64 x3), type, len (u32 x2).
Root ref item: dirid, sequence (u64 x2), name_len (u16), name bytes.
"""

import fcntl
import logging
import os
import struct
from dataclasses import replace
from typing import Callable, List, Optional, Tuple

from subvols.errors import EnumerationError, NameLookupError
from subvols.models import RawRootRef
from subvols.sources.base import (
    ROOT_BACKREF_KEY, U64_MAX, NameLookup, SearchQuery, SearchSource,
)

logger = logging.getLogger(__name__)

BTRFS_IOCTL_MAGIC = 0x94

ARGS_SIZE = 4096

SEARCH_KEY_FMT = '=7Q4I4Q'
SEARCH_KEY_SIZE = struct.calcsize(SEARCH_KEY_FMT)
SEARCH_BUF_SIZE = ARGS_SIZE - SEARCH_KEY_SIZE
NR_ITEMS_OFFSET = 7 * 8 + 2 * 4

SEARCH_HEADER_FMT = '=3Q2I'
SEARCH_HEADER_SIZE = struct.calcsize(SEARCH_HEADER_FMT)

ROOT_REF_FMT = '=QQH'
ROOT_REF_SIZE = struct.calcsize(ROOT_REF_FMT)

INO_LOOKUP_FMT = '=2Q'
INO_LOOKUP_PATH_MAX = 4080

U8_MAX = 0xff


def _iowr(nr: int, size: int) -> int:
    """Encode an _IOWR request number for the btrfs ioctl family."""
    return (3 << 30) | (size << 16) | (BTRFS_IOCTL_MAGIC << 8) | nr


BTRFS_IOC_TREE_SEARCH = _iowr(17, ARGS_SIZE)
BTRFS_IOC_INO_LOOKUP = _iowr(18, ARGS_SIZE)

IoctlFunc = Callable[[int, int, bytearray, bool], int]


def decode_name(raw: bytes) -> str:
    return raw.decode('utf-8', errors='surrogateescape')


def pack_search_args(query: SearchQuery) -> bytearray:
    """Build the argument block for a tree search."""
    args = bytearray(ARGS_SIZE)
    struct.pack_into(
        SEARCH_KEY_FMT, args, 0,
        query.tree_id,
        query.min_objectid, query.max_objectid,
        query.min_offset, query.max_offset,
        query.min_transid, query.max_transid,
        query.min_type, query.max_type,
        query.nr_items, 0,
        0, 0, 0, 0,
    )
    return args


def unpack_search_page(args: bytes) -> Tuple[List[RawRootRef], Optional[Tuple[int, int, int]]]:
    """Parse the items written back by a tree search.

    The kernel stores the number of returned items in the key's nr_items.
    Its key comparison covers the whole (objectid, type, offset) tuple, so a
    page can hold root items and forward refs between the backrefs. Those
    are skipped.

    Returns:
        The backref entries, and the key of the last item the kernel
        returned (None when the page was empty)
    """
    nr_items = struct.unpack_from('=I', args, NR_ITEMS_OFFSET)[0]
    entries = []
    last_key = None
    off = SEARCH_KEY_SIZE
    for _ in range(nr_items):
        _transid, objectid, offset, item_type, item_len = struct.unpack_from(
            SEARCH_HEADER_FMT, args, off)
        off += SEARCH_HEADER_SIZE
        last_key = (objectid, item_type, offset)

        if item_type == ROOT_BACKREF_KEY:
            dir_id, _sequence, name_len = struct.unpack_from(ROOT_REF_FMT, args, off)
            name_start = off + ROOT_REF_SIZE
            name = decode_name(bytes(args[name_start:name_start + name_len]))

            # objectid is the subvolume, offset the subvolume that links to it
            entries.append(RawRootRef(root_id=objectid, ref_tree=offset,
                                      dir_id=dir_id, name=name))
        off += item_len
    return entries, last_key


def unpack_search_results(args: bytes) -> List[RawRootRef]:
    """Root backref entries of a search page."""
    return unpack_search_page(args)[0]


def next_key(key: Tuple[int, int, int]) -> Optional[Tuple[int, int, int]]:
    """The smallest (objectid, type, offset) key after key, None past the end."""
    objectid, item_type, offset = key
    if offset < U64_MAX:
        return (objectid, item_type, offset + 1)
    if item_type < U8_MAX:
        return (objectid, item_type + 1, 0)
    if objectid < U64_MAX:
        return (objectid + 1, 0, 0)
    return None


def pack_ino_lookup_args(tree_id: int, dir_id: int) -> bytearray:
    args = bytearray(ARGS_SIZE)
    struct.pack_into(INO_LOOKUP_FMT, args, 0, tree_id, dir_id)
    return args


def unpack_ino_lookup_name(args: bytes) -> str:
    start = struct.calcsize(INO_LOOKUP_FMT)
    raw = bytes(args[start:start + INO_LOOKUP_PATH_MAX])
    return decode_name(raw.split(b'\0', 1)[0])


class BtrfsFilesystem(SearchSource, NameLookup):
    """Search source and name lookup backed by an open btrfs file descriptor.

    Use open_filesystem() to get one that owns its descriptor.
    """

    def __init__(self, fd: int, ioctl: Optional[IoctlFunc] = None,
                 owns_fd: bool = False):
        """
        Args:
            fd: Descriptor of any file or directory on the filesystem
            ioctl: ioctl implementation, defaults to fcntl.ioctl
            owns_fd: Close fd in close()
        """
        self.fd = fd
        self._ioctl = ioctl or fcntl.ioctl
        self._owns_fd = owns_fd

    def search(self, query: SearchQuery) -> List[RawRootRef]:
        """
        Return the next page of root backrefs.

        A kernel page made up only of other item types is not the end of the
        tree: the search is repeated from the key after the last item until
        backrefs turn up or the kernel returns nothing. The caller's query
        bounds are left alone; only nr_items is written back.
        """
        cursor = replace(query)
        while True:
            args = pack_search_args(cursor)
            try:
                self._ioctl(self.fd, BTRFS_IOC_TREE_SEARCH, args, True)
            except OSError as e:
                raise EnumerationError(f"can't perform the search: {e}") from e

            entries, last_key = unpack_search_page(args)
            if entries or last_key is None:
                break

            key = next_key(last_key)
            if key is None:
                break
            logger.debug(f"Page held no root backrefs, searching again from {key}")
            cursor.min_objectid, cursor.min_type, cursor.min_offset = key

        query.nr_items = len(entries)
        return entries

    def lookup_dir_path(self, tree_id: int, dir_id: int) -> str:
        args = pack_ino_lookup_args(tree_id, dir_id)
        try:
            self._ioctl(self.fd, BTRFS_IOC_INO_LOOKUP, args, True)
        except OSError as e:
            raise NameLookupError(tree_id, dir_id, e.strerror or str(e)) from e
        return unpack_ino_lookup_name(args)

    def close(self) -> None:
        if self._owns_fd and self.fd >= 0:
            os.close(self.fd)
            self.fd = -1

    def __enter__(self) -> 'BtrfsFilesystem':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def open_filesystem(path: str) -> BtrfsFilesystem:
    """
    Open a path on a mounted btrfs filesystem.

    Raises:
        FileNotFoundError: If the path does not exist
        PermissionError: If the path cannot be opened
    """
    fd = os.open(path, os.O_RDONLY)
    logger.debug(f"Opened {path} as fd {fd}")
    return BtrfsFilesystem(fd, owns_fd=True)
