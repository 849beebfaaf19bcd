"""Exceptions raised while listing subvolumes.

Fatal errors (enumeration, indexing) abort the whole pass. Name lookup
failures are per-record and are collected by the listing service.
"""

from typing import Optional


class SubvolError(Exception):
    """Base class for subvols errors."""
    pass


class EnumerationError(SubvolError):
    """The tree search could not make progress."""
    pass


class DuplicateRootError(SubvolError):
    """A (root_id, ref_tree) key was reported twice by the search."""

    def __init__(self, root_id: int, ref_tree: int):
        super().__init__(f"failed to insert tree {root_id}")
        self.root_id = root_id
        self.ref_tree = ref_tree


class NameLookupError(SubvolError):
    """The directory path of a subvolume link could not be looked up."""

    def __init__(self, tree_id: int, dir_id: int, reason: Optional[str] = None):
        message = f"Failed to lookup path for root {tree_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.tree_id = tree_id
        self.dir_id = dir_id


class UnresolvedRecordError(SubvolError):
    """A record was walked before its local path was filled in."""
    pass
