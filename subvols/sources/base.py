"""
Base interfaces for subvolume data sources.

A data source answers two questions: which root backrefs exist in the tree
of tree roots (a paginated search), and what directory path a given inode
has inside a given subvolume.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

from subvols.models import RawRootRef

# Tree holding the root items and root refs
ROOT_TREE_OBJECTID = 1

ROOT_BACKREF_KEY = 144

U64_MAX = (1 << 64) - 1

# nr_items is a u32 in the search key
U32_MAX = (1 << 32) - 1

DEFAULT_PAGE_SIZE = 4096


@dataclass
class SearchQuery:
    """Search key sent with each page request.

    The enumerator moves the min_* fields forward after every page. The
    source writes the number of items it returned back into nr_items.
    """
    tree_id: int = ROOT_TREE_OBJECTID
    min_objectid: int = 0
    max_objectid: int = U64_MAX
    min_offset: int = 0
    max_offset: int = U64_MAX
    min_transid: int = 0
    max_transid: int = U64_MAX
    min_type: int = ROOT_BACKREF_KEY
    max_type: int = ROOT_BACKREF_KEY
    nr_items: int = DEFAULT_PAGE_SIZE


class SearchSource(ABC):
    """Paginated search over root backref items."""

    @abstractmethod
    def search(self, query: SearchQuery) -> List[RawRootRef]:
        """
        Return the next page of items with key >= the query's lower bound.

        An empty list means there is nothing left.

        Raises:
            EnumerationError: If the search cannot be performed
        """
        pass


class NameLookup(ABC):
    """Looks up the path of a directory inside a subvolume."""

    @abstractmethod
    def lookup_dir_path(self, tree_id: int, dir_id: int) -> str:
        """
        Get the path of dir_id as seen from the root of tree_id.

        Returns:
            The path with a trailing '/', or '' when dir_id is the
            subvolume's own root directory

        Raises:
            NameLookupError: If the subvolume or directory is gone
        """
        pass
