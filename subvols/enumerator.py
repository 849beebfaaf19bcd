"""Builds a RootIndex from a paginated search over root backrefs."""

import logging
from typing import Optional

from subvols.errors import EnumerationError
from subvols.index import RootIndex
from subvols.sources.base import (
    DEFAULT_PAGE_SIZE,
    ROOT_BACKREF_KEY,
    ROOT_TREE_OBJECTID,
    U32_MAX,
    U64_MAX,
    SearchQuery,
    SearchSource,
)

logger = logging.getLogger(__name__)


class Enumerator:
    """Runs the search page by page and indexes every entry.

    After each page the lower bound is moved to the last objectid seen plus
    one, so the boundary root is not read twice. The scan stops on an empty
    page or when the bound cannot be advanced past U64_MAX.
    """

    def __init__(self, source: SearchSource, page_size: int = DEFAULT_PAGE_SIZE,
                 min_objectid: int = 0):
        if not 0 < page_size <= U32_MAX:
            raise ValueError(f"page_size must be between 1 and {U32_MAX}, got {page_size}")
        if not 0 <= min_objectid <= U64_MAX:
            raise ValueError(f"min_objectid must be between 0 and {U64_MAX}, got {min_objectid}")
        self.source = source
        self.page_size = page_size
        self.min_objectid = min_objectid
        self.pages = 0

    def new_query(self) -> SearchQuery:
        return SearchQuery(
            tree_id=ROOT_TREE_OBJECTID,
            min_objectid=self.min_objectid,
            min_type=ROOT_BACKREF_KEY,
            max_type=ROOT_BACKREF_KEY,
            nr_items=self.page_size,
        )

    def build_index(self, index: Optional[RootIndex] = None) -> RootIndex:
        """Search the tree of tree roots and index every root backref.

        Args:
            index: Index to fill, a new one if not given

        Returns:
            The filled index

        Raises:
            EnumerationError: If a search call fails
            DuplicateRootError: If the search reports a key twice
        """
        if index is None:
            index = RootIndex()
        query = self.new_query()
        self.pages = 0

        while True:
            try:
                entries = self.source.search(query)
            except OSError as e:
                raise EnumerationError(f"can't perform the search: {e}") from e
            self.pages += 1

            if not entries:
                break
            logger.debug(f"Page {self.pages}: {len(entries)} root refs "
                         f"from objectid {query.min_objectid}")

            for entry in entries:
                index.insert(entry.root_id, entry.ref_tree, entry.dir_id, entry.name)

                query.min_objectid = entry.root_id
                query.min_type = ROOT_BACKREF_KEY
                query.min_offset = entry.ref_tree

            query.nr_items = self.page_size
            if not advance_bound(query):
                break

        logger.debug(f"Indexed {len(index)} root refs in {self.pages} searches")
        return index


def advance_bound(query: SearchQuery) -> bool:
    """Step the query past the last root seen.

    Returns:
        False when min_objectid is already U64_MAX and no further search
        should be issued
    """
    if query.min_objectid < U64_MAX:
        query.min_objectid += 1
        # the key compares as a whole, keep every offset of the next root
        query.min_offset = 0
        return True
    return False
