"""Service that lists every subvolume with its full path.

Runs the three phases in order: enumerate root backrefs into a RootIndex,
look up each record's local path (ascending key order), then resolve full
paths (descending key order). Search and indexing failures abort the pass;
name lookup failures only drop the affected records.
"""

import logging
from typing import Optional

from subvols.enumerator import Enumerator
from subvols.index import RootIndex
from subvols.models import ListingResult
from subvols.resolver import PathResolver, enrich_index
from subvols.sources.base import DEFAULT_PAGE_SIZE, NameLookup, SearchSource

logger = logging.getLogger(__name__)


class ListingService:
    """Lists subvolumes from a search source and a name lookup."""

    def __init__(self, source: SearchSource, lookup: Optional[NameLookup] = None,
                 page_size: int = DEFAULT_PAGE_SIZE, min_objectid: int = 0):
        """Initialize listing service.

        Args:
            source: Paginated root backref search
            lookup: Directory path lookup, defaults to source when it
                implements NameLookup
            page_size: Items requested per search
            min_objectid: First root id to search from
        """
        if lookup is None:
            if not isinstance(source, NameLookup):
                raise TypeError("lookup is required when source is not a NameLookup")
            lookup = source
        self.source = source
        self.lookup = lookup
        self.enumerator = Enumerator(source, page_size=page_size,
                                     min_objectid=min_objectid)
        self.index: Optional[RootIndex] = None

    def run(self) -> ListingResult:
        """List every subvolume.

        Returns:
            ListingResult with resolved subvolumes in descending key order
            and the records that were skipped

        Raises:
            EnumerationError: If the search fails
            DuplicateRootError: If the search reports a key twice
        """
        self.index = None
        index = self.enumerator.build_index()
        logger.debug(f"Found {len(index)} subvolume references")

        failures = enrich_index(self.lookup, index)
        subvolumes, unresolved = PathResolver(index).resolve_all()

        self.index = index
        return ListingResult(subvolumes=subvolumes, failures=failures + unresolved)
