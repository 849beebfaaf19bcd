"""Path resolution for indexed subvolumes.

Two steps:
- enrichment fills each record's local path (directory prefix inside the
  referencing subvolume + link name) from a NameLookup
- PathResolver walks ref_tree links up through the index and joins the
  local paths into a path from the filesystem root
"""

import logging
from typing import List, Tuple

from subvols.errors import NameLookupError, UnresolvedRecordError
from subvols.index import RootIndex
from subvols.models import RecordFailure, ResolvedSubvolume, SubvolumeRecord
from subvols.sources.base import NameLookup

logger = logging.getLogger(__name__)


def enrich_record(lookup: NameLookup, record: SubvolumeRecord) -> str:
    """Fill in record.path if it is not set yet.

    Args:
        lookup: Name lookup collaborator
        record: Record to fill in

    Returns:
        The record's local path

    Raises:
        NameLookupError: If the lookup fails; record.path stays None
    """
    if record.path is not None:
        return record.path

    prefix = lookup.lookup_dir_path(record.ref_tree, record.dir_id)
    if prefix:
        # the lookup already ends the prefix with a '/'
        record.path = prefix + record.name
    else:
        record.path = record.name
    return record.path


def enrich_index(lookup: NameLookup, index: RootIndex) -> List[RecordFailure]:
    """Fill in the local path of every record, in ascending key order.

    Returns:
        One RecordFailure per record whose lookup failed
    """
    failures = []
    for record in index.ascending():
        try:
            enrich_record(lookup, record)
        except NameLookupError as e:
            logger.warning(f"Skipping root {record.root_id}: {e}")
            failures.append(RecordFailure(record.root_id, record.ref_tree, str(e)))
    logger.debug(f"Looked up {len(index) - len(failures)} of {len(index)} subvolume paths")
    return failures


class PathResolver:
    """Resolves full subvolume paths by ascending the reference chain.

    Every record reached while walking up must have been enriched first.
    The chain is assumed to end at a self-referencing root or at a root
    that is not in the index; a reference cycle is not detected.
    """

    def __init__(self, index: RootIndex):
        """Initialize path resolver.

        Args:
            index: Enriched root index
        """
        self.index = index

    def resolve(self, record: SubvolumeRecord) -> Tuple[int, str]:
        """Get the top level id and full path of a record.

        Returns:
            (top_id, full_path). top_id is the self-referencing root, or the
            first ref_tree missing from the index.

        Raises:
            UnresolvedRecordError: If a record on the chain has no path
        """
        fragments = [self._local_path(record)]
        current = record

        while True:
            next_ref = current.ref_tree
            if next_ref == current.root_id:
                break

            found = self.index.find_first(next_ref)
            if found is None:
                break

            current = found
            fragments.append(self._local_path(current))

        # an unnamed top level root adds no segment
        return next_ref, "/".join(f for f in reversed(fragments) if f)

    def resolve_all(self) -> Tuple[List[ResolvedSubvolume], List[RecordFailure]]:
        """Resolve every enriched record in descending key order.

        Records without a local path are skipped silently, their lookup
        failure was already reported. Records whose chain runs through an
        unresolved record are returned as failures.
        """
        resolved = []
        failures = []
        for record in self.index.descending():
            if record.path is None:
                continue
            try:
                top_id, full_path = self.resolve(record)
            except UnresolvedRecordError as e:
                logger.warning(f"Skipping root {record.root_id}: {e}")
                failures.append(RecordFailure(record.root_id, record.ref_tree, str(e)))
                continue
            resolved.append(ResolvedSubvolume(
                root_id=record.root_id,
                ref_tree=record.ref_tree,
                top_id=top_id,
                path=full_path,
            ))
        return resolved, failures

    def _local_path(self, record: SubvolumeRecord) -> str:
        if record.path is None:
            raise UnresolvedRecordError(
                f"root {record.root_id} (ref {record.ref_tree}) has no local path"
            )
        return record.path
