"""Ordered index of the subvolume references found by a search.

Records are keyed by (root_id, ref_tree). The same root_id shows up once per
directory entry that links to it, so lookups by root_id alone return the
record with the smallest ref_tree.
"""

import logging
from bisect import bisect_left, insort
from typing import Dict, Iterator, List, Optional, Tuple

from subvols.errors import DuplicateRootError
from subvols.models import SubvolumeRecord

logger = logging.getLogger(__name__)

Key = Tuple[int, int]


class RootIndex:
    """Sorted mapping of (root_id, ref_tree) to SubvolumeRecord.

    Built once per enumeration pass by single-threaded insertion. After the
    build only the ``path`` field of the records is written.
    """

    def __init__(self):
        self._keys: List[Key] = []
        self._records: Dict[Key, SubvolumeRecord] = {}

    def insert(self, root_id: int, ref_tree: int, dir_id: int,
               name: str) -> SubvolumeRecord:
        """Add a record for a subvolume reference.

        Args:
            root_id: Id of the subvolume
            ref_tree: Id of the referencing subvolume
            dir_id: Directory in ref_tree holding the link
            name: Link name within dir_id

        Returns:
            The new record

        Raises:
            DuplicateRootError: If the key is already present
        """
        key = (root_id, ref_tree)
        if key in self._records:
            raise DuplicateRootError(root_id, ref_tree)

        record = SubvolumeRecord(root_id=root_id, ref_tree=ref_tree,
                                 dir_id=dir_id, name=name)
        self._records[key] = record
        insort(self._keys, key)
        logger.debug(f"Indexed root {root_id} (ref {ref_tree}, dir {dir_id}) as '{name}'")
        return record

    def find_first(self, root_id: int) -> Optional[SubvolumeRecord]:
        """Find the record for root_id with the smallest ref_tree."""
        # (root_id,) sorts before every (root_id, ref_tree) pair
        pos = bisect_left(self._keys, (root_id,))
        if pos == len(self._keys):
            return None
        key = self._keys[pos]
        if key[0] != root_id:
            return None
        return self._records[key]

    def get(self, root_id: int, ref_tree: int) -> Optional[SubvolumeRecord]:
        return self._records.get((root_id, ref_tree))

    def ascending(self) -> Iterator[SubvolumeRecord]:
        for key in self._keys:
            yield self._records[key]

    def descending(self) -> Iterator[SubvolumeRecord]:
        for key in reversed(self._keys):
            yield self._records[key]

    def __iter__(self) -> Iterator[SubvolumeRecord]:
        return self.ascending()

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(records={len(self)})"
