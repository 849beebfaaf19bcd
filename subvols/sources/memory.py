"""
In-memory data source.

Serves root backrefs and directory paths from plain Python data. Used by the
tests and by ``subvols list --from-dump`` to replay a JSON dump without a
mounted filesystem.

Dump format:

    {
        "refs": [{"root_id": 256, "ref_tree": 5, "dir_id": 256, "name": "home"}],
        "dirs": {"5:256": ""}
    }
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from subvols.errors import EnumerationError, NameLookupError
from subvols.models import RawRootRef
from subvols.sources.base import SearchQuery, SearchSource, NameLookup


class MemorySource(SearchSource, NameLookup):
    """Search source and name lookup over in-memory data.

    search() honours min_objectid, max_objectid and nr_items the same way
    the kernel does, so pagination can be exercised without a filesystem.
    """

    def __init__(self, refs: Iterable[RawRootRef],
                 dirs: Optional[Dict[Tuple[int, int], str]] = None):
        """
        Args:
            refs: Root backref entries
            dirs: Map of (tree_id, dir_id) to directory path prefix. Keys
                missing from the map fail lookup_dir_path().
        """
        self.refs = sorted(refs, key=lambda r: (r.root_id, r.ref_tree))
        self.dirs = dict(dirs or {})
        self.queries: List[SearchQuery] = []
        self.lookups: List[Tuple[int, int]] = []
        self.fail_search = False

    def search(self, query: SearchQuery) -> List[RawRootRef]:
        self.queries.append(SearchQuery(**vars(query)))
        if self.fail_search:
            raise EnumerationError("can't perform the search")

        page = [
            ref for ref in self.refs
            if query.min_objectid <= ref.root_id <= query.max_objectid
        ][:query.nr_items]
        query.nr_items = len(page)
        return page

    def lookup_dir_path(self, tree_id: int, dir_id: int) -> str:
        self.lookups.append((tree_id, dir_id))
        try:
            return self.dirs[(tree_id, dir_id)]
        except KeyError:
            raise NameLookupError(tree_id, dir_id, "No such file or directory")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MemorySource':
        """Create from a dump dictionary."""
        refs = [
            RawRootRef(
                root_id=int(ref["root_id"]),
                ref_tree=int(ref["ref_tree"]),
                dir_id=int(ref["dir_id"]),
                name=ref.get("name", ""),
            )
            for ref in data.get("refs", [])
        ]
        dirs = {}
        for key, prefix in data.get("dirs", {}).items():
            tree_id, dir_id = key.split(":", 1)
            dirs[(int(tree_id), int(dir_id))] = prefix
        return cls(refs, dirs)

    @classmethod
    def load(cls, path: Path) -> 'MemorySource':
        """
        Load a JSON dump.

        Raises:
            ValueError: If the file is not valid JSON or has a malformed entry
        """
        with open(path, 'r') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid dump {path}: {e}") from e
        try:
            return cls.from_dict(data)
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed dump {path}: {e}") from e
