"""Data classes shared by the index, resolver and listing service."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class RawRootRef:
    """One root backref item as returned by a search page."""
    root_id: int
    ref_tree: int
    dir_id: int
    name: str


@dataclass
class SubvolumeRecord:
    """A subvolume reference held by the RootIndex.

    Attributes:
        root_id: Id of the subvolume itself
        ref_tree: Id of the subvolume that references this one
        dir_id: Directory inode in ref_tree where this subvolume is linked
        name: Link name of the subvolume in that directory
        path: Path from ref_tree's root to this subvolume, including name.
            None until the name lookup has run.
    """
    root_id: int
    ref_tree: int
    dir_id: int
    name: str
    path: Optional[str] = None

    @property
    def key(self) -> Tuple[int, int]:
        return (self.root_id, self.ref_tree)


@dataclass
class ResolvedSubvolume:
    """A subvolume with its full path from the filesystem root."""
    root_id: int
    ref_tree: int
    top_id: int
    path: str

    def format_line(self) -> str:
        return f"ID {self.root_id} top level {self.top_id} path {self.path}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.root_id,
            "parent": self.ref_tree,
            "top_level": self.top_id,
            "path": self.path,
        }


@dataclass
class RecordFailure:
    """A record skipped because its path could not be resolved."""
    root_id: int
    ref_tree: int
    message: str


@dataclass
class ListingResult:
    """Outcome of one listing pass.

    subvolumes are in descending (root_id, ref_tree) order; failures are in
    the ascending order the name lookups ran in.
    """
    subvolumes: List[ResolvedSubvolume] = field(default_factory=list)
    failures: List[RecordFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures
