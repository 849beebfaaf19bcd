"""Shared fixtures for subvols tests."""

import pytest

from subvols.models import RawRootRef
from subvols.sources.memory import MemorySource


def make_source(refs, dirs=None):
    """Build a MemorySource from (root_id, ref_tree, dir_id, name) tuples."""
    return MemorySource(
        [RawRootRef(root_id, ref_tree, dir_id, name) for root_id, ref_tree, dir_id, name in refs],
        dirs or {},
    )


@pytest.fixture
def nested_source():
    """A small filesystem layout.

    Structure:
        <top 5>
        ├── home/                    (257, linked in 5 at dir 256)
        │   └── users/alice/         (258, linked in 257 at dir 300 "users/")
        │       └── projects/        (259, linked in 258 at dir 256)
        └── snapshots/daily          (260, linked in 5 at dir 400 "snapshots/")
    """
    return make_source(
        [
            (257, 5, 256, "home"),
            (258, 257, 300, "alice"),
            (259, 258, 256, "projects"),
            (260, 5, 400, "daily"),
        ],
        {
            (5, 256): "",
            (257, 300): "users/",
            (258, 256): "",
            (5, 400): "snapshots/",
        },
    )
