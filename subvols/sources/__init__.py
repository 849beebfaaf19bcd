"""
Data sources for subvolume listing.

Provides the two collaborators the listing needs:
- SearchSource: paginated search over root backref items
- NameLookup: directory path of an inode inside a subvolume

Backends:
- BtrfsFilesystem: ioctls on a mounted btrfs filesystem
- MemorySource: in-memory data and JSON dumps
"""

from .base import NameLookup, SearchQuery, SearchSource
from .btrfs import BtrfsFilesystem, open_filesystem
from .memory import MemorySource

__all__ = [
    'SearchSource',
    'NameLookup',
    'SearchQuery',
    'BtrfsFilesystem',
    'open_filesystem',
    'MemorySource',
]
