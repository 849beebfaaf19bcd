"""
subvols - list btrfs subvolumes with their full paths.

Main API:
    from subvols.sources import open_filesystem
    from subvols.services import ListingService

    with open_filesystem("/mnt/pool") as fs:
        result = ListingService(fs).run()

    for sub in result.subvolumes:
        print(sub.format_line())   # ID 257 top level 5 path home/alice

    for failure in result.failures:
        print(failure.root_id, failure.message)

Lower level pieces:
    RootIndex     - ordered (root_id, ref_tree) index with first-by-root lookup
    Enumerator    - paginated root backref search that fills a RootIndex
    PathResolver  - walks ref_tree links up to the top level subvolume
"""

from .enumerator import Enumerator
from .index import RootIndex
from .resolver import PathResolver, enrich_index, enrich_record
from .services import ListingService

__version__ = "0.1.0"
__all__ = [
    "RootIndex",
    "Enumerator",
    "PathResolver",
    "enrich_record",
    "enrich_index",
    "ListingService",
]
