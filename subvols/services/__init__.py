"""
Services for subvols business logic.
"""

from .listing_service import ListingService

__all__ = [
    'ListingService',
]
