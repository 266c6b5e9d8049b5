from .listing import ListingRecord

__all__ = ["ListingRecord"]
