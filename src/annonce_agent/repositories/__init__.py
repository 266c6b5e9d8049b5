from .postgres import ListingStore, connect, open_store

__all__ = ["ListingStore", "connect", "open_store"]
