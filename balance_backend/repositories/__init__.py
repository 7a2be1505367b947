"""Repository layer for the balance analytics backend."""
from .analytics_repository import SQLiteStoreClient, StoreClient

__all__ = ["SQLiteStoreClient", "StoreClient"]
