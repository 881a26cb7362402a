"""Storage backends for td."""

from td.storage.interface import Storage
from td.storage.sqlite_store import SQLiteStore, close_all_stores, open_store

__all__ = ["Storage", "SQLiteStore", "open_store", "close_all_stores"]
