"""Catalog store providers.

SQLiteCatalogStore keeps the four entity tables, their relationship tables
and the genre lookup in a single SQLite file (``data/catalog.db`` by
default).  Each entity row carries the content hash it was written with,
so a later run can skip records whose hash did not change.
"""

from src.providers.store.sqlite_catalog_store import SQLiteCatalogStore

__all__ = ["SQLiteCatalogStore"]
