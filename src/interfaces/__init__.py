"""Abstract contracts for the ingestion worker's persistence backends.

The pipeline talks to storage only through the base classes defined here;
concrete adapters live in ``src/providers/`` and are chosen in
``src/main.py`` by :func:`~src.main.build_components`.  Unit tests inject
in-memory fakes that implement the same contracts.

CONCRETE PROVIDER MAP:
    Interface           →  Concrete implementation (in src/providers/)
    ─────────────────────────────────────────────────────────────────
    ICatalogStore       →  SQLiteCatalogStore
    IStateRepository    →  SQLiteStateRepository

Re-exports
----------
ICatalogStore
    Catalog entity/relationship upserts and stored content-hash lookup.
IStateRepository
    Per-period lifecycle rows with compare-and-set status updates.
"""

from src.interfaces.catalog_store import ICatalogStore
from src.interfaces.state_repository import IStateRepository

__all__ = [
    "ICatalogStore",
    "IStateRepository",
]
