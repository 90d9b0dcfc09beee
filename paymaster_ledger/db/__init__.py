"""
Database Layer for the Paymaster Ledger

Provides:
- EntityStore abstraction (InMemory for dev, Postgres for prod)
- Unit-of-work semantics (all writes for one event, or none)
- Connection configuration and store selection
"""

from .store import (
    EntityStore,
    InMemoryEntityStore,
    UnitOfWork,
    EntityStoreError,
    StoreTimeoutError,
)
from .config import (
    DatabaseConfig,
    StoreDriver,
    create_entity_store,
    get_database_url,
    get_store_driver,
)

__all__ = [
    "EntityStore",
    "InMemoryEntityStore",
    "UnitOfWork",
    "EntityStoreError",
    "StoreTimeoutError",
    "DatabaseConfig",
    "StoreDriver",
    "create_entity_store",
    "get_database_url",
    "get_store_driver",
]
