"""
Entity Store Abstraction

This module defines the EntityStore interface and the in-memory
implementation. The PostgreSQL implementation lives in db.postgres.

The EntityStore is responsible for:
- Key-based load / upsert of derived entities
- Namespacing keys per entity kind (keys never collide across kinds)
- Atomic application of all writes produced by one event

The accounting engine retains responsibility for:
- Composite key construction
- Variant-specific accounting rules
- Correlation between events

TRANSACTION CONTRACT:
All writes for one contract event MUST happen inside unit_of_work():

    with store.unit_of_work():
        account = store.load(LedgerAccount, key)
        ...
        store.upsert(account)

Writes are staged and become durable together when the block exits
cleanly. Any exception discards every staged write (no partial writes).
Loads inside the block see staged writes (read-your-writes).

Every load returns a fresh copy. Nothing handed out by the store is
shared with the store's own state, so callers cannot hold a reference
that goes stale across events.
"""

import copy
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Generator, Optional, TypeVar

from ..schemas import Entity


E = TypeVar("E", bound=Entity)

# (entity kind, entity id)
StoreKey = tuple[str, str]


# ============================================================
# EXCEPTIONS
# ============================================================

class EntityStoreError(Exception):
    """Base exception for entity store errors."""
    pass


class StoreTimeoutError(EntityStoreError):
    """Raised when the backing database times out (store busy)."""
    pass


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass
class UnitOfWork:
    """
    Transaction context for one event's writes.

    Holds the staged writes and, for database-backed stores, the
    connection and cursor. Commit/rollback always happen on the SAME
    connection that performed the reads.

    A staged value of None marks a delete.
    """
    _store: "EntityStore"
    _conn: Any = field(default=None)
    _cursor: Any = field(default=None)
    staged: dict[StoreKey, Optional[dict[str, Any]]] = field(default_factory=dict)
    _committed: bool = field(default=False, init=False)
    _rolled_back: bool = field(default=False, init=False)

    @property
    def is_open(self) -> bool:
        return not self._committed and not self._rolled_back

    def commit(self) -> None:
        """Make every staged write durable."""
        if self._committed:
            raise EntityStoreError("Unit of work already committed")
        if self._rolled_back:
            raise EntityStoreError("Unit of work already rolled back")
        self._store._do_commit(self)
        self._committed = True

    def rollback(self) -> None:
        """Discard every staged write."""
        if self.is_open:
            self._store._do_rollback(self)
            self.staged.clear()
            self._rolled_back = True


# ============================================================
# ABSTRACT BASE CLASS
# ============================================================

class EntityStore(ABC):
    """
    Abstract base class for derived-entity storage.

    Implementations must ensure:
    1. A committed upsert is visible to every subsequent load
    2. A unit of work commits all of its writes or none of them
    3. Loads return copies, never the stored object itself

    Single writer: one unit of work at a time. Events are processed
    strictly sequentially, which is what makes the additive counters
    and the two-phase correlation patches safe without finer locking.
    """

    def __init__(self) -> None:
        self._active: Optional[UnitOfWork] = None

    @contextmanager
    @abstractmethod
    def unit_of_work(self) -> Generator[UnitOfWork, None, None]:
        """
        Begin an atomic unit of work.

        Commits on clean exit, rolls back if an exception escapes.
        """
        pass

    @abstractmethod
    def _read(self, kind: str, key: str) -> Optional[dict[str, Any]]:
        """Internal: read committed state (inside the active unit of work, if any)."""
        pass

    @abstractmethod
    def _read_kind(self, kind: str) -> dict[str, dict[str, Any]]:
        """Internal: read every committed entity of one kind, keyed by id."""
        pass

    @abstractmethod
    def _do_commit(self, uow: UnitOfWork) -> None:
        """Internal: flush staged writes. Use uow.commit() instead."""
        pass

    @abstractmethod
    def _do_rollback(self, uow: UnitOfWork) -> None:
        """Internal: abandon the unit of work. Use uow.rollback() instead."""
        pass

    # ================================================================
    # PUBLIC API
    # ================================================================

    @property
    def in_unit_of_work(self) -> bool:
        return self._active is not None and self._active.is_open

    def load(self, model: type[E], key: str) -> Optional[E]:
        """Load an entity by key, or None if absent."""
        kind = model.ENTITY_KIND
        if self.in_unit_of_work and (kind, key) in self._active.staged:
            data = self._active.staged[(kind, key)]
        else:
            data = self._read(kind, key)
        if data is None:
            return None
        return model.model_validate(copy.deepcopy(data))

    def upsert(self, entity: Entity) -> None:
        """
        Insert or replace an entity.

        Outside a unit of work this is its own single-write transaction.
        """
        data = entity.model_dump(mode="json")
        if self.in_unit_of_work:
            self._active.staged[(entity.ENTITY_KIND, entity.id)] = data
            return
        with self.unit_of_work() as uow:
            uow.staged[(entity.ENTITY_KIND, entity.id)] = data

    def delete(self, model: type[Entity], key: str) -> None:
        """Remove an entity. Deleting an absent key is a no-op."""
        if self.in_unit_of_work:
            self._active.staged[(model.ENTITY_KIND, key)] = None
            return
        with self.unit_of_work() as uow:
            uow.staged[(model.ENTITY_KIND, key)] = None

    def get_or_create(
        self,
        model: type[E],
        key: str,
        factory: Callable[[], E],
    ) -> tuple[E, bool]:
        """
        Load by key; if absent, build with factory() and persist.

        Returns:
            (entity, created)
        """
        existing = self.load(model, key)
        if existing is not None:
            return existing, False
        entity = factory()
        if entity.id != key:
            raise EntityStoreError(
                f"Factory produced id {entity.id!r} for key {key!r}"
            )
        self.upsert(entity)
        return entity, True

    def list(self, model: type[E]) -> list[E]:
        """All entities of one kind, ordered by id."""
        kind = model.ENTITY_KIND
        rows = dict(self._read_kind(kind))
        if self.in_unit_of_work:
            for (staged_kind, key), data in self._active.staged.items():
                if staged_kind != kind:
                    continue
                if data is None:
                    rows.pop(key, None)
                else:
                    rows[key] = data
        return [
            model.model_validate(copy.deepcopy(rows[key]))
            for key in sorted(rows)
        ]

    def count(self, model: type[Entity]) -> int:
        """Number of entities of one kind."""
        return len(self.list(model))


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryEntityStore(EntityStore):
    """
    In-memory implementation of EntityStore.

    Suitable for:
    - Development
    - Testing
    - One-shot replays whose result is read in the same process

    NOT suitable for:
    - Production (no durability)
    - Multi-instance deployments (no shared state)
    """

    def __init__(self):
        super().__init__()
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = Lock()

    @contextmanager
    def unit_of_work(self) -> Generator[UnitOfWork, None, None]:
        """Begin a unit of work holding the single-writer lock."""
        if self.in_unit_of_work:
            raise EntityStoreError("Nested unit of work is not supported")

        self._lock.acquire()
        uow = UnitOfWork(_store=self, _conn="in_memory_lock")
        self._active = uow

        try:
            yield uow
            if uow.is_open:
                uow.commit()
        except Exception:
            uow.rollback()
            raise
        finally:
            self._active = None
            self._lock.release()

    def _read(self, kind: str, key: str) -> Optional[dict[str, Any]]:
        return self._data.get(kind, {}).get(key)

    def _read_kind(self, kind: str) -> dict[str, dict[str, Any]]:
        return self._data.get(kind, {})

    def _do_commit(self, uow: UnitOfWork) -> None:
        """Apply staged writes to the in-memory maps."""
        if uow._conn != "in_memory_lock":
            raise EntityStoreError("_do_commit called outside unit of work")

        for (kind, key), data in uow.staged.items():
            bucket = self._data.setdefault(kind, {})
            if data is None:
                bucket.pop(key, None)
            else:
                bucket[key] = copy.deepcopy(data)
        uow.staged.clear()

    def _do_rollback(self, uow: UnitOfWork) -> None:
        """Nothing reached the maps; dropping the staged writes is enough."""
        pass

    def clear(self) -> None:
        """Clear all entities (for testing only)."""
        with self._lock:
            self._data.clear()
