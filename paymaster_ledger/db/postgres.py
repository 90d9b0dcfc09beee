"""
PostgreSQL Entity Store

Provides:
- Full ACID guarantees per unit of work
- Durability (derived state survives restarts)
- Lock/statement timeouts to prevent hanging

All entities live in one table, namespaced by kind:

    ledger_entities(kind, id, data JSONB)

Staged writes are flushed with INSERT ... ON CONFLICT DO UPDATE on the
same connection that served the unit of work's reads, then committed.
"""

from contextlib import contextmanager
from typing import Any, Callable, Generator, Optional

from psycopg2.extras import Json

from ..observability import get_logger
from .store import EntityStore, EntityStoreError, StoreTimeoutError, UnitOfWork


logger = get_logger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS ledger_entities (
    kind TEXT NOT NULL,
    id TEXT NOT NULL,
    data JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (kind, id)
);
"""


class PostgresEntityStore(EntityStore):
    """
    PostgreSQL implementation of EntityStore.

    Requirements:
    - PostgreSQL 12+
    - psycopg2 for connections
    - ensure_schema() run once (idempotent)

    Usage:
        store = PostgresEntityStore(lambda: psycopg2.connect(dsn))
        store.ensure_schema()

        with store.unit_of_work():
            store.upsert(entity)
    """

    # Timeouts to prevent hanging under load
    LOCK_TIMEOUT_MS = 2000  # 2 seconds
    STATEMENT_TIMEOUT_MS = 10000  # 10 seconds

    # psycopg2 error codes for lock/statement timeout
    PGCODE_LOCK_NOT_AVAILABLE = "55P03"
    PGCODE_QUERY_CANCELED = "57014"

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
        statement_timeout_ms: int = STATEMENT_TIMEOUT_MS,
    ):
        """
        Initialize PostgreSQL entity store.

        Args:
            connection_factory: Callable that returns a psycopg2 connection.
            lock_timeout_ms: How long to wait for row locks (ms).
            statement_timeout_ms: Max statement execution time (ms).
        """
        super().__init__()
        self._connection_factory = connection_factory
        self._lock_timeout_ms = lock_timeout_ms
        self._statement_timeout_ms = statement_timeout_ms

    def ensure_schema(self) -> None:
        """Create the entity table if it does not exist."""
        conn = self._connection_factory()
        try:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def unit_of_work(self) -> Generator[UnitOfWork, None, None]:
        """
        Begin a transaction scoped to one unit of work.

        The connection is owned by the unit of work, so reads and the
        final flush always share one transaction.
        """
        if self.in_unit_of_work:
            raise EntityStoreError("Nested unit of work is not supported")

        conn = self._connection_factory()
        conn.autocommit = False
        cursor = conn.cursor()
        uow = UnitOfWork(_store=self, _conn=conn, _cursor=cursor)

        try:
            # SET LOCAL keeps the timeouts transaction-scoped
            cursor.execute(f"SET LOCAL lock_timeout = '{self._lock_timeout_ms}ms'")
            cursor.execute(f"SET LOCAL statement_timeout = '{self._statement_timeout_ms}ms'")

            self._active = uow
            yield uow
            if uow.is_open:
                uow.commit()
        except Exception as e:
            uow.rollback()
            if self._timeout_kind(e) is not None:
                raise StoreTimeoutError("Entity store busy - statement or lock timed out") from e
            raise
        finally:
            self._active = None
            try:
                cursor.close()
            finally:
                conn.close()

    def _timeout_kind(self, e: Exception) -> Optional[str]:
        """
        Classify a PostgreSQL exception as a lock or statement timeout.

        PostgreSQL uses 57014 (query_canceled) for both lock_timeout and
        statement_timeout; the message tells them apart.
        """
        pgcode = getattr(e, "pgcode", None)
        err_msg = (getattr(e, "pgerror", None) or str(e)).lower()

        if pgcode == self.PGCODE_LOCK_NOT_AVAILABLE:
            return "lock"
        if pgcode == self.PGCODE_QUERY_CANCELED:
            if "lock timeout" in err_msg:
                return "lock"
            if "statement timeout" in err_msg:
                return "statement"
            return "timeout"
        return None

    # ================================================================
    # READS
    # ================================================================

    @contextmanager
    def _cursor(self) -> Generator[Any, None, None]:
        """Cursor of the active unit of work, or a short-lived one."""
        if self.in_unit_of_work:
            yield self._active._cursor
            return

        conn = self._connection_factory()
        cursor = conn.cursor()
        try:
            yield cursor
        finally:
            try:
                cursor.close()
            finally:
                conn.close()

    def _read(self, kind: str, key: str) -> Optional[dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT data FROM ledger_entities WHERE kind = %s AND id = %s",
                (kind, key),
            )
            row = cur.fetchone()
        return row[0] if row else None

    def _read_kind(self, kind: str) -> dict[str, dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT id, data FROM ledger_entities WHERE kind = %s ORDER BY id",
                (kind,),
            )
            rows = cur.fetchall()
        return {row[0]: row[1] for row in rows}

    # ================================================================
    # WRITES
    # ================================================================

    def _do_commit(self, uow: UnitOfWork) -> None:
        """Flush staged writes and commit on the unit of work's connection."""
        if uow._cursor is None or uow._conn is None:
            raise EntityStoreError("_do_commit called outside unit of work")

        cursor = uow._cursor
        for (kind, key), data in uow.staged.items():
            if data is None:
                cursor.execute(
                    "DELETE FROM ledger_entities WHERE kind = %s AND id = %s",
                    (kind, key),
                )
                continue
            cursor.execute(
                """
                INSERT INTO ledger_entities (kind, id, data)
                VALUES (%s, %s, %s)
                ON CONFLICT (kind, id) DO UPDATE SET
                    data = EXCLUDED.data,
                    updated_at = NOW()
                """,
                (kind, key, Json(data)),
            )
        uow._conn.commit()
        logger.debug("Unit of work committed", writes=len(uow.staged))
        uow.staged.clear()

    def _do_rollback(self, uow: UnitOfWork) -> None:
        """Rollback the transaction; the connection may already be broken."""
        if uow._conn is not None:
            try:
                uow._conn.rollback()
            except Exception:
                logger.warning("Rollback failed on a broken connection")
