"""
Nullifier Registry

Consumption state of every nullifier value, one entry per
(network, nullifier) for the lifetime of the system.

Two lifecycle shapes, taken from the owning account's policy:
- REUSABLE:   gas_used accumulates on every consumption
- SINGLE_USE: is_used is set on the first consumption and never reset

A second consumption under SINGLE_USE is inconsistent with the contract
rules. The chain still charged for it, so the accounting is applied and
the entry is flagged (reuse_count, reuse_flagged) with an error log.
"""

from typing import Optional

from ..db import EntityStore
from ..observability import MetricsCollector, get_logger
from ..schemas import (
    DecodedEvent,
    LedgerAccount,
    NullifierEntry,
    NullifierPolicy,
    PoolLedger,
)
from .keys import nullifier_key


logger = get_logger(__name__)


class NullifierRegistry:

    def __init__(self, store: EntityStore, metrics: MetricsCollector):
        self._store = store
        self._metrics = metrics

    def get(self, network: str, nullifier: int) -> Optional[NullifierEntry]:
        return self._store.load(NullifierEntry, nullifier_key(network, nullifier))

    def consume(
        self,
        account: LedgerAccount,
        nullifier: int,
        gas_used: int,
        event: DecodedEvent,
        pool: Optional[PoolLedger] = None,
        pool_ref: Optional[str] = None,
    ) -> NullifierEntry:
        """
        Record one consumption of a nullifier.

        Args:
            account: Account whose operation consumed it
            nullifier: Nullifier value
            gas_used: Metered amount attributed to this consumption
            event: Source event
            pool: Pool of the operation, if pool-style
            pool_ref: Pool id when only the reference is at hand
        """
        key = nullifier_key(account.network, nullifier)
        pool_id = pool.id if pool is not None else pool_ref

        entry, created = self._store.get_or_create(
            NullifierEntry,
            key,
            lambda: NullifierEntry(
                id=key,
                nullifier=nullifier,
                account=account.id,
                pool=pool_id,
                network=account.network,
                chain_id=account.chain_id,
                policy=account.nullifier_policy,
                first_used_at_block=event.block_number,
                first_used_at_transaction=event.transaction_hash,
                first_used_at_timestamp=event.block_timestamp,
                last_updated_block=event.block_number,
                last_updated_timestamp=event.block_timestamp,
            ),
        )

        if not created and entry.account != account.id:
            logger.warning(
                "Nullifier already registered under another account",
                nullifier=str(nullifier),
                registered_account=entry.account,
                account=account.id,
            )

        if entry.policy == NullifierPolicy.SINGLE_USE:
            if entry.is_used:
                entry.reuse_count += 1
                entry.reuse_flagged = True
                self._metrics.nullifier_reuses += 1
                logger.error(
                    "Single-use nullifier consumed again",
                    nullifier=str(nullifier),
                    account=account.id,
                    reuse_count=entry.reuse_count,
                )
            entry.is_used = True
        else:
            entry.gas_used += gas_used

        entry.use_count += 1
        entry.last_updated_block = event.block_number
        entry.last_updated_timestamp = event.block_timestamp
        self._store.upsert(entry)
        return entry
