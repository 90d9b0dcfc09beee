"""
Activity Journal

Append-only log of typed activities, one per source event, keyed by
(network, transaction hash, log index).

Two write patterns:
1. Single-phase: REVENUE_WITHDRAWN and USER_OP_SPONSORED entries are
   complete when written.
2. Two-phase: a DEPOSIT entry is written with depositor and commitment
   only. Its id is queued in the PendingCorrelation of its transaction.
   The leaf insertion of the same transaction takes the oldest queued
   deposit of the same account and fills member_index and new_root.

A queued deposit waits at most correlation_ttl_blocks blocks. Once its
network has moved past that block the queue is swept and every deposit
still in it is reported as never patched. Unmatched leaf insertions are
reported the same way. Neither is retried or buffered.
"""

from typing import Optional

from ..db import EntityStore
from ..observability import MetricsCollector, get_logger
from ..schemas import (
    Activity,
    ActivityType,
    DecodedEvent,
    LedgerAccount,
    PendingCorrelation,
)
from .keys import activity_key, correlation_key
from .settings import EngineSettings


logger = get_logger(__name__)


class ActivityJournal:

    def __init__(
        self,
        store: EntityStore,
        settings: EngineSettings,
        metrics: MetricsCollector,
    ):
        self._store = store
        self._settings = settings
        self._metrics = metrics

    def _new_activity(
        self,
        activity_type: ActivityType,
        account: LedgerAccount,
        event: DecodedEvent,
        **fields,
    ) -> Activity:
        activity = Activity(
            id=activity_key(account.network, event.transaction_hash, event.log_index),
            activity_type=activity_type,
            account=account.id,
            network=account.network,
            chain_id=account.chain_id,
            block=event.block_number,
            transaction_hash=event.transaction_hash,
            log_index=event.log_index,
            timestamp=event.block_timestamp,
            **fields,
        )
        self._store.upsert(activity)
        return activity

    # ================================================================
    # SINGLE-PHASE
    # ================================================================

    def record_withdrawal(
        self,
        account: LedgerAccount,
        withdraw_address: str,
        amount: int,
        event: DecodedEvent,
    ) -> Activity:
        return self._new_activity(
            ActivityType.REVENUE_WITHDRAWN,
            account,
            event,
            withdraw_address=withdraw_address,
            amount=amount,
        )

    def record_user_op(
        self,
        account: LedgerAccount,
        sender: str,
        user_op_hash: str,
        actual_gas_cost: int,
        event: DecodedEvent,
    ) -> Activity:
        return self._new_activity(
            ActivityType.USER_OP_SPONSORED,
            account,
            event,
            sender=sender,
            user_op_hash=user_op_hash,
            actual_gas_cost=actual_gas_cost,
        )

    # ================================================================
    # TWO-PHASE DEPOSITS
    # ================================================================

    def record_deposit(
        self,
        account: LedgerAccount,
        depositor: str,
        commitment: int,
        event: DecodedEvent,
    ) -> Activity:
        """Write the partial DEPOSIT entry and queue it for its leaf insertion."""
        activity = self._new_activity(
            ActivityType.DEPOSIT,
            account,
            event,
            depositor=depositor,
            commitment=commitment,
        )

        key = correlation_key(account.network, event.transaction_hash)
        pending, _ = self._store.get_or_create(
            PendingCorrelation,
            key,
            lambda: PendingCorrelation(
                id=key,
                network=account.network,
                transaction_hash=event.transaction_hash,
                opened_at_block=event.block_number,
                expires_at_block=event.block_number + self._settings.correlation_ttl_blocks,
            ),
        )
        pending.activity_ids.append(activity.id)
        self._store.upsert(pending)
        return activity

    def patch_deposit(
        self,
        account: LedgerAccount,
        member_index: int,
        new_root: int,
        event: DecodedEvent,
    ) -> Optional[Activity]:
        """
        Complete the oldest open DEPOSIT of this transaction and account.

        Returns:
            The patched activity, or None if nothing was waiting.
        """
        key = correlation_key(account.network, event.transaction_hash)
        pending = self._store.load(PendingCorrelation, key)

        match = None
        if pending is not None:
            for activity_id in pending.activity_ids:
                candidate = self._store.load(Activity, activity_id)
                if candidate is not None and candidate.account == account.id:
                    match = candidate
                    break

        if match is None:
            self._metrics.correlations_missed += 1
            logger.warning(
                "No open DEPOSIT activity for leaf insertion",
                account=account.id,
                member_index=member_index,
            )
            return None

        pending.activity_ids.remove(match.id)
        if pending.activity_ids:
            self._store.upsert(pending)
        else:
            self._store.delete(PendingCorrelation, key)

        match.member_index = member_index
        match.new_root = new_root
        self._store.upsert(match)
        return match

    def sweep_expired(self, network: str, block_number: int) -> int:
        """
        Drop queues of this network that expired before block_number.

        Returns:
            Number of deposits that will never be patched.
        """
        expired = 0
        for pending in self._store.list(PendingCorrelation):
            if pending.network != network or pending.expires_at_block >= block_number:
                continue
            for activity_id in pending.activity_ids:
                expired += 1
                self._metrics.correlations_expired += 1
                logger.warning(
                    "DEPOSIT activity expired without leaf insertion",
                    activity=activity_id,
                    expires_at_block=pending.expires_at_block,
                )
            self._store.delete(PendingCorrelation, pending.id)
        return expired
