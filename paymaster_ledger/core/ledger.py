"""
Ledger Engine - The Heart of the System

This is an event-sourced projection. Nothing is "edited".
Things happen on chain, and the ledger follows.

The engine:
- Opens (get-or-create) the account of the emitting contract
- Applies the account's fund-consumption and nullifier policies
- Appends and patches activity journal entries
- Adds to the daily statistics buckets

One engine serves every contract variant. The differences between the
variants live in the VariantProfile stored on each account, never in
duplicated handlers.

Rules (enforced in code):
- Accounts are created lazily and exactly once per (network, address)
- A pool must be created before members join or operations are sponsored
- Member indices are never reassigned
- A pool's joining fee never changes after creation
- Death is terminal but never freezes accounting

Handlers run inside the router's unit of work. Raising a LedgerError
abandons the event: every write made so far for it is discarded.
"""

from typing import Optional, Sequence

from ..db import EntityStore
from ..observability import MetricsCollector, get_logger, get_metrics
from ..schemas import (
    DecodedEvent,
    LedgerAccount,
    PoolLedger,
    ResolutionStrategy,
    UserOperation,
)
from .accounts import AccountBook
from .identity import ContractIdentity, IdentityResolver
from .journal import ActivityJournal
from .keys import format_date, user_operation_key
from .nullifiers import NullifierRegistry
from .policies import sponsorship_debit
from .settings import EngineSettings
from .stats import GlobalStatsDelta, PoolStatsDelta, StatsAggregator


logger = get_logger(__name__)


class LedgerError(Exception):
    """Base exception for ledger errors."""
    pass


class MissingAggregateError(LedgerError):
    """Raised when an event references a pool or account never created."""
    pass


class UnsupportedEventError(LedgerError):
    """Raised when no handler exists for a (variant, event kind) pair."""
    pass


class LedgerEngine:
    """
    Per-event accounting handlers.

    Every handler has the signature handler(event, identity) and is a
    function of the event and the current entity snapshots. Handlers
    never call each other; they communicate through the store only.
    """

    def __init__(
        self,
        store: EntityStore,
        resolver: Optional[IdentityResolver] = None,
        settings: Optional[EngineSettings] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._store = store
        self._resolver = resolver if resolver is not None else IdentityResolver()
        self._settings = settings if settings is not None else EngineSettings()
        self._metrics = metrics if metrics is not None else get_metrics()

        self.accounts = AccountBook(store, self._resolver, self._settings)
        self.nullifiers = NullifierRegistry(store, self._metrics)
        self.journal = ActivityJournal(store, self._settings, self._metrics)
        self.stats = StatsAggregator(store)

    @property
    def store(self) -> EntityStore:
        return self._store

    def _begin(self, event: DecodedEvent, identity: ContractIdentity) -> LedgerAccount:
        """Sweep expired correlations, then open the emitting account."""
        info = self.accounts.load_network(identity.network)
        if info is not None and event.block_number > info.last_activity_block:
            self.journal.sweep_expired(identity.network, event.block_number)
        self.accounts.touch_network(identity.network, event)
        return self.accounts.open_account(identity, event)

    def _require_pool(self, account: LedgerAccount, pool_id: int) -> PoolLedger:
        pool = self.accounts.load_pool(account, pool_id)
        if pool is None:
            raise MissingAggregateError(
                f"Pool {pool_id} of {account.id} has not been created"
            )
        return pool

    # ================================================================
    # DEPOSIT-STYLE MEMBERSHIP
    # One implicit tree per contract
    # ================================================================

    def on_deposited(self, event: DecodedEvent, identity: ContractIdentity) -> None:
        account = self._begin(event, identity)
        params = event.params

        logger.info(
            "Deposit",
            account=account.id,
            depositor=params.depositor,
            commitment=str(params.commitment),
        )

        self.journal.record_deposit(account, params.depositor, params.commitment, event)
        self.accounts.credit_join(account, account.joining_amount)
        self.accounts.save(account, event)

    def on_leaf_inserted(self, event: DecodedEvent, identity: ContractIdentity) -> None:
        account = self._begin(event, identity)
        params = event.params

        self.accounts.insert_leaf(account, params.index, params.root, event)
        self.accounts.save(account, event)

        info = self.accounts.bump_network(account.network, event, members=1)
        self.stats.add_global_stats(
            info, format_date(event.block_timestamp), GlobalStatsDelta(new_members=1)
        )

        self.journal.patch_deposit(account, params.index, params.root, event)

    # ================================================================
    # POOL-STYLE MEMBERSHIP
    # ================================================================

    def on_pool_created(self, event: DecodedEvent, identity: ContractIdentity) -> None:
        account = self._begin(event, identity)
        params = event.params

        pool, created = self.accounts.create_pool(
            account, params.pool_id, params.joining_fee, event
        )

        # Contracts without a static table learn their fee from the first pool
        if (
            account.joining_amount == 0
            and account.resolution_strategy == ResolutionStrategy.EVENT_PAYLOAD
        ):
            account.joining_amount = params.joining_fee

        self.accounts.save(account, event)
        if not created:
            return

        logger.info("Pool created", pool=pool.id, joining_fee=str(pool.joining_fee))

        date = format_date(event.block_timestamp)
        info = self.accounts.bump_network(account.network, event, pools=1)
        self.stats.add_pool_stats(pool, date, PoolStatsDelta())
        self.stats.add_global_stats(info, date, GlobalStatsDelta(new_pools=1))

    def on_member_added(self, event: DecodedEvent, identity: ContractIdentity) -> None:
        account = self._begin(event, identity)
        params = event.params
        pool = self._require_pool(account, params.pool_id)

        self._join_members(
            account, pool, params.member_index,
            [params.identity_commitment], params.merkle_tree_root, event,
        )

    def on_members_added(self, event: DecodedEvent, identity: ContractIdentity) -> None:
        account = self._begin(event, identity)
        params = event.params
        pool = self._require_pool(account, params.pool_id)

        self._join_members(
            account, pool, params.start_index,
            params.identity_commitments, params.merkle_tree_root, event,
        )

    def _join_members(
        self,
        account: LedgerAccount,
        pool: PoolLedger,
        start_index: int,
        commitments: Sequence[int],
        root: int,
        event: DecodedEvent,
    ) -> None:
        """
        Add consecutive members and credit one joining fee per member.

        A batch reports only the root after its last insertion, so every
        member of the batch snapshots that root.
        """
        if not commitments:
            logger.warning("Membership event without commitments", pool=pool.id)
            self.accounts.save(account, event)
            return

        last_index = start_index + len(commitments) - 1
        record = self.accounts.advance_pool_tree(account, pool, root, last_index, event)

        joined = 0
        for offset, commitment in enumerate(commitments):
            member = self.accounts.add_member(
                account, pool, start_index + offset, commitment,
                root, record.root_index, event,
            )
            if member is None:
                continue
            joined += 1
            self.accounts.credit_join(account, pool.joining_fee, pool)

        self.accounts.save_pool(pool, event)
        self.accounts.save(account, event)

        if joined == 0:
            return

        date = format_date(event.block_timestamp)
        info = self.accounts.bump_network(account.network, event, members=joined)
        self.stats.add_pool_stats(pool, date, PoolStatsDelta(new_members=joined))
        self.stats.add_global_stats(info, date, GlobalStatsDelta(new_members=joined))

    # ================================================================
    # SPONSORSHIP
    # ================================================================

    def on_user_op_sponsored(self, event: DecodedEvent, identity: ContractIdentity) -> None:
        """
        Charge one sponsored operation.

        Pool-style contracts name the pool; its joining fee is the fixed
        fee. Deposit-style contracts charge the account's joining amount.
        """
        account = self._begin(event, identity)
        params = event.params
        cost = params.actual_gas_cost

        pool = None
        if params.pool_id is not None:
            pool = self._require_pool(account, params.pool_id)

        fee = pool.joining_fee if pool is not None else account.joining_amount
        debit = sponsorship_debit(account.fund_policy, cost, fee)
        revenue_generated = max(debit - cost, 0)

        self.accounts.debit_sponsorship(account, cost, debit, pool)
        self._record_user_operation(account, pool, debit, event)

        if params.nullifier is not None:
            self.nullifiers.consume(account, params.nullifier, cost, event, pool=pool)

        self.journal.record_user_op(account, params.sender, params.user_op_hash, cost, event)

        if pool is not None:
            self.accounts.save_pool(pool, event)
        self.accounts.save(account, event)

        date = format_date(event.block_timestamp)
        info = self.accounts.bump_network(
            account.network, event, transactions=1, gas_spent=cost
        )
        if pool is not None:
            self.stats.add_pool_stats(
                pool, date,
                PoolStatsDelta(transactions=1, gas_spent=cost, revenue_generated=revenue_generated),
            )
        self.stats.add_global_stats(
            info, date,
            GlobalStatsDelta(transactions=1, gas_spent=cost, revenue_generated=revenue_generated),
        )

    def _record_user_operation(
        self,
        account: LedgerAccount,
        pool: Optional[PoolLedger],
        debit: int,
        event: DecodedEvent,
    ) -> None:
        params = event.params
        key = user_operation_key(account.network, params.user_op_hash)
        if self._store.load(UserOperation, key) is not None:
            logger.warning(
                "UserOperation already recorded, keeping the first",
                user_op_hash=params.user_op_hash,
            )
            return

        self._store.upsert(UserOperation(
            id=key,
            user_op_hash=params.user_op_hash,
            account=account.id,
            pool=pool.id if pool is not None else None,
            network=account.network,
            chain_id=account.chain_id,
            sender=params.sender,
            actual_gas_cost=params.actual_gas_cost,
            debited_amount=debit,
            nullifier=params.nullifier,
            executed_at_block=event.block_number,
            executed_at_transaction=event.transaction_hash,
            executed_at_timestamp=event.block_timestamp,
        ))

    def on_nullifier_consumed(self, event: DecodedEvent, identity: ContractIdentity) -> None:
        """Second phase of a cache-enabled sponsorship: attach the nullifier."""
        account = self._begin(event, identity)
        params = event.params

        key = user_operation_key(account.network, params.user_op_hash)
        user_op = self._store.load(UserOperation, key)

        if user_op is None:
            self._metrics.correlations_missed += 1
            logger.warning(
                "No UserOperation for nullifier consumption",
                user_op_hash=params.user_op_hash,
                nullifier=str(params.nullifier),
            )
        else:
            user_op.nullifier = params.nullifier
            user_op.nullifier_index = params.index
            user_op.nullifier_gas_used = params.gas_used
            self._store.upsert(user_op)

            self.nullifiers.consume(
                account, params.nullifier, params.gas_used, event, pool_ref=user_op.pool
            )

        self.accounts.save(account, event)

    # ================================================================
    # ADMINISTRATIVE
    # ================================================================

    def on_revenue_withdrawn(self, event: DecodedEvent, identity: ContractIdentity) -> None:
        account = self._begin(event, identity)
        params = event.params

        logger.info(
            "Revenue withdrawn",
            account=account.id,
            recipient=params.withdraw_address,
            amount=str(params.amount),
        )

        self.accounts.withdraw_revenue(account, params.amount)
        self.journal.record_withdrawal(account, params.withdraw_address, params.amount, event)
        self.accounts.save(account, event)

        info = self.accounts.bump_network(account.network, event, revenue=params.amount)
        self.stats.add_global_stats(
            info, format_date(event.block_timestamp),
            GlobalStatsDelta(revenue_withdrawn=params.amount),
        )

    def on_ownership_transferred(self, event: DecodedEvent, identity: ContractIdentity) -> None:
        account = self._begin(event, identity)
        account.owner = event.params.new_owner
        self.accounts.save(account, event)

    def on_pool_died(self, event: DecodedEvent, identity: ContractIdentity) -> None:
        account = self._begin(event, identity)
        if not account.is_dead:
            logger.info("Paymaster died", account=account.id)
        account.is_dead = True
        self.accounts.save(account, event)
