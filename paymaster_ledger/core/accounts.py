"""
Account Book - LedgerAccount, PoolLedger, membership and trees

Owns the aggregates of the ledger and the rules that move money
between their counters. Each rule is applied according to the policy
bundle stored on the account when it was created.

Financial rules:
- Join:      total_users_deposit += fee, current_deposit += fee
- Sponsor:   current_deposit -= actual cost,
             total_users_deposit -= policy debit (cost or fee)
- Withdraw:  current_deposit -= amount, total_revenue_withdrawn += amount
- Revenue:   RECOMPUTED   -> revenue = current_deposit - total_users_deposit
             ACCUMULATED  -> revenue += withdrawn amount

Accounts and pools are mutated in place and persisted with save() /
save_pool() once the caller has applied every change for the event.
Members, root records and network totals are persisted immediately.
"""

from typing import Optional

from ..db import EntityStore
from ..observability import get_logger
from ..schemas import (
    DecodedEvent,
    LedgerAccount,
    MerkleRootRecord,
    NetworkInfo,
    PoolLedger,
    PoolMember,
    RevenuePolicy,
)
from .identity import ContractIdentity, IdentityResolver
from .keys import (
    CONTRACT_TREE,
    account_key,
    member_key,
    network_key,
    pool_key,
    root_index_for,
    root_record_key,
    tree_depth_for,
)
from .policies import profile_for
from .settings import EngineSettings


logger = get_logger(__name__)


class AccountBook:
    """Get-or-create and accounting rules for accounts and pools."""

    def __init__(
        self,
        store: EntityStore,
        resolver: IdentityResolver,
        settings: EngineSettings,
    ):
        self._store = store
        self._resolver = resolver
        self._settings = settings

    # ================================================================
    # NETWORK TOTALS
    # ================================================================

    def load_network(self, network: str) -> Optional[NetworkInfo]:
        return self._store.load(NetworkInfo, network_key(network))

    def touch_network(self, network: str, event: DecodedEvent) -> NetworkInfo:
        """Get-or-create the network's totals and move its activity pointer."""
        config = self._resolver.network(network)
        info, _ = self._store.get_or_create(
            NetworkInfo,
            network_key(network),
            lambda: NetworkInfo(
                id=network_key(network),
                name=config.display_name,
                chain_id=config.chain_id,
                first_activity_block=event.block_number,
                first_activity_timestamp=event.block_timestamp,
                last_activity_block=event.block_number,
                last_activity_timestamp=event.block_timestamp,
            ),
        )
        info.last_activity_block = event.block_number
        info.last_activity_timestamp = event.block_timestamp
        self._store.upsert(info)
        return info

    def bump_network(
        self,
        network: str,
        event: DecodedEvent,
        paymasters: int = 0,
        pools: int = 0,
        members: int = 0,
        transactions: int = 0,
        gas_spent: int = 0,
        revenue: int = 0,
    ) -> NetworkInfo:
        """Add to the monotonic network counters."""
        info = self.touch_network(network, event)
        info.total_paymasters += paymasters
        info.total_pools += pools
        info.total_members += members
        info.total_transactions += transactions
        info.total_gas_spent += gas_spent
        info.total_revenue += revenue
        self._store.upsert(info)
        return info

    # ================================================================
    # ACCOUNTS
    # ================================================================

    def open_account(self, identity: ContractIdentity, event: DecodedEvent) -> LedgerAccount:
        """
        Get-or-create the account of the emitting contract.

        The policy bundle is chosen here, once, from the resolved variant.
        Later events never change it.
        """
        key = account_key(identity.network, identity.address)

        def factory() -> LedgerAccount:
            profile = profile_for(identity.variant)
            return LedgerAccount(
                id=key,
                address=identity.address,
                network=identity.network,
                chain_id=identity.chain_id,
                contract_variant=profile.variant,
                fund_policy=profile.fund_policy,
                nullifier_policy=profile.nullifier_policy,
                revenue_policy=profile.revenue_policy,
                resolution_strategy=profile.resolution_strategy,
                joining_amount=identity.joining_amount,
                scope=identity.scope,
                verifier=identity.verifier,
                deployed_at_block=event.block_number,
                deployed_at_transaction=event.transaction_hash,
                deployed_at_timestamp=event.block_timestamp,
                last_updated_block=event.block_number,
                last_updated_timestamp=event.block_timestamp,
            )

        account, created = self._store.get_or_create(LedgerAccount, key, factory)
        if created:
            logger.info(
                "Paymaster account created",
                account=account.id,
                variant=account.contract_variant.value,
            )
            self.bump_network(identity.network, event, paymasters=1)
        return account

    def save(self, account: LedgerAccount, event: DecodedEvent) -> None:
        account.last_updated_block = event.block_number
        account.last_updated_timestamp = event.block_timestamp
        self._store.upsert(account)

    # ================================================================
    # POOLS
    # ================================================================

    def load_pool(self, account: LedgerAccount, pool_id: int) -> Optional[PoolLedger]:
        return self._store.load(PoolLedger, pool_key(account.network, account.address, pool_id))

    def create_pool(
        self,
        account: LedgerAccount,
        pool_id: int,
        joining_fee: int,
        event: DecodedEvent,
    ) -> tuple[PoolLedger, bool]:
        key = pool_key(account.network, account.address, pool_id)
        pool, created = self._store.get_or_create(
            PoolLedger,
            key,
            lambda: PoolLedger(
                id=key,
                account=account.id,
                address=account.address,
                network=account.network,
                chain_id=account.chain_id,
                pool_id=pool_id,
                joining_fee=joining_fee,
                created_at_block=event.block_number,
                created_at_transaction=event.transaction_hash,
                created_at_timestamp=event.block_timestamp,
                last_updated_block=event.block_number,
                last_updated_timestamp=event.block_timestamp,
            ),
        )
        if created:
            account.pool_count += 1
        elif pool.joining_fee != joining_fee:
            logger.warning(
                "Pool re-created with a different joining fee, keeping the original",
                pool=pool.id,
                joining_fee=pool.joining_fee,
                reported_fee=joining_fee,
            )
        return pool, created

    def save_pool(self, pool: PoolLedger, event: DecodedEvent) -> None:
        pool.last_updated_block = event.block_number
        pool.last_updated_timestamp = event.block_timestamp
        self._store.upsert(pool)

    # ================================================================
    # MEMBERSHIP AND TREES
    # ================================================================

    def add_member(
        self,
        account: LedgerAccount,
        pool: PoolLedger,
        member_index: int,
        identity_commitment: int,
        merkle_root: int,
        root_index: int,
        event: DecodedEvent,
    ) -> Optional[PoolMember]:
        """
        Append one member. Member indices are assigned by the contract
        and never reassigned, so an index seen twice is left untouched.
        """
        key = member_key(account.network, account.address, pool.pool_id, member_index)
        if self._store.load(PoolMember, key) is not None:
            logger.warning(
                "Member index already taken, ignoring",
                pool=pool.id,
                member_index=member_index,
            )
            return None

        member = PoolMember(
            id=key,
            pool=pool.id,
            account=account.id,
            network=account.network,
            chain_id=account.chain_id,
            member_index=member_index,
            identity_commitment=identity_commitment,
            merkle_root_when_added=merkle_root,
            root_index_when_added=root_index,
            added_at_block=event.block_number,
            added_at_transaction=event.transaction_hash,
            added_at_timestamp=event.block_timestamp,
        )
        self._store.upsert(member)

        pool.member_count += 1
        account.member_count += 1
        return member

    def advance_pool_tree(
        self,
        account: LedgerAccount,
        pool: PoolLedger,
        root: int,
        insertion_index: int,
        event: DecodedEvent,
    ) -> MerkleRootRecord:
        """Move the pool's root pointer and append to its root history."""
        root_index = root_index_for(insertion_index, self._settings.root_history_capacity)
        pool.current_merkle_root = root
        pool.current_root_index = root_index
        pool.root_history_count += 1
        return self._record_root(
            account, pool, str(pool.pool_id), pool.root_history_count,
            root, root_index, insertion_index, event,
        )

    def insert_leaf(
        self,
        account: LedgerAccount,
        insertion_index: int,
        root: int,
        event: DecodedEvent,
    ) -> MerkleRootRecord:
        """
        Replace the account's tree pointer wholesale.

        Last writer wins: insertions are delivered in the tree's true
        insertion order.
        """
        root_index = root_index_for(insertion_index, self._settings.root_history_capacity)
        account.merkle_root = root
        account.root_index = root_index
        account.tree_size = insertion_index + 1
        account.tree_depth = tree_depth_for(account.tree_size)
        account.root_history_count += 1
        account.member_count += 1
        return self._record_root(
            account, None, CONTRACT_TREE, account.root_history_count,
            root, root_index, insertion_index, event,
        )

    def _record_root(
        self,
        account: LedgerAccount,
        pool: Optional[PoolLedger],
        tree: str,
        sequence: int,
        root: int,
        root_index: int,
        insertion_index: int,
        event: DecodedEvent,
    ) -> MerkleRootRecord:
        record = MerkleRootRecord(
            id=root_record_key(account.network, account.address, tree, sequence),
            account=account.id,
            pool=pool.id if pool is not None else None,
            network=account.network,
            root=root,
            root_index=root_index,
            insertion_index=insertion_index,
            created_at_block=event.block_number,
            created_at_transaction=event.transaction_hash,
            created_at_timestamp=event.block_timestamp,
        )
        self._store.upsert(record)
        return record

    # ================================================================
    # MONEY
    # ================================================================

    def credit_join(
        self,
        account: LedgerAccount,
        amount: int,
        pool: Optional[PoolLedger] = None,
    ) -> None:
        account.total_users_deposit += amount
        account.current_deposit += amount
        if pool is not None:
            pool.total_deposits += amount
        self.settle_revenue(account)

    def debit_sponsorship(
        self,
        account: LedgerAccount,
        actual_gas_cost: int,
        debit: int,
        pool: Optional[PoolLedger] = None,
    ) -> None:
        """
        Charge one sponsored operation.

        The contract's deposit pays what the operation cost; the users'
        backing is drawn down by the policy debit.
        """
        account.current_deposit -= actual_gas_cost
        account.total_users_deposit -= debit
        account.transaction_count += 1
        if pool is not None:
            pool.total_deposits -= debit
            pool.transaction_count += 1
        self.settle_revenue(account)

    def withdraw_revenue(self, account: LedgerAccount, amount: int) -> None:
        account.current_deposit -= amount
        account.total_revenue_withdrawn += amount
        if account.revenue_policy == RevenuePolicy.ACCUMULATED:
            account.revenue += amount
        self.settle_revenue(account)

    def settle_revenue(self, account: LedgerAccount) -> None:
        if account.revenue_policy == RevenuePolicy.RECOMPUTED:
            account.revenue = account.current_deposit - account.total_users_deposit
