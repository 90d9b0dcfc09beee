"""
Derived Entity Schema

These are read-side projections. The source of truth is always the
contract event stream; every entity here can be rebuilt by replaying
it from genesis.

Each entity:
- Has a deterministic composite id (see core.keys)
- Lives in its own store namespace (ENTITY_KIND)
- Is created lazily, mutated in place, never deleted
  (PendingCorrelation is the one exception: it is consumed)
"""

from typing import ClassVar, Optional

from pydantic import BaseModel, Field

from .variants import (
    ActivityType,
    ContractVariant,
    FundConsumptionPolicy,
    NullifierPolicy,
    ResolutionStrategy,
    RevenuePolicy,
)


class Entity(BaseModel):
    """Base for everything the EntityStore persists."""
    ENTITY_KIND: ClassVar[str] = "Entity"

    id: str


# ------------------------------------------------------------
# Aggregates
# ------------------------------------------------------------

class LedgerAccount(Entity):
    """
    One deployed paymaster contract on one network.

    INVARIANT (recomputed-revenue variants):
        revenue == current_deposit - total_users_deposit
    after every mutating event.
    """
    ENTITY_KIND: ClassVar[str] = "LedgerAccount"

    address: str
    network: str
    chain_id: int = 0
    contract_variant: ContractVariant

    # Policy bundle, fixed at creation
    fund_policy: FundConsumptionPolicy
    nullifier_policy: NullifierPolicy
    revenue_policy: RevenuePolicy
    resolution_strategy: ResolutionStrategy

    # Static identity
    joining_amount: int = 0
    scope: int = 0
    verifier: Optional[str] = None
    owner: Optional[str] = None

    # Financials (signed: a misconfigured feed may drive them negative)
    total_users_deposit: int = 0
    current_deposit: int = 0
    revenue: int = 0
    total_revenue_withdrawn: int = 0

    # Merkle tree pointer (deposit-style contracts)
    merkle_root: int = 0
    root_index: int = 0
    tree_size: int = 0
    tree_depth: int = 0
    root_history_count: int = 0

    # Counters
    pool_count: int = 0
    member_count: int = 0
    transaction_count: int = 0

    # Terminal soft-delete marker; accounting keeps applying
    is_dead: bool = False

    deployed_at_block: int
    deployed_at_transaction: str
    deployed_at_timestamp: int
    last_updated_block: int
    last_updated_timestamp: int


class PoolLedger(Entity):
    """One pool inside a pool-style paymaster."""
    ENTITY_KIND: ClassVar[str] = "PoolLedger"

    account: str
    address: str
    network: str
    chain_id: int = 0
    pool_id: int

    joining_fee: int  # immutable after creation
    member_count: int = 0
    total_deposits: int = 0
    transaction_count: int = 0

    current_merkle_root: int = 0
    current_root_index: int = 0
    root_history_count: int = 0

    created_at_block: int
    created_at_transaction: str
    created_at_timestamp: int
    last_updated_block: int
    last_updated_timestamp: int


class PoolMember(Entity):
    """
    One membership. Append-only.

    The root fields are a snapshot taken at insertion time and are
    never updated afterwards.
    """
    ENTITY_KIND: ClassVar[str] = "PoolMember"

    pool: str
    account: str
    network: str
    chain_id: int = 0
    member_index: int
    identity_commitment: int

    merkle_root_when_added: int
    root_index_when_added: int

    # Membership proofs are anonymous and no event names the member
    # behind a nullifier, so these keep their defaults
    gas_used: int = 0
    nullifier_used: bool = False

    added_at_block: int
    added_at_transaction: str
    added_at_timestamp: int


class MerkleRootRecord(Entity):
    """One entry of the append-only root history of a tree."""
    ENTITY_KIND: ClassVar[str] = "MerkleRootRecord"

    account: str
    pool: Optional[str] = None  # None for the contract-level tree
    network: str
    root: int
    root_index: int
    insertion_index: int

    created_at_block: int
    created_at_transaction: str
    created_at_timestamp: int


class NullifierEntry(Entity):
    """
    Consumption state of one nullifier value.

    Exactly one entry per (network, nullifier) for the lifetime of
    the system.
    """
    ENTITY_KIND: ClassVar[str] = "NullifierEntry"

    nullifier: int
    account: str
    pool: Optional[str] = None
    network: str
    chain_id: int = 0
    policy: NullifierPolicy

    is_used: bool = False   # single-use only
    gas_used: int = 0       # reusable only
    use_count: int = 0

    # Repeated consumption under a single-use policy
    reuse_count: int = 0
    reuse_flagged: bool = False

    first_used_at_block: int
    first_used_at_transaction: str
    first_used_at_timestamp: int
    last_updated_block: int
    last_updated_timestamp: int


# ------------------------------------------------------------
# Journal
# ------------------------------------------------------------

class Activity(Entity):
    """
    Typed, append-only activity log entry.

    DEPOSIT entries are written in two phases: the deposit event
    creates them, the leaf insertion of the same transaction fills
    member_index and new_root.
    """
    ENTITY_KIND: ClassVar[str] = "Activity"

    activity_type: ActivityType
    account: str
    network: str
    chain_id: int = 0
    block: int
    transaction_hash: str
    log_index: int
    timestamp: int

    # DEPOSIT
    depositor: Optional[str] = None
    commitment: Optional[int] = None
    member_index: Optional[int] = None
    new_root: Optional[int] = None

    # REVENUE_WITHDRAWN
    withdraw_address: Optional[str] = None
    amount: Optional[int] = None

    # USER_OP_SPONSORED
    sender: Optional[str] = None
    user_op_hash: Optional[str] = None
    actual_gas_cost: Optional[int] = None

    @property
    def is_patched(self) -> bool:
        return self.member_index is not None


class UserOperation(Entity):
    """
    One sponsored user operation.

    For the cache-enabled contract the nullifier arrives later in a
    separate NullifierConsumed event, so it starts out as None.
    """
    ENTITY_KIND: ClassVar[str] = "UserOperation"

    user_op_hash: str
    account: str
    pool: Optional[str] = None
    network: str
    chain_id: int = 0
    sender: str
    actual_gas_cost: int
    debited_amount: int

    nullifier: Optional[int] = None
    nullifier_index: Optional[int] = None
    nullifier_gas_used: Optional[int] = None

    executed_at_block: int
    executed_at_transaction: str
    executed_at_timestamp: int


class PendingCorrelation(Entity):
    """
    Open DEPOSIT activities of one transaction awaiting their leaf
    insertion, oldest first.
    """
    ENTITY_KIND: ClassVar[str] = "PendingCorrelation"

    network: str
    transaction_hash: str
    activity_ids: list[str] = Field(default_factory=list)
    opened_at_block: int
    expires_at_block: int


class ProcessedEvent(Entity):
    """Marker that one (network, tx, log index) has been applied."""
    ENTITY_KIND: ClassVar[str] = "ProcessedEvent"

    network: str
    transaction_hash: str
    log_index: int
    block_number: int
    kind: str


# ------------------------------------------------------------
# Statistics
# ------------------------------------------------------------

class DailyPoolStats(Entity):
    """
    Per-pool, per-UTC-day bucket.

    Counters accumulate; total_* fields are snapshots of the pool
    taken at the last contributing event.
    """
    ENTITY_KIND: ClassVar[str] = "DailyPoolStats"

    date: str
    pool: str
    network: str
    chain_id: int = 0

    new_members: int = 0
    transactions: int = 0
    gas_spent: int = 0
    revenue_generated: int = 0

    total_members: int = 0
    total_deposits: int = 0


class DailyGlobalStats(Entity):
    """Per-network, per-UTC-day bucket."""
    ENTITY_KIND: ClassVar[str] = "DailyGlobalStats"

    date: str
    network: str
    chain_id: int = 0

    new_pools: int = 0
    new_members: int = 0
    transactions: int = 0
    gas_spent: int = 0
    revenue_generated: int = 0
    revenue_withdrawn: int = 0

    total_pools: int = 0
    total_members: int = 0


class NetworkInfo(Entity):
    """Monotonic per-network totals."""
    ENTITY_KIND: ClassVar[str] = "NetworkInfo"

    name: str
    chain_id: int = 0

    total_paymasters: int = 0
    total_pools: int = 0
    total_members: int = 0
    total_transactions: int = 0
    total_gas_spent: int = 0
    total_revenue: int = 0

    first_activity_block: int
    first_activity_timestamp: int
    last_activity_block: int
    last_activity_timestamp: int


ENTITY_MODELS: dict[str, type[Entity]] = {
    model.ENTITY_KIND: model
    for model in (
        LedgerAccount,
        PoolLedger,
        PoolMember,
        MerkleRootRecord,
        NullifierEntry,
        Activity,
        UserOperation,
        PendingCorrelation,
        ProcessedEvent,
        DailyPoolStats,
        DailyGlobalStats,
        NetworkInfo,
    )
}
