# Canonical schemas for the paymaster ledger
# Decoded contract events in, derived entities out.

from .variants import (
    ActivityType,
    ContractVariant,
    FundConsumptionPolicy,
    NullifierPolicy,
    ResolutionStrategy,
    RevenuePolicy,
)
from .events import (
    ZERO_ADDRESS,
    DecodedEvent,
    EventKind,
    EventPayload,
    DepositedPayload,
    LeafInsertedPayload,
    PoolCreatedPayload,
    MemberAddedPayload,
    MembersAddedPayload,
    UserOpSponsoredPayload,
    NullifierConsumedPayload,
    RevenueWithdrawnPayload,
    OwnershipTransferredPayload,
    PoolDiedPayload,
    to_hex,
)
from .entities import (
    ENTITY_MODELS,
    Entity,
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

__all__ = [
    # Variants
    "ActivityType",
    "ContractVariant",
    "FundConsumptionPolicy",
    "NullifierPolicy",
    "ResolutionStrategy",
    "RevenuePolicy",
    # Events
    "ZERO_ADDRESS",
    "DecodedEvent",
    "EventKind",
    "EventPayload",
    "DepositedPayload",
    "LeafInsertedPayload",
    "PoolCreatedPayload",
    "MemberAddedPayload",
    "MembersAddedPayload",
    "UserOpSponsoredPayload",
    "NullifierConsumedPayload",
    "RevenueWithdrawnPayload",
    "OwnershipTransferredPayload",
    "PoolDiedPayload",
    "to_hex",
    # Entities
    "ENTITY_MODELS",
    "Entity",
    "LedgerAccount",
    "PoolLedger",
    "PoolMember",
    "MerkleRootRecord",
    "NullifierEntry",
    "Activity",
    "UserOperation",
    "PendingCorrelation",
    "ProcessedEvent",
    "DailyPoolStats",
    "DailyGlobalStats",
    "NetworkInfo",
]
