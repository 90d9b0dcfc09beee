"""
Contract Variants and Accounting Policies

Every paymaster deployment belongs to exactly one variant.
The variant never changes after the account is first observed.

A variant is not interesting on its own. What matters is the
policy bundle it selects:
- how sponsorship draws down pooled funds
- whether a nullifier may be consumed more than once
- how revenue is derived
- where the account's static identity comes from
"""

from enum import Enum


class ContractVariant(str, Enum):
    """
    Known paymaster contract variants.
    You can add more later, never remove.
    """
    GAS_LIMITED = "GasLimited"
    ONE_TIME_USE = "OneTimeUse"
    CACHE_ENABLED_GAS_LIMITED = "CacheEnabledGasLimited"


class FundConsumptionPolicy(str, Enum):
    """How a sponsored operation debits pooled funds."""
    METERED = "metered"       # debit the actual gas cost
    FIXED_FEE = "fixed_fee"   # debit the whole joining fee, whatever the cost


class NullifierPolicy(str, Enum):
    """Lifecycle of a nullifier once it has been seen."""
    REUSABLE = "reusable"       # gas accumulates across uses
    SINGLE_USE = "single_use"   # first use exhausts it


class RevenuePolicy(str, Enum):
    """
    How account revenue is derived.

    RECOMPUTED: revenue = current_deposit - total_users_deposit after every
                mutation (pool-based variants).
    ACCUMULATED: withdrawals are added to revenue directly.
    """
    RECOMPUTED = "recomputed"
    ACCUMULATED = "accumulated"


class ResolutionStrategy(str, Enum):
    """Where an account's static identity comes from."""
    STATIC_TABLE = "static_table"     # joining amount, scope, verifier from config
    EVENT_PAYLOAD = "event_payload"   # table values if present, the rest from events


class ActivityType(str, Enum):
    DEPOSIT = "DEPOSIT"
    REVENUE_WITHDRAWN = "REVENUE_WITHDRAWN"
    USER_OP_SPONSORED = "USER_OP_SPONSORED"
