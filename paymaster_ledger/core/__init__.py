"""
Core accounting and correlation engine.
"""

from .identity import (
    ContractConfig,
    ContractIdentity,
    IdentityConfig,
    IdentityResolver,
    NetworkConfig,
)
from .ledger import (
    LedgerEngine,
    LedgerError,
    MissingAggregateError,
    UnsupportedEventError,
)
from .policies import VARIANT_PROFILES, VariantProfile, profile_for, sponsorship_debit
from .router import ROUTES, EventRouter, ProcessingOutcome
from .settings import EngineSettings
from .stats import GlobalStatsDelta, PoolStatsDelta, StatsAggregator

__all__ = [
    "ContractConfig",
    "ContractIdentity",
    "IdentityConfig",
    "IdentityResolver",
    "NetworkConfig",
    "LedgerEngine",
    "LedgerError",
    "MissingAggregateError",
    "UnsupportedEventError",
    "VARIANT_PROFILES",
    "VariantProfile",
    "profile_for",
    "sponsorship_debit",
    "ROUTES",
    "EventRouter",
    "ProcessingOutcome",
    "EngineSettings",
    "GlobalStatsDelta",
    "PoolStatsDelta",
    "StatsAggregator",
]
