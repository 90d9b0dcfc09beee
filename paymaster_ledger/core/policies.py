"""
Variant Policy Profiles

The three paymaster variants share most of their accounting. They differ
in a handful of decisions, captured here as a VariantProfile. The
profile is chosen once, when the account is first observed, and stored
on the account; handlers read the policies from the account rather than
branching on the variant.
"""

from dataclasses import dataclass

from ..schemas import (
    ContractVariant,
    FundConsumptionPolicy,
    NullifierPolicy,
    ResolutionStrategy,
    RevenuePolicy,
)


@dataclass(frozen=True)
class VariantProfile:
    """Policy bundle of one contract variant."""
    variant: ContractVariant
    fund_policy: FundConsumptionPolicy
    nullifier_policy: NullifierPolicy
    revenue_policy: RevenuePolicy
    resolution_strategy: ResolutionStrategy


VARIANT_PROFILES: dict[ContractVariant, VariantProfile] = {
    # Reusable membership: only the metered cost is drawn down
    ContractVariant.GAS_LIMITED: VariantProfile(
        variant=ContractVariant.GAS_LIMITED,
        fund_policy=FundConsumptionPolicy.METERED,
        nullifier_policy=NullifierPolicy.REUSABLE,
        revenue_policy=RevenuePolicy.RECOMPUTED,
        resolution_strategy=ResolutionStrategy.EVENT_PAYLOAD,
    ),
    # Single-use slots: any sponsorship exhausts the slot's backing
    ContractVariant.ONE_TIME_USE: VariantProfile(
        variant=ContractVariant.ONE_TIME_USE,
        fund_policy=FundConsumptionPolicy.FIXED_FEE,
        nullifier_policy=NullifierPolicy.SINGLE_USE,
        revenue_policy=RevenuePolicy.RECOMPUTED,
        resolution_strategy=ResolutionStrategy.EVENT_PAYLOAD,
    ),
    ContractVariant.CACHE_ENABLED_GAS_LIMITED: VariantProfile(
        variant=ContractVariant.CACHE_ENABLED_GAS_LIMITED,
        fund_policy=FundConsumptionPolicy.METERED,
        nullifier_policy=NullifierPolicy.REUSABLE,
        revenue_policy=RevenuePolicy.ACCUMULATED,
        resolution_strategy=ResolutionStrategy.STATIC_TABLE,
    ),
}


def profile_for(variant: ContractVariant) -> VariantProfile:
    return VARIANT_PROFILES[ContractVariant(variant)]


def sponsorship_debit(
    policy: FundConsumptionPolicy,
    actual_gas_cost: int,
    joining_fee: int,
) -> int:
    """
    Amount one sponsored operation draws from pooled user deposits.

    METERED debits what the operation cost. FIXED_FEE debits the fee
    paid at join time, independent of the cost incurred.
    """
    if policy == FundConsumptionPolicy.FIXED_FEE:
        return joining_fee
    return actual_gas_cost
