"""
Daily Statistics

Per-pool and per-network buckets keyed by the UTC calendar day of the
block timestamp.

Counters are additive: each call adds its delta, so callers must call
exactly once per source event. Snapshot fields are overwritten with the
aggregate's value at call time.
"""

from dataclasses import dataclass

from ..db import EntityStore
from ..schemas import DailyGlobalStats, DailyPoolStats, NetworkInfo, PoolLedger
from .keys import daily_global_stats_key, daily_pool_stats_key


@dataclass(frozen=True)
class PoolStatsDelta:
    new_members: int = 0
    transactions: int = 0
    gas_spent: int = 0
    revenue_generated: int = 0


@dataclass(frozen=True)
class GlobalStatsDelta:
    new_pools: int = 0
    new_members: int = 0
    transactions: int = 0
    gas_spent: int = 0
    revenue_generated: int = 0
    revenue_withdrawn: int = 0


class StatsAggregator:

    def __init__(self, store: EntityStore):
        self._store = store

    def add_pool_stats(self, pool: PoolLedger, date: str, delta: PoolStatsDelta) -> DailyPoolStats:
        key = daily_pool_stats_key(pool.network, date, pool.address, pool.pool_id)
        stats, _ = self._store.get_or_create(
            DailyPoolStats,
            key,
            lambda: DailyPoolStats(
                id=key,
                date=date,
                pool=pool.id,
                network=pool.network,
                chain_id=pool.chain_id,
            ),
        )
        stats.new_members += delta.new_members
        stats.transactions += delta.transactions
        stats.gas_spent += delta.gas_spent
        stats.revenue_generated += delta.revenue_generated

        stats.total_members = pool.member_count
        stats.total_deposits = pool.total_deposits

        self._store.upsert(stats)
        return stats

    def add_global_stats(
        self,
        network: NetworkInfo,
        date: str,
        delta: GlobalStatsDelta,
    ) -> DailyGlobalStats:
        key = daily_global_stats_key(network.id, date)
        stats, _ = self._store.get_or_create(
            DailyGlobalStats,
            key,
            lambda: DailyGlobalStats(
                id=key,
                date=date,
                network=network.id,
                chain_id=network.chain_id,
            ),
        )
        stats.new_pools += delta.new_pools
        stats.new_members += delta.new_members
        stats.transactions += delta.transactions
        stats.gas_spent += delta.gas_spent
        stats.revenue_generated += delta.revenue_generated
        stats.revenue_withdrawn += delta.revenue_withdrawn

        stats.total_pools = network.total_pools
        stats.total_members = network.total_members

        self._store.upsert(stats)
        return stats
