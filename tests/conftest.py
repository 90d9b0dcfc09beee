"""
Shared fixtures: an isolated router per test and a builder for decoded events.
"""

import itertools

import pytest

from paymaster_ledger.core import (
    ContractConfig,
    EngineSettings,
    EventRouter,
    IdentityConfig,
    IdentityResolver,
)
from paymaster_ledger.db import InMemoryEntityStore
from paymaster_ledger.observability import MetricsCollector
from paymaster_ledger.schemas import ContractVariant, DecodedEvent, EventKind, ZERO_ADDRESS


# Deployments from the built-in identity table (base-sepolia)
GAS_LIMITED = "0x3beec075ac5a77ffe0f9ee4bbb3dcbd07fa93fbf"
ONE_TIME_USE = "0x243a735115f34bd5c0f23a33a444a8d26e31e2e7"

# Cache-enabled deployment added to the table by the identity_config fixture
CACHE_ENABLED = "0x" + "ca" * 20
CACHE_NETWORK = "base"
CACHE_JOINING_AMOUNT = 5_000
CACHE_SCOPE = 7
VERIFIER = "0x" + "ee" * 20

UNKNOWN_ADDRESS = "0x" + "11" * 20

DEPOSITOR = "0x" + "d0" * 20
SENDER = "0x" + "5e" * 20
OWNER = "0x" + "0a" * 20

NETWORK = "base-sepolia"

# 2023-11-14T22:13:20Z
T0 = 1_700_000_000
DAY = 86_400


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


class EventFactory:
    """
    Builds DecodedEvents with fresh transaction hashes and log indices.

    Pass tx= to put several events into one transaction.
    """

    def __init__(self):
        self._tx = itertools.count(1)
        self._log_index = itertools.count()
        self._user_op = itertools.count(1)

    def new_tx(self) -> str:
        return tx_hash(next(self._tx))

    def new_user_op_hash(self) -> str:
        return "0x" + f"{0xf000 + next(self._user_op):064x}"

    def build(self, kind, address, params, block=100, timestamp=T0, tx=None, log_index=None):
        return DecodedEvent.model_validate({
            "address": address,
            "kind": kind,
            "params": params,
            "block_number": block,
            "block_timestamp": timestamp,
            "transaction_hash": tx or self.new_tx(),
            "log_index": next(self._log_index) if log_index is None else log_index,
        })

    def deposited(self, address, commitment=1, depositor=DEPOSITOR, **kw):
        return self.build(
            EventKind.DEPOSITED, address,
            {"_depositor": depositor, "_commitment": commitment}, **kw,
        )

    def leaf_inserted(self, address, index, root, leaf=1, **kw):
        return self.build(
            EventKind.LEAF_INSERTED, address,
            {"_index": index, "_leaf": leaf, "_root": root}, **kw,
        )

    def pool_created(self, address, pool_id, joining_fee, **kw):
        return self.build(
            EventKind.POOL_CREATED, address,
            {"poolId": pool_id, "joiningFee": joining_fee}, **kw,
        )

    def member_added(self, address, pool_id, member_index, commitment=None, root=None, **kw):
        return self.build(
            EventKind.MEMBER_ADDED, address,
            {
                "poolId": pool_id,
                "memberIndex": member_index,
                "identityCommitment": commitment if commitment is not None else 1000 + member_index,
                "merkleTreeRoot": root if root is not None else 9000 + member_index,
                "merkleRootIndex": member_index,
            },
            **kw,
        )

    def members_added(self, address, pool_id, start_index, commitments, root=777, **kw):
        return self.build(
            EventKind.MEMBERS_ADDED, address,
            {
                "poolId": pool_id,
                "startIndex": start_index,
                "identityCommitments": commitments,
                "merkleTreeRoot": root,
                "merkleRootIndex": start_index + len(commitments) - 1,
            },
            **kw,
        )

    def user_op_sponsored(
        self, address, actual_gas_cost, pool_id=None, nullifier=None,
        user_op_hash=None, sender=SENDER, **kw,
    ):
        params = {
            "userOpHash": user_op_hash or self.new_user_op_hash(),
            "sender": sender,
            "actualGasCost": actual_gas_cost,
        }
        if pool_id is not None:
            params["poolId"] = pool_id
        if nullifier is not None:
            params["nullifier"] = nullifier
        return self.build(EventKind.USER_OP_SPONSORED, address, params, **kw)

    def nullifier_consumed(self, address, user_op_hash, nullifier, gas_used=0, index=0, **kw):
        return self.build(
            EventKind.NULLIFIER_CONSUMED, address,
            {"userOpHash": user_op_hash, "nullifier": nullifier, "gasUsed": gas_used, "index": index},
            **kw,
        )

    def revenue_withdrawn(self, address, amount, recipient=OWNER, **kw):
        return self.build(
            EventKind.REVENUE_WITHDRAWN, address,
            {"withdrawAddress": recipient, "amount": amount}, **kw,
        )

    def ownership_transferred(self, address, new_owner=OWNER, previous_owner=ZERO_ADDRESS, **kw):
        return self.build(
            EventKind.OWNERSHIP_TRANSFERRED, address,
            {"previousOwner": previous_owner, "newOwner": new_owner}, **kw,
        )

    def pool_died(self, address, **kw):
        return self.build(EventKind.POOL_DIED, address, {}, **kw)


@pytest.fixture
def events():
    return EventFactory()


@pytest.fixture
def identity_config():
    """Built-in table plus one cache-enabled deployment on base."""
    default = IdentityConfig.default()
    return IdentityConfig(
        networks=default.networks,
        contracts={
            **default.contracts,
            CACHE_ENABLED: ContractConfig(
                address=CACHE_ENABLED,
                network=CACHE_NETWORK,
                variant=ContractVariant.CACHE_ENABLED_GAS_LIMITED,
                joining_amount=CACHE_JOINING_AMOUNT,
                scope=CACHE_SCOPE,
                verifier=VERIFIER,
            ),
        },
    )


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def store():
    return InMemoryEntityStore()


@pytest.fixture
def router(store, identity_config, settings, metrics):
    return EventRouter(store, IdentityResolver(identity_config), settings, metrics)
