"""
Tests for identity resolution, variant policies, settings and event decoding.
"""

import dataclasses
import json
import logging

import pytest
from pydantic import ValidationError

from paymaster_ledger.core import (
    ContractConfig,
    EngineSettings,
    IdentityConfig,
    IdentityResolver,
    profile_for,
    sponsorship_debit,
)
from paymaster_ledger.core.keys import (
    account_key,
    format_date,
    generate_entity_id,
    root_index_for,
    tree_depth_for,
)
from paymaster_ledger.schemas import (
    ContractVariant,
    DecodedEvent,
    EventKind,
    FundConsumptionPolicy,
    MembersAddedPayload,
    ResolutionStrategy,
    UserOpSponsoredPayload,
)

from conftest import GAS_LIMITED, ONE_TIME_USE, UNKNOWN_ADDRESS


class TestIdentityResolver:

    def test_known_address_resolves_network(self):
        identity = IdentityResolver().resolve(GAS_LIMITED)
        assert identity.known
        assert identity.variant == ContractVariant.GAS_LIMITED
        assert identity.network == "base-sepolia"
        assert identity.chain_id == 84532

    def test_lookup_is_case_insensitive(self):
        resolver = IdentityResolver()
        assert resolver.resolve(ONE_TIME_USE.upper().replace("0X", "0x")).known
        assert resolver.resolve(ONE_TIME_USE).address == ONE_TIME_USE

    def test_unknown_address_defaults_network(self, caplog):
        with caplog.at_level(logging.WARNING):
            identity = IdentityResolver().resolve(UNKNOWN_ADDRESS)

        assert identity.known is False
        assert identity.variant is None
        assert identity.network == "base-sepolia"
        assert identity.joining_amount == 0
        assert any("Unknown contract address" in r.getMessage() for r in caplog.records)

    def test_unknown_address_keeps_variant_hint(self):
        identity = IdentityResolver().resolve(UNKNOWN_ADDRESS, ContractVariant.ONE_TIME_USE)
        assert identity.variant == ContractVariant.ONE_TIME_USE

    def test_table_economics_reach_every_strategy(self):
        config = IdentityConfig(
            networks=IdentityConfig.default().networks,
            contracts={
                "0x" + "aa" * 20: ContractConfig(
                    "0x" + "aa" * 20, "base", ContractVariant.CACHE_ENABLED_GAS_LIMITED,
                    joining_amount=10, scope=3,
                ),
                "0x" + "bb" * 20: ContractConfig(
                    "0x" + "bb" * 20, "base", ContractVariant.ONE_TIME_USE,
                    joining_amount=10, scope=3,
                ),
                "0x" + "cc" * 20: ContractConfig(
                    "0x" + "cc" * 20, "base", ContractVariant.GAS_LIMITED,
                ),
            },
        )
        resolver = IdentityResolver(config)

        static = resolver.resolve("0x" + "aa" * 20)
        assert (static.joining_amount, static.scope) == (10, 3)

        configured = resolver.resolve("0x" + "bb" * 20)
        assert (configured.joining_amount, configured.scope) == (10, 3)

        # Nothing in the table: learned from events later
        from_events = resolver.resolve("0x" + "cc" * 20)
        assert (from_events.joining_amount, from_events.scope) == (0, 0)

    def test_unknown_network_has_chain_id_zero(self):
        assert IdentityResolver().network("nowhere").chain_id == 0


class TestIdentityConfig:

    @pytest.fixture
    def table(self):
        return {
            "fallback_network": "base",
            "networks": {"base": {"display_name": "Base", "chain_id": "0x2105"}},
            "contracts": {
                "0xABCDEFabcdefABCDEFabcdefABCDEFabcdefABCD": {
                    "network": "base",
                    "variant": "CacheEnabledGasLimited",
                    "joining_amount": "1000000000000000",
                    "verifier": "0x" + "EE" * 20,
                },
            },
        }

    def test_from_dict(self, table):
        config = IdentityConfig.from_dict(table)

        assert config.fallback_network == "base"
        assert config.network("base").chain_id == 8453
        entry = config.contract("0xabcdefabcdefabcdefabcdefabcdefabcdefabcd")
        assert entry.joining_amount == 10 ** 15
        assert entry.verifier == "0x" + "ee" * 20

    def test_from_file(self, table, tmp_path):
        path = tmp_path / "identity.json"
        path.write_text(json.dumps(table))

        config = IdentityConfig.from_file(path)
        assert config.contract("0xABCDEFabcdefABCDEFabcdefABCDEFabcdefABCD") is not None

    def test_from_env(self, table, tmp_path, monkeypatch):
        path = tmp_path / "identity.json"
        path.write_text(json.dumps(table))

        monkeypatch.setenv("PAYMASTER_LEDGER_IDENTITY_FILE", str(path))
        assert IdentityConfig.from_env().fallback_network == "base"

        monkeypatch.delenv("PAYMASTER_LEDGER_IDENTITY_FILE")
        assert IdentityConfig.from_env().contract(GAS_LIMITED) is not None

    def test_tables_are_immutable(self):
        config = IdentityConfig.default()
        with pytest.raises(TypeError):
            config.contracts[UNKNOWN_ADDRESS] = None
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.fallback_network = "ethereum"


class TestPolicies:

    def test_profiles(self):
        assert profile_for(ContractVariant.GAS_LIMITED).fund_policy == FundConsumptionPolicy.METERED
        assert profile_for("OneTimeUse").fund_policy == FundConsumptionPolicy.FIXED_FEE
        assert (
            profile_for(ContractVariant.CACHE_ENABLED_GAS_LIMITED).resolution_strategy
            == ResolutionStrategy.STATIC_TABLE
        )

    @pytest.mark.parametrize("policy,expected", [
        (FundConsumptionPolicy.METERED, 300),
        (FundConsumptionPolicy.FIXED_FEE, 1000),
    ])
    def test_sponsorship_debit(self, policy, expected):
        assert sponsorship_debit(policy, actual_gas_cost=300, joining_fee=1000) == expected


class TestEngineSettings:

    def test_defaults(self):
        settings = EngineSettings()
        assert settings.root_history_capacity == 64
        assert settings.correlation_ttl_blocks == 0
        assert settings.deduplicate is True

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PAYMASTER_LEDGER_CORRELATION_TTL_BLOCKS", "12")
        monkeypatch.setenv("PAYMASTER_LEDGER_DEDUPLICATE", "false")
        settings = EngineSettings.from_env()
        assert settings.correlation_ttl_blocks == 12
        assert settings.deduplicate is False

    def test_rejects_invalid_values(self):
        with pytest.raises(ValueError):
            EngineSettings(root_history_capacity=0)
        with pytest.raises(ValueError):
            EngineSettings(correlation_ttl_blocks=-1)


class TestKeys:

    def test_generate_entity_id_skips_empty_parts(self):
        assert generate_entity_id("base", "0xabc") == "base-0xabc"
        assert generate_entity_id("base", "0xabc", "1", "2") == "base-0xabc-1-2"
        assert account_key("base", "0xabc") == "base-0xabc"

    def test_root_ring(self):
        assert root_index_for(63) == 63
        assert root_index_for(64) == 0
        assert root_index_for(130, capacity=32) == 2

    @pytest.mark.parametrize("size,depth", [(0, 0), (1, 0), (2, 1), (64, 6), (65, 7)])
    def test_tree_depth(self, size, depth):
        assert tree_depth_for(size) == depth

    def test_format_date_is_utc(self):
        assert format_date(0) == "1970-01-01"
        assert format_date(86_399) == "1970-01-01"
        assert format_date(86_400) == "1970-01-02"


class TestDecodedEvent:

    def test_from_record_with_json_args(self):
        event = DecodedEvent.from_record({
            "contract_address": GAS_LIMITED.upper().replace("0X", "0x"),
            "event_name": "MembersAdded",
            "decoded_args": json.dumps({
                "poolId": "1",
                "startIndex": 0,
                "identityCommitments": ["0x0a", "11"],
                "merkleTreeRoot": "123",
            }),
            "block_number": "0x10",
            "block_timestamp": 1_700_000_000,
            "transaction_hash": "0x" + "AB" * 32,
            "log_index": 3,
        })

        assert event.kind == EventKind.MEMBERS_ADDED
        assert event.address == GAS_LIMITED
        assert event.block_number == 16
        assert event.transaction_hash == "0x" + "ab" * 32
        assert isinstance(event.params, MembersAddedPayload)
        assert event.params.identity_commitments == [10, 11]

    def test_alias_event_name(self):
        event = DecodedEvent.model_validate({
            "address": ONE_TIME_USE,
            "kind": "UserOpSponsoredWithNullifier",
            "params": {
                "userOpHash": "0x" + "01" * 32,
                "sender": "0x" + "02" * 20,
                "actualGasCost": 5,
                "poolId": 1,
                "nullifierUsed": 9,
            },
            "block_number": 1,
            "block_timestamp": 1,
            "transaction_hash": "0x" + "03" * 32,
        })
        assert event.kind == EventKind.USER_OP_SPONSORED
        assert isinstance(event.params, UserOpSponsoredPayload)
        assert event.params.nullifier == 9

    def test_rejects_unknown_event(self):
        with pytest.raises(ValueError):
            DecodedEvent.model_validate({
                "address": GAS_LIMITED,
                "kind": "Transfer",
                "block_number": 1,
                "block_timestamp": 1,
                "transaction_hash": "0x" + "03" * 32,
            })

    def test_rejects_negative_amount(self):
        with pytest.raises(ValidationError):
            DecodedEvent.model_validate({
                "address": GAS_LIMITED,
                "kind": "RevenueWithdrawn",
                "params": {"withdrawAddress": "0x" + "02" * 20, "amount": -1},
                "block_number": 1,
                "block_timestamp": 1,
                "transaction_hash": "0x" + "03" * 32,
            })
