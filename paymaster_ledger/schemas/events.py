"""
Decoded Contract Event Schema

The ledger never decodes raw logs. Something upstream has already
turned each log into an event name plus typed parameters. This module
defines the shape that decoded event must have when it reaches us.

Each event:
- Belongs to exactly one contract address
- Carries its block number, block timestamp and transaction hash
- Carries its log index (position within the block)
- Carries a typed payload selected by its kind
"""

import json
from enum import Enum
from typing import Annotated, Any, Optional

from hexbytes import HexBytes
from pydantic import AliasChoices, BaseModel, BeforeValidator, Field, model_validator

from .variants import ContractVariant


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def to_hex(value: Any) -> str:
    """Normalize an address or hash to lower-case 0x-prefixed hex."""
    if isinstance(value, str) and not value.startswith(("0x", "0X")):
        value = "0x" + value
    return "0x" + bytes(HexBytes(value)).hex()


def parse_int(value: Any) -> Any:
    """Accept ints, decimal strings and 0x-prefixed hex strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.startswith(("0x", "0X")):
            return int(text, 16)
        return int(text)
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big")
    return value


HexStr = Annotated[str, BeforeValidator(to_hex)]
Uint = Annotated[int, BeforeValidator(parse_int), Field(ge=0)]


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class EventKind(str, Enum):
    """
    Every contract event the ledger consumes.
    You can add more later, never remove.
    """
    # Deposit-style membership (one implicit tree per contract)
    DEPOSITED = "Deposited"
    LEAF_INSERTED = "LeafInserted"

    # Pool-style membership
    POOL_CREATED = "PoolCreated"
    MEMBER_ADDED = "MemberAdded"
    MEMBERS_ADDED = "MembersAdded"

    # Sponsorship
    USER_OP_SPONSORED = "UserOpSponsored"
    NULLIFIER_CONSUMED = "NullifierConsumed"

    # Administrative
    REVENUE_WITHDRAWN = "RevenueWithdrawn"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"
    POOL_DIED = "PoolDied"

    @classmethod
    def parse(cls, value: Any) -> "EventKind":
        """Resolve an event name, accepting per-contract aliases."""
        if isinstance(value, cls):
            return value
        name = EVENT_NAME_ALIASES.get(value, value)
        return cls(name)


# The one-time-use contract names its sponsorship event differently,
# but it carries the same information.
EVENT_NAME_ALIASES = {
    "UserOpSponsoredWithNullifier": "UserOpSponsored",
}


# ============================================================
# Event Payloads
# Typed parameters for each event kind. Field aliases accept the
# contract ABI parameter names as well as snake_case.
# ============================================================

class EventPayload(BaseModel):
    """Base class for all event payloads."""
    pass


class DepositedPayload(EventPayload):
    depositor: HexStr = Field(..., validation_alias=_alias("depositor", "_depositor"))
    commitment: Uint = Field(..., validation_alias=_alias("commitment", "_commitment"))


class LeafInsertedPayload(EventPayload):
    index: Uint = Field(..., validation_alias=_alias("index", "_index"))
    leaf: Uint = Field(..., validation_alias=_alias("leaf", "_leaf"))
    root: Uint = Field(..., validation_alias=_alias("root", "_root"))


class PoolCreatedPayload(EventPayload):
    pool_id: Uint = Field(..., validation_alias=_alias("pool_id", "poolId"))
    joining_fee: Uint = Field(..., validation_alias=_alias("joining_fee", "joiningFee"))


class MemberAddedPayload(EventPayload):
    pool_id: Uint = Field(..., validation_alias=_alias("pool_id", "poolId"))
    member_index: Uint = Field(..., validation_alias=_alias("member_index", "memberIndex"))
    identity_commitment: Uint = Field(
        ..., validation_alias=_alias("identity_commitment", "identityCommitment")
    )
    merkle_tree_root: Uint = Field(
        ..., validation_alias=_alias("merkle_tree_root", "merkleTreeRoot")
    )
    # Reported by the contract; the ledger derives its own root index
    merkle_root_index: Optional[Uint] = Field(
        default=None, validation_alias=_alias("merkle_root_index", "merkleRootIndex")
    )


class MembersAddedPayload(EventPayload):
    pool_id: Uint = Field(..., validation_alias=_alias("pool_id", "poolId"))
    start_index: Uint = Field(..., validation_alias=_alias("start_index", "startIndex"))
    identity_commitments: list[Uint] = Field(
        ..., validation_alias=_alias("identity_commitments", "identityCommitments")
    )
    merkle_tree_root: Uint = Field(
        ..., validation_alias=_alias("merkle_tree_root", "merkleTreeRoot")
    )
    merkle_root_index: Optional[Uint] = Field(
        default=None, validation_alias=_alias("merkle_root_index", "merkleRootIndex")
    )


class UserOpSponsoredPayload(EventPayload):
    """
    Sponsorship of one user operation.

    pool_id is present for pool-style contracts only.
    nullifier is absent for the cache-enabled contract, which reports it
    later in a separate NullifierConsumed event.
    """
    user_op_hash: HexStr = Field(..., validation_alias=_alias("user_op_hash", "userOpHash"))
    sender: HexStr
    actual_gas_cost: Uint = Field(
        ..., validation_alias=_alias("actual_gas_cost", "actualGasCost")
    )
    pool_id: Optional[Uint] = Field(default=None, validation_alias=_alias("pool_id", "poolId"))
    nullifier: Optional[Uint] = Field(
        default=None, validation_alias=_alias("nullifier", "nullifierUsed")
    )


class NullifierConsumedPayload(EventPayload):
    user_op_hash: HexStr = Field(..., validation_alias=_alias("user_op_hash", "userOpHash"))
    nullifier: Uint
    gas_used: Uint = Field(default=0, validation_alias=_alias("gas_used", "gasUsed"))
    index: Optional[Uint] = None


class RevenueWithdrawnPayload(EventPayload):
    withdraw_address: HexStr = Field(
        ..., validation_alias=_alias("withdraw_address", "withdrawAddress", "recipient")
    )
    amount: Uint


class OwnershipTransferredPayload(EventPayload):
    previous_owner: HexStr = Field(
        default=ZERO_ADDRESS, validation_alias=_alias("previous_owner", "previousOwner")
    )
    new_owner: HexStr = Field(..., validation_alias=_alias("new_owner", "newOwner"))


class PoolDiedPayload(EventPayload):
    pass


PAYLOAD_MODELS: dict[EventKind, type[EventPayload]] = {
    EventKind.DEPOSITED: DepositedPayload,
    EventKind.LEAF_INSERTED: LeafInsertedPayload,
    EventKind.POOL_CREATED: PoolCreatedPayload,
    EventKind.MEMBER_ADDED: MemberAddedPayload,
    EventKind.MEMBERS_ADDED: MembersAddedPayload,
    EventKind.USER_OP_SPONSORED: UserOpSponsoredPayload,
    EventKind.NULLIFIER_CONSUMED: NullifierConsumedPayload,
    EventKind.REVENUE_WITHDRAWN: RevenueWithdrawnPayload,
    EventKind.OWNERSHIP_TRANSFERRED: OwnershipTransferredPayload,
    EventKind.POOL_DIED: PoolDiedPayload,
}


# ============================================================
# Decoded Event
# ============================================================

class DecodedEvent(BaseModel):
    """
    One decoded contract log.

    The delivery layer guarantees strictly increasing block order with
    stable intra-block ordering. The ledger trusts that and never reorders.
    """
    address: HexStr = Field(..., description="Emitting contract address")
    kind: EventKind
    params: EventPayload = Field(default_factory=EventPayload)

    block_number: int = Field(..., ge=0)
    block_timestamp: int = Field(..., ge=0, description="Unix seconds")
    transaction_hash: HexStr
    # Position within the transaction. Missing indices are assigned in
    # delivery order by the router; never defaulted to a constant.
    log_index: Optional[int] = Field(default=None, ge=0)

    # Optional hint for which contract family emitted this event;
    # the identity table wins when it knows the address
    contract_variant: Optional[ContractVariant] = None

    @model_validator(mode="before")
    @classmethod
    def _typed_params(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "kind" not in data:
            return data
        data = dict(data)
        kind = EventKind.parse(data["kind"])
        data["kind"] = kind
        params = data.get("params")
        if params is None or isinstance(params, dict):
            data["params"] = PAYLOAD_MODELS[kind].model_validate(params or {})
        return data

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "DecodedEvent":
        """
        Build from an indexer-style event record.

        Accepts the column names an event table typically stores
        (contract_address, event_name, decoded_args as JSON text or dict)
        as well as raw JSON-RPC style camelCase keys.
        """
        args = record.get("decoded_args", record.get("args", record.get("params")))
        if isinstance(args, str):
            args = json.loads(args)

        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if record.get(key) is not None:
                    return record[key]
            return default

        return cls.model_validate({
            "address": pick("contract_address", "address"),
            "kind": pick("event_name", "event", "kind"),
            "params": args or {},
            "block_number": parse_int(pick("block_number", "blockNumber")),
            "block_timestamp": parse_int(pick("block_timestamp", "blockTimestamp", "timestamp")),
            "transaction_hash": pick("transaction_hash", "transactionHash"),
            "log_index": parse_int(pick("log_index", "logIndex")),
            "contract_variant": pick("contract_variant", "contract_type"),
        })
