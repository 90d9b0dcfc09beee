"""
Read API for the Paymaster Ledger

Query endpoints only (the ledger is written by the event stream, never
by HTTP clients). Every entity is addressed by the same composite key
the engine writes it under:

- GET /networks                                         - List networks
- GET /networks/{network}                               - Network totals
- GET /networks/{network}/accounts                      - Accounts on a network
- GET /accounts/{network}/{address}                     - One paymaster account
- GET /accounts/{network}/{address}/pools               - Its pools
- GET /pools/{network}/{address}/{pool_id}              - One pool
- GET /pools/{network}/{address}/{pool_id}/members      - Its members
- GET /members/{network}/{address}/{pool_id}/{index}    - One member
- GET /nullifiers/{network}/{nullifier}                 - Nullifier state
- GET /activities/{network}/{tx_hash}                   - Activities of a transaction
- GET /user-operations/{network}/{user_op_hash}         - One sponsored operation
- GET /stats/daily/{network}/{date}                     - Daily network bucket
- GET /stats/daily/{network}/{date}/{address}/{pool_id} - Daily pool bucket
- GET /entities/{kind}/{key}                            - Any entity by raw key
"""

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from ..db import EntityStore
from ..schemas import (
    ENTITY_MODELS,
    Activity,
    DailyGlobalStats,
    DailyPoolStats,
    Entity,
    LedgerAccount,
    NetworkInfo,
    NullifierEntry,
    PoolLedger,
    PoolMember,
    UserOperation,
    to_hex,
)
from ..core.keys import (
    account_key,
    daily_global_stats_key,
    daily_pool_stats_key,
    member_key,
    network_key,
    nullifier_key,
    pool_key,
    user_operation_key,
)


router = APIRouter(tags=["Ledger"])


# Derived state changes with every block; keep caches short
CACHE_CONTROL_PUBLIC = "public, max-age=15"


# ============================================================
# Helpers
# ============================================================

def get_store(request: Request) -> EntityStore:
    return request.app.state.entity_store


def _hex(value: str) -> str:
    try:
        return to_hex(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Not a hex value: {value}")


def _respond(payload: Any) -> JSONResponse:
    return JSONResponse(content=payload, headers={"Cache-Control": CACHE_CONTROL_PUBLIC})


def _entity(store: EntityStore, model: type[Entity], key: str) -> JSONResponse:
    entity = store.load(model, key)
    if entity is None:
        raise HTTPException(status_code=404, detail=f"{model.ENTITY_KIND} {key} not found")
    return _respond(entity.model_dump(mode="json"))


def _entities(entities: list[Entity]) -> JSONResponse:
    return _respond([entity.model_dump(mode="json") for entity in entities])


# ============================================================
# Networks and accounts
# ============================================================

@router.get("/networks")
async def list_networks(request: Request):
    return _entities(get_store(request).list(NetworkInfo))


@router.get("/networks/{network}")
async def get_network(request: Request, network: str):
    return _entity(get_store(request), NetworkInfo, network_key(network))


@router.get("/networks/{network}/accounts")
async def list_accounts(request: Request, network: str):
    accounts = [
        account for account in get_store(request).list(LedgerAccount)
        if account.network == network
    ]
    return _entities(accounts)


@router.get("/accounts/{network}/{address}")
async def get_account(request: Request, network: str, address: str):
    return _entity(get_store(request), LedgerAccount, account_key(network, _hex(address)))


@router.get("/accounts/{network}/{address}/pools")
async def list_pools(request: Request, network: str, address: str):
    account_id = account_key(network, _hex(address))
    pools = [pool for pool in get_store(request).list(PoolLedger) if pool.account == account_id]
    pools.sort(key=lambda pool: pool.pool_id)
    return _entities(pools)


# ============================================================
# Pools and members
# ============================================================

@router.get("/pools/{network}/{address}/{pool_id}")
async def get_pool(request: Request, network: str, address: str, pool_id: int):
    return _entity(get_store(request), PoolLedger, pool_key(network, _hex(address), pool_id))


@router.get("/pools/{network}/{address}/{pool_id}/members")
async def list_members(request: Request, network: str, address: str, pool_id: int):
    pool_id_key = pool_key(network, _hex(address), pool_id)
    members = [
        member for member in get_store(request).list(PoolMember)
        if member.pool == pool_id_key
    ]
    members.sort(key=lambda member: member.member_index)
    return _entities(members)


@router.get("/members/{network}/{address}/{pool_id}/{member_index}")
async def get_member(
    request: Request, network: str, address: str, pool_id: int, member_index: int
):
    key = member_key(network, _hex(address), pool_id, member_index)
    return _entity(get_store(request), PoolMember, key)


# ============================================================
# Nullifiers, activities, operations
# ============================================================

@router.get("/nullifiers/{network}/{nullifier}")
async def get_nullifier(request: Request, network: str, nullifier: int):
    return _entity(get_store(request), NullifierEntry, nullifier_key(network, nullifier))


@router.get("/activities/{network}/{tx_hash}")
async def list_transaction_activities(request: Request, network: str, tx_hash: str):
    tx_hash = _hex(tx_hash)
    activities = [
        activity for activity in get_store(request).list(Activity)
        if activity.network == network and activity.transaction_hash == tx_hash
    ]
    activities.sort(key=lambda activity: activity.log_index)
    return _entities(activities)


@router.get("/user-operations/{network}/{user_op_hash}")
async def get_user_operation(request: Request, network: str, user_op_hash: str):
    key = user_operation_key(network, _hex(user_op_hash))
    return _entity(get_store(request), UserOperation, key)


# ============================================================
# Statistics
# ============================================================

@router.get("/stats/daily/{network}/{date}")
async def get_daily_global_stats(request: Request, network: str, date: str):
    return _entity(get_store(request), DailyGlobalStats, daily_global_stats_key(network, date))


@router.get("/stats/daily/{network}/{date}/{address}/{pool_id}")
async def get_daily_pool_stats(
    request: Request, network: str, date: str, address: str, pool_id: int
):
    key = daily_pool_stats_key(network, date, _hex(address), pool_id)
    return _entity(get_store(request), DailyPoolStats, key)


# ============================================================
# Raw access
# ============================================================

@router.get("/entities/{kind}/{key}")
async def get_entity(request: Request, kind: str, key: str):
    model = ENTITY_MODELS.get(kind)
    if model is None:
        raise HTTPException(status_code=404, detail=f"Unknown entity kind: {kind}")
    return _entity(get_store(request), model, key)
