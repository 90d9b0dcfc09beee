#!/usr/bin/env python3
"""
Paymaster Ledger Management CLI

Commands for operating the ledger:
- replay: Apply a JSON-lines file of decoded events to the store
- show: Print one entity by kind and key
- check-invariants: Verify accounting invariants over the whole store
- health-check: Check store connectivity and entity counts

The store is selected from the environment (see paymaster_ledger.db.config).
With the in-memory store nothing survives the process, so show and
check-invariants accept --events to replay a file first.

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage replay events.jsonl
    python -m tools.manage show LedgerAccount base-sepolia-0x3bee...
    python -m tools.manage check-invariants --events events.jsonl
"""

import argparse
import json
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def _replay_file(router, path, variant=None):
    """Feed every line of a JSON-lines file through the router."""
    from pydantic import ValidationError
    from paymaster_ledger.schemas import DecodedEvent

    outcomes = {}
    invalid = 0
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                event = DecodedEvent.from_record(json.loads(line))
            except (json.JSONDecodeError, ValidationError, ValueError) as e:
                invalid += 1
                print(f"  [SKIP] line {line_no}: {e}")
                continue

            if variant is not None:
                outcome = router.handle(variant, event)
            else:
                outcome = router.dispatch(event)
            outcomes[outcome.value] = outcomes.get(outcome.value, 0) + 1

    return outcomes, invalid


def _open_router(args):
    from paymaster_ledger.core import EngineSettings, EventRouter, IdentityConfig, IdentityResolver
    from paymaster_ledger.db import create_entity_store

    store = create_entity_store()
    identity = (
        IdentityConfig.from_file(args.identity)
        if getattr(args, "identity", None)
        else IdentityConfig.from_env()
    )
    return EventRouter(store, IdentityResolver(identity), EngineSettings.from_env())


def _prepare(args):
    router = _open_router(args)
    if getattr(args, "events", None):
        print(f"Replaying {args.events}...")
        outcomes, invalid = _replay_file(router, args.events)
        print(f"  Outcomes: {outcomes}, invalid lines: {invalid}")
    return router


def cmd_replay(args):
    """Apply decoded events from a JSON-lines file."""
    from paymaster_ledger.schemas import ContractVariant, NetworkInfo

    router = _open_router(args)
    variant = ContractVariant(args.variant) if args.variant else None

    print(f"Replaying {args.file} into {type(router.store).__name__}...")
    outcomes, invalid = _replay_file(router, args.file, variant)

    print("\nReplay complete!")
    for outcome in ("applied", "duplicate", "abandoned", "unsupported"):
        print(f"  {outcome.capitalize()}: {outcomes.get(outcome, 0)}")
    print(f"  Invalid lines: {invalid}")

    for info in router.store.list(NetworkInfo):
        print(
            f"\n  {info.name}: {info.total_paymasters} paymasters, "
            f"{info.total_pools} pools, {info.total_members} members, "
            f"{info.total_transactions} transactions"
        )

    summary = router.metrics.get_summary()
    print(f"\n  Missed correlations: {summary['correlations_missed']}")
    print(f"  Expired correlations: {summary['correlations_expired']}")
    print(f"  Flagged nullifier reuses: {summary['nullifier_reuses']}")
    return 1 if outcomes.get("abandoned") else 0


def cmd_show(args):
    """Print one entity as JSON."""
    from paymaster_ledger.schemas import ENTITY_MODELS

    model = ENTITY_MODELS.get(args.kind)
    if model is None:
        print(f"[FAIL] Unknown entity kind: {args.kind}")
        print(f"  Known kinds: {', '.join(sorted(ENTITY_MODELS))}")
        return 2

    router = _prepare(args)
    entity = router.store.load(model, args.key)
    if entity is None:
        print(f"[FAIL] {args.kind} {args.key} not found")
        return 1

    print(json.dumps(entity.model_dump(mode="json"), indent=2))
    return 0


def cmd_check_invariants(args):
    """Verify revenue and membership invariants."""
    from paymaster_ledger.schemas import LedgerAccount, PoolLedger, PoolMember, RevenuePolicy

    router = _prepare(args)
    store = router.store

    print("Checking invariants...")
    violations = []

    accounts = store.list(LedgerAccount)
    for account in accounts:
        if account.revenue_policy != RevenuePolicy.RECOMPUTED:
            continue
        expected = account.current_deposit - account.total_users_deposit
        if account.revenue != expected:
            violations.append(
                f"{account.id}: revenue {account.revenue} != "
                f"current_deposit - total_users_deposit ({expected})"
            )

    members_per_pool = {}
    for member in store.list(PoolMember):
        members_per_pool[member.pool] = members_per_pool.get(member.pool, 0) + 1

    pools = store.list(PoolLedger)
    for pool in pools:
        recorded = members_per_pool.get(pool.id, 0)
        if pool.member_count != recorded:
            violations.append(
                f"{pool.id}: member_count {pool.member_count} != members recorded ({recorded})"
            )

    print(f"  Accounts checked: {len(accounts)}")
    print(f"  Pools checked: {len(pools)}")

    if violations:
        print(f"\n[FAIL] {len(violations)} violation(s):")
        for violation in violations:
            print(f"  - {violation}")
        return 1

    print("\n[OK] All invariants hold")
    return 0


def cmd_health_check(args):
    """Run health checks against the configured store."""
    from paymaster_ledger.db import DatabaseConfig, get_database_url, get_store_driver, StoreDriver
    from paymaster_ledger.observability import check_health

    print("Running health checks...\n")

    driver = get_store_driver()
    print("Entity store:")
    if driver == StoreDriver.MEMORY or not get_database_url():
        print("  Type: In-memory (development mode)")
    else:
        config = DatabaseConfig.from_env()
        print(f"  Type: PostgreSQL ({driver.value})")
        print(f"  Host: {config.host}:{config.port}")

    router = _open_router(args)
    status = check_health(entity_store=router.store)
    for name, check in status.checks.items():
        print(f"  {name}: {check}")

    if status.healthy:
        print("\n[OK] All health checks passed")
        return 0
    print("\n[FAIL] Health checks failed")
    return 1


def main():
    from paymaster_ledger.observability import setup_logging

    parser = argparse.ArgumentParser(
        description="Paymaster Ledger Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--identity",
        help="JSON identity table (default: PAYMASTER_LEDGER_IDENTITY_FILE or built-in)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # replay
    p_replay = subparsers.add_parser(
        "replay",
        help="Apply a JSON-lines file of decoded events"
    )
    p_replay.add_argument("file", help="JSON-lines file, one decoded event per line")
    p_replay.add_argument(
        "--variant",
        choices=["GasLimited", "OneTimeUse", "CacheEnabledGasLimited"],
        help="Contract variant of every event in the file",
    )

    # show
    p_show = subparsers.add_parser(
        "show",
        help="Print one entity by kind and key"
    )
    p_show.add_argument("kind", help="Entity kind, e.g. LedgerAccount")
    p_show.add_argument("key", help="Composite key, e.g. base-sepolia-0xabc...")
    p_show.add_argument("--events", help="Replay this file first")

    # check-invariants
    p_check = subparsers.add_parser(
        "check-invariants",
        help="Verify accounting invariants"
    )
    p_check.add_argument("--events", help="Replay this file first")

    # health-check
    subparsers.add_parser(
        "health-check",
        help="Run health checks"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    setup_logging()

    commands = {
        "replay": cmd_replay,
        "show": cmd_show,
        "check-invariants": cmd_check_invariants,
        "health-check": cmd_health_check,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
