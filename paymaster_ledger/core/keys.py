"""
Composite Entity Keys

Every derived entity is addressed by a deterministic key built from
the network plus one to three caller-supplied parts, joined with "-".
Keys are part of the read interface: consumers query with them, so
their format is compatibility-relevant.

Keys only need to be unique within one entity kind; the store
namespaces them per kind.
"""

from datetime import datetime, timezone


KEY_DELIMITER = "-"

# Number of recent roots the contracts accept for proofs
ROOT_HISTORY_CAPACITY = 64

# Tree part of a MerkleRootRecord key for contract-level trees
CONTRACT_TREE = "tree"


def generate_entity_id(network: str, part1: str, part2: str = "", part3: str = "") -> str:
    """Join network and parts; empty trailing parts are skipped."""
    entity_id = network + KEY_DELIMITER + part1
    if part2 != "":
        entity_id = entity_id + KEY_DELIMITER + part2
    if part3 != "":
        entity_id = entity_id + KEY_DELIMITER + part3
    return entity_id


def format_date(timestamp: int) -> str:
    """UTC calendar day of a unix timestamp, as YYYY-MM-DD."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).date().isoformat()


def root_index_for(insertion_index: int, capacity: int = ROOT_HISTORY_CAPACITY) -> int:
    """Slot of a root in the fixed-size root history ring."""
    return insertion_index % capacity


def tree_depth_for(tree_size: int) -> int:
    """Smallest depth whose tree can hold tree_size leaves."""
    return max(tree_size - 1, 0).bit_length()


# ------------------------------------------------------------
# Per-entity keys
# ------------------------------------------------------------

def network_key(network: str) -> str:
    return network


def account_key(network: str, address: str) -> str:
    return generate_entity_id(network, address)


def pool_key(network: str, address: str, pool_id: int) -> str:
    return generate_entity_id(network, address, str(pool_id))


def member_key(network: str, address: str, pool_id: int, member_index: int) -> str:
    return generate_entity_id(network, address, str(pool_id), str(member_index))


def root_record_key(network: str, address: str, tree: str, sequence: int) -> str:
    return generate_entity_id(network, address, tree, str(sequence))


def nullifier_key(network: str, nullifier: int) -> str:
    return generate_entity_id(network, str(nullifier))


def activity_key(network: str, tx_hash: str, log_index: int) -> str:
    return generate_entity_id(network, tx_hash, str(log_index))


def user_operation_key(network: str, user_op_hash: str) -> str:
    return generate_entity_id(network, user_op_hash)


def correlation_key(network: str, tx_hash: str) -> str:
    return generate_entity_id(network, tx_hash)


def processed_event_key(network: str, tx_hash: str, log_index: int) -> str:
    return generate_entity_id(network, tx_hash, str(log_index))


def daily_pool_stats_key(network: str, date: str, address: str, pool_id: int) -> str:
    return generate_entity_id(network, date, address, str(pool_id))


def daily_global_stats_key(network: str, date: str) -> str:
    return generate_entity_id(network, date)
