"""
Engine Settings

Read once at startup. Environment variables:
- PAYMASTER_LEDGER_ROOT_HISTORY_CAPACITY: roots kept by the contracts (default: 64)
- PAYMASTER_LEDGER_CORRELATION_TTL_BLOCKS: blocks a DEPOSIT may wait for its
  leaf insertion (default: 0, same block only)
- PAYMASTER_LEDGER_DEDUPLICATE: skip events already applied (default: true)
"""

import os
from dataclasses import dataclass

from .keys import ROOT_HISTORY_CAPACITY


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineSettings:
    root_history_capacity: int = ROOT_HISTORY_CAPACITY
    correlation_ttl_blocks: int = 0
    deduplicate: bool = True

    def __post_init__(self):
        if self.root_history_capacity <= 0:
            raise ValueError("root_history_capacity must be positive")
        if self.correlation_ttl_blocks < 0:
            raise ValueError("correlation_ttl_blocks must not be negative")

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            root_history_capacity=int(
                os.getenv("PAYMASTER_LEDGER_ROOT_HISTORY_CAPACITY", str(ROOT_HISTORY_CAPACITY))
            ),
            correlation_ttl_blocks=int(
                os.getenv("PAYMASTER_LEDGER_CORRELATION_TTL_BLOCKS", "0")
            ),
            deduplicate=_env_bool("PAYMASTER_LEDGER_DEDUPLICATE", True),
        )
