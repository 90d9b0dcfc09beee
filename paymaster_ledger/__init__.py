# Paymaster Ledger
# Event-sourced accounting for paymaster contract events.

__version__ = "0.1.0"
