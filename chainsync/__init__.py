"""Wallet middleware: confirmed-block sync, transfer classification, sending and business notification."""

__version__ = "0.1.0"

__all__ = [
    "batch_block",
    "deposit",
    "fees",
    "models",
    "multichainsync",
    "notifier",
    "rpcclient",
    "senders",
    "services",
    "synchronizer",
]