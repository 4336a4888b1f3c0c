"""Opsboard: client-side state for an operations dashboard backed by a remote store."""

__version__ = "0.1.0"
