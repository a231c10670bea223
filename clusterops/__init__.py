"""Upgrade reconciliation, built-in role data, UI location and object storage for a cluster operator."""

__version__ = "0.1.0"