"""Deterministic token-pair market feed and consumer-side state reconciliation."""

__version__ = "0.1.0"
