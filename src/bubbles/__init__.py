"""Bubble economy queue-slot ledger service."""
