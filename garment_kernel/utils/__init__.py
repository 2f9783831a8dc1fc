"""Deterministic hashing and idempotency key helpers."""
