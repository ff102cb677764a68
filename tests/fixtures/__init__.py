# tests/fixtures/__init__.py
"""Shared pytest fixtures for Lifeline tests.

Available fixtures:
- store_db: Fresh in-memory StoreDB per test
- store: CheckpointStore over store_db
- clock: MockClock starting at monotonic 0.0 (2026-01-01T00:00:00Z)
- guard: SessionGuard over store, driven by clock
"""

from tests.fixtures.store import clock, guard, store, store_db

__all__ = [
    "clock",
    "guard",
    "store",
    "store_db",
]
