# tests/property/__init__.py
"""Property-based tests for Lifeline.

Property-based testing validates invariants that must hold for ALL inputs,
not just the specific examples we think of: codec round-trips, restore-once,
monotone numbering, monotone risk and the retention floor.
"""
