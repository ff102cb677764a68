"""
Lifeline: crash-resilient checkpointing for long-running interactive sessions.

Continuously snapshots a session's working state, scores its crash risk from
observable counters, and offers a structured resume when a new session starts
after an interruption.
"""

__version__ = "0.1.0"
