"""Puzzle session engine: evaluation, hard mode, entitlements, sessions, rotation, rate limiting."""

__all__ = [
    "dictionary",
    "errors",
    "feedback",
    "hard_mode",
    "ledger",
    "rate_limit",
    "rotation",
    "session_machine",
]
