"""Recurring job entrypoints for membership upkeep."""

__all__ = [
    "membership",
]
