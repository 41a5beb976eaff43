"""Shared scheduling primitives and DTOs used across the voice mesh.

Only lightweight, common building blocks should live here. Do not place
connection or signaling logic in this package.
"""

from .scheduling import DelayedTask, PeriodicTask, call_maybe_async

__all__ = [
    "DelayedTask",
    "PeriodicTask",
    "call_maybe_async",
]
