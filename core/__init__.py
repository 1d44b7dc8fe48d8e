"""
Core Module Package.

Shared infrastructure used by the risk, collateral and execution packages.

Components:
- clock: Unified, injectable time abstraction
"""

from .clock import ClockProtocol, SystemClock, MockClock, ensure_utc

__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ensure_utc",
]
