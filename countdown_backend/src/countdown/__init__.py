"""
Countdown backend package.

The engine and its building blocks import without FastAPI side effects; the
HTTP application lives in `src.countdown.main`.
"""

from .breakdown import TimeBreakdown, decompose
from .engine import CountdownEngine, CountdownStats
from .models import CountdownEntity, decode_countdowns, encode_countdowns
from .repositories import InMemoryStore, KeyValueStore, get_store

__all__ = [
    "CountdownEngine",
    "CountdownEntity",
    "CountdownStats",
    "InMemoryStore",
    "KeyValueStore",
    "TimeBreakdown",
    "decode_countdowns",
    "decompose",
    "encode_countdowns",
    "get_store",
]
