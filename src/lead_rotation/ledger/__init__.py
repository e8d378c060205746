"""Hit accounting: the append-only ledger and cushions."""

from .hits import HitEvent, HitLedger, InMemoryHitStore, HIT_VALUES
from .cushion import CushionState, CushionDecision, CushionTracker, InMemoryCushionStore, decrement

__all__ = [
    "HitEvent",
    "HitLedger",
    "InMemoryHitStore",
    "HIT_VALUES",
    "CushionState",
    "CushionDecision",
    "CushionTracker",
    "InMemoryCushionStore",
    "decrement",
]
