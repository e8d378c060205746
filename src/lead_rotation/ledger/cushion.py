"""Cushions: a per-rep, per-lane allowance that absorbs would-be hits.

A cushion holds ``current`` (absorptions left in this cycle),
``occurrences`` (cycles left, counting the loaded one) and ``original``
(the value a new cycle loads). While ``current`` is 2 or more an assignment
is absorbed. The assignment that brings it to 1 exhausts the cycle and is a
real hit. When a cycle ends with occurrences left, the next cycle loads.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from ..core.errors import ConcurrentModification
from ..core.lanes import Lane

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CushionState:
    current: int = 0
    occurrences: int = 0
    original: int = 0
    version: int = 0

    def __post_init__(self):
        if self.current < 0 or self.occurrences < 0 or self.original < 0:
            raise ValueError("cushion values cannot be negative")

    @property
    def is_active(self) -> bool:
        return self.current > 0 or (self.occurrences > 0 and self.original > 0)


@dataclass(frozen=True)
class CushionDecision:
    should_record_hit: bool
    new_state: CushionState

    @property
    def absorbed(self) -> bool:
        return not self.should_record_hit


def decrement(state: CushionState) -> CushionDecision:
    """Decide whether an assignment is a hit and advance the cushion."""
    current = state.current
    occurrences = state.occurrences
    original = state.original

    if current == 0:
        if occurrences == 0 or original == 0:
            return CushionDecision(True, state)
        current = original

    if current >= 2:
        return CushionDecision(False, replace(state, current=current - 1))

    remaining = max(occurrences - 1, 0)
    return CushionDecision(True, replace(
        state,
        current=original if remaining > 0 else 0,
        occurrences=remaining,
    ))


class InMemoryCushionStore:
    """Cushion states in a dict, with version-checked writes."""

    def __init__(self):
        self.states: Dict[Tuple[str, Lane], CushionState] = {}

    def get_cushion(self, rep_id: str, lane: Lane) -> CushionState:
        return self.states.get((rep_id, lane), CushionState())

    def compare_and_set_cushion(self, rep_id: str, lane: Lane, expected_version: int,
                                state: CushionState) -> bool:
        if self.get_cushion(rep_id, lane).version != expected_version:
            return False
        self.states[(rep_id, lane)] = replace(state, version=expected_version + 1)
        return True

    def get_cushions(self) -> List[Tuple[str, Lane, CushionState]]:
        return [(rep_id, lane, state) for (rep_id, lane), state in self.states.items()]


class CushionTracker:
    """Consults and advances cushions through a store."""

    def __init__(self, store=None, retry_attempts: int = 1, default_value: int = 2):
        self.store = store if store is not None else InMemoryCushionStore()
        self.retry_attempts = retry_attempts
        self.default_value = default_value

    def check_and_decrement(self, rep_id: str, lane: Lane) -> CushionDecision:
        """Consult the cushion for one assignment and persist the new state.

        Raises ConcurrentModification when the state keeps changing under us.
        """
        lane = Lane.parse(lane)
        for attempt in range(self.retry_attempts + 1):
            state = self.store.get_cushion(rep_id, lane)
            decision = decrement(state)
            if decision.new_state == state:
                return decision
            if self.store.compare_and_set_cushion(rep_id, lane, state.version, decision.new_state):
                if decision.absorbed:
                    logger.info(f"Cushion absorbed assignment for {rep_id} in {lane.value} "
                                f"({decision.new_state.current} left)")
                return decision
            logger.warning(f"Cushion for {rep_id}/{lane.value} changed concurrently (attempt {attempt + 1})")
        raise ConcurrentModification(f"cushion:{rep_id}:{lane.value}")

    def set_cushion(self, rep_id: str, lane: Lane, value: Optional[int] = None,
                    occurrences: int = 1) -> CushionState:
        """Start a fresh cushion; value 0 clears it."""
        lane = Lane.parse(lane)
        value = self.default_value if value is None else value
        if value < 0 or occurrences < 0:
            raise ValueError("cushion value and occurrences must be non-negative")

        for attempt in range(self.retry_attempts + 1):
            state = self.store.get_cushion(rep_id, lane)
            new_state = CushionState(
                current=value,
                occurrences=occurrences if value else 0,
                original=value,
                version=state.version,
            )
            if self.store.compare_and_set_cushion(rep_id, lane, state.version, new_state):
                logger.info(f"Set cushion for {rep_id} in {lane.value} to {value} x{occurrences}")
                return self.store.get_cushion(rep_id, lane)
        raise ConcurrentModification(f"cushion:{rep_id}:{lane.value}")

    def get(self, rep_id: str, lane: Lane) -> CushionState:
        return self.store.get_cushion(rep_id, Lane.parse(lane))

    def active_cushions(self) -> List[Tuple[str, Lane, CushionState]]:
        """Reps with a live cushion, as (rep id, lane, state)."""
        return [item for item in self.store.get_cushions() if item[2].is_active]
