"""Append-only hit ledger.

Every rep-facing change books a signed event against (rep, lane, month).
Nothing is ever rewritten; a reversal is a new event with the opposite
sign. A rep's net hits for a key is the plain sum of its events.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..core.lanes import HitKind, Lane, Period, RotationTarget
from ..core.ids import new_id

logger = logging.getLogger(__name__)

HIT_VALUES: Dict[HitKind, int] = {
    HitKind.LEAD_ADD: 1,
    HitKind.LEAD_REMOVE: -1,
    HitKind.SKIP_ADD: 1,
    HitKind.SKIP_REMOVE: -1,
    HitKind.OOO_ADD: 0,
    HitKind.OOO_REMOVE: 0,
    HitKind.MARK: -1,
    HitKind.UNMARK: 1,
    HitKind.REPLACE: 1,
    HitKind.REPLACEMENT_REMOVE: -1,
    HitKind.CUSHION_ABSORB: 0,
}


@dataclass(frozen=True)
class HitEvent:
    """One signed ledger entry."""

    rep_id: str
    lane: Lane
    period: Period
    kind: HitKind
    value: int
    id: str = field(default_factory=new_id)
    lead_id: Optional[str] = None
    entry_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


class InMemoryHitStore:
    """Hit event sink kept in a list."""

    def __init__(self):
        self.events: List[HitEvent] = []

    def add_hit_event(self, event: HitEvent):
        self.events.append(event)

    def get_hit_events(
        self,
        rep_id: Optional[str] = None,
        lane: Optional[Lane] = None,
        period: Optional[Period] = None,
    ) -> List[HitEvent]:
        return [
            e for e in self.events
            if (rep_id is None or e.rep_id == rep_id)
            and (lane is None or e.lane == lane)
            and (period is None or e.period == period)
        ]


class HitLedger:
    """Books and sums hit events over a store."""

    def __init__(self, store=None):
        self.store = store if store is not None else InMemoryHitStore()

    def build(
        self,
        rep_id: str,
        lane: Lane,
        period: Period,
        kind: HitKind,
        value: Optional[int] = None,
        lead_id: Optional[str] = None,
        entry_id: Optional[str] = None,
    ) -> HitEvent:
        """Create an event without writing it.

        ``value`` defaults to the kind's standard value. ``lead_move`` has
        none and always needs an explicit value.
        """
        if value is None:
            if kind not in HIT_VALUES:
                raise ValueError(f"Hit kind {kind.value} needs an explicit value")
            value = HIT_VALUES[kind]
        return HitEvent(
            rep_id=rep_id,
            lane=Lane.parse(lane),
            period=period,
            kind=kind,
            value=int(value),
            lead_id=lead_id,
            entry_id=entry_id,
        )

    def record(self, event: HitEvent) -> HitEvent:
        self.store.add_hit_event(event)
        logger.debug(f"Hit {event.kind.value} {event.value:+d} for {event.rep_id} in {event.lane.value} {event.period}")
        return event

    def append(
        self,
        rep_id: str,
        lane: Lane,
        period: Period,
        kind: HitKind,
        value: Optional[int] = None,
        lead_id: Optional[str] = None,
        entry_id: Optional[str] = None,
    ) -> HitEvent:
        """Build and write one event."""
        return self.record(self.build(rep_id, lane, period, kind, value, lead_id, entry_id))

    def build_for_target(
        self,
        rep_id: str,
        target: RotationTarget,
        period: Period,
        kind: HitKind,
        entry_id: Optional[str] = None,
    ) -> List[HitEvent]:
        """One event per lane a skip/OOO target covers."""
        return [
            self.build(rep_id, lane, period, kind, entry_id=entry_id)
            for lane in RotationTarget.parse(target).lanes
        ]

    def events_for(
        self,
        rep_id: Optional[str] = None,
        lane: Optional[Lane] = None,
        period: Optional[Period] = None,
    ) -> List[HitEvent]:
        return self.store.get_hit_events(rep_id=rep_id, lane=lane, period=period)

    def net_for(self, rep_id: str, lane: Lane, period: Period) -> int:
        """Net hits for one (rep, lane, month)."""
        return sum(e.value for e in self.events_for(rep_id, Lane.parse(lane), period))

    def net_by_rep(self, lane: Lane, period: Period, rep_ids: Iterable[str] = ()) -> Dict[str, int]:
        """Net hits per rep in a lane; ``rep_ids`` are included even at zero."""
        totals = {rep_id: 0 for rep_id in rep_ids}
        for event in self.events_for(lane=Lane.parse(lane), period=period):
            totals[event.rep_id] = totals.get(event.rep_id, 0) + event.value
        return totals
