"""Round-robin rotation: who is next in a lane.

Rotation state is never stored. It is recounted from the month's primary
records each time it is asked for, so a deleted lead or a new skip shows up
on the next call.

A rep's count in a lane is the number of skips (every skip counts in both
lanes, whatever its target) plus the number of leads in that lane that are
neither marked for replacement nor absorbed by a cushion. OOO days count for
nothing. The next rep is the first one in lane order holding the lowest count.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Union

from .eligibility import eligible_reps
from .errors import IneligibleAssignment
from .lanes import EntryType, Lane, RotationTarget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalendarEntry:
    """One day-cell entry as the rotation sees it."""

    rep_id: str
    entry_type: EntryType
    lead_id: Optional[str] = None
    rotation_target: RotationTarget = RotationTarget.BOTH


@dataclass
class RotationRow:
    """A rep's standing in a lane, for display."""

    position: int
    rep_id: str
    hits: int
    is_next: bool


def calendar_entries(leads: Iterable, non_lead_entries: Iterable = ()) -> List[CalendarEntry]:
    """Flatten stored leads and skip/OOO records into calendar entries."""
    entries = [
        CalendarEntry(rep_id=lead.rep_id, entry_type=EntryType.LEAD, lead_id=lead.id)
        for lead in leads
    ]
    for entry in non_lead_entries:
        entries.append(CalendarEntry(
            rep_id=entry.rep_id,
            entry_type=entry.entry_type,
            rotation_target=entry.rotation_target,
        ))
    return entries


def _index_leads(leads: Union[Mapping, Iterable]) -> Mapping:
    if isinstance(leads, Mapping):
        return leads
    return {lead.id: lead for lead in leads}


def hit_counts(
    base_order: List[str],
    entries: Iterable[CalendarEntry],
    leads: Union[Mapping, Iterable],
    over1k: bool,
    marks: Iterable = (),
    skips_follow_target: bool = False,
) -> Dict[str, int]:
    """Count hits per rep in ``base_order`` for one lane.

    ``marks`` is any iterable of marked lead ids; a dict of marks keyed by
    lead id works as is.

    Cushion-absorbed leads are left out, so this is not the plain least-hit
    formula: an absorbed lead leaves its rep at the head of the lane until
    the cushion runs out.

    Skips count in both lanes. With ``skips_follow_target`` a skip counts
    only in the lanes its target covers, which is how the hit ledger books
    them; reconciliation compares against that count.
    """
    lane = Lane.OVER1K if over1k else Lane.SUB1K
    counts = {rep_id: 0 for rep_id in base_order}
    marked = set(marks)
    lead_index = _index_leads(leads)

    for entry in entries:
        if entry.rep_id not in counts:
            continue

        if entry.entry_type == EntryType.SKIP:
            if not skips_follow_target or entry.rotation_target.covers(lane):
                counts[entry.rep_id] += 1
        elif entry.entry_type == EntryType.LEAD:
            lead = lead_index.get(entry.lead_id)
            if lead is None or lead.id in marked or lead.cushioned:
                continue
            if lead.lane == lane:
                counts[entry.rep_id] += 1

    return counts


def next_in_rotation(
    base_order: List[str],
    entries: Iterable[CalendarEntry],
    leads: Union[Mapping, Iterable],
    over1k: bool,
    marks: Iterable = (),
) -> str:
    """Return the id of the rep due next, or "" for an empty roster."""
    if not base_order:
        return ""

    counts = hit_counts(base_order, entries, leads, over1k, marks)
    min_hits = min(counts.values())
    for rep_id in base_order:
        if counts[rep_id] == min_hits:
            return rep_id
    return ""


def rotation_view(
    base_order: List[str],
    entries: Iterable[CalendarEntry],
    leads: Union[Mapping, Iterable],
    over1k: bool,
    marks: Iterable = (),
) -> List[RotationRow]:
    """Per-rep rows in lane order with hit counts and the next-up flag."""
    entries = list(entries)
    marks = list(marks)
    counts = hit_counts(base_order, entries, leads, over1k, marks)
    next_rep = next_in_rotation(base_order, entries, leads, over1k, marks)
    return [
        RotationRow(
            position=position,
            rep_id=rep_id,
            hits=counts[rep_id],
            is_next=rep_id == next_rep,
        )
        for position, rep_id in enumerate(base_order, start=1)
    ]


def base_order(reps: Iterable, lane: Lane) -> List[str]:
    """Active reps on a lane's roster, sorted by their lane position."""
    roster = []
    for rep in reps:
        if not rep.is_active:
            continue
        order = rep.order_for(lane)
        if order is None and lane.is_over1k:
            if not rep.can_handle_over1k:
                continue
            # Capable but never placed: end of the roster
            order = float("inf")
        roster.append((order, rep.name, rep.id))
    roster.sort(key=lambda item: (item[0], item[1]))
    return [rep_id for _, _, rep_id in roster]


def pick_next(
    lead,
    reps: List,
    entries: Iterable[CalendarEntry],
    leads: Union[Mapping, Iterable],
    marks: Iterable = (),
    excluded: Iterable[str] = (),
) -> str:
    """Choose a rep for ``lead``.

    The lane's next rep wins when eligible. Otherwise the least-hit eligible
    rep in lane order, otherwise the first eligible rep at all. Reps in
    ``excluded`` (held by someone else's reservation) are passed over.
    """
    skip = set(excluded)
    eligible = [rep_id for rep_id in eligible_reps(lead, reps) if rep_id not in skip]
    if not eligible:
        raise IneligibleAssignment(lead.unit_count, lead.property_types)

    entries = list(entries)
    lane = lead.lane
    order = [rep_id for rep_id in base_order(reps, lane) if rep_id not in skip]
    candidate = next_in_rotation(order, entries, leads, lane.is_over1k, marks)
    if candidate in eligible:
        return candidate

    logger.info(f"Next in {lane.value} rotation ({candidate or 'none'}) cannot take lead {lead.account_number}")
    fallback = next_in_rotation(
        [rep_id for rep_id in order if rep_id in eligible], entries, leads, lane.is_over1k, marks,
    )
    return fallback or eligible[0]
