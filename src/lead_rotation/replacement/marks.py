"""Replacement marks: the lifecycle of a lead that needs replacing.

A normal lead may be marked for replacement (open mark). Creating the
replacement lead closes the mark. Deleting the replacement reopens it, and an
open mark may be removed, returning the lead to normal::

    NONE --mark--> OPEN --apply--> CLOSED
    OPEN --remove--> NONE
    CLOSED --undo--> OPEN

``ReplacementBook`` holds marks in memory and enforces the transitions. It
has no side effects beyond its own mapping; persistence and hit accounting
are the caller's job.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, Optional

from ..core.errors import InvalidTransition, NotFound
from ..core.lanes import Lane

logger = logging.getLogger(__name__)


class MarkState(Enum):
    NONE = "none"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class ReplacementMark:
    """Marks an original lead as awaiting (or having) a replacement."""

    lead_id: str
    rep_id: str
    lane: Lane
    account_number: str = ""
    replaced_by_lead_id: Optional[str] = None
    was_cushioned: bool = False
    marked_at: datetime = field(default_factory=datetime.now)
    replaced_at: Optional[datetime] = None
    version: int = 0

    @property
    def state(self) -> MarkState:
        return MarkState.OPEN if self.replaced_by_lead_id is None else MarkState.CLOSED

    @property
    def counted_value(self) -> int:
        """Hits the original lead contributed before it was marked."""
        return 0 if self.was_cushioned else 1


@dataclass(frozen=True)
class DeletionCheck:
    allowed: bool
    reason: str = ""


class ReplacementBook:
    """Marks keyed by original lead id."""

    def __init__(self, marks: Optional[Dict[str, ReplacementMark]] = None):
        self.marks: Dict[str, ReplacementMark] = dict(marks or {})

    def __contains__(self, lead_id) -> bool:
        return lead_id in self.marks

    def __iter__(self) -> Iterator[str]:
        return iter(self.marks)

    def __len__(self) -> int:
        return len(self.marks)

    def get(self, lead_id: str) -> Optional[ReplacementMark]:
        return self.marks.get(lead_id)

    def state_of(self, lead_id: str) -> MarkState:
        mark = self.marks.get(lead_id)
        return mark.state if mark else MarkState.NONE

    def original_for(self, replacement_lead_id: str) -> Optional[ReplacementMark]:
        """The mark a replacement lead closed, if any."""
        for mark in self.marks.values():
            if mark.replaced_by_lead_id == replacement_lead_id:
                return mark
        return None

    def _require(self, lead_id: str, transition: str, expected: MarkState) -> MarkState:
        current = self.state_of(lead_id)
        if current != expected:
            logger.warning(f"Rejected {transition} on lead {lead_id}: state is {current.value}")
            raise InvalidTransition(transition, current.value, lead_id)
        return current

    def mark_for_replacement(self, lead) -> ReplacementMark:
        """Open a mark on a normal lead."""
        self._require(lead.id, "mark_for_replacement", MarkState.NONE)
        if self.original_for(lead.id) is not None:
            raise InvalidTransition(
                "mark_for_replacement", "replacement", lead.id,
                reason="a replacement lead cannot itself be marked",
            )

        mark = ReplacementMark(
            lead_id=lead.id,
            rep_id=lead.rep_id,
            lane=lead.lane,
            account_number=lead.account_number,
            was_cushioned=bool(getattr(lead, "cushioned", False)),
        )
        self.marks[lead.id] = mark
        return mark

    def apply_replacement(self, original_id: str, new_lead) -> ReplacementMark:
        """Close an open mark with ``new_lead``, which must belong to the same rep."""
        self._require(original_id, "apply_replacement", MarkState.OPEN)
        mark = self.marks[original_id]
        if new_lead.rep_id != mark.rep_id:
            raise InvalidTransition(
                "apply_replacement", MarkState.OPEN.value, original_id,
                reason=f"replacement must be assigned to rep {mark.rep_id}",
            )

        closed = replace(mark, replaced_by_lead_id=new_lead.id, replaced_at=datetime.now())
        self.marks[original_id] = closed
        return closed

    def undo_replacement(self, original_id: str) -> ReplacementMark:
        """Reopen a closed mark; the replacement lead is gone."""
        self._require(original_id, "undo_replacement", MarkState.CLOSED)
        reopened = replace(self.marks[original_id], replaced_by_lead_id=None, replaced_at=None)
        self.marks[original_id] = reopened
        return reopened

    def remove_mark(self, lead_id: str) -> ReplacementMark:
        """Drop an open mark, returning the lead to normal."""
        if lead_id not in self.marks:
            raise NotFound("Replacement mark", lead_id)
        self._require(lead_id, "remove_mark", MarkState.OPEN)
        return self.marks.pop(lead_id)

    def can_delete_lead(self, lead_id: str) -> DeletionCheck:
        state = self.state_of(lead_id)
        if state == MarkState.OPEN:
            return DeletionCheck(False, "Lead is marked for replacement; remove the mark first")
        if state == MarkState.CLOSED:
            replacement = self.marks[lead_id].replaced_by_lead_id
            return DeletionCheck(False, f"Lead was replaced by {replacement}; delete the replacement first")
        return DeletionCheck(True)
