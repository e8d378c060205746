"""Data models for the rotation store."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List

from ..core.ids import new_id
from ..core.lanes import EntryType, Lane, Period, RotationTarget, lane_for_units


class RepStatus(Enum):
    """Whether a rep takes part in rotation."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class ReservationStatus(Enum):
    ACTIVE = "active"
    RELEASED = "released"


@dataclass
class SalesRep:
    """A sales representative in the rotation."""

    name: str
    id: str = field(default_factory=new_id)

    # Lane positions (1-based); over1k only applies to capable reps
    sub1k_order: int = 0
    over1k_order: Optional[int] = None

    # Capabilities
    can_handle_over1k: bool = False
    max_units: Optional[int] = None
    property_types: List[str] = field(default_factory=list)

    status: RepStatus = RepStatus.ACTIVE
    created_at: datetime = field(default_factory=datetime.now)
    version: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == RepStatus.ACTIVE

    def order_for(self, lane: Lane) -> Optional[int]:
        """Position of this rep in a lane roster, None when not on it."""
        if lane.is_over1k:
            if not self.can_handle_over1k:
                return None
            return self.over1k_order
        return self.sub1k_order


@dataclass
class LeadDraft:
    """A lead about to be assigned."""

    account_number: str
    unit_count: int = 0
    property_types: List[str] = field(default_factory=list)
    day: int = 1
    month: int = field(default_factory=lambda: datetime.now().month)
    year: int = field(default_factory=lambda: datetime.now().year)
    url: Optional[str] = None
    comments: Optional[str] = None

    @property
    def lane(self) -> Lane:
        return lane_for_units(self.unit_count)

    @property
    def period(self) -> Period:
        return Period(self.month, self.year)


@dataclass
class Lead:
    """An assigned lead."""

    account_number: str
    rep_id: str
    id: str = field(default_factory=new_id)
    unit_count: int = 0
    property_types: List[str] = field(default_factory=list)
    day: int = 1
    month: int = field(default_factory=lambda: datetime.now().month)
    year: int = field(default_factory=lambda: datetime.now().year)
    url: Optional[str] = None
    comments: Optional[str] = None

    # True when a cushion absorbed the assignment; such leads are not hits
    cushioned: bool = False

    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_draft(cls, draft: LeadDraft, rep_id: str, cushioned: bool = False) -> "Lead":
        return cls(
            account_number=draft.account_number,
            rep_id=rep_id,
            unit_count=draft.unit_count,
            property_types=list(draft.property_types),
            day=draft.day,
            month=draft.month,
            year=draft.year,
            url=draft.url,
            comments=draft.comments,
            cushioned=cushioned,
        )

    @property
    def lane(self) -> Lane:
        return lane_for_units(self.unit_count)

    @property
    def period(self) -> Period:
        return Period(self.month, self.year)

    @property
    def counted_value(self) -> int:
        """Hits this lead contributes while unmarked."""
        return 0 if self.cushioned else 1


@dataclass
class NonLeadEntry:
    """A skip or out-of-office day for a rep."""

    rep_id: str
    entry_type: EntryType
    id: str = field(default_factory=new_id)
    rotation_target: RotationTarget = RotationTarget.BOTH
    day: int = 1
    month: int = field(default_factory=lambda: datetime.now().month)
    year: int = field(default_factory=lambda: datetime.now().year)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def period(self) -> Period:
        return Period(self.month, self.year)


@dataclass
class Reservation:
    """A short hold on a rep while an operator prepares a lead."""

    rep_id: str
    lane: Lane
    reserved_by: str
    expires_at: datetime
    id: str = field(default_factory=new_id)
    unit_count: Optional[int] = None
    property_types: List[str] = field(default_factory=list)
    status: ReservationStatus = ReservationStatus.ACTIVE
    created_at: datetime = field(default_factory=datetime.now)

    def is_live(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now()
        return self.status == ReservationStatus.ACTIVE and self.expires_at > now
