"""Lanes, rotation targets and hit kinds shared by every rotation component."""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import List, Optional, Tuple

OVER1K_THRESHOLD = 1000


class Lane(Enum):
    """Workload bucket a lead belongs to."""

    SUB1K = "sub1k"
    OVER1K = "over1k"

    @classmethod
    def parse(cls, value) -> "Lane":
        """Accept a Lane, its value, or one of the legacy spellings."""
        if isinstance(value, Lane):
            return value
        normalized = str(value).strip().lower()
        if normalized in ("over1k", "1kplus", "1k+", "1k_plus"):
            return cls.OVER1K
        if normalized == "sub1k":
            return cls.SUB1K
        raise ValueError(f"Unknown lane: {value!r}")

    @property
    def is_over1k(self) -> bool:
        return self is Lane.OVER1K


class RotationTarget(Enum):
    """Lanes a non-lead entry applies to."""

    SUB1K = "sub1k"
    OVER1K = "over1k"
    BOTH = "both"

    @classmethod
    def parse(cls, value) -> "RotationTarget":
        if value is None:
            return cls.BOTH
        if isinstance(value, RotationTarget):
            return value
        if isinstance(value, Lane):
            return cls(value.value)
        normalized = str(value).strip().lower()
        if normalized == "both":
            return cls.BOTH
        return cls(Lane.parse(normalized).value)

    @property
    def lanes(self) -> Tuple[Lane, ...]:
        """Lanes covered by this target, in ledger order."""
        if self is RotationTarget.BOTH:
            return (Lane.SUB1K, Lane.OVER1K)
        return (Lane(self.value),)

    def covers(self, lane: Lane) -> bool:
        return lane in self.lanes


class EntryType(Enum):
    """Kinds of calendar entries."""

    LEAD = "lead"
    SKIP = "skip"
    OOO = "ooo"


class HitKind(Enum):
    """Kinds of hit ledger events."""

    LEAD_ADD = "lead_add"
    LEAD_REMOVE = "lead_remove"
    LEAD_MOVE = "lead_move"
    SKIP_ADD = "skip_add"
    SKIP_REMOVE = "skip_remove"
    OOO_ADD = "ooo_add"
    OOO_REMOVE = "ooo_remove"
    MARK = "mark"
    UNMARK = "unmark"
    REPLACE = "replace"
    REPLACEMENT_REMOVE = "replacement_remove"
    CUSHION_ABSORB = "cushion_absorb"


@dataclass(frozen=True)
class Period:
    """A calendar month; hits and leads are scoped to one."""

    month: int
    year: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be 1-12, got {self.month}")

    @classmethod
    def current(cls, today: Optional[date] = None) -> "Period":
        today = today or date.today()
        return cls(month=today.month, year=today.year)

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def __str__(self) -> str:
        return self.key


def lane_for_units(unit_count: Optional[int]) -> Lane:
    """Derive a lead's lane from its unit count."""
    return Lane.OVER1K if (unit_count or 0) >= OVER1K_THRESHOLD else Lane.SUB1K


def all_lanes() -> List[Lane]:
    return [Lane.SUB1K, Lane.OVER1K]
