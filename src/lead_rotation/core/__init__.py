"""Core rotation logic: lanes, eligibility, the rotation engine, errors and config."""

from .lanes import Lane, RotationTarget, EntryType, HitKind, Period, lane_for_units, OVER1K_THRESHOLD
from .errors import (
    RotationError,
    InvalidTransition,
    IneligibleAssignment,
    ConcurrentModification,
    LedgerWriteFailure,
    DuplicateEntry,
    NotFound,
    ReservationConflict,
)
from .eligibility import eligible_reps, is_eligible
from .rotation import (
    CalendarEntry,
    RotationRow,
    calendar_entries,
    hit_counts,
    next_in_rotation,
    rotation_view,
    base_order,
    pick_next,
)
from .config import RotationConfig, RotationConfigManager, settings

__all__ = [
    "Lane",
    "RotationTarget",
    "EntryType",
    "HitKind",
    "Period",
    "lane_for_units",
    "OVER1K_THRESHOLD",
    "RotationError",
    "InvalidTransition",
    "IneligibleAssignment",
    "ConcurrentModification",
    "LedgerWriteFailure",
    "DuplicateEntry",
    "NotFound",
    "ReservationConflict",
    "eligible_reps",
    "is_eligible",
    "CalendarEntry",
    "RotationRow",
    "calendar_entries",
    "hit_counts",
    "next_in_rotation",
    "rotation_view",
    "base_order",
    "pick_next",
    "RotationConfig",
    "RotationConfigManager",
    "settings",
]
