"""Errors raised by the rotation engine and its services.

Everything inherits from ``RotationError`` so hosts can catch the whole
family at their boundary. ``retryable`` tells the caller whether re-reading
and re-attempting makes sense.
"""

from typing import Any, Dict, Optional


class RotationError(Exception):
    """Base class for rotation errors."""

    kind = "rotation_error"
    retryable = False

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "detail": self.message, **self.details}


class InvalidTransition(RotationError):
    """A replacement-state transition was attempted from the wrong state."""

    kind = "invalid_transition"

    def __init__(self, transition: str, current_state: str, lead_id: str = "", reason: str = ""):
        message = f"Cannot {transition} lead {lead_id} in state {current_state}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, {
            "transition": transition,
            "current_state": current_state,
            "lead_id": lead_id,
        })
        self.transition = transition
        self.current_state = current_state
        self.lead_id = lead_id


class IneligibleAssignment(RotationError):
    """No representative can take the lead."""

    kind = "ineligible_assignment"

    def __init__(self, unit_count: int, property_types=None, rep_id: str = ""):
        types = list(property_types or [])
        if rep_id:
            message = f"Rep {rep_id} is not eligible for a {unit_count}-unit lead"
        else:
            message = f"No eligible sales rep for a {unit_count}-unit lead"
        if types:
            message += f" ({', '.join(types)})"
        super().__init__(message, {
            "unit_count": unit_count,
            "property_types": types,
            "rep_id": rep_id,
        })
        self.unit_count = unit_count
        self.property_types = types


class ConcurrentModification(RotationError):
    """A compare-and-swap write found the row changed underneath it."""

    kind = "concurrent_modification"
    retryable = True

    def __init__(self, key: str, expected_version: Optional[int] = None):
        super().__init__(f"Concurrent update detected on {key}", {
            "key": key,
            "expected_version": expected_version,
        })
        self.key = key


class LedgerWriteFailure(RotationError):
    """The hit ledger append failed after the primary write succeeded."""

    kind = "ledger_write_failure"
    retryable = True

    def __init__(self, event, cause: Optional[BaseException] = None, result: Any = None):
        super().__init__(f"Failed to append hit event for rep {event.rep_id} ({event.kind.value})", {
            "rep_id": event.rep_id,
            "lane": event.lane.value,
            "hit_kind": event.kind.value,
            "value": event.value,
        })
        self.event = event
        self.cause = cause
        # Outcome of the primary operation, which is not rolled back
        self.result = result


class DuplicateEntry(RotationError):
    """A lead account or a non-lead entry already exists for the period."""

    kind = "duplicate_entry"


class NotFound(RotationError):
    """A rep, lead, entry, mark or reservation does not exist."""

    kind = "not_found"

    def __init__(self, what: str, identifier: str):
        super().__init__(f"{what} {identifier} not found", {"what": what, "id": identifier})


class ReservationConflict(RotationError):
    """The rep is already held by another operator."""

    kind = "reservation_conflict"
