"""Which reps may take a given lead."""

from typing import Iterable, List, Optional

from .lanes import OVER1K_THRESHOLD


def is_eligible(rep, unit_count: int, property_types: Optional[Iterable[str]] = None) -> bool:
    """Check a single rep against a lead's size and property types."""
    if not rep.is_active:
        return False

    unit_count = unit_count or 0
    if unit_count >= OVER1K_THRESHOLD and not rep.can_handle_over1k:
        return False

    if rep.max_units is not None and unit_count > rep.max_units:
        return False

    required = set(property_types or [])
    if required and not required.issubset(set(rep.property_types or [])):
        return False

    return True


def eligible_reps(lead, roster) -> List[str]:
    """Ids of reps able to take ``lead``, in roster order.

    ``lead`` is anything carrying ``unit_count`` and ``property_types``
    (a LeadDraft or a Lead).
    """
    return [
        rep.id for rep in roster
        if is_eligible(rep, lead.unit_count, lead.property_types)
    ]
