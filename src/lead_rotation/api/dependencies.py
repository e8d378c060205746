"""Request dependencies and model-to-schema converters."""

from fastapi import Request

from ..service import RotationService
from .schemas import EntryOut, LeadOut


def get_service(request: Request) -> RotationService:
    return request.app.state.service


def lead_out(lead) -> LeadOut:
    return LeadOut(
        id=lead.id,
        account_number=lead.account_number,
        rep_id=lead.rep_id,
        unit_count=lead.unit_count,
        property_types=lead.property_types,
        day=lead.day,
        month=lead.month,
        year=lead.year,
        lane=lead.lane.value,
        cushioned=lead.cushioned,
        url=lead.url,
        comments=lead.comments,
    )


def entry_out(entry) -> EntryOut:
    return EntryOut(
        id=entry.id,
        rep_id=entry.rep_id,
        entry_type=entry.entry_type.value,
        rotation_target=entry.rotation_target.value,
        day=entry.day,
        month=entry.month,
        year=entry.year,
    )
