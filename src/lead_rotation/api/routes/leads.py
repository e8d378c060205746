"""Lead assignment, editing, deletion and replacement-mark routes."""

import logging
from fastapi import APIRouter, Depends

from ...core.errors import LedgerWriteFailure, RotationError
from ...core.lanes import Period
from ...storage.models import LeadDraft
from ..dependencies import get_service, lead_out
from ..errors import ERROR_RESPONSES, accepted, http_error, validation_error
from ..schemas import (
    AssignmentResponse,
    DeletionCheckResponse,
    LeadCreateRequest,
    LeadResponse,
    LeadUpdateRequest,
    MarkResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/leads", tags=["leads"])


def _assignment_response(result) -> AssignmentResponse:
    return AssignmentResponse(
        lead=lead_out(result.lead),
        hit_value=sum(e.value for e in result.events),
        replaced_lead_id=result.mark.lead_id if result.mark else None,
    )


def _mark_response(mark) -> MarkResponse:
    return MarkResponse(
        lead_id=mark.lead_id,
        rep_id=mark.rep_id,
        lane=mark.lane.value,
        state=mark.state.value,
        replaced_by_lead_id=mark.replaced_by_lead_id,
    )


@router.post("", response_model=AssignmentResponse, status_code=201, responses=ERROR_RESPONSES)
def create_lead(body: LeadCreateRequest, service=Depends(get_service)):
    """Assign a lead from rotation, to a named rep, or as a replacement."""
    current = Period.current()
    draft = LeadDraft(
        account_number=body.account_number,
        unit_count=body.unit_count,
        property_types=list(body.property_types),
        day=body.day,
        month=body.month or current.month,
        year=body.year or current.year,
        url=body.url,
        comments=body.comments,
    )
    try:
        result = service.assign_lead(
            draft,
            assigned_to=body.assigned_to,
            replaces=body.replaces,
            operator=body.operator,
        )
    except LedgerWriteFailure as e:
        return accepted(_assignment_response(e.result))
    except RotationError as e:
        raise http_error(e)
    except ValueError as e:
        raise validation_error(str(e))
    return _assignment_response(result)


@router.patch("/{lead_id}", response_model=LeadResponse, responses=ERROR_RESPONSES)
def update_lead(lead_id: str, body: LeadUpdateRequest, service=Depends(get_service)):
    """Edit a lead's fields; moving rep or lane adjusts the ledger."""
    changes = {k: v for k, v in body.__dict__.items() if v is not None}
    if not changes:
        raise validation_error("No changes given")
    try:
        lead = service.update_lead(lead_id, **changes)
    except LedgerWriteFailure as e:
        return accepted(LeadResponse(lead=lead_out(e.result)))
    except RotationError as e:
        raise http_error(e)
    except ValueError as e:
        raise validation_error(str(e))
    return LeadResponse(lead=lead_out(lead))


@router.delete("/{lead_id}", response_model=LeadResponse, responses=ERROR_RESPONSES)
def delete_lead(lead_id: str, service=Depends(get_service)):
    """Delete a lead. Leads with a replacement mark are refused (409)."""
    try:
        lead = service.delete_lead(lead_id)
    except LedgerWriteFailure as e:
        return accepted(LeadResponse(lead=lead_out(e.result)))
    except RotationError as e:
        raise http_error(e)
    return LeadResponse(lead=lead_out(lead))


@router.get("/{lead_id}/deletable", response_model=DeletionCheckResponse, responses=ERROR_RESPONSES)
def lead_deletable(lead_id: str, service=Depends(get_service)):
    try:
        check = service.can_delete_lead(lead_id)
    except RotationError as e:
        raise http_error(e)
    return DeletionCheckResponse(lead_id=lead_id, allowed=check.allowed, reason=check.reason)


@router.post("/{lead_id}/mark", response_model=MarkResponse, status_code=201, responses=ERROR_RESPONSES)
def mark_lead(lead_id: str, service=Depends(get_service)):
    """Mark a lead for replacement."""
    try:
        mark = service.mark_for_replacement(lead_id)
    except LedgerWriteFailure as e:
        return accepted(_mark_response(e.result))
    except RotationError as e:
        raise http_error(e)
    return _mark_response(mark)


@router.delete("/{lead_id}/mark", response_model=MarkResponse, responses=ERROR_RESPONSES)
def unmark_lead(lead_id: str, service=Depends(get_service)):
    """Remove an open replacement mark."""
    try:
        mark = service.remove_mark(lead_id)
    except LedgerWriteFailure as e:
        return accepted(_mark_response(e.result))
    except RotationError as e:
        raise http_error(e)
    response = _mark_response(mark)
    response.state = "none"
    return response
