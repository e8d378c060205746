"""Skip and out-of-office entry routes."""

from fastapi import APIRouter, Depends

from ...core.errors import LedgerWriteFailure, RotationError
from ...core.lanes import EntryType, Period, RotationTarget
from ..dependencies import entry_out, get_service
from ..errors import ERROR_RESPONSES, accepted, http_error, validation_error
from ..schemas import EntryCreateRequest, EntryResponse

router = APIRouter(prefix="/v1/entries", tags=["entries"])


@router.post("", response_model=EntryResponse, status_code=201, responses=ERROR_RESPONSES)
def create_entry(body: EntryCreateRequest, service=Depends(get_service)):
    """Record a skip (one hit per target lane) or an OOO day (no hit)."""
    try:
        entry_type = EntryType(body.entry_type.lower())
        target = RotationTarget.parse(body.rotation_target)
    except ValueError as e:
        raise validation_error(str(e))
    if entry_type == EntryType.LEAD:
        raise validation_error("Leads are created through /v1/leads")

    current = Period.current()
    period = Period(body.month or current.month, body.year or current.year)
    add = service.add_skip if entry_type == EntryType.SKIP else service.add_ooo
    try:
        entry = add(body.rep_id, body.day, period, target)
    except LedgerWriteFailure as e:
        return accepted(EntryResponse(entry=entry_out(e.result)))
    except RotationError as e:
        raise http_error(e)
    except ValueError as e:
        raise validation_error(str(e))
    return EntryResponse(entry=entry_out(entry))


@router.delete("/{entry_id}", response_model=EntryResponse, responses=ERROR_RESPONSES)
def delete_entry(entry_id: str, service=Depends(get_service)):
    try:
        entry = service.delete_entry(entry_id)
    except LedgerWriteFailure as e:
        return accepted(EntryResponse(entry=entry_out(e.result)))
    except RotationError as e:
        raise http_error(e)
    return EntryResponse(entry=entry_out(entry))
