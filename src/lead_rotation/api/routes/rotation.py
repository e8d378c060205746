"""Rotation and hit-total routes."""

from typing import Optional
from fastapi import APIRouter, Depends

from ...core.errors import RotationError
from ...core.lanes import Lane, Period
from ..dependencies import get_service
from ..errors import ERROR_RESPONSES, http_error, validation_error
from ..schemas import HitTotalsResponse, RotationResponse, RotationRowOut

router = APIRouter(prefix="/v1", tags=["rotation"])


def _lane_and_period(lane: str, month: Optional[int], year: Optional[int]):
    try:
        parsed = Lane.parse(lane)
        current = Period.current()
        period = Period(month or current.month, year or current.year)
    except ValueError as e:
        raise validation_error(str(e))
    return parsed, period


@router.get("/rotation/{lane}", response_model=RotationResponse, responses=ERROR_RESPONSES)
def get_rotation(lane: str, month: Optional[int] = None, year: Optional[int] = None,
                 service=Depends(get_service)):
    """Reps in lane order with their hit counts and who is next."""
    lane, period = _lane_and_period(lane, month, year)
    try:
        rows = service.rotation(lane, period)
        names = {rep.id: rep.name for rep in service.list_reps()}
    except RotationError as e:
        raise http_error(e)

    next_rep = next((row.rep_id for row in rows if row.is_next), None)
    return RotationResponse(
        lane=lane.value,
        period=period.key,
        next_rep_id=next_rep,
        rows=[
            RotationRowOut(
                position=row.position,
                rep_id=row.rep_id,
                name=names.get(row.rep_id, row.rep_id),
                hits=row.hits,
                is_next=row.is_next,
            )
            for row in rows
        ],
    )


@router.get("/hits/{lane}", response_model=HitTotalsResponse, responses=ERROR_RESPONSES)
def get_hits(lane: str, month: Optional[int] = None, year: Optional[int] = None,
             service=Depends(get_service)):
    """Ledger net hits per rep for a lane and month."""
    lane, period = _lane_and_period(lane, month, year)
    return HitTotalsResponse(
        lane=lane.value,
        period=period.key,
        totals=service.hit_totals(lane, period),
    )
