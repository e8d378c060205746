"""Mapping from rotation errors to HTTP responses."""

import logging
from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from ..core.errors import (
    ConcurrentModification,
    DuplicateEntry,
    IneligibleAssignment,
    InvalidTransition,
    NotFound,
    ReservationConflict,
    RotationError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    NotFound: 404,
    InvalidTransition: 409,
    DuplicateEntry: 409,
    ConcurrentModification: 409,
    ReservationConflict: 409,
    IneligibleAssignment: 422,
}

ERROR_RESPONSES = {
    400: {"description": "Validation error"},
    404: {"description": "Not found"},
    409: {"description": "Conflict with the current state"},
    422: {"description": "No eligible rep"},
}


def http_error(exc: RotationError) -> HTTPException:
    status = 400
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            status = STATUS_CODES[cls]
            break
    return HTTPException(
        status_code=status,
        detail={"success": False, "error": exc.kind, "detail": exc.message},
    )


def validation_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"success": False, "error": "validation_error", "detail": message},
    )


def accepted(response_model) -> JSONResponse:
    """202 for a primary write that stands while its ledger event is queued."""
    logger.warning("Returning 202: ledger append queued")
    body = jsonable_encoder(response_model)
    body["ledger_pending"] = True
    return JSONResponse(status_code=202, content=body)
