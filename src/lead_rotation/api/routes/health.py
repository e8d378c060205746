"""Health check routes."""

from fastapi import APIRouter, Depends

from ... import __version__
from ..dependencies import get_service

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "healthy", "service": "lead-rotation-api", "version": __version__}


@router.get("/ready")
def ready(service=Depends(get_service)):
    """Readiness check - verifies the database is reachable."""
    try:
        service.list_reps()
        return {"status": "ready"}
    except Exception as e:
        return {"status": "not_ready", "detail": str(e)}
