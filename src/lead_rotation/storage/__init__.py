"""Storage layer for the rotation database."""

from .models import SalesRep, RepStatus, Lead, LeadDraft, NonLeadEntry, Reservation, ReservationStatus
from .database import RotationDatabase

__all__ = [
    "RotationDatabase",
    "SalesRep",
    "RepStatus",
    "Lead",
    "LeadDraft",
    "NonLeadEntry",
    "Reservation",
    "ReservationStatus",
]
