"""Pydantic models for the rotation API request/response bodies."""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class LeadCreateRequest(BaseModel):
    account_number: str = Field(..., min_length=1)
    unit_count: int = Field(..., ge=0)
    property_types: List[str] = []
    day: int = Field(1, ge=1, le=31)
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = None
    url: Optional[str] = None
    comments: Optional[str] = None
    assigned_to: Optional[str] = Field(None, description="Rep id; omit to assign from rotation")
    replaces: Optional[str] = Field(None, description="Id of the marked lead this one replaces")
    operator: Optional[str] = Field(None, description="Operator name, to honour their own reservation")


class LeadUpdateRequest(BaseModel):
    account_number: Optional[str] = Field(None, min_length=1)
    rep_id: Optional[str] = None
    unit_count: Optional[int] = Field(None, ge=0)
    property_types: Optional[List[str]] = None
    day: Optional[int] = Field(None, ge=1, le=31)
    url: Optional[str] = None
    comments: Optional[str] = None


class LeadOut(BaseModel):
    id: str
    account_number: str
    rep_id: str
    unit_count: int
    property_types: List[str] = []
    day: int
    month: int
    year: int
    lane: str
    cushioned: bool = False
    url: Optional[str] = None
    comments: Optional[str] = None


class AssignmentResponse(BaseModel):
    success: bool = True
    lead: LeadOut
    hit_value: int = 0
    replaced_lead_id: Optional[str] = None
    ledger_pending: bool = False


class LeadResponse(BaseModel):
    success: bool = True
    lead: LeadOut
    ledger_pending: bool = False


class DeletionCheckResponse(BaseModel):
    lead_id: str
    allowed: bool
    reason: str = ""


class MarkResponse(BaseModel):
    success: bool = True
    lead_id: str
    rep_id: str
    lane: str
    state: str
    replaced_by_lead_id: Optional[str] = None
    ledger_pending: bool = False


class EntryCreateRequest(BaseModel):
    rep_id: str
    entry_type: str = Field(..., description="skip or ooo")
    day: int = Field(..., ge=1, le=31)
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = None
    rotation_target: str = "both"


class EntryOut(BaseModel):
    id: str
    rep_id: str
    entry_type: str
    rotation_target: str
    day: int
    month: int
    year: int


class EntryResponse(BaseModel):
    success: bool = True
    entry: EntryOut
    ledger_pending: bool = False


class RotationRowOut(BaseModel):
    position: int
    rep_id: str
    name: str
    hits: int
    is_next: bool


class RotationResponse(BaseModel):
    lane: str
    period: str
    next_rep_id: Optional[str] = None
    rows: List[RotationRowOut] = []


class HitTotalsResponse(BaseModel):
    lane: str
    period: str
    totals: Dict[str, int] = {}


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: str
