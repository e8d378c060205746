"""Audit trail of state-changing actions."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.ids import new_id

logger = logging.getLogger(__name__)


class AuditAction(Enum):
    """Actions written to the audit trail."""

    ADD_NL = "ADD_NL"
    CUSHION_LEAD = "CUSHION_LEAD"
    DELETE_NL = "DELETE_NL"
    UPDATE_LEAD = "UPDATE_LEAD"
    NL_TO_MFR = "NL_TO_MFR"
    MFR_TO_NL = "MFR_TO_NL"
    MFR_TO_LRL = "MFR_TO_LRL"
    DELETE_LRL = "DELETE_LRL"
    SKIP = "SKIP"
    OOO = "OOO"
    DELETE_SKIP = "DELETE_SKIP"
    DELETE_OOO = "DELETE_OOO"
    CREATE_REP = "CREATE_REP"
    UPDATE_REP = "UPDATE_REP"
    REORDER_REP = "REORDER_REP"
    CUSHION_SET = "CUSHION_SET"
    RESERVE = "RESERVE"
    RELEASE = "RELEASE"


@dataclass
class AuditEntry:
    action: AuditAction
    id: str = field(default_factory=new_id)
    rep_id: Optional[str] = None
    lead_id: Optional[str] = None
    entry_id: Optional[str] = None
    account_number: Optional[str] = None
    lane: Optional[str] = None
    hit_value_change: int = 0
    day: Optional[int] = None
    month: Optional[int] = None
    year: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)


class AuditRecorder:
    """Keeps audit entries in memory. Subclasses persist them elsewhere.

    A failed write is logged and dropped; the action it describes has
    already happened and stays.
    """

    def __init__(self):
        self.entries: List[AuditEntry] = []

    def record(self, action: AuditAction, **fields) -> Optional[AuditEntry]:
        lane = fields.get("lane")
        if lane is not None and not isinstance(lane, str):
            fields["lane"] = lane.value
        entry = AuditEntry(action=action, **fields)
        try:
            self._write(entry)
        except Exception:
            logger.exception(f"Failed to record audit action {action.value}")
            return None
        return entry

    def _write(self, entry: AuditEntry):
        self.entries.append(entry)

    def recent(self, limit: int = 50, rep_id: Optional[str] = None) -> List[AuditEntry]:
        entries = [e for e in self.entries if rep_id is None or e.rep_id == rep_id]
        return list(reversed(entries))[:limit]


class DatabaseAuditRecorder(AuditRecorder):
    """Writes audit entries to the rotation database."""

    def __init__(self, db):
        super().__init__()
        self.db = db

    def _write(self, entry: AuditEntry):
        self.db.add_audit_action(entry)

    def recent(self, limit: int = 50, rep_id: Optional[str] = None) -> List[AuditEntry]:
        return self.db.get_audit_actions(limit=limit, rep_id=rep_id)
