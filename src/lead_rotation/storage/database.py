"""SQLite store for reps, leads, entries, cushions, marks and the hit ledger."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Generator, Tuple

from .migrations import run_migrations
from .models import (
    SalesRep,
    RepStatus,
    Lead,
    NonLeadEntry,
    Reservation,
    ReservationStatus,
)
from ..audit.recorder import AuditAction, AuditEntry
from ..core.config import settings
from ..core.errors import ConcurrentModification, DuplicateEntry, ReservationConflict
from ..core.lanes import EntryType, HitKind, Lane, Period, RotationTarget
from ..ledger.cushion import CushionState
from ..ledger.hits import HitEvent
from ..replacement.marks import ReplacementMark

logger = logging.getLogger(__name__)


def _dt(value) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _types(value) -> List[str]:
    return json.loads(value) if value else []


class RotationDatabase:
    """SQLite database backing the rotation service.

    Read-modify-write sections open with ``BEGIN IMMEDIATE`` so two writers
    never interleave on the same rows. Cushions and marks carry a version
    column and are only updated when the caller's version still matches.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Open (and migrate) the database."""
        if db_path is None:
            db_path = Path(settings.db_path)

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    @contextmanager
    def _get_connection(self, immediate: bool = False) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Bring the schema up to date."""
        applied = run_migrations(str(self.db_path))
        if applied:
            logger.info(f"Applied {applied} migration(s) to {self.db_path}")

    # ------------------------------------------------------------------
    # Sales reps
    # ------------------------------------------------------------------

    def _row_to_rep(self, row: sqlite3.Row) -> SalesRep:
        return SalesRep(
            id=row["id"],
            name=row["name"],
            sub1k_order=row["sub1k_order"] or 0,
            over1k_order=row["over1k_order"],
            can_handle_over1k=bool(row["can_handle_over1k"]),
            max_units=row["max_units"],
            property_types=_types(row["property_types"]),
            status=RepStatus(row["status"]),
            created_at=_dt(row["created_at"]) or datetime.now(),
            version=row["version"],
        )

    def add_rep(self, rep: SalesRep) -> SalesRep:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO sales_reps (
                    id, name, sub1k_order, over1k_order, can_handle_over1k,
                    max_units, property_types, status, created_at, version
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                rep.id, rep.name, rep.sub1k_order, rep.over1k_order,
                int(rep.can_handle_over1k), rep.max_units,
                json.dumps(rep.property_types), rep.status.value,
                rep.created_at.isoformat(), rep.version,
            ))
        return rep

    def get_rep(self, rep_id: str) -> Optional[SalesRep]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM sales_reps WHERE id = ?", (rep_id,)).fetchone()
        return self._row_to_rep(row) if row else None

    def get_reps(self, include_inactive: bool = True) -> List[SalesRep]:
        query = "SELECT * FROM sales_reps"
        if not include_inactive:
            query += " WHERE status = 'active'"
        query += " ORDER BY sub1k_order, name"
        with self._get_connection() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_rep(row) for row in rows]

    def update_rep(self, rep: SalesRep) -> SalesRep:
        """Write a rep back if nobody else changed it since it was read."""
        with self._get_connection() as conn:
            cursor = conn.execute("""
                UPDATE sales_reps SET
                    name = ?, sub1k_order = ?, over1k_order = ?,
                    can_handle_over1k = ?, max_units = ?, property_types = ?,
                    status = ?, version = version + 1
                WHERE id = ? AND version = ?
            """, (
                rep.name, rep.sub1k_order, rep.over1k_order,
                int(rep.can_handle_over1k), rep.max_units,
                json.dumps(rep.property_types), rep.status.value,
                rep.id, rep.version,
            ))
            if cursor.rowcount != 1:
                raise ConcurrentModification(f"rep:{rep.id}", rep.version)
        return replace(rep, version=rep.version + 1)

    # ------------------------------------------------------------------
    # Cushions
    # ------------------------------------------------------------------

    def get_cushion(self, rep_id: str, lane: Lane) -> CushionState:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM cushions WHERE rep_id = ? AND lane = ?",
                (rep_id, lane.value),
            ).fetchone()
        if not row:
            return CushionState()
        return CushionState(
            current=row["current"],
            occurrences=row["occurrences"],
            original=row["original"],
            version=row["version"],
        )

    def compare_and_set_cushion(self, rep_id: str, lane: Lane, expected_version: int,
                                state: CushionState) -> bool:
        """Store ``state`` only if the row is still at ``expected_version``."""
        with self._get_connection(immediate=True) as conn:
            row = conn.execute(
                "SELECT version FROM cushions WHERE rep_id = ? AND lane = ?",
                (rep_id, lane.value),
            ).fetchone()
            current_version = row["version"] if row else 0
            if current_version != expected_version:
                return False

            if row:
                conn.execute("""
                    UPDATE cushions SET current = ?, occurrences = ?, original = ?,
                        version = version + 1, updated_at = ?
                    WHERE rep_id = ? AND lane = ? AND version = ?
                """, (
                    state.current, state.occurrences, state.original,
                    datetime.now().isoformat(), rep_id, lane.value, expected_version,
                ))
            else:
                conn.execute("""
                    INSERT INTO cushions (rep_id, lane, current, occurrences, original, version, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    rep_id, lane.value, state.current, state.occurrences, state.original,
                    expected_version + 1, datetime.now().isoformat(),
                ))
        return True

    def get_cushions(self) -> List[Tuple[str, Lane, CushionState]]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM cushions ORDER BY rep_id, lane").fetchall()
        return [
            (row["rep_id"], Lane(row["lane"]), CushionState(
                current=row["current"],
                occurrences=row["occurrences"],
                original=row["original"],
                version=row["version"],
            ))
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    def _row_to_lead(self, row: sqlite3.Row) -> Lead:
        return Lead(
            id=row["id"],
            account_number=row["account_number"],
            rep_id=row["rep_id"],
            unit_count=row["unit_count"] or 0,
            property_types=_types(row["property_types"]),
            day=row["day"],
            month=row["month"],
            year=row["year"],
            url=row["url"],
            comments=row["comments"],
            cushioned=bool(row["cushioned"]),
            created_at=_dt(row["created_at"]) or datetime.now(),
            updated_at=_dt(row["updated_at"]) or datetime.now(),
        )

    def add_lead(self, lead: Lead) -> Lead:
        """Insert a lead; the account number must be new for its month."""
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO leads (
                        id, account_number, rep_id, unit_count, property_types,
                        day, month, year, url, comments, cushioned, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    lead.id, lead.account_number, lead.rep_id, lead.unit_count,
                    json.dumps(lead.property_types), lead.day, lead.month, lead.year,
                    lead.url, lead.comments, int(lead.cushioned),
                    lead.created_at.isoformat(), lead.updated_at.isoformat(),
                ))
        except sqlite3.IntegrityError as e:
            raise DuplicateEntry(
                f"Account {lead.account_number} already has a lead in {lead.period}",
                {"account_number": lead.account_number, "period": lead.period.key},
            ) from e
        return lead

    def get_lead(self, lead_id: str) -> Optional[Lead]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM leads WHERE id = ?", (lead_id,)).fetchone()
        return self._row_to_lead(row) if row else None

    def find_lead_by_account(self, account_number: str, period: Period) -> Optional[Lead]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM leads WHERE account_number = ? AND month = ? AND year = ?",
                (account_number.strip(), period.month, period.year),
            ).fetchone()
        return self._row_to_lead(row) if row else None

    def get_leads(self, period: Optional[Period] = None, rep_id: Optional[str] = None) -> List[Lead]:
        query = "SELECT * FROM leads WHERE 1=1"
        params = []
        if period is not None:
            query += " AND month = ? AND year = ?"
            params.extend([period.month, period.year])
        if rep_id:
            query += " AND rep_id = ?"
            params.append(rep_id)
        query += " ORDER BY year, month, day, created_at"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_lead(row) for row in rows]

    def update_lead(self, lead: Lead) -> Lead:
        lead.updated_at = datetime.now()
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    UPDATE leads SET
                        account_number = ?, rep_id = ?, unit_count = ?, property_types = ?,
                        day = ?, url = ?, comments = ?, cushioned = ?, updated_at = ?
                    WHERE id = ?
                """, (
                    lead.account_number, lead.rep_id, lead.unit_count,
                    json.dumps(lead.property_types), lead.day, lead.url, lead.comments,
                    int(lead.cushioned), lead.updated_at.isoformat(), lead.id,
                ))
        except sqlite3.IntegrityError as e:
            raise DuplicateEntry(
                f"Account {lead.account_number} already has a lead in {lead.period}",
                {"account_number": lead.account_number, "period": lead.period.key},
            ) from e
        return lead

    def delete_lead(self, lead_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM leads WHERE id = ?", (lead_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Non-lead entries (skip / OOO)
    # ------------------------------------------------------------------

    def _row_to_entry(self, row: sqlite3.Row) -> NonLeadEntry:
        return NonLeadEntry(
            id=row["id"],
            rep_id=row["rep_id"],
            entry_type=EntryType(row["entry_type"]),
            rotation_target=RotationTarget(row["rotation_target"]),
            day=row["day"],
            month=row["month"],
            year=row["year"],
            created_at=_dt(row["created_at"]) or datetime.now(),
        )

    def add_entry(self, entry: NonLeadEntry) -> NonLeadEntry:
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO non_lead_entries (
                        id, rep_id, entry_type, rotation_target, day, month, year, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    entry.id, entry.rep_id, entry.entry_type.value, entry.rotation_target.value,
                    entry.day, entry.month, entry.year, entry.created_at.isoformat(),
                ))
        except sqlite3.IntegrityError as e:
            raise DuplicateEntry(
                f"Rep {entry.rep_id} already has a {entry.entry_type.value} entry "
                f"on {entry.period}-{entry.day:02d}",
                {"rep_id": entry.rep_id, "entry_type": entry.entry_type.value, "day": entry.day},
            ) from e
        return entry

    def get_entry(self, entry_id: str) -> Optional[NonLeadEntry]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM non_lead_entries WHERE id = ?", (entry_id,)).fetchone()
        return self._row_to_entry(row) if row else None

    def get_entries(self, period: Optional[Period] = None, rep_id: Optional[str] = None) -> List[NonLeadEntry]:
        query = "SELECT * FROM non_lead_entries WHERE 1=1"
        params = []
        if period is not None:
            query += " AND month = ? AND year = ?"
            params.extend([period.month, period.year])
        if rep_id:
            query += " AND rep_id = ?"
            params.append(rep_id)
        query += " ORDER BY year, month, day, created_at"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def delete_entry(self, entry_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM non_lead_entries WHERE id = ?", (entry_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Hit ledger
    # ------------------------------------------------------------------

    def _row_to_hit_event(self, row: sqlite3.Row) -> HitEvent:
        return HitEvent(
            id=row["id"],
            rep_id=row["rep_id"],
            lane=Lane(row["lane"]),
            period=Period(row["month"], row["year"]),
            kind=HitKind(row["kind"]),
            value=row["value"],
            lead_id=row["lead_id"],
            entry_id=row["entry_id"],
            created_at=_dt(row["created_at"]) or datetime.now(),
        )

    def add_hit_event(self, event: HitEvent):
        # Appends are idempotent by event id so a re-flushed event lands once
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR IGNORE INTO hit_events (
                    id, rep_id, lane, month, year, kind, value, lead_id, entry_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                event.id, event.rep_id, event.lane.value, event.period.month, event.period.year,
                event.kind.value, event.value, event.lead_id, event.entry_id,
                event.created_at.isoformat(),
            ))

    def get_hit_events(
        self,
        rep_id: Optional[str] = None,
        lane: Optional[Lane] = None,
        period: Optional[Period] = None,
    ) -> List[HitEvent]:
        query = "SELECT * FROM hit_events WHERE 1=1"
        params = []
        if rep_id:
            query += " AND rep_id = ?"
            params.append(rep_id)
        if lane is not None:
            query += " AND lane = ?"
            params.append(lane.value)
        if period is not None:
            query += " AND month = ? AND year = ?"
            params.extend([period.month, period.year])
        query += " ORDER BY created_at, rowid"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_hit_event(row) for row in rows]

    # ------------------------------------------------------------------
    # Pending hit events (ledger appends waiting for a retry)
    # ------------------------------------------------------------------

    def add_pending_hit(self, event: HitEvent, error: Optional[str] = None):
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO pending_hit_events (
                    id, rep_id, lane, month, year, kind, value, lead_id, entry_id,
                    created_at, queued_at, last_error
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                event.id, event.rep_id, event.lane.value, event.period.month, event.period.year,
                event.kind.value, event.value, event.lead_id, event.entry_id,
                event.created_at.isoformat(), datetime.now().isoformat(), error,
            ))

    def get_pending_hits(self) -> List[HitEvent]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM pending_hit_events ORDER BY queued_at, rowid"
            ).fetchall()
        return [self._row_to_hit_event(row) for row in rows]

    def delete_pending_hit(self, event_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM pending_hit_events WHERE id = ?", (event_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Replacement marks
    # ------------------------------------------------------------------

    def _row_to_mark(self, row: sqlite3.Row) -> ReplacementMark:
        return ReplacementMark(
            lead_id=row["lead_id"],
            rep_id=row["rep_id"],
            lane=Lane(row["lane"]),
            account_number=row["account_number"] or "",
            replaced_by_lead_id=row["replaced_by_lead_id"],
            was_cushioned=bool(row["was_cushioned"]),
            marked_at=_dt(row["marked_at"]) or datetime.now(),
            replaced_at=_dt(row["replaced_at"]),
            version=row["version"],
        )

    def add_mark(self, mark: ReplacementMark) -> ReplacementMark:
        """Insert a new open mark; losing a race to another marker is a conflict."""
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO replacement_marks (
                        lead_id, rep_id, lane, account_number, replaced_by_lead_id,
                        was_cushioned, marked_at, replaced_at, version
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    mark.lead_id, mark.rep_id, mark.lane.value, mark.account_number,
                    mark.replaced_by_lead_id, int(mark.was_cushioned),
                    mark.marked_at.isoformat(),
                    mark.replaced_at.isoformat() if mark.replaced_at else None,
                    mark.version,
                ))
        except sqlite3.IntegrityError as e:
            raise ConcurrentModification(f"mark:{mark.lead_id}") from e
        return mark

    def get_mark(self, lead_id: str) -> Optional[ReplacementMark]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM replacement_marks WHERE lead_id = ?", (lead_id,)).fetchone()
        return self._row_to_mark(row) if row else None

    def get_mark_by_replacement(self, replacement_lead_id: str) -> Optional[ReplacementMark]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM replacement_marks WHERE replaced_by_lead_id = ?",
                (replacement_lead_id,),
            ).fetchone()
        return self._row_to_mark(row) if row else None

    def get_marks(self) -> List[ReplacementMark]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM replacement_marks ORDER BY marked_at").fetchall()
        return [self._row_to_mark(row) for row in rows]

    def compare_and_set_mark(self, mark: ReplacementMark, expected_version: int) -> bool:
        """Write the mutable mark fields if the stored version still matches."""
        with self._get_connection() as conn:
            cursor = conn.execute("""
                UPDATE replacement_marks SET
                    replaced_by_lead_id = ?, replaced_at = ?, version = version + 1
                WHERE lead_id = ? AND version = ?
            """, (
                mark.replaced_by_lead_id,
                mark.replaced_at.isoformat() if mark.replaced_at else None,
                mark.lead_id, expected_version,
            ))
            if cursor.rowcount != 1:
                return False
        mark.version = expected_version + 1
        return True

    def delete_mark(self, lead_id: str, expected_version: int) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM replacement_marks WHERE lead_id = ? AND version = ?",
                (lead_id, expected_version),
            )
            return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def _row_to_reservation(self, row: sqlite3.Row) -> Reservation:
        return Reservation(
            id=row["id"],
            rep_id=row["rep_id"],
            lane=Lane(row["lane"]),
            reserved_by=row["reserved_by"],
            unit_count=row["unit_count"],
            property_types=_types(row["property_types"]),
            status=ReservationStatus(row["status"]),
            created_at=_dt(row["created_at"]) or datetime.now(),
            expires_at=_dt(row["expires_at"]),
        )

    def add_reservation(self, reservation: Reservation, now: Optional[datetime] = None) -> Reservation:
        """Hold a rep. An operator re-reserving their own rep extends the hold."""
        now = now or datetime.now()
        with self._get_connection(immediate=True) as conn:
            row = conn.execute("""
                SELECT * FROM reservations
                WHERE rep_id = ? AND status = 'active' AND expires_at > ?
                ORDER BY created_at DESC LIMIT 1
            """, (reservation.rep_id, now.isoformat())).fetchone()

            if row:
                existing = self._row_to_reservation(row)
                if existing.reserved_by != reservation.reserved_by:
                    raise ReservationConflict(
                        f"Rep {reservation.rep_id} is reserved by {existing.reserved_by} "
                        f"until {existing.expires_at:%H:%M}",
                        {"rep_id": reservation.rep_id, "reserved_by": existing.reserved_by},
                    )
                conn.execute(
                    "UPDATE reservations SET expires_at = ?, lane = ? WHERE id = ?",
                    (reservation.expires_at.isoformat(), reservation.lane.value, existing.id),
                )
                return replace(existing, expires_at=reservation.expires_at, lane=reservation.lane)

            conn.execute("""
                INSERT INTO reservations (
                    id, rep_id, lane, reserved_by, unit_count, property_types,
                    status, created_at, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                reservation.id, reservation.rep_id, reservation.lane.value,
                reservation.reserved_by, reservation.unit_count,
                json.dumps(reservation.property_types), reservation.status.value,
                reservation.created_at.isoformat(), reservation.expires_at.isoformat(),
            ))
        return reservation

    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM reservations WHERE id = ?", (reservation_id,)).fetchone()
        return self._row_to_reservation(row) if row else None

    def get_active_reservations(self, now: Optional[datetime] = None) -> List[Reservation]:
        now = now or datetime.now()
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM reservations
                WHERE status = 'active' AND expires_at > ?
                ORDER BY created_at
            """, (now.isoformat(),)).fetchall()
        return [self._row_to_reservation(row) for row in rows]

    def release_reservation(self, reservation_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE reservations SET status = 'released' WHERE id = ? AND status = 'active'",
                (reservation_id,),
            )
            return cursor.rowcount > 0

    def release_reservations_for(self, rep_id: str, lane: Lane) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE reservations SET status = 'released' "
                "WHERE rep_id = ? AND lane = ? AND status = 'active'",
                (rep_id, lane.value),
            )
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    def add_audit_action(self, entry: AuditEntry):
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO audit_actions (
                    id, action, rep_id, lead_id, entry_id, account_number, lane,
                    hit_value_change, day, month, year, details_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                entry.id, entry.action.value, entry.rep_id, entry.lead_id, entry.entry_id,
                entry.account_number, entry.lane, entry.hit_value_change,
                entry.day, entry.month, entry.year,
                json.dumps(entry.details) if entry.details else None,
                entry.created_at.isoformat(),
            ))

    def get_audit_actions(self, limit: int = 50, rep_id: Optional[str] = None) -> List[AuditEntry]:
        query = "SELECT * FROM audit_actions"
        params = []
        if rep_id:
            query += " WHERE rep_id = ?"
            params.append(rep_id)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            AuditEntry(
                id=row["id"],
                action=AuditAction(row["action"]),
                rep_id=row["rep_id"],
                lead_id=row["lead_id"],
                entry_id=row["entry_id"],
                account_number=row["account_number"],
                lane=row["lane"],
                hit_value_change=row["hit_value_change"],
                day=row["day"],
                month=row["month"],
                year=row["year"],
                details=json.loads(row["details_json"]) if row["details_json"] else {},
                created_at=_dt(row["created_at"]) or datetime.now(),
            )
            for row in rows
        ]
