"""Rotation service: one method per operator action.

Each action runs in this order: validate, pick a rep, consult the cushion,
write the primary record, move the replacement mark, record the audit entry,
notify listeners and book the hit events. The primary write and the ledger
append are separate commits. A ledger append that keeps failing is queued in
the ``pending_hit_events`` table for ``flush_pending_hits`` (from this or any
later process) and reported with ``LedgerWriteFailure``; the primary write stands.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .audit.recorder import AuditAction, AuditRecorder, DatabaseAuditRecorder
from .core.config import RotationConfig
from .core.eligibility import eligible_reps, is_eligible
from .core.errors import (
    ConcurrentModification,
    DuplicateEntry,
    IneligibleAssignment,
    InvalidTransition,
    LedgerWriteFailure,
    NotFound,
)
from .core.lanes import EntryType, HitKind, Lane, Period, RotationTarget, all_lanes
from .core.rotation import (
    RotationRow,
    base_order,
    calendar_entries,
    hit_counts,
    next_in_rotation,
    pick_next,
    rotation_view,
)
from .ledger.cushion import CushionState, CushionTracker
from .ledger.hits import HitEvent, HitLedger
from .replacement.marks import DeletionCheck, MarkState, ReplacementBook, ReplacementMark
from .storage.database import RotationDatabase
from .storage.models import Lead, LeadDraft, NonLeadEntry, RepStatus, Reservation, SalesRep

logger = logging.getLogger(__name__)

LEAD_FIELDS = ("account_number", "rep_id", "unit_count", "property_types", "day", "url", "comments")
REP_FIELDS = ("name", "can_handle_over1k", "max_units", "property_types", "sub1k_order", "over1k_order")


class ChangeNotifier:
    """Tells listeners that rotation-relevant data changed."""

    def __init__(self):
        self._handlers: List[Callable[[str, Dict], None]] = []

    def subscribe(self, handler: Callable[[str, Dict], None]) -> Callable[[], None]:
        """Register a handler; returns a function that unsubscribes it."""
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def notify(self, change: str, **payload):
        for handler in list(self._handlers):
            try:
                handler(change, payload)
            except Exception as e:
                logger.error(f"Change handler {getattr(handler, '__name__', handler)} failed: {e}")


@dataclass
class AssignmentResult:
    lead: Lead
    events: List[HitEvent] = field(default_factory=list)
    mark: Optional[ReplacementMark] = None

    @property
    def cushioned(self) -> bool:
        return self.lead.cushioned


@dataclass
class Drift:
    """A (rep, lane) whose ledger disagrees with the recount."""

    rep_id: str
    lane: Lane
    ledger: int
    recount: int

    @property
    def difference(self) -> int:
        return self.ledger - self.recount


class RotationService:
    """Operator actions over the rotation database."""

    def __init__(
        self,
        db: Optional[RotationDatabase] = None,
        config: Optional[RotationConfig] = None,
        audit: Optional[AuditRecorder] = None,
        notifier: Optional[ChangeNotifier] = None,
        ledger: Optional[HitLedger] = None,
    ):
        self.db = db or RotationDatabase()
        self.config = config or RotationConfig()
        self.ledger = ledger or HitLedger(self.db)
        self.cushions = CushionTracker(
            self.db,
            retry_attempts=self.config.cas_retry_attempts,
            default_value=self.config.default_cushion,
        )
        self.audit = audit or DatabaseAuditRecorder(self.db)
        self.notifier = notifier or ChangeNotifier()
        # Queued events the database could not take either
        self._unsaved_hits: List[HitEvent] = []
        self._lock = threading.RLock()

    @property
    def pending_hits(self) -> List[HitEvent]:
        """Hit events waiting for a ledger retry, oldest first."""
        return self.db.get_pending_hits() + list(self._unsaved_hits)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_rep(self, rep_id: str) -> SalesRep:
        rep = self.db.get_rep(rep_id)
        if rep is None:
            raise NotFound("Sales rep", rep_id)
        return rep

    def _require_lead(self, lead_id: str) -> Lead:
        lead = self.db.get_lead(lead_id)
        if lead is None:
            raise NotFound("Lead", lead_id)
        return lead

    def _book_for(self, lead_id: str) -> ReplacementBook:
        """A book holding the marks that concern ``lead_id``."""
        marks = {}
        own = self.db.get_mark(lead_id)
        if own:
            marks[own.lead_id] = own
        original = self.db.get_mark_by_replacement(lead_id)
        if original:
            marks[original.lead_id] = original
        return ReplacementBook(marks)

    def _with_cas_retry(self, action: Callable, key: str):
        attempts = self.config.cas_retry_attempts + 1
        for attempt in range(attempts):
            try:
                return action()
            except ConcurrentModification:
                if attempt + 1 >= attempts:
                    raise
                logger.warning(f"Concurrent update on {key}, retrying")

    def _save_mark(self, mark: ReplacementMark, expected_version: int):
        if not self.db.compare_and_set_mark(mark, expected_version):
            raise ConcurrentModification(f"mark:{mark.lead_id}", expected_version)

    def _commit_hits(self, events: List[HitEvent], result=None):
        """Append events with retries; queue and report the ones that fail."""
        failure = None
        for event in events:
            error = self._append_with_retry(event)
            if error is not None:
                self._queue_pending(event, error)
                if failure is None:
                    failure = LedgerWriteFailure(event, cause=error, result=result)
        if failure is not None:
            raise failure

    def _append_with_retry(self, event: HitEvent) -> Optional[Exception]:
        attempts = max(self.config.ledger_retry_attempts, 1)
        last_error = None
        for attempt in range(attempts):
            try:
                self.ledger.record(event)
                return None
            except Exception as e:
                last_error = e
                logger.warning(f"Ledger append failed (attempt {attempt + 1}/{attempts}): {e}")
        return last_error

    def _queue_pending(self, event: HitEvent, error: Exception):
        """Persist a failed event so any later process can flush it."""
        try:
            self.db.add_pending_hit(event, str(error))
        except sqlite3.Error as e:
            logger.error(f"Could not persist queued hit event {event.id}, holding it in memory: {e}")
            self._unsaved_hits.append(event)
        logger.error(f"Queued hit event {event.id} for {event.rep_id} after ledger failure: {error}")

    def flush_pending_hits(self) -> int:
        """Retry queued ledger appends. Returns how many were written."""
        with self._lock:
            queued = self.db.get_pending_hits()
            unsaved, self._unsaved_hits = self._unsaved_hits, []
            written = 0
            for event in queued + unsaved:
                error = self._append_with_retry(event)
                if error is None:
                    self.db.delete_pending_hit(event.id)
                    written += 1
                else:
                    self._queue_pending(event, error)
            if written:
                logger.info(f"Flushed {written} pending hit event(s), {len(self.pending_hits)} still queued")
            return written

    # ------------------------------------------------------------------
    # Reps
    # ------------------------------------------------------------------

    def add_rep(
        self,
        name: str,
        can_handle_over1k: bool = False,
        max_units: Optional[int] = None,
        property_types: Optional[List[str]] = None,
        sub1k_order: Optional[int] = None,
        over1k_order: Optional[int] = None,
    ) -> SalesRep:
        """Add a rep at the end of each roster they belong to."""
        with self._lock:
            reps = self.db.get_reps()
            if sub1k_order is None:
                sub1k_order = max((r.sub1k_order for r in reps), default=0) + 1
            if can_handle_over1k and over1k_order is None:
                over1k_order = max((r.over1k_order or 0 for r in reps), default=0) + 1

            rep = self.db.add_rep(SalesRep(
                name=name,
                sub1k_order=sub1k_order,
                over1k_order=over1k_order if can_handle_over1k else None,
                can_handle_over1k=can_handle_over1k,
                max_units=max_units,
                property_types=list(property_types or []),
            ))
            logger.info(f"Created rep {rep.name} ({rep.id})")
            self.audit.record(AuditAction.CREATE_REP, rep_id=rep.id, details={"name": name})
            self.notifier.notify("rep_created", rep_id=rep.id)
            return rep

    def update_rep(self, rep_id: str, **changes) -> SalesRep:
        unknown = set(changes) - set(REP_FIELDS) - {"status"}
        if unknown:
            raise ValueError(f"Cannot update rep fields: {', '.join(sorted(unknown))}")

        def attempt():
            rep = self._require_rep(rep_id)
            for key, value in changes.items():
                if key == "status":
                    value = RepStatus(value)
                setattr(rep, key, value)
            if not rep.can_handle_over1k:
                rep.over1k_order = None
            return self.db.update_rep(rep)

        with self._lock:
            rep = self._with_cas_retry(attempt, f"rep:{rep_id}")
            logger.info(f"Updated rep {rep_id}: {', '.join(changes)}")
            self.audit.record(AuditAction.UPDATE_REP, rep_id=rep_id, details={
                k: (v.value if isinstance(v, RepStatus) else v) for k, v in changes.items()
            })
            self.notifier.notify("rep_updated", rep_id=rep_id)
            return rep

    def deactivate_rep(self, rep_id: str) -> SalesRep:
        return self.update_rep(rep_id, status=RepStatus.INACTIVE)

    def activate_rep(self, rep_id: str) -> SalesRep:
        return self.update_rep(rep_id, status=RepStatus.ACTIVE)

    def move_rep(self, rep_id: str, lane: Lane, position: int) -> List[str]:
        """Move a rep to a 1-based position in a lane roster and renumber it."""
        lane = Lane.parse(lane)
        with self._lock:
            reps = {r.id: r for r in self.db.get_reps()}
            if rep_id not in reps:
                raise NotFound("Sales rep", rep_id)
            roster = base_order(reps.values(), lane)
            if rep_id not in roster:
                raise ValueError(f"Rep {rep_id} is not on the {lane.value} roster")

            roster.remove(rep_id)
            index = min(max(position - 1, 0), len(roster))
            roster.insert(index, rep_id)

            for order, member_id in enumerate(roster, start=1):
                rep = reps[member_id]
                if rep.order_for(lane) == order:
                    continue
                if lane.is_over1k:
                    rep.over1k_order = order
                else:
                    rep.sub1k_order = order
                self.db.update_rep(rep)

            logger.info(f"Moved rep {rep_id} to position {index + 1} in {lane.value}")
            self.audit.record(AuditAction.REORDER_REP, rep_id=rep_id, lane=lane,
                              details={"position": index + 1})
            self.notifier.notify("rep_reordered", rep_id=rep_id, lane=lane.value)
            return roster

    def list_reps(self, include_inactive: bool = True) -> List[SalesRep]:
        return self.db.get_reps(include_inactive=include_inactive)

    # ------------------------------------------------------------------
    # Rotation queries
    # ------------------------------------------------------------------

    def _period_records(self, period: Period):
        leads = self.db.get_leads(period=period)
        entries = calendar_entries(leads, self.db.get_entries(period=period))
        marks = [m.lead_id for m in self.db.get_marks()]
        return leads, entries, marks

    def next_rep(self, lane: Lane, period: Optional[Period] = None) -> str:
        """Id of the rep due next in a lane, "" when the roster is empty."""
        lane = Lane.parse(lane)
        period = period or Period.current()
        leads, entries, marks = self._period_records(period)
        order = base_order(self.db.get_reps(), lane)
        return next_in_rotation(order, entries, leads, lane.is_over1k, marks)

    def rotation(self, lane: Lane, period: Optional[Period] = None) -> List[RotationRow]:
        lane = Lane.parse(lane)
        period = period or Period.current()
        leads, entries, marks = self._period_records(period)
        order = base_order(self.db.get_reps(), lane)
        return rotation_view(order, entries, leads, lane.is_over1k, marks)

    def hit_totals(self, lane: Lane, period: Optional[Period] = None) -> Dict[str, int]:
        """Ledger net per rep on the lane roster."""
        lane = Lane.parse(lane)
        period = period or Period.current()
        order = base_order(self.db.get_reps(), lane)
        return self.ledger.net_by_rep(lane, period, rep_ids=order)

    def reserved_by_others(self, operator: Optional[str] = None) -> List[str]:
        return [
            r.rep_id for r in self.db.get_active_reservations()
            if operator is None or r.reserved_by != operator
        ]

    def pick_rep(self, draft: LeadDraft, operator: Optional[str] = None) -> str:
        """Rep the rotation would give ``draft`` to, skipping reps others hold."""
        leads, entries, marks = self._period_records(draft.period)
        return pick_next(
            draft,
            self.db.get_reps(),
            entries,
            leads,
            marks,
            excluded=self.reserved_by_others(operator),
        )

    def eligible_for(self, draft: LeadDraft) -> List[str]:
        return eligible_reps(draft, self.db.get_reps())

    def reconcile(self, period: Optional[Period] = None) -> List[Drift]:
        """Compare ledger nets against a recount from primary records.

        The ledger books a skip only in the lanes its target covers, so the
        recount here does the same rather than counting skips in both lanes
        as the rotation does.
        """
        period = period or Period.current()
        leads, entries, marks = self._period_records(period)
        rep_ids = [r.id for r in self.db.get_reps()]
        drift = []
        for lane in all_lanes():
            recount = hit_counts(rep_ids, entries, leads, lane.is_over1k, marks, skips_follow_target=True)
            ledger = self.ledger.net_by_rep(lane, period, rep_ids=rep_ids)
            for rep_id in sorted(set(recount) | set(ledger)):
                if ledger.get(rep_id, 0) != recount.get(rep_id, 0):
                    drift.append(Drift(rep_id, lane, ledger.get(rep_id, 0), recount.get(rep_id, 0)))
        if drift:
            logger.warning(f"Ledger drift for {period}: {len(drift)} key(s)")
        return drift

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    def assign_lead(
        self,
        draft: LeadDraft,
        assigned_to: Optional[str] = None,
        replaces: Optional[str] = None,
        operator: Optional[str] = None,
    ) -> AssignmentResult:
        """Create a lead, either from rotation, for a given rep, or as a replacement."""
        if not draft.account_number or not draft.account_number.strip():
            raise ValueError("account_number is required")
        if draft.unit_count is None or draft.unit_count < 0:
            raise ValueError("unit_count must be zero or more")
        draft.account_number = draft.account_number.strip()

        with self._lock:
            if self.db.find_lead_by_account(draft.account_number, draft.period):
                raise DuplicateEntry(
                    f"Account {draft.account_number} already has a lead in {draft.period}",
                    {"account_number": draft.account_number, "period": draft.period.key},
                )

            if replaces:
                result = self._assign_replacement(draft, replaces, assigned_to)
            else:
                result = self._assign_normal(draft, assigned_to, operator)

            self.db.release_reservations_for(result.lead.rep_id, result.lead.lane)
            self.notifier.notify("lead_added", lead_id=result.lead.id, rep_id=result.lead.rep_id)
            self._commit_hits(result.events, result)
            return result

    def _assign_normal(self, draft: LeadDraft, assigned_to: Optional[str],
                       operator: Optional[str]) -> AssignmentResult:
        if assigned_to:
            rep = self._require_rep(assigned_to)
            if not is_eligible(rep, draft.unit_count, draft.property_types):
                raise IneligibleAssignment(draft.unit_count, draft.property_types, rep_id=rep.id)
            rep_id = rep.id
        else:
            rep_id = self.pick_rep(draft, operator)

        decision = self.cushions.check_and_decrement(rep_id, draft.lane)
        lead = self.db.add_lead(Lead.from_draft(draft, rep_id, cushioned=decision.absorbed))

        if lead.cushioned:
            event = self.ledger.build(rep_id, lead.lane, lead.period, HitKind.CUSHION_ABSORB, lead_id=lead.id)
            action = AuditAction.CUSHION_LEAD
        else:
            event = self.ledger.build(rep_id, lead.lane, lead.period, HitKind.LEAD_ADD, lead_id=lead.id)
            action = AuditAction.ADD_NL

        logger.info(f"Assigned lead {lead.account_number} to {rep_id} in {lead.lane.value}"
                    + (" (cushioned)" if lead.cushioned else ""))
        self._audit_lead(action, lead, event.value)
        return AssignmentResult(lead=lead, events=[event])

    def _assign_replacement(self, draft: LeadDraft, original_id: str,
                            assigned_to: Optional[str]) -> AssignmentResult:
        mark = self.db.get_mark(original_id)
        if mark is None:
            raise InvalidTransition("apply_replacement", MarkState.NONE.value, original_id)

        lead = Lead.from_draft(draft, assigned_to or mark.rep_id)
        rep = self._require_rep(lead.rep_id)
        if not is_eligible(rep, lead.unit_count, lead.property_types):
            raise IneligibleAssignment(lead.unit_count, lead.property_types, rep_id=rep.id)

        # Validate before writing anything
        ReplacementBook({original_id: mark}).apply_replacement(original_id, lead)
        self.db.add_lead(lead)

        def close_mark():
            current = self.db.get_mark(original_id)
            book = ReplacementBook({original_id: current} if current else {})
            closed = book.apply_replacement(original_id, lead)
            self._save_mark(closed, current.version)
            return closed

        try:
            closed = self._with_cas_retry(close_mark, f"mark:{original_id}")
        except (ConcurrentModification, InvalidTransition):
            self.db.delete_lead(lead.id)
            raise

        event = self.ledger.build(lead.rep_id, lead.lane, lead.period, HitKind.REPLACE, lead_id=lead.id)
        logger.info(f"Lead {lead.account_number} replaces {original_id} for {lead.rep_id}")
        self._audit_lead(AuditAction.MFR_TO_LRL, lead, event.value,
                         details={"original_lead_id": original_id})
        return AssignmentResult(lead=lead, events=[event], mark=closed)

    def _audit_lead(self, action: AuditAction, lead: Lead, hit_value_change: int,
                    details: Optional[Dict] = None):
        self.audit.record(
            action,
            rep_id=lead.rep_id,
            lead_id=lead.id,
            account_number=lead.account_number,
            lane=lead.lane,
            hit_value_change=hit_value_change,
            day=lead.day,
            month=lead.month,
            year=lead.year,
            details=details or {},
        )

    def update_lead(self, lead_id: str, **changes) -> Lead:
        """Edit a lead. Moving it to another rep or lane books a lead_move pair."""
        unknown = set(changes) - set(LEAD_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update lead fields: {', '.join(sorted(unknown))}")

        with self._lock:
            lead = self._require_lead(lead_id)
            old_rep, old_lane = lead.rep_id, lead.lane

            for key, value in changes.items():
                setattr(lead, key, value)
            if lead.unit_count is None or lead.unit_count < 0:
                raise ValueError("unit_count must be zero or more")

            moved = lead.rep_id != old_rep or lead.lane != old_lane
            if moved:
                book = self._book_for(lead_id)
                state = book.state_of(lead_id)
                if state != MarkState.NONE:
                    raise InvalidTransition("reassign", state.value, lead_id,
                                            reason="marked leads keep their rep and lane")
                if book.original_for(lead_id) is not None:
                    raise InvalidTransition("reassign", "replacement", lead_id,
                                            reason="replacement leads keep their rep and lane")

            if lead.rep_id != old_rep or "unit_count" in changes or "property_types" in changes:
                rep = self._require_rep(lead.rep_id)
                if not is_eligible(rep, lead.unit_count, lead.property_types):
                    raise IneligibleAssignment(lead.unit_count, lead.property_types, rep_id=rep.id)

            self.db.update_lead(lead)

            events = []
            if moved:
                value = lead.counted_value
                events = [
                    self.ledger.build(old_rep, old_lane, lead.period, HitKind.LEAD_MOVE, -value, lead_id=lead.id),
                    self.ledger.build(lead.rep_id, lead.lane, lead.period, HitKind.LEAD_MOVE, value, lead_id=lead.id),
                ]
                logger.info(f"Moved lead {lead.account_number} from {old_rep}/{old_lane.value} "
                            f"to {lead.rep_id}/{lead.lane.value}")

            self._audit_lead(AuditAction.UPDATE_LEAD, lead, 0, details={
                "changes": sorted(changes),
                "previous_rep_id": old_rep,
                "previous_lane": old_lane.value,
            })
            self.notifier.notify("lead_updated", lead_id=lead.id, rep_id=lead.rep_id)
            self._commit_hits(events, lead)
            return lead

    def can_delete_lead(self, lead_id: str) -> DeletionCheck:
        self._require_lead(lead_id)
        return self._book_for(lead_id).can_delete_lead(lead_id)

    def delete_lead(self, lead_id: str) -> Lead:
        """Delete a normal or replacement lead; marked originals are refused."""
        with self._lock:
            lead = self._require_lead(lead_id)
            book = self._book_for(lead_id)
            check = book.can_delete_lead(lead_id)
            if not check.allowed:
                raise InvalidTransition("delete", book.state_of(lead_id).value, lead_id, reason=check.reason)

            original = book.original_for(lead_id)
            if original is not None:
                def reopen():
                    current = self.db.get_mark(original.lead_id)
                    reopened = ReplacementBook({current.lead_id: current}).undo_replacement(current.lead_id)
                    self._save_mark(reopened, current.version)
                    return reopened

                self._with_cas_retry(reopen, f"mark:{original.lead_id}")
                self.db.delete_lead(lead_id)
                event = self.ledger.build(lead.rep_id, lead.lane, lead.period,
                                          HitKind.REPLACEMENT_REMOVE, lead_id=lead.id)
                action = AuditAction.DELETE_LRL
                details = {"original_lead_id": original.lead_id}
            else:
                self.db.delete_lead(lead_id)
                event = self.ledger.build(lead.rep_id, lead.lane, lead.period,
                                          HitKind.LEAD_REMOVE, -lead.counted_value, lead_id=lead.id)
                action = AuditAction.DELETE_NL
                details = {}

            logger.info(f"Deleted lead {lead.account_number} ({lead_id})")
            self._audit_lead(action, lead, event.value, details=details)
            self.notifier.notify("lead_deleted", lead_id=lead_id, rep_id=lead.rep_id)
            self._commit_hits([event], lead)
            return lead

    # ------------------------------------------------------------------
    # Replacement marks
    # ------------------------------------------------------------------

    def mark_for_replacement(self, lead_id: str) -> ReplacementMark:
        with self._lock:
            lead = self._require_lead(lead_id)

            def open_mark():
                mark = self._book_for(lead_id).mark_for_replacement(lead)
                return self.db.add_mark(mark)

            mark = self._with_cas_retry(open_mark, f"mark:{lead_id}")
            event = self.ledger.build(lead.rep_id, lead.lane, lead.period, HitKind.MARK,
                                      -lead.counted_value, lead_id=lead.id)
            logger.info(f"Marked lead {lead.account_number} for replacement")
            self._audit_lead(AuditAction.NL_TO_MFR, lead, event.value)
            self.notifier.notify("lead_marked", lead_id=lead_id, rep_id=lead.rep_id)
            self._commit_hits([event], mark)
            return mark

    def remove_mark(self, lead_id: str) -> ReplacementMark:
        """Return an open-marked lead to normal."""
        with self._lock:
            lead = self._require_lead(lead_id)

            def drop_mark():
                current = self.db.get_mark(lead_id)
                removed = ReplacementBook({lead_id: current} if current else {}).remove_mark(lead_id)
                if not self.db.delete_mark(lead_id, current.version):
                    raise ConcurrentModification(f"mark:{lead_id}", current.version)
                return removed

            mark = self._with_cas_retry(drop_mark, f"mark:{lead_id}")
            event = self.ledger.build(lead.rep_id, lead.lane, lead.period, HitKind.UNMARK,
                                      mark.counted_value, lead_id=lead.id)
            logger.info(f"Removed replacement mark from lead {lead.account_number}")
            self._audit_lead(AuditAction.MFR_TO_NL, lead, event.value)
            self.notifier.notify("lead_unmarked", lead_id=lead_id, rep_id=lead.rep_id)
            self._commit_hits([event], mark)
            return mark

    def get_mark(self, lead_id: str) -> Optional[ReplacementMark]:
        return self.db.get_mark(lead_id)

    # ------------------------------------------------------------------
    # Skips and OOO
    # ------------------------------------------------------------------

    def add_skip(self, rep_id: str, day: int, period: Optional[Period] = None,
                 target=RotationTarget.BOTH) -> NonLeadEntry:
        return self._add_entry(EntryType.SKIP, rep_id, day, period, target)

    def add_ooo(self, rep_id: str, day: int, period: Optional[Period] = None,
                target=RotationTarget.BOTH) -> NonLeadEntry:
        return self._add_entry(EntryType.OOO, rep_id, day, period, target)

    def _add_entry(self, entry_type: EntryType, rep_id: str, day: int,
                   period: Optional[Period], target) -> NonLeadEntry:
        period = period or Period.current()
        target = RotationTarget.parse(target)
        if not 1 <= day <= 31:
            raise ValueError(f"day must be 1-31, got {day}")

        with self._lock:
            self._require_rep(rep_id)
            entry = self.db.add_entry(NonLeadEntry(
                rep_id=rep_id,
                entry_type=entry_type,
                rotation_target=target,
                day=day,
                month=period.month,
                year=period.year,
            ))
            kind = HitKind.SKIP_ADD if entry_type == EntryType.SKIP else HitKind.OOO_ADD
            events = self.ledger.build_for_target(rep_id, target, period, kind, entry_id=entry.id)

            logger.info(f"Added {entry_type.value} for {rep_id} on {period}-{day:02d} ({target.value})")
            self.audit.record(
                AuditAction.SKIP if entry_type == EntryType.SKIP else AuditAction.OOO,
                rep_id=rep_id, entry_id=entry.id, lane=target,
                hit_value_change=sum(e.value for e in events),
                day=day, month=period.month, year=period.year,
            )
            self.notifier.notify("entry_added", entry_id=entry.id, rep_id=rep_id)
            self._commit_hits(events, entry)
            return entry

    def delete_entry(self, entry_id: str) -> NonLeadEntry:
        with self._lock:
            entry = self.db.get_entry(entry_id)
            if entry is None:
                raise NotFound("Entry", entry_id)

            self.db.delete_entry(entry_id)
            is_skip = entry.entry_type == EntryType.SKIP
            kind = HitKind.SKIP_REMOVE if is_skip else HitKind.OOO_REMOVE
            events = self.ledger.build_for_target(
                entry.rep_id, entry.rotation_target, entry.period, kind, entry_id=entry.id,
            )

            logger.info(f"Deleted {entry.entry_type.value} {entry_id} for {entry.rep_id}")
            self.audit.record(
                AuditAction.DELETE_SKIP if is_skip else AuditAction.DELETE_OOO,
                rep_id=entry.rep_id, entry_id=entry.id, lane=entry.rotation_target,
                hit_value_change=sum(e.value for e in events),
                day=entry.day, month=entry.month, year=entry.year,
            )
            self.notifier.notify("entry_deleted", entry_id=entry_id, rep_id=entry.rep_id)
            self._commit_hits(events, entry)
            return entry

    # ------------------------------------------------------------------
    # Cushions
    # ------------------------------------------------------------------

    def set_cushion(self, rep_id: str, lane: Lane, value: Optional[int] = None,
                    occurrences: int = 1) -> CushionState:
        lane = Lane.parse(lane)
        with self._lock:
            self._require_rep(rep_id)
            state = self.cushions.set_cushion(rep_id, lane, value, occurrences)
            self.audit.record(AuditAction.CUSHION_SET, rep_id=rep_id, lane=lane, details={
                "value": state.original,
                "occurrences": state.occurrences,
            })
            self.notifier.notify("cushion_set", rep_id=rep_id, lane=lane.value)
            return state

    def active_cushions(self):
        return self.cushions.active_cushions()

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def reserve(
        self,
        rep_id: str,
        lane: Lane,
        reserved_by: str,
        unit_count: Optional[int] = None,
        property_types: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> Reservation:
        """Hold a rep for ``reserved_by`` for the configured time."""
        lane = Lane.parse(lane)
        now = now or datetime.now()
        with self._lock:
            rep = self._require_rep(rep_id)
            if not rep.is_active:
                raise IneligibleAssignment(unit_count or 0, property_types, rep_id=rep_id)

            reservation = self.db.add_reservation(Reservation(
                rep_id=rep_id,
                lane=lane,
                reserved_by=reserved_by,
                unit_count=unit_count,
                property_types=list(property_types or []),
                created_at=now,
                expires_at=now + timedelta(minutes=self.config.reservation_ttl_minutes),
            ), now=now)

            logger.info(f"{reserved_by} reserved {rep_id} in {lane.value} until {reservation.expires_at:%H:%M}")
            self.audit.record(AuditAction.RESERVE, rep_id=rep_id, lane=lane,
                              details={"reservation_id": reservation.id, "reserved_by": reserved_by})
            self.notifier.notify("rep_reserved", rep_id=rep_id, reservation_id=reservation.id)
            return reservation

    def release(self, reservation_id: str) -> Reservation:
        with self._lock:
            reservation = self.db.get_reservation(reservation_id)
            if reservation is None:
                raise NotFound("Reservation", reservation_id)
            if not self.db.release_reservation(reservation_id):
                logger.warning(f"Reservation {reservation_id} was already released")
            reservation = self.db.get_reservation(reservation_id)

            self.audit.record(AuditAction.RELEASE, rep_id=reservation.rep_id, lane=reservation.lane,
                              details={"reservation_id": reservation_id})
            self.notifier.notify("rep_released", rep_id=reservation.rep_id, reservation_id=reservation_id)
            return reservation

    def active_reservations(self) -> List[Reservation]:
        return self.db.get_active_reservations()
