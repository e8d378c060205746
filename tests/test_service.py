"""Tests for the rotation service."""

import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from lead_rotation.audit.recorder import AuditAction
from lead_rotation.core.config import RotationConfig
from lead_rotation.core.errors import (
    ConcurrentModification,
    DuplicateEntry,
    IneligibleAssignment,
    InvalidTransition,
    LedgerWriteFailure,
    NotFound,
    ReservationConflict,
)
from lead_rotation.core.lanes import HitKind, Lane, Period, RotationTarget
from lead_rotation.ledger.hits import HitLedger, InMemoryHitStore
from lead_rotation.replacement.marks import MarkState
from lead_rotation.service import ChangeNotifier, RotationService
from lead_rotation.storage.database import RotationDatabase
from lead_rotation.storage.models import LeadDraft

MARCH = Period(3, 2025)


def draft(account, units=100, **kwargs):
    return LeadDraft(account_number=account, unit_count=units, day=kwargs.pop("day", 3),
                     month=3, year=2025, **kwargs)


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def service(temp_data_dir):
    """Create rotation service with temp storage."""
    return RotationService(RotationDatabase(temp_data_dir / "rotation.db"))


@pytest.fixture
def reps(service):
    """Alice, Bob and Carol; only Carol takes 1k+ leads."""
    alice = service.add_rep("Alice")
    bob = service.add_rep("Bob")
    carol = service.add_rep("Carol", can_handle_over1k=True)
    return alice, bob, carol


def assert_ledger_matches_recount(service, period=MARCH):
    assert service.reconcile(period) == []


class TestReps:
    """Tests for rep management."""

    def test_reps_appended_in_order(self, service, reps):
        """Test that new reps go to the end of the roster."""
        alice, bob, carol = reps
        assert [r.sub1k_order for r in reps] == [1, 2, 3]
        assert carol.over1k_order == 1
        assert alice.over1k_order is None

    def test_move_rep(self, service, reps):
        """Test reordering a lane."""
        alice, bob, carol = reps
        roster = service.move_rep(carol.id, Lane.SUB1K, 1)
        assert roster == [carol.id, alice.id, bob.id]
        assert service.next_rep(Lane.SUB1K, MARCH) == carol.id

    def test_deactivate_removes_from_rotation(self, service, reps):
        """Test that inactive reps are not picked."""
        alice, bob, _ = reps
        service.deactivate_rep(alice.id)
        assert service.next_rep(Lane.SUB1K, MARCH) == bob.id
        service.activate_rep(alice.id)
        assert service.next_rep(Lane.SUB1K, MARCH) == alice.id

    def test_update_unknown_field(self, service, reps):
        """Test that only known rep fields can change."""
        with pytest.raises(ValueError):
            service.update_rep(reps[0].id, favourite_colour="blue")

    def test_unknown_rep(self, service):
        """Test NotFound for a missing rep."""
        with pytest.raises(NotFound):
            service.update_rep("missing", name="x")


class TestAssignment:
    """Tests for assigning leads."""

    def test_scenario(self, service, reps):
        """Test A, then B, then still B after C skips."""
        alice, bob, carol = reps
        assert service.next_rep(Lane.SUB1K, MARCH) == alice.id

        result = service.assign_lead(draft("ACC-1"))
        assert result.lead.rep_id == alice.id
        assert service.next_rep(Lane.SUB1K, MARCH) == bob.id

        service.add_skip(carol.id, day=4, period=MARCH)
        assert service.next_rep(Lane.SUB1K, MARCH) == bob.id
        assert_ledger_matches_recount(service)

    def test_over1k_goes_to_capable_rep(self, service, reps):
        """Test 1k+ leads use the 1k+ roster."""
        result = service.assign_lead(draft("BIG-1", units=1500))
        assert result.lead.rep_id == reps[2].id
        assert result.lead.lane == Lane.OVER1K
        assert service.hit_totals(Lane.OVER1K, MARCH) == {reps[2].id: 1}

    def test_no_eligible_rep(self, service, reps):
        """Test IneligibleAssignment when nobody supports the property type."""
        with pytest.raises(IneligibleAssignment):
            service.assign_lead(draft("ACC-1", property_types=["Commercial"]))

    def test_manual_assignment_checks_eligibility(self, service, reps):
        """Test that a named rep must be eligible."""
        with pytest.raises(IneligibleAssignment):
            service.assign_lead(draft("BIG-1", units=2000), assigned_to=reps[0].id)

    def test_duplicate_account_rejected(self, service, reps):
        """Test duplicate account numbers in a month."""
        service.assign_lead(draft("ACC-1"))
        with pytest.raises(DuplicateEntry):
            service.assign_lead(draft(" acc-1 "))

    def test_account_number_required(self, service, reps):
        """Test validation of the draft."""
        with pytest.raises(ValueError):
            service.assign_lead(draft("  "))

    def test_audit_and_notification(self, service, reps):
        """Test that an assignment is audited and announced."""
        seen = []
        service.notifier.subscribe(lambda change, payload: seen.append(change))

        result = service.assign_lead(draft("ACC-1"))

        assert seen == ["lead_added"]
        latest = service.audit.recent(limit=1)[0]
        assert latest.action == AuditAction.ADD_NL
        assert latest.lead_id == result.lead.id
        assert latest.hit_value_change == 1


class TestCushions:
    """Tests for cushion handling during assignment."""

    def test_cushion_absorbs_and_keeps_rep_next(self, service, reps):
        """Test a cushioned assignment is not a hit."""
        alice = reps[0]
        service.set_cushion(alice.id, Lane.SUB1K, 2, occurrences=1)

        first = service.assign_lead(draft("ACC-1"))
        assert first.lead.rep_id == alice.id
        assert first.cushioned
        assert first.events[0].kind == HitKind.CUSHION_ABSORB
        assert service.next_rep(Lane.SUB1K, MARCH) == alice.id

        second = service.assign_lead(draft("ACC-2"))
        assert second.lead.rep_id == alice.id
        assert not second.cushioned
        assert service.next_rep(Lane.SUB1K, MARCH) == reps[1].id
        assert_ledger_matches_recount(service)

    def test_cushion_audited(self, service, reps):
        """Test the CUSHION_LEAD audit action."""
        service.set_cushion(reps[0].id, Lane.SUB1K, 3)
        service.assign_lead(draft("ACC-1"))
        actions = [a.action for a in service.audit.recent(limit=2)]
        assert actions == [AuditAction.CUSHION_LEAD, AuditAction.CUSHION_SET]

    def test_deleting_cushioned_lead_books_zero(self, service, reps):
        """Test that removing a cushioned lead does not subtract a hit."""
        service.set_cushion(reps[0].id, Lane.SUB1K, 2)
        lead = service.assign_lead(draft("ACC-1")).lead
        service.delete_lead(lead.id)
        assert service.hit_totals(Lane.SUB1K, MARCH)[reps[0].id] == 0
        assert_ledger_matches_recount(service)

    def test_active_cushions(self, service, reps):
        """Test listing live cushions."""
        service.set_cushion(reps[1].id, Lane.OVER1K, 2)
        assert [(rep_id, lane) for rep_id, lane, _ in service.active_cushions()] == [(reps[1].id, Lane.OVER1K)]


class TestSkipsAndOOO:
    """Tests for non-lead entries."""

    def test_skip_both_lanes(self, service, reps):
        """Test a skip targeting both lanes books a hit in each."""
        carol = reps[2]
        service.add_skip(carol.id, day=2, period=MARCH)
        assert service.hit_totals(Lane.SUB1K, MARCH)[carol.id] == 1
        assert service.hit_totals(Lane.OVER1K, MARCH)[carol.id] == 1

    def test_skip_single_lane(self, service, reps):
        """Test a sub-1k-only skip is booked in one lane but counts in both rotations."""
        carol = reps[2]
        service.add_skip(carol.id, day=2, period=MARCH, target=RotationTarget.SUB1K)
        assert service.hit_totals(Lane.SUB1K, MARCH)[carol.id] == 1
        assert service.hit_totals(Lane.OVER1K, MARCH)[carol.id] == 0
        rows = service.rotation(Lane.OVER1K, MARCH)
        assert rows[0].hits == 1
        assert_ledger_matches_recount(service)

    def test_targeted_skip_moves_over1k_rotation(self, service, reps):
        """Test a sub-1k skip pushes the rep back in the 1k+ lane too."""
        dave = service.add_rep("Dave", can_handle_over1k=True)
        carol = reps[2]
        assert service.next_rep(Lane.OVER1K, MARCH) == carol.id

        service.add_skip(carol.id, day=2, period=MARCH, target=RotationTarget.SUB1K)
        assert service.next_rep(Lane.OVER1K, MARCH) == dave.id

    def test_one_skip_per_target_per_day(self, service, reps):
        """Test a sub-1k and a 1k+ skip may share a day."""
        carol = reps[2]
        service.add_skip(carol.id, day=2, period=MARCH, target=RotationTarget.SUB1K)
        service.add_skip(carol.id, day=2, period=MARCH, target=RotationTarget.OVER1K)
        with pytest.raises(DuplicateEntry):
            service.add_skip(carol.id, day=2, period=MARCH, target=RotationTarget.OVER1K)
        assert_ledger_matches_recount(service)

    def test_ooo_is_not_a_hit(self, service, reps):
        """Test OOO books zero-value events."""
        entry = service.add_ooo(reps[0].id, day=2, period=MARCH)
        assert service.next_rep(Lane.SUB1K, MARCH) == reps[0].id
        events = service.ledger.events_for(rep_id=reps[0].id)
        assert [e.value for e in events] == [0, 0]
        service.delete_entry(entry.id)
        assert_ledger_matches_recount(service)

    def test_delete_skip_reverses(self, service, reps):
        """Test deleting a skip books the opposite events."""
        entry = service.add_skip(reps[0].id, day=2, period=MARCH)
        service.delete_entry(entry.id)
        assert service.hit_totals(Lane.SUB1K, MARCH)[reps[0].id] == 0
        actions = [a.action for a in service.audit.recent(limit=2)]
        assert actions == [AuditAction.DELETE_SKIP, AuditAction.SKIP]

    def test_duplicate_skip(self, service, reps):
        """Test one skip per rep per day."""
        service.add_skip(reps[0].id, day=2, period=MARCH)
        with pytest.raises(DuplicateEntry):
            service.add_skip(reps[0].id, day=2, period=MARCH)

    def test_delete_missing_entry(self, service):
        """Test NotFound for an unknown entry."""
        with pytest.raises(NotFound):
            service.delete_entry("missing")


class TestReplacement:
    """Tests for the replacement workflow through the service."""

    def test_round_trip(self, service, reps):
        """Test mark, replace, delete replacement, unmark keeps ledger equal to recount."""
        alice = reps[0]
        original = service.assign_lead(draft("ACC-1")).lead

        mark = service.mark_for_replacement(original.id)
        assert mark.state == MarkState.OPEN
        assert service.hit_totals(Lane.SUB1K, MARCH)[alice.id] == 0
        assert_ledger_matches_recount(service)

        result = service.assign_lead(draft("ACC-2"), replaces=original.id)
        assert result.lead.rep_id == alice.id
        assert result.mark.replaced_by_lead_id == result.lead.id
        assert service.hit_totals(Lane.SUB1K, MARCH)[alice.id] == 1
        assert_ledger_matches_recount(service)

        service.delete_lead(result.lead.id)
        reopened = service.get_mark(original.id)
        assert reopened.state == MarkState.OPEN
        assert reopened.replaced_by_lead_id is None
        assert service.hit_totals(Lane.SUB1K, MARCH)[alice.id] == 0
        assert_ledger_matches_recount(service)

        service.remove_mark(original.id)
        assert service.get_mark(original.id) is None
        assert service.hit_totals(Lane.SUB1K, MARCH)[alice.id] == 1
        assert_ledger_matches_recount(service)

    def test_audit_trail(self, service, reps):
        """Test the audit actions of a replacement cycle."""
        original = service.assign_lead(draft("ACC-1")).lead
        service.mark_for_replacement(original.id)
        replacement = service.assign_lead(draft("ACC-2"), replaces=original.id).lead
        service.delete_lead(replacement.id)
        service.remove_mark(original.id)

        actions = [a.action for a in reversed(service.audit.recent(limit=5))]
        assert actions == [
            AuditAction.ADD_NL,
            AuditAction.NL_TO_MFR,
            AuditAction.MFR_TO_LRL,
            AuditAction.DELETE_LRL,
            AuditAction.MFR_TO_NL,
        ]

    def test_marked_lead_cannot_be_deleted(self, service, reps):
        """Test the deletion guard for open and closed marks."""
        original = service.assign_lead(draft("ACC-1")).lead
        service.mark_for_replacement(original.id)

        assert not service.can_delete_lead(original.id).allowed
        with pytest.raises(InvalidTransition):
            service.delete_lead(original.id)

        replacement = service.assign_lead(draft("ACC-2"), replaces=original.id).lead
        assert not service.can_delete_lead(original.id).allowed
        assert service.can_delete_lead(replacement.id).allowed

    def test_replacement_must_go_to_same_rep(self, service, reps):
        """Test that a replacement for another rep is rejected and nothing is written."""
        original = service.assign_lead(draft("ACC-1")).lead
        service.mark_for_replacement(original.id)

        with pytest.raises(InvalidTransition):
            service.assign_lead(draft("ACC-2"), replaces=original.id, assigned_to=reps[1].id)
        assert service.db.find_lead_by_account("ACC-2", MARCH) is None
        assert service.get_mark(original.id).state == MarkState.OPEN

    def test_replace_unmarked_lead(self, service, reps):
        """Test that only open marks accept a replacement."""
        original = service.assign_lead(draft("ACC-1")).lead
        with pytest.raises(InvalidTransition) as exc_info:
            service.assign_lead(draft("ACC-2"), replaces=original.id)
        assert exc_info.value.current_state == "none"

    def test_mark_twice(self, service, reps):
        """Test marking an already-marked lead."""
        original = service.assign_lead(draft("ACC-1")).lead
        service.mark_for_replacement(original.id)
        with pytest.raises(InvalidTransition):
            service.mark_for_replacement(original.id)

    def test_marked_lead_cannot_be_reassigned(self, service, reps):
        """Test that marked leads keep their rep."""
        original = service.assign_lead(draft("ACC-1")).lead
        service.mark_for_replacement(original.id)
        with pytest.raises(InvalidTransition):
            service.update_lead(original.id, rep_id=reps[1].id)

    def test_replacement_skips_cushion(self, service, reps):
        """Test that a replacement lead never consumes a cushion."""
        alice = reps[0]
        original = service.assign_lead(draft("ACC-1")).lead
        service.mark_for_replacement(original.id)
        service.set_cushion(alice.id, Lane.SUB1K, 2)

        result = service.assign_lead(draft("ACC-2"), replaces=original.id)
        assert not result.cushioned
        assert service.cushions.get(alice.id, Lane.SUB1K).current == 2

    def test_replace_books_in_replacement_lane(self, service, reps):
        """Test that a 1k+ replacement for a sub-1k lead books its hit in the 1k+ lane."""
        carol = reps[2]
        original = service.assign_lead(draft("ACC-1"), assigned_to=carol.id).lead
        service.mark_for_replacement(original.id)

        result = service.assign_lead(draft("ACC-2", units=1500), replaces=original.id)
        assert [(e.kind, e.lane) for e in result.events] == [(HitKind.REPLACE, Lane.OVER1K)]
        assert service.hit_totals(Lane.SUB1K, MARCH)[carol.id] == 0
        assert service.hit_totals(Lane.OVER1K, MARCH)[carol.id] == 1
        assert_ledger_matches_recount(service)


class TestUpdates:
    """Tests for editing leads."""

    def test_reassign_books_move_pair(self, service, reps):
        """Test moving a lead between reps."""
        alice, bob, _ = reps
        lead = service.assign_lead(draft("ACC-1")).lead
        service.update_lead(lead.id, rep_id=bob.id)

        totals = service.hit_totals(Lane.SUB1K, MARCH)
        assert totals[alice.id] == 0
        assert totals[bob.id] == 1
        moves = [e for e in service.ledger.events_for() if e.kind == HitKind.LEAD_MOVE]
        assert sorted(e.value for e in moves) == [-1, 1]
        assert_ledger_matches_recount(service)

    def test_resize_across_lanes(self, service, reps):
        """Test that growing a lead past 1000 units moves its hit."""
        carol = reps[2]
        lead = service.assign_lead(draft("ACC-1"), assigned_to=carol.id).lead
        service.update_lead(lead.id, unit_count=1200)

        assert service.hit_totals(Lane.SUB1K, MARCH)[carol.id] == 0
        assert service.hit_totals(Lane.OVER1K, MARCH)[carol.id] == 1
        assert_ledger_matches_recount(service)

    def test_resize_beyond_rep_capability(self, service, reps):
        """Test that a resize must stay within the rep's capability."""
        lead = service.assign_lead(draft("ACC-1"), assigned_to=reps[0].id).lead
        with pytest.raises(IneligibleAssignment):
            service.update_lead(lead.id, unit_count=1200)

    def test_plain_edit_books_nothing(self, service, reps):
        """Test that editing comments leaves the ledger alone."""
        lead = service.assign_lead(draft("ACC-1")).lead
        service.update_lead(lead.id, comments="called twice")
        assert len(service.ledger.events_for()) == 1
        assert service.db.get_lead(lead.id).comments == "called twice"


class TestReconcileAndLedgerFailures:
    """Tests for drift detection and queued ledger events."""

    def test_reconcile_reports_drift(self, service, reps):
        """Test that a stray ledger event shows up as drift."""
        service.assign_lead(draft("ACC-1"))
        service.ledger.append(reps[1].id, Lane.SUB1K, MARCH, HitKind.SKIP_ADD)

        drift = service.reconcile(MARCH)
        assert len(drift) == 1
        assert drift[0].rep_id == reps[1].id
        assert drift[0].difference == 1

    def test_failed_append_is_queued_and_flushed(self, temp_data_dir):
        """Test that the primary write stands when the ledger is down."""

        class FlakyStore(InMemoryHitStore):
            down = True

            def add_hit_event(self, event):
                if self.down:
                    raise OSError("ledger unavailable")
                super().add_hit_event(event)

        store = FlakyStore()
        service = RotationService(
            RotationDatabase(temp_data_dir / "rotation.db"),
            config=RotationConfig(ledger_retry_attempts=2),
            ledger=HitLedger(store),
        )
        rep = service.add_rep("Alice")

        with pytest.raises(LedgerWriteFailure) as exc_info:
            service.assign_lead(draft("ACC-1"))

        lead = exc_info.value.result.lead
        assert service.db.get_lead(lead.id) is not None
        assert len(service.pending_hits) == 1
        assert service.ledger.net_for(rep.id, Lane.SUB1K, MARCH) == 0

        store.down = False
        assert service.flush_pending_hits() == 1
        assert service.pending_hits == []
        assert service.ledger.net_for(rep.id, Lane.SUB1K, MARCH) == 1

    def test_queue_outlives_the_service(self, temp_data_dir):
        """Test that events queued by one service are flushed by a later one."""

        class DownStore(InMemoryHitStore):
            def add_hit_event(self, event):
                raise OSError("ledger unavailable")

        db_path = temp_data_dir / "rotation.db"
        first = RotationService(
            RotationDatabase(db_path),
            config=RotationConfig(ledger_retry_attempts=1),
            ledger=HitLedger(DownStore()),
        )
        rep = first.add_rep("Alice")
        with pytest.raises(LedgerWriteFailure):
            first.add_skip(rep.id, day=2, period=MARCH)

        second = RotationService(RotationDatabase(db_path))
        assert len(second.pending_hits) == 2
        assert len(second.reconcile(MARCH)) == 2

        assert second.flush_pending_hits() == 2
        assert second.pending_hits == []
        assert second.reconcile(MARCH) == []


class TestReservations:
    """Tests for reservations through the service."""

    def test_reserved_rep_skipped_for_others(self, service, reps):
        """Test that another operator's hold is passed over."""
        alice, bob, _ = reps
        service.reserve(alice.id, Lane.SUB1K, "ops1")

        assert service.pick_rep(draft("ACC-1"), operator="ops2") == bob.id
        assert service.pick_rep(draft("ACC-1"), operator="ops1") == alice.id

    def test_assignment_releases_reservation(self, service, reps):
        """Test that assigning to the held rep ends the hold."""
        alice = reps[0]
        service.reserve(alice.id, Lane.SUB1K, "ops1")
        result = service.assign_lead(draft("ACC-1"), operator="ops1")

        assert result.lead.rep_id == alice.id
        assert service.active_reservations() == []

    def test_conflicting_reservation(self, service, reps):
        """Test that a held rep cannot be reserved by someone else."""
        service.reserve(reps[0].id, Lane.SUB1K, "ops1")
        with pytest.raises(ReservationConflict):
            service.reserve(reps[0].id, Lane.SUB1K, "ops2")

    def test_expiry_uses_config(self, service, reps):
        """Test the reservation lifetime."""
        now = datetime.now()
        reservation = service.reserve(reps[0].id, Lane.SUB1K, "ops1", now=now)
        assert reservation.expires_at == now + timedelta(minutes=10)

    def test_release(self, service, reps):
        """Test releasing a reservation."""
        reservation = service.reserve(reps[0].id, Lane.SUB1K, "ops1")
        released = service.release(reservation.id)
        assert released.status.value == "released"
        with pytest.raises(NotFound):
            service.release("missing")


class TestConcurrency:
    """Tests for compare-and-swap retries."""

    def test_mark_conflict_retried_once(self, service, reps):
        """Test that a lost mark race is retried against fresh state."""
        original = service.assign_lead(draft("ACC-1")).lead
        service.mark_for_replacement(original.id)
        replacement_draft = draft("ACC-2")

        real = service.db.compare_and_set_mark
        calls = []

        def racing(mark, expected_version):
            calls.append(expected_version)
            if len(calls) == 1:
                return False
            return real(mark, expected_version)

        service.db.compare_and_set_mark = racing
        result = service.assign_lead(replacement_draft, replaces=original.id)

        assert len(calls) == 2
        assert result.mark.state == MarkState.CLOSED

    def test_persistent_conflict_surfaces(self, service, reps):
        """Test that a second conflict propagates and undoes the new lead."""
        original = service.assign_lead(draft("ACC-1")).lead
        service.mark_for_replacement(original.id)
        service.db.compare_and_set_mark = lambda mark, expected_version: False

        with pytest.raises(ConcurrentModification):
            service.assign_lead(draft("ACC-2"), replaces=original.id)
        assert service.db.find_lead_by_account("ACC-2", MARCH) is None


class TestChangeNotifier:
    """Tests for ChangeNotifier."""

    def test_unsubscribe(self):
        """Test that an unsubscribed handler is no longer called."""
        notifier = ChangeNotifier()
        seen = []
        unsubscribe = notifier.subscribe(lambda change, payload: seen.append(payload))

        notifier.notify("lead_added", lead_id="L1")
        unsubscribe()
        notifier.notify("lead_added", lead_id="L2")

        assert seen == [{"lead_id": "L1"}]

    def test_failing_handler_does_not_stop_others(self):
        """Test that one broken handler does not block the rest."""
        notifier = ChangeNotifier()
        seen = []

        def broken(change, payload):
            raise RuntimeError("boom")

        notifier.subscribe(broken)
        notifier.subscribe(lambda change, payload: seen.append(change))
        notifier.notify("entry_added")

        assert seen == ["entry_added"]
