"""Tests for the SQLite rotation store."""

import sqlite3
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from lead_rotation.audit.recorder import AuditAction, AuditEntry
from lead_rotation.core.errors import ConcurrentModification, DuplicateEntry, ReservationConflict
from lead_rotation.core.lanes import EntryType, HitKind, Lane, Period, RotationTarget
from lead_rotation.ledger.cushion import CushionState
from lead_rotation.ledger.hits import HitLedger
from lead_rotation.replacement.marks import ReplacementMark
from lead_rotation.storage.database import RotationDatabase
from lead_rotation.storage.migrations import pending_migrations, run_migrations
from lead_rotation.storage.models import Lead, NonLeadEntry, Reservation, SalesRep

MARCH = Period(3, 2025)


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db(temp_data_dir):
    """Create database with temp storage."""
    return RotationDatabase(temp_data_dir / "rotation.db")


@pytest.fixture
def rep(db):
    return db.add_rep(SalesRep(name="Alice", sub1k_order=1, property_types=["MF"]))


class TestSchema:
    """Tests for migrations."""

    def test_migrations_applied_once(self, db):
        """Test that opening the database leaves nothing pending."""
        assert pending_migrations(str(db.db_path)) == []
        assert run_migrations(str(db.db_path)) == 0

    def test_tables_exist(self, db):
        """Test the expected tables are created."""
        conn = sqlite3.connect(db.db_path)
        names = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        conn.close()
        assert {"sales_reps", "leads", "non_lead_entries", "hit_events", "cushions",
                "replacement_marks", "reservations", "audit_actions", "pending_hit_events"} <= names


class TestReps:
    """Tests for rep storage."""

    def test_round_trip(self, db, rep):
        """Test storing and loading a rep."""
        loaded = db.get_rep(rep.id)
        assert loaded.name == "Alice"
        assert loaded.property_types == ["MF"]
        assert loaded.is_active

    def test_update_checks_version(self, db, rep):
        """Test that a stale rep write is refused."""
        fresh = db.update_rep(db.get_rep(rep.id))
        assert fresh.version == 1
        with pytest.raises(ConcurrentModification):
            db.update_rep(rep)


class TestLeads:
    """Tests for lead storage."""

    def test_account_unique_per_month_case_insensitive(self, db, rep):
        """Test duplicate account numbers in a month are rejected."""
        db.add_lead(Lead(account_number="acc-1", rep_id=rep.id, month=3, year=2025))
        with pytest.raises(DuplicateEntry):
            db.add_lead(Lead(account_number="ACC-1", rep_id=rep.id, month=3, year=2025))

        # Another month is fine
        db.add_lead(Lead(account_number="ACC-1", rep_id=rep.id, month=4, year=2025))
        assert db.find_lead_by_account("Acc-1", MARCH) is not None

    def test_get_leads_by_period(self, db, rep):
        """Test period filtering."""
        db.add_lead(Lead(account_number="A1", rep_id=rep.id, month=3, year=2025))
        db.add_lead(Lead(account_number="A2", rep_id=rep.id, month=4, year=2025, cushioned=True))

        assert [l.account_number for l in db.get_leads(period=MARCH)] == ["A1"]
        assert db.get_leads(period=Period(4, 2025))[0].cushioned


class TestEntries:
    """Tests for non-lead entries."""

    def test_duplicate_entry_rejected(self, db, rep):
        """Test one entry per type, target, rep and day."""
        entry = NonLeadEntry(rep_id=rep.id, entry_type=EntryType.SKIP, day=5, month=3, year=2025)
        db.add_entry(entry)
        with pytest.raises(DuplicateEntry):
            db.add_entry(NonLeadEntry(rep_id=rep.id, entry_type=EntryType.SKIP, day=5, month=3, year=2025))

        # A skip for a single lane is a different entry
        db.add_entry(NonLeadEntry(rep_id=rep.id, entry_type=EntryType.SKIP, day=5, month=3, year=2025,
                                  rotation_target=RotationTarget.OVER1K))

        # An OOO on the same day is a different entry
        db.add_entry(NonLeadEntry(rep_id=rep.id, entry_type=EntryType.OOO, day=5, month=3, year=2025,
                                  rotation_target=RotationTarget.SUB1K))
        assert len(db.get_entries(period=MARCH)) == 3
        assert db.get_entry(entry.id).rotation_target == RotationTarget.BOTH


class TestCushions:
    """Tests for cushion compare-and-swap."""

    def test_compare_and_set(self, db, rep):
        """Test that only the expected version may write."""
        assert db.get_cushion(rep.id, Lane.SUB1K) == CushionState()

        assert db.compare_and_set_cushion(rep.id, Lane.SUB1K, 0, CushionState(2, 1, 2))
        assert not db.compare_and_set_cushion(rep.id, Lane.SUB1K, 0, CushionState(1, 1, 2))

        state = db.get_cushion(rep.id, Lane.SUB1K)
        assert (state.current, state.version) == (2, 1)
        assert db.compare_and_set_cushion(rep.id, Lane.SUB1K, 1, CushionState(1, 1, 2))
        assert db.get_cushions()[0][2].current == 1


class TestMarks:
    """Tests for replacement mark storage."""

    def test_add_twice_is_conflict(self, db):
        """Test that a second insert for the same lead is a conflict."""
        mark = ReplacementMark(lead_id="L1", rep_id="A", lane=Lane.SUB1K)
        db.add_mark(mark)
        with pytest.raises(ConcurrentModification):
            db.add_mark(mark)

    def test_versioned_update_and_delete(self, db):
        """Test version-checked close and delete."""
        mark = db.add_mark(ReplacementMark(lead_id="L1", rep_id="A", lane=Lane.SUB1K))
        mark.replaced_by_lead_id = "L2"
        mark.replaced_at = datetime.now()

        assert db.compare_and_set_mark(mark, 0)
        assert not db.compare_and_set_mark(mark, 0)
        assert db.get_mark_by_replacement("L2").lead_id == "L1"

        assert not db.delete_mark("L1", 0)
        assert db.delete_mark("L1", 1)
        assert db.get_mark("L1") is None


class TestHitEvents:
    """Tests for the ledger over SQLite."""

    def test_ledger_over_database(self, db):
        """Test that a HitLedger can use the database as its store."""
        ledger = HitLedger(db)
        ledger.append("A", Lane.SUB1K, MARCH, HitKind.LEAD_ADD, lead_id="L1")
        ledger.append("A", Lane.SUB1K, MARCH, HitKind.MARK, -1, lead_id="L1")
        ledger.append("A", Lane.OVER1K, MARCH, HitKind.SKIP_ADD)

        assert ledger.net_for("A", Lane.SUB1K, MARCH) == 0
        assert ledger.net_for("A", Lane.OVER1K, MARCH) == 1
        assert [e.kind for e in ledger.events_for("A", Lane.SUB1K, MARCH)] == [HitKind.LEAD_ADD, HitKind.MARK]

    def test_append_is_idempotent_by_id(self, db):
        """Test that writing the same event twice books it once."""
        event = HitLedger(db).build("A", Lane.SUB1K, MARCH, HitKind.SKIP_ADD)
        db.add_hit_event(event)
        db.add_hit_event(event)
        assert len(db.get_hit_events(rep_id="A")) == 1

    def test_pending_queue(self, db):
        """Test queuing, listing and clearing pending events."""
        event = HitLedger(db).build("A", Lane.OVER1K, MARCH, HitKind.SKIP_ADD, entry_id="E1")
        db.add_pending_hit(event, "ledger unavailable")
        db.add_pending_hit(event, "still unavailable")

        pending = db.get_pending_hits()
        assert [(e.id, e.lane, e.entry_id) for e in pending] == [(event.id, Lane.OVER1K, "E1")]
        assert db.delete_pending_hit(event.id)
        assert db.get_pending_hits() == []


class TestReservations:
    """Tests for reservations."""

    def test_one_live_reservation_per_rep(self, db, rep):
        """Test that a second operator is refused while the hold lasts."""
        now = datetime(2025, 3, 10, 9, 0)
        hold = db.add_reservation(Reservation(
            rep_id=rep.id, lane=Lane.SUB1K, reserved_by="ops1", expires_at=now + timedelta(minutes=10),
        ), now=now)

        with pytest.raises(ReservationConflict):
            db.add_reservation(Reservation(
                rep_id=rep.id, lane=Lane.SUB1K, reserved_by="ops2", expires_at=now + timedelta(minutes=10),
            ), now=now)

        # Same operator extends
        extended = db.add_reservation(Reservation(
            rep_id=rep.id, lane=Lane.SUB1K, reserved_by="ops1", expires_at=now + timedelta(minutes=20),
        ), now=now)
        assert extended.id == hold.id
        assert extended.expires_at == now + timedelta(minutes=20)

    def test_expired_reservation_does_not_block(self, db, rep):
        """Test that expiry frees the rep."""
        now = datetime(2025, 3, 10, 9, 0)
        db.add_reservation(Reservation(
            rep_id=rep.id, lane=Lane.SUB1K, reserved_by="ops1", expires_at=now + timedelta(minutes=10),
        ), now=now)
        later = now + timedelta(minutes=11)
        db.add_reservation(Reservation(
            rep_id=rep.id, lane=Lane.SUB1K, reserved_by="ops2", expires_at=later + timedelta(minutes=10),
        ), now=later)
        assert [r.reserved_by for r in db.get_active_reservations(now=later)] == ["ops2"]

    def test_release(self, db, rep):
        """Test releasing by id and by rep/lane."""
        first = db.add_reservation(Reservation(
            rep_id=rep.id, lane=Lane.SUB1K, reserved_by="ops1",
            expires_at=datetime.now() + timedelta(minutes=10),
        ))
        assert db.release_reservation(first.id)
        assert not db.release_reservation(first.id)

        db.add_reservation(Reservation(
            rep_id=rep.id, lane=Lane.SUB1K, reserved_by="ops1",
            expires_at=datetime.now() + timedelta(minutes=10),
        ))
        assert db.release_reservations_for(rep.id, Lane.SUB1K) == 1
        assert db.get_active_reservations() == []


class TestAuditActions:
    """Tests for the audit table."""

    def test_newest_first(self, db):
        """Test audit actions come back newest first."""
        db.add_audit_action(AuditEntry(action=AuditAction.CREATE_REP, rep_id="A",
                                       created_at=datetime(2025, 3, 1)))
        db.add_audit_action(AuditEntry(action=AuditAction.ADD_NL, rep_id="A", lane="sub1k",
                                       hit_value_change=1, details={"note": "x"},
                                       created_at=datetime(2025, 3, 2)))

        actions = db.get_audit_actions(limit=10, rep_id="A")
        assert [a.action for a in actions] == [AuditAction.ADD_NL, AuditAction.CREATE_REP]
        assert actions[0].details == {"note": "x"}
