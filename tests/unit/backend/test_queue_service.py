"""
Unit tests for QueueService.

Tests the core logic for:
- Board ordering by (triage level, arrival)
- Enqueue validation
- The patient-flow state machine
- Projection side effects
"""

import threading

import pytest
from datetime import datetime, timedelta
from unittest.mock import MagicMock

from clinicsync.errors import InvalidTransition, NotFound, ValidationError
from clinicsync.models import EventLog, QueueEntry, QueueStatus, TriageRecord
from clinicsync.services.queue_service import QueueService, _queue_lock, validate_triage_level


@pytest.fixture
def projection():
    return MagicMock()


@pytest.fixture
def queue(db_session, clock, projection):
    return QueueService(db_session, clock=clock, projection=projection)


# =============================================================================
# Test validate_triage_level
# =============================================================================

class TestValidateTriageLevel:

    def test_accepts_levels_one_to_five(self):
        assert [validate_triage_level(n) for n in range(1, 6)] == [1, 2, 3, 4, 5]

    def test_accepts_numeric_strings(self):
        assert validate_triage_level("2") == 2

    @pytest.mark.parametrize("bad", [0, 6, -1, "urgent", None, True])
    def test_rejects_out_of_range_and_non_integers(self, bad):
        with pytest.raises(ValidationError):
            validate_triage_level(bad)


# =============================================================================
# Test list ordering
# =============================================================================

class TestQueueOrdering:

    def _add(self, db_session, patient_id, level, added_at):
        entry = QueueEntry(
            patient_id=patient_id,
            triage_level=level,
            status=QueueStatus.WAITING,
            added_at=added_at,
            updated_at=added_at,
        )
        db_session.add(entry)
        db_session.commit()
        return entry

    def test_more_urgent_patient_goes_first_even_if_later(self, db_session, make_patient, queue):
        """A level-1 arrival at t=50 ranks above a level-3 arrival at t=100."""
        make_patient("P1")
        make_patient("P2")
        base = datetime(2026, 3, 1, 9, 0, 0)
        self._add(db_session, "P1", 3, base + timedelta(seconds=100))
        self._add(db_session, "P2", 1, base + timedelta(seconds=50))

        assert [e.patient_id for e in queue.list()] == ["P2", "P1"]

    def test_same_level_orders_by_arrival(self, db_session, make_patient, queue):
        for pid in ("A", "B", "C"):
            make_patient(pid)
        base = datetime(2026, 3, 1, 9, 0, 0)
        self._add(db_session, "B", 3, base + timedelta(minutes=2))
        self._add(db_session, "C", 3, base + timedelta(minutes=3))
        self._add(db_session, "A", 3, base + timedelta(minutes=1))

        assert [e.patient_id for e in queue.list()] == ["A", "B", "C"]

    def test_identical_keys_keep_insertion_order(self, db_session, make_patient, queue):
        for pid in ("first", "second", "third"):
            make_patient(pid)
        same = datetime(2026, 3, 1, 9, 0, 0)
        for pid in ("first", "second", "third"):
            self._add(db_session, pid, 2, same)

        assert [e.patient_id for e in queue.list()] == ["first", "second", "third"]

    def test_list_is_non_decreasing(self, make_patient, queue):
        levels = [4, 2, 5, 1, 3, 2, 1]
        for i, level in enumerate(levels):
            make_patient(f"p{i}")
            queue.enqueue(f"p{i}", level)

        keys = [(e.triage_level, e.added_at) for e in queue.list()]
        assert keys == sorted(keys)

    def test_closed_entries_hidden_unless_requested(self, make_patient, queue):
        make_patient("p1")
        make_patient("p2")
        queue.enqueue("p1", 3)
        queue.enqueue("p2", 3)
        queue.remove("p1")

        assert [e.patient_id for e in queue.list()] == ["p2"]
        assert {e.patient_id for e in queue.list(include_closed=True)} == {"p1", "p2"}


# =============================================================================
# Test enqueue
# =============================================================================

class TestEnqueue:

    def test_new_entry_is_waiting(self, make_patient, queue):
        make_patient("p1")
        entry = queue.enqueue("p1", 3, "Fever")

        assert entry.status == QueueStatus.WAITING
        assert entry.triage_level == 3
        assert entry.chief_complaint == "Fever"

    def test_unknown_patient_raises_not_found(self, db_session, queue):
        with pytest.raises(NotFound):
            queue.enqueue("ghost", 3)
        assert db_session.query(QueueEntry).count() == 0

    def test_invalid_level_is_rejected_before_any_write(self, db_session, make_patient, queue):
        make_patient("p1")
        with pytest.raises(ValidationError):
            queue.enqueue("p1", 9)
        assert db_session.query(QueueEntry).count() == 0

    def test_duplicate_active_entry_rejected(self, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)
        with pytest.raises(ValidationError):
            queue.enqueue("p1", 2)

    def test_can_requeue_after_completion(self, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)
        queue.remove("p1")

        entry = queue.enqueue("p1", 2)
        assert entry.status == QueueStatus.WAITING

    def test_default_level_comes_from_latest_triage(self, db_session, make_patient, queue):
        make_patient("p1")
        db_session.add(TriageRecord(
            patient_id="p1", triage_level=2, chief_complaint="Chest pain",
            recorded_at=datetime(2026, 3, 1, 8, 0, 0),
        ))
        db_session.commit()

        assert queue.enqueue("p1").triage_level == 2

    def test_default_level_without_triage_is_five(self, make_patient, queue):
        make_patient("p1")
        assert queue.enqueue("p1").triage_level == 5

    def test_audit_event_written(self, db_session, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)

        events = db_session.query(EventLog).all()
        assert [e.event_type for e in events] == ["Queue.Enqueued"]
        assert events[0].payload_json == {"triage_level": 3}


# =============================================================================
# Test update_status
# =============================================================================

class TestUpdateStatus:

    def test_unknown_patient_raises_not_found(self, queue):
        with pytest.raises(NotFound):
            queue.update_status("unknown-patient", "triaged")

    def test_unknown_status_raises_validation_error(self, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)
        with pytest.raises(ValidationError):
            queue.update_status("p1", "discharged")

    def test_full_happy_path(self, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)
        for status in (QueueStatus.TRIAGED, QueueStatus.IN_CONSULTATION, QueueStatus.COMPLETED):
            assert queue.update_status("p1", status).status == status

    def test_skipping_a_step_is_invalid(self, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)
        with pytest.raises(InvalidTransition) as exc:
            queue.update_status("p1", QueueStatus.COMPLETED)
        assert exc.value.status_code == 409

    def test_terminal_status_cannot_be_left(self, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)
        queue.remove("p1")
        with pytest.raises(InvalidTransition):
            queue.update_status("p1", QueueStatus.WAITING)

    def test_same_status_is_a_no_op(self, db_session, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)
        assert queue.update_status("p1", QueueStatus.WAITING).status == QueueStatus.WAITING
        assert db_session.query(EventLog).filter(EventLog.event_type == "Queue.StatusChanged").count() == 0

    def test_remove_twice_is_invalid(self, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)
        queue.remove("p1")
        with pytest.raises(InvalidTransition):
            queue.remove("p1")

    def test_completed_cannot_be_completed_again(self, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)
        for status in (QueueStatus.TRIAGED, QueueStatus.IN_CONSULTATION, QueueStatus.COMPLETED):
            queue.update_status("p1", status)
        with pytest.raises(InvalidTransition):
            queue.update_status("p1", QueueStatus.COMPLETED)

    def test_completed_entry_cannot_be_removed(self, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)
        for status in (QueueStatus.TRIAGED, QueueStatus.IN_CONSULTATION, QueueStatus.COMPLETED):
            queue.update_status("p1", status)
        with pytest.raises(InvalidTransition) as exc:
            queue.remove("p1")
        assert exc.value.status_code == 409

    def test_updated_at_advances(self, make_patient, queue):
        make_patient("p1")
        entry = queue.enqueue("p1", 3)
        added_at = entry.added_at
        queue.update_status("p1", QueueStatus.TRIAGED)
        assert entry.updated_at > added_at


# =============================================================================
# Test apply_triage
# =============================================================================

class TestApplyTriage:

    def test_waiting_entry_becomes_triaged(self, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 5)
        entry = queue.apply_triage("p1", 2, "Chest pain", encounter_id="Encounter-1")

        assert entry.status == QueueStatus.TRIAGED
        assert entry.triage_level == 2
        assert entry.encounter_id == "Encounter-1"

    def test_enqueues_patient_not_yet_in_queue(self, make_patient, queue):
        make_patient("p1")
        entry = queue.apply_triage("p1", 3, "Cough")
        assert entry.status == QueueStatus.TRIAGED
        assert queue.list()[0].patient_id == "p1"

    def test_in_consultation_keeps_status(self, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)
        queue.update_status("p1", QueueStatus.TRIAGED)
        queue.update_status("p1", QueueStatus.IN_CONSULTATION)

        entry = queue.apply_triage("p1", 1, "Deteriorating")
        assert entry.status == QueueStatus.IN_CONSULTATION
        assert entry.triage_level == 1


# =============================================================================
# Test concurrent access
# =============================================================================

class TestConcurrency:

    def test_list_during_enqueues_sees_only_complete_entries(self, make_patient, queue):
        patient_ids = [f"p{i}" for i in range(12)]
        for pid in patient_ids:
            make_patient(pid)

        errors = []
        snapshots = []
        done = threading.Event()

        def writer(pid, level):
            try:
                queue.enqueue(pid, level)
            except Exception as exc:
                errors.append(exc)

        def reader():
            try:
                while not done.is_set():
                    # Commits expire loaded rows; read them under the queue lock
                    with _queue_lock:
                        snapshots.append([(e.patient_id, e.status, e.triage_level) for e in queue.list()])
            except Exception as exc:
                errors.append(exc)

        reader_thread = threading.Thread(target=reader)
        reader_thread.start()
        writers = [
            threading.Thread(target=writer, args=(pid, i % 5 + 1))
            for i, pid in enumerate(patient_ids)
        ]
        for t in writers:
            t.start()
        for t in writers:
            t.join()
        done.set()
        reader_thread.join()

        assert errors == []
        for snapshot in snapshots:
            for patient_id, status, level in snapshot:
                assert status == QueueStatus.WAITING
                assert 1 <= level <= 5
        assert sorted(e.patient_id for e in queue.list()) == sorted(patient_ids)

    def test_concurrent_removes_only_one_succeeds(self, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 3)

        results = []

        def remove():
            try:
                queue.remove("p1")
                results.append("ok")
            except InvalidTransition:
                results.append("rejected")

        threads = [threading.Thread(target=remove) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == ["ok", "rejected", "rejected", "rejected"]


# =============================================================================
# Test projection
# =============================================================================

class TestProjection:

    def test_active_entry_is_upserted(self, make_patient, queue, projection):
        make_patient("p1")
        queue.enqueue("p1", 3)

        projection.update_queue_entry.assert_called_once()
        payload = projection.update_queue_entry.call_args[0][0]
        assert payload["patientId"] == "p1"
        assert payload["status"] == "waiting"

    def test_terminal_entry_is_removed_from_board(self, make_patient, queue, projection):
        make_patient("p1")
        queue.enqueue("p1", 3)
        queue.remove("p1")
        projection.remove_queue_entry.assert_called_once_with("p1")
