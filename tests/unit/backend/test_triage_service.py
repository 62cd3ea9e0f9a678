"""
Unit tests for TriageService.
"""

import pytest
from unittest.mock import MagicMock

from clinicsync.errors import NotFound, UpstreamFailure, ValidationError
from clinicsync.fhir.mappers import parse_triage_extension
from clinicsync.models import EventLog, QueueEntry, QueueStatus, TriageRecord
from clinicsync.services.queue_service import QueueService
from clinicsync.services.triage_service import TriageService, clean_vital_signs


@pytest.fixture
def queue(db_session, clock):
    return QueueService(db_session, clock=clock, projection=MagicMock())


@pytest.fixture
def triage(db_session, repository, queue, clock):
    return TriageService(db_session, repository=repository, queue=queue, clock=clock)


# =============================================================================
# Test clean_vital_signs
# =============================================================================

class TestCleanVitalSigns:

    def test_drops_blank_readings(self):
        assert clean_vital_signs({"heartRate": 80, "temperature": None, "weight": ""}) == {"heartRate": 80}

    def test_rejects_unknown_keys(self):
        with pytest.raises(ValidationError):
            clean_vital_signs({"mood": 3})

    def test_rejects_non_numeric(self):
        with pytest.raises(ValidationError):
            clean_vital_signs({"heartRate": "fast"})


# =============================================================================
# Test record_triage
# =============================================================================

class TestRecordTriage:

    def test_creates_encounter_and_observations(self, triage, make_patient, repository):
        make_patient("p1")
        outcome = triage.record_triage(
            "p1", 2, "Chest pain",
            vital_signs={"heartRate": 112, "temperature": 37.2},
            red_flags=["diaphoresis"],
            triage_by="Nurse Aini",
        )

        encounter = repository.read("Encounter", outcome.encounter.id)
        ext = parse_triage_extension(encounter)
        assert encounter["status"] == "triaged"
        assert ext["triageLevel"] == 2
        assert ext["redFlags"] == ["diaphoresis"]

        # chief complaint + two vitals
        assert len(outcome.observations) == 3
        for ref in outcome.observations:
            obs = repository.read("Observation", ref.id)
            assert obs["encounter"] == {"reference": outcome.encounter.reference}

    def test_queue_entry_becomes_triaged(self, triage, make_patient, queue):
        make_patient("p1")
        queue.enqueue("p1", 5)

        outcome = triage.record_triage("p1", 3, "Fever")

        assert outcome.queue_entry.status == QueueStatus.TRIAGED
        assert outcome.queue_entry.triage_level == 3
        assert outcome.queue_entry.encounter_id == outcome.encounter.id

    def test_record_is_persisted(self, triage, make_patient, db_session):
        make_patient("p1")
        outcome = triage.record_triage("p1", 4, "Sprained ankle", vital_signs={"painScore": 6})

        record = db_session.query(TriageRecord).one()
        assert record.encounter_id == outcome.encounter.id
        assert record.vital_signs == {"painScore": 6}
        assert triage.latest_triage("p1").triage_id == record.triage_id

    def test_to_dict_exposes_encounter_id(self, triage, make_patient):
        make_patient("p1")
        data = triage.record_triage("p1", 3, "Cough").to_dict()
        assert data["encounterId"].startswith("Encounter-")
        assert data["queue"]["status"] == QueueStatus.TRIAGED

    def test_invalid_input_writes_nothing(self, triage, make_patient, repository, db_session):
        make_patient("p1")
        with pytest.raises(ValidationError):
            triage.record_triage("p1", 3, "   ")
        with pytest.raises(ValidationError):
            triage.record_triage("p1", 0, "Fever")

        assert repository.calls == []
        assert db_session.query(TriageRecord).count() == 0

    def test_unknown_patient(self, triage, repository):
        with pytest.raises(NotFound):
            triage.record_triage("ghost", 3, "Fever")
        assert repository.calls == []


# =============================================================================
# Test failure isolation
# =============================================================================

class TestTriageFailure:

    def test_encounter_failure_leaves_queue_untouched(self, triage, make_patient, queue, repository, db_session):
        make_patient("p1")
        queue.enqueue("p1", 5)
        repository.fail_on("Encounter")

        with pytest.raises(UpstreamFailure):
            triage.record_triage("p1", 2, "Chest pain")

        entry = db_session.query(QueueEntry).filter(QueueEntry.patient_id == "p1").one()
        assert entry.status == QueueStatus.WAITING
        assert entry.triage_level == 5
        assert db_session.query(TriageRecord).count() == 0

    def test_observation_failure_reports_committed_encounter(self, triage, make_patient, queue, repository, db_session):
        make_patient("p1")
        queue.enqueue("p1", 5)
        repository.fail_on("Observation")

        with pytest.raises(UpstreamFailure) as exc:
            triage.record_triage("p1", 2, "Chest pain")

        assert [ref.resource_type for ref in exc.value.committed] == ["Encounter"]
        assert queue.active_entry("p1").status == QueueStatus.WAITING
        assert db_session.query(EventLog).filter(EventLog.event_type == "Triage.Recorded").count() == 0
