"""
TriageService: records a triage assessment and syncs it upstream.

Order of effects:
1. validate input (no writes)
2. ensure the FHIR Patient, then create the triage Encounter and its
   chief-complaint / vital-sign Observations through the linker
3. persist the immutable TriageRecord
4. only then flip the queue entry to 'triaged'

A failure in steps 2-3 leaves the queue untouched.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session as DbSession

from clinicsync.db.postgres import get_db_session
from clinicsync.errors import ValidationError
from clinicsync.fhir import terminology as term
from clinicsync.fhir.client import get_fhir_client
from clinicsync.fhir.linker import ReferenceLinker
from clinicsync.fhir.mappers import (
    map_chief_complaint_observation,
    map_triage_encounter,
    map_vital_observations,
)
from clinicsync.fhir.references import ExternalReference
from clinicsync.models import QueueEntry, TriageRecord
from clinicsync.services.event_log import EventLogService
from clinicsync.services.patient_sync import ensure_patient_reference, load_patient
from clinicsync.services.queue_service import QueueService, validate_triage_level


@dataclass
class TriageOutcome:
    record: TriageRecord
    encounter: ExternalReference
    observations: List[ExternalReference]
    queue_entry: QueueEntry

    def to_dict(self) -> Dict[str, Any]:
        return {
            "triage": self.record.to_dict(),
            "encounterId": self.encounter.id,
            "observationIds": [ref.id for ref in self.observations],
            "queue": self.queue_entry.to_dict(),
        }


def clean_vital_signs(vital_signs: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep recognised numeric readings; reject non-numeric values."""
    cleaned = {}
    for key, value in (vital_signs or {}).items():
        if value is None or value == "":
            continue
        if key not in term.VITAL_SIGNS:
            raise ValidationError(f"Unknown vital sign '{key}'")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"Vital sign '{key}' must be numeric")
        cleaned[key] = value
    return cleaned


class TriageService:

    def __init__(
        self,
        db_session: Optional[DbSession] = None,
        repository=None,
        queue: Optional[QueueService] = None,
        clock: Optional[Callable[[], datetime]] = None,
        events: Optional[EventLogService] = None,
    ):
        self._db = db_session
        self.repository = repository or get_fhir_client()
        self.linker = ReferenceLinker(self.repository)
        self.clock = clock or datetime.utcnow
        self.queue = queue or QueueService(db_session, clock=self.clock)
        self.events = events or EventLogService(db_session)
        self.logger = logging.getLogger("service.TriageService")

    @property
    def db(self) -> DbSession:
        if self._db is None:
            return get_db_session()
        return self._db

    def record_triage(
        self,
        patient_id: str,
        triage_level: int,
        chief_complaint: str,
        vital_signs: Optional[Dict[str, Any]] = None,
        triage_notes: Optional[str] = None,
        red_flags: Optional[List[str]] = None,
        triage_by: Optional[str] = None,
    ) -> TriageOutcome:
        level = validate_triage_level(triage_level)
        complaint = (chief_complaint or "").strip()
        if not complaint:
            raise ValidationError("chiefComplaint is required")
        vitals = clean_vital_signs(vital_signs)
        flags = [f.strip() for f in red_flags or [] if isinstance(f, str) and f.strip()]

        patient = load_patient(patient_id, self.db)
        recorded_at = self.clock()

        patient_ref = ensure_patient_reference(patient, self.linker, self.db)
        encounter = map_triage_encounter(
            patient_ref, level, complaint, recorded_at,
            vital_signs=vitals, triage_notes=triage_notes,
            triage_by=triage_by, red_flags=flags,
        )
        linked = self.linker.link_tree(encounter, [
            lambda enc: map_chief_complaint_observation(patient_ref, enc, complaint, recorded_at),
            lambda enc: map_vital_observations(patient_ref, enc, vitals, recorded_at),
        ])

        record = TriageRecord(
            patient_id=patient_id,
            triage_level=level,
            chief_complaint=complaint,
            vital_signs=vitals,
            triage_notes=triage_notes,
            red_flags=flags,
            triage_by=triage_by,
            encounter_id=linked.root.id,
            recorded_at=recorded_at,
        )
        self.db.add(record)
        self.events.append_event(
            EventLogService.TRIAGE_RECORDED,
            patient_id=patient_id,
            actor=triage_by,
            payload={"triage_level": level, "encounter_id": linked.root.id, "red_flags": len(flags)},
            commit=False,
        )
        self.db.commit()

        entry = self.queue.apply_triage(patient_id, level, complaint, encounter_id=linked.root.id)
        self.logger.info(f"Triaged {patient_id} at level {level} ({linked.root.reference})")
        return TriageOutcome(record=record, encounter=linked.root, observations=linked.dependents, queue_entry=entry)

    def latest_triage(self, patient_id: str) -> Optional[TriageRecord]:
        return (
            self.db.query(TriageRecord)
            .filter(TriageRecord.patient_id == patient_id)
            .order_by(TriageRecord.recorded_at.desc())
            .first()
        )


def get_triage_service() -> TriageService:
    return TriageService()
