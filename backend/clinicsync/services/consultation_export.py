"""
Consultation export: one finished consultation as a linked FHIR tree.

    Patient -> Encounter -> Condition
                         -> MedicationRequest (one per prescription)
                         -> ServiceRequest (one per procedure)
                         -> Observation (chief complaint)

A consultation is exported once; its Encounter id is stored on the row
and returned on repeat calls.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session as DbSession

from clinicsync.db.postgres import get_db_session
from clinicsync.errors import NotFound, ValidationError
from clinicsync.fhir.client import get_fhir_client
from clinicsync.fhir.linker import ReferenceLinker
from clinicsync.fhir.mappers import (
    map_chief_complaint_observation,
    map_condition,
    map_consultation_encounter,
    map_medication_request,
    map_procedure_request,
)
from clinicsync.fhir.references import ExternalReference
from clinicsync.models import Consultation
from clinicsync.services.event_log import EventLogService
from clinicsync.services.patient_sync import ensure_patient_reference, load_patient


@dataclass
class ExportResult:
    encounter: ExternalReference
    resources: List[ExternalReference] = field(default_factory=list)
    already_exported: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "encounterId": self.encounter.id,
            "resources": [ref.reference for ref in self.resources],
            "alreadyExported": self.already_exported,
        }


class ConsultationExporter:

    def __init__(
        self,
        db_session: Optional[DbSession] = None,
        repository=None,
        events: Optional[EventLogService] = None,
    ):
        self._db = db_session
        self.repository = repository or get_fhir_client()
        self.linker = ReferenceLinker(self.repository)
        self.events = events or EventLogService(db_session)
        self.logger = logging.getLogger("service.ConsultationExporter")

    @property
    def db(self) -> DbSession:
        if self._db is None:
            return get_db_session()
        return self._db

    def export(self, consultation_id: str) -> ExportResult:
        if not consultation_id:
            raise ValidationError("consultationId is required")

        consultation = (
            self.db.query(Consultation)
            .filter(Consultation.consultation_id == consultation_id)
            .first()
        )
        if consultation is None:
            raise NotFound(f"Consultation {consultation_id} not found")

        if consultation.fhir_encounter_id:
            encounter = ExternalReference("Encounter", consultation.fhir_encounter_id)
            return ExportResult(encounter=encounter, resources=[encounter], already_exported=True)

        patient = load_patient(consultation.patient_id, self.db)
        patient_ref = ensure_patient_reference(patient, self.linker, self.db)
        at: datetime = consultation.consulted_at

        dependents = []
        if consultation.diagnosis:
            dependents.append(lambda enc: map_condition(
                patient_ref, enc, consultation.diagnosis, at, consultation.diagnosis_code,
            ))
        dependents.append(lambda enc: [
            map_medication_request(patient_ref, enc, rx, at) for rx in consultation.prescriptions or []
        ])
        dependents.append(lambda enc: [
            map_procedure_request(patient_ref, enc, proc, at) for proc in consultation.procedures or []
        ])
        if consultation.chief_complaint:
            dependents.append(lambda enc: map_chief_complaint_observation(
                patient_ref, enc, consultation.chief_complaint, at,
            ))

        linked = self.linker.link_tree(
            map_consultation_encounter(patient_ref, consultation.consultation_id, at, patient.full_name),
            dependents,
        )

        consultation.fhir_encounter_id = linked.root.id
        self.events.append_event(
            EventLogService.CONSULTATION_EXPORTED,
            patient_id=consultation.patient_id,
            actor=consultation.doctor_name,
            payload={"consultation_id": consultation_id, "resources": [r.reference for r in linked.all]},
            commit=False,
        )
        self.db.commit()

        self.logger.info(f"Exported consultation {consultation_id} as {linked.root.reference} ({len(linked.all)} resources)")
        return ExportResult(encounter=linked.root, resources=linked.all)


def get_consultation_exporter() -> ConsultationExporter:
    return ConsultationExporter()
