"""
Patient resolution between the primary store and the FHIR repository.

A clinic patient gets an upstream Patient resource the first time any
FHIR work is done for them; the id is stored back on the row so later
resources reference the same Patient.
"""

import logging
import threading
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session as DbSession

from clinicsync.db.postgres import get_db_session
from clinicsync.errors import NotFound
from clinicsync.fhir.linker import ReferenceLinker
from clinicsync.fhir.mappers import map_patient
from clinicsync.fhir.references import ExternalReference, reference_id
from clinicsync.models import Patient

logger = logging.getLogger("service.PatientSync")

_patient_lock = threading.Lock()


def load_patient(patient_id: str, db: Optional[DbSession] = None) -> Patient:
    """Fetch a clinic patient or raise NotFound."""
    db = db or get_db_session()
    patient = db.query(Patient).filter(Patient.patient_id == patient_id).first()
    if patient is None:
        raise NotFound(f"Patient {patient_id} not found")
    return patient


def patient_reference(patient: Patient) -> Optional[ExternalReference]:
    if not patient.fhir_patient_id:
        return None
    return ExternalReference("Patient", patient.fhir_patient_id)


def belongs_to_patient(resource: Dict[str, Any], patient: Patient) -> bool:
    """
    True when the resource's subject is this clinic patient's FHIR Patient.

    A patient never synced upstream owns no resources yet, so nothing
    belongs to them.
    """
    if not patient.fhir_patient_id:
        return False
    return reference_id(resource.get("subject"), "Patient") == patient.fhir_patient_id


def ensure_patient_reference(
    patient: Patient,
    linker: ReferenceLinker,
    db: Optional[DbSession] = None,
) -> ExternalReference:
    """Return the patient's FHIR reference, creating the Patient resource if needed."""
    existing = patient_reference(patient)
    if existing:
        return existing

    db = db or get_db_session()
    with _patient_lock:
        db.refresh(patient)
        if patient.fhir_patient_id:
            return patient_reference(patient)

        ref = linker.create(map_patient(patient))
        patient.fhir_patient_id = ref.id
        db.commit()

    logger.info(f"Linked patient {patient.patient_id} to {ref.reference}")
    return ref
