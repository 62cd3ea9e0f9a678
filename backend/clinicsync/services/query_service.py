"""
QueryGateway: read side over the FHIR repository.

Callers address patients by their clinic patient id; the gateway resolves
that to the linked FHIR Patient. A patient that was never synced simply
has no FHIR resources, so every query for them is empty rather than an
error.

Merged listings are ordered by (creation time, resource kind, id).
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session as DbSession

from clinicsync.db.postgres import get_db_session
from clinicsync.errors import NotFound, ValidationError
from clinicsync.fhir.client import get_fhir_client
from clinicsync.fhir.mappers import (
    creation_time,
    is_radiology_report,
    order_category,
    parse_document,
    parse_referral,
    summarize_imaging_study,
    summarize_lab_report,
)
from clinicsync.fhir.references import reference_id
from clinicsync.models import Patient
from clinicsync.utils.tasks import run_indexed

Resource = Dict[str, Any]

PATIENT_KINDS = (
    "Encounter",
    "Observation",
    "Condition",
    "MedicationRequest",
    "ServiceRequest",
    "DocumentReference",
    "DiagnosticReport",
    "ImagingStudy",
)

ENCOUNTER_KINDS = tuple(k for k in PATIENT_KINDS if k != "Encounter")


def resource_sort_key(resource: Resource):
    return (creation_time(resource), resource.get("resourceType") or "", resource.get("id") or "")


class QueryGateway:

    def __init__(self, db_session: Optional[DbSession] = None, repository=None):
        self._db = db_session
        self.repository = repository or get_fhir_client()
        self.logger = logging.getLogger("service.QueryGateway")

    @property
    def db(self) -> DbSession:
        if self._db is None:
            return get_db_session()
        return self._db

    def _patient_reference(self, patient_id: str) -> Optional[str]:
        """'Patient/<fhir id>' for a clinic patient, None if unknown or never synced."""
        if not patient_id:
            return None
        patient = self.db.query(Patient).filter(Patient.patient_id == patient_id).first()
        if patient is None or not patient.fhir_patient_id:
            return None
        return f"Patient/{patient.fhir_patient_id}"

    def _search_all(self, kinds: Sequence[str], params: Dict[str, Any]) -> List[Resource]:
        outcomes = run_indexed(lambda i, kind: self.repository.search(kind, params), kinds)
        merged: List[Resource] = []
        for outcome in outcomes:
            if not outcome.ok:
                raise outcome.error
            merged.extend(outcome.value)
        return sorted(merged, key=resource_sort_key)

    def _scope(self, patient_id: Optional[str], encounter_id: Optional[str]) -> Optional[Dict[str, str]]:
        if encounter_id:
            return {"encounter": f"Encounter/{encounter_id}"}
        if patient_id:
            ref = self._patient_reference(patient_id)
            return {"subject": ref} if ref else None
        raise ValidationError("patientId or encounterId is required")

    # -------------------------------------------------------------------------
    # Merged listings
    # -------------------------------------------------------------------------

    def by_patient(self, patient_id: str) -> List[Resource]:
        ref = self._patient_reference(patient_id)
        if ref is None:
            return []
        return self._search_all(PATIENT_KINDS, {"subject": ref})

    def by_encounter(self, encounter_id: str) -> List[Resource]:
        if not encounter_id:
            return []
        return self._search_all(ENCOUNTER_KINDS, {"encounter": f"Encounter/{encounter_id}"})

    # -------------------------------------------------------------------------
    # Typed views
    # -------------------------------------------------------------------------

    def lab_reports(self, patient_id: Optional[str] = None, encounter_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = self._scope(patient_id, encounter_id)
        if params is None:
            return []

        reports = [r for r in self.repository.search("DiagnosticReport", params) if not is_radiology_report(r)]
        summaries = []
        for report in sorted(reports, key=resource_sort_key):
            observations = [
                self.repository.read("Observation", obs_id)
                for obs_id in (reference_id(ref, "Observation") for ref in report.get("result") or [])
                if obs_id
            ]
            summaries.append(summarize_lab_report(report, observations))
        return summaries

    def imaging_studies(self, patient_id: Optional[str] = None, encounter_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = self._scope(patient_id, encounter_id)
        if params is None:
            return []

        studies = self.repository.search("ImagingStudy", params)
        reports_by_study: Dict[str, Resource] = {}
        for report in sorted(self.repository.search("DiagnosticReport", params), key=resource_sort_key):
            if not is_radiology_report(report):
                continue
            for ref in report.get("imagingStudy") or []:
                study_id = reference_id(ref, "ImagingStudy")
                if study_id:
                    # Latest report wins
                    reports_by_study[study_id] = report

        return [
            summarize_imaging_study(study, reports_by_study.get(study.get("id")))
            for study in sorted(studies, key=resource_sort_key)
        ]

    def referrals_for_patient(self, patient_id: str) -> List[Dict[str, Any]]:
        ref = self._patient_reference(patient_id)
        if ref is None:
            return []
        requests = self.repository.search("ServiceRequest", {"subject": ref})
        return [
            parse_referral(r)
            for r in sorted(requests, key=resource_sort_key)
            if order_category(r) == "referral"
        ]

    def get_referral(self, referral_id: str) -> Dict[str, Any]:
        resource = self.repository.read("ServiceRequest", referral_id)
        if order_category(resource) != "referral":
            raise NotFound(f"Referral {referral_id} not found")
        return parse_referral(resource)

    def documents_for_patient(self, patient_id: str) -> List[Dict[str, Any]]:
        ref = self._patient_reference(patient_id)
        if ref is None:
            return []
        documents = self.repository.search("DocumentReference", {"subject": ref})
        return [
            parse_document(d)
            for d in sorted(documents, key=resource_sort_key)
            if d.get("status") != "entered-in-error"
        ]


def get_query_gateway() -> QueryGateway:
    return QueryGateway()
