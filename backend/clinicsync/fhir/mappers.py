"""
Pure translation between clinic records and FHIR R4 resources.

Every map_* function is deterministic: timestamps come in as arguments,
nothing is read from the clock or the network. Optional elements that
are absent are omitted (never emitted as null or empty), and every
resource is structurally validated before it is returned, so a missing
required element surfaces here as a MappingError.

The summarize_* / parse_* functions are the inverse direction used by
the query layer.
"""

import base64
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from clinicsync.errors import MappingError, ValidationError
from clinicsync.fhir import terminology as term
from clinicsync.fhir.references import ExternalReference, reference_id
from clinicsync.fhir.terminology import Coding
from clinicsync.fhir.validation import require_valid
from clinicsync.utils.dates import EPOCH, to_datetime, to_iso

NRIC_SYSTEM = "https://ucc.emr/id/nric"
CLINIC_PATIENT_SYSTEM = "https://ucc.emr/id/patient"
CONSULTATION_SYSTEM = "https://ucc.emr/id/consultation"
ACCESSION_SYSTEM = "accession"


# =============================================================================
# Helpers
# =============================================================================

def prune(value: Any) -> Any:
    """Recursively drop None, empty strings, empty lists and empty dicts."""
    if isinstance(value, dict):
        cleaned = {k: prune(v) for k, v in value.items()}
        return {k: v for k, v in cleaned.items() if v not in (None, "", [], {})}
    if isinstance(value, list):
        cleaned = [prune(v) for v in value]
        return [v for v in cleaned if v not in (None, "", [], {})]
    return value


def codeable(coding: Optional[Coding] = None, text: Optional[str] = None) -> Dict[str, Any]:
    return prune({
        "coding": [coding.to_fhir()] if coding else None,
        "text": text or (coding.display if coding else None),
    })


def _ref(ref: Optional[ExternalReference], display: Optional[str] = None) -> Optional[Dict[str, Any]]:
    return ref.to_fhir(display) if ref else None


def _require_ref(ref: Optional[ExternalReference], field: str, kind: str) -> ExternalReference:
    if ref is None:
        raise MappingError(f"{kind}: {field} reference is required")
    return ref


def _requester(ordered_by: Optional[str]) -> Optional[Dict[str, Any]]:
    if not ordered_by:
        return None
    if ordered_by.startswith("Practitioner/"):
        return {"reference": ordered_by}
    return {"display": ordered_by}


def _finish(resource: Dict[str, Any]) -> Dict[str, Any]:
    return require_valid(prune(resource))


# =============================================================================
# Patient
# =============================================================================

def map_patient(patient) -> Dict[str, Any]:
    """Build a FHIR Patient from a clinic Patient record."""
    if not getattr(patient, "full_name", None):
        raise MappingError("Patient: name is required")

    parts = patient.full_name.split()
    identifiers = [{"system": CLINIC_PATIENT_SYSTEM, "value": patient.patient_id}]
    if patient.nric:
        identifiers.insert(0, {"system": NRIC_SYSTEM, "value": patient.nric})

    gender = (patient.gender or "unknown").lower()
    if gender not in ("male", "female", "other", "unknown"):
        gender = "unknown"

    return _finish({
        "resourceType": "Patient",
        "identifier": identifiers,
        "name": [{
            "text": patient.full_name,
            "family": parts[-1] if len(parts) > 1 else None,
            "given": parts[:-1] if len(parts) > 1 else None,
        }],
        "gender": gender,
        "birthDate": patient.date_of_birth.isoformat() if patient.date_of_birth else None,
        "telecom": [
            {"system": "phone", "value": patient.phone} if patient.phone else None,
            {"system": "email", "value": patient.email} if patient.email else None,
        ],
        "address": [{"text": patient.address}] if patient.address else None,
    })


# =============================================================================
# Triage
# =============================================================================

_DECIMAL_VITALS = {"temperature", "weight", "height"}


def build_triage_extension(
    triage_level: int,
    chief_complaint: str,
    recorded_at: datetime,
    vital_signs: Optional[Dict[str, Any]] = None,
    triage_notes: Optional[str] = None,
    triage_by: Optional[str] = None,
    red_flags: Optional[List[str]] = None,
    queue_status: str = "triaged",
) -> Dict[str, Any]:
    """The clinic's triage extension carried on the triage Encounter."""
    at = to_iso(recorded_at)
    vitals = []
    for key in term.VITAL_SIGNS:
        value = (vital_signs or {}).get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value_key = "valueDecimal" if key in _DECIMAL_VITALS else "valueInteger"
            vitals.append({"url": key, value_key: value})

    return prune({
        "url": term.TRIAGE_EXTENSION_URL,
        "extension": [
            {"url": "triageLevel", "valueInteger": triage_level},
            {"url": "chiefComplaint", "valueString": chief_complaint},
            {"url": "triageNotes", "valueString": triage_notes} if triage_notes else None,
            {"url": "triageBy", "valueString": triage_by} if triage_by else None,
            {"url": "triageAt", "valueDateTime": at},
            {"url": "isTriaged", "valueBoolean": True},
            {"url": "queueStatus", "valueString": queue_status},
            {"url": "queueAddedAt", "valueDateTime": at},
            {"url": "vitalSigns", "extension": vitals},
            {"url": "redFlags", "extension": [{"url": "flag", "valueString": f} for f in red_flags or [] if f]},
        ],
    })


def map_triage_encounter(
    patient_ref: ExternalReference,
    triage_level: int,
    chief_complaint: str,
    recorded_at: datetime,
    vital_signs: Optional[Dict[str, Any]] = None,
    triage_notes: Optional[str] = None,
    triage_by: Optional[str] = None,
    red_flags: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Encounter in status 'triaged' carrying the triage extension."""
    _require_ref(patient_ref, "subject", "Encounter")
    return _finish({
        "resourceType": "Encounter",
        "status": "triaged",
        "class": {"system": term.V3_ACT_CODE, "code": "AMB", "display": "ambulatory"},
        "subject": patient_ref.to_fhir(),
        "period": {"start": to_iso(recorded_at)},
        "priority": {
            "coding": [{
                "system": term.V3_ACT_PRIORITY,
                "code": str(triage_level),
                "display": f"Triage Level {triage_level}",
            }],
        },
        "extension": [build_triage_extension(
            triage_level, chief_complaint, recorded_at,
            vital_signs=vital_signs, triage_notes=triage_notes,
            triage_by=triage_by, red_flags=red_flags,
        )],
    })


def parse_triage_extension(encounter: Dict[str, Any]) -> Dict[str, Any]:
    """Read the triage extension back off an Encounter; {} when absent."""
    ext = next(
        (e for e in encounter.get("extension") or [] if e.get("url") == term.TRIAGE_EXTENSION_URL),
        None,
    )
    if not ext:
        return {}

    subs = {e.get("url"): e for e in ext.get("extension") or []}

    def _value(key):
        entry = subs.get(key) or {}
        for value_key in ("valueInteger", "valueDecimal", "valueString", "valueDateTime", "valueBoolean"):
            if value_key in entry:
                return entry[value_key]
        return None

    vitals = {}
    for entry in (subs.get("vitalSigns") or {}).get("extension") or []:
        value = entry.get("valueInteger", entry.get("valueDecimal"))
        if value is not None:
            vitals[entry["url"]] = value

    red_flags = [e.get("valueString") for e in (subs.get("redFlags") or {}).get("extension") or [] if e.get("valueString")]

    return prune({
        "triageLevel": _value("triageLevel"),
        "chiefComplaint": _value("chiefComplaint"),
        "triageNotes": _value("triageNotes"),
        "triageBy": _value("triageBy"),
        "triageAt": _value("triageAt"),
        "isTriaged": bool(_value("isTriaged")),
        "queueStatus": _value("queueStatus"),
        "queueAddedAt": _value("queueAddedAt"),
        "vitalSigns": vitals,
        "redFlags": red_flags,
    })


def map_chief_complaint_observation(
    patient_ref: ExternalReference,
    encounter_ref: ExternalReference,
    chief_complaint: str,
    effective_at: datetime,
) -> Dict[str, Any]:
    _require_ref(encounter_ref, "encounter", "Observation")
    return _finish({
        "resourceType": "Observation",
        "status": "final",
        "subject": patient_ref.to_fhir(),
        "encounter": encounter_ref.to_fhir(),
        "code": codeable(term.CHIEF_COMPLAINT, "Chief Complaint"),
        "effectiveDateTime": to_iso(effective_at),
        "valueString": chief_complaint,
    })


def map_vital_observations(
    patient_ref: ExternalReference,
    encounter_ref: ExternalReference,
    vital_signs: Dict[str, Any],
    effective_at: datetime,
) -> List[Dict[str, Any]]:
    """One vital-signs Observation per recognised numeric reading."""
    _require_ref(encounter_ref, "encounter", "Observation")
    observations = []
    for key, (coding, unit) in term.VITAL_SIGNS.items():
        value = (vital_signs or {}).get(key)
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            continue
        resource = {
            "resourceType": "Observation",
            "status": "final",
            "category": [{"coding": [{"system": term.OBSERVATION_CATEGORY, "code": "vital-signs", "display": "Vital Signs"}]}],
            "subject": patient_ref.to_fhir(),
            "encounter": encounter_ref.to_fhir(),
            "code": codeable(coding),
            "effectiveDateTime": to_iso(effective_at),
        }
        if key == "painScore":
            resource["valueInteger"] = int(value)
        else:
            resource["valueQuantity"] = {"value": value, "unit": unit, "system": term.UCUM, "code": unit}
        observations.append(_finish(resource))
    return observations


# =============================================================================
# Consultation
# =============================================================================

def map_consultation_encounter(
    patient_ref: ExternalReference,
    consultation_id: str,
    consulted_at: datetime,
    patient_display: Optional[str] = None,
) -> Dict[str, Any]:
    _require_ref(patient_ref, "subject", "Encounter")
    at = to_iso(consulted_at)
    return _finish({
        "resourceType": "Encounter",
        "status": "finished",
        "class": {"system": term.V3_ACT_CODE, "code": "AMB", "display": "ambulatory"},
        "subject": patient_ref.to_fhir(patient_display),
        "period": {"start": at, "end": at},
        "identifier": [{"system": CONSULTATION_SYSTEM, "value": consultation_id}],
    })


def map_condition(
    patient_ref: ExternalReference,
    encounter_ref: ExternalReference,
    diagnosis: str,
    recorded_at: datetime,
    diagnosis_code: Optional[str] = None,
) -> Dict[str, Any]:
    _require_ref(encounter_ref, "encounter", "Condition")
    if not diagnosis:
        raise MappingError("Condition: code must have either text or coding")
    coding = Coding(term.ICD10, diagnosis_code, diagnosis) if diagnosis_code else None
    return _finish({
        "resourceType": "Condition",
        "clinicalStatus": {"coding": [{"system": "http://terminology.hl7.org/CodeSystem/condition-clinical", "code": "active"}]},
        "subject": patient_ref.to_fhir(),
        "encounter": encounter_ref.to_fhir(),
        "code": codeable(coding, diagnosis),
        "recordedDate": to_iso(recorded_at),
    })


def map_medication_request(
    patient_ref: ExternalReference,
    encounter_ref: ExternalReference,
    prescription: Dict[str, Any],
    authored_at: datetime,
) -> Dict[str, Any]:
    """MedicationRequest from a prescription line ({drugName, dosage, frequency, duration, instructions})."""
    _require_ref(encounter_ref, "encounter", "MedicationRequest")
    name = prescription.get("drugName") or prescription.get("name")
    if not name:
        raise MappingError("MedicationRequest: medication is required")

    frequency = (prescription.get("frequency") or "").strip()
    per_day = term.DOSE_FREQUENCY.get(frequency.lower())
    text = " ".join(p for p in (
        prescription.get("dosage"),
        frequency,
        f"for {prescription['duration']}" if prescription.get("duration") else None,
    ) if p)

    return _finish({
        "resourceType": "MedicationRequest",
        "status": "active",
        "intent": "order",
        "subject": patient_ref.to_fhir(),
        "encounter": encounter_ref.to_fhir(),
        "medicationCodeableConcept": {"text": name},
        "authoredOn": to_iso(authored_at),
        "dosageInstruction": [{
            "text": text,
            "patientInstruction": prescription.get("instructions"),
            "timing": {"repeat": {"frequency": per_day, "period": 1, "periodUnit": "d"}} if per_day else None,
        }],
    })


# =============================================================================
# ServiceRequest (lab, imaging, referral, procedure)
# =============================================================================

def _service_request(
    category: str,
    patient_ref: ExternalReference,
    authored_at: datetime,
    code: Dict[str, Any],
    encounter_ref: Optional[ExternalReference] = None,
    priority: Optional[str] = None,
    requester: Optional[Dict[str, Any]] = None,
    notes: Iterable[Optional[str]] = (),
    reason: Optional[str] = None,
    performer: Optional[str] = None,
    status: str = "active",
) -> Dict[str, Any]:
    _require_ref(patient_ref, "subject", "ServiceRequest")
    return _finish({
        "resourceType": "ServiceRequest",
        "status": status,
        "intent": "order",
        "priority": priority,
        "category": [codeable(term.ORDER_CATEGORIES[category])],
        "code": code,
        "subject": patient_ref.to_fhir(),
        "encounter": _ref(encounter_ref),
        "authoredOn": to_iso(authored_at),
        "requester": requester,
        "performer": [{"display": performer}] if performer else None,
        "reasonCode": [{"text": reason}] if reason else None,
        "note": [{"text": n} for n in notes if n],
    })


def map_lab_request(
    patient_ref: ExternalReference,
    test: Coding,
    authored_at: datetime,
    encounter_ref: Optional[ExternalReference] = None,
    priority: str = "routine",
    ordered_by: Optional[str] = None,
    clinical_notes: Optional[str] = None,
) -> Dict[str, Any]:
    return _service_request(
        "lab", patient_ref, authored_at, codeable(test),
        encounter_ref=encounter_ref, priority=priority,
        requester=_requester(ordered_by), notes=[clinical_notes],
    )


def map_imaging_request(
    patient_ref: ExternalReference,
    procedure: term.ImagingProcedure,
    clinical_indication: str,
    authored_at: datetime,
    encounter_ref: Optional[ExternalReference] = None,
    priority: str = "routine",
    ordered_by: Optional[str] = None,
    clinical_question: Optional[str] = None,
) -> Dict[str, Any]:
    if not clinical_indication or not clinical_indication.strip():
        raise MappingError("ServiceRequest: imaging orders require a clinical indication")
    resource = _service_request(
        "imaging", patient_ref, authored_at, codeable(procedure.coding),
        encounter_ref=encounter_ref, priority=priority,
        requester=_requester(ordered_by),
        reason=clinical_indication.strip(),
        notes=[
            f"Clinical Indication: {clinical_indication.strip()}",
            f"Clinical Question: {clinical_question}" if clinical_question else None,
        ],
    )
    modality = term.IMAGING_MODALITIES.get(procedure.modality)
    if modality:
        resource["orderDetail"] = [codeable(modality)]
    return resource


def map_referral_request(
    patient_ref: ExternalReference,
    specialty: str,
    facility: str,
    reason: str,
    authored_at: datetime,
    encounter_ref: Optional[ExternalReference] = None,
    department: Optional[str] = None,
    doctor_name: Optional[str] = None,
    urgency: Optional[str] = None,
    clinical_info: Optional[str] = None,
) -> Dict[str, Any]:
    for label, value in (("specialty", specialty), ("facility", facility), ("reason", reason)):
        if not value:
            raise MappingError(f"ServiceRequest: referral {label} is required")
    return _service_request(
        "referral", patient_ref, authored_at, {"text": f"Referral to {specialty}"},
        encounter_ref=encounter_ref, priority=urgency,
        requester={"display": doctor_name} if doctor_name else None,
        performer=f"{facility} - {department}" if department else facility,
        reason=reason, notes=[clinical_info],
    )


def map_procedure_request(
    patient_ref: ExternalReference,
    encounter_ref: ExternalReference,
    procedure: Dict[str, Any],
    authored_at: datetime,
) -> Dict[str, Any]:
    """Procedure performed during a consultation, recorded as a completed ServiceRequest."""
    _require_ref(encounter_ref, "encounter", "ServiceRequest")
    name = procedure.get("name") if isinstance(procedure, dict) else procedure
    if not name:
        raise MappingError("ServiceRequest: procedure name is required")
    coding = Coding(None, procedure.get("code"), name) if isinstance(procedure, dict) and procedure.get("code") else None
    return _service_request(
        "procedure", patient_ref, authored_at, codeable(coding, name),
        encounter_ref=encounter_ref, status="completed",
        notes=[procedure.get("notes") if isinstance(procedure, dict) else None],
    )


def parse_referral(resource: Dict[str, Any]) -> Dict[str, Any]:
    performer = ((resource.get("performer") or [{}])[0].get("display") or "")
    facility, _, department = performer.partition(" - ")
    specialty = ((resource.get("code") or {}).get("text") or "")
    if specialty.startswith("Referral to "):
        specialty = specialty[len("Referral to "):]
    return prune({
        "id": resource.get("id"),
        "patientId": reference_id(resource.get("subject"), "Patient"),
        "encounterId": reference_id(resource.get("encounter"), "Encounter"),
        "specialty": specialty,
        "facility": facility,
        "department": department or None,
        "doctorName": (resource.get("requester") or {}).get("display"),
        "urgency": resource.get("priority"),
        "reason": ((resource.get("reasonCode") or [{}])[0]).get("text"),
        "clinicalInfo": ((resource.get("note") or [{}])[0]).get("text"),
        "date": resource.get("authoredOn"),
        "status": resource.get("status"),
        "createdAt": creation_time(resource).isoformat(),
    })


def order_category(resource: Dict[str, Any]) -> Optional[str]:
    """Which order kind a ServiceRequest belongs to, from its category coding."""
    codes = {
        c.get("code")
        for cat in resource.get("category") or []
        for c in cat.get("coding") or []
    }
    for kind, coding in term.ORDER_CATEGORIES.items():
        if coding.code in codes:
            return kind
    return None


# =============================================================================
# DocumentReference
# =============================================================================

def map_document_reference(
    patient_ref: ExternalReference,
    title: str,
    url: str,
    content_type: str,
    created_at: datetime,
    size: Optional[int] = None,
    uploaded_by: Optional[str] = None,
    storage_path: Optional[str] = None,
    order_ref: Optional[ExternalReference] = None,
) -> Dict[str, Any]:
    _require_ref(patient_ref, "subject", "DocumentReference")
    at = to_iso(created_at)
    return _finish({
        "resourceType": "DocumentReference",
        "status": "current",
        "type": codeable(term.CONSULTATION_NOTE, "Clinical document"),
        "subject": patient_ref.to_fhir(),
        "date": at,
        "author": [{"display": uploaded_by}] if uploaded_by else None,
        "context": {"related": [order_ref.to_fhir()]} if order_ref else None,
        "content": [{
            "attachment": {
                "contentType": content_type,
                "url": url,
                "size": size,
                "title": title,
                "creation": at,
            },
        }],
        "extension": [{"url": term.STORAGE_PATH_EXTENSION_URL, "valueString": storage_path}] if storage_path else None,
    })


def parse_document(resource: Dict[str, Any]) -> Dict[str, Any]:
    attachment = ((resource.get("content") or [{}])[0]).get("attachment") or {}
    storage = next(
        (e.get("valueString") for e in resource.get("extension") or [] if e.get("url") == term.STORAGE_PATH_EXTENSION_URL),
        None,
    )
    related = ((resource.get("context") or {}).get("related") or [{}])[0]
    return prune({
        "id": resource.get("id"),
        "title": attachment.get("title") or "Document",
        "url": attachment.get("url"),
        "contentType": attachment.get("contentType"),
        "size": attachment.get("size"),
        "uploadedAt": attachment.get("creation") or resource.get("date"),
        "uploadedBy": ((resource.get("author") or [{}])[0]).get("display"),
        "storagePath": storage,
        "orderId": reference_id(related, "ServiceRequest"),
    })


# =============================================================================
# Results: Observation, DiagnosticReport, ImagingStudy
# =============================================================================

def map_lab_observation(order: Dict[str, Any], result: Dict[str, Any], issued_at: datetime) -> Dict[str, Any]:
    """Observation for one lab result line, inheriting subject/encounter from the order."""
    if not (order.get("subject") or {}).get("reference"):
        raise MappingError("ServiceRequest has no patient reference")
    if not result.get("testCode") and not result.get("testName"):
        raise MappingError("Observation: testCode or testName is required")

    value = result.get("value")
    interpretation = result.get("interpretation")
    performed = result.get("performedAt")
    return _finish({
        "resourceType": "Observation",
        "status": result.get("status") or "final",
        "category": [{"coding": [{"system": term.OBSERVATION_CATEGORY, "code": "laboratory", "display": "Laboratory"}]}],
        "code": codeable(Coding(term.LOINC, result.get("testCode"), result.get("testName")), result.get("testName")),
        "subject": {"reference": order["subject"]["reference"]},
        "encounter": order.get("encounter"),
        "basedOn": [{"reference": f"ServiceRequest/{order['id']}"}] if order.get("id") else None,
        "effectiveDateTime": to_iso(performed) if performed else to_iso(issued_at),
        "issued": to_iso(issued_at),
        "valueQuantity": {"value": value, "unit": result.get("unit")} if isinstance(value, (int, float)) and not isinstance(value, bool) else None,
        "valueString": value if isinstance(value, str) else None,
        "referenceRange": [{"text": result["referenceRange"]}] if result.get("referenceRange") else None,
        "interpretation": [{
            "coding": [{
                "system": term.V3_INTERPRETATION,
                "code": term.INTERPRETATION_CODES.get(interpretation, "A"),
                "display": interpretation,
            }],
        }] if interpretation else None,
    })


def map_lab_report(
    order: Dict[str, Any],
    observation_refs: List[ExternalReference],
    result_statuses: List[str],
    issued_at: datetime,
    conclusion: Optional[str] = None,
) -> Dict[str, Any]:
    if not (order.get("subject") or {}).get("reference"):
        raise MappingError("ServiceRequest has no patient reference")
    status = "final" if result_statuses and all(s == "final" for s in result_statuses) else "partial"
    at = to_iso(issued_at)
    return _finish({
        "resourceType": "DiagnosticReport",
        "status": status,
        "category": [{"coding": [{"system": term.V2_0074, "code": "LAB", "display": "Laboratory"}]}],
        "code": order.get("code") or {"text": "Laboratory Report"},
        "subject": {"reference": order["subject"]["reference"]},
        "encounter": order.get("encounter"),
        "effectiveDateTime": at,
        "issued": at,
        "basedOn": [{"reference": f"ServiceRequest/{order['id']}"}],
        "result": [ref.to_fhir() for ref in observation_refs],
        "conclusion": conclusion,
    })


def map_imaging_study(order: Dict[str, Any], study: Dict[str, Any]) -> Dict[str, Any]:
    """ImagingStudy received from PACS for an imaging order."""
    if not (order.get("subject") or {}).get("reference"):
        raise MappingError("ServiceRequest has no patient reference")
    if not study.get("studyUid"):
        raise MappingError("ImagingStudy: studyUid is required")

    def _dcm(code):
        return {"system": term.DICOM_DCM, "code": code} if code else None

    series = []
    for s in study.get("series") or []:
        series.append({
            "uid": s.get("uid"),
            "number": s.get("number"),
            "modality": _dcm(s.get("modality")),
            "description": s.get("description"),
            "numberOfInstances": s.get("numberOfInstances"),
            "bodySite": {"display": s["bodySite"]} if s.get("bodySite") else None,
            "started": to_iso(s["started"]) if s.get("started") else None,
            "endpoint": [{"reference": s["endpoint"]}] if s.get("endpoint") else None,
        })

    code = order.get("code") or {}
    return _finish({
        "resourceType": "ImagingStudy",
        "status": "available",
        "identifier": [
            {"system": "urn:dicom:uid", "value": f"urn:oid:{study['studyUid']}"},
            {"system": ACCESSION_SYSTEM, "value": study.get("accessionNumber")} if study.get("accessionNumber") else None,
        ],
        "subject": {"reference": order["subject"]["reference"]},
        "encounter": order.get("encounter"),
        "started": to_iso(study["started"]) if study.get("started") else None,
        "basedOn": [{"reference": f"ServiceRequest/{order['id']}"}],
        "numberOfSeries": study.get("numberOfSeries", len(series)),
        "numberOfInstances": study.get("numberOfInstances"),
        "procedureCode": [{"coding": code.get("coding"), "text": code.get("text")}] if code else None,
        "modality": [_dcm(study.get("modality"))],
        "description": study.get("description"),
        "series": series,
    })


def map_imaging_report(
    study: Dict[str, Any],
    findings: str,
    impression: str,
    issued_at: datetime,
    status: str = "final",
    radiologist: Optional[str] = None,
) -> Dict[str, Any]:
    """Radiology DiagnosticReport citing an ImagingStudy."""
    if not study.get("id"):
        raise MappingError("ImagingStudy id is required for a report")
    if not impression:
        raise MappingError("DiagnosticReport: impression is required")
    text = f"FINDINGS:\n{findings}\n\nIMPRESSION:\n{impression}"
    return _finish({
        "resourceType": "DiagnosticReport",
        "status": status,
        "category": [{"coding": [{"system": term.V2_0074, "code": "RAD", "display": "Radiology"}]}],
        "code": (study.get("procedureCode") or [None])[0] or {"text": "Imaging Report"},
        "subject": study.get("subject"),
        "encounter": study.get("encounter"),
        "basedOn": study.get("basedOn"),
        "effectiveDateTime": study.get("started"),
        "issued": to_iso(issued_at),
        "imagingStudy": [{"reference": f"ImagingStudy/{study['id']}"}],
        "conclusion": impression,
        "conclusionCode": [{"text": findings}] if findings else None,
        "presentedForm": [{
            "contentType": "text/plain",
            "data": base64.b64encode(text.encode("utf-8")).decode("ascii"),
            "title": "Radiology Report",
        }],
        "resultsInterpreter": [{"display": radiologist}] if radiologist else None,
    })


def is_radiology_report(report: Dict[str, Any]) -> bool:
    return any(
        c.get("code") == "RAD"
        for cat in report.get("category") or []
        for c in cat.get("coding") or []
    )


def summarize_observation(obs: Dict[str, Any]) -> Dict[str, Any]:
    code = obs.get("code") or {}
    coding = (code.get("coding") or [{}])[0]
    quantity = obs.get("valueQuantity") or {}
    value = quantity.get("value")
    if value is None:
        value = obs.get("valueString", "N/A")
    return prune({
        "testCode": coding.get("code") or "",
        "testName": code.get("text") or coding.get("display") or "Unknown",
        "value": value,
        "unit": quantity.get("unit"),
        "referenceRange": ((obs.get("referenceRange") or [{}])[0]).get("text"),
        "interpretation": (((obs.get("interpretation") or [{}])[0].get("coding") or [{}])[0]).get("display"),
        "status": obs.get("status"),
        "performedAt": obs.get("effectiveDateTime"),
    })


def summarize_lab_report(report: Dict[str, Any], observations: List[Dict[str, Any]]) -> Dict[str, Any]:
    return prune({
        "id": report.get("id"),
        "patientId": reference_id(report.get("subject"), "Patient"),
        "encounterId": reference_id(report.get("encounter"), "Encounter"),
        "orderId": reference_id((report.get("basedOn") or [None])[0], "ServiceRequest"),
        "status": report.get("status"),
        "orderedAt": report.get("effectiveDateTime"),
        "issuedAt": report.get("issued"),
        "results": [summarize_observation(o) for o in observations],
        "conclusion": report.get("conclusion"),
    })


def summarize_imaging_study(study: Dict[str, Any], report: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    identifiers = study.get("identifier") or []
    modality = ((study.get("modality") or [{}])[0]).get("code")
    summary = {
        "id": study.get("id"),
        "patientId": reference_id(study.get("subject"), "Patient"),
        "encounterId": reference_id(study.get("encounter"), "Encounter"),
        "orderId": reference_id((study.get("basedOn") or [None])[0], "ServiceRequest"),
        "procedure": ((study.get("procedureCode") or [{}])[0]).get("text") or "Unknown Procedure",
        "modality": modality or "Unknown",
        "status": study.get("status"),
        "performedAt": study.get("started"),
        "study": {
            "studyUid": next(
                (i.get("value", "").replace("urn:oid:", "") for i in identifiers if i.get("system") == "urn:dicom:uid"),
                "",
            ),
            "accessionNumber": next((i.get("value") for i in identifiers if i.get("system") == ACCESSION_SYSTEM), None),
            "description": study.get("description"),
            "numberOfSeries": study.get("numberOfSeries") or 0,
            "numberOfInstances": study.get("numberOfInstances") or 0,
            "series": [
                {
                    "uid": s.get("uid"),
                    "number": s.get("number") or 0,
                    "modality": (s.get("modality") or {}).get("code") or "",
                    "description": s.get("description"),
                    "numberOfInstances": s.get("numberOfInstances") or 0,
                    "bodySite": (s.get("bodySite") or {}).get("display"),
                }
                for s in study.get("series") or []
            ],
        },
    }
    if report:
        summary["report"] = {
            "id": report.get("id"),
            "status": report.get("status"),
            "findings": ((report.get("conclusionCode") or [{}])[0]).get("text"),
            "impression": report.get("conclusion"),
            "radiologist": ((report.get("resultsInterpreter") or [{}])[0]).get("display"),
            "issuedAt": report.get("issued"),
        }
    return prune(summary)


# =============================================================================
# Ordering
# =============================================================================

_CREATION_FIELDS = ("authoredOn", "issued", "date", "recordedDate", "started", "effectiveDateTime")


def creation_time(resource: Dict[str, Any]) -> datetime:
    """
    Best available creation timestamp of a resource, EPOCH when none.

    Candidates are tried in order; an unreadable value falls through to
    the next one, ending with meta.lastUpdated.
    """
    candidates = [resource.get(field) for field in _CREATION_FIELDS]
    candidates.append((resource.get("period") or {}).get("start"))
    candidates.append((resource.get("meta") or {}).get("lastUpdated"))

    for value in candidates:
        if not value:
            continue
        try:
            return to_datetime(value)
        except ValidationError:
            continue
    return EPOCH
