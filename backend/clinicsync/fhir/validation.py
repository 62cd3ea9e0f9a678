"""
Structural validation of FHIR resources before they are sent upstream.

This is not a profile validator; it checks the handful of required
elements each resource kind needs so that a malformed resource fails
locally with a MappingError instead of as an opaque upstream 400.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from clinicsync.errors import MappingError
from clinicsync.fhir.references import REFERENCE_PATTERN

ENCOUNTER_STATUSES = {"planned", "arrived", "triaged", "in-progress", "onleave", "finished", "cancelled"}
SERVICE_REQUEST_STATUSES = {"draft", "active", "on-hold", "revoked", "completed", "entered-in-error", "unknown"}
MEDICATION_REQUEST_STATUSES = {"active", "on-hold", "cancelled", "completed", "entered-in-error", "stopped", "draft", "unknown"}
REQUEST_INTENTS = {"proposal", "plan", "directive", "order", "original-order", "reflex-order", "filler-order", "instance-order", "option"}
OBSERVATION_STATUSES = {"registered", "preliminary", "final", "amended", "corrected", "cancelled", "entered-in-error", "unknown"}
REPORT_STATUSES = {"registered", "partial", "preliminary", "final", "amended", "corrected", "appended", "cancelled", "entered-in-error", "unknown"}
GENDERS = {"male", "female", "other", "unknown"}

BIRTH_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def _check_reference(element: Any, path: str, result: ValidationResult, required: bool = True):
    if not element or not element.get("reference"):
        if required:
            result.errors.append(f"{path} reference is required")
        return
    if not REFERENCE_PATTERN.match(element["reference"]):
        result.errors.append(f"{path} has invalid reference format '{element['reference']}'")


def _check_status(resource: Dict[str, Any], allowed: set, result: ValidationResult):
    kind = resource["resourceType"]
    status = resource.get("status")
    if not status:
        result.errors.append(f"{kind}: status is required")
    elif status not in allowed:
        result.errors.append(f"{kind}: invalid status '{status}'")


def _check_intent(resource: Dict[str, Any], result: ValidationResult):
    kind = resource["resourceType"]
    intent = resource.get("intent")
    if not intent:
        result.errors.append(f"{kind}: intent is required")
    elif intent not in REQUEST_INTENTS:
        result.errors.append(f"{kind}: invalid intent '{intent}'")


def _has_code(concept: Any) -> bool:
    return bool(concept) and bool(concept.get("text") or concept.get("coding"))


def _validate_patient(resource, result):
    names = resource.get("name") or []
    if not names:
        result.errors.append("Patient: name is required")
    elif not names[0].get("text") and not (names[0].get("family") and names[0].get("given")):
        result.warnings.append("Patient: name should have either text or family+given")

    for idx, ident in enumerate(resource.get("identifier") or []):
        if not ident.get("value"):
            result.errors.append(f"Patient: identifier[{idx}] must have a value")
        if not ident.get("system"):
            result.warnings.append(f"Patient: identifier[{idx}] should have a system")

    if resource.get("gender") and resource["gender"] not in GENDERS:
        result.errors.append(f"Patient: invalid gender value '{resource['gender']}'")
    if resource.get("birthDate") and not BIRTH_DATE.match(resource["birthDate"]):
        result.errors.append("Patient: birthDate must be in YYYY-MM-DD format")


def _validate_encounter(resource, result):
    _check_status(resource, ENCOUNTER_STATUSES, result)
    if not resource.get("class"):
        result.errors.append("Encounter: class is required")
    _check_reference(resource.get("subject"), "Encounter.subject", result)
    period = resource.get("period")
    if period and resource.get("status") == "finished" and not period.get("end"):
        result.warnings.append("Encounter: period.end is recommended for finished encounters")


def _validate_condition(resource, result):
    _check_reference(resource.get("subject"), "Condition.subject", result)
    if not _has_code(resource.get("code")):
        result.errors.append("Condition: code must have either text or coding")
    _check_reference(resource.get("encounter"), "Condition.encounter", result, required=False)


def _validate_medication_request(resource, result):
    _check_status(resource, MEDICATION_REQUEST_STATUSES, result)
    _check_intent(resource, result)
    _check_reference(resource.get("subject"), "MedicationRequest.subject", result)
    if not _has_code(resource.get("medicationCodeableConcept")) and not resource.get("medicationReference"):
        result.errors.append("MedicationRequest: medication is required")
    if not resource.get("dosageInstruction"):
        result.warnings.append("MedicationRequest: dosageInstruction is recommended")


def _validate_service_request(resource, result):
    _check_status(resource, SERVICE_REQUEST_STATUSES, result)
    _check_intent(resource, result)
    _check_reference(resource.get("subject"), "ServiceRequest.subject", result)
    if not _has_code(resource.get("code")):
        result.warnings.append("ServiceRequest: code is recommended")
    _check_reference(resource.get("encounter"), "ServiceRequest.encounter", result, required=False)


def _validate_observation(resource, result):
    _check_status(resource, OBSERVATION_STATUSES, result)
    if not _has_code(resource.get("code")):
        result.errors.append("Observation: code is required")
    _check_reference(resource.get("subject"), "Observation.subject", result)


def _validate_diagnostic_report(resource, result):
    _check_status(resource, REPORT_STATUSES, result)
    if not _has_code(resource.get("code")):
        result.errors.append("DiagnosticReport: code is required")
    _check_reference(resource.get("subject"), "DiagnosticReport.subject", result)


def _validate_imaging_study(resource, result):
    if not resource.get("status"):
        result.errors.append("ImagingStudy: status is required")
    _check_reference(resource.get("subject"), "ImagingStudy.subject", result)


def _validate_document_reference(resource, result):
    if not resource.get("status"):
        result.errors.append("DocumentReference: status is required")
    contents = resource.get("content") or []
    if not contents:
        result.errors.append("DocumentReference: content is required")
    for idx, content in enumerate(contents):
        attachment = content.get("attachment") or {}
        if not attachment.get("url") and not attachment.get("data"):
            result.errors.append(f"DocumentReference: content[{idx}].attachment needs url or data")
    _check_reference(resource.get("subject"), "DocumentReference.subject", result)


VALIDATORS: Dict[str, Callable[[Dict[str, Any], ValidationResult], None]] = {
    "Patient": _validate_patient,
    "Encounter": _validate_encounter,
    "Condition": _validate_condition,
    "MedicationRequest": _validate_medication_request,
    "ServiceRequest": _validate_service_request,
    "Observation": _validate_observation,
    "DiagnosticReport": _validate_diagnostic_report,
    "ImagingStudy": _validate_imaging_study,
    "DocumentReference": _validate_document_reference,
}


def validate_resource(resource: Dict[str, Any]) -> ValidationResult:
    """Check required elements for the resource's kind."""
    result = ValidationResult()
    kind = resource.get("resourceType")
    if not kind:
        result.errors.append("Missing required field: resourceType")
        return result

    validator = VALIDATORS.get(kind)
    if validator is None:
        result.warnings.append(f"No specific validation for {kind}")
    else:
        validator(resource, result)
    return result


def require_valid(resource: Dict[str, Any]) -> Dict[str, Any]:
    """Return the resource unchanged, or raise MappingError listing the problems."""
    result = validate_resource(resource)
    if not result.valid:
        kind = resource.get("resourceType", "resource")
        raise MappingError(f"Invalid {kind}: {'; '.join(result.errors)}", issues=result.errors)
    return resource
