"""
FHIR API Blueprint

- POST /api/fhir/register-extensions - Ensure custom extensions exist upstream
- POST /api/fhir/export - Export a consultation as linked FHIR resources
- GET /api/fhir/resources - Merged resources by patient or encounter
"""

from flask import Blueprint, request, jsonify

from clinicsync.fhir.extensions import get_extension_registrar
from clinicsync.services.consultation_export import get_consultation_exporter
from clinicsync.services.event_log import EventLogService
from clinicsync.services.query_service import get_query_gateway

bp = Blueprint("fhir_api", __name__, url_prefix="/api/fhir")


@bp.route("/register-extensions", methods=["POST"])
def register_extensions():
    result = get_extension_registrar().ensure_registered()

    EventLogService().append_event(
        EventLogService.EXTENSIONS_REGISTERED,
        payload={"registered": result.registered, "failed": [f["url"] for f in result.failed]},
    )

    if not result.ok:
        return jsonify({"success": False, "error": "Some extensions failed to register", **result.to_dict()}), 500
    return jsonify({"success": True, **result.to_dict()})


@bp.route("/export", methods=["POST"])
def export_consultation():
    data = request.get_json(silent=True) or {}
    if not data.get("consultationId"):
        return jsonify({"success": False, "error": "consultationId is required"}), 400

    result = get_consultation_exporter().export(data["consultationId"])
    return jsonify({"success": True, **result.to_dict()})


@bp.route("/resources", methods=["GET"])
def list_resources():
    patient_id = request.args.get("patientId")
    encounter_id = request.args.get("encounterId")
    gateway = get_query_gateway()

    if encounter_id:
        resources = gateway.by_encounter(encounter_id)
    elif patient_id:
        resources = gateway.by_patient(patient_id)
    else:
        return jsonify({"success": False, "error": "patientId or encounterId is required"}), 400

    return jsonify({"success": True, "count": len(resources), "resources": resources})
