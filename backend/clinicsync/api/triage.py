"""
Triage API Blueprint

- POST /api/triage - Record a triage assessment for a patient
"""

from flask import Blueprint, request, jsonify

from clinicsync.services.triage_service import get_triage_service

bp = Blueprint("triage_api", __name__, url_prefix="/api")


@bp.route("/triage", methods=["POST"])
def record_triage():
    """
    Body:
        patientId, triageLevel, chiefComplaint (required)
        vitalSigns: {systolicBp, diastolicBp, heartRate, temperature, ...}
        triageNotes, redFlags[], triageBy
    """
    data = request.get_json(silent=True) or {}
    missing = [k for k in ("patientId", "triageLevel", "chiefComplaint") if data.get(k) in (None, "")]
    if missing:
        return jsonify({"success": False, "error": f"Missing required fields: {', '.join(missing)}"}), 400

    outcome = get_triage_service().record_triage(
        data["patientId"],
        data["triageLevel"],
        data["chiefComplaint"],
        vital_signs=data.get("vitalSigns"),
        triage_notes=data.get("triageNotes"),
        red_flags=data.get("redFlags"),
        triage_by=data.get("triageBy"),
    )
    return jsonify({"success": True, **outcome.to_dict()})
