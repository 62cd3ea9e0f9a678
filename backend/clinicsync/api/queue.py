"""
Queue API Blueprint

Flask routes for the front-desk queue board:
- GET /api/queue - Active queue entries in board order
- POST /api/queue - Add a patient to the queue
- DELETE /api/queue - Remove a patient from the queue
- PATCH /api/queue - Move a patient to another status
"""

from flask import Blueprint, request, jsonify

from clinicsync.models import Patient
from clinicsync.services.queue_service import get_queue_service

bp = Blueprint("queue_api", __name__, url_prefix="/api")


def _board_row(entry, names):
    row = entry.to_dict()
    row["fullName"] = names.get(entry.patient_id)
    return row


# =============================================================================
# GET /api/queue
# =============================================================================

@bp.route("/queue", methods=["GET"])
def list_queue():
    queue = get_queue_service()
    include_closed = request.args.get("includeClosed", "").lower() in ("1", "true", "yes")
    entries = queue.list(include_closed=include_closed)

    ids = {e.patient_id for e in entries}
    names = {}
    if ids:
        names = {
            p.patient_id: p.full_name
            for p in queue.db.query(Patient).filter(Patient.patient_id.in_(ids)).all()
        }

    return jsonify({"success": True, "patients": [_board_row(e, names) for e in entries]})


# =============================================================================
# POST /api/queue
# =============================================================================

@bp.route("/queue", methods=["POST"])
def add_to_queue():
    """
    Body:
        patientId: clinic patient id (required)
        triageLevel: 1-5, defaults to the latest triage level or 5
        chiefComplaint: optional free text
    """
    data = request.get_json(silent=True) or {}
    patient_id = data.get("patientId")
    if not patient_id:
        return jsonify({"success": False, "error": "patientId is required"}), 400

    entry = get_queue_service().enqueue(
        patient_id,
        triage_level=data.get("triageLevel"),
        chief_complaint=data.get("chiefComplaint"),
    )
    return jsonify({"success": True, "entry": entry.to_dict()})


# =============================================================================
# DELETE /api/queue
# =============================================================================

@bp.route("/queue", methods=["DELETE"])
def remove_from_queue():
    data = request.get_json(silent=True) or {}
    patient_id = data.get("patientId") or request.args.get("patientId")
    if not patient_id:
        return jsonify({"success": False, "error": "patientId is required"}), 400

    get_queue_service().remove(patient_id)
    return jsonify({"success": True})


# =============================================================================
# PATCH /api/queue
# =============================================================================

@bp.route("/queue", methods=["PATCH"])
def update_queue_status():
    data = request.get_json(silent=True) or {}
    patient_id = data.get("patientId")
    status = data.get("status")
    if not patient_id or not status:
        return jsonify({"success": False, "error": "patientId and status are required"}), 400

    entry = get_queue_service().update_status(patient_id, status)
    return jsonify({"success": True, "entry": entry.to_dict()})
