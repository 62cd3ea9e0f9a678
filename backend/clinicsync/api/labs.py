"""
Labs API Blueprint

- POST /api/labs/order - Order one or more lab tests
- GET /api/labs/results - Lab reports by patient or encounter
- POST /api/labs/receive - Intake of results for a lab order
"""

from flask import Blueprint, request, jsonify

from clinicsync.errors import PartialOrderFailure
from clinicsync.services.order_service import get_order_orchestrator
from clinicsync.services.query_service import get_query_gateway
from clinicsync.services.results_service import get_results_service

bp = Blueprint("labs_api", __name__, url_prefix="/api/labs")


# =============================================================================
# POST /api/labs/order
# =============================================================================

@bp.route("/order", methods=["POST"])
def order_labs():
    """
    Body:
        patientId: clinic patient id (required)
        tests: ["CBC", "BMP", ...] (required)
        encounterId, priority, clinicalNotes, orderedBy: optional
    """
    data = request.get_json(silent=True) or {}
    tests = data.get("tests")
    if not data.get("patientId") or not isinstance(tests, list) or not tests:
        return jsonify({"success": False, "error": "patientId and tests are required"}), 400

    result = get_order_orchestrator().place_order(
        "lab",
        data["patientId"],
        data.get("encounterId"),
        tests,
        {
            "priority": data.get("priority"),
            "clinical_notes": data.get("clinicalNotes"),
            "ordered_by": data.get("orderedBy"),
        },
    )
    if not result.ok:
        raise PartialOrderFailure(result)

    return jsonify({
        "success": True,
        "serviceRequestId": result.resource_ids[0],
        "serviceRequestIds": result.resource_ids,
        "message": f"Lab order created with {len(tests)} test(s)",
    })


# =============================================================================
# GET /api/labs/results
# =============================================================================

@bp.route("/results", methods=["GET"])
def lab_results():
    patient_id = request.args.get("patientId")
    encounter_id = request.args.get("encounterId")
    if not patient_id and not encounter_id:
        return jsonify({"success": False, "error": "patientId or encounterId is required"}), 400

    reports = get_query_gateway().lab_reports(patient_id=patient_id, encounter_id=encounter_id)
    return jsonify({"success": True, "reports": reports})


# =============================================================================
# POST /api/labs/receive
# =============================================================================

@bp.route("/receive", methods=["POST"])
def receive_results():
    data = request.get_json(silent=True) or {}
    results = data.get("results")
    if not data.get("serviceRequestId") or not isinstance(results, list):
        return jsonify({"success": False, "error": "serviceRequestId and results are required"}), 400

    report = get_results_service().receive_lab_results(
        data["serviceRequestId"], results, conclusion=data.get("conclusion"),
    )
    return jsonify({"success": True, "diagnosticReportId": report.id})
