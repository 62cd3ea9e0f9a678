"""
Imaging API Blueprint

- POST /api/imaging/order - Order imaging procedures
- GET /api/imaging/results - Imaging studies (with reports) by patient or encounter
- POST /api/imaging/receive - Store an ImagingStudy from PACS
- POST /api/imaging/report - Radiology report for a stored study
"""

from flask import Blueprint, request, jsonify

from clinicsync.errors import PartialOrderFailure
from clinicsync.services.order_service import get_order_orchestrator
from clinicsync.services.query_service import get_query_gateway
from clinicsync.services.results_service import get_results_service

bp = Blueprint("imaging_api", __name__, url_prefix="/api/imaging")


@bp.route("/order", methods=["POST"])
def order_imaging():
    """
    Body:
        patientId, procedures[], clinicalIndication (required)
        encounterId, priority, clinicalQuestion, orderedBy: optional
    """
    data = request.get_json(silent=True) or {}
    procedures = data.get("procedures")
    if not data.get("patientId") or not isinstance(procedures, list) or not procedures:
        return jsonify({"success": False, "error": "patientId and procedures are required"}), 400

    result = get_order_orchestrator().place_order(
        "imaging",
        data["patientId"],
        data.get("encounterId"),
        procedures,
        {
            "clinical_indication": data.get("clinicalIndication"),
            "clinical_question": data.get("clinicalQuestion"),
            "priority": data.get("priority"),
            "ordered_by": data.get("orderedBy"),
        },
    )
    if not result.ok:
        raise PartialOrderFailure(result)

    return jsonify({
        "success": True,
        "serviceRequestId": result.resource_ids[0],
        "serviceRequestIds": result.resource_ids,
        "message": f"Imaging order created with {len(procedures)} procedure(s)",
    })


@bp.route("/results", methods=["GET"])
def imaging_results():
    patient_id = request.args.get("patientId")
    encounter_id = request.args.get("encounterId")
    if not patient_id and not encounter_id:
        return jsonify({"success": False, "error": "patientId or encounterId is required"}), 400

    studies = get_query_gateway().imaging_studies(patient_id=patient_id, encounter_id=encounter_id)
    return jsonify({"success": True, "studies": studies})


@bp.route("/receive", methods=["POST"])
def receive_study():
    data = request.get_json(silent=True) or {}
    if not data.get("serviceRequestId") or not isinstance(data.get("study"), dict):
        return jsonify({"success": False, "error": "serviceRequestId and study are required"}), 400

    study = get_results_service().receive_imaging_study(data["serviceRequestId"], data["study"])
    return jsonify({"success": True, "imagingStudyId": study.id})


@bp.route("/report", methods=["POST"])
def create_report():
    data = request.get_json(silent=True) or {}
    if not data.get("imagingStudyId") or not data.get("impression"):
        return jsonify({"success": False, "error": "imagingStudyId and impression are required"}), 400

    report = get_results_service().create_imaging_report(
        data["imagingStudyId"],
        data.get("findings") or "",
        data["impression"],
        status=data.get("status") or "final",
        radiologist=data.get("radiologist"),
    )
    return jsonify({"success": True, "diagnosticReportId": report.id})
