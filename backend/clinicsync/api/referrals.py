"""
Referrals API Blueprint

- POST /api/referrals - Refer a patient to a specialist facility
- GET /api/referrals?id=... - One referral
- GET /api/referrals?patientId=... - A patient's referrals
"""

from flask import Blueprint, request, jsonify

from clinicsync.errors import PartialOrderFailure
from clinicsync.services.order_service import get_order_orchestrator
from clinicsync.services.query_service import get_query_gateway

bp = Blueprint("referrals_api", __name__, url_prefix="/api")


@bp.route("/referrals", methods=["POST"])
def create_referral():
    data = request.get_json(silent=True) or {}
    missing = [k for k in ("patientId", "specialty", "facility", "reason") if not data.get(k)]
    if missing:
        return jsonify({"success": False, "error": f"Missing required fields: {', '.join(missing)}"}), 400

    result = get_order_orchestrator().place_order(
        "referral",
        data["patientId"],
        data.get("encounterId"),
        [data["specialty"]],
        {
            "facility": data["facility"],
            "reason": data["reason"],
            "department": data.get("department"),
            "doctor_name": data.get("doctorName"),
            "urgency": data.get("urgency"),
            "clinical_info": data.get("clinicalInfo"),
        },
    )
    if not result.ok:
        raise PartialOrderFailure(result)

    return jsonify({"success": True, "referralId": result.resource_ids[0]})


@bp.route("/referrals", methods=["GET"])
def get_referrals():
    referral_id = request.args.get("id")
    patient_id = request.args.get("patientId")
    gateway = get_query_gateway()

    if referral_id:
        return jsonify({"success": True, "referral": gateway.get_referral(referral_id)})

    if patient_id:
        referrals = gateway.referrals_for_patient(patient_id)
        return jsonify({"success": True, "count": len(referrals), "referrals": referrals})

    return jsonify({"success": False, "error": "id or patientId is required"}), 400
