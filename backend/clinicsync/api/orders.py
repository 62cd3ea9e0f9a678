"""
Orders API Blueprint

- PATCH /api/orders/<id> - Change the status of a ServiceRequest
"""

from flask import Blueprint, request, jsonify

from clinicsync.services.order_service import get_order_orchestrator

bp = Blueprint("orders_api", __name__, url_prefix="/api")


@bp.route("/orders/<order_id>", methods=["PATCH"])
def update_order_status(order_id):
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if not status:
        return jsonify({"success": False, "error": "status is required"}), 400

    resource = get_order_orchestrator().update_status(order_id, status)
    return jsonify({"success": True, "id": order_id, "status": resource.get("status")})
