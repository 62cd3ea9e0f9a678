"""
Documents API Blueprint

- GET /api/documents?patientId=... - A patient's documents
- POST /api/documents - Record an uploaded document
- DELETE /api/documents - Delete a document by id
"""

from flask import Blueprint, request, jsonify

from clinicsync.services.document_service import get_document_service
from clinicsync.services.query_service import get_query_gateway

bp = Blueprint("documents_api", __name__, url_prefix="/api")


@bp.route("/documents", methods=["GET"])
def list_documents():
    patient_id = request.args.get("patientId")
    if not patient_id:
        return jsonify({"success": False, "error": "patientId is required"}), 400

    documents = get_query_gateway().documents_for_patient(patient_id)
    return jsonify({"success": True, "count": len(documents), "documents": documents})


@bp.route("/documents", methods=["POST"])
def create_document():
    data = request.get_json(silent=True) or {}
    missing = [k for k in ("patientId", "title", "url", "contentType") if not data.get(k)]
    if missing:
        return jsonify({"success": False, "error": f"Missing required fields: {', '.join(missing)}"}), 400

    document = get_document_service().create_document(
        data["patientId"],
        data["title"],
        data["url"],
        data["contentType"],
        size=data.get("size"),
        uploaded_by=data.get("uploadedBy"),
        storage_path=data.get("storagePath"),
        order_id=data.get("orderId"),
    )
    return jsonify({"success": True, "document": document})


@bp.route("/documents", methods=["DELETE"])
def delete_document():
    data = request.get_json(silent=True) or {}
    document_id = data.get("id") or request.args.get("id")
    if not document_id:
        return jsonify({"success": False, "error": "id is required"}), 400

    get_document_service().delete_document(document_id)
    return jsonify({"success": True})
