"""
Flask application entry point for the ClinicSync backend.

Registers the queue, triage, order and FHIR routes under /api.
"""

import logging
import traceback

from flask import Flask, jsonify

from clinicsync.config import config
from clinicsync.errors import ClinicSyncError
from clinicsync.api.queue import bp as queue_bp
from clinicsync.api.triage import bp as triage_bp
from clinicsync.api.labs import bp as labs_bp
from clinicsync.api.imaging import bp as imaging_bp
from clinicsync.api.referrals import bp as referrals_bp
from clinicsync.api.orders import bp as orders_bp
from clinicsync.api.documents import bp as documents_bp
from clinicsync.api.fhir import bp as fhir_bp
from clinicsync.db.postgres import close_db_session, rollback_session

logger = logging.getLogger("clinicsync.server")


def create_app(init_database: bool = False):
    """Create and configure Flask app."""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = Flask(__name__)

    # Load config
    app.config["SECRET_KEY"] = config.SECRET_KEY
    app.config["DEBUG"] = config.DEBUG

    # Enable CORS for the clinic front-end
    @app.after_request
    def after_request(response):
        response.headers.add("Access-Control-Allow-Origin", "*")
        response.headers.add("Access-Control-Allow-Headers", "Content-Type,Authorization")
        response.headers.add("Access-Control-Allow-Methods", "GET,PUT,POST,PATCH,DELETE,OPTIONS")
        return response

    # Ensure clean session state at the start of each request
    @app.before_request
    def ensure_clean_session():
        rollback_session()

    # Clean up database session at the end of each request
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        close_db_session(exception)

    @app.errorhandler(ClinicSyncError)
    def handle_clinicsync_error(error):
        if error.status_code >= 500:
            logger.error(f"{type(error).__name__}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        if hasattr(error, "code") and hasattr(error, "get_response"):
            # werkzeug HTTPException (404 route, 405 method)
            return error
        print(f"[ClinicSync] Unhandled error: {error}")
        traceback.print_exc()
        return jsonify({"success": False, "error": str(error)}), 500

    # Register blueprints
    app.register_blueprint(queue_bp)      # /api/queue
    app.register_blueprint(triage_bp)     # /api/triage
    app.register_blueprint(labs_bp)       # /api/labs/*
    app.register_blueprint(imaging_bp)    # /api/imaging/*
    app.register_blueprint(referrals_bp)  # /api/referrals
    app.register_blueprint(orders_bp)     # /api/orders/<id>
    app.register_blueprint(documents_bp)  # /api/documents
    app.register_blueprint(fhir_bp)       # /api/fhir/*

    # Health check endpoint
    @app.route("/health")
    def health():
        return {"status": "ok", "firestore_enabled": config.ENABLE_FIRESTORE}

    # Initialize database tables if requested (development only)
    if init_database:
        with app.app_context():
            from clinicsync.db.postgres import init_db
            init_db()
            print("[ClinicSync] Database tables initialized")

    return app


if __name__ == "__main__":
    app = create_app(init_database=False)
    print(f"[ClinicSync] Starting server on port {config.PORT}...")
    print(f"[ClinicSync] FHIR repository: {config.FHIR_BASE_URL}")
    print(f"[ClinicSync] Firestore enabled: {config.ENABLE_FIRESTORE}")
    print(f"[ClinicSync] Debug mode: {config.DEBUG}")
    print(f"[ClinicSync] Routes:")
    print(f"  - /api/queue (Queue board)")
    print(f"  - /api/triage (Triage)")
    print(f"  - /api/labs/* (Lab orders and results)")
    print(f"  - /api/imaging/* (Imaging orders, studies and reports)")
    print(f"  - /api/referrals (Referrals)")
    print(f"  - /api/orders/<id> (Order status)")
    print(f"  - /api/documents (Patient documents)")
    print(f"  - /api/fhir/* (Extensions, export, resource listing)")
    print(f"  - /health (Health check)")
    app.run(debug=config.DEBUG, port=config.PORT)
