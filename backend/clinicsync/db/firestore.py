"""
Firestore client wrapper for the realtime queue board.

Supports multiple databases based on DATABASE_MODE:
- local: uses 'clinicsync-dev' database
- cloud: uses '(default)' database

Degrades to None when Firestore is disabled, misconfigured or unreachable.
"""

import os
import threading
from pathlib import Path

from clinicsync.config import config

# Firestore client (initialized lazily)
_firestore_client = None
_firestore_available = None  # None = not tested, True/False = tested


def firestore_enabled() -> bool:
    """Check if Firestore is enabled in config."""
    return config.ENABLE_FIRESTORE


def firestore_available() -> bool:
    """
    Check if Firestore is both enabled AND reachable.

    Returns False if disabled or connection failed.
    """
    if not firestore_enabled():
        return False

    if _firestore_available is not None:
        return _firestore_available

    get_firestore_client()
    return bool(_firestore_available)


def check_firestore_connection(client, timeout: float = 3.0) -> bool:
    """Probe Firestore with a collection listing bounded by `timeout`."""
    global _firestore_available

    result = {"success": False}

    def _probe():
        try:
            list(client.collections())
            result["success"] = True
        except Exception as e:
            print(f"[Firestore] Probe failed: {e}")

    thread = threading.Thread(target=_probe, daemon=True)
    thread.start()
    thread.join(timeout=timeout)

    if thread.is_alive():
        print(f"[Firestore] Connection test timed out ({timeout}s)")
        _firestore_available = False
        return False

    _firestore_available = result["success"]
    print(f"[Firestore] Connection test {'passed' if result['success'] else 'failed'}")
    return result["success"]


def get_firestore_client():
    """
    Get or create Firestore client.

    Returns None if Firestore is disabled or unavailable.
    """
    global _firestore_client, _firestore_available

    if not firestore_enabled():
        return None

    # Tested and unavailable: don't retry
    if _firestore_available is False:
        return None

    if _firestore_client is not None:
        return _firestore_client

    creds_path = config.GCP_CREDENTIALS_PATH
    if not os.path.isabs(creds_path):
        backend_dir = Path(__file__).parent.parent.parent
        creds_path = backend_dir / creds_path

    if not os.path.exists(creds_path):
        print(f"[Firestore] Credentials not found: {creds_path}")
        _firestore_available = False
        return None

    os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = str(creds_path)

    from google.cloud import firestore

    database_id = config.get_firestore_database()
    try:
        _firestore_client = firestore.Client(
            project=config.GCP_PROJECT_ID,
            database=database_id,
        )
    except Exception as e:
        print(f"[Firestore] Connection error: {e}")
        _firestore_available = False
        return None

    print(f"[Firestore] Connected to project: {config.GCP_PROJECT_ID}, database: {database_id}")
    check_firestore_connection(_firestore_client, timeout=3.0)
    return _firestore_client


def reset_firestore_state():
    """Reset Firestore state for testing or retry."""
    global _firestore_client, _firestore_available
    _firestore_client = None
    _firestore_available = None
