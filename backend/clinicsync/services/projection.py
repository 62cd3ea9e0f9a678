"""
ProjectionService: realtime Firestore projection of the queue board.

Mirrors each queue entry to clinics/{clinic_id}/queue/{patient_id} so
front-desk screens can subscribe to changes. OPTIONAL - runs in no-op
mode if Firestore is disabled or unavailable.

All Firestore operations are NON-BLOCKING to keep queue writes fast.
"""

import threading
from datetime import datetime
from typing import Any, Dict, Optional

from clinicsync.config import config
from clinicsync.db.firestore import get_firestore_client, firestore_enabled, firestore_available


class ProjectionService:
    """Manages Firestore queue board documents."""

    def __init__(self, clinic_id: Optional[str] = None):
        self.clinic_id = clinic_id or config.CLINIC_ID
        self._client = None
        self._enabled = None

    @property
    def enabled(self) -> bool:
        if self._enabled is None:
            self._enabled = firestore_enabled() and firestore_available()
        return self._enabled

    @property
    def client(self):
        if self._client is None:
            self._client = get_firestore_client()
        return self._client

    def _run_async(self, func, *args, **kwargs):
        """Fire-and-forget in a daemon thread."""
        def _wrapper():
            try:
                func(*args, **kwargs)
            except Exception as e:
                print(f"[ProjectionService] Async operation failed: {e}")

        thread = threading.Thread(target=_wrapper, daemon=True)
        thread.start()
        return True

    def _queue_ref(self, patient_id: str):
        if not self.client:
            return None
        return (
            self.client.collection("clinics")
            .document(self.clinic_id)
            .collection("queue")
            .document(patient_id)
        )

    def update_queue_entry(self, entry: Dict[str, Any]) -> bool:
        """
        Upsert a queue board document (NON-BLOCKING).

        Returns True if the write was queued, False if Firestore is off.
        """
        if not self.enabled:
            return False

        ref = self._queue_ref(entry["patientId"])
        if not ref:
            return False

        data = dict(entry, projected_at=datetime.utcnow().isoformat())

        def _do_update():
            ref.set(data, merge=True)
            print(f"[ProjectionService] Updated queue: {self.clinic_id}/{entry['patientId']}")

        return self._run_async(_do_update)

    def remove_queue_entry(self, patient_id: str) -> bool:
        """Drop a patient from the board (NON-BLOCKING)."""
        if not self.enabled:
            return False

        ref = self._queue_ref(patient_id)
        if not ref:
            return False

        return self._run_async(ref.delete)


# Singleton instance
_projection_service: Optional[ProjectionService] = None


def get_projection_service() -> ProjectionService:
    """Get the singleton ProjectionService instance."""
    global _projection_service
    if _projection_service is None:
        _projection_service = ProjectionService()
    return _projection_service
