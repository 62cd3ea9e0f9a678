"""
EventLogService: append-only audit event logging.

PHI-safe payloads only - identity numbers, dates of birth and addresses
are redacted before they reach the ledger.
"""

from typing import Optional, Dict, Any
from sqlalchemy.orm import Session as DbSession

from clinicsync.config import config
from clinicsync.db.postgres import get_db_session
from clinicsync.models import EventLog


class EventLogService:
    """
    Append-only audit event logging.

    Event types:
    - Queue.Enqueued / Queue.StatusChanged / Queue.Removed
    - Triage.Recorded
    - Order.Placed / Order.StatusChanged / Order.ResultsReceived
    - Fhir.ExtensionsRegistered / Fhir.ConsultationExported
    - Document.Created / Document.Deleted
    """

    QUEUE_ENQUEUED = "Queue.Enqueued"
    QUEUE_STATUS_CHANGED = "Queue.StatusChanged"
    QUEUE_REMOVED = "Queue.Removed"
    TRIAGE_RECORDED = "Triage.Recorded"
    ORDER_PLACED = "Order.Placed"
    ORDER_STATUS_CHANGED = "Order.StatusChanged"
    ORDER_RESULTS_RECEIVED = "Order.ResultsReceived"
    EXTENSIONS_REGISTERED = "Fhir.ExtensionsRegistered"
    CONSULTATION_EXPORTED = "Fhir.ConsultationExported"
    DOCUMENT_CREATED = "Document.Created"
    DOCUMENT_DELETED = "Document.Deleted"

    PHI_KEYS = {"nric", "ssn", "mrn", "dob", "date_of_birth", "dateofbirth", "address", "phone", "email"}

    def __init__(self, db_session: Optional[DbSession] = None):
        self._explicit_db = db_session  # Only set if explicitly passed

    @property
    def db(self) -> DbSession:
        if self._explicit_db is not None:
            return self._explicit_db
        return get_db_session()

    def append_event(
        self,
        event_type: str,
        patient_id: Optional[str] = None,
        actor: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        commit: bool = True,
    ) -> EventLog:
        """
        Append an event to the audit log.

        INSERT-only; events are never updated or deleted. Pass commit=False
        to ride along with the caller's transaction.
        """
        event = EventLog(
            clinic_id=config.CLINIC_ID,
            event_type=event_type,
            patient_id=patient_id,
            actor=actor,
            payload_json=self._sanitize_payload(payload) if payload else None,
            correlation_id=correlation_id,
        )
        self.db.add(event)
        if commit:
            self.db.commit()
        return event

    def _sanitize_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {}
        for key, value in payload.items():
            if key.lower() in self.PHI_KEYS:
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_payload(value)
            else:
                sanitized[key] = value
        return sanitized
