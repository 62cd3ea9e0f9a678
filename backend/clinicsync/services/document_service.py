"""
DocumentService: patient documents as FHIR DocumentReferences.

The file itself lives in object storage; only its URL, metadata and
storage path (as an extension) are recorded upstream.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session as DbSession

from clinicsync.db.postgres import get_db_session
from clinicsync.errors import UpstreamFailure, ValidationError
from clinicsync.fhir.client import get_fhir_client
from clinicsync.fhir.extensions import ExtensionRegistrar, get_extension_registrar
from clinicsync.fhir.linker import ReferenceLinker
from clinicsync.fhir.mappers import map_document_reference, parse_document
from clinicsync.fhir.references import ExternalReference, reference_id
from clinicsync.services.event_log import EventLogService
from clinicsync.services.patient_sync import belongs_to_patient, ensure_patient_reference, load_patient


class DocumentService:

    def __init__(
        self,
        db_session: Optional[DbSession] = None,
        repository=None,
        registrar: Optional[ExtensionRegistrar] = None,
        clock: Optional[Callable[[], datetime]] = None,
        events: Optional[EventLogService] = None,
    ):
        self._db = db_session
        self.repository = repository or get_fhir_client()
        self.registrar = registrar or (
            get_extension_registrar() if repository is None else ExtensionRegistrar(self.repository)
        )
        self.linker = ReferenceLinker(self.repository)
        self.clock = clock or datetime.utcnow
        self.events = events or EventLogService(db_session)
        self.logger = logging.getLogger("service.DocumentService")

    @property
    def db(self) -> DbSession:
        if self._db is None:
            return get_db_session()
        return self._db

    def create_document(
        self,
        patient_id: str,
        title: str,
        url: str,
        content_type: str,
        size: Optional[int] = None,
        uploaded_by: Optional[str] = None,
        storage_path: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record an uploaded file against a patient (and optionally an order)."""
        for value, name in ((title, "title"), (url, "url"), (content_type, "contentType")):
            if not (value or "").strip():
                raise ValidationError(f"{name} is required")
        if size is not None and (isinstance(size, bool) or not isinstance(size, int) or size < 0):
            raise ValidationError("size must be a non-negative integer")

        patient = load_patient(patient_id, self.db)
        order_ref = None
        if order_id:
            # Raises NotFound for a dangling order
            order = self.repository.read("ServiceRequest", order_id)
            if not belongs_to_patient(order, patient):
                raise ValidationError(f"ServiceRequest/{order_id} belongs to a different patient")
            order_ref = ExternalReference("ServiceRequest", order_id)

        if storage_path:
            registration = self.registrar.ensure_once()
            if not registration.ok:
                raise UpstreamFailure("FHIR extension registration failed")

        patient_ref = ensure_patient_reference(patient, self.linker, self.db)
        resource = map_document_reference(
            patient_ref, title.strip(), url.strip(), content_type.strip(), self.clock(),
            size=size, uploaded_by=uploaded_by, storage_path=storage_path, order_ref=order_ref,
        )
        ref = self.linker.create(resource)

        self.events.append_event(
            EventLogService.DOCUMENT_CREATED,
            patient_id=patient_id,
            actor=uploaded_by,
            payload={"document_id": ref.id, "content_type": content_type},
        )
        self.logger.info(f"Stored {ref.reference} for patient {patient_id}")
        return parse_document(dict(resource, id=ref.id))

    def delete_document(self, document_id: str) -> None:
        if not document_id:
            raise ValidationError("id is required")
        # Raises NotFound for an unknown document
        resource = self.repository.read("DocumentReference", document_id)
        self.repository.delete("DocumentReference", document_id)

        self.events.append_event(
            EventLogService.DOCUMENT_DELETED,
            payload={"document_id": document_id, "patient_ref": reference_id(resource.get("subject"), "Patient")},
        )
        self.logger.info(f"Deleted DocumentReference/{document_id}")


def get_document_service() -> DocumentService:
    return DocumentService()
