"""
ResultsService: intake of lab and imaging results against existing orders.

Lab results become Observations based on the ServiceRequest, gathered
under one DiagnosticReport; the order is then marked completed. Imaging
arrives as an ImagingStudy from PACS, and a radiologist's report is a
DiagnosticReport citing that study.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session as DbSession

from clinicsync.errors import ValidationError
from clinicsync.fhir.client import get_fhir_client
from clinicsync.fhir.linker import ReferenceLinker
from clinicsync.fhir.mappers import (
    map_imaging_report,
    map_imaging_study,
    map_lab_observation,
    map_lab_report,
    order_category,
)
from clinicsync.fhir.references import ExternalReference, reference_id
from clinicsync.services.event_log import EventLogService
from clinicsync.services.order_service import OrderStatus

REPORT_STATUSES = ("preliminary", "final", "amended")


class ResultsService:

    def __init__(
        self,
        db_session: Optional[DbSession] = None,
        repository=None,
        clock: Optional[Callable[[], datetime]] = None,
        events: Optional[EventLogService] = None,
    ):
        self.repository = repository or get_fhir_client()
        self.linker = ReferenceLinker(self.repository)
        self.clock = clock or datetime.utcnow
        self.events = events or EventLogService(db_session)
        self.logger = logging.getLogger("service.ResultsService")

    def _load_order(self, order_id: str, kind: str) -> Dict[str, Any]:
        if not order_id:
            raise ValidationError("serviceRequestId is required")
        order = self.repository.read("ServiceRequest", order_id)
        if order_category(order) != kind:
            raise ValidationError(f"ServiceRequest/{order_id} is not a {kind} order")
        return order

    def _complete_order(self, order: Dict[str, Any]) -> None:
        if order.get("status") != OrderStatus.COMPLETED:
            self.repository.update("ServiceRequest", order["id"], dict(order, status=OrderStatus.COMPLETED))

    def receive_lab_results(
        self,
        order_id: str,
        results: List[Dict[str, Any]],
        conclusion: Optional[str] = None,
    ) -> ExternalReference:
        """Create the result Observations and their DiagnosticReport; returns the report."""
        if not results:
            raise ValidationError("At least one result is required")
        order = self._load_order(order_id, "lab")

        issued_at = self.clock()
        observations = [map_lab_observation(order, r, issued_at) for r in results]

        observation_refs = [self.linker.create(obs) for obs in observations]
        report_ref = self.linker.create(map_lab_report(
            order, observation_refs,
            [obs.get("status", "final") for obs in observations],
            issued_at, conclusion=conclusion,
        ))
        self._complete_order(order)

        self.events.append_event(
            EventLogService.ORDER_RESULTS_RECEIVED,
            patient_id=reference_id(order.get("subject"), "Patient"),
            payload={
                "service_request_id": order_id,
                "diagnostic_report_id": report_ref.id,
                "observations": len(observation_refs),
            },
        )
        self.logger.info(f"Received {len(observation_refs)} lab results for ServiceRequest/{order_id}")
        return report_ref

    def receive_imaging_study(self, order_id: str, study: Dict[str, Any]) -> ExternalReference:
        if not study:
            raise ValidationError("study is required")
        order = self._load_order(order_id, "imaging")

        study_ref = self.linker.create(map_imaging_study(order, study))
        self.events.append_event(
            EventLogService.ORDER_RESULTS_RECEIVED,
            patient_id=reference_id(order.get("subject"), "Patient"),
            payload={"service_request_id": order_id, "imaging_study_id": study_ref.id},
        )
        self.logger.info(f"Stored {study_ref.reference} for ServiceRequest/{order_id}")
        return study_ref

    def create_imaging_report(
        self,
        study_id: str,
        findings: str,
        impression: str,
        status: str = "final",
        radiologist: Optional[str] = None,
    ) -> ExternalReference:
        """Radiology report for a stored study. A final report completes the order."""
        if not study_id:
            raise ValidationError("imagingStudyId is required")
        if not (impression or "").strip():
            raise ValidationError("impression is required")
        if status not in REPORT_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(REPORT_STATUSES)}")

        study = self.repository.read("ImagingStudy", study_id)
        report_ref = self.linker.create(
            map_imaging_report(study, findings or "", impression.strip(), self.clock(), status, radiologist)
        )

        order_id = reference_id((study.get("basedOn") or [None])[0], "ServiceRequest")
        if status == "final" and order_id:
            self._complete_order(self.repository.read("ServiceRequest", order_id))

        self.events.append_event(
            EventLogService.ORDER_RESULTS_RECEIVED,
            patient_id=reference_id(study.get("subject"), "Patient"),
            payload={"imaging_study_id": study_id, "diagnostic_report_id": report_ref.id, "status": status},
        )
        return report_ref


def get_results_service() -> ResultsService:
    return ResultsService()
