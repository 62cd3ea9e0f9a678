"""
Backend services for ClinicSync.

- QueueService: patient queue and flow state machine
- TriageService: triage capture and FHIR triage encounter
- OrderOrchestrator: lab / imaging / referral order placement
- ResultsService: lab and imaging result intake
- QueryGateway: FHIR read side (by patient, by encounter, typed views)
- DocumentService: patient DocumentReferences
- ConsultationExporter: consultation -> linked FHIR resource tree
- EventLogService: append-only audit events
- ProjectionService: realtime Firestore queue board
"""

from .event_log import EventLogService
from .projection import ProjectionService, get_projection_service
from .queue_service import QueueService, get_queue_service
from .triage_service import TriageService, get_triage_service
from .order_service import OrderOrchestrator, OrderResult, ORDER_KINDS, get_order_orchestrator
from .results_service import ResultsService, get_results_service
from .query_service import QueryGateway, get_query_gateway
from .document_service import DocumentService, get_document_service
from .consultation_export import ConsultationExporter, get_consultation_exporter

__all__ = [
    "EventLogService",
    "ProjectionService",
    "get_projection_service",
    "QueueService",
    "get_queue_service",
    "TriageService",
    "get_triage_service",
    "OrderOrchestrator",
    "OrderResult",
    "ORDER_KINDS",
    "get_order_orchestrator",
    "ResultsService",
    "get_results_service",
    "QueryGateway",
    "get_query_gateway",
    "DocumentService",
    "get_document_service",
    "ConsultationExporter",
    "get_consultation_exporter",
]
