"""
OrderOrchestrator: places lab, imaging and referral orders.

Each order kind is a variant in a static registry (ORDER_KINDS), all
implementing BaseOrderKind. Placing an order runs in two phases:

Validation (no external writes):
    items non-empty, catalog codes known, kind-specific fields present
    (imaging needs a clinical indication, referrals a facility and
    reason), patient exists, encounter (if given) readable and the
    patient's own, and every ServiceRequest body mapped.

Commit:
    extensions ensured once, the FHIR Patient ensured, then one
    ServiceRequest per item created concurrently. Outcomes are collected
    per input index; a failed item never cancels its siblings, and items
    already created stay created.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy.orm import Session as DbSession

from clinicsync.config import config
from clinicsync.db.postgres import get_db_session
from clinicsync.errors import UpstreamFailure, ValidationError
from clinicsync.fhir import terminology as term
from clinicsync.fhir.client import get_fhir_client
from clinicsync.fhir.extensions import ExtensionRegistrar, get_extension_registrar
from clinicsync.fhir.linker import ReferenceLinker
from clinicsync.fhir.mappers import map_imaging_request, map_lab_request, map_referral_request
from clinicsync.fhir.references import ExternalReference
from clinicsync.models import Patient
from clinicsync.services.event_log import EventLogService
from clinicsync.services.patient_sync import (
    belongs_to_patient,
    ensure_patient_reference,
    load_patient,
    patient_reference,
)
from clinicsync.utils.tasks import run_indexed


class OrderStatus:
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    REVOKED = "revoked"
    ENTERED_IN_ERROR = "entered-in-error"

    ALL = (DRAFT, ACTIVE, COMPLETED, REVOKED, ENTERED_IN_ERROR)


PRIORITIES = ("routine", "urgent", "asap", "stat")


# =============================================================================
# Order kinds
# =============================================================================

@dataclass
class OrderContext:
    """Everything an order kind needs to build one ServiceRequest."""
    patient_ref: ExternalReference
    encounter_ref: Optional[ExternalReference]
    authored_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


class BaseOrderKind(ABC):
    """
    Template for an order kind.

    Subclasses must implement:
    - name: registry key ("lab", "imaging", "referral")
    - resolve_item(): catalog lookup for one item
    - build(): the ServiceRequest for one resolved item

    Subclasses may override:
    - validate(): kind-specific checks on the metadata
    """

    item_label = "items"

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def resolve_item(self, item: Any) -> Any:
        pass

    @abstractmethod
    def build(self, resolved: Any, context: OrderContext) -> Dict[str, Any]:
        pass

    def validate(self, metadata: Dict[str, Any]) -> None:
        priority = metadata.get("priority")
        if priority and priority not in PRIORITIES:
            raise ValidationError(f"priority must be one of {', '.join(PRIORITIES)}")

    def resolve_all(self, items: Sequence[Any], metadata: Dict[str, Any]) -> List[Any]:
        if not items:
            raise ValidationError(f"At least one of {self.item_label} is required")
        self.validate(metadata)
        return [self.resolve_item(item) for item in items]


class LabOrderKind(BaseOrderKind):
    item_label = "tests"

    @property
    def name(self) -> str:
        return "lab"

    def resolve_item(self, item: Any) -> term.Coding:
        code = str(item or "").strip().upper()
        if code not in term.LAB_TESTS:
            raise ValidationError(f"Unknown lab test '{item}'")
        return term.LAB_TESTS[code]

    def build(self, resolved: term.Coding, context: OrderContext) -> Dict[str, Any]:
        meta = context.metadata
        return map_lab_request(
            context.patient_ref, resolved, context.authored_at,
            encounter_ref=context.encounter_ref,
            priority=meta.get("priority") or "routine",
            ordered_by=meta.get("ordered_by"),
            clinical_notes=meta.get("clinical_notes"),
        )


class ImagingOrderKind(BaseOrderKind):
    item_label = "procedures"

    @property
    def name(self) -> str:
        return "imaging"

    def validate(self, metadata: Dict[str, Any]) -> None:
        super().validate(metadata)
        if not (metadata.get("clinical_indication") or "").strip():
            raise ValidationError("clinicalIndication is required for imaging orders")

    def resolve_item(self, item: Any) -> term.ImagingProcedure:
        code = str(item or "").strip().upper()
        if code not in term.IMAGING_PROCEDURES:
            raise ValidationError(f"Unknown imaging procedure '{item}'")
        return term.IMAGING_PROCEDURES[code]

    def build(self, resolved: term.ImagingProcedure, context: OrderContext) -> Dict[str, Any]:
        meta = context.metadata
        return map_imaging_request(
            context.patient_ref, resolved, meta["clinical_indication"], context.authored_at,
            encounter_ref=context.encounter_ref,
            priority=meta.get("priority") or "routine",
            ordered_by=meta.get("ordered_by"),
            clinical_question=meta.get("clinical_question"),
        )


class ReferralOrderKind(BaseOrderKind):
    """Items are specialties; facility and reason apply to every item."""

    item_label = "specialties"

    @property
    def name(self) -> str:
        return "referral"

    def validate(self, metadata: Dict[str, Any]) -> None:
        urgency = metadata.get("urgency")
        if urgency and urgency not in PRIORITIES:
            raise ValidationError(f"urgency must be one of {', '.join(PRIORITIES)}")
        for key, label in (("facility", "facility"), ("reason", "reason")):
            if not (metadata.get(key) or "").strip():
                raise ValidationError(f"{label} is required for referrals")

    def resolve_item(self, item: Any) -> str:
        specialty = str(item or "").strip()
        if not specialty:
            raise ValidationError("specialty is required for referrals")
        return specialty

    def build(self, resolved: str, context: OrderContext) -> Dict[str, Any]:
        meta = context.metadata
        return map_referral_request(
            context.patient_ref, resolved, meta["facility"].strip(), meta["reason"].strip(),
            context.authored_at,
            encounter_ref=context.encounter_ref,
            department=meta.get("department"),
            doctor_name=meta.get("doctor_name"),
            urgency=meta.get("urgency"),
            clinical_info=meta.get("clinical_info"),
        )


ORDER_KINDS: Dict[str, BaseOrderKind] = {
    kind.name: kind for kind in (LabOrderKind(), ImagingOrderKind(), ReferralOrderKind())
}


# =============================================================================
# Results
# =============================================================================

@dataclass
class ItemOutcome:
    index: int
    item: Any
    reference: Optional[ExternalReference] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "item": self.item,
            "ok": self.ok,
            "resourceId": self.reference.id if self.reference else None,
            "error": self.error,
        }


@dataclass
class OrderResult:
    """Index-aligned outcome of a multi-item order."""
    kind: str
    outcomes: List[ItemOutcome]

    @property
    def resource_refs(self) -> List[Optional[ExternalReference]]:
        return [o.reference for o in self.outcomes]

    @property
    def resource_ids(self) -> List[Optional[str]]:
        return [o.reference.id if o.reference else None for o in self.outcomes]

    @property
    def succeeded(self) -> List[int]:
        return [o.index for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[int]:
        return [o.index for o in self.outcomes if not o.ok]

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "serviceRequestIds": self.resource_ids,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "items": [o.to_dict() for o in self.outcomes],
        }


# =============================================================================
# Orchestrator
# =============================================================================

class OrderOrchestrator:
    """
    Usage:
        orders = OrderOrchestrator()
        result = orders.place_order("lab", "p-1", "Encounter/e-9", ["CBC", "BMP"])
        result.resource_ids  # one id per item, same order as the input
    """

    def __init__(
        self,
        db_session: Optional[DbSession] = None,
        repository=None,
        registrar: Optional[ExtensionRegistrar] = None,
        clock: Optional[Callable[[], datetime]] = None,
        events: Optional[EventLogService] = None,
        max_workers: Optional[int] = None,
    ):
        self._db = db_session
        self.repository = repository or get_fhir_client()
        self.registrar = registrar or (
            get_extension_registrar() if repository is None else ExtensionRegistrar(self.repository)
        )
        self.linker = ReferenceLinker(self.repository)
        self.clock = clock or datetime.utcnow
        self.events = events or EventLogService(db_session)
        self.max_workers = max_workers or config.ORDER_FANOUT_WORKERS
        self.logger = logging.getLogger("service.OrderOrchestrator")

    @property
    def db(self) -> DbSession:
        if self._db is None:
            return get_db_session()
        return self._db

    def _resolve_encounter(
        self,
        encounter_ref: Union[None, str, ExternalReference],
        patient: Patient,
    ) -> Optional[ExternalReference]:
        if not encounter_ref:
            return None
        if isinstance(encounter_ref, str):
            encounter_ref = (
                ExternalReference.parse(encounter_ref) if "/" in encounter_ref
                else ExternalReference("Encounter", encounter_ref)
            )
        if encounter_ref.resource_type != "Encounter":
            raise ValidationError(f"{encounter_ref.reference} is not an Encounter")
        # Raises NotFound for a dangling encounter
        encounter = self.repository.read("Encounter", encounter_ref.id)
        if not belongs_to_patient(encounter, patient):
            raise ValidationError(f"{encounter_ref.reference} belongs to a different patient")
        return encounter_ref

    def place_order(
        self,
        kind: str,
        patient_id: str,
        encounter_ref: Union[None, str, ExternalReference],
        items: Sequence[Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OrderResult:
        """Validate everything, then create one ServiceRequest per item."""
        order_kind = ORDER_KINDS.get(kind)
        if order_kind is None:
            raise ValidationError(f"Unknown order kind '{kind}'")

        metadata = dict(metadata or {})
        items = list(items or [])

        # --- validation phase ---
        resolved = order_kind.resolve_all(items, metadata)
        patient = load_patient(patient_id, self.db)
        encounter = self._resolve_encounter(encounter_ref, patient)
        authored_at = self.clock()

        # Map every body against a stand-in subject so mapping errors surface
        # before the Patient or the extensions are written upstream
        draft_ref = patient_reference(patient) or ExternalReference("Patient", patient.patient_id)
        draft = OrderContext(draft_ref, encounter, authored_at, metadata)
        for r in resolved:
            order_kind.build(r, draft)

        # --- commit phase ---
        registration = self.registrar.ensure_once()
        if not registration.ok:
            raise UpstreamFailure(
                "FHIR extension registration failed: "
                + ", ".join(f["url"] for f in registration.failed)
            )

        patient_ref = ensure_patient_reference(patient, self.linker, self.db)
        context = OrderContext(patient_ref, encounter, authored_at, metadata)
        resources = [order_kind.build(r, context) for r in resolved]

        outcomes = run_indexed(lambda i, resource: self.linker.create(resource), resources, self.max_workers)
        result = OrderResult(
            kind=kind,
            outcomes=[
                ItemOutcome(
                    index=o.index,
                    item=items[o.index],
                    reference=o.value if o.ok else None,
                    error=None if o.ok else str(o.error),
                )
                for o in outcomes
            ],
        )

        self.events.append_event(
            EventLogService.ORDER_PLACED,
            patient_id=patient_id,
            actor=metadata.get("ordered_by") or metadata.get("doctor_name"),
            payload={
                "kind": kind,
                "items": [str(i) for i in items],
                "service_request_ids": result.resource_ids,
                "failed": result.failed,
            },
        )

        if result.ok:
            self.logger.info(f"Placed {kind} order for {patient_id}: {len(items)} {order_kind.item_label}")
        else:
            self.logger.error(f"{kind} order for {patient_id} partially failed at items {result.failed}")
        return result

    def update_status(self, order_id: str, status: str) -> Dict[str, Any]:
        """Change only the status of an existing ServiceRequest."""
        if status not in OrderStatus.ALL:
            raise ValidationError(f"status must be one of {', '.join(OrderStatus.ALL)}")

        resource = self.repository.read("ServiceRequest", order_id)
        previous = resource.get("status")
        if previous == status:
            return resource

        updated = self.repository.update("ServiceRequest", order_id, dict(resource, status=status))
        self.events.append_event(
            EventLogService.ORDER_STATUS_CHANGED,
            payload={"service_request_id": order_id, "from": previous, "to": status},
        )
        self.logger.info(f"ServiceRequest/{order_id}: {previous} -> {status}")
        return updated


def get_order_orchestrator() -> OrderOrchestrator:
    return OrderOrchestrator()
