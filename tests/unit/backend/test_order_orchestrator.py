"""
Unit tests for OrderOrchestrator.

Tests the core logic for:
- Validation before any external write
- Index-aligned fan-out results
- Partial failure reporting
- Status-only order updates
"""

import pytest

from clinicsync.errors import MappingError, NotFound, PartialOrderFailure, UpstreamFailure, ValidationError
from clinicsync.fhir.mappers import order_category
from clinicsync.models import EventLog, Patient
from clinicsync.services.order_service import ORDER_KINDS, OrderOrchestrator


@pytest.fixture
def orders(db_session, repository, clock):
    return OrderOrchestrator(db_session, repository=repository, clock=clock, max_workers=3)


@pytest.fixture
def patient(make_patient):
    return make_patient("p1", full_name="Siti Nurhaliza")


def _linked_encounter(repository, db_session, patient):
    """An upstream Encounter for the patient, syncing the patient first if needed."""
    if not patient.fhir_patient_id:
        synced = repository.create("Patient", {"resourceType": "Patient"})
        patient.fhir_patient_id = synced["id"]
        db_session.commit()
    created = repository.create("Encounter", {
        "resourceType": "Encounter", "status": "triaged",
        "class": {"code": "AMB"}, "subject": {"reference": f"Patient/{patient.fhir_patient_id}"},
    })
    return f"Encounter/{created['id']}"


@pytest.fixture
def encounter(repository, db_session, patient):
    return _linked_encounter(repository, db_session, patient)


# =============================================================================
# Test registry
# =============================================================================

class TestOrderKinds:

    def test_registry_has_the_three_kinds(self):
        assert set(ORDER_KINDS) == {"lab", "imaging", "referral"}

    def test_unknown_kind_is_rejected(self, orders, patient):
        with pytest.raises(ValidationError):
            orders.place_order("pharmacy", "p1", None, ["X"])


# =============================================================================
# Test validation phase
# =============================================================================

class TestValidation:

    def test_empty_items_rejected(self, orders, patient, repository):
        with pytest.raises(ValidationError):
            orders.place_order("lab", "p1", None, [])
        assert repository.calls == []

    def test_unknown_test_code_rejected_with_zero_creates(self, orders, patient, repository):
        with pytest.raises(ValidationError):
            orders.place_order("lab", "p1", None, ["CBC", "NOT_A_TEST"])
        assert repository.calls == []

    def test_imaging_with_blank_indication_creates_nothing(self, orders, patient, repository):
        with pytest.raises(ValidationError):
            orders.place_order("imaging", "p1", None, ["CHEST_XRAY"], {"clinical_indication": "   "})
        assert repository.calls == []

    def test_referral_requires_facility_and_reason(self, orders, patient, repository):
        with pytest.raises(ValidationError):
            orders.place_order("referral", "p1", None, ["Cardiology"], {"facility": "GH"})
        assert repository.calls == []

    def test_invalid_priority_rejected(self, orders, patient):
        with pytest.raises(ValidationError):
            orders.place_order("lab", "p1", None, ["CBC"], {"priority": "whenever"})

    def test_unknown_patient_raises_not_found(self, orders, repository):
        with pytest.raises(NotFound):
            orders.place_order("lab", "ghost", None, ["CBC"])
        assert repository.count("ServiceRequest") == 0

    def test_dangling_encounter_raises_not_found(self, orders, patient, repository):
        with pytest.raises(NotFound):
            orders.place_order("lab", "p1", "Encounter/missing", ["CBC"])
        assert repository.count("ServiceRequest") == 0

    def test_non_encounter_reference_rejected(self, orders, patient):
        with pytest.raises(ValidationError):
            orders.place_order("lab", "p1", "Patient/p1", ["CBC"])

    def test_other_patients_encounter_rejected(self, orders, patient, make_patient, repository, db_session):
        other = make_patient("p2", full_name="Someone Else")
        foreign = _linked_encounter(repository, db_session, other)

        with pytest.raises(ValidationError) as exc:
            orders.place_order("lab", "p1", foreign, ["CBC"])

        assert "different patient" in exc.value.message
        assert repository.count("ServiceRequest") == 0
        assert repository.count("StructureDefinition") == 0

    def test_mapping_error_happens_before_any_upstream_write(self, orders, patient, repository, monkeypatch):
        def failing_build(resolved, context):
            raise MappingError("ServiceRequest: unmappable item")

        monkeypatch.setattr(ORDER_KINDS["lab"], "build", failing_build)

        with pytest.raises(MappingError):
            orders.place_order("lab", "p1", None, ["CBC"])

        assert [action for action, _ in repository.calls if action == "create"] == []
        assert patient.fhir_patient_id is None


# =============================================================================
# Test commit phase
# =============================================================================

class TestPlaceOrder:

    def test_two_tests_give_two_index_aligned_ids(self, orders, patient, encounter, repository):
        result = orders.place_order("lab", "p1", encounter, ["CBC", "BMP"])

        assert result.ok
        assert len(result.resource_ids) == 2
        codes = [repository.read("ServiceRequest", i)["code"]["coding"][0]["code"] for i in result.resource_ids]
        assert codes == ["58410-2", "51990-0"]

    def test_service_requests_cite_patient_and_encounter(self, orders, patient, encounter, repository, db_session):
        result = orders.place_order("lab", "p1", encounter, ["CBC"])
        request = repository.read("ServiceRequest", result.resource_ids[0])

        fhir_patient_id = db_session.get(Patient, "p1").fhir_patient_id
        assert request["subject"] == {"reference": f"Patient/{fhir_patient_id}"}
        assert request["encounter"] == {"reference": encounter}
        assert order_category(request) == "lab"

    def test_bare_encounter_id_is_accepted(self, orders, patient, encounter):
        result = orders.place_order("lab", "p1", encounter.split("/")[1], ["CBC"])
        assert result.ok

    def test_patient_synced_once_across_orders(self, orders, patient, repository):
        orders.place_order("lab", "p1", None, ["CBC"])
        orders.place_order("lab", "p1", None, ["LIPID"])
        assert repository.count("Patient") == 1

    def test_extensions_registered_before_first_order(self, orders, patient, repository):
        orders.place_order("lab", "p1", None, ["CBC"])
        creates = [kind for action, kind in repository.calls if action == "create"]
        assert creates[:2] == ["StructureDefinition", "StructureDefinition"]

    def test_registration_failure_blocks_order(self, db_session, repository, patient, clock):
        repository.fail_on("StructureDefinition")
        orders = OrderOrchestrator(db_session, repository=repository, clock=clock)
        with pytest.raises(UpstreamFailure):
            orders.place_order("lab", "p1", None, ["CBC"])
        assert repository.count("ServiceRequest") == 0

    def test_imaging_order_keeps_indication(self, orders, patient, repository):
        result = orders.place_order(
            "imaging", "p1", None, ["CHEST_XRAY", "HEAD_CT"],
            {"clinical_indication": "Fall with head strike", "priority": "urgent"},
        )
        requests = [repository.read("ServiceRequest", i) for i in result.resource_ids]
        assert all(r["reasonCode"] == [{"text": "Fall with head strike"}] for r in requests)
        assert all(r["priority"] == "urgent" for r in requests)

    def test_referral_order(self, orders, patient, repository):
        result = orders.place_order(
            "referral", "p1", None, ["Cardiology"],
            {"facility": "General Hospital", "reason": "Palpitations", "urgency": "urgent"},
        )
        request = repository.read("ServiceRequest", result.resource_ids[0])
        assert order_category(request) == "referral"
        assert request["code"]["text"] == "Referral to Cardiology"

    def test_audit_event_recorded(self, orders, patient, db_session):
        result = orders.place_order("lab", "p1", None, ["CBC"], {"ordered_by": "Dr Lim"})
        event = db_session.query(EventLog).filter(EventLog.event_type == "Order.Placed").one()
        assert event.actor == "Dr Lim"
        assert event.payload_json["service_request_ids"] == result.resource_ids


# =============================================================================
# Test partial failure
# =============================================================================

class TestPartialFailure:

    def test_failed_item_does_not_cancel_siblings(self, db_session, repository, patient, clock):
        # Serial fan-out makes "the second create" deterministic
        orders = OrderOrchestrator(db_session, repository=repository, clock=clock, max_workers=1)
        repository.fail_on("ServiceRequest", nth=2)

        result = orders.place_order("lab", "p1", None, ["CBC", "BMP", "LFT"])

        assert not result.ok
        assert result.succeeded == [0, 2]
        assert result.failed == [1]
        assert result.resource_ids[1] is None
        assert result.resource_ids[0] is not None and result.resource_ids[2] is not None
        assert "rejected" in result.outcomes[1].error

    def test_partial_failure_error_carries_committed_refs(self, db_session, repository, patient, clock):
        orders = OrderOrchestrator(db_session, repository=repository, clock=clock, max_workers=1)
        repository.fail_on("ServiceRequest", nth=2)
        result = orders.place_order("lab", "p1", None, ["CBC", "BMP", "LFT"])

        error = PartialOrderFailure(result)
        data = error.to_dict()
        assert data["success"] is False
        assert data["failed"] == [1]
        assert len(data["committed"]) == 2

    def test_all_items_failing(self, orders, repository, patient):
        repository.fail_on("ServiceRequest")
        result = orders.place_order("lab", "p1", None, ["CBC", "BMP"])
        assert result.failed == [0, 1]
        assert result.resource_ids == [None, None]


# =============================================================================
# Test update_status
# =============================================================================

class TestUpdateStatus:

    def test_only_status_changes(self, orders, patient, repository):
        order_id = orders.place_order("lab", "p1", None, ["CBC"]).resource_ids[0]
        before = repository.read("ServiceRequest", order_id)

        orders.update_status(order_id, "revoked")
        after = repository.read("ServiceRequest", order_id)

        assert after["status"] == "revoked"
        assert after["id"] == before["id"]
        assert {k: v for k, v in after.items() if k != "status"} == {k: v for k, v in before.items() if k != "status"}

    def test_unbounded_status_rejected(self, orders, patient):
        order_id = orders.place_order("lab", "p1", None, ["CBC"]).resource_ids[0]
        with pytest.raises(ValidationError):
            orders.update_status(order_id, "on-hold")

    def test_unknown_order_raises_not_found(self, orders):
        with pytest.raises(NotFound):
            orders.update_status("nope", "completed")

    def test_same_status_skips_update(self, orders, patient, repository):
        order_id = orders.place_order("lab", "p1", None, ["CBC"]).resource_ids[0]
        orders.update_status(order_id, "active")
        assert repository.count("ServiceRequest", action="update") == 0
