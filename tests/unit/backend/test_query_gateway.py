"""
Unit tests for QueryGateway.
"""

import pytest
from datetime import datetime

from clinicsync.errors import NotFound, ValidationError
from clinicsync.fhir import terminology as term
from clinicsync.fhir.mappers import (
    map_document_reference,
    map_imaging_report,
    map_imaging_study,
    map_lab_observation,
    map_lab_report,
    map_lab_request,
    map_referral_request,
)
from clinicsync.fhir.references import ExternalReference
from clinicsync.services.query_service import QueryGateway

AT = datetime(2026, 3, 1, 9, 0, 0)


@pytest.fixture
def gateway(db_session, repository):
    return QueryGateway(db_session, repository=repository)


@pytest.fixture
def synced_patient(make_patient, repository):
    """Clinic patient p1 linked to an upstream Patient resource."""
    created = repository.create("Patient", {"resourceType": "Patient", "name": [{"text": "Tan Ah Kow"}]})
    make_patient("p1", full_name="Tan Ah Kow", fhir_patient_id=created["id"])
    return ExternalReference("Patient", created["id"])


def _store(repository, resource):
    created = repository.create(resource["resourceType"], resource)
    return created


# =============================================================================
# Test unknown / unsynced patients
# =============================================================================

class TestEmptyResults:

    def test_unknown_patient_yields_empty_lists(self, gateway):
        assert gateway.by_patient("nobody") == []
        assert gateway.lab_reports(patient_id="nobody") == []
        assert gateway.imaging_studies(patient_id="nobody") == []
        assert gateway.referrals_for_patient("nobody") == []
        assert gateway.documents_for_patient("nobody") == []

    def test_unsynced_patient_yields_empty_list(self, gateway, make_patient, repository):
        make_patient("p2")
        assert gateway.by_patient("p2") == []
        assert repository.calls == []

    def test_unknown_encounter_yields_empty_list(self, gateway):
        assert gateway.by_encounter("Encounter-404") == []

    def test_scope_is_required(self, gateway):
        with pytest.raises(ValidationError):
            gateway.lab_reports()


# =============================================================================
# Test merged listings
# =============================================================================

class TestByPatient:

    def test_merges_kinds_ordered_by_creation_time(self, gateway, synced_patient, repository):
        _store(repository, map_lab_request(synced_patient, term.LAB_TESTS["CBC"], datetime(2026, 3, 1, 11, 0)))
        _store(repository, {
            "resourceType": "Encounter", "status": "triaged", "class": {"code": "AMB"},
            "subject": synced_patient.to_fhir(), "period": {"start": "2026-03-01T09:00:00+00:00"},
        })
        _store(repository, map_document_reference(
            synced_patient, "Referral letter", "https://files/x.pdf", "application/pdf", datetime(2026, 3, 1, 10, 0),
        ))

        kinds = [r["resourceType"] for r in gateway.by_patient("p1")]
        assert kinds == ["Encounter", "DocumentReference", "ServiceRequest"]

    def test_partial_dates_sort_without_failing(self, gateway, synced_patient, repository):
        _store(repository, {
            "resourceType": "Condition", "subject": synced_patient.to_fhir(),
            "code": {"text": "Asthma"}, "recordedDate": "2024-05",
        })
        _store(repository, map_lab_request(synced_patient, term.LAB_TESTS["CBC"], AT))

        kinds = [r["resourceType"] for r in gateway.by_patient("p1")]
        assert kinds == ["Condition", "ServiceRequest"]

    def test_unreadable_date_falls_back_to_last_updated(self, gateway, synced_patient, repository):
        # The repository stamps meta.lastUpdated with the time of the create
        _store(repository, {
            "resourceType": "Condition", "subject": synced_patient.to_fhir(),
            "code": {"text": "Asthma"}, "recordedDate": "sometime in May",
        })
        _store(repository, map_lab_request(synced_patient, term.LAB_TESTS["CBC"], datetime(2020, 1, 1)))

        kinds = [r["resourceType"] for r in gateway.by_patient("p1")]
        assert kinds == ["ServiceRequest", "Condition"]

    def test_other_patients_resources_excluded(self, gateway, synced_patient, repository):
        other = ExternalReference("Patient", "someone-else")
        _store(repository, map_lab_request(other, term.LAB_TESTS["CBC"], AT))
        assert gateway.by_patient("p1") == []

    def test_by_encounter(self, gateway, synced_patient, repository):
        encounter = ExternalReference("Encounter", "enc-1")
        _store(repository, map_lab_request(synced_patient, term.LAB_TESTS["CBC"], AT, encounter_ref=encounter))
        _store(repository, map_lab_request(synced_patient, term.LAB_TESTS["BMP"], AT))

        results = gateway.by_encounter("enc-1")
        assert len(results) == 1
        assert results[0]["encounter"] == {"reference": "Encounter/enc-1"}


# =============================================================================
# Test typed views
# =============================================================================

class TestResultViews:

    def _lab_order(self, repository, patient_ref):
        return _store(repository, map_lab_request(patient_ref, term.LAB_TESTS["CBC"], AT))

    def test_lab_reports_include_result_observations(self, gateway, synced_patient, repository):
        order = self._lab_order(repository, synced_patient)
        obs = _store(repository, map_lab_observation(order, {"testCode": "718-7", "testName": "Hemoglobin", "value": 14.1, "unit": "g/dL"}, AT))
        _store(repository, map_lab_report(order, [ExternalReference.from_resource(obs)], ["final"], AT))

        reports = gateway.lab_reports(patient_id="p1")

        assert len(reports) == 1
        assert reports[0]["orderId"] == order["id"]
        assert reports[0]["results"][0]["testName"] == "Hemoglobin"

    def test_lab_reports_exclude_radiology(self, gateway, synced_patient, repository):
        order = _store(repository, {
            "resourceType": "ServiceRequest", "subject": synced_patient.to_fhir(),
            "code": {"text": "Chest X-ray"},
        })
        study = _store(repository, map_imaging_study(order, {"studyUid": "1.2.3"}))
        _store(repository, map_imaging_report(study, "Clear lungs", "Normal", AT))

        assert gateway.lab_reports(patient_id="p1") == []

    def test_imaging_study_carries_latest_report(self, gateway, synced_patient, repository):
        order = _store(repository, {
            "resourceType": "ServiceRequest", "subject": synced_patient.to_fhir(),
            "code": {"text": "Chest X-ray"},
        })
        study = _store(repository, map_imaging_study(order, {"studyUid": "1.2.3", "modality": "DX"}))
        _store(repository, map_imaging_report(study, "", "Preliminary read", datetime(2026, 3, 1, 10, 0), "preliminary"))
        _store(repository, map_imaging_report(study, "Clear lungs", "Normal study", datetime(2026, 3, 1, 11, 0)))

        studies = gateway.imaging_studies(patient_id="p1")

        assert len(studies) == 1
        assert studies[0]["study"]["studyUid"] == "1.2.3"
        assert studies[0]["report"]["impression"] == "Normal study"


class TestReferralsAndDocuments:

    def test_referrals_filtered_by_category(self, gateway, synced_patient, repository):
        _store(repository, map_lab_request(synced_patient, term.LAB_TESTS["CBC"], AT))
        _store(repository, map_referral_request(synced_patient, "Cardiology", "General Hospital", "Palpitations", AT))

        referrals = gateway.referrals_for_patient("p1")
        assert len(referrals) == 1
        assert referrals[0]["facility"] == "General Hospital"

    def test_get_referral_rejects_other_order_kinds(self, gateway, synced_patient, repository):
        lab = _store(repository, map_lab_request(synced_patient, term.LAB_TESTS["CBC"], AT))
        with pytest.raises(NotFound):
            gateway.get_referral(lab["id"])

    def test_get_referral(self, gateway, synced_patient, repository):
        referral = _store(repository, map_referral_request(synced_patient, "ENT", "KK Hospital", "Hearing loss", AT))
        assert gateway.get_referral(referral["id"])["reason"] == "Hearing loss"

    def test_entered_in_error_documents_hidden(self, gateway, synced_patient, repository):
        kept = map_document_reference(synced_patient, "Lab PDF", "https://files/a.pdf", "application/pdf", AT)
        hidden = dict(
            map_document_reference(synced_patient, "Wrong file", "https://files/b.pdf", "application/pdf", AT),
            status="entered-in-error",
        )
        _store(repository, kept)
        _store(repository, hidden)

        assert [d["title"] for d in gateway.documents_for_patient("p1")] == ["Lab PDF"]
