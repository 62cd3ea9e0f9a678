"""
Unit tests for FhirClient.

Requests are served by httpx.MockTransport; nothing leaves the process.
"""

import json

import httpx
import pytest

from clinicsync.errors import NotFound, UpstreamFailure
from clinicsync.fhir.client import FhirClient

BASE = "http://fhir.test"


def make_client(handler, client_id="", client_secret=""):
    return FhirClient(
        base_url=BASE,
        client_id=client_id,
        client_secret=client_secret,
        timeout=2,
        transport=httpx.MockTransport(handler),
    )


# =============================================================================
# Test resource operations
# =============================================================================

class TestResourceOperations:

    def test_create_posts_to_fhir_r4_path(self):
        seen = []

        def handler(request):
            seen.append(request)
            body = json.loads(request.content)
            return httpx.Response(201, json=dict(body, id="sr-1"))

        client = make_client(handler)
        created = client.create("ServiceRequest", {"resourceType": "ServiceRequest", "status": "active"})

        assert created["id"] == "sr-1"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/fhir/R4/ServiceRequest"
        assert seen[0].headers["content-type"] == "application/fhir+json"
        assert "authorization" not in seen[0].headers

    def test_update_puts_full_body_under_same_id(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=seen[-1])

        client = make_client(handler)
        updated = client.update("ServiceRequest", "sr-1", {"status": "revoked"})

        assert updated == {"status": "revoked", "resourceType": "ServiceRequest", "id": "sr-1"}

    def test_missing_resource_raises_not_found(self):
        client = make_client(lambda request: httpx.Response(404, json={"resourceType": "OperationOutcome"}))
        with pytest.raises(NotFound):
            client.read("Encounter", "missing")

    def test_server_error_raises_upstream_failure_with_outcome_text(self):
        outcome = {"resourceType": "OperationOutcome", "issue": [{"diagnostics": "Invalid subject"}]}
        client = make_client(lambda request: httpx.Response(400, json=outcome))

        with pytest.raises(UpstreamFailure) as exc:
            client.create("Observation", {"resourceType": "Observation"})

        assert exc.value.upstream_status == 400
        assert "Invalid subject" in exc.value.message

    def test_timeout_raises_upstream_failure(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = make_client(handler)
        with pytest.raises(UpstreamFailure) as exc:
            client.read("Patient", "p-1")
        assert "timed out" in exc.value.message

    def test_connection_error_raises_upstream_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)
        with pytest.raises(UpstreamFailure):
            client.delete("DocumentReference", "d-1")


# =============================================================================
# Test search
# =============================================================================

class TestSearch:

    def test_follows_next_links_and_filters_kind(self):
        pages = {
            "/fhir/R4/Observation": {
                "entry": [
                    {"resource": {"resourceType": "Observation", "id": "o-1"}},
                    {"resource": {"resourceType": "OperationOutcome"}},
                ],
                "link": [{"relation": "next", "url": f"{BASE}/fhir/R4/Observation/page2"}],
            },
            "/fhir/R4/Observation/page2": {
                "entry": [{"resource": {"resourceType": "Observation", "id": "o-2"}}],
            },
        }
        client = make_client(lambda request: httpx.Response(200, json=pages[request.url.path]))

        results = client.search("Observation", {"subject": "Patient/p-1"})
        assert [r["id"] for r in results] == ["o-1", "o-2"]

    def test_search_params_are_sent(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"resourceType": "Bundle"})

        client = make_client(handler)
        assert client.search("ServiceRequest", {"subject": "Patient/p-1"}) == []
        assert seen[0].url.params["subject"] == "Patient/p-1"

    def test_page_limit_logs_truncation(self, monkeypatch, caplog):
        monkeypatch.setattr("clinicsync.fhir.client._MAX_SEARCH_PAGES", 2)
        calls = []

        def endless(request):
            calls.append(request)
            return httpx.Response(200, json={
                "entry": [{"resource": {"resourceType": "Observation", "id": f"o-{len(calls)}"}}],
                "link": [{"relation": "next", "url": f"{BASE}/fhir/R4/Observation/page{len(calls) + 1}"}],
            })

        client = make_client(endless)
        with caplog.at_level("WARNING", logger="fhir.client"):
            results = client.search("Observation")

        assert [r["id"] for r in results] == ["o-1", "o-2"]
        assert len(calls) == 2
        assert "stopped after 2 pages" in caplog.text

    def test_last_page_does_not_warn(self, caplog):
        bundle = {"entry": [{"resource": {"resourceType": "Observation", "id": "o-1"}}]}
        client = make_client(lambda request: httpx.Response(200, json=bundle))
        with caplog.at_level("WARNING", logger="fhir.client"):
            client.search("Observation")
        assert "stopped after" not in caplog.text

    def test_find_schema_extension(self):
        bundle = {"entry": [{"resource": {"resourceType": "StructureDefinition", "id": "sd-1", "url": "https://x"}}]}
        client = make_client(lambda request: httpx.Response(200, json=bundle))
        assert client.find_schema_extension("https://x")["id"] == "sd-1"
        assert client.exists_schema_extension("https://x")


# =============================================================================
# Test authentication
# =============================================================================

class TestAuth:

    def test_token_fetched_once_and_sent_as_bearer(self):
        token_calls = []
        auth_headers = []

        def handler(request):
            if request.url.path == "/oauth2/token":
                token_calls.append(request)
                return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})
            auth_headers.append(request.headers.get("authorization"))
            return httpx.Response(200, json={"resourceType": "Patient", "id": "p-1"})

        client = make_client(handler, client_id="cid", client_secret="secret")
        client.read("Patient", "p-1")
        client.read("Patient", "p-1")

        assert len(token_calls) == 1
        assert auth_headers == ["Bearer tok-1", "Bearer tok-1"]

    def test_rejected_login_raises_upstream_failure(self):
        client = make_client(lambda request: httpx.Response(401, json={}), client_id="cid", client_secret="bad")
        with pytest.raises(UpstreamFailure) as exc:
            client.read("Patient", "p-1")
        assert exc.value.upstream_status == 401
