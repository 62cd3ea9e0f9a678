"""
FHIR R4 repository client (Medplum-compatible) over httpx.

Authentication is OAuth2 client_credentials against /oauth2/token; the
bearer token is cached until shortly before it expires. All calls are
synchronous and bounded by FHIR_TIMEOUT_SECONDS. Failures surface as
UpstreamFailure (or NotFound for a missing resource) and are never
retried here.
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional

import httpx

from clinicsync.config import config
from clinicsync.errors import NotFound, UpstreamFailure

logger = logging.getLogger("fhir.client")

# Refresh the token this many seconds before it expires
_TOKEN_REFRESH_BUFFER_S = 30

# Upper bound on Bundle pages followed by search()
_MAX_SEARCH_PAGES = 20

FHIR_JSON = "application/fhir+json"


class FhirClient:
    """
    Thin resource repository over the FHIR REST API.

    Args:
        base_url: Server root (the client appends /fhir/R4/ and /oauth2/token).
        client_id / client_secret: OAuth2 client credentials. When either is
            empty, requests are sent without an Authorization header.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or config.FHIR_BASE_URL).rstrip("/")
        self.client_id = client_id if client_id is not None else config.FHIR_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else config.FHIR_CLIENT_SECRET
        self.timeout = timeout or config.FHIR_TIMEOUT_SECONDS

        self._http = httpx.Client(timeout=self.timeout, transport=transport)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    @property
    def fhir_base(self) -> str:
        return f"{self.base_url}/fhir/R4"

    def close(self):
        self._http.close()

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    def _bearer_token(self) -> Optional[str]:
        if not self.client_id or not self.client_secret:
            return None

        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at - _TOKEN_REFRESH_BUFFER_S:
                return self._token

            try:
                response = self._http.post(
                    f"{self.base_url}/oauth2/token",
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                    },
                )
            except httpx.TimeoutException:
                raise UpstreamFailure("FHIR login timed out")
            except httpx.HTTPError as e:
                raise UpstreamFailure(f"FHIR login failed: {e}")

            if response.status_code >= 400:
                raise UpstreamFailure(
                    f"FHIR login rejected ({response.status_code})",
                    upstream_status=response.status_code,
                )

            payload = response.json()
            self._token = payload["access_token"]
            self._token_expires_at = time.monotonic() + float(payload.get("expires_in", 3600))
            logger.info("Obtained FHIR access token")
            return self._token

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": FHIR_JSON, "Content-Type": FHIR_JSON}
        token = self._bearer_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if not url.startswith("http"):
            url = f"{self.fhir_base}/{url.lstrip('/')}"
        try:
            response = self._http.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException:
            logger.warning(f"{method} {url} timed out after {self.timeout}s")
            raise UpstreamFailure(f"FHIR {method} timed out")
        except httpx.HTTPError as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise UpstreamFailure(f"FHIR {method} failed: {e}")
        return response

    @staticmethod
    def _outcome_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        issues = body.get("issue") or []
        messages = [i.get("diagnostics") or (i.get("details") or {}).get("text") for i in issues]
        return "; ".join(m for m in messages if m) or response.text[:200]

    def _check(self, response: httpx.Response, action: str, resource_type: str, resource_id: Optional[str] = None):
        if response.status_code == 404 and resource_id:
            raise NotFound(f"{resource_type}/{resource_id} not found")
        if response.status_code >= 400:
            message = self._outcome_message(response)
            logger.warning(f"{action} {resource_type} rejected ({response.status_code}): {message}")
            raise UpstreamFailure(
                f"FHIR {action} {resource_type} failed ({response.status_code}): {message}",
                upstream_status=response.status_code,
            )

    # -------------------------------------------------------------------------
    # Resource operations
    # -------------------------------------------------------------------------

    def create(self, resource_type: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST a new resource; returns the created body (with server-assigned id)."""
        response = self._request("POST", resource_type, json=body)
        self._check(response, "create", resource_type)
        created = response.json()
        logger.info(f"Created {resource_type}/{created.get('id')}")
        return created

    def read(self, resource_type: str, resource_id: str) -> Dict[str, Any]:
        response = self._request("GET", f"{resource_type}/{resource_id}")
        self._check(response, "read", resource_type, resource_id)
        return response.json()

    def update(self, resource_type: str, resource_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """PUT the full resource body back under the same id."""
        body = dict(body, resourceType=resource_type, id=resource_id)
        response = self._request("PUT", f"{resource_type}/{resource_id}", json=body)
        self._check(response, "update", resource_type, resource_id)
        return response.json()

    def delete(self, resource_type: str, resource_id: str) -> None:
        response = self._request("DELETE", f"{resource_type}/{resource_id}")
        self._check(response, "delete", resource_type, resource_id)
        logger.info(f"Deleted {resource_type}/{resource_id}")

    def search(self, resource_type: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Search and unwrap Bundle entries, following 'next' links."""
        resources: List[Dict[str, Any]] = []
        url = resource_type
        query = dict(params or {})

        for _ in range(_MAX_SEARCH_PAGES):
            response = self._request("GET", url, params=query)
            self._check(response, "search", resource_type)
            bundle = response.json()
            for entry in bundle.get("entry") or []:
                resource = entry.get("resource")
                if resource and resource.get("resourceType") == resource_type:
                    resources.append(resource)

            next_link = next((l.get("url") for l in bundle.get("link") or [] if l.get("relation") == "next"), None)
            if not next_link:
                break
            url, query = next_link, None
        else:
            logger.warning(
                f"{resource_type} search stopped after {_MAX_SEARCH_PAGES} pages; "
                f"returning {len(resources)} results, more remain upstream"
            )

        return resources

    # -------------------------------------------------------------------------
    # Schema extensions (StructureDefinition)
    # -------------------------------------------------------------------------

    def find_schema_extension(self, canonical_url: str) -> Optional[Dict[str, Any]]:
        matches = self.search("StructureDefinition", {"url": canonical_url, "_count": 1})
        return matches[0] if matches else None

    def exists_schema_extension(self, canonical_url: str) -> bool:
        return self.find_schema_extension(canonical_url) is not None

    def create_schema_extension(self, descriptor) -> Dict[str, Any]:
        return self.create("StructureDefinition", descriptor.to_structure_definition())


# Singleton instance for convenience
_fhir_client: Optional[FhirClient] = None


def get_fhir_client() -> FhirClient:
    """Get the singleton FhirClient instance."""
    global _fhir_client
    if _fhir_client is None:
        _fhir_client = FhirClient()
    return _fhir_client
