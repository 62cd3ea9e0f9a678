"""
Pytest configuration for all tests.

Sets up the Python path to find the backend package, points the primary
store at in-memory SQLite, and provides an in-memory FHIR repository.
"""

import sys
import os
import threading
import uuid
from copy import deepcopy
from datetime import datetime, timedelta

# Must be set before clinicsync.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENABLE_FIRESTORE"] = "false"
os.environ["FHIR_CLIENT_ID"] = ""
os.environ["FHIR_CLIENT_SECRET"] = ""

# Add backend directory to Python path
backend_path = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'backend'))
if backend_path not in sys.path:
    sys.path.insert(0, backend_path)

import pytest

from clinicsync.db.postgres import drop_db, get_db_session, init_db, reset_engine
from clinicsync.errors import NotFound, UpstreamFailure
from clinicsync.models import Patient


class FakeResourceRepository:
    """
    In-memory stand-in for FhirClient.

    Ids are sequential per resource type ("ServiceRequest-1", ...).
    fail_on(resource_type, nth=...) makes the nth create of that type
    raise UpstreamFailure; fail_on(resource_type) fails every create.
    """

    def __init__(self):
        self.resources = {}
        self.created = []
        self.calls = []
        self._counters = {}
        self._failures = {}
        self._lock = threading.Lock()

    # --- failure injection ---

    def fail_on(self, resource_type, nth=None):
        self._failures[resource_type] = nth

    def _should_fail(self, resource_type, attempt):
        if resource_type not in self._failures:
            return False
        nth = self._failures[resource_type]
        return nth is None or nth == attempt

    # --- repository API ---

    def create(self, resource_type, body):
        with self._lock:
            self.calls.append(("create", resource_type))
            attempt = self._counters.get(resource_type, 0) + 1
            self._counters[resource_type] = attempt
            if self._should_fail(resource_type, attempt):
                raise UpstreamFailure(f"{resource_type} create rejected", upstream_status=500)

            resource = deepcopy(body)
            resource["id"] = f"{resource_type}-{attempt}"
            resource.setdefault("meta", {})["lastUpdated"] = datetime.utcnow().isoformat() + "Z"
            self.resources[(resource_type, resource["id"])] = resource
            self.created.append(resource)
            return deepcopy(resource)

    def read(self, resource_type, resource_id):
        self.calls.append(("read", resource_type))
        resource = self.resources.get((resource_type, resource_id))
        if resource is None:
            raise NotFound(f"{resource_type}/{resource_id} not found")
        return deepcopy(resource)

    def update(self, resource_type, resource_id, body):
        self.calls.append(("update", resource_type))
        if (resource_type, resource_id) not in self.resources:
            raise NotFound(f"{resource_type}/{resource_id} not found")
        resource = dict(deepcopy(body), resourceType=resource_type, id=resource_id)
        self.resources[(resource_type, resource_id)] = resource
        return deepcopy(resource)

    def delete(self, resource_type, resource_id):
        self.calls.append(("delete", resource_type))
        if self.resources.pop((resource_type, resource_id), None) is None:
            raise NotFound(f"{resource_type}/{resource_id} not found")

    def search(self, resource_type, params=None):
        self.calls.append(("search", resource_type))
        params = params or {}
        matches = []
        for (kind, _), resource in list(self.resources.items()):
            if kind != resource_type:
                continue
            if all(self._matches(resource, key, value) for key, value in params.items()):
                matches.append(deepcopy(resource))
        return matches

    @staticmethod
    def _matches(resource, key, value):
        if key.startswith("_"):
            return True
        if key == "url":
            return resource.get("url") == value
        element = resource.get(key)
        if isinstance(element, dict):
            return element.get("reference") == value
        return element == value

    def find_schema_extension(self, canonical_url):
        matches = self.search("StructureDefinition", {"url": canonical_url})
        return matches[0] if matches else None

    def create_schema_extension(self, descriptor):
        return self.create("StructureDefinition", descriptor.to_structure_definition())

    # --- helpers for assertions ---

    def count(self, resource_type, action="create"):
        return sum(1 for a, kind in self.calls if a == action and kind == resource_type)

    def of_type(self, resource_type):
        return [r for (kind, _), r in self.resources.items() if kind == resource_type]


@pytest.fixture
def repository():
    return FakeResourceRepository()


@pytest.fixture
def db_session():
    """Fresh in-memory schema per test."""
    reset_engine()
    init_db()
    session = get_db_session()
    yield session
    session.rollback()
    drop_db()
    reset_engine()


@pytest.fixture
def make_patient(db_session):
    def _make(patient_id=None, full_name="Test Patient", **kwargs):
        patient = Patient(patient_id=patient_id or str(uuid.uuid4()), full_name=full_name, **kwargs)
        db_session.add(patient)
        db_session.commit()
        return patient
    return _make


class Clock:
    """Deterministic clock; each call advances one second unless frozen."""

    def __init__(self, start=datetime(2026, 3, 1, 9, 0, 0), step_seconds=1):
        self.now = start
        self.step_seconds = step_seconds

    def __call__(self):
        current = self.now
        self.now = current + timedelta(seconds=self.step_seconds)
        return current


@pytest.fixture
def clock():
    return Clock()
