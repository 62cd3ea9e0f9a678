"""
ExtensionRegistrar: idempotent publication of the clinic's custom FHIR
extensions as StructureDefinition resources.

Presence is checked by canonical URL before creating, so repeated runs
never create a duplicate definition. Failures are reported per
descriptor rather than aborting the whole batch.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from clinicsync.errors import ClinicSyncError
from clinicsync.fhir import terminology as term

EXTENSION_BASE = "http://hl7.org/fhir/StructureDefinition/Extension"


@dataclass(frozen=True)
class ExtensionDescriptor:
    """
    A custom extension, identified by its canonical URL.

    schema keys:
        name, title, description: human-readable metadata
        context: list of resource types the extension may appear on
        value_type: FHIR type of a simple extension (e.g. "string"), or
        sub_extensions: {url: value_type} for a complex extension
    """

    canonical_url: str
    schema: Dict[str, Any]

    def to_structure_definition(self) -> Dict[str, Any]:
        name = self.schema["name"]
        elements: List[Dict[str, Any]] = [
            {"id": "Extension", "path": "Extension", "short": self.schema.get("title", name)},
            {"id": "Extension.url", "path": "Extension.url", "fixedUri": self.canonical_url},
        ]

        subs = self.schema.get("sub_extensions") or {}
        if subs:
            for url, value_type in subs.items():
                slice_id = f"Extension.extension:{url}"
                elements.append({"id": slice_id, "path": "Extension.extension", "sliceName": url})
                elements.append({"id": f"{slice_id}.url", "path": "Extension.extension.url", "fixedUri": url})
                if value_type == "complex":
                    elements.append({"id": f"{slice_id}.value[x]", "path": "Extension.extension.value[x]", "max": "0"})
                else:
                    elements.append({
                        "id": f"{slice_id}.value[x]",
                        "path": "Extension.extension.value[x]",
                        "type": [{"code": value_type}],
                    })
            elements.append({"id": "Extension.value[x]", "path": "Extension.value[x]", "max": "0"})
        else:
            elements.append({
                "id": "Extension.value[x]",
                "path": "Extension.value[x]",
                "type": [{"code": self.schema.get("value_type", "string")}],
            })

        return {
            "resourceType": "StructureDefinition",
            "url": self.canonical_url,
            "name": name,
            "title": self.schema.get("title", name),
            "status": "active",
            "description": self.schema.get("description", ""),
            "fhirVersion": "4.0.1",
            "kind": "complex-type",
            "abstract": False,
            "context": [{"type": "element", "expression": ctx} for ctx in self.schema.get("context", [])],
            "type": "Extension",
            "baseDefinition": EXTENSION_BASE,
            "derivation": "constraint",
            "differential": {"element": elements},
        }


TRIAGE_DESCRIPTOR = ExtensionDescriptor(
    canonical_url=term.TRIAGE_EXTENSION_URL,
    schema={
        "name": "TriageEncounter",
        "title": "Triage encounter",
        "description": "Triage and queue metadata for a patient visit (vitals, triage level, queue status).",
        "context": ["Encounter"],
        "sub_extensions": {
            "triageLevel": "integer",
            "chiefComplaint": "string",
            "triageNotes": "string",
            "triageBy": "string",
            "triageAt": "dateTime",
            "isTriaged": "boolean",
            "queueStatus": "string",
            "queueAddedAt": "dateTime",
            "vitalSigns": "complex",
            "redFlags": "complex",
        },
    },
)

STORAGE_PATH_DESCRIPTOR = ExtensionDescriptor(
    canonical_url=term.STORAGE_PATH_EXTENSION_URL,
    schema={
        "name": "StoragePath",
        "title": "Storage path",
        "description": "Bucket object path for a DocumentReference attachment, used for cleanup.",
        "context": ["DocumentReference"],
        "value_type": "string",
    },
)

DEFAULT_DESCRIPTORS = (TRIAGE_DESCRIPTOR, STORAGE_PATH_DESCRIPTOR)


@dataclass
class RegistrationResult:
    """Per-descriptor outcome of a registration pass."""
    registered: List[str] = field(default_factory=list)
    already_present: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)
    ids: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registered": self.registered,
            "alreadyPresent": self.already_present,
            "failed": self.failed,
            "ids": self.ids,
        }


class ExtensionRegistrar:
    """
    Ensures every descriptor exists upstream exactly once.

    Usage:
        registrar = ExtensionRegistrar(get_fhir_client())
        result = registrar.ensure_registered(DEFAULT_DESCRIPTORS)
    """

    def __init__(self, repository, descriptors: Iterable[ExtensionDescriptor] = DEFAULT_DESCRIPTORS):
        self.repository = repository
        self.descriptors = tuple(descriptors)
        self.logger = logging.getLogger("fhir.extensions")
        self._lock = threading.Lock()
        self._completed: Optional[RegistrationResult] = None

    def ensure_registered(self, descriptors: Optional[Iterable[ExtensionDescriptor]] = None) -> RegistrationResult:
        """Check each canonical URL and create the definitions that are missing."""
        result = RegistrationResult()
        seen = set()

        with self._lock:
            for descriptor in descriptors if descriptors is not None else self.descriptors:
                url = descriptor.canonical_url
                if url in seen:
                    continue
                seen.add(url)

                try:
                    existing = self.repository.find_schema_extension(url)
                    if existing:
                        result.already_present.append(url)
                        result.ids[url] = existing.get("id")
                        continue

                    created = self.repository.create_schema_extension(descriptor)
                    result.registered.append(url)
                    result.ids[url] = created.get("id")
                    self.logger.info(f"Registered extension {url} as StructureDefinition/{created.get('id')}")
                except ClinicSyncError as e:
                    self.logger.error(f"Failed to register extension {url}: {e}")
                    result.failed.append({"url": url, "error": str(e)})

        return result

    def ensure_once(self) -> RegistrationResult:
        """
        Run ensure_registered once per process.

        A pass with failures is not remembered, so the next call retries
        the whole set (already-present URLs are simply re-confirmed).
        """
        if self._completed is not None:
            return self._completed

        result = self.ensure_registered()
        if result.ok:
            self._completed = result
        return result

    def reset(self):
        self._completed = None


# Singleton instance for convenience
_registrar: Optional[ExtensionRegistrar] = None


def get_extension_registrar() -> ExtensionRegistrar:
    """Get the singleton ExtensionRegistrar bound to the shared FHIR client."""
    global _registrar
    if _registrar is None:
        from clinicsync.fhir.client import get_fhir_client

        _registrar = ExtensionRegistrar(get_fhir_client())
    return _registrar
