"""
ExternalReference: the only handle exchanged between the linker, the
order orchestrator and callers once a FHIR resource exists upstream.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from clinicsync.errors import MappingError

REFERENCE_PATTERN = re.compile(r"^[A-Z][a-zA-Z]+/[A-Za-z0-9\-.]{1,64}$")


@dataclass(frozen=True)
class ExternalReference:
    """Pointer to a created FHIR resource. Immutable once issued."""

    resource_type: str
    id: str

    @property
    def reference(self) -> str:
        return f"{self.resource_type}/{self.id}"

    def to_fhir(self, display: Optional[str] = None) -> Dict[str, Any]:
        """Render as a FHIR Reference element."""
        ref: Dict[str, Any] = {"reference": self.reference}
        if display:
            ref["display"] = display
        return ref

    def to_dict(self) -> Dict[str, Any]:
        return {"resourceType": self.resource_type, "id": self.id, "reference": self.reference}

    @classmethod
    def parse(cls, reference: str) -> "ExternalReference":
        """Parse a 'Type/id' string, raising MappingError when malformed."""
        if not reference or not REFERENCE_PATTERN.match(reference):
            raise MappingError(f"Invalid reference format: {reference!r}")
        resource_type, resource_id = reference.split("/", 1)
        return cls(resource_type, resource_id)

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> "ExternalReference":
        """Build a reference from a created resource body."""
        resource_type = resource.get("resourceType")
        resource_id = resource.get("id")
        if not resource_type or not resource_id:
            raise MappingError("Created resource is missing resourceType or id")
        return cls(resource_type, resource_id)

    def __str__(self) -> str:
        return self.reference


def reference_id(element: Optional[Dict[str, Any]], expected_type: Optional[str] = None) -> Optional[str]:
    """Extract the id from a FHIR Reference element, or None."""
    if not element:
        return None
    value = element.get("reference") or ""
    if "/" not in value:
        return None
    resource_type, resource_id = value.split("/", 1)
    if expected_type and resource_type != expected_type:
        return None
    return resource_id or None
