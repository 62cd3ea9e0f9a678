"""
ReferenceLinker: creates FHIR resources in dependency order.

A resource may only cite another resource through an ExternalReference
that already exists upstream. The PREREQUISITES table lists, per
resource kind, which elements carry references and to what kinds; the
linker checks them before every create and builds dependents only once
their parent's reference has been issued.

There are no multi-resource transactions: if a dependent fails, the
remaining dependents are skipped and the raised UpstreamFailure carries
every reference already committed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from clinicsync.errors import ClinicSyncError, LinkOrderError, UpstreamFailure
from clinicsync.fhir.references import REFERENCE_PATTERN, ExternalReference
from clinicsync.fhir.validation import require_valid

# resource kind -> [(element path, allowed referent kinds, required)]
PREREQUISITES: Dict[str, List[Tuple[str, Tuple[str, ...], bool]]] = {
    "Patient": [],
    "Encounter": [("subject", ("Patient",), True)],
    "Condition": [("subject", ("Patient",), True), ("encounter", ("Encounter",), True)],
    "MedicationRequest": [("subject", ("Patient",), True), ("encounter", ("Encounter",), True)],
    "Observation": [
        ("subject", ("Patient",), True),
        ("encounter", ("Encounter",), False),
        ("basedOn", ("ServiceRequest",), False),
    ],
    "ServiceRequest": [("subject", ("Patient",), True), ("encounter", ("Encounter",), False)],
    "DocumentReference": [("subject", ("Patient",), True), ("context.related", ("ServiceRequest",), False)],
    "DiagnosticReport": [
        ("subject", ("Patient",), True),
        ("encounter", ("Encounter",), False),
        ("basedOn", ("ServiceRequest",), False),
        ("result", ("Observation",), False),
        ("imagingStudy", ("ImagingStudy",), False),
    ],
    "ImagingStudy": [
        ("subject", ("Patient",), True),
        ("encounter", ("Encounter",), False),
        ("basedOn", ("ServiceRequest",), True),
    ],
}

Resource = Dict[str, Any]
ChildBuilder = Callable[[ExternalReference], Union[Resource, Sequence[Resource]]]


def _references_at(resource: Resource, path: str) -> List[str]:
    """Collect reference strings found at a dotted element path."""
    nodes: List[Any] = [resource]
    for part in path.split("."):
        next_nodes = []
        for node in nodes:
            value = node.get(part) if isinstance(node, dict) else None
            if isinstance(value, list):
                next_nodes.extend(value)
            elif value is not None:
                next_nodes.append(value)
        nodes = next_nodes
    return [n.get("reference") for n in nodes if isinstance(n, dict) and n.get("reference")]


def check_prerequisites(resource: Resource) -> None:
    """Raise LinkOrderError if a cited referent is missing, malformed or of the wrong kind."""
    kind = resource.get("resourceType")
    for path, allowed, required in PREREQUISITES.get(kind, []):
        refs = _references_at(resource, path)
        if required and not refs:
            raise LinkOrderError(f"{kind}.{path} must reference an existing {'/'.join(allowed)}")
        for ref in refs:
            if not REFERENCE_PATTERN.match(ref):
                raise LinkOrderError(f"{kind}.{path} has unresolved reference '{ref}'")
            if ref.split("/", 1)[0] not in allowed:
                raise LinkOrderError(f"{kind}.{path} cannot reference '{ref}'")


def cites(resource: Resource, ref: ExternalReference) -> bool:
    """True if any prerequisite element of resource points at ref."""
    for path, _, _ in PREREQUISITES.get(resource.get("resourceType"), []):
        if ref.reference in _references_at(resource, path):
            return True
    return False


@dataclass
class LinkResult:
    root: ExternalReference
    dependents: List[ExternalReference] = field(default_factory=list)

    @property
    def all(self) -> List[ExternalReference]:
        return [self.root] + self.dependents


class ReferenceLinker:
    """Dependency-ordered creation of FHIR resources."""

    def __init__(self, repository):
        self.repository = repository
        self.logger = logging.getLogger("fhir.linker")

    def create(self, resource: Resource) -> ExternalReference:
        """Validate, check prerequisites and create a single resource."""
        require_valid(resource)
        check_prerequisites(resource)
        created = self.repository.create(resource["resourceType"], resource)
        ref = ExternalReference.from_resource(created)
        self.logger.debug(f"Created {ref.reference}")
        return ref

    def attach(self, parent_ref: Optional[ExternalReference], child_builder: ChildBuilder) -> List[Resource]:
        """
        Build the dependents of parent_ref.

        The builder receives the parent's ExternalReference; every resource
        it returns must cite that reference.
        """
        if parent_ref is None:
            raise LinkOrderError("Cannot build a dependent before its parent exists")

        built = child_builder(parent_ref)
        children = [built] if isinstance(built, dict) else list(built)
        for child in children:
            if not cites(child, parent_ref):
                raise LinkOrderError(
                    f"{child.get('resourceType')} does not reference its parent {parent_ref.reference}"
                )
            check_prerequisites(child)
        return children

    def link_tree(self, resource: Resource, dependents: Sequence[ChildBuilder] = ()) -> LinkResult:
        """Create resource, then each dependent group in order; fail fast."""
        root = self.create(resource)
        result = LinkResult(root=root)

        for builder in dependents:
            try:
                for child in self.attach(root, builder):
                    result.dependents.append(self.create(child))
            except ClinicSyncError as e:
                self.logger.error(
                    f"Dependent of {root.reference} failed after {len(result.all)} creates: {e}"
                )
                raise UpstreamFailure(
                    f"Linking dependents of {root.reference} failed: {e.message}",
                    committed=result.all,
                    upstream_status=getattr(e, "upstream_status", None),
                )

        return result

    def link(self, resource: Resource, dependents: Sequence[ChildBuilder] = ()) -> ExternalReference:
        """Create resource and its dependents; returns the resource's reference."""
        return self.link_tree(resource, dependents).root
