"""
FHIR synchronization layer: repository client, resource mapping,
reference linking and extension registration.
"""

from .references import ExternalReference
from .client import FhirClient, get_fhir_client
from .extensions import ExtensionDescriptor, ExtensionRegistrar, RegistrationResult, get_extension_registrar
from .linker import ReferenceLinker

__all__ = [
    "ExternalReference",
    "FhirClient",
    "get_fhir_client",
    "ExtensionDescriptor",
    "ExtensionRegistrar",
    "RegistrationResult",
    "get_extension_registrar",
    "ReferenceLinker",
]
