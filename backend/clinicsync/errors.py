"""
Error taxonomy for ClinicSync.

Every error raised by the queue, mapping, linking and order layers derives
from ClinicSyncError so the Flask app can render them uniformly as
{"success": False, "error": ...} with the attached HTTP status.
"""

from typing import Any, Dict, List, Optional


class ClinicSyncError(Exception):
    """Base exception for all domain errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message}


class ValidationError(ClinicSyncError):
    """Missing or malformed input; raised before any external write."""

    status_code = 400


class NotFound(ClinicSyncError):
    """Referenced patient, queue entry, order or resource does not exist."""

    status_code = 404


class InvalidTransition(ClinicSyncError):
    """Queue status change not allowed by the patient-flow state machine."""

    status_code = 409

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move queue entry from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class MappingError(ClinicSyncError):
    """A domain object could not be turned into a valid FHIR resource."""

    status_code = 500

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = issues or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.issues:
            data["issues"] = self.issues
        return data


class LinkOrderError(MappingError):
    """A dependent resource was built before its referent existed."""


class UpstreamFailure(ClinicSyncError):
    """
    The FHIR repository rejected a call or did not answer in time.

    `committed` lists the ExternalReferences created before the failure,
    so callers can see what is already persisted upstream.
    """

    status_code = 500

    def __init__(self, message: str, committed: Optional[list] = None, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.committed = list(committed or [])
        self.upstream_status = upstream_status

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.committed:
            data["committed"] = [ref.reference for ref in self.committed]
        return data


class PartialOrderFailure(UpstreamFailure):
    """Some items of a multi-item order were created, others failed."""

    def __init__(self, result):
        failed = ", ".join(str(i) for i in result.failed)
        super().__init__(
            f"Order partially failed (failed items: {failed})",
            committed=[ref for ref in result.resource_refs if ref is not None],
        )
        self.result = result

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(self.result.to_dict())
        data["success"] = False
        return data
