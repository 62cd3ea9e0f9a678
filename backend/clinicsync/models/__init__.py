"""
SQLAlchemy models for ClinicSync.

These are the authoritative primary-store tables.
"""

from .patient import Patient, Consultation
from .queue import QueueEntry, QueueStatus, TriageRecord
from .event_log import EventLog

__all__ = [
    "Patient",
    "Consultation",
    "QueueEntry",
    "QueueStatus",
    "TriageRecord",
    "EventLog",
]
