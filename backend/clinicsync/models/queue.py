"""
Queue and triage models.

QueueEntry is the only shared mutable state in the system; every write
goes through QueueService. TriageRecord rows are written once per
triage event and never updated.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Text, JSON, Index

from clinicsync.db.postgres import Base


class QueueStatus:
    """Patient-flow statuses for a queue entry."""
    WAITING = "waiting"
    TRIAGED = "triaged"
    IN_CONSULTATION = "in-consultation"
    COMPLETED = "completed"
    REMOVED = "removed"

    ALL = (WAITING, TRIAGED, IN_CONSULTATION, COMPLETED, REMOVED)
    ACTIVE = (WAITING, TRIAGED, IN_CONSULTATION)
    TERMINAL = (COMPLETED, REMOVED)


class QueueEntry(Base):
    """One visit of a patient through the clinic queue."""

    __tablename__ = "queue_entry"

    # Autoincrement doubles as insertion order for tie-breaking
    entry_id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(String(64), ForeignKey("patient.patient_id"), nullable=False)

    triage_level = Column(Integer, nullable=False, default=5)  # 1 = resuscitation .. 5 = non-urgent
    status = Column(String(32), nullable=False, default=QueueStatus.WAITING)
    chief_complaint = Column(Text, nullable=True)

    # FHIR Encounter created at triage
    encounter_id = Column(String(64), nullable=True)

    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_queue_entry_patient_status", "patient_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in QueueStatus.ACTIVE

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "patientId": self.patient_id,
            "triageLevel": self.triage_level,
            "status": self.status,
            "chiefComplaint": self.chief_complaint,
            "encounterId": self.encounter_id,
            "addedAt": self.added_at.isoformat() if self.added_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<QueueEntry entry_id={self.entry_id} patient_id={self.patient_id} status={self.status}>"


class TriageRecord(Base):
    """Immutable record of one triage assessment."""

    __tablename__ = "triage_record"

    triage_id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id = Column(String(64), ForeignKey("patient.patient_id"), nullable=False)

    triage_level = Column(Integer, nullable=False)
    chief_complaint = Column(Text, nullable=False)
    vital_signs = Column(JSON, nullable=True)
    triage_notes = Column(Text, nullable=True)
    red_flags = Column(JSON, nullable=True)
    triage_by = Column(String(255), nullable=True)

    encounter_id = Column(String(64), nullable=True)
    recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.triage_id,
            "patientId": self.patient_id,
            "triageLevel": self.triage_level,
            "chiefComplaint": self.chief_complaint,
            "vitalSigns": self.vital_signs or {},
            "triageNotes": self.triage_notes,
            "redFlags": self.red_flags or [],
            "triageBy": self.triage_by,
            "encounterId": self.encounter_id,
            "recordedAt": self.recorded_at.isoformat() if self.recorded_at else None,
        }
