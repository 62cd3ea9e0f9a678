"""
Event log model for audit.

Append-only ledger with PHI-safe payloads.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Index

from clinicsync.db.postgres import Base


class EventLog(Base):
    """Append-only audit ledger."""

    __tablename__ = "event_log"

    event_id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    clinic_id = Column(String(64), nullable=False)
    event_type = Column(String(100), nullable=False)  # Queue.StatusChanged, Order.Placed, etc.

    patient_id = Column(String(64), nullable=True)
    actor = Column(String(255), nullable=True)

    # PHI-safe payload
    payload_json = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    correlation_id = Column(String(100), nullable=True)

    __table_args__ = (
        Index("idx_event_log_patient", "patient_id", "created_at"),
    )
