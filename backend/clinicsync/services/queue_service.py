"""
QueueService: the clinic's patient queue and patient-flow state machine.

    waiting -> triaged -> in-consultation -> completed
        \\---------\\-------------\\--------> removed

completed and removed are terminal: nothing leaves them, not even the
same status again. Re-applying a non-terminal status is a no-op. The board is ordered by (triage_level, added_at), ties
broken by insertion order.

Writes are serialized by an in-process lock and committed in one
transaction each; list() takes the same lock, so readers never observe a
half-written entry. Status
updates are last-write-wins: there is no compare-and-swap on the
previous status.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session as DbSession

from clinicsync.db.postgres import get_db_session
from clinicsync.errors import InvalidTransition, NotFound, ValidationError
from clinicsync.models import Patient, QueueEntry, QueueStatus, TriageRecord
from clinicsync.services.event_log import EventLogService
from clinicsync.services.projection import get_projection_service

ALLOWED_TRANSITIONS = {
    QueueStatus.WAITING: {QueueStatus.TRIAGED, QueueStatus.REMOVED},
    QueueStatus.TRIAGED: {QueueStatus.IN_CONSULTATION, QueueStatus.REMOVED},
    QueueStatus.IN_CONSULTATION: {QueueStatus.COMPLETED, QueueStatus.REMOVED},
    QueueStatus.COMPLETED: set(),
    QueueStatus.REMOVED: set(),
}

MIN_TRIAGE_LEVEL = 1
MAX_TRIAGE_LEVEL = 5

# Serializes queue writes across request threads
_queue_lock = threading.RLock()


def validate_triage_level(level) -> int:
    if isinstance(level, bool):
        raise ValidationError("triageLevel must be an integer between 1 and 5")
    try:
        level = int(level)
    except (TypeError, ValueError):
        raise ValidationError("triageLevel must be an integer between 1 and 5")
    if not MIN_TRIAGE_LEVEL <= level <= MAX_TRIAGE_LEVEL:
        raise ValidationError(f"triageLevel must be between {MIN_TRIAGE_LEVEL} and {MAX_TRIAGE_LEVEL}")
    return level


def queue_sort_key(entry: QueueEntry):
    return (entry.triage_level, entry.added_at, entry.entry_id)


class QueueService:
    """
    Usage:
        queue = QueueService()
        queue.enqueue("p-123", triage_level=3, chief_complaint="Fever")
        queue.update_status("p-123", "triaged")
        board = queue.list()
    """

    def __init__(
        self,
        db_session: Optional[DbSession] = None,
        clock: Optional[Callable[[], datetime]] = None,
        events: Optional[EventLogService] = None,
        projection=None,
    ):
        self._db = db_session
        self.clock = clock or datetime.utcnow
        self.events = events or EventLogService(db_session)
        self.projection = projection or get_projection_service()
        self.logger = logging.getLogger("service.QueueService")

    @property
    def db(self) -> DbSession:
        if self._db is None:
            return get_db_session()
        return self._db

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def list(self, include_closed: bool = False) -> List[QueueEntry]:
        """Queue entries in board order. Terminal entries only when include_closed."""
        with _queue_lock:
            query = self.db.query(QueueEntry)
            if not include_closed:
                query = query.filter(QueueEntry.status.in_(QueueStatus.ACTIVE))
            return sorted(query.all(), key=queue_sort_key)

    def latest_entry(self, patient_id: str) -> Optional[QueueEntry]:
        return (
            self.db.query(QueueEntry)
            .filter(QueueEntry.patient_id == patient_id)
            .order_by(QueueEntry.entry_id.desc())
            .first()
        )

    def active_entry(self, patient_id: str) -> Optional[QueueEntry]:
        return (
            self.db.query(QueueEntry)
            .filter(
                QueueEntry.patient_id == patient_id,
                QueueEntry.status.in_(QueueStatus.ACTIVE),
            )
            .order_by(QueueEntry.entry_id.desc())
            .first()
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def default_triage_level(self, patient_id: str) -> int:
        """Level from the patient's latest triage, or the least urgent level."""
        record = (
            self.db.query(TriageRecord)
            .filter(TriageRecord.patient_id == patient_id)
            .order_by(TriageRecord.recorded_at.desc())
            .first()
        )
        return record.triage_level if record else MAX_TRIAGE_LEVEL

    def enqueue(
        self,
        patient_id: str,
        triage_level: Optional[int] = None,
        chief_complaint: Optional[str] = None,
    ) -> QueueEntry:
        """Add a patient to the queue in status 'waiting'."""
        if triage_level is None:
            triage_level = self.default_triage_level(patient_id)
        level = validate_triage_level(triage_level)

        with _queue_lock:
            if self.db.query(Patient).filter(Patient.patient_id == patient_id).first() is None:
                raise NotFound(f"Patient {patient_id} not found")
            if self.active_entry(patient_id) is not None:
                raise ValidationError(f"Patient {patient_id} is already in the queue")

            entry = self._new_entry(patient_id, level, chief_complaint)
            self.events.append_event(
                EventLogService.QUEUE_ENQUEUED,
                patient_id=patient_id,
                payload={"triage_level": level},
                commit=False,
            )
            self._commit(entry)

        self.logger.info(f"Enqueued {patient_id} at level {level}")
        return entry

    def update_status(self, patient_id: str, status: str) -> QueueEntry:
        """Move the patient's latest entry to status. Last write wins."""
        if status not in QueueStatus.ALL:
            raise ValidationError(f"Unknown queue status '{status}'")

        with _queue_lock:
            entry = self.latest_entry(patient_id)
            if entry is None:
                raise NotFound(f"Patient {patient_id} is not in the queue")

            previous = entry.status
            if previous in QueueStatus.TERMINAL:
                raise InvalidTransition(previous, status)
            if status == previous:
                return entry
            if status not in ALLOWED_TRANSITIONS[previous]:
                raise InvalidTransition(previous, status)

            entry.status = status
            entry.updated_at = self.clock()
            self.events.append_event(
                EventLogService.QUEUE_REMOVED if status == QueueStatus.REMOVED else EventLogService.QUEUE_STATUS_CHANGED,
                patient_id=patient_id,
                payload={"from": previous, "to": status},
                commit=False,
            )
            self._commit(entry)

        self.logger.info(f"Queue status {patient_id}: {previous} -> {status}")
        return entry

    def remove(self, patient_id: str) -> QueueEntry:
        """Take the patient off the board (status 'removed')."""
        return self.update_status(patient_id, QueueStatus.REMOVED)

    def apply_triage(
        self,
        patient_id: str,
        triage_level: int,
        chief_complaint: Optional[str] = None,
        encounter_id: Optional[str] = None,
    ) -> QueueEntry:
        """
        Record a completed triage on the queue.

        Enqueues the patient if they have no active entry, then sets the
        level and moves waiting -> triaged. Entries already past waiting
        keep their status and only take the new level.
        """
        level = validate_triage_level(triage_level)

        with _queue_lock:
            entry = self.active_entry(patient_id)
            if entry is None:
                if self.db.query(Patient).filter(Patient.patient_id == patient_id).first() is None:
                    raise NotFound(f"Patient {patient_id} not found")
                entry = self._new_entry(patient_id, level, chief_complaint)

            previous = entry.status
            entry.triage_level = level
            if chief_complaint:
                entry.chief_complaint = chief_complaint
            if encounter_id:
                entry.encounter_id = encounter_id
            if entry.status == QueueStatus.WAITING:
                entry.status = QueueStatus.TRIAGED
            entry.updated_at = self.clock()

            self.events.append_event(
                EventLogService.QUEUE_STATUS_CHANGED,
                patient_id=patient_id,
                payload={"from": previous, "to": entry.status, "triage_level": level},
                commit=False,
            )
            self._commit(entry)

        return entry

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _new_entry(self, patient_id: str, level: int, chief_complaint: Optional[str]) -> QueueEntry:
        now = self.clock()
        entry = QueueEntry(
            patient_id=patient_id,
            triage_level=level,
            status=QueueStatus.WAITING,
            chief_complaint=chief_complaint,
            added_at=now,
            updated_at=now,
        )
        self.db.add(entry)
        return entry

    def _commit(self, entry: QueueEntry):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if entry.status in QueueStatus.TERMINAL:
            self.projection.remove_queue_entry(entry.patient_id)
        else:
            self.projection.update_queue_entry(entry.to_dict())


def get_queue_service() -> QueueService:
    """Queue service bound to the current request's session."""
    return QueueService()
