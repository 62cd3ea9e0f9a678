#!/usr/bin/env python3
"""
DEMO SEED SCRIPT
================

Creates a predictable front-desk demo:
- 6 demo patients
- a queue with mixed triage levels and statuses
- one finished consultation ready for FHIR export

RE-RUN ANYTIME: python scripts/seed_demo.py

This script CLEARS the clinic tables and creates fresh data. Nothing is
written to the FHIR repository; patients are synced on first use.
"""

import sys
import os
from datetime import datetime, date, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from clinicsync.db.postgres import get_db_session, init_db
from clinicsync.models import Patient, Consultation, QueueEntry, QueueStatus, TriageRecord, EventLog
from clinicsync.services.queue_service import QueueService


DEMO_PATIENTS = [
    # (patient_id, full_name, nric, dob, gender, phone)
    ("demo-001", "Tan Wei Ming", "S8012345A", date(1980, 3, 14), "male", "+65 9123 4567"),
    ("demo-002", "Siti Nurhaliza", "S8823456B", date(1988, 11, 2), "female", "+65 9234 5678"),
    ("demo-003", "Rajesh Kumar", "S7534567C", date(1975, 6, 21), "male", "+65 9345 6789"),
    ("demo-004", "Lim Hui Min", "T0245678D", date(2002, 1, 30), "female", None),
    ("demo-005", "Ahmad bin Hassan", "S6956789E", date(1969, 9, 9), "male", "+65 9567 8901"),
    ("demo-006", "Chen Xiao Ling", "S9167890F", date(1991, 4, 17), "female", "+65 9678 9012"),
]

# (patient_id, triage_level, status, chief_complaint, minutes_ago)
DEMO_QUEUE = [
    ("demo-001", 3, QueueStatus.WAITING, "Fever and sore throat for 3 days", 45),
    ("demo-002", 2, QueueStatus.TRIAGED, "Chest tightness on exertion", 30),
    ("demo-003", 4, QueueStatus.WAITING, "Follow-up: hypertension review", 25),
    ("demo-004", 5, QueueStatus.WAITING, "Medical certificate", 10),
    ("demo-005", 1, QueueStatus.IN_CONSULTATION, "Severe shortness of breath", 5),
]


def clear_demo_data(session):
    """Delete clinic rows, children first."""
    print("\n1. Clearing existing data...")
    for model in (EventLog, TriageRecord, QueueEntry, Consultation, Patient):
        deleted = session.query(model).delete()
        print(f"   - {model.__tablename__}: {deleted} rows")
    session.commit()


def seed_patients(session):
    print("\n2. Creating demo patients...")
    for patient_id, name, nric, dob, gender, phone in DEMO_PATIENTS:
        session.add(Patient(
            patient_id=patient_id,
            full_name=name,
            nric=nric,
            date_of_birth=dob,
            gender=gender,
            phone=phone,
        ))
        print(f"   + {patient_id}  {name}")
    session.commit()


def seed_queue(session):
    print("\n3. Building the queue...")
    now = datetime.utcnow()
    for patient_id, level, status, complaint, minutes_ago in DEMO_QUEUE:
        added_at = now - timedelta(minutes=minutes_ago)
        session.add(QueueEntry(
            patient_id=patient_id,
            triage_level=level,
            status=status,
            chief_complaint=complaint,
            added_at=added_at,
            updated_at=added_at,
        ))
        if status != QueueStatus.WAITING:
            session.add(TriageRecord(
                patient_id=patient_id,
                triage_level=level,
                chief_complaint=complaint,
                vital_signs={"heartRate": 92, "temperature": 37.4, "oxygenSaturation": 97},
                triage_by="Nurse Demo",
                recorded_at=added_at + timedelta(minutes=2),
            ))
        print(f"   + {patient_id}  level {level}  {status}")
    session.commit()


def seed_consultation(session):
    print("\n4. Creating a finished consultation...")
    consultation = Consultation(
        patient_id="demo-006",
        doctor_name="Dr Demo",
        chief_complaint="Cough and runny nose",
        diagnosis="Acute upper respiratory infection",
        diagnosis_code="J06.9",
        notes="Afebrile, chest clear.",
        procedures=[{"name": "Throat swab"}],
        prescriptions=[
            {"drugName": "Paracetamol 500mg", "dosage": "1 tab", "frequency": "QDS", "duration": "3 days"},
            {"drugName": "Loratadine 10mg", "dosage": "1 tab", "frequency": "OD", "duration": "5 days"},
        ],
        consulted_at=datetime.utcnow() - timedelta(hours=1),
    )
    session.add(consultation)
    session.commit()
    print(f"   + consultation {consultation.consultation_id} (demo-006)")
    return consultation


def print_demo_summary(session):
    print("\n" + "=" * 60)
    print("QUEUE BOARD")
    print("=" * 60)
    for entry in QueueService(session).list():
        print(f"  L{entry.triage_level}  {entry.status:<16} {entry.patient_id}  {entry.chief_complaint}")


def main():
    print("=" * 60)
    print("CLINICSYNC - DEMO DATA SEED")
    print("=" * 60)

    init_db()
    session = get_db_session()

    clear_demo_data(session)
    seed_patients(session)
    seed_queue(session)
    consultation = seed_consultation(session)

    print_demo_summary(session)
    print(f"\nExport the consultation with:\n  POST /api/fhir/export {{\"consultationId\": \"{consultation.consultation_id}\"}}")
    print("\nDemo seed complete.\n")


if __name__ == "__main__":
    main()
