"""
Patient and consultation models.

These are the clinic's own records. The matching FHIR resources are
created lazily and referenced back through fhir_patient_id /
fhir_encounter_id.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Date, Text, JSON
from sqlalchemy.orm import relationship

from clinicsync.db.postgres import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Patient(Base):
    """A registered clinic patient."""

    __tablename__ = "patient"

    patient_id = Column(String(64), primary_key=True, default=_new_id)
    full_name = Column(String(255), nullable=False)
    nric = Column(String(32), nullable=True)  # national identity number
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(16), nullable=True)  # male | female | other | unknown
    phone = Column(String(32), nullable=True)
    email = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)

    # Upstream FHIR Patient id, set once the resource exists
    fhir_patient_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    consultations = relationship("Consultation", back_populates="patient")

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.patient_id,
            "fullName": self.full_name,
            "dateOfBirth": self.date_of_birth.isoformat() if self.date_of_birth else None,
            "gender": self.gender,
            "phone": self.phone,
            "fhirPatientId": self.fhir_patient_id,
        }

    def __repr__(self):
        return f"<Patient patient_id={self.patient_id}>"


class Consultation(Base):
    """
    A completed doctor consultation, exportable to FHIR as an Encounter
    plus its Condition, MedicationRequest and procedure ServiceRequests.
    """

    __tablename__ = "consultation"

    consultation_id = Column(String(64), primary_key=True, default=_new_id)
    patient_id = Column(String(64), ForeignKey("patient.patient_id"), nullable=False)
    doctor_name = Column(String(255), nullable=True)

    chief_complaint = Column(Text, nullable=True)
    diagnosis = Column(Text, nullable=True)
    diagnosis_code = Column(String(32), nullable=True)  # ICD-10
    notes = Column(Text, nullable=True)

    # [{"name", "code"?, "notes"?}]
    procedures = Column(JSON, nullable=True)
    # [{"drugName", "dosage", "frequency", "duration"?, "instructions"?}]
    prescriptions = Column(JSON, nullable=True)

    consulted_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    fhir_encounter_id = Column(String(64), nullable=True)

    patient = relationship("Patient", back_populates="consultations")

    def __repr__(self):
        return f"<Consultation consultation_id={self.consultation_id}>"
