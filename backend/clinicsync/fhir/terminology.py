"""
Code systems and catalogs used when building FHIR resources.

Catalog keys are the short codes clinicians pick in the UI ("CBC",
"CHEST_XRAY"); values carry the LOINC coding sent upstream.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

LOINC = "http://loinc.org"
SNOMED = "http://snomed.info/sct"
ICD10 = "http://hl7.org/fhir/sid/icd-10"
DICOM_DCM = "http://dicom.nema.org/resources/ontology/DCM"
V3_ACT_CODE = "http://terminology.hl7.org/CodeSystem/v3-ActCode"
V3_ACT_PRIORITY = "http://terminology.hl7.org/CodeSystem/v3-ActPriority"
V3_INTERPRETATION = "http://terminology.hl7.org/CodeSystem/v3-ObservationInterpretation"
V2_0074 = "http://terminology.hl7.org/CodeSystem/v2-0074"
OBSERVATION_CATEGORY = "http://terminology.hl7.org/CodeSystem/observation-category"
UCUM = "http://unitsofmeasure.org"

# Canonical URLs of the clinic's StructureDefinition extensions
TRIAGE_EXTENSION_URL = "https://ucc.emr/triage-encounter"
STORAGE_PATH_EXTENSION_URL = "https://ucc.emr/storage-path"


@dataclass(frozen=True)
class Coding:
    system: Optional[str]
    code: Optional[str]
    display: Optional[str] = None

    def to_fhir(self) -> Dict[str, Any]:
        """Emit only the fields that are present."""
        data = {}
        if self.system:
            data["system"] = self.system
        if self.code:
            data["code"] = self.code
        if self.display:
            data["display"] = self.display
        return data


@dataclass(frozen=True)
class ImagingProcedure:
    coding: Coding
    modality: str


LAB_TESTS = {
    "CBC": Coding(LOINC, "58410-2", "Complete Blood Count (CBC) panel"),
    "BMP": Coding(LOINC, "51990-0", "Basic metabolic panel"),
    "RENAL_PROFILE": Coding(LOINC, "24323-8", "Basic metabolic/renal panel"),
    "LFT": Coding(LOINC, "24325-3", "Hepatic function (LFT) panel"),
    "LIPID": Coding(LOINC, "57698-3", "Lipid panel"),
    "HBA1C": Coding(LOINC, "4548-4", "Hemoglobin A1c"),
}

IMAGING_MODALITIES = {
    "CR": Coding(DICOM_DCM, "CR", "Computed Radiography"),
    "CT": Coding(DICOM_DCM, "CT", "Computed Tomography"),
    "MR": Coding(DICOM_DCM, "MR", "Magnetic Resonance"),
    "US": Coding(DICOM_DCM, "US", "Ultrasound"),
    "DX": Coding(DICOM_DCM, "DX", "Digital Radiography"),
    "MG": Coding(DICOM_DCM, "MG", "Mammography"),
    "NM": Coding(DICOM_DCM, "NM", "Nuclear Medicine"),
    "PT": Coding(DICOM_DCM, "PT", "Positron Emission Tomography"),
    "XA": Coding(DICOM_DCM, "XA", "X-Ray Angiography"),
}

IMAGING_PROCEDURES = {
    # X-Ray
    "CHEST_XRAY": ImagingProcedure(Coding(LOINC, "36643-5", "Chest X-ray"), "DX"),
    "CHEST_XRAY_2V": ImagingProcedure(Coding(LOINC, "30746-2", "Chest X-ray 2 views"), "DX"),
    "ABDOMEN_XRAY": ImagingProcedure(Coding(LOINC, "36558-5", "Abdomen X-ray"), "DX"),
    "SPINE_LUMBAR_XRAY": ImagingProcedure(Coding(LOINC, "36567-6", "Lumbar Spine X-ray"), "DX"),
    "KNEE_XRAY": ImagingProcedure(Coding(LOINC, "37362-1", "Knee X-ray"), "DX"),
    # CT
    "HEAD_CT": ImagingProcedure(Coding(LOINC, "30799-1", "Head CT without contrast"), "CT"),
    "HEAD_CT_CONTRAST": ImagingProcedure(Coding(LOINC, "24727-0", "Head CT with contrast"), "CT"),
    "CHEST_CT": ImagingProcedure(Coding(LOINC, "30800-7", "Chest CT without contrast"), "CT"),
    "ABDOMEN_CT": ImagingProcedure(Coding(LOINC, "30807-2", "Abdomen CT without contrast"), "CT"),
    "CTPA": ImagingProcedure(Coding(LOINC, "42273-8", "CT Pulmonary Angiography"), "CT"),
    # MRI
    "BRAIN_MRI": ImagingProcedure(Coding(LOINC, "24556-3", "Brain MRI"), "MR"),
    "SPINE_MRI": ImagingProcedure(Coding(LOINC, "24604-1", "Spine MRI"), "MR"),
    "KNEE_MRI": ImagingProcedure(Coding(LOINC, "24610-8", "Knee MRI"), "MR"),
    # Ultrasound
    "ABDOMEN_US": ImagingProcedure(Coding(LOINC, "24626-4", "Abdomen Ultrasound"), "US"),
    "PELVIS_US": ImagingProcedure(Coding(LOINC, "24638-9", "Pelvis Ultrasound"), "US"),
    "OBSTETRIC_US": ImagingProcedure(Coding(LOINC, "11525-3", "Obstetric Ultrasound"), "US"),
    "THYROID_US": ImagingProcedure(Coding(LOINC, "24651-2", "Thyroid Ultrasound"), "US"),
    "ECHO": ImagingProcedure(Coding(LOINC, "18752-6", "Echocardiography"), "US"),
    # Mammography
    "MAMMOGRAM": ImagingProcedure(Coding(LOINC, "37027-2", "Mammography"), "MG"),
}
IMAGING_PROCEDURES["CXR"] = IMAGING_PROCEDURES["CHEST_XRAY"]

# ServiceRequest.category codings that tell order kinds apart on read-back
ORDER_CATEGORIES = {
    "lab": Coding(SNOMED, "108252007", "Laboratory procedure"),
    "imaging": Coding(SNOMED, "363679005", "Imaging"),
    "referral": Coding(SNOMED, "3457005", "Patient referral"),
    "procedure": Coding(SNOMED, "387713003", "Surgical procedure"),
}

TRIAGE_LEVELS = {
    1: "Resuscitation",
    2: "Emergency",
    3: "Urgent",
    4: "Semi-Urgent",
    5: "Non-Urgent",
}

CHIEF_COMPLAINT = Coding(LOINC, "8661-1", "Chief complaint - Reported")
CONSULTATION_NOTE = Coding(LOINC, "34133-9", "Summary of episode note")

# vital_signs key -> (LOINC coding, UCUM unit)
VITAL_SIGNS = {
    "systolicBp": (Coding(LOINC, "8480-6", "Systolic blood pressure"), "mm[Hg]"),
    "diastolicBp": (Coding(LOINC, "8462-4", "Diastolic blood pressure"), "mm[Hg]"),
    "heartRate": (Coding(LOINC, "8867-4", "Heart rate"), "/min"),
    "respiratoryRate": (Coding(LOINC, "9279-1", "Respiratory rate"), "/min"),
    "temperature": (Coding(LOINC, "8310-5", "Body temperature"), "Cel"),
    "oxygenSaturation": (Coding(LOINC, "59408-5", "Oxygen saturation by pulse oximetry"), "%"),
    "painScore": (Coding(LOINC, "72514-3", "Pain severity - 0-10 verbal numeric rating"), "{score}"),
    "weight": (Coding(LOINC, "29463-7", "Body weight"), "kg"),
    "height": (Coding(LOINC, "8302-2", "Body height"), "cm"),
}

INTERPRETATION_CODES = {
    "normal": "N",
    "high": "H",
    "low": "L",
    "critical": "A",
}

# Prescription shorthand -> FHIR Timing.repeat frequency per day
DOSE_FREQUENCY = {
    "od": 1,
    "bd": 2,
    "tds": 3,
    "qid": 4,
}
