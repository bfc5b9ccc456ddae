from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy import select
from medconnect.domain.patients.models import Patient


class PatientRepository:
    """Repository for patient data access operations"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, patient_data: dict) -> Patient:
        """Create a new patient, generating a reference number when missing"""
        if not patient_data.get("reference_number"):
            reference_number = Patient.generate_reference_number()
            while self.get_by_reference_number(reference_number):
                reference_number = Patient.generate_reference_number()
            patient_data = {**patient_data, "reference_number": reference_number}

        patient = Patient(**patient_data)
        self.db.add(patient)
        self.db.commit()
        self.db.refresh(patient)
        return patient

    def get_by_id(self, patient_id: str) -> Optional[Patient]:
        result = self.db.execute(select(Patient).where(Patient.id == patient_id))
        return result.scalar_one_or_none()

    def get_by_reference_number(self, reference_number: str) -> Optional[Patient]:
        result = self.db.execute(
            select(Patient).where(Patient.reference_number == reference_number)
        )
        return result.scalar_one_or_none()
