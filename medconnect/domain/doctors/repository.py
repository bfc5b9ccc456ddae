from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy import select
from medconnect.domain.doctors.models import Doctor


class DoctorRepository:
    """Repository for doctor lookups.

    Callers pick the key they hold: a doctor id, or the id of the user
    account behind the doctor profile.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, doctor_data: dict) -> Doctor:
        doctor = Doctor(**doctor_data)
        self.db.add(doctor)
        self.db.commit()
        self.db.refresh(doctor)
        return doctor

    def get_by_id(self, doctor_id: str) -> Optional[Doctor]:
        result = self.db.execute(select(Doctor).where(Doctor.id == doctor_id))
        return result.scalar_one_or_none()

    def get_by_user_id(self, user_id: str) -> Optional[Doctor]:
        result = self.db.execute(select(Doctor).where(Doctor.user_id == user_id))
        return result.scalar_one_or_none()
