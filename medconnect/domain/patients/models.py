from sqlalchemy import Column, String, Date, DateTime, ForeignKey, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from datetime import date
import secrets

from medconnect.infrastructure.database import Base
from medconnect.domain.auth.models import gen_uuid


class Patient(Base):
    """Patient profile linked to a user account"""
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=gen_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, unique=True)
    reference_number = Column(String(32), unique=True, nullable=False, index=True)

    date_of_birth = Column(Date)
    allergies = Column(Text)

    # Insurance on file, compared against what is presented at the counter
    insurance_provider = Column(String(100))
    insurance_number = Column(String(100))

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    user = relationship("User")

    @staticmethod
    def generate_reference_number(today: date = None) -> str:
        """Human-readable reference, e.g. PAT-20240101-0001"""
        today = today or date.today()
        return f"PAT-{today.strftime('%Y%m%d')}-{secrets.randbelow(10000):04d}"
