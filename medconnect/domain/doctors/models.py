from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from medconnect.infrastructure.database import Base
from medconnect.domain.auth.models import gen_uuid


class Doctor(Base):
    """Prescriber profile linked to a user account"""
    __tablename__ = "doctors"

    id = Column(String(36), primary_key=True, default=gen_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, unique=True)
    license_number = Column(String(64), unique=True)
    specialization = Column(String(100))

    created_at = Column(DateTime, default=func.now())

    user = relationship("User")
