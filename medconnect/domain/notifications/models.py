from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Enum
from datetime import datetime
import enum

from medconnect.infrastructure.database import Base
from medconnect.domain.auth.models import gen_uuid


class OutboxStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class OutboxEventType(str, enum.Enum):
    PRESCRIPTION_ISSUED = "prescription.issued"


class OutboxEvent(Base):
    """Domain event written in the same transaction as the state change it reports.

    A worker delivers pending rows; ``FAILED`` is terminal once
    ``attempts`` reaches ``max_attempts``.
    """
    __tablename__ = "notification_outbox"

    id = Column(String(36), primary_key=True, default=gen_uuid)
    event_type = Column(Enum(OutboxEventType), nullable=False, index=True)
    aggregate_id = Column(String(36), nullable=False, index=True)
    payload = Column(JSON, nullable=False)

    status = Column(Enum(OutboxStatus), nullable=False, default=OutboxStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    processed_at = Column(DateTime)
