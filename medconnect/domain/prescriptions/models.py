from sqlalchemy import (
    Column, String, Integer, DateTime, Date, ForeignKey, Text, Boolean, Numeric, Enum, UniqueConstraint, event
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from medconnect.infrastructure.database import Base
from medconnect.domain.auth.models import gen_uuid


class PrescriptionStatus(str, enum.Enum):
    """Status of prescription"""
    PENDING = "PENDING"
    SCANNED = "SCANNED"
    VALIDATED = "VALIDATED"
    DISPENSED = "DISPENSED"
    FULFILLED = "FULFILLED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class PharmacyAction(str, enum.Enum):
    """Audit actions recorded by the pharmacy workflow"""
    SCAN = "SCAN"
    SCANNED = "SCANNED"
    VALIDATED = "VALIDATED"
    DISPENSED = "DISPENSED"
    FULFILLED = "FULFILLED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


# Statuses a pharmacist can still act on
OPEN_STATUSES = (
    PrescriptionStatus.PENDING,
    PrescriptionStatus.SCANNED,
    PrescriptionStatus.VALIDATED,
)

TERMINAL_STATUSES = (
    PrescriptionStatus.FULFILLED,
    PrescriptionStatus.REJECTED,
    PrescriptionStatus.CANCELLED,
    PrescriptionStatus.EXPIRED,
)

ALLOWED_TRANSITIONS = {
    PrescriptionStatus.PENDING: {
        PrescriptionStatus.SCANNED,
        PrescriptionStatus.REJECTED,
        PrescriptionStatus.CANCELLED,
        PrescriptionStatus.EXPIRED,
    },
    PrescriptionStatus.SCANNED: {
        PrescriptionStatus.VALIDATED,
        PrescriptionStatus.REJECTED,
        PrescriptionStatus.CANCELLED,
        PrescriptionStatus.EXPIRED,
    },
    PrescriptionStatus.VALIDATED: {
        PrescriptionStatus.DISPENSED,
        PrescriptionStatus.REJECTED,
        PrescriptionStatus.CANCELLED,
        PrescriptionStatus.EXPIRED,
    },
    PrescriptionStatus.DISPENSED: {PrescriptionStatus.FULFILLED},
    PrescriptionStatus.FULFILLED: set(),
    PrescriptionStatus.REJECTED: set(),
    PrescriptionStatus.CANCELLED: set(),
    PrescriptionStatus.EXPIRED: set(),
}


def can_transition(current: PrescriptionStatus, target: PrescriptionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[PrescriptionStatus(current)]


class Prescription(Base):
    """Prescription issued by a doctor and redeemed at a pharmacy"""
    __tablename__ = "prescriptions"

    id = Column(String(36), primary_key=True, default=gen_uuid)
    prescription_number = Column(String(50), unique=True, nullable=False, index=True)

    # References
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(String(36), ForeignKey("doctors.id"), nullable=False, index=True)

    # Clinical notes
    diagnosis = Column(Text)
    doctor_notes = Column(Text)

    status = Column(Enum(PrescriptionStatus), nullable=False, default=PrescriptionStatus.PENDING, index=True)

    # Optimistic lock, bumped on every flush that touches the row
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    items = relationship(
        "PrescriptionItem",
        back_populates="prescription",
        cascade="all, delete-orphan",
        order_by="PrescriptionItem.position",
    )
    tokens = relationship("IssuedToken", back_populates="prescription", order_by="IssuedToken.created_at")
    patient = relationship("Patient")
    doctor = relationship("Doctor")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class PrescriptionItem(Base):
    """Individual medicine line; dispensing fields are filled by the pharmacy"""
    __tablename__ = "prescription_items"

    id = Column(String(36), primary_key=True, default=gen_uuid)
    prescription_id = Column(String(36), ForeignKey("prescriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    medicine_name = Column(String(300), nullable=False)
    dosage = Column(String(100), nullable=False)
    frequency = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    instructions = Column(Text)

    # Dispensing
    dispensed_quantity = Column(Integer, nullable=False, default=0)
    unit_price = Column(Numeric(10, 2))
    batch_number = Column(String(64))
    expiry_date = Column(Date)
    is_dispensed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=func.now())

    prescription = relationship("Prescription", back_populates="items")


class IssuedToken(Base):
    """Encrypted QR credential for a prescription.

    Superseded tokens are kept for audit with ``active_prescription_id`` set
    to NULL; the unique constraint on that column allows one active token
    per prescription.
    """
    __tablename__ = "qr_codes"

    id = Column(String(36), primary_key=True, default=gen_uuid)
    prescription_id = Column(String(36), ForeignKey("prescriptions.id"), nullable=False, index=True)
    active_prescription_id = Column(String(36), unique=True, nullable=True)

    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    encrypted_payload = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    scan_count = Column(Integer, nullable=False, default=0)
    last_scanned_at = Column(DateTime)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    prescription = relationship("Prescription", back_populates="tokens")

    __mapper_args__ = {"version_id_col": version}

    def is_expired(self, now: datetime = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at

    @property
    def is_active(self) -> bool:
        return self.active_prescription_id is not None


class PharmacyLog(Base):
    """Append-only audit trail of pharmacy actions"""
    __tablename__ = "pharmacy_logs"
    __table_args__ = (
        UniqueConstraint("prescription_id", "sequence", name="uq_pharmacy_logs_prescription_sequence"),
    )

    id = Column(String(36), primary_key=True, default=gen_uuid)
    prescription_id = Column(String(36), ForeignKey("prescriptions.id"), nullable=False, index=True)
    actor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    action = Column(Enum(PharmacyAction), nullable=False)
    notes = Column(Text)

    # Position in the prescription's history; breaks ties between entries
    # written in the same transaction
    sequence = Column(Integer, nullable=False)
    action_timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Dispensing details
    unit_price = Column(Numeric(10, 2))
    total_amount = Column(Numeric(10, 2))
    insurance_coverage = Column(Numeric(10, 2))
    patient_payment = Column(Numeric(10, 2))
    insurance_provider = Column(String(100))
    insurance_number = Column(String(100))
    insurance_approval_code = Column(String(64))

    prescription = relationship("Prescription")
    actor = relationship("User")


class AppendOnlyViolation(RuntimeError):
    pass


@event.listens_for(PharmacyLog, "before_update")
def _refuse_log_update(mapper, connection, target):
    raise AppendOnlyViolation(f"pharmacy log {target.id} is immutable")


@event.listens_for(PharmacyLog, "before_delete")
def _refuse_log_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"pharmacy log {target.id} cannot be deleted")
