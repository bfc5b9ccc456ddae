"""Value objects exchanged by the prescription workflow.

These are plain pydantic models rather than ORM rows so they can be
embedded in tokens, returned across the service boundary and rendered by
the API without holding a database session.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from medconnect.domain.prescriptions.models import PharmacyAction, PrescriptionStatus


class SnapshotMedicine(BaseModel):
    name: str
    dosage: str
    frequency: str
    quantity: int


class PrescriptionSnapshot(BaseModel):
    """Copy of the prescription taken when its QR token is issued"""
    model_config = ConfigDict(frozen=True)

    prescription_id: str
    prescription_number: str
    patient_name: str
    doctor_name: str
    medicines: List[SnapshotMedicine]
    diagnosis: Optional[str] = None
    created_at: datetime
    issued_at: datetime
    expires_at: datetime


class PartyNames(BaseModel):
    """Read-time projection of the users behind a prescription"""
    patient_name: str = ""
    patient_email: Optional[str] = None
    doctor_name: str = ""


class ItemInput(BaseModel):
    medicine_name: str
    dosage: str
    frequency: str
    quantity: int
    instructions: Optional[str] = None


class DispenseLine(BaseModel):
    """One dispensed line; without an item id lines match items in order"""
    prescription_item_id: Optional[str] = None
    quantity: int
    unit_price: Decimal
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None


class DispenseRequest(BaseModel):
    items: List[DispenseLine] = Field(default_factory=list)
    notes: Optional[str] = None
    insurance_provider: Optional[str] = None
    insurance_number: Optional[str] = None


class TokenView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    token_hash: str
    is_used: bool
    scan_count: int
    expires_at: datetime


class ItemView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    medicine_name: str
    dosage: str
    frequency: str
    quantity: int
    instructions: Optional[str] = None
    dispensed_quantity: int = 0
    unit_price: Optional[Decimal] = None
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None
    is_dispensed: bool = False


class PrescriptionView(BaseModel):
    id: str
    prescription_number: str
    status: PrescriptionStatus
    patient_name: str
    doctor_name: str
    diagnosis: Optional[str] = None
    doctor_notes: Optional[str] = None
    items: List[ItemView] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    qr_code: Optional[TokenView] = None


class ScanResult(BaseModel):
    prescription: Optional[PrescriptionView] = None
    is_valid: bool
    message: str
    can_dispense: bool


class IssueResult(BaseModel):
    prescription_id: str
    token_hash: str
    encrypted_payload: str
    rendered_code: str
    expires_at: datetime
    reused: bool = False


class DispenseResult(BaseModel):
    prescription: PrescriptionView
    total_amount: Decimal
    insurance_coverage: Decimal
    patient_payment: Decimal
    insurance_approval_code: Optional[str] = None


class LogEntryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    prescription_id: str
    actor_id: str
    action: PharmacyAction
    notes: Optional[str] = None
    sequence: int
    action_timestamp: datetime
    total_amount: Optional[Decimal] = None
    insurance_coverage: Optional[Decimal] = None
    patient_payment: Optional[Decimal] = None


class QRScanStatus(BaseModel):
    token_hash: str
    is_scanned: bool
    scan_count: int
    last_scanned_at: Optional[datetime] = None
    is_used: bool
    is_expired: bool
    expires_at: datetime


class DispensingSummary(BaseModel):
    prescription_id: str
    total_amount: Decimal
    insurance_coverage: Decimal
    patient_payment: Decimal
    dispensed_items: List[ItemView]
    dispensing_date: Optional[datetime] = None
    pharmacist_id: Optional[str] = None


class SweepReport(BaseModel):
    expired: int = 0
    failed: int = 0
    expired_ids: List[str] = Field(default_factory=list)


class CreateResult(BaseModel):
    prescription: PrescriptionView
    token: IssueResult


class HistoryPage(BaseModel):
    items: List[LogEntryView]
    total: int
    page: int
    limit: int
    pages: int
