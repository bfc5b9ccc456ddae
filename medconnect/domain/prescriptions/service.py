"""
Prescription Service Layer

Business logic for the prescription lifecycle: issuing QR tokens, pharmacy
scans, validation, dispensing, rejection, cancellation and the expiry
sweep. Every state change runs in one transaction together with its audit
entries, item updates and token counters.
"""

from typing import Callable, Dict, List, Optional
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
import logging
import math
import secrets
import string

from sqlalchemy.orm import Session

from medconnect.core.config import settings
from medconnect.core.exceptions import (
    AlreadyConsumedError,
    ConcurrencyConflictError,
    ExpiredError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from medconnect.infrastructure.database import transaction
from medconnect.infrastructure.encryption import TokenCodec, build_token_codec
from medconnect.infrastructure.qr_renderer import render_qr_data_url
from medconnect.domain.doctors.repository import DoctorRepository
from medconnect.domain.patients.repository import PatientRepository
from medconnect.domain.notifications.models import OutboxEventType
from medconnect.domain.notifications.repository import OutboxRepository
from medconnect.domain.prescriptions.models import (
    Prescription, PrescriptionItem, PrescriptionStatus, PharmacyAction, IssuedToken
)
from medconnect.domain.prescriptions.repository import (
    PrescriptionRepository, TokenRepository, PharmacyLogRepository
)
from medconnect.domain.prescriptions.schemas import (
    CreateResult, DispenseLine, DispenseRequest, DispenseResult, DispensingSummary,
    HistoryPage, IssueResult, ItemInput, ItemView, LogEntryView, PrescriptionSnapshot,
    PrescriptionView, QRScanStatus, ScanResult, SnapshotMedicine, SweepReport, TokenView
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

INSURANCE_COVERAGE_PERCENT = {
    "Blue Cross": 80,
    "Aetna": 75,
    "Cigna": 70,
    "UnitedHealth": 85,
    "Medicare": 90,
    "Medicaid": 95,
}
DEFAULT_COVERAGE_PERCENT = 60

DISPENSABLE_STATUSES = (PrescriptionStatus.SCANNED, PrescriptionStatus.VALIDATED)


def coverage_percent(provider: str) -> int:
    return INSURANCE_COVERAGE_PERCENT.get(provider, DEFAULT_COVERAGE_PERCENT)


def generate_approval_code(now: datetime) -> str:
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(6))
    return f"APP-{int(now.timestamp() * 1000)}-{suffix}"


class PrescriptionLifecycleService:
    """Service layer for the prescription workflow"""

    def __init__(
        self,
        db: Session,
        codec: Optional[TokenCodec] = None,
        renderer: Callable[[str], str] = render_qr_data_url
    ):
        self.db = db
        self.prescription_repo = PrescriptionRepository(db)
        self.token_repo = TokenRepository(db)
        self.log_repo = PharmacyLogRepository(db)
        self.patient_repo = PatientRepository(db)
        self.doctor_repo = DoctorRepository(db)
        self.outbox_repo = OutboxRepository(db)
        codec = codec or build_token_codec()
        self.codec = codec.with_store(self.token_repo)
        self.renderer = renderer

    # ------------------------------------------------------------------
    # Issuing
    # ------------------------------------------------------------------

    def _generate_prescription_number(self, now: datetime) -> str:
        """RX-YYYYMMDD-NNNN, numbered per day"""
        count = self.prescription_repo.count_created_on(now.date())
        return f"RX-{now.strftime('%Y%m%d')}-{count + 1:04d}"

    def create_prescription(
        self,
        patient_id: str,
        doctor_id: str,
        items: List[ItemInput],
        diagnosis: Optional[str] = None,
        doctor_notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CreateResult:
        """Create a PENDING prescription and its first token in one transaction"""
        now = now or datetime.utcnow()

        if not self.patient_repo.get_by_id(patient_id):
            raise NotFoundError("Patient not found", details={"patient_id": patient_id})
        if not self.doctor_repo.get_by_id(doctor_id):
            raise NotFoundError("Doctor not found", details={"doctor_id": doctor_id})
        if not items:
            raise ValidationError("At least one prescription item is required")
        for item in items:
            if item.quantity <= 0:
                raise ValidationError(
                    f"Quantity for {item.medicine_name} must be greater than zero",
                    details={"medicine_name": item.medicine_name, "quantity": item.quantity}
                )

        with transaction(self.db, "create_prescription"):
            prescription = Prescription(
                prescription_number=self._generate_prescription_number(now),
                patient_id=patient_id,
                doctor_id=doctor_id,
                diagnosis=diagnosis,
                doctor_notes=doctor_notes,
                status=PrescriptionStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            prescription.items = [
                PrescriptionItem(position=index, **item.model_dump())
                for index, item in enumerate(items)
            ]
            self.prescription_repo.add(prescription)
            issued = self._mint_and_store(prescription, now)

        logger.info(f"Prescription {prescription.prescription_number} created for patient {patient_id}")
        return CreateResult(prescription=self._to_view(prescription), token=issued)

    def issue_token(self, prescription_id: str, now: Optional[datetime] = None) -> IssueResult:
        """Return the active token, minting a new one if none is valid.

        A still-valid token is returned unchanged. Runs under the prescription
        row lock. When two issuers race, the loser reads back the winner's
        token.
        """
        now = now or datetime.utcnow()

        try:
            with transaction(self.db, "issue_token"):
                prescription = self._lock(prescription_id)
                issued = self._ensure_token(prescription, now)
        except ConcurrencyConflictError:
            winner = self.token_repo.get_active_for_prescription(prescription_id, refresh=True)
            if winner is None or winner.is_expired(now):
                raise
            logger.info(f"Concurrent QR issue for {prescription_id}; returning existing token")
            return self._issue_result(winner, reused=True)

        if not issued.reused:
            logger.info(f"QR code issued for prescription {prescription_id}")
        return issued

    def resend_token_email(self, prescription_id: str, now: Optional[datetime] = None) -> IssueResult:
        """Queue the QR email again for the current token.

        Reuses the active token, minting one if it lapsed. Either way exactly
        one new issuance event lands in the outbox.
        """
        now = now or datetime.utcnow()

        with transaction(self.db, "resend_token_email"):
            prescription = self._lock(prescription_id)
            issued = self._ensure_token(prescription, now)
            if issued.reused:
                self._queue_issue_email(issued)

        logger.info(f"QR email re-queued for prescription {prescription_id}")
        return issued

    def _ensure_token(self, prescription: Prescription, now: datetime) -> IssueResult:
        """Caller holds the prescription row lock"""
        if not prescription.is_open:
            raise InvalidStateTransitionError(
                f"Cannot issue a QR code for a {prescription.status.value} prescription",
                details={"prescription_id": prescription.id}
            )

        existing = self.token_repo.get_active_for_prescription(prescription.id, refresh=True)
        if existing and not existing.is_expired(now):
            return self._issue_result(existing, reused=True)
        return self._mint_and_store(prescription, now)

    def _mint_and_store(self, prescription: Prescription, now: datetime) -> IssueResult:
        ttl = timedelta(hours=settings.QR_EXPIRY_HOURS)
        parties = self.prescription_repo.get_parties(prescription)
        snapshot = PrescriptionSnapshot(
            prescription_id=prescription.id,
            prescription_number=prescription.prescription_number,
            patient_name=parties.patient_name,
            doctor_name=parties.doctor_name,
            medicines=[
                SnapshotMedicine(
                    name=item.medicine_name,
                    dosage=item.dosage,
                    frequency=item.frequency,
                    quantity=item.quantity,
                )
                for item in prescription.items
            ],
            diagnosis=prescription.diagnosis,
            created_at=prescription.created_at,
            issued_at=now,
            expires_at=now + ttl,
        )
        minted = self.codec.mint(snapshot, ttl, now)
        rendered = self.renderer(minted.encrypted_payload)

        self.token_repo.upsert_token(
            prescription.id, minted.token_hash, minted.encrypted_payload, minted.expires_at
        )
        issued = IssueResult(
            prescription_id=prescription.id,
            token_hash=minted.token_hash,
            encrypted_payload=minted.encrypted_payload,
            rendered_code=rendered,
            expires_at=minted.expires_at,
        )
        self._queue_issue_email(issued)
        return issued

    def _queue_issue_email(self, issued: IssueResult) -> None:
        self.outbox_repo.append(
            OutboxEventType.PRESCRIPTION_ISSUED,
            issued.prescription_id,
            {
                "prescriptionId": issued.prescription_id,
                "tokenHash": issued.token_hash,
                "renderedCode": issued.rendered_code,
                "expiresAt": issued.expires_at.isoformat(),
            },
            max_attempts=settings.NOTIFICATION_MAX_ATTEMPTS,
        )

    def _issue_result(self, token: IssuedToken, reused: bool = False) -> IssueResult:
        return IssueResult(
            prescription_id=token.prescription_id,
            token_hash=token.token_hash,
            encrypted_payload=token.encrypted_payload,
            rendered_code=self.renderer(token.encrypted_payload),
            expires_at=token.expires_at,
            reused=reused,
        )

    # ------------------------------------------------------------------
    # Pharmacy workflow
    # ------------------------------------------------------------------

    def scan(self, token_hash: str, actor_id: str, now: Optional[datetime] = None) -> ScanResult:
        """Verify a scanned QR code and record the scan.

        The first scan moves PENDING to SCANNED; later scans only add a
        SCAN entry. Every scan bumps the token's counter.
        """
        now = now or datetime.utcnow()

        with transaction(self.db, "scan"):
            self.token_repo.get_by_hash_for_update(token_hash)
            decoded = self.codec.verify(token_hash, now)
            token = decoded.token

            if token.is_used:
                raise AlreadyConsumedError(
                    "QR code has already been used",
                    details={"token_hash": token_hash}
                )
            if not token.is_active:
                raise ExpiredError("QR code has been replaced", details={"token_hash": token_hash})

            prescription = self.prescription_repo.get_for_update(token.prescription_id)
            if prescription is None:
                raise NotFoundError("Prescription not found", details={"token_hash": token_hash})
            if not prescription.is_open:
                raise InvalidStateTransitionError(
                    f"Prescription is {prescription.status.value}",
                    details={"prescription_id": prescription.id}
                )

            token.scan_count += 1
            token.last_scanned_at = now

            if prescription.status == PrescriptionStatus.PENDING:
                self.prescription_repo.save_transition(
                    prescription,
                    PrescriptionStatus.SCANNED,
                    [{"actor_id": actor_id, "action": PharmacyAction.SCANNED, "notes": "QR code scanned"}],
                    now=now,
                )
                message = "QR code verified"
            else:
                self.prescription_repo.save_transition(
                    prescription,
                    None,
                    [{"actor_id": actor_id, "action": PharmacyAction.SCAN, "notes": "QR code re-scanned"}],
                    now=now,
                )
                message = "QR code verified (re-scan)"

        logger.info(f"Prescription {prescription.id} scanned by {actor_id} (scan #{token.scan_count})")
        return ScanResult(
            prescription=self._to_view(prescription),
            is_valid=True,
            message=message,
            can_dispense=prescription.status in DISPENSABLE_STATUSES,
        )

    def lookup_by_reference(
        self,
        reference_number: str,
        actor_id: str,
        now: Optional[datetime] = None
    ) -> ScanResult:
        """Find a patient's latest open prescription without scanning a code"""
        now = now or datetime.utcnow()

        patient = self.patient_repo.get_by_reference_number(reference_number)
        if not patient:
            raise NotFoundError(
                "Patient not found with this reference number",
                details={"reference_number": reference_number}
            )

        prescription = self.prescription_repo.get_latest_open_for_patient(patient.id)
        if not prescription:
            raise NotFoundError(
                "No active prescription found for this patient",
                details={"reference_number": reference_number}
            )

        max_age = timedelta(days=settings.PRESCRIPTION_MAX_AGE_DAYS)
        age = now - prescription.created_at
        if age > max_age:
            logger.warning(f"Reference lookup refused: prescription {prescription.id} is {age.days} days old")
            return ScanResult(
                prescription=self._to_view(prescription),
                is_valid=False,
                message=(
                    f"Prescription is {age.days} days old; prescriptions older than "
                    f"{settings.PRESCRIPTION_MAX_AGE_DAYS} days cannot be dispensed"
                ),
                can_dispense=False,
            )

        # Token and SCAN entry commit together or not at all
        with transaction(self.db, "lookup_by_reference"):
            prescription = self._lock(prescription.id)
            self._ensure_token(prescription, now)
            self.prescription_repo.save_transition(
                prescription,
                None,
                [{
                    "actor_id": actor_id,
                    "action": PharmacyAction.SCAN,
                    "notes": f"Prescription looked up by reference {reference_number}",
                }],
                now=now,
            )

        return ScanResult(
            prescription=self._to_view(prescription),
            is_valid=True,
            message="Prescription found",
            can_dispense=prescription.status in DISPENSABLE_STATUSES,
        )

    def validate(
        self,
        prescription_id: str,
        actor_id: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> PrescriptionView:
        now = now or datetime.utcnow()

        with transaction(self.db, "validate"):
            prescription = self._lock(prescription_id)
            if prescription.status != PrescriptionStatus.SCANNED:
                raise InvalidStateTransitionError(
                    "Prescription must be scanned before validation",
                    details={"prescription_id": prescription_id, "status": prescription.status.value}
                )
            self.prescription_repo.save_transition(
                prescription,
                PrescriptionStatus.VALIDATED,
                [{
                    "actor_id": actor_id,
                    "action": PharmacyAction.VALIDATED,
                    "notes": notes or "Prescription validated",
                }],
                now=now,
            )

        logger.info(f"Prescription {prescription_id} validated by {actor_id}")
        return self._to_view(prescription)

    def dispense(
        self,
        prescription_id: str,
        actor_id: str,
        request: DispenseRequest,
        now: Optional[datetime] = None
    ) -> DispenseResult:
        """Dispense a validated prescription and close it.

        Writes DISPENSED (with the financials) then FULFILLED and marks the
        token used. A prescription that already left VALIDATED is refused
        before any line is looked at.
        """
        now = now or datetime.utcnow()

        with transaction(self.db, "dispense"):
            prescription = self._lock(prescription_id)
            if prescription.status != PrescriptionStatus.VALIDATED:
                raise InvalidStateTransitionError(
                    "Prescription must be validated before dispensing",
                    details={"prescription_id": prescription_id, "status": prescription.status.value}
                )

            item_updates = self._resolve_dispense_lines(prescription, request.items)
            total = sum(
                (Decimal(changes["dispensed_quantity"]) * changes["unit_price"]
                 for changes in item_updates.values()),
                Decimal("0")
            ).quantize(CENTS, rounding=ROUND_HALF_UP)

            coverage = Decimal("0.00")
            approval_code = None
            patient = prescription.patient
            if (
                request.insurance_provider and request.insurance_number and patient
                and patient.insurance_provider == request.insurance_provider
                and patient.insurance_number == request.insurance_number
            ):
                percent = coverage_percent(request.insurance_provider)
                coverage = (total * Decimal(percent) / Decimal(100)).quantize(CENTS, rounding=ROUND_HALF_UP)
                if coverage > 0:
                    approval_code = generate_approval_code(now)
            patient_payment = total - coverage

            token = self.token_repo.get_active_for_prescription(prescription_id, refresh=True)
            if token is not None:
                token.is_used = True

            unit_price = None
            if len(item_updates) == 1:
                unit_price = next(iter(item_updates.values()))["unit_price"]

            self.prescription_repo.save_transition(
                prescription,
                PrescriptionStatus.DISPENSED,
                [{
                    "actor_id": actor_id,
                    "action": PharmacyAction.DISPENSED,
                    "notes": request.notes or "Prescription dispensed",
                    "unit_price": unit_price,
                    "total_amount": total,
                    "insurance_coverage": coverage,
                    "patient_payment": patient_payment,
                    "insurance_provider": request.insurance_provider,
                    "insurance_number": request.insurance_number,
                    "insurance_approval_code": approval_code,
                }],
                item_updates=item_updates,
                now=now,
            )
            self.prescription_repo.save_transition(
                prescription,
                PrescriptionStatus.FULFILLED,
                [{
                    "actor_id": actor_id,
                    "action": PharmacyAction.FULFILLED,
                    "notes": "Prescription fulfilled",
                }],
                now=now,
            )

        logger.info(f"Prescription {prescription_id} dispensed by {actor_id}: total {total}, covered {coverage}")
        return DispenseResult(
            prescription=self._to_view(prescription),
            total_amount=total,
            insurance_coverage=coverage,
            patient_payment=patient_payment,
            insurance_approval_code=approval_code,
        )

    def _resolve_dispense_lines(
        self,
        prescription: Prescription,
        lines: List[DispenseLine]
    ) -> Dict[PrescriptionItem, Dict]:
        """Match dispense lines to prescription items and check them"""
        if not lines:
            raise ValidationError("At least one item must be dispensed")

        items_by_id = {item.id: item for item in prescription.items}
        unclaimed = [item for item in prescription.items]
        updates: Dict[PrescriptionItem, Dict] = {}

        for index, line in enumerate(lines):
            if line.prescription_item_id:
                item = items_by_id.get(line.prescription_item_id)
                if item is None:
                    raise ValidationError(
                        "Item does not belong to this prescription",
                        details={"prescription_item_id": line.prescription_item_id}
                    )
            else:
                remaining = [item for item in unclaimed if item not in updates]
                if not remaining:
                    raise ValidationError(
                        "More dispense lines than prescription items",
                        details={"line": index}
                    )
                item = remaining[0]

            if item in updates:
                raise ValidationError("Item dispensed twice", details={"prescription_item_id": item.id})
            if line.quantity <= 0:
                raise ValidationError(
                    f"Quantity for {item.medicine_name} must be greater than zero",
                    details={"prescription_item_id": item.id, "quantity": line.quantity}
                )
            if line.quantity > item.quantity:
                raise ValidationError(
                    f"Cannot dispense more {item.medicine_name} than prescribed",
                    details={"prescription_item_id": item.id, "prescribed": item.quantity, "quantity": line.quantity}
                )
            if line.unit_price < 0:
                raise ValidationError(
                    f"Unit price for {item.medicine_name} cannot be negative",
                    details={"prescription_item_id": item.id}
                )

            updates[item] = {
                "dispensed_quantity": line.quantity,
                "unit_price": Decimal(line.unit_price).quantize(CENTS, rounding=ROUND_HALF_UP),
                "batch_number": line.batch_number,
                "expiry_date": line.expiry_date,
                "is_dispensed": True,
            }

        return updates

    def reject(
        self,
        prescription_id: str,
        actor_id: str,
        reason: str,
        now: Optional[datetime] = None
    ) -> PrescriptionView:
        now = now or datetime.utcnow()

        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")

        with transaction(self.db, "reject"):
            prescription = self._lock(prescription_id)
            if not prescription.is_open:
                raise InvalidStateTransitionError(
                    f"Cannot reject a {prescription.status.value} prescription",
                    details={"prescription_id": prescription_id}
                )
            self.prescription_repo.save_transition(
                prescription,
                PrescriptionStatus.REJECTED,
                [{
                    "actor_id": actor_id,
                    "action": PharmacyAction.REJECTED,
                    "notes": f"Prescription rejected: {reason.strip()}",
                }],
                now=now,
            )

        logger.info(f"Prescription {prescription_id} rejected by {actor_id}")
        return self._to_view(prescription)

    def cancel(
        self,
        prescription_id: str,
        doctor_user_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> PrescriptionView:
        """Withdraw an open prescription; only its prescribing doctor may"""
        now = now or datetime.utcnow()

        doctor = self.doctor_repo.get_by_user_id(doctor_user_id)

        with transaction(self.db, "cancel"):
            prescription = self._lock(prescription_id)
            if doctor is None or doctor.id != prescription.doctor_id:
                raise NotFoundError("Prescription not found", details={"prescription_id": prescription_id})
            if not prescription.is_open:
                raise InvalidStateTransitionError(
                    f"Cannot cancel a {prescription.status.value} prescription",
                    details={"prescription_id": prescription_id}
                )
            notes = "Prescription cancelled by prescriber"
            if reason and reason.strip():
                notes = f"{notes}: {reason.strip()}"
            self.prescription_repo.save_transition(
                prescription,
                PrescriptionStatus.CANCELLED,
                [{"actor_id": doctor_user_id, "action": PharmacyAction.CANCELLED, "notes": notes}],
                now=now,
            )

        logger.info(f"Prescription {prescription_id} cancelled by {doctor_user_id}")
        return self._to_view(prescription)

    def sweep_expired(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> SweepReport:
        """Move open prescriptions with a lapsed token to EXPIRED.

        Each prescription gets its own transaction and the guard is checked
        again under the row lock, so a concurrent scan or reissue wins.
        """
        now = now or datetime.utcnow()
        report = SweepReport()

        candidates = self.prescription_repo.list_open_with_expired_tokens(now, limit)
        self.db.rollback()

        for prescription_id in candidates:
            try:
                with transaction(self.db, "expire"):
                    prescription = self.prescription_repo.get_for_update(prescription_id)
                    token = self.token_repo.get_active_for_prescription(prescription_id, refresh=True)
                    if prescription is None or not prescription.is_open:
                        continue
                    if token is None or not token.is_expired(now):
                        continue
                    self.prescription_repo.save_transition(
                        prescription, PrescriptionStatus.EXPIRED, [], now=now
                    )
                report.expired += 1
                report.expired_ids.append(prescription_id)
            except Exception as exc:
                report.failed += 1
                logger.error(f"Failed to expire prescription {prescription_id}: {exc}")

        if report.expired or report.failed:
            logger.info(f"Expiry sweep: {report.expired} expired, {report.failed} failed")
        return report

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def get_prescription(self, prescription_id: str) -> PrescriptionView:
        return self._to_view(self._get(prescription_id))

    def get_prescription_logs(self, prescription_id: str) -> List[LogEntryView]:
        self._get(prescription_id)
        return [
            LogEntryView.model_validate(entry)
            for entry in self.log_repo.list_for_prescription(prescription_id)
        ]

    def get_dispensing_history(self, prescription_id: str) -> List[LogEntryView]:
        self._get(prescription_id)
        return [
            LogEntryView.model_validate(entry)
            for entry in self.log_repo.list_dispensing_entries(prescription_id)
        ]

    def get_pharmacist_history(self, actor_id: str, page: int = 1, limit: int = 20) -> HistoryPage:
        page = max(page, 1)
        limit = max(min(limit, 100), 1)
        entries, total = self.log_repo.list_for_actor(actor_id, skip=(page - 1) * limit, limit=limit)
        return HistoryPage(
            items=[LogEntryView.model_validate(entry) for entry in entries],
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit) if total else 0,
        )

    def get_qr_scan_status(self, token_hash: str, now: Optional[datetime] = None) -> QRScanStatus:
        now = now or datetime.utcnow()
        token = self.token_repo.get_by_hash(token_hash)
        if not token:
            raise NotFoundError("QR code not found", details={"token_hash": token_hash})
        return QRScanStatus(
            token_hash=token.token_hash,
            is_scanned=token.scan_count > 0,
            scan_count=token.scan_count,
            last_scanned_at=token.last_scanned_at,
            is_used=token.is_used,
            is_expired=token.is_expired(now),
            expires_at=token.expires_at,
        )

    def get_dispensing_summary(self, prescription_id: str) -> DispensingSummary:
        prescription = self._get(prescription_id)
        entry = self.log_repo.get_dispensing_entry(prescription_id)
        if entry is None:
            raise NotFoundError(
                "Prescription has not been dispensed",
                details={"prescription_id": prescription_id}
            )
        return DispensingSummary(
            prescription_id=prescription_id,
            total_amount=entry.total_amount or Decimal("0.00"),
            insurance_coverage=entry.insurance_coverage or Decimal("0.00"),
            patient_payment=entry.patient_payment or Decimal("0.00"),
            dispensed_items=[
                ItemView.model_validate(item) for item in prescription.items if item.is_dispensed
            ],
            dispensing_date=entry.action_timestamp,
            pharmacist_id=entry.actor_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, prescription_id: str) -> Prescription:
        prescription = self.prescription_repo.get_by_id(prescription_id)
        if not prescription:
            raise NotFoundError("Prescription not found", details={"prescription_id": prescription_id})
        return prescription

    def _lock(self, prescription_id: str) -> Prescription:
        prescription = self.prescription_repo.get_for_update(prescription_id)
        if not prescription:
            raise NotFoundError("Prescription not found", details={"prescription_id": prescription_id})
        return prescription

    def _to_view(self, prescription: Prescription) -> PrescriptionView:
        parties = self.prescription_repo.get_parties(prescription)
        token = self.token_repo.get_active_for_prescription(prescription.id)
        return PrescriptionView(
            id=prescription.id,
            prescription_number=prescription.prescription_number,
            status=prescription.status,
            patient_name=parties.patient_name,
            doctor_name=parties.doctor_name,
            diagnosis=prescription.diagnosis,
            doctor_notes=prescription.doctor_notes,
            items=[ItemView.model_validate(item) for item in prescription.items],
            created_at=prescription.created_at,
            updated_at=prescription.updated_at,
            qr_code=TokenView.model_validate(token) if token else None,
        )
