"""
Prescription Repository Layer

Data access for prescriptions, their QR tokens and the pharmacy audit log.
Nothing here commits: callers wrap a unit of work in
``medconnect.infrastructure.database.transaction``.
"""

from typing import Dict, List, Optional, Sequence, Tuple
from datetime import date, datetime, time, timedelta

from sqlalchemy import select, func
from sqlalchemy.orm import Session, aliased, selectinload

from medconnect.core.exceptions import InvalidStateTransitionError
from medconnect.domain.auth.models import User
from medconnect.domain.doctors.models import Doctor
from medconnect.domain.patients.models import Patient
from medconnect.domain.prescriptions.models import (
    Prescription, PrescriptionItem, PrescriptionStatus, IssuedToken,
    PharmacyLog, PharmacyAction, OPEN_STATUSES, can_transition
)
from medconnect.domain.prescriptions.schemas import PartyNames


class PharmacyLogRepository:
    """Append-only access to the pharmacy audit log"""

    def __init__(self, db: Session):
        self.db = db

    def next_sequence(self, prescription_id: str) -> int:
        result = self.db.execute(
            select(func.coalesce(func.max(PharmacyLog.sequence), 0))
            .where(PharmacyLog.prescription_id == prescription_id)
        )
        return result.scalar_one() + 1

    def append(
        self,
        prescription_id: str,
        actor_id: str,
        action: PharmacyAction,
        notes: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        **financials
    ) -> PharmacyLog:
        """Write one entry and flush it so the next sequence number sees it"""
        entry = PharmacyLog(
            prescription_id=prescription_id,
            actor_id=actor_id,
            action=action,
            notes=notes,
            sequence=self.next_sequence(prescription_id),
            action_timestamp=timestamp or datetime.utcnow(),
            **financials
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_for_prescription(self, prescription_id: str) -> List[PharmacyLog]:
        result = self.db.execute(
            select(PharmacyLog)
            .where(PharmacyLog.prescription_id == prescription_id)
            .order_by(PharmacyLog.action_timestamp, PharmacyLog.sequence)
        )
        return list(result.scalars().all())

    def list_for_actor(
        self,
        actor_id: str,
        skip: int = 0,
        limit: int = 20,
        action: Optional[PharmacyAction] = None
    ) -> Tuple[List[PharmacyLog], int]:
        """Newest first, with the unpaginated total"""
        query = select(PharmacyLog).where(PharmacyLog.actor_id == actor_id)
        if action:
            query = query.where(PharmacyLog.action == action)

        total = self.db.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar_one()
        result = self.db.execute(
            query.order_by(PharmacyLog.action_timestamp.desc(), PharmacyLog.sequence.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    def get_dispensing_entry(self, prescription_id: str) -> Optional[PharmacyLog]:
        result = self.db.execute(
            select(PharmacyLog)
            .where(
                PharmacyLog.prescription_id == prescription_id,
                PharmacyLog.action == PharmacyAction.DISPENSED
            )
            .order_by(PharmacyLog.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def list_dispensing_entries(self, prescription_id: str) -> List[PharmacyLog]:
        """DISPENSED and FULFILLED entries, newest first"""
        result = self.db.execute(
            select(PharmacyLog)
            .where(
                PharmacyLog.prescription_id == prescription_id,
                PharmacyLog.action.in_([PharmacyAction.DISPENSED, PharmacyAction.FULFILLED])
            )
            .order_by(PharmacyLog.action_timestamp.desc(), PharmacyLog.sequence.desc())
        )
        return list(result.scalars().all())


class TokenRepository:
    """Storage of issued QR tokens; also the lookup store for TokenCodec"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_hash(self, token_hash: str) -> Optional[IssuedToken]:
        result = self.db.execute(
            select(IssuedToken).where(IssuedToken.token_hash == token_hash)
        )
        return result.scalar_one_or_none()

    def get_by_hash_for_update(self, token_hash: str) -> Optional[IssuedToken]:
        result = self.db.execute(
            select(IssuedToken)
            .where(IssuedToken.token_hash == token_hash)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def get_active_for_prescription(self, prescription_id: str, refresh: bool = False) -> Optional[IssuedToken]:
        query = select(IssuedToken).where(IssuedToken.active_prescription_id == prescription_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        return self.db.execute(query).scalar_one_or_none()

    def upsert_token(
        self,
        prescription_id: str,
        token_hash: str,
        payload: str,
        expires_at: datetime
    ) -> IssuedToken:
        """Make a new token the active one, keeping the old row for audit.

        A concurrent issuer inserting for the same prescription trips the
        unique constraint on ``active_prescription_id``.
        """
        current = self.get_active_for_prescription(prescription_id)
        if current is not None:
            current.active_prescription_id = None
            self.db.flush()

        token = IssuedToken(
            prescription_id=prescription_id,
            active_prescription_id=prescription_id,
            token_hash=token_hash,
            encrypted_payload=payload,
            expires_at=expires_at,
            is_used=False,
            scan_count=0,
        )
        self.db.add(token)
        self.db.flush()
        return token


class PrescriptionRepository:
    """Repository for prescription data access operations"""

    def __init__(self, db: Session):
        self.db = db
        self.logs = PharmacyLogRepository(db)

    def add(self, prescription: Prescription) -> Prescription:
        self.db.add(prescription)
        self.db.flush()
        return prescription

    def get_by_id(self, prescription_id: str) -> Optional[Prescription]:
        result = self.db.execute(
            select(Prescription)
            .options(selectinload(Prescription.items))
            .where(Prescription.id == prescription_id)
        )
        return result.scalar_one_or_none()

    def get_for_update(self, prescription_id: str) -> Optional[Prescription]:
        """Lock the row and reload it, discarding whatever this session cached"""
        result = self.db.execute(
            select(Prescription)
            .where(Prescription.id == prescription_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def get_latest_open_for_patient(self, patient_id: str) -> Optional[Prescription]:
        result = self.db.execute(
            select(Prescription)
            .where(
                Prescription.patient_id == patient_id,
                Prescription.status.in_(OPEN_STATUSES)
            )
            .order_by(Prescription.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def list_open_with_expired_tokens(self, now: datetime, limit: Optional[int] = None) -> List[str]:
        """Ids of open prescriptions whose active token has run out"""
        query = (
            select(Prescription.id)
            .join(IssuedToken, IssuedToken.active_prescription_id == Prescription.id)
            .where(
                Prescription.status.in_(OPEN_STATUSES),
                IssuedToken.expires_at <= now
            )
            .order_by(IssuedToken.expires_at)
        )
        if limit:
            query = query.limit(limit)
        return list(self.db.execute(query).scalars().all())

    def count_created_on(self, day: date) -> int:
        start = datetime.combine(day, time.min)
        result = self.db.execute(
            select(func.count(Prescription.id)).where(
                Prescription.created_at >= start,
                Prescription.created_at < start + timedelta(days=1)
            )
        )
        return result.scalar_one()

    def get_parties(self, prescription: Prescription) -> PartyNames:
        """Display names and contact email, joined at read time"""
        patient_user = aliased(User)
        doctor_user = aliased(User)
        row = self.db.execute(
            select(patient_user.full_name, patient_user.email, doctor_user.full_name)
            .select_from(Prescription)
            .outerjoin(Patient, Patient.id == Prescription.patient_id)
            .outerjoin(patient_user, patient_user.id == Patient.user_id)
            .outerjoin(Doctor, Doctor.id == Prescription.doctor_id)
            .outerjoin(doctor_user, doctor_user.id == Doctor.user_id)
            .where(Prescription.id == prescription.id)
        ).first()
        if row is None:
            return PartyNames()
        return PartyNames(
            patient_name=row[0] or "",
            patient_email=row[1],
            doctor_name=row[2] or "",
        )

    def save_transition(
        self,
        prescription: Prescription,
        new_status: Optional[PrescriptionStatus],
        log_entries: Sequence[Dict],
        item_updates: Optional[Dict[PrescriptionItem, Dict]] = None,
        now: Optional[datetime] = None
    ) -> Prescription:
        """Apply a status change, item updates and audit entries together.

        ``new_status=None`` records entries without moving the status. The
        caller's transaction decides whether any of it is committed.
        """
        now = now or datetime.utcnow()

        if new_status is not None:
            if not can_transition(prescription.status, new_status):
                raise InvalidStateTransitionError(
                    f"Cannot move prescription from {prescription.status.value} to {new_status.value}",
                    details={"prescription_id": prescription.id}
                )
            prescription.status = new_status
            prescription.updated_at = now

        for item, changes in (item_updates or {}).items():
            for field, value in changes.items():
                setattr(item, field, value)

        self.db.flush()

        for entry in log_entries:
            self.logs.append(prescription.id, timestamp=now, **entry)

        return prescription
