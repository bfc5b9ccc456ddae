"""
Notification Service Layer

Delivers outbox events written by the prescription workflow. Delivery runs
after the workflow transaction has committed, so a failing mail provider
never rolls back a prescription change; failed events are retried on the
next run until ``max_attempts`` and then parked as FAILED.
"""

from typing import Awaitable, Callable, Dict, Any, Optional
from datetime import datetime
import asyncio

from loguru import logger
from pydantic import BaseModel
from sqlalchemy.orm import Session

from medconnect.core.config import settings
from medconnect.infrastructure.notifications import (
    compose_prescription_email,
    qr_attachment,
    send_notification,
)
from medconnect.domain.notifications.models import OutboxEvent, OutboxEventType, OutboxStatus
from medconnect.domain.notifications.repository import OutboxRepository
from medconnect.domain.prescriptions.repository import PrescriptionRepository

Sender = Callable[..., Awaitable[Dict[str, Any]]]


class DeliveryError(Exception):
    pass


class DispatchReport(BaseModel):
    sent: int = 0
    retried: int = 0
    failed: int = 0


class NotificationDispatcher:
    """Drains pending outbox events through the notification adapter"""

    def __init__(self, db: Session, sender: Sender = send_notification):
        self.db = db
        self.sender = sender
        self.outbox_repo = OutboxRepository(db)
        self.prescription_repo = PrescriptionRepository(db)

    def dispatch_pending(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> DispatchReport:
        now = now or datetime.utcnow()
        report = DispatchReport()

        events = self.outbox_repo.list_pending(limit or settings.NOTIFICATION_BATCH_SIZE)
        for event in events:
            event.attempts += 1
            try:
                self._deliver(event)
            except Exception as exc:
                event.last_error = str(exc)[:1000]
                if event.attempts >= event.max_attempts:
                    event.status = OutboxStatus.FAILED
                    event.processed_at = now
                    report.failed += 1
                    logger.error(
                        f"Notification {event.id} for {event.aggregate_id} failed permanently "
                        f"after {event.attempts} attempts: {exc}"
                    )
                else:
                    report.retried += 1
                    logger.warning(
                        f"Notification {event.id} attempt {event.attempts}/{event.max_attempts} failed: {exc}"
                    )
            else:
                event.status = OutboxStatus.SENT
                event.processed_at = now
                event.last_error = None
                report.sent += 1
                logger.info(f"Notification {event.id} delivered for {event.aggregate_id}")

        # Row locks from list_pending are held until here
        self.db.commit()
        return report

    def _deliver(self, event: OutboxEvent) -> None:
        if event.event_type != OutboxEventType.PRESCRIPTION_ISSUED:
            raise DeliveryError(f"Unsupported event type {event.event_type}")

        payload = event.payload
        prescription = self.prescription_repo.get_by_id(payload["prescriptionId"])
        if prescription is None:
            raise DeliveryError(f"Prescription {payload['prescriptionId']} no longer exists")

        parties = self.prescription_repo.get_parties(prescription)
        if not parties.patient_email:
            raise DeliveryError(f"No email address for patient of {prescription.prescription_number}")

        message = compose_prescription_email(
            patient_name=parties.patient_name,
            doctor_name=parties.doctor_name,
            prescription_number=prescription.prescription_number,
            expires_at=datetime.fromisoformat(payload["expiresAt"]),
        )
        result = asyncio.run(
            self.sender(
                parties.patient_email,
                message["subject"],
                message["body"],
                channel="email",
                attachments=[qr_attachment(prescription.prescription_number, payload["renderedCode"])],
            )
        )
        if result.get("status") != "sent":
            raise DeliveryError(result.get("error") or "notification provider refused the message")
