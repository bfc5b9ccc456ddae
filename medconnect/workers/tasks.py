"""Periodic jobs of the prescription workflow"""

from typing import Dict, Any

from loguru import logger

from medconnect.workers.celery_app import celery_app
from medconnect.infrastructure.database import SessionLocal
from medconnect.domain.notifications.service import NotificationDispatcher
from medconnect.domain.prescriptions.service import PrescriptionLifecycleService


@celery_app.task(name="medconnect.workers.tasks.sweep_expired_prescriptions")
def sweep_expired_prescriptions() -> Dict[str, Any]:
    """Expire open prescriptions whose QR code has run out.

    Anything left behind is picked up by the next scheduled run.
    """
    db = SessionLocal()
    try:
        report = PrescriptionLifecycleService(db).sweep_expired()
        logger.info(f"Expiry sweep finished: {report.expired} expired, {report.failed} failed")
        return {"status": "success", **report.model_dump()}
    except Exception as exc:
        db.rollback()
        logger.error(f"Expiry sweep aborted: {exc}")
        return {"status": "error", "error": str(exc)}
    finally:
        db.close()


@celery_app.task(name="medconnect.workers.tasks.dispatch_prescription_notifications")
def dispatch_prescription_notifications() -> Dict[str, Any]:
    """Deliver pending prescription emails from the outbox"""
    db = SessionLocal()
    try:
        report = NotificationDispatcher(db).dispatch_pending()
        if report.sent or report.retried or report.failed:
            logger.info(
                f"Notification dispatch: {report.sent} sent, {report.retried} to retry, {report.failed} failed"
            )
        return {"status": "success", **report.model_dump()}
    except Exception as exc:
        db.rollback()
        logger.error(f"Notification dispatch aborted: {exc}")
        return {"status": "error", "error": str(exc)}
    finally:
        db.close()
