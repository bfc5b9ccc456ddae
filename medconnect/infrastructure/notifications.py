import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


async def send_notification(
    recipient: str,
    subject: str,
    body: str,
    channel: str = "email",
    attachments: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Lightweight notification sender used by services/tasks.

    This is a placeholder adapter that should be replaced with real
    provider integrations (SMTP, Twilio, push, etc.) as needed.
    """
    if not recipient:
        return {"status": "error", "error": "recipient is required", "channel": channel}

    logger.info(
        f"Sending {channel} notification to {recipient}: {subject} "
        f"({len(attachments or [])} attachment(s))"
    )
    return {"status": "sent", "recipient": recipient, "channel": channel}


def qr_attachment(prescription_number: str, rendered_code: str) -> Dict[str, Any]:
    """Turn a PNG data URL into an inline attachment"""
    _, _, content = rendered_code.partition(",")
    return {
        "filename": f"prescription-{prescription_number}-qr.png",
        "content": content,
        "encoding": "base64",
        "cid": "qr-code",
    }


def compose_prescription_email(
    patient_name: str,
    doctor_name: str,
    prescription_number: str,
    expires_at: datetime,
) -> Dict[str, str]:
    subject = f"Your Prescription - {prescription_number}"
    body = (
        f"Hello {patient_name},\n\n"
        f"Dr. {doctor_name} has issued prescription {prescription_number}.\n"
        "Show the attached QR code at any participating pharmacy to collect your medicines.\n"
        f"The code is valid until {expires_at:%Y-%m-%d %H:%M} UTC.\n\n"
        "MedConnect Prescriptions"
    )
    return {"subject": subject, "body": body}
