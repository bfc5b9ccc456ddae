"""
Prescription API Routes

Endpoints doctors use to write prescriptions, (re)issue their QR codes and
withdraw them.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import Dict, Any

from medconnect.infrastructure.database import get_db
from medconnect.core.permissions import require_roles, Roles
from medconnect.domain.doctors.repository import DoctorRepository
from medconnect.domain.prescriptions.service import PrescriptionLifecycleService
from medconnect.domain.prescriptions.schemas import CreateResult, IssueResult, PrescriptionView
from medconnect.api.v1.prescriptions.schemas import PrescriptionCreate, PrescriptionCancel

router = APIRouter()

doctor_only = require_roles([Roles.DOCTOR])


@router.post("", response_model=CreateResult, status_code=status.HTTP_201_CREATED)
async def create_prescription(
    body: PrescriptionCreate,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(doctor_only)
):
    """Write a prescription and issue its QR code"""
    doctor = await run_in_threadpool(DoctorRepository(db).get_by_user_id, current_user["sub"])
    if not doctor:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Doctor profile not found for this user"
        )

    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(
        service.create_prescription,
        patient_id=body.patient_id,
        doctor_id=doctor.id,
        items=body.items,
        diagnosis=body.diagnosis,
        doctor_notes=body.doctor_notes,
    )


@router.post("/{prescription_id}/qr-code", response_model=IssueResult)
async def issue_qr_code(
    prescription_id: str,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(doctor_only)
):
    """Return the current QR code, regenerating it once expired"""
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(service.issue_token, prescription_id)


@router.post("/{prescription_id}/qr-code/email", response_model=IssueResult, status_code=status.HTTP_202_ACCEPTED)
async def email_qr_code(
    prescription_id: str,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(doctor_only)
):
    """Queue the QR code email to the patient again"""
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(service.resend_token_email, prescription_id)


@router.post("/{prescription_id}/cancel", response_model=PrescriptionView)
async def cancel_prescription(
    prescription_id: str,
    body: PrescriptionCancel,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(doctor_only)
):
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(service.cancel, prescription_id, current_user["sub"], body.reason)
