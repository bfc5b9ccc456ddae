"""
Pharmacy API Routes

Endpoints pharmacists use to scan or look up prescriptions, validate,
dispense or reject them, and read the audit trail.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import List, Dict, Any

from medconnect.infrastructure.database import get_db
from medconnect.core.permissions import require_roles, Roles
from medconnect.domain.prescriptions.service import PrescriptionLifecycleService
from medconnect.domain.prescriptions.schemas import (
    DispenseRequest, DispenseResult, DispensingSummary, HistoryPage,
    LogEntryView, PrescriptionView, QRScanStatus, ScanResult
)
from medconnect.api.v1.pharmacy.schemas import (
    ScanRequest, LookupRequest, ValidateRequest, RejectRequest, DispenseBody
)

router = APIRouter()

pharmacist_only = require_roles([Roles.PHARMACIST])


@router.post("/scan", response_model=ScanResult)
async def scan_qr_code(
    body: ScanRequest,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(pharmacist_only)
):
    """Verify a scanned QR code"""
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(service.scan, body.token_hash, current_user["sub"])


@router.post("/lookup", response_model=ScanResult)
async def lookup_by_reference(
    body: LookupRequest,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(pharmacist_only)
):
    """Find a patient's open prescription by reference number"""
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(service.lookup_by_reference, body.reference_number, current_user["sub"])


@router.post("/prescriptions/{prescription_id}/validate", response_model=PrescriptionView)
async def validate_prescription(
    prescription_id: str,
    body: ValidateRequest,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(pharmacist_only)
):
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(service.validate, prescription_id, current_user["sub"], body.notes)


@router.post("/prescriptions/{prescription_id}/dispense", response_model=DispenseResult)
async def dispense_prescription(
    prescription_id: str,
    body: DispenseBody,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(pharmacist_only)
):
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(
        service.dispense,
        prescription_id,
        current_user["sub"],
        DispenseRequest(**body.model_dump())
    )


@router.post("/prescriptions/{prescription_id}/reject", response_model=PrescriptionView)
async def reject_prescription(
    prescription_id: str,
    body: RejectRequest,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(pharmacist_only)
):
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(service.reject, prescription_id, current_user["sub"], body.reason)


@router.get("/prescriptions/{prescription_id}/logs", response_model=List[LogEntryView])
async def get_prescription_logs(
    prescription_id: str,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(pharmacist_only)
):
    """Audit trail, oldest first"""
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(service.get_prescription_logs, prescription_id)


@router.get("/prescriptions/{prescription_id}/dispensing-history", response_model=List[LogEntryView])
async def get_dispensing_history(
    prescription_id: str,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(pharmacist_only)
):
    """DISPENSED and FULFILLED entries, newest first"""
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(service.get_dispensing_history, prescription_id)


@router.get("/prescriptions/{prescription_id}/dispensing-summary", response_model=DispensingSummary)
async def get_dispensing_summary(
    prescription_id: str,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(pharmacist_only)
):
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(service.get_dispensing_summary, prescription_id)


@router.get("/history", response_model=HistoryPage)
async def get_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(pharmacist_only)
):
    """The calling pharmacist's own actions, newest first"""
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(
        service.get_pharmacist_history, current_user["sub"], page=page, limit=limit
    )


@router.get("/qr-codes/{token_hash}/status", response_model=QRScanStatus)
async def get_qr_scan_status(
    token_hash: str,
    db: Session = Depends(get_db),
    current_user: Dict[str, Any] = Depends(pharmacist_only)
):
    service = PrescriptionLifecycleService(db)
    return await run_in_threadpool(service.get_qr_scan_status, token_hash)
