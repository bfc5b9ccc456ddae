# Prescription lifecycle domain module
from medconnect.domain.prescriptions.models import (
    Prescription,
    PrescriptionStatus,
    PrescriptionItem,
    IssuedToken,
    PharmacyLog,
    PharmacyAction,
    OPEN_STATUSES,
    TERMINAL_STATUSES,
)
from medconnect.domain.prescriptions.service import PrescriptionLifecycleService

__all__ = [
    "Prescription",
    "PrescriptionStatus",
    "PrescriptionItem",
    "IssuedToken",
    "PharmacyLog",
    "PharmacyAction",
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
    "PrescriptionLifecycleService",
]
