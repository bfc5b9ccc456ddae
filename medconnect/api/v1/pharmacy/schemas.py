from pydantic import BaseModel, Field
from typing import List, Optional

from medconnect.domain.prescriptions.schemas import DispenseLine


class ScanRequest(BaseModel):
    token_hash: str = Field(..., min_length=1)


class LookupRequest(BaseModel):
    reference_number: str = Field(..., min_length=1)


class ValidateRequest(BaseModel):
    notes: Optional[str] = None


class RejectRequest(BaseModel):
    reason: str


class DispenseBody(BaseModel):
    items: List[DispenseLine]
    notes: Optional[str] = None
    insurance_provider: Optional[str] = None
    insurance_number: Optional[str] = None
