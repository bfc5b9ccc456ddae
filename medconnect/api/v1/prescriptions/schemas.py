from pydantic import BaseModel, Field
from typing import List, Optional

from medconnect.domain.prescriptions.schemas import ItemInput


class PrescriptionCreate(BaseModel):
    patient_id: str
    items: List[ItemInput] = Field(default_factory=list)
    diagnosis: Optional[str] = None
    doctor_notes: Optional[str] = None


class PrescriptionCancel(BaseModel):
    reason: Optional[str] = None
