"""Assistance domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ...config import MIN_REQUESTED_AMOUNT
from ...shared.timeutils import to_local
from ...shared.validators import validate_phone


class AssistanceCreate(BaseModel):
    """Schema for a patient's funding request"""

    requestType: Literal[
        "medical_treatment",
        "medication",
        "equipment",
        "surgery",
        "emergency",
        "rehabilitation",
        "other",
    ]
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    medicalCondition: str = Field(..., min_length=1)
    requestedAmount: int
    urgency: Literal["low", "medium", "high", "critical"]
    supportStartDate: datetime
    supportEndDate: datetime
    contactPhone: str

    @field_validator("requestedAmount")
    @classmethod
    def check_amount(cls, v):
        if v < MIN_REQUESTED_AMOUNT:
            raise ValueError(f"requestedAmount must be at least {MIN_REQUESTED_AMOUNT}")
        return v

    @field_validator("supportStartDate", "supportEndDate")
    @classmethod
    def to_clinic_time(cls, v):
        return to_local(v)

    @field_validator("contactPhone")
    @classmethod
    def check_phone(cls, v):
        return validate_phone(v)

    @model_validator(mode="after")
    def check_support_window(self):
        if self.supportStartDate > self.supportEndDate:
            raise ValueError("supportStartDate must not be after supportEndDate")
        return self


class AssistanceStatusUpdate(BaseModel):
    # Free-form so unknown values fail as InvalidStatus rather than a schema error
    status: str


class WithdrawalResponse(BaseModel):
    id: int
    amount: int
    adminId: Optional[int] = None
    note: Optional[str] = None
    createdAt: Optional[datetime] = None


class AttachmentResponse(BaseModel):
    id: int
    filename: str
    path: str
    size: int
    # Short-lived download link, when the storage backend issues one
    url: Optional[str] = None


class AssistanceResponse(BaseModel):
    id: int
    patientId: int
    requestType: str
    title: str
    description: str
    medicalCondition: str
    requestedAmount: int
    raisedAmount: int
    withdrawnAmount: int
    remainingAmount: int
    urgency: str
    supportStartDate: datetime
    supportEndDate: datetime
    contactPhone: str
    status: str
    approvedBy: Optional[int] = None
    withdrawals: list[WithdrawalResponse] = []
    attachments: list[AttachmentResponse] = []
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
