"""Funding domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from ...shared.validators import validate_phone


class DonationCreate(BaseModel):
    assistanceId: int
    amount: int
    isAnonymous: bool = False
    donorName: Optional[str] = Field(None, max_length=255)
    donorEmail: Optional[EmailStr] = None
    donorPhone: Optional[str] = None
    message: Optional[str] = Field(None, max_length=1000)

    @field_validator("donorPhone")
    @classmethod
    def check_phone(cls, v):
        return validate_phone(v)


class GatewayCallback(BaseModel):
    """Confirmation event delivered by the payment gateway"""

    assistanceId: int
    amount: int
    gatewayRef: str = Field(..., min_length=1, max_length=100)
    status: str


class WithdrawalCreate(BaseModel):
    amount: int
    note: Optional[str] = Field(None, max_length=1000)


class DonationResponse(BaseModel):
    id: int
    assistanceId: int
    amount: int
    paymentMethod: str
    status: str
    isAnonymous: bool
    donorName: Optional[str] = None
    donorEmail: Optional[str] = None
    donorPhone: Optional[str] = None
    message: Optional[str] = None
    gatewayRef: str
    confirmedAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None
