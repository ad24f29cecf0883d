import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import require_roles
from ..database import get_db
from ..exceptions import NotFound
from ..models import Patient, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/patients", tags=["Patients"])


class PatientProfile(BaseModel):
    bloodType: Optional[Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]] = None
    economicStatus: Literal["very_poor", "poor", "middle", "good"] = "poor"
    emergencyContact: Optional[str] = Field(None, max_length=255)
    allergies: list[str] = []


def profile_response(patient: Patient) -> dict:
    return {
        "id": patient.id,
        "userId": patient.user_id,
        "bloodType": patient.blood_type,
        "economicStatus": patient.economic_status,
        "emergencyContact": patient.emergency_contact,
        "allergies": patient.allergies or [],
        "isVerified": patient.is_verified,
    }


@router.post("/me")
async def upsert_my_profile(
    data: PatientProfile,
    current_user: User = Depends(require_roles("patient")),
    db: Session = Depends(get_db),
):
    """Create or update the calling patient's profile"""
    patient = db.query(Patient).filter(Patient.user_id == current_user.id).first()
    if patient is None:
        patient = Patient(user_id=current_user.id)
        db.add(patient)
        logger.info(f"🆕 Creating patient profile for user {current_user.id}")

    patient.blood_type = data.bloodType
    patient.economic_status = data.economicStatus
    patient.emergency_contact = data.emergencyContact
    patient.allergies = data.allergies
    db.commit()
    db.refresh(patient)
    return {"success": True, "message": "Profile saved", "data": profile_response(patient)}


@router.get("/me")
async def get_my_profile(
    current_user: User = Depends(require_roles("patient")),
    db: Session = Depends(get_db),
):
    patient = db.query(Patient).filter(Patient.user_id == current_user.id).first()
    if not patient:
        raise NotFound("Patient profile not found")
    return {"success": True, "message": "Profile retrieved", "data": profile_response(patient)}
