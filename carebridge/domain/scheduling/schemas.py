"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ...shared.timeutils import to_local
from ...shared.validators import validate_date, validate_time


class AppointmentCreate(BaseModel):
    """Schema for booking an appointment"""

    doctorId: int
    date: str
    time: str
    appointmentType: Literal["consultation", "follow_up", "emergency", "telehealth"]
    patientNotes: Optional[str] = Field(None, max_length=2000)

    @field_validator("date")
    @classmethod
    def check_date(cls, v):
        return validate_date(v)

    @field_validator("time")
    @classmethod
    def check_time(cls, v):
        return validate_time(v)


class Prescription(BaseModel):
    medication: str
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    instructions: Optional[str] = None


class TestOrder(BaseModel):
    testName: str
    reason: Optional[str] = None
    priority: Literal["low", "medium", "high", "urgent"] = "medium"


class AppointmentStatusUpdate(BaseModel):
    """Status change plus the clinical fields a doctor may attach to it"""

    # Free-form so unknown values reach the state machine and fail as InvalidStatus
    status: str
    doctorNotes: Optional[str] = None
    prescriptions: Optional[list[Prescription]] = None
    testsOrdered: Optional[list[TestOrder]] = None
    # Actual exam window reported by the doctor when completing
    examStartTime: Optional[datetime] = None
    examEndTime: Optional[datetime] = None

    @field_validator("examStartTime", "examEndTime")
    @classmethod
    def to_clinic_time(cls, v):
        return to_local(v) if v is not None else v

    @model_validator(mode="after")
    def check_exam_window(self):
        if self.examStartTime and self.examEndTime and self.examEndTime < self.examStartTime:
            raise ValueError("examEndTime must not be before examStartTime")
        return self


class AppointmentResponse(BaseModel):
    id: int
    patientId: int
    doctorId: int
    appointmentType: str
    scheduledTime: datetime
    date: str
    time: str
    status: str
    patientNotes: Optional[str] = None
    doctorNotes: Optional[str] = None
    prescriptions: list = []
    testsOrdered: list = []
    examStartTime: Optional[datetime] = None
    examEndTime: Optional[datetime] = None
    createdAt: Optional[datetime] = None


class SlotEntry(BaseModel):
    date: str
    times: list[str]
    isActive: bool = True

    @field_validator("date")
    @classmethod
    def check_date(cls, v):
        return validate_date(v)

    @field_validator("times")
    @classmethod
    def check_times(cls, v):
        # Duplicates collapse; order is always ascending
        return sorted({validate_time(t) for t in v})


class SlotDeclaration(BaseModel):
    slots: list[SlotEntry]

    @model_validator(mode="after")
    def check_unique_dates(self):
        dates = [slot.date for slot in self.slots]
        if len(dates) != len(set(dates)):
            raise ValueError("Each date may appear only once")
        return self


class WeeklyHoursEntry(BaseModel):
    dayOfWeek: int = Field(..., ge=0, le=6, description="0=Monday .. 6=Sunday")
    startTime: str
    endTime: str
    isActive: bool = True

    @field_validator("startTime", "endTime")
    @classmethod
    def check_time(cls, v):
        return validate_time(v)

    @model_validator(mode="after")
    def check_range(self):
        if self.startTime >= self.endTime:
            raise ValueError("startTime must be before endTime")
        return self


class WeeklyHoursDeclaration(BaseModel):
    hours: list[WeeklyHoursEntry]

    @model_validator(mode="after")
    def check_unique_days(self):
        days = [entry.dayOfWeek for entry in self.hours]
        if len(days) != len(set(days)):
            raise ValueError("Each day of the week may appear only once")
        return self


class AvailabilityResponse(BaseModel):
    success: bool = True
    date: str
    availableTimes: list[str]
    bookedTimes: list[str]
    source: Literal["declared", "weekly", "none"]


class DoctorProfile(BaseModel):
    """Schema for creating or updating the calling doctor's profile"""

    specialty: str = Field(..., min_length=2, max_length=255)
    license: str = Field(..., min_length=3, max_length=100)
    experienceYears: int = Field(0, ge=0, le=80)
    isVolunteer: bool = False
    telehealthEnabled: bool = True

    @field_validator("specialty", "license")
    @classmethod
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Value cannot be blank")
        return v


class DoctorResponse(BaseModel):
    id: int
    userId: int
    fullName: Optional[str] = None
    specialty: str
    license: str
    experienceYears: int
    isVolunteer: bool
    telehealthEnabled: bool
    volunteerMinutes: int
    totalPatients: int
