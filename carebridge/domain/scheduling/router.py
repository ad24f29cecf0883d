"""Scheduling router - FastAPI endpoints for appointments and doctor slots"""

import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_roles
from ...database import get_db
from ...models import Appointment, Doctor, User
from ...rate_limiter import booking_rate_limit
from ...services.notification_service import NotificationDispatcher, get_notification_dispatcher
from ...shared.timeutils import get_clock, split
from .schemas import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentStatusUpdate,
    AvailabilityResponse,
    DoctorProfile,
    DoctorResponse,
    SlotDeclaration,
    WeeklyHoursDeclaration,
)
from .service import AppointmentService, DoctorProfileService, DoctorScheduleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])
doctors_router = APIRouter(prefix="/doctors", tags=["Doctors"])


def get_appointment_service(
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    clock: Callable = Depends(get_clock),
) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db, notifier, clock)


def get_schedule_service(
    db: Session = Depends(get_db), clock: Callable = Depends(get_clock)
) -> DoctorScheduleService:
    return DoctorScheduleService(db, clock)


def get_profile_service(db: Session = Depends(get_db)) -> DoctorProfileService:
    return DoctorProfileService(db)


def doctor_response(d: Doctor) -> DoctorResponse:
    return DoctorResponse(
        id=d.id,
        userId=d.user_id,
        fullName=d.user.full_name if d.user else None,
        specialty=d.specialty,
        license=d.license,
        experienceYears=d.experience_years,
        isVolunteer=d.is_volunteer,
        telehealthEnabled=d.telehealth_enabled,
        volunteerMinutes=d.volunteer_minutes,
        totalPatients=d.total_patients,
    )


def appointment_response(a: Appointment) -> AppointmentResponse:
    slot_date, slot_time = split(a.scheduled_time)
    return AppointmentResponse(
        id=a.id,
        patientId=a.patient_id,
        doctorId=a.doctor_id,
        appointmentType=a.appointment_type,
        scheduledTime=a.scheduled_time,
        date=slot_date,
        time=slot_time,
        status=a.status,
        patientNotes=a.patient_notes,
        doctorNotes=a.doctor_notes,
        prescriptions=a.prescriptions or [],
        testsOrdered=a.tests_ordered or [],
        examStartTime=a.exam_start_time,
        examEndTime=a.exam_end_time,
        createdAt=a.created_at,
    )


# ============================================================================
# APPOINTMENTS
# ============================================================================


@router.post("", status_code=201)
async def create_appointment(
    data: AppointmentCreate,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
    _: None = Depends(booking_rate_limit),
):
    """Book an open slot with a doctor"""
    appointment = service.create_appointment(data, current_user)
    return {
        "success": True,
        "message": "Appointment booked successfully",
        "appointment": appointment_response(appointment),
    }


@router.get("")
async def list_appointments(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Patients see their own appointments, doctors theirs, admins all"""
    appointments, pagination = service.list_appointments(current_user, status, page, limit)
    return {
        "success": True,
        "message": "Appointments retrieved",
        "appointments": [appointment_response(a) for a in appointments],
        "pagination": pagination,
    }


@router.get("/availability/{doctor_id}", response_model=AvailabilityResponse)
async def get_availability(
    doctor_id: int,
    date: str = Query(..., description="YYYY-MM-DD"),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Open and booked times for a doctor on one date"""
    return AvailabilityResponse(**service.availability(doctor_id, date))


@router.get("/{appointment_id}")
async def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.get_appointment(appointment_id, current_user)
    return {
        "success": True,
        "message": "Appointment retrieved",
        "appointment": appointment_response(appointment),
    }


@router.patch("/{appointment_id}/status")
async def update_appointment_status(
    appointment_id: int,
    data: AppointmentStatusUpdate,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Move an appointment through its lifecycle"""
    appointment = service.update_status(appointment_id, data, current_user)
    return {
        "success": True,
        "message": f"Appointment status updated to {appointment.status}",
        "appointment": appointment_response(appointment),
    }


@router.delete("/{appointment_id}")
async def cancel_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Cancel an appointment and release its slot"""
    appointment = service.cancel_appointment(appointment_id, current_user)
    return {
        "success": True,
        "message": "Appointment cancelled",
        "appointment": appointment_response(appointment),
    }


# ============================================================================
# DOCTOR PROFILES
# ============================================================================


@doctors_router.get("")
async def list_doctors(
    specialty: Optional[str] = Query(None),
    isVolunteer: Optional[bool] = Query(None),
    telehealthEnabled: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    service: DoctorProfileService = Depends(get_profile_service),
):
    """Public doctor directory, most experienced first"""
    doctors, pagination = service.list_doctors(specialty, isVolunteer, telehealthEnabled, page, limit)
    return {
        "success": True,
        "message": "Doctors retrieved",
        "doctors": [doctor_response(d) for d in doctors],
        "pagination": pagination,
    }


@doctors_router.get("/me")
async def get_my_profile(
    current_user: User = Depends(require_roles("doctor")),
    service: DoctorProfileService = Depends(get_profile_service),
):
    doctor = service.get_profile(current_user)
    return {"success": True, "message": "Profile retrieved", "doctor": doctor_response(doctor)}


@doctors_router.put("/me")
async def save_my_profile(
    data: DoctorProfile,
    current_user: User = Depends(require_roles("doctor")),
    service: DoctorProfileService = Depends(get_profile_service),
):
    """Create or update the calling doctor's profile"""
    doctor = service.save_profile(data, current_user)
    return {"success": True, "message": "Profile saved", "doctor": doctor_response(doctor)}


# ============================================================================
# DOCTOR SLOTS
# ============================================================================


@doctors_router.get("/{doctor_id}/slots")
async def get_doctor_slots(
    doctor_id: int,
    service: DoctorScheduleService = Depends(get_schedule_service),
):
    """Active declared slot entries for a doctor"""
    return {
        "success": True,
        "message": "Slots retrieved",
        "slots": service.list_slots(doctor_id),
    }


@doctors_router.put("/me/slots")
async def declare_my_slots(
    data: SlotDeclaration,
    current_user: User = Depends(require_roles("doctor")),
    service: DoctorScheduleService = Depends(get_schedule_service),
):
    """Replace the calling doctor's declared slot entries"""
    slots = service.declare_slots(data, current_user)
    return {"success": True, "message": "Availability updated", "slots": slots}


@doctors_router.put("/me/weekly-hours")
async def set_my_weekly_hours(
    data: WeeklyHoursDeclaration,
    current_user: User = Depends(require_roles("doctor")),
    service: DoctorScheduleService = Depends(get_schedule_service),
):
    """Replace the calling doctor's recurring weekly hours"""
    hours = service.set_weekly_hours(data, current_user)
    return {"success": True, "message": "Weekly hours updated", "hours": hours}
