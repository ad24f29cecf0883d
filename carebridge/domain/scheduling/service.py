"""Scheduling service - Appointment lifecycle and doctor availability"""

import logging
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...exceptions import (
    Expired,
    Forbidden,
    IllegalTransition,
    InvalidStatus,
    NotFound,
    ValidationError,
)
from ...models import ADMIN_ROLES, APPOINTMENT_STATUSES, Appointment, Doctor, User
from ...services.notification_service import NotificationDispatcher
from ...shared.pagination import paginate
from ...shared.timeutils import combine, local_now, split, to_local
from ...shared.validators import DATE_FORMAT, validate_date
from .availability import booked_times, weekly_times
from .repository import AppointmentRepository
from .schemas import (
    AppointmentCreate,
    AppointmentStatusUpdate,
    DoctorProfile,
    SlotDeclaration,
    WeeklyHoursDeclaration,
)
from .slot_store import SlotStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    "scheduled": {"confirmed", "cancelled"},
    "confirmed": {"in_progress", "completed"},
    "in_progress": {"completed", "cancelled", "no_show"},
    "completed": set(),
    "cancelled": set(),
    "no_show": set(),
}
TERMINAL_STATUSES = {status for status, targets in ALLOWED_TRANSITIONS.items() if not targets}

# Pairs rejected before any authorization check
FORBIDDEN_PAIRS = {("confirmed", "cancelled"), ("cancelled", "confirmed")}


class AppointmentService:
    """
    Appointment ledger.

    Every mutation is one database transaction: booking consumes the slot and
    inserts the appointment together, and a status change that lands in
    `cancelled` restores the slot in the same transaction as the status
    update. Notifications go out only after commit.
    """

    def __init__(
        self,
        db: Session,
        notifier: NotificationDispatcher,
        clock: Callable = local_now,
    ):
        self.db = db
        self.notifier = notifier
        self.clock = clock
        self.repo = AppointmentRepository()
        self.slots = SlotStore(db)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_appointment(self, data: AppointmentCreate, user: User) -> Appointment:
        logger.info(f"📥 Booking {data.date} {data.time} with doctor {data.doctorId} for user {user.id}")

        patient = self.repo.get_patient_by_user(self.db, user.id)
        if not patient:
            raise NotFound("Patient profile not found")

        doctor = self.repo.get_doctor(self.db, data.doctorId)
        if not doctor:
            raise NotFound("Doctor not found")

        scheduled_time = combine(data.date, data.time)
        if scheduled_time < self.clock():
            raise ValidationError("Cannot book an appointment in the past")

        try:
            self._ensure_declared(doctor.id, data.date)
            self.slots.consume(doctor.id, data.date, data.time)
            appointment = self.repo.add_appointment(
                self.db,
                patient_id=patient.id,
                doctor_id=doctor.id,
                appointment_type=data.appointmentType,
                scheduled_time=scheduled_time,
                status="scheduled",
                patient_notes=data.patientNotes,
                prescriptions=[],
                tests_ordered=[],
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info(f"✅ Appointment {appointment.id} booked for doctor {doctor.id}")

        self.notifier.notify(
            doctor.user_id,
            "appointment_created",
            {
                "appointmentId": appointment.id,
                "date": data.date,
                "time": data.time,
                "message": f"New {data.appointmentType} appointment on {data.date} at {data.time}",
            },
        )
        return appointment

    def _ensure_declared(self, doctor_id: int, slot_date: str) -> None:
        """Generate the date's slot entry from weekly hours if it was never declared"""
        if self.slots.has_declaration(doctor_id, slot_date):
            return
        template = weekly_times(self.db, doctor_id, slot_date)
        if not template:
            return
        held = set(booked_times(self.db, doctor_id, slot_date))
        self.slots.materialize(doctor_id, slot_date, [t for t in template if t not in held])

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def update_status(
        self, appointment_id: int, data: AppointmentStatusUpdate, user: User
    ) -> Appointment:
        new_status = data.status
        if new_status not in APPOINTMENT_STATUSES:
            raise InvalidStatus(f"Invalid status: {new_status}")

        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise NotFound("Appointment not found")

        current = appointment.status
        if (current, new_status) in FORBIDDEN_PAIRS:
            raise IllegalTransition(
                "Cannot cancel a confirmed appointment"
                if current == "confirmed"
                else "Cannot confirm a cancelled appointment"
            )

        role = self._authorize(appointment, user)
        if role == "patient" and new_status != "cancelled":
            raise Forbidden("Patients can only cancel appointments")

        self._check_not_expired(appointment)
        self._check_edge(current, new_status)

        values = {}
        if role != "patient":
            if data.doctorNotes is not None:
                values["doctor_notes"] = data.doctorNotes
            if data.prescriptions is not None:
                values["prescriptions"] = [p.model_dump() for p in data.prescriptions]
            if data.testsOrdered is not None:
                values["tests_ordered"] = [t.model_dump() for t in data.testsOrdered]

        return self._apply(appointment, new_status, values, data, user)

    def cancel_appointment(self, appointment_id: int, user: User) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise NotFound("Appointment not found")

        if appointment.status == "confirmed":
            raise IllegalTransition("Cannot cancel a confirmed appointment")

        role = self._authorize(appointment, user)
        if role == "doctor":
            raise Forbidden("Only the patient or an administrator can cancel this appointment")

        self._check_not_expired(appointment)
        self._check_edge(appointment.status, "cancelled")
        return self._apply(appointment, "cancelled", {}, None, user)

    def _authorize(self, appointment: Appointment, user: User) -> str:
        """Return the role the caller acts in, or raise Forbidden"""
        if user.role in ADMIN_ROLES:
            return "admin"
        if user.role == "patient" and appointment.patient.user_id == user.id:
            return "patient"
        if user.role == "doctor" and appointment.doctor.user_id == user.id:
            return "doctor"
        logger.warning(f"⚠️ User {user.id} ({user.role}) denied access to appointment {appointment.id}")
        raise Forbidden("You do not have access to this appointment")

    def _check_not_expired(self, appointment: Appointment) -> None:
        if appointment.scheduled_time < self.clock():
            logger.warning(f"⚠️ Appointment {appointment.id} is in the past; status is frozen")
            raise Expired("Appointment time has already passed")

    @staticmethod
    def _check_edge(current: str, new_status: str) -> None:
        if new_status == current:
            # Same-status updates only carry notes, and never on a closed appointment
            if current in TERMINAL_STATUSES:
                raise IllegalTransition(f"Appointment is already {current}")
            return
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise IllegalTransition(f"Cannot change status from {current} to {new_status}")

    def _apply(
        self,
        appointment: Appointment,
        new_status: str,
        values: dict,
        data: Optional[AppointmentStatusUpdate],
        user: User,
    ) -> Appointment:
        current = appointment.status
        now = self.clock()
        values = dict(values, status=new_status)

        credit_minutes = None
        if new_status == "in_progress" and current != "in_progress":
            values["exam_start_time"] = now
        if new_status == "completed":
            start = appointment.exam_start_time
            end = now
            if data is not None and data.examStartTime:
                start = to_local(data.examStartTime)
            if data is not None and data.examEndTime:
                end = to_local(data.examEndTime)
            values["exam_start_time"] = start
            values["exam_end_time"] = end
            if not appointment.hours_added:
                values["hours_added"] = True
                credit_minutes = int((end - start).total_seconds() // 60) if start else 0
                credit_minutes = max(credit_minutes, 0)

        try:
            if not self.repo.transition(self.db, appointment.id, current, values):
                logger.warning(f"⚠️ Appointment {appointment.id} left {current} concurrently")
                raise IllegalTransition("Appointment status was changed by another request")
            if new_status == "cancelled":
                slot_date, slot_time = split(appointment.scheduled_time)
                self.slots.restore(appointment.doctor_id, slot_date, slot_time)
            if credit_minutes is not None:
                self.repo.credit_volunteer_time(self.db, appointment.doctor_id, credit_minutes)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info(f"✅ Appointment {appointment.id}: {current} -> {new_status} by user {user.id}")

        # The patient hears about every change; a patient's own cancellation goes to the doctor
        target = appointment.patient.user_id
        if target == user.id:
            target = appointment.doctor.user_id
        self.notifier.notify(
            target,
            "appointment_status_update",
            {
                "appointmentId": appointment.id,
                "previousStatus": current,
                "status": new_status,
                "message": f"Appointment {appointment.id} is now {new_status}",
            },
        )
        return appointment

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_appointments(
        self, user: User, status: Optional[str] = None, page: int = 1, limit: int = 10
    ) -> tuple[list[Appointment], dict]:
        if status and status not in APPOINTMENT_STATUSES:
            raise InvalidStatus(f"Invalid status: {status}")

        filters = {}
        if user.role == "patient":
            patient = self.repo.get_patient_by_user(self.db, user.id)
            if not patient:
                return [], {"total": 0, "pages": 0, "page": page, "limit": limit}
            filters["patient_id"] = patient.id
        elif user.role == "doctor":
            doctor = self.repo.get_doctor_by_user(self.db, user.id)
            if not doctor:
                return [], {"total": 0, "pages": 0, "page": page, "limit": limit}
            filters["doctor_id"] = doctor.id
        elif user.role not in ADMIN_ROLES:
            raise Forbidden("You cannot list appointments")

        query = self.repo.appointments_query(self.db, status=status, **filters)
        return paginate(query, page, limit)

    def get_appointment(self, appointment_id: int, user: User) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise NotFound("Appointment not found")
        self._authorize(appointment, user)
        return appointment

    def availability(self, doctor_id: int, slot_date: str) -> dict:
        """Open and booked times for one date"""
        try:
            slot_date = validate_date(slot_date)
        except ValueError as e:
            raise ValidationError(str(e))

        if not self.repo.get_doctor(self.db, doctor_id):
            raise NotFound("Doctor not found")

        booked = booked_times(self.db, doctor_id, slot_date)
        source = self.slots.declaration_source(doctor_id, slot_date)
        if source:
            slot = self.slots.find_slot(doctor_id, slot_date)
            times = slot["times"] if slot and slot["isActive"] else []
        else:
            times = weekly_times(self.db, doctor_id, slot_date)
            source = "weekly" if times else "none"

        held = set(booked)
        return {
            "date": slot_date,
            "availableTimes": [t for t in times if t not in held],
            "bookedTimes": booked,
            "source": source,
        }


class DoctorScheduleService:
    """Doctor-facing slot declaration and weekly template management"""

    def __init__(self, db: Session, clock: Callable = local_now):
        self.db = db
        self.clock = clock
        self.repo = AppointmentRepository()
        self.slots = SlotStore(db)

    def _doctor_for(self, user: User) -> Doctor:
        doctor = self.repo.get_doctor_by_user(self.db, user.id)
        if not doctor:
            raise NotFound("Doctor profile not found")
        return doctor

    def list_slots(self, doctor_id: int, include_inactive: bool = False) -> list[dict]:
        if not self.repo.get_doctor(self.db, doctor_id):
            raise NotFound("Doctor not found")
        return self.slots.list_slots(doctor_id, active_only=not include_inactive)

    def declare_slots(self, data: SlotDeclaration, user: User) -> list[dict]:
        doctor = self._doctor_for(user)
        today = self.clock().strftime(DATE_FORMAT)

        entries = []
        booked = {}
        for slot in data.slots:
            if slot.date < today:
                raise ValidationError(f"Cannot declare slots for a past date: {slot.date}")
            entries.append({"date": slot.date, "times": slot.times, "isActive": slot.isActive})
            booked[slot.date] = set(booked_times(self.db, doctor.id, slot.date))

        try:
            self.slots.declare(doctor.id, entries, booked)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"🗓️ Doctor {doctor.id} declared {len(entries)} slot date(s)")
        return self.slots.list_slots(doctor.id, active_only=False)

    def set_weekly_hours(self, data: WeeklyHoursDeclaration, user: User) -> list[dict]:
        doctor = self._doctor_for(user)
        entries = [
            {
                "day_of_week": entry.dayOfWeek,
                "start_time": entry.startTime,
                "end_time": entry.endTime,
                "is_active": entry.isActive,
            }
            for entry in data.hours
        ]
        try:
            self.repo.replace_weekly_hours(self.db, doctor.id, entries)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"🗓️ Doctor {doctor.id} updated weekly hours ({len(entries)} day(s))")
        return [
            {
                "dayOfWeek": h.day_of_week,
                "startTime": h.start_time,
                "endTime": h.end_time,
                "isActive": h.is_active,
            }
            for h in self.repo.get_weekly_hours(self.db, doctor.id)
        ]


class DoctorProfileService:
    """Doctor profiles and the public directory"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AppointmentRepository()

    def get_profile(self, user: User) -> Doctor:
        doctor = self.repo.get_doctor_by_user(self.db, user.id)
        if not doctor:
            raise NotFound("Doctor profile not found")
        return doctor

    def save_profile(self, data: DoctorProfile, user: User) -> Doctor:
        """Create the calling doctor's profile on first save, update it afterwards"""
        doctor = self.repo.get_doctor_by_user(self.db, user.id)
        holder = self.repo.get_doctor_by_license(self.db, data.license)
        if holder and (doctor is None or holder.id != doctor.id):
            raise ValidationError("License number is already registered")

        if doctor is None:
            doctor = Doctor(user_id=user.id)
            self.db.add(doctor)
            logger.info(f"🆕 Creating doctor profile for user {user.id}")

        doctor.specialty = data.specialty
        doctor.license = data.license
        doctor.experience_years = data.experienceYears
        doctor.is_volunteer = data.isVolunteer
        doctor.telehealth_enabled = data.telehealthEnabled
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Doctor profile for user {user.id} conflicted: {e}")
            raise ValidationError("License number is already registered")

        self.db.refresh(doctor)
        return doctor

    def list_doctors(
        self,
        specialty: Optional[str] = None,
        is_volunteer: Optional[bool] = None,
        telehealth_enabled: Optional[bool] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Doctor], dict]:
        query = self.repo.doctors_query(self.db, specialty, is_volunteer, telehealth_enabled)
        return paginate(query, page, limit)
