"""Appointment repository - Database operations for appointments and profiles"""

from typing import Optional

from sqlalchemy.orm import Query, Session

from ...models import Appointment, Doctor, DoctorWeeklyHours, Patient


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get_appointment(db: Session, appointment_id: int) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def get_patient_by_user(db: Session, user_id: int) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.user_id == user_id).first()

    @staticmethod
    def get_doctor_by_user(db: Session, user_id: int) -> Optional[Doctor]:
        return db.query(Doctor).filter(Doctor.user_id == user_id).first()

    @staticmethod
    def get_doctor(db: Session, doctor_id: int) -> Optional[Doctor]:
        return db.query(Doctor).filter(Doctor.id == doctor_id).first()

    @staticmethod
    def get_doctor_by_license(db: Session, license: str) -> Optional[Doctor]:
        return db.query(Doctor).filter(Doctor.license == license).first()

    @staticmethod
    def doctors_query(
        db: Session,
        specialty: Optional[str] = None,
        is_volunteer: Optional[bool] = None,
        telehealth_enabled: Optional[bool] = None,
    ) -> Query:
        """Doctor directory, most experienced first"""
        query = db.query(Doctor)
        if specialty:
            query = query.filter(Doctor.specialty == specialty)
        if is_volunteer is not None:
            query = query.filter(Doctor.is_volunteer == is_volunteer)
        if telehealth_enabled is not None:
            query = query.filter(Doctor.telehealth_enabled == telehealth_enabled)
        return query.order_by(Doctor.experience_years.desc(), Doctor.id)

    @staticmethod
    def add_appointment(db: Session, **appointment_data) -> Appointment:
        """Stage a new appointment; the caller commits"""
        appointment = Appointment(**appointment_data)
        db.add(appointment)
        db.flush()
        return appointment

    @staticmethod
    def transition(db: Session, appointment_id: int, expected_status: str, values: dict) -> bool:
        """
        Apply `values` only if the appointment is still in `expected_status`.

        Returns False when another request changed the status first.
        """
        updated = (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.status == expected_status)
            .update(values, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def credit_volunteer_time(db: Session, doctor_id: int, minutes: int) -> None:
        db.query(Doctor).filter(Doctor.id == doctor_id).update(
            {
                Doctor.volunteer_minutes: Doctor.volunteer_minutes + minutes,
                Doctor.total_patients: Doctor.total_patients + 1,
            },
            synchronize_session=False,
        )

    @staticmethod
    def appointments_query(
        db: Session,
        patient_id: Optional[int] = None,
        doctor_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> Query:
        query = db.query(Appointment)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if status:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.created_at.desc(), Appointment.id.desc())

    @staticmethod
    def replace_weekly_hours(db: Session, doctor_id: int, entries: list[dict]) -> None:
        db.query(DoctorWeeklyHours).filter(DoctorWeeklyHours.doctor_id == doctor_id).delete(
            synchronize_session=False
        )
        for entry in entries:
            db.add(DoctorWeeklyHours(doctor_id=doctor_id, **entry))
        db.flush()

    @staticmethod
    def get_weekly_hours(db: Session, doctor_id: int) -> list[DoctorWeeklyHours]:
        return (
            db.query(DoctorWeeklyHours)
            .filter(DoctorWeeklyHours.doctor_id == doctor_id)
            .order_by(DoctorWeeklyHours.day_of_week)
            .all()
        )
