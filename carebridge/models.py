from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

USER_ROLES = ("patient", "doctor", "admin", "charity_admin")
ADMIN_ROLES = ("admin", "charity_admin")

APPOINTMENT_TYPES = ("consultation", "follow_up", "emergency", "telehealth")
APPOINTMENT_STATUSES = (
    "scheduled",
    "confirmed",
    "in_progress",
    "completed",
    "cancelled",
    "no_show",
)
# Appointments in these states hold their slot time
ACTIVE_APPOINTMENT_STATUSES = ("scheduled", "confirmed", "in_progress")

REQUEST_TYPES = (
    "medical_treatment",
    "medication",
    "equipment",
    "surgery",
    "emergency",
    "rehabilitation",
    "other",
)
URGENCY_LEVELS = ("low", "medium", "high", "critical")
ASSISTANCE_STATUSES = ("pending", "approved", "in_progress", "completed", "rejected")

DONATION_STATUSES = ("pending", "completed", "failed")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    firebase_uid = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), default="patient", nullable=False)  # patient, doctor, admin, charity_admin
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", back_populates="user", uselist=False)
    doctor = relationship("Doctor", back_populates="user", uselist=False)


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    blood_type = Column(String(3), nullable=True)  # A+, A-, B+, B-, AB+, AB-, O+, O-
    economic_status = Column(String(20), default="poor", nullable=False)
    emergency_contact = Column(String(255), nullable=True)
    allergies = Column(JSON, default=list, nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="patient")
    appointments = relationship("Appointment", back_populates="patient")
    assistance_requests = relationship("PatientAssistance", back_populates="patient")


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    specialty = Column(String(255), nullable=False)
    license = Column(String(100), unique=True, nullable=False)
    experience_years = Column(Integer, default=0, nullable=False)
    is_volunteer = Column(Boolean, default=False, nullable=False)
    telehealth_enabled = Column(Boolean, default=True, nullable=False)
    # Credited once per completed exam (see Appointment.hours_added)
    volunteer_minutes = Column(Integer, default=0, nullable=False)
    total_patients = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="doctor")
    appointments = relationship("Appointment", back_populates="doctor")
    weekly_hours = relationship("DoctorWeeklyHours", back_populates="doctor")


class DoctorSlotDay(Base):
    """
    One row per doctor and date that has ever been declared or generated.

    The row outlives its times: once a date was declared (or expanded from the
    weekly template) it is never regenerated, even when every time is booked.
    """

    __tablename__ = "doctor_slot_days"
    __table_args__ = (UniqueConstraint("doctor_id", "slot_date", name="uq_doctor_slot_day"),)

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    slot_date = Column(String(10), nullable=False)  # YYYY-MM-DD
    is_active = Column(Boolean, default=True, nullable=False)
    source = Column(String(20), default="declared", nullable=False)  # declared, weekly
    created_at = Column(DateTime, server_default=func.now())


class DoctorSlotTime(Base):
    __tablename__ = "doctor_slot_times"
    __table_args__ = (
        UniqueConstraint("doctor_id", "slot_date", "slot_time", name="uq_doctor_slot_time"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    slot_date = Column(String(10), nullable=False)
    slot_time = Column(String(5), nullable=False)  # HH:mm


class DoctorWeeklyHours(Base):
    """Recurring weekly template, expanded into dated slots on demand"""

    __tablename__ = "doctor_weekly_hours"
    __table_args__ = (UniqueConstraint("doctor_id", "day_of_week", name="uq_doctor_weekday"),)

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0=Monday .. 6=Sunday
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    doctor = relationship("Doctor", back_populates="weekly_hours")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    appointment_type = Column(String(20), default="consultation", nullable=False)
    scheduled_time = Column(DateTime, nullable=False)  # clinic wall-clock time
    status = Column(String(20), default="scheduled", nullable=False, index=True)
    patient_notes = Column(Text, nullable=True)
    doctor_notes = Column(Text, nullable=True)
    prescriptions = Column(JSON, default=list, nullable=True)
    tests_ordered = Column(JSON, default=list, nullable=True)
    exam_start_time = Column(DateTime, nullable=True)
    exam_end_time = Column(DateTime, nullable=True)
    hours_added = Column(Boolean, default=False, nullable=False)
    meeting_link = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")


class PatientAssistance(Base):
    __tablename__ = "patient_assistance"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    request_type = Column(String(30), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    medical_condition = Column(Text, nullable=False)
    requested_amount = Column(BigInteger, nullable=False)
    urgency = Column(String(20), nullable=False)
    support_start_date = Column(DateTime, nullable=False)
    support_end_date = Column(DateTime, nullable=False)
    contact_phone = Column(String(50), nullable=False)
    # Ledger columns - only ever changed through conditional UPDATEs in the funding repository
    raised_amount = Column(BigInteger, default=0, nullable=False)
    withdrawn_amount = Column(BigInteger, default=0, nullable=False)
    remaining_amount = Column(BigInteger, default=0, nullable=False)  # derived
    status = Column(String(20), default="pending", nullable=False, index=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", back_populates="assistance_requests")
    withdrawals = relationship(
        "AssistanceWithdrawal",
        back_populates="assistance",
        order_by="AssistanceWithdrawal.id",
        cascade="all, delete-orphan",
    )
    attachments = relationship(
        "AssistanceAttachment", back_populates="assistance", cascade="all, delete-orphan"
    )
    donations = relationship("Donation", back_populates="assistance")


def compute_remaining(requested_amount: int, raised_amount: int) -> int:
    return max(0, (requested_amount or 0) - (raised_amount or 0))


@event.listens_for(PatientAssistance, "before_insert")
def _remaining_on_insert(_mapper, _connection, target):
    target.remaining_amount = compute_remaining(target.requested_amount, target.raised_amount)


@event.listens_for(PatientAssistance, "before_update")
def _remaining_on_update(_mapper, _connection, target):
    # Only when an amount actually changed; a stale instance must never rewrite it
    attrs = inspect(target).attrs
    if attrs.requested_amount.history.has_changes() or attrs.raised_amount.history.has_changes():
        target.remaining_amount = compute_remaining(target.requested_amount, target.raised_amount)


class AssistanceWithdrawal(Base):
    """Append-only payout record; rows are never updated or deleted individually"""

    __tablename__ = "assistance_withdrawals"

    id = Column(Integer, primary_key=True, index=True)
    assistance_id = Column(
        Integer, ForeignKey("patient_assistance.id"), nullable=False, index=True
    )
    amount = Column(BigInteger, nullable=False)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    assistance = relationship("PatientAssistance", back_populates="withdrawals")
    admin = relationship("User")


class AssistanceAttachment(Base):
    __tablename__ = "assistance_attachments"

    id = Column(Integer, primary_key=True, index=True)
    assistance_id = Column(
        Integer, ForeignKey("patient_assistance.id"), nullable=False, index=True
    )
    filename = Column(String(255), nullable=False)
    path = Column(String(500), nullable=False)  # storage key returned by the storage backend
    size = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    assistance = relationship("PatientAssistance", back_populates="attachments")


class Donation(Base):
    __tablename__ = "donations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    assistance_id = Column(
        Integer, ForeignKey("patient_assistance.id"), nullable=False, index=True
    )
    amount = Column(BigInteger, nullable=False)
    payment_method = Column(String(30), nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    is_anonymous = Column(Boolean, default=False, nullable=False)
    donor_name = Column(String(255), nullable=True)
    donor_email = Column(String(255), nullable=True)
    donor_phone = Column(String(50), nullable=True)
    message = Column(Text, nullable=True)
    # Idempotency key of the payment attempt
    gateway_ref = Column(String(100), unique=True, nullable=False, index=True)
    confirmed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    assistance = relationship("PatientAssistance", back_populates="donations")
    user = relationship("User")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    # NULL marks a system-wide activity entry shown on the admin feed
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    event_type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    payload = Column(JSON, default=dict, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
