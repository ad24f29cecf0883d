"""Weekly-hours template expansion and booked-time lookup"""

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ...config import SLOT_STEP_MINUTES
from ...models import ACTIVE_APPOINTMENT_STATUSES, Appointment, DoctorWeeklyHours
from ...shared.timeutils import expand_range
from ...shared.validators import DATE_FORMAT, TIME_FORMAT


def weekly_times(db: Session, doctor_id: int, slot_date: str) -> list[str]:
    """Times the weekly template offers on the weekday of `slot_date`"""
    weekday = datetime.strptime(slot_date, DATE_FORMAT).weekday()
    hours = (
        db.query(DoctorWeeklyHours)
        .filter(
            DoctorWeeklyHours.doctor_id == doctor_id,
            DoctorWeeklyHours.day_of_week == weekday,
            DoctorWeeklyHours.is_active.is_(True),
        )
        .first()
    )
    if not hours:
        return []
    return expand_range(hours.start_time, hours.end_time, SLOT_STEP_MINUTES)


def booked_times(db: Session, doctor_id: int, slot_date: str) -> list[str]:
    """Times held by scheduled, confirmed or in-progress appointments on a date"""
    day_start = datetime.strptime(slot_date, DATE_FORMAT)
    day_end = day_start + timedelta(days=1)
    rows = (
        db.query(Appointment.scheduled_time)
        .filter(
            Appointment.doctor_id == doctor_id,
            Appointment.scheduled_time >= day_start,
            Appointment.scheduled_time < day_end,
            Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
        )
        .all()
    )
    return sorted({row.scheduled_time.strftime(TIME_FORMAT) for row in rows})
