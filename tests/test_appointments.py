from datetime import datetime

import pytest

from carebridge.domain.scheduling.schemas import (
    AppointmentCreate,
    AppointmentStatusUpdate,
    WeeklyHoursDeclaration,
    WeeklyHoursEntry,
)
from carebridge.domain.scheduling.service import AppointmentService, DoctorScheduleService
from carebridge.domain.scheduling.slot_store import SlotStore
from carebridge.exceptions import (
    Expired,
    Forbidden,
    IllegalTransition,
    InvalidStatus,
    NotFound,
    SlotUnavailable,
    ValidationError,
)
from carebridge.models import Appointment, Doctor
from conftest import declare, fixed_clock, make_admin, make_doctor, make_patient, make_user, reload


@pytest.fixture
def doctor(db):
    doctor = make_doctor(db)
    declare(db, doctor, {"2025-06-01": ["09:00", "09:30"]})
    return doctor


@pytest.fixture
def patient(db):
    return make_patient(db)


@pytest.fixture
def service(db, notifier):
    return AppointmentService(db, notifier, fixed_clock)


def booking(doctor, time="09:00", date="2025-06-01"):
    return AppointmentCreate(doctorId=doctor.id, date=date, time=time, appointmentType="consultation")


def times(db, doctor, date="2025-06-01"):
    slot = SlotStore(db).find_slot(doctor.id, date)
    return slot["times"] if slot else None


def status(value, **fields):
    return AppointmentStatusUpdate(status=value, **fields)


# ---------------------------------------------------------------------------
# Booking
# ---------------------------------------------------------------------------


def test_booking_consumes_the_slot(db, service, doctor, patient, notifier):
    appointment = service.create_appointment(booking(doctor), patient.user)

    assert appointment.status == "scheduled"
    assert appointment.scheduled_time == datetime(2025, 6, 1, 9, 0)
    assert times(db, doctor) == ["09:30"]
    assert notifier.events("appointment_created")[0][0] == doctor.user_id


def test_patient_cancellation_restores_the_slot(db, service, doctor, patient):
    appointment = service.create_appointment(booking(doctor), patient.user)

    cancelled = service.update_status(appointment.id, status("cancelled"), patient.user)

    assert cancelled.status == "cancelled"
    assert times(db, doctor) == ["09:00", "09:30"]


def test_booking_last_time_removes_the_date(db, service, doctor, patient):
    service.create_appointment(booking(doctor, "09:00"), patient.user)
    service.create_appointment(booking(doctor, "09:30"), patient.user)

    assert times(db, doctor) is None
    with pytest.raises(SlotUnavailable):
        service.create_appointment(booking(doctor, "09:00"), patient.user)
    assert db.query(Appointment).count() == 2


def test_booking_in_the_past_is_rejected(db, service, doctor, patient):
    declare(db, doctor, {"2025-05-01": ["09:00"]})

    with pytest.raises(ValidationError):
        service.create_appointment(booking(doctor, date="2025-05-01"), patient.user)


def test_booking_requires_patient_profile_and_known_doctor(db, service, doctor, patient):
    with pytest.raises(NotFound):
        service.create_appointment(booking(doctor), make_user(db, "patient"))

    missing = AppointmentCreate(
        doctorId=9999, date="2025-06-01", time="09:00", appointmentType="consultation"
    )
    with pytest.raises(NotFound):
        service.create_appointment(missing, patient.user)


def test_notification_failure_does_not_undo_booking(db, service, doctor, patient, notifier):
    notifier.fail = True

    appointment = service.create_appointment(booking(doctor), patient.user)

    assert reload(db, Appointment, appointment.id).status == "scheduled"
    assert times(db, doctor) == ["09:30"]


# ---------------------------------------------------------------------------
# Status machine
# ---------------------------------------------------------------------------


def test_update_of_past_appointment_is_expired(db, service, doctor, patient):
    past = Appointment(
        patient_id=patient.id,
        doctor_id=doctor.id,
        appointment_type="consultation",
        scheduled_time=datetime(2025, 5, 1, 9, 0),
        status="scheduled",
    )
    db.add(past)
    db.commit()

    with pytest.raises(Expired):
        service.update_status(past.id, status("confirmed"), doctor.user)
    assert reload(db, Appointment, past.id).status == "scheduled"


def test_unknown_status_is_invalid(service, doctor, patient):
    appointment = service.create_appointment(booking(doctor), patient.user)

    with pytest.raises(InvalidStatus):
        service.update_status(appointment.id, status("done"), doctor.user)


def test_confirmed_cannot_be_cancelled_even_by_admin(db, service, doctor, patient):
    appointment = service.create_appointment(booking(doctor), patient.user)
    service.update_status(appointment.id, status("confirmed"), doctor.user)

    with pytest.raises(IllegalTransition):
        service.update_status(appointment.id, status("cancelled"), make_admin(db))
    with pytest.raises(IllegalTransition):
        service.cancel_appointment(appointment.id, patient.user)


def test_transition_guard_runs_before_ownership(db, service, doctor, patient):
    appointment = service.create_appointment(booking(doctor), patient.user)
    service.update_status(appointment.id, status("cancelled"), patient.user)
    stranger = make_patient(db)

    with pytest.raises(IllegalTransition):
        service.update_status(appointment.id, status("confirmed"), stranger.user)


def test_only_participants_may_change_status(db, service, doctor, patient):
    appointment = service.create_appointment(booking(doctor), patient.user)

    with pytest.raises(Forbidden):
        service.update_status(appointment.id, status("confirmed"), make_doctor(db).user)
    with pytest.raises(Forbidden):
        service.update_status(appointment.id, status("cancelled"), make_patient(db).user)


def test_patient_may_only_cancel(service, doctor, patient):
    appointment = service.create_appointment(booking(doctor), patient.user)

    with pytest.raises(Forbidden):
        service.update_status(appointment.id, status("confirmed"), patient.user)


def test_transitions_follow_the_state_graph(db, service, doctor, patient):
    appointment = service.create_appointment(booking(doctor), patient.user)

    with pytest.raises(IllegalTransition):
        service.update_status(appointment.id, status("completed"), doctor.user)
    with pytest.raises(IllegalTransition):
        service.update_status(appointment.id, status("no_show"), doctor.user)

    service.update_status(appointment.id, status("cancelled"), make_admin(db, "charity_admin"))
    with pytest.raises(IllegalTransition):
        service.update_status(appointment.id, status("cancelled"), patient.user)


def test_exam_lifecycle_credits_volunteer_time_once(db, service, doctor, patient):
    appointment = service.create_appointment(booking(doctor), patient.user)
    service.update_status(appointment.id, status("confirmed"), doctor.user)
    started = service.update_status(appointment.id, status("in_progress"), doctor.user)
    assert started.exam_start_time == fixed_clock()

    done = service.update_status(
        appointment.id,
        status(
            "completed",
            doctorNotes="Stable",
            prescriptions=[{"medication": "Aspirin", "dosage": "81mg"}],
            examStartTime=datetime(2025, 6, 1, 9, 0),
            examEndTime=datetime(2025, 6, 1, 9, 45),
        ),
        doctor.user,
    )

    assert done.status == "completed"
    assert done.hours_added is True
    assert done.doctor_notes == "Stable"
    assert done.prescriptions[0]["medication"] == "Aspirin"
    refreshed = reload(db, Doctor, doctor.id)
    assert refreshed.volunteer_minutes == 45
    assert refreshed.total_patients == 1
    # Completion never gives the slot back
    assert times(db, doctor) == ["09:30"]


def test_in_progress_cancellation_restores_slot_but_no_show_does_not(db, service, doctor, patient):
    first = service.create_appointment(booking(doctor, "09:00"), patient.user)
    second = service.create_appointment(booking(doctor, "09:30"), patient.user)
    for appointment in (first, second):
        service.update_status(appointment.id, status("confirmed"), doctor.user)
        service.update_status(appointment.id, status("in_progress"), doctor.user)

    service.update_status(first.id, status("cancelled"), doctor.user)
    service.update_status(second.id, status("no_show"), doctor.user)

    assert times(db, doctor) == ["09:00"]


def test_doctor_cannot_use_cancel_endpoint(service, doctor, patient):
    appointment = service.create_appointment(booking(doctor), patient.user)

    with pytest.raises(Forbidden):
        service.cancel_appointment(appointment.id, doctor.user)


def test_cancel_restores_slot_and_notifies_doctor(db, service, doctor, patient, notifier):
    appointment = service.create_appointment(booking(doctor), patient.user)

    service.cancel_appointment(appointment.id, patient.user)

    assert times(db, doctor) == ["09:00", "09:30"]
    target, _, payload = notifier.events("appointment_status_update")[-1]
    assert target == doctor.user_id
    assert payload["status"] == "cancelled"


def test_stale_status_read_loses(db, other_db, notifier, doctor, patient):
    service = AppointmentService(db, notifier, fixed_clock)
    appointment = service.create_appointment(booking(doctor), patient.user)
    patient_user = patient.user

    # Another request confirms after this session has read the appointment
    concurrent = AppointmentService(other_db, notifier, fixed_clock)
    concurrent.update_status(appointment.id, status("confirmed"), other_db.get(Doctor, doctor.id).user)

    with pytest.raises(IllegalTransition):
        service.update_status(appointment.id, status("cancelled"), patient_user)
    assert reload(db, Appointment, appointment.id).status == "confirmed"
    assert times(db, doctor) == ["09:30"]


# ---------------------------------------------------------------------------
# Availability and weekly template
# ---------------------------------------------------------------------------


def test_availability_for_declared_date(service, doctor, patient):
    service.create_appointment(booking(doctor), patient.user)

    result = service.availability(doctor.id, "2025-06-01")

    assert result == {
        "date": "2025-06-01",
        "availableTimes": ["09:30"],
        "bookedTimes": ["09:00"],
        "source": "declared",
    }


def test_weekly_template_is_generated_once(db, service, doctor, patient):
    schedule = DoctorScheduleService(db, fixed_clock)
    schedule.set_weekly_hours(
        WeeklyHoursDeclaration(
            hours=[WeeklyHoursEntry(dayOfWeek=0, startTime="09:00", endTime="11:00")]
        ),
        doctor.user,
    )

    # 2025-06-02 is a Monday
    before = service.availability(doctor.id, "2025-06-02")
    assert before["source"] == "weekly"
    assert before["availableTimes"] == ["09:00", "09:30", "10:00", "10:30"]

    service.create_appointment(booking(doctor, "09:30", "2025-06-02"), patient.user)
    schedule.set_weekly_hours(
        WeeklyHoursDeclaration(
            hours=[WeeklyHoursEntry(dayOfWeek=0, startTime="14:00", endTime="15:00")]
        ),
        doctor.user,
    )

    after = service.availability(doctor.id, "2025-06-02")
    assert after["availableTimes"] == ["09:00", "10:00", "10:30"]
    assert after["bookedTimes"] == ["09:30"]
    # Other Mondays follow the new template
    assert service.availability(doctor.id, "2025-06-09")["availableTimes"] == ["14:00", "14:30"]


def test_availability_without_any_schedule(service, doctor):
    result = service.availability(doctor.id, "2025-06-03")

    assert result["availableTimes"] == []
    assert result["source"] == "none"


def test_availability_rejects_bad_date(service, doctor):
    with pytest.raises(ValidationError):
        service.availability(doctor.id, "06/01/2025")


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def test_listing_is_role_filtered(db, service, doctor, patient):
    other_patient = make_patient(db)
    service.create_appointment(booking(doctor, "09:00"), patient.user)
    service.create_appointment(booking(doctor, "09:30"), other_patient.user)

    mine, pagination = service.list_appointments(patient.user)
    assert [a.patient_id for a in mine] == [patient.id]
    assert pagination == {"total": 1, "pages": 1, "page": 1, "limit": 10}

    assert len(service.list_appointments(doctor.user)[0]) == 2
    assert len(service.list_appointments(make_doctor(db).user)[0]) == 0
    assert service.list_appointments(make_admin(db), page=2, limit=1)[1]["pages"] == 2
