"""
SlotStore - date-keyed availability for a doctor.

A slot entry is the set of bookable times a doctor has for one date. Times
live one per row under a unique (doctor, date, time) constraint, so both
consumption and restoration are single statements that concurrent requests
cannot interleave:

- consume is a DELETE that must affect exactly one row
- restore is an INSERT that silently does nothing when the time already exists

The store never commits; the ledger that calls it owns the transaction.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import exists
from sqlalchemy.orm import Session

from ...database import insert_ignore
from ...exceptions import SlotUnavailable
from ...models import DoctorSlotDay, DoctorSlotTime

logger = logging.getLogger(__name__)


class SlotStore:
    def __init__(self, db: Session):
        self.db = db

    def _day(self, doctor_id: int, slot_date: str) -> Optional[DoctorSlotDay]:
        return (
            self.db.query(DoctorSlotDay)
            .filter(DoctorSlotDay.doctor_id == doctor_id, DoctorSlotDay.slot_date == slot_date)
            .first()
        )

    def _times(self, doctor_id: int, slot_date: str) -> list[str]:
        rows = (
            self.db.query(DoctorSlotTime.slot_time)
            .filter(DoctorSlotTime.doctor_id == doctor_id, DoctorSlotTime.slot_date == slot_date)
            .order_by(DoctorSlotTime.slot_time)
            .all()
        )
        return [row.slot_time for row in rows]

    def declaration_source(self, doctor_id: int, slot_date: str) -> Optional[str]:
        """'declared' or 'weekly' once the date has an entry, even if fully booked since"""
        day = self._day(doctor_id, slot_date)
        return day.source if day else None

    def has_declaration(self, doctor_id: int, slot_date: str) -> bool:
        return self.declaration_source(doctor_id, slot_date) is not None

    def find_slot(self, doctor_id: int, slot_date: str) -> Optional[dict]:
        day = self._day(doctor_id, slot_date)
        if day is None:
            return None
        times = self._times(doctor_id, slot_date)
        if not times:
            return None
        return {"date": slot_date, "times": times, "isActive": day.is_active}

    def list_slots(self, doctor_id: int, active_only: bool = True) -> list[dict]:
        days = {
            day.slot_date: day.is_active
            for day in self.db.query(DoctorSlotDay).filter(DoctorSlotDay.doctor_id == doctor_id)
        }
        rows = (
            self.db.query(DoctorSlotTime.slot_date, DoctorSlotTime.slot_time)
            .filter(DoctorSlotTime.doctor_id == doctor_id)
            .order_by(DoctorSlotTime.slot_date, DoctorSlotTime.slot_time)
            .all()
        )

        slots: list[dict] = []
        for row in rows:
            if not slots or slots[-1]["date"] != row.slot_date:
                slots.append(
                    {"date": row.slot_date, "times": [], "isActive": days.get(row.slot_date, True)}
                )
            slots[-1]["times"].append(row.slot_time)

        if active_only:
            slots = [s for s in slots if s["isActive"]]
        return slots

    def consume(self, doctor_id: int, slot_date: str, slot_time: str) -> None:
        """Remove one bookable time; the date entry disappears with its last time"""
        day_is_active = exists().where(
            DoctorSlotDay.doctor_id == doctor_id,
            DoctorSlotDay.slot_date == slot_date,
            DoctorSlotDay.is_active.is_(True),
        )
        removed = (
            self.db.query(DoctorSlotTime)
            .filter(
                DoctorSlotTime.doctor_id == doctor_id,
                DoctorSlotTime.slot_date == slot_date,
                DoctorSlotTime.slot_time == slot_time,
                day_is_active,
            )
            .delete(synchronize_session=False)
        )
        if removed != 1:
            logger.warning(f"⚠️ Slot {slot_date} {slot_time} unavailable for doctor {doctor_id}")
            raise SlotUnavailable("The selected time slot is not available")
        logger.info(f"🔒 Consumed slot {slot_date} {slot_time} for doctor {doctor_id}")

    def restore(self, doctor_id: int, slot_date: str, slot_time: str) -> bool:
        """
        Put a time back into the doctor's availability.

        Idempotent: returns False when the time is already present. An entry
        that had become empty comes back active.
        """
        insert_ignore(
            self.db,
            DoctorSlotDay,
            {"doctor_id": doctor_id, "slot_date": slot_date, "is_active": True, "source": "declared"},
        )
        was_empty = not self._times(doctor_id, slot_date)
        inserted = insert_ignore(
            self.db,
            DoctorSlotTime,
            {"doctor_id": doctor_id, "slot_date": slot_date, "slot_time": slot_time},
        )
        if inserted and was_empty:
            self.db.query(DoctorSlotDay).filter(
                DoctorSlotDay.doctor_id == doctor_id, DoctorSlotDay.slot_date == slot_date
            ).update({"is_active": True}, synchronize_session=False)
        if inserted:
            logger.info(f"🔓 Restored slot {slot_date} {slot_time} for doctor {doctor_id}")
        return inserted

    def materialize(self, doctor_id: int, slot_date: str, times: Iterable[str]) -> bool:
        """
        Persist a generated slot entry for a date that has no declaration.

        Only the request that creates the day row writes the times, so a date
        is generated at most once.
        """
        created = insert_ignore(
            self.db,
            DoctorSlotDay,
            {"doctor_id": doctor_id, "slot_date": slot_date, "is_active": True, "source": "weekly"},
        )
        if not created:
            return False
        for slot_time in sorted(set(times)):
            insert_ignore(
                self.db,
                DoctorSlotTime,
                {"doctor_id": doctor_id, "slot_date": slot_date, "slot_time": slot_time},
            )
        logger.info(f"🗓️ Generated slot entry {slot_date} for doctor {doctor_id} from weekly hours")
        return True

    def declare(
        self, doctor_id: int, entries: list[dict], booked: dict[str, set[str]]
    ) -> None:
        """
        Replace the doctor's declared slot entries.

        Declared dates missing from `entries` are dropped. Times already held
        by an active appointment (`booked`, keyed by date) are never re-added.
        """
        new_dates = {entry["date"] for entry in entries}

        stale_days = (
            self.db.query(DoctorSlotDay)
            .filter(DoctorSlotDay.doctor_id == doctor_id, DoctorSlotDay.source == "declared")
            .all()
        )
        for day in stale_days:
            if day.slot_date not in new_dates:
                self._clear_times(doctor_id, day.slot_date)
                self.db.delete(day)

        for entry in entries:
            slot_date = entry["date"]
            day = self._day(doctor_id, slot_date)
            if day is None:
                day = DoctorSlotDay(doctor_id=doctor_id, slot_date=slot_date)
                self.db.add(day)
            day.is_active = entry.get("isActive", True)
            day.source = "declared"
            self._clear_times(doctor_id, slot_date)
            held = booked.get(slot_date, set())
            for slot_time in sorted(set(entry["times"]) - held):
                self.db.add(
                    DoctorSlotTime(doctor_id=doctor_id, slot_date=slot_date, slot_time=slot_time)
                )
        self.db.flush()

    def _clear_times(self, doctor_id: int, slot_date: str) -> None:
        self.db.query(DoctorSlotTime).filter(
            DoctorSlotTime.doctor_id == doctor_id, DoctorSlotTime.slot_date == slot_date
        ).delete(synchronize_session=False)
