from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from ..config import CLINIC_TIMEZONE
from .validators import DATE_FORMAT, TIME_FORMAT


def local_now() -> datetime:
    """Current clinic wall-clock time as a naive datetime"""
    return datetime.now(ZoneInfo(CLINIC_TIMEZONE)).replace(tzinfo=None)


def get_clock():
    """Dependency returning the clock used by the ledgers"""
    return local_now


def combine(slot_date: str, slot_time: str) -> datetime:
    return datetime.strptime(f"{slot_date} {slot_time}", f"{DATE_FORMAT} {TIME_FORMAT}")


def split(moment: datetime) -> tuple[str, str]:
    """Inverse of combine(): the slot date and time a timestamp was booked at"""
    return moment.strftime(DATE_FORMAT), moment.strftime(TIME_FORMAT)


def expand_range(start_time: str, end_time: str, step_minutes: int) -> list[str]:
    """Times from start (inclusive) to end (exclusive) in fixed increments"""
    current = datetime.strptime(start_time, TIME_FORMAT)
    end = datetime.strptime(end_time, TIME_FORMAT)
    times = []
    while current < end:
        times.append(current.strftime(TIME_FORMAT))
        current += timedelta(minutes=step_minutes)
    return times


def to_local(moment: datetime) -> datetime:
    """Naive clinic wall-clock time for a possibly timezone-aware timestamp"""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(ZoneInfo(CLINIC_TIMEZONE)).replace(tzinfo=None)
