"""Shared validation utilities"""

import re
from datetime import datetime
from typing import Optional

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"

_TIME_RE = re.compile(r"^\d{2}:\d{2}$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def validate_date(value: str) -> str:
    """
    Validate a calendar date string.

    Returns:
        The date in YYYY-MM-DD form

    Raises:
        ValueError: If the value is not a real calendar date
    """
    if not value or not _DATE_RE.match(value):
        raise ValueError("Date must use the YYYY-MM-DD format")
    datetime.strptime(value, DATE_FORMAT)
    return value


def validate_time(value: str) -> str:
    """Validate a zero-padded HH:mm time-of-day string"""
    if not value or not _TIME_RE.match(value):
        raise ValueError("Time must use the HH:mm format")
    datetime.strptime(value, TIME_FORMAT)
    return value


def validate_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number to digits with an optional leading +.

    Raises:
        ValueError: If fewer than 9 or more than 15 digits remain
    """
    if not phone:
        return phone

    digits = re.sub(r"\D", "", phone)
    if len(digits) < 9 or len(digits) > 15:
        raise ValueError("Phone number must contain 9 to 15 digits")

    return f"+{digits}" if phone.strip().startswith("+") else digits
