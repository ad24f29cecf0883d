"""Scheduling domain - appointments, doctor slots and weekly hours"""

from .router import doctors_router, router

__all__ = ["router", "doctors_router"]
