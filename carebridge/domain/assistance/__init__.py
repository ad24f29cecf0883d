"""Assistance domain - patient funding requests"""

from .router import router

__all__ = ["router"]
