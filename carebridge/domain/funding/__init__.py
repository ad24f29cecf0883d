"""Funding domain - donations and withdrawals"""

from .router import router, withdrawals_router

__all__ = ["router", "withdrawals_router"]
