"""
Domain errors.

Each error is an HTTPException so services can raise them the same way they
raise plain HTTP errors; the handlers in main.py render them as
{"success": false, "message": ..., "error": <kind>}.
"""

from fastapi import HTTPException


class CareBridgeError(HTTPException):
    status_code = 400
    error = "bad_request"

    def __init__(self, message: str, **context):
        super().__init__(status_code=self.status_code, detail=message)
        self.message = message
        self.context = context


class ValidationError(CareBridgeError):
    error = "validation_error"


class NotFound(CareBridgeError):
    status_code = 404
    error = "not_found"


class Forbidden(CareBridgeError):
    status_code = 403
    error = "forbidden"


class InvalidStatus(CareBridgeError):
    error = "invalid_status"


class IllegalTransition(CareBridgeError):
    error = "illegal_transition"


class Expired(CareBridgeError):
    error = "expired"


class SlotUnavailable(CareBridgeError):
    error = "slot_unavailable"


class InvalidAmount(CareBridgeError):
    error = "invalid_amount"


class InsufficientFunds(CareBridgeError):
    error = "insufficient_funds"


class StorageFailure(CareBridgeError):
    status_code = 502
    error = "storage_error"
