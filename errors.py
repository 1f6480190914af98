"""
Domain errors raised by the order lifecycle, assignment and ledger code.

Each error carries the HTTP status the API answers with; main.py turns
them into ``{"success": false, "message": ...}`` responses.
"""


class DesignDenError(Exception):
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(DesignDenError):
    default_message = "Invalid request"


class OutOfStockError(ValidationError):
    status_code = 409
    default_message = "Insufficient stock"


class InsufficientBalanceError(DesignDenError):
    default_message = "Insufficient balance"


class OTPValidationError(DesignDenError):
    default_message = "Invalid OTP. Please enter correct OTP."


class RoleMismatchError(DesignDenError):
    status_code = 403
    default_message = "Not permitted"


class NotFoundError(DesignDenError):
    status_code = 404
    default_message = "Not found"


class InvalidTransitionError(DesignDenError):
    status_code = 409
    default_message = "Invalid status transition"


class AlreadyAssignedError(DesignDenError):
    status_code = 409
    default_message = "Order is already assigned"


class DatabaseUnavailableError(DesignDenError):
    status_code = 503
    default_message = "Database not configured"
