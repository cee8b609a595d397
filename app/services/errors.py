from app.services.qpay_client import QPayError


class BookingError(Exception):
    code = "BOOKING_ERROR"

    def __init__(self, message: str, code: str | None = None, **details):
        super().__init__(message)
        if code:
            self.code = code
        self.details = details


class ValidationError(BookingError):
    code = "VALIDATION_ERROR"


class ScheduleViolation(ValidationError):
    code = "SCHEDULE_VIOLATION"


class ConflictError(BookingError):
    code = "SLOT_TAKEN"


class NotFoundError(BookingError):
    code = "NOT_FOUND"


class TokenMismatchError(BookingError):
    code = "TOKEN_MISMATCH"


class GatewayError(BookingError):
    code = "GATEWAY_ERROR"

    def __init__(self, message: str, cause: QPayError | None = None):
        super().__init__(message)
        self.cause = cause
