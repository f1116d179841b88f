"""Domain failures raised by services and rendered by the API layer."""

from beauty_booking.core.error_codes import ErrorCode


class DomainException(Exception):
    status_code = 400

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class Unauthenticated(DomainException):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(code=ErrorCode.UNAUTHENTICATED, message=message)


class Forbidden(DomainException):
    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(code=ErrorCode.FORBIDDEN, message=message)


class NotFound(DomainException):
    status_code = 404

    def __init__(
        self,
        message: str = "Booking not found",
        code: str = ErrorCode.BOOKING_NOT_FOUND,
    ):
        super().__init__(code=code, message=message)


class InvalidTransition(DomainException):
    """Target status is not reachable from the booking's current status."""

    status_code = 400

    def __init__(self, current_status: str, target_status: str):
        super().__init__(
            code=ErrorCode.INVALID_TRANSITION,
            message=f"Cannot transition from {current_status} to {target_status}",
        )
        self.current_status = current_status
        self.target_status = target_status


class Conflict(DomainException):
    """The booking changed between read and write."""

    status_code = 409

    def __init__(self, message: str = "Booking was modified concurrently"):
        super().__init__(code=ErrorCode.BOOKING_CONFLICT, message=message)


class StoreError(DomainException):
    status_code = 500

    def __init__(self, message: str = "Failed to update booking"):
        super().__init__(code=ErrorCode.STORE_ERROR, message=message)
