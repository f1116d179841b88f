class ErrorCode:
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    SERVICE_NOT_FOUND = "SERVICE_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    BOOKING_CONFLICT = "BOOKING_CONFLICT"
    STORE_ERROR = "STORE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
