"""Domain exceptions, rendered by ``app.middleware.error_handler``.

Each class fixes the HTTP status it maps to; the class name is reported as
the ``error`` field of the JSON body.
"""


class AppException(Exception):
    """Base application exception."""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestException(AppException):
    status_code = 400
    default_message = "Bad request"


class CancellationWindowClosedException(BadRequestException):
    """The appointment starts too soon to be cancelled or rescheduled."""

    default_message = "Cancellation window has closed"


class AccessDeniedException(AppException):
    """Actor does not own the appointment, slot or payment it is acting on."""

    status_code = 403
    default_message = "Access denied"


class NotFoundException(AppException):
    status_code = 404
    default_message = "Resource not found"


class ConflictException(AppException):
    status_code = 409
    default_message = "Conflict"


class SlotUnavailableException(ConflictException):
    """Slot is booked, blocked, past, or already held by another appointment."""

    default_message = "Time slot is not available"


class SlotConflictException(ConflictException):
    """A new slot would overlap an existing slot of the same doctor."""

    default_message = "A slot already exists in this period"


class InvalidTransitionException(ConflictException):
    """Appointment or payment state machine violation."""

    default_message = "Invalid status transition"


class ValidationException(AppException):
    status_code = 422
    default_message = "Validation error"


class PaymentGatewayException(AppException):
    """Payment collaborator rejected or failed a request."""

    status_code = 502
    default_message = "Payment gateway error"
