"""Webhook engine error taxonomy.

Receipt errors (ValidationError, AuthenticationError) are surfaced to
the caller and never queued. Processing errors (HandlerNotFoundError,
HandlerExecutionError, ProcessingTimeoutError) are recovered locally
by the retry controller and only survive as an event's error message.
"""


class WebhookError(Exception):
    """Base class for webhook engine errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(WebhookError):
    """Malformed payload or unknown source."""

    status_code = 400


class AuthenticationError(WebhookError):
    """Signature missing, invalid, or unverifiable."""

    status_code = 401


class NotFoundError(WebhookError):
    """Event not found where the operation requires it."""

    status_code = 404


class ProcessingError(WebhookError):
    """A failed processing attempt."""


class HandlerNotFoundError(ProcessingError):
    def __init__(self, route: str):
        self.route = route
        super().__init__(f"No handler registered for {route}")


class HandlerExecutionError(ProcessingError):
    """Handler raised or reported failure."""


class ProcessingTimeoutError(ProcessingError):
    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Processing timeout after {timeout_seconds:g}s")
