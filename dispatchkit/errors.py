from typing import Optional


class DispatchError(RuntimeError):
    """
    Base class for business failures raised by the dispatch engine.

    ``message`` is the text shown to the requester; ``str(err)`` keeps the
    technical detail for logs.
    """
    message = "dispatch failed"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.message
        super().__init__(self.detail)


class InvalidInput(DispatchError):
    """The caller passed something that can never succeed as-is."""
    message = "invalid request"


class NotFound(DispatchError):
    """Referenced assignment, order or courier does not exist."""
    message = "assignment expired or invalid"


class AlreadyResolved(DispatchError):
    """Someone else accepted first, or the assignment is already completed."""
    message = "this order is no longer available"


class CourierBusy(DispatchError):
    """The courier already holds an accepted assignment."""
    message = "finish your current delivery first"


class OtpRejected(DispatchError):
    """Delivery code is wrong or expired."""
    message = "invalid or expired delivery code"


class GatewayError(RuntimeError):
    """A push could not be delivered. Never escapes the coordinator."""
