"""Shared exceptions module."""

from typing import Optional

from pydantic import ValidationError


class LedgerhookException(Exception):
    """Base exception for ledgerhook services."""

    pass


class AuthenticationError(LedgerhookException):
    """Raised when an inbound event cannot be proven to come from the payment processor.

    Covers a missing or invalid signature as well as a malformed envelope. The payload is
    permanently invalid, so the processor must not redeliver it.
    """

    def __init__(self, message: Optional[str] = "Webhook authentication failed"):
        """Create a new AuthenticationError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class TransientStorageError(LedgerhookException):
    """Raised when the database is unavailable or a transaction could not be committed.

    Nothing was applied; the processor should redeliver the event.
    """

    def __init__(self, message: Optional[str] = "Billing storage is temporarily unavailable"):
        """Create a new TransientStorageError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class InvariantViolation(LedgerhookException):
    """Raised when stored billing data contradicts an event.

    Examples are a grant key that resolves to a different amount on redelivery, or a
    subscription or tenant that cannot be resolved. Redelivery cannot fix these, so they are
    logged for manual reconciliation and acknowledged.
    """

    def __init__(self, message: Optional[str] = "Billing invariant violated"):
        """Create a new InvariantViolation instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class NotFoundException(LedgerhookException):
    """Exception raised when an object is not found."""

    def __init__(self, message: Optional[str] = "Object not found"):
        """Create a new NotFoundException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class ExternalServiceError(Exception):
    """Exception raised when an external service fails."""

    def __init__(self, service_name: str, message: Optional[str] = "External service failed"):
        """Create a new ExternalServiceError instance.

        Args:
        ----
            service_name (str): The name of the external service.
            message (str, optional): The error message. Has default message.

        """
        self.service_name = service_name
        self.message = message
        super().__init__(f"{service_name}: {message}")


def unpack_validation_error(exc: ValidationError) -> dict:
    """Unpack a Pydantic validation error into a dictionary.

    Args:
    ----
        exc (ValidationError): The Pydantic validation error.

    Returns:
    -------
        dict: The dictionary representation of the validation error.

    """
    error_messages = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        message = error["msg"]
        error_messages.append({field: message})

    return {"errors": error_messages}
