"""Shared exceptions module."""

from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError


class SeatSyncException(Exception):
    """Base exception for seatsync services."""

    retryable: bool = False

    def __init__(self, message: Optional[str] = "Seat reconciliation failed"):
        """Create a new SeatSyncException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class NotFoundException(SeatSyncException):
    """Exception raised when an object is not found."""

    def __init__(self, message: Optional[str] = "Object not found"):
        """Create a new NotFoundException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(message)


class ValidationError(SeatSyncException):
    """Exception raised for malformed caller input, such as a non-positive seat quantity."""

    def __init__(self, message: Optional[str] = "Invalid input"):
        """Create a new ValidationError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(message)


class InvalidStateError(SeatSyncException):
    """Exception raised when an object is in an invalid state.

    Used when the stored subscription cannot support the requested operation,
    e.g. a missing provider subscription item or a cancelled subscription.
    """

    def __init__(self, message: Optional[str] = "Object is in an invalid state"):
        """Create a new InvalidStateError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(message)


class NotApplicableError(SeatSyncException):
    """Raised when an operation does not apply to the subscription's billing type.

    Proration on a usage-based subscription is the typical case.
    """

    def __init__(self, billing_type: str, message: Optional[str] = None):
        """Create a new NotApplicableError instance.

        Args:
        ----
            billing_type (str): The billing type the operation was attempted on.
            message (str, optional): The error message. Generated when omitted.

        """
        self.billing_type = billing_type
        super().__init__(message or f"Operation is not applicable to {billing_type} billing")


class UnsupportedBillingTypeError(SeatSyncException):
    """Raised for subscriptions whose billing type cannot be managed (legacy rows)."""

    def __init__(self, billing_type: str, message: Optional[str] = None):
        """Create a new UnsupportedBillingTypeError instance.

        Args:
        ----
            billing_type (str): The unsupported billing type.
            message (str, optional): The error message. Generated when omitted.

        """
        self.billing_type = billing_type
        super().__init__(
            message
            or f"Seat changes are not supported for {billing_type} subscriptions; "
            "migrate to a current plan first"
        )


class ExternalServiceError(SeatSyncException):
    """Base exception for failures of the billing provider."""

    def __init__(self, service_name: str, message: Optional[str] = "External service failed"):
        """Create a new ExternalServiceError instance.

        Args:
        ----
            service_name (str): The name of the external service.
            message (str, optional): The error message. Has default message.

        """
        self.service_name = service_name
        self.message = message
        Exception.__init__(self, f"{service_name}: {message}")


class ProviderUnavailableError(ExternalServiceError):
    """Network failure, timeout or 5xx from the provider. Safe to retry later."""

    retryable = True


class ProviderRejectedError(ExternalServiceError):
    """The provider refused the request with a 4xx response."""

    def __init__(
        self,
        service_name: str,
        status_code: int,
        errors: Optional[list[dict[str, Any]]] = None,
        message: Optional[str] = None,
    ):
        """Create a new ProviderRejectedError instance.

        Args:
        ----
            service_name (str): The name of the external service.
            status_code (int): HTTP status returned by the provider.
            errors (list[dict], optional): The JSON:API ``errors`` array of the response.
            message (str, optional): The error message. Taken from the first error when omitted.

        """
        self.status_code = status_code
        self.errors = errors or []
        if message is None:
            first = self.errors[0] if self.errors else {}
            message = (
                first.get("detail") or first.get("title") or f"Request rejected ({status_code})"
            )
        super().__init__(service_name, message)


class ConcurrentModificationError(SeatSyncException):
    """Raised when a compare-and-set write lost against another writer."""

    retryable = True

    def __init__(self, resource: str, resource_id: Any, message: Optional[str] = None):
        """Create a new ConcurrentModificationError instance.

        Args:
        ----
            resource (str): The kind of object that was modified concurrently.
            resource_id (Any): Its identifier.
            message (str, optional): The error message. Generated when omitted.

        """
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            message or f"{resource} {resource_id} was modified concurrently; reload and retry"
        )


class AuthenticationError(SeatSyncException):
    """Raised when a caller cannot be authenticated, e.g. a wrong cron secret."""

    def __init__(self, message: Optional[str] = "Unauthorized"):
        """Create a new AuthenticationError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(message)


class WebhookSignatureError(AuthenticationError):
    """Raised when a webhook payload fails signature verification."""

    def __init__(self, message: Optional[str] = "Invalid webhook signature"):
        """Create a new WebhookSignatureError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(message)


class WebhookDispatchError(SeatSyncException):
    """Raised when a verified and recorded webhook event could not be applied.

    The ledger entry keeps the failure detail and stays eligible for reprocessing.
    """

    def __init__(self, event_id: str, event_type: str, detail: str):
        """Create a new WebhookDispatchError instance.

        Args:
        ----
            event_id (str): Provider event id.
            event_type (str): Provider event name.
            detail (str): Description of the underlying failure.

        """
        self.event_id = event_id
        self.event_type = event_type
        self.detail = detail
        super().__init__(f"Failed to apply {event_type} event {event_id}: {detail}")


def unpack_validation_error(exc: PydanticValidationError) -> dict:
    """Unpack a Pydantic validation error into a dictionary.

    Args:
    ----
        exc (PydanticValidationError): The Pydantic validation error.

    Returns:
    -------
        dict: The dictionary representation of the validation error.

    """
    error_messages = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        error_messages.append({field: error["msg"]})

    return {"errors": error_messages}
