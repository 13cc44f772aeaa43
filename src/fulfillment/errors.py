"""Exceptions raised by the fulfillment provider integration.

Every exception carries an E-XXXX code from ``src.errors.registry`` so the
inbound operations can turn it into a result with a stable ``error_code``.
Provider failures are raised by the client and the retry executor; the
service layer catches them and returns ``ok=False`` results instead.
"""

from typing import Any


class FulfillmentError(Exception):
    """Base exception for fulfillment provider failures.

    Attributes:
        message: Human-readable description.
        code: Error code in E-XXXX format.
    """

    code = "E-3003"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotConfiguredError(FulfillmentError):
    """No API token is configured. Never retried."""

    code = "E-5001"

    def __init__(self, message: str = "PRINTFUL_NOT_CONFIGURED") -> None:
        super().__init__(message)


class NetworkError(FulfillmentError):
    """The HTTP transport failed before a response was received.

    Attributes:
        original: The underlying transport exception, if any.
    """

    code = "E-3002"

    def __init__(self, message: str, original: BaseException | None = None) -> None:
        """Initialize with a message and the transport exception.

        Args:
            message: Description of the failure.
            original: The httpx exception that caused it.
        """
        super().__init__(message)
        self.original = original


class ApiError(FulfillmentError):
    """The provider answered with an HTTP or application-level error.

    The provider sometimes answers HTTP 200 with an error payload
    (``{"code": 400, "error": {...}}``); both shapes end up here.

    Attributes:
        status_code: HTTP status, or the body ``code`` when the HTTP status was 2xx.
        reason: Provider-supplied short reason (e.g. ``BadRequest``).
        details: Raw decoded error body, when available.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        reason: str | None = None,
        details: Any = None,
    ) -> None:
        """Initialize with provider message, status and reason.

        Args:
            message: Provider-supplied message or an HTTP summary.
            status_code: HTTP status or application-level code.
            reason: Provider-supplied reason string.
            details: Raw decoded body for debugging.
        """
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
        self.details = details

    @property
    def is_client_error(self) -> bool:
        """Whether the failure is a 4xx (not worth retrying)."""
        return 400 <= self.status_code < 500

    def __str__(self) -> str:
        if self.reason:
            return f"HTTP {self.status_code} {self.reason}: {self.message}"
        return f"HTTP {self.status_code}: {self.message}"


class AuthError(ApiError):
    """The provider rejected the API token (401/403)."""

    code = "E-5002"

    def __init__(self, message: str = "Unauthorized", status_code: int = 401) -> None:
        super().__init__(message, status_code=status_code, reason="Unauthorized")


class RateLimitedError(ApiError):
    """The provider answered 429.

    Attributes:
        retry_after: Seconds the provider asked us to wait, if it said.
    """

    code = "E-3001"

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429, reason="TooManyRequests")
        self.retry_after = retry_after


class StaleOrderError(FulfillmentError):
    """An optimistic update lost the race against another writer.

    Attributes:
        order_id: Local order whose version moved.
        expected_version: Version the writer read.
    """

    code = "E-4001"

    def __init__(self, order_id: str, expected_version: int) -> None:
        super().__init__(
            f"Order '{order_id}' changed since version {expected_version}"
        )
        self.order_id = order_id
        self.expected_version = expected_version


class OrderNotFoundError(FulfillmentError):
    """A local order id does not exist in the store.

    Raised by the store only; inbound operations turn it into an
    ``ok=False`` result.

    Attributes:
        order_id: The id that was looked up.
    """

    code = "E-1001"

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order '{order_id}' not found")
        self.order_id = order_id


class LocalStoreError(FulfillmentError):
    """The local database failed a read or a write.

    Attributes:
        order_id: Order (or product) the operation targeted.
        original: The database exception.
    """

    code = "E-4002"
    action = "access"

    def __init__(self, order_id: str, original: BaseException) -> None:
        super().__init__(f"Could not {self.action} '{order_id}': {original}")
        self.order_id = order_id
        self.original = original


class LocalWriteError(LocalStoreError):
    """The local database rejected a write."""

    code = "E-4002"
    action = "update"


class LocalReadError(LocalStoreError):
    """The local database could not be read."""

    code = "E-4003"
    action = "read"
