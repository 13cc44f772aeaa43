"""Error code registry with E-XXXX format codes.

This module defines the error code system for printsync, organizing errors
into categories:
- E-1xxx: Lookup errors (orders, products, variants that do not exist)
- E-2xxx: State errors (operation not valid for the current order state)
- E-3xxx: Fulfillment provider API errors
- E-4xxx: System/storage errors
- E-5xxx: Configuration and authentication errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    LOOKUP = "lookup"  # E-1xxx: Missing entities
    STATE = "state"  # E-2xxx: Invalid state for operation
    PROVIDER_API = "provider_api"  # E-3xxx: Fulfillment provider errors
    SYSTEM = "system"  # E-4xxx: System/storage errors
    CONFIG = "config"  # E-5xxx: Configuration/auth errors


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action the operator should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
    """

    code: str  # E-XXXX format
    category: ErrorCategory
    title: str  # Short title for display
    message_template: str  # Message with {placeholders}
    remediation: str  # Action user should take
    is_retryable: bool = False  # Can be retried without user action

    def format(self, **context: object) -> str:
        """Render the message template, leaving unknown placeholders intact."""
        try:
            return self.message_template.format(**context)
        except (KeyError, IndexError):
            return self.message_template


# Error registry - all defined error codes
ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Lookup errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.LOOKUP,
        title="Order Not Found",
        message_template="Order '{order_id}' not found.",
        remediation="Check the order ID. Orders are never deleted, so a miss usually means a typo.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.LOOKUP,
        title="Order Not Linked",
        message_template="Order '{order_id}' has no fulfillment provider order.",
        remediation="Submit the order to the provider before syncing it.",
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.LOOKUP,
        title="Product Not Found",
        message_template="Product '{product_id}' not found.",
        remediation="Sync the product from the provider store first.",
    ),
    "E-1004": ErrorCode(
        code="E-1004",
        category=ErrorCategory.LOOKUP,
        title="No Fulfillable Items",
        message_template="Order '{order_id}' has no items mapped to provider variants.",
        remediation="Link each product variant to a provider sync or catalog variant.",
    ),
    "E-1005": ErrorCode(
        code="E-1005",
        category=ErrorCategory.LOOKUP,
        title="No Mockup Sources",
        message_template="Product '{product_id}' has no variants with print files.",
        remediation="Attach front or back print files to the product in the provider dashboard.",
    ),
    # State errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.STATE,
        title="Order Not A Draft",
        message_template="Provider order {external_order_id} is '{status}', only draft orders can be confirmed.",
        remediation="The order was already confirmed or cancelled. Sync it instead.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.STATE,
        title="Invalid Order Data",
        message_template="Order cannot be sent to the provider: {reason}",
        remediation="Fix the recipient or line items and submit again.",
    ),
    # Provider API errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.PROVIDER_API,
        title="Provider Rate Limit Exceeded",
        message_template="Too many requests to the fulfillment provider.",
        remediation="Wait for the rate limit window to reset and retry.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.PROVIDER_API,
        title="Provider Unreachable",
        message_template="Could not reach the fulfillment provider: {reason}",
        remediation="Check network connectivity and the provider status page, then retry.",
        is_retryable=True,
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.PROVIDER_API,
        title="Provider Request Failed",
        message_template="Fulfillment provider rejected the request: {reason}",
        remediation="Review the provider message; fix the order data and retry.",
    ),
    "E-3004": ErrorCode(
        code="E-3004",
        category=ErrorCategory.PROVIDER_API,
        title="Mockup Generation Failed",
        message_template="No mockup tasks could be created for product '{product_id}'.",
        remediation="Retry later; the provider may be throttling mockup generation.",
        is_retryable=True,
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Concurrent Order Update",
        message_template="Order '{order_id}' was modified concurrently.",
        remediation="Retry the sync; the next attempt re-reads the latest order.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Local Order Write Failed",
        message_template="Could not update order '{order_id}': {reason}",
        remediation="The provider state is authoritative; run a sync to repair the local copy.",
        is_retryable=True,
    ),
    "E-4003": ErrorCode(
        code="E-4003",
        category=ErrorCategory.SYSTEM,
        title="Local Order Read Failed",
        message_template="Could not read '{order_id}': {reason}",
        remediation="Check that the database is reachable and not locked, then retry.",
        is_retryable=True,
    ),
    # Configuration/auth errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.CONFIG,
        title="Provider Not Configured",
        message_template="PRINTFUL_NOT_CONFIGURED",
        remediation="Set PRINTFUL_API_TOKEN in the environment or printsync.yaml.",
    ),
    "E-5002": ErrorCode(
        code="E-5002",
        category=ErrorCategory.CONFIG,
        title="Provider Authentication Failed",
        message_template="The fulfillment provider rejected the API token.",
        remediation="Generate a new private token with order and file scopes.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category.

    Args:
        category: The error category to filter by.

    Returns:
        List of ErrorCode objects in the specified category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
