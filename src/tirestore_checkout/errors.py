"""Exception hierarchy for the checkout core.

All checkout-specific exceptions inherit from CheckoutError, which carries
a machine-readable ``error_code`` and optional ``details`` so callers (the
CLI, or a page rendering the checkout) can present them uniformly.

Only EmptyCartError is meant to reach the caller of CheckoutSession.start();
the other errors are caught inside the checkout core and surfaced through
the view state (disabled "continue", retry control, inline message).
"""
from __future__ import annotations

from typing import Any, Optional


class CheckoutError(Exception):
    """Base exception for all checkout errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "EMPTY_CART")
        details: Optional additional context
    """

    error_code: str = "CHECKOUT_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a serializable error payload."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class EmptyCartError(CheckoutError):
    """Checkout entered without any valid cart items."""

    error_code = "EMPTY_CART"


class StepTransitionError(CheckoutError):
    """Illegal wizard navigation (advance with an invalid step, retreat from step 1)."""

    error_code = "INVALID_STEP_TRANSITION"


class APIError(CheckoutError):
    """Backend responded with a non-2xx status."""

    error_code = "API_ERROR"

    def __init__(self, status_code: int, message: str, details: Any = None):
        self.status_code = status_code
        super().__init__(
            message,
            details={"status_code": status_code, "body": details} if details is not None
            else {"status_code": status_code},
        )


class AuthenticationRequired(APIError):
    """Backend rejected the auth token (HTTP 401)."""

    error_code = "AUTHENTICATION_REQUIRED"

    def __init__(self, message: str = "Authentication required. Please log in again."):
        super().__init__(401, message)


class AuthorizationError(CheckoutError):
    """Creating the payment authorization failed (network or server error)."""

    error_code = "AUTHORIZATION_FAILED"


class AuthorizationInProgress(AuthorizationError):
    """A payment authorization request is already in flight for this session."""

    error_code = "AUTHORIZATION_IN_PROGRESS"


class StaleAuthorizationError(CheckoutError):
    """Confirmation attempted with a token that has been superseded."""

    error_code = "STALE_AUTHORIZATION"


class PaymentUnavailable(CheckoutError):
    """The payment backend is disabled (gateway could not be initialized)."""

    error_code = "PAYMENT_UNAVAILABLE"
