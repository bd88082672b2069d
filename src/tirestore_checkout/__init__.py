"""
Tirestore Checkout - cart-to-order checkout for the tire storefront.

Takes the cart snapshot a shopper built on the product pages through a
three-step wizard (Address, Payment, Review), obtains a payment
authorization from the backend, confirms it with the payment gateway,
records the order, clears the cart and hands off to the confirmation view.

Features:
- Cart snapshot shared between views with cross-view change notification
- Payment authorizations bound to cart and address, refreshed on change
- Late-response guard for navigation during in-flight requests
- Degraded checkout when the payment gateway is not configured
- Best-effort order recording after a successful payment
"""

from tirestore_checkout.orchestrator import CheckoutSession, CheckoutView
from tirestore_checkout.config import CheckoutSettings, load_settings
from tirestore_checkout.cart import CartStore
from tirestore_checkout.storage import (
    InMemoryStorage,
    JsonFileStorage,
    RedisStorage,
    StorageContext,
    create_storage,
)
from tirestore_checkout.steps import PaymentFormState, StepController
from tirestore_checkout.models import (
    # Cart
    CartItem,
    OrderSummary,
    cart_total,
    # Wizard
    CheckoutStep,
    StepId,
    # Address and customer
    ShippingAddress,
    CustomerIdentity,
    # Payment
    AuthorizationStatus,
    ConfirmationOutcome,
    ConfirmationResult,
    PaymentAuthorization,
    PaymentMethodDetails,
    # Orders
    Order,
    PaymentStatus,
    # Events
    CART_UPDATED_EVENT,
    STORAGE_EVENT,
)
from tirestore_checkout.errors import (
    CheckoutError,
    EmptyCartError,
    StepTransitionError,
    APIError,
    AuthenticationRequired,
    AuthorizationError,
    AuthorizationInProgress,
    StaleAuthorizationError,
)
from tirestore_checkout.connectors import (
    PaymentBackend,
    StripePaymentBackend,
    DisabledPaymentBackend,
    create_payment_backend,
)

__version__ = "0.1.0"

__all__ = [
    # Orchestration
    "CheckoutSession",
    "CheckoutView",
    "StepController",
    "PaymentFormState",
    # Configuration
    "CheckoutSettings",
    "load_settings",
    # Cart and storage
    "CartStore",
    "InMemoryStorage",
    "JsonFileStorage",
    "RedisStorage",
    "StorageContext",
    "create_storage",
    # Models
    "CartItem",
    "OrderSummary",
    "cart_total",
    "CheckoutStep",
    "StepId",
    "ShippingAddress",
    "CustomerIdentity",
    "AuthorizationStatus",
    "ConfirmationOutcome",
    "ConfirmationResult",
    "PaymentAuthorization",
    "PaymentMethodDetails",
    "Order",
    "PaymentStatus",
    "CART_UPDATED_EVENT",
    "STORAGE_EVENT",
    # Errors
    "CheckoutError",
    "EmptyCartError",
    "StepTransitionError",
    "APIError",
    "AuthenticationRequired",
    "AuthorizationError",
    "AuthorizationInProgress",
    "StaleAuthorizationError",
    # Payment backends
    "PaymentBackend",
    "StripePaymentBackend",
    "DisabledPaymentBackend",
    "create_payment_backend",
]
