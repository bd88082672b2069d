"""
Checkout orchestration.

CheckoutSession wires the Cart Store, Address Collector, Payment Intent
Manager, Step Controller, Payment Confirmation and Order Finalizer together
for one open checkout view:

    cart snapshot -> Address step -> payment authorization -> Payment step
        -> Review step -> confirmation -> order record -> cart cleared -> redirect

The same wizard runs whether payments are live or disabled; only the
PaymentBackend differs.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import httpx

from tirestore_checkout.address import AddressCollector
from tirestore_checkout.api import AddressAPI, BackendClient, OrderAPI, PaymentIntentAPI
from tirestore_checkout.cart import CartStore
from tirestore_checkout.config import CheckoutSettings
from tirestore_checkout.confirmation import PaymentConfirmation
from tirestore_checkout.connectors import create_payment_backend
from tirestore_checkout.connectors.base import PaymentBackend
from tirestore_checkout.errors import EmptyCartError, StepTransitionError
from tirestore_checkout.finalizer import FinalizationResult, Navigator, OrderFinalizer
from tirestore_checkout.intents import PaymentIntentManager, is_transient
from tirestore_checkout.logging_config import checkout_session_id_var
from tirestore_checkout.models import (
    CartItem,
    ConfirmationOutcome,
    ConfirmationResult,
    CustomerIdentity,
    Order,
    OrderSummary,
    PaymentMethodDetails,
    PaymentStatus,
    ShippingAddress,
    StepId,
    cart_fingerprint,
    cart_total,
)
from tirestore_checkout.retry import RetryConfig
from tirestore_checkout.steps import EMPTY_CART_MESSAGE, PaymentFormState, StepController
from tirestore_checkout.storage import StorageContext

logger = logging.getLogger(__name__)

ORDER_CHANGED_MESSAGE = "Your order changed. Please check the payment step again."
ALREADY_PROCESSING_MESSAGE = "Your payment is already being processed."
# Recovery affordances offered when checkout is entered without items
EMPTY_CART_ACTIONS = ("reload", "continue_shopping", "contact_support")


def valid_items(items: List[CartItem]) -> List[CartItem]:
    """Items that can be paid for: positive price and quantity."""
    return [item for item in items if item.unit_price > 0 and item.quantity > 0]


@dataclass
class CheckoutView:
    """Snapshot of everything the checkout page renders."""
    session_id: str
    step: StepId
    steps: List[Dict[str, Any]]
    summary: OrderSummary
    address: ShippingAddress
    address_problems: List[str]
    continue_enabled: bool
    back_enabled: bool
    payment_form: PaymentFormState
    payments_available: bool
    loading: Dict[str, bool] = field(default_factory=dict)
    authorization_error: Optional[str] = None
    retry_available: bool = False
    confirmation_error: Optional[str] = None
    place_order_enabled: bool = False
    cart_emptied: bool = False
    completed: bool = False

    @property
    def is_loading(self) -> bool:
        return any(self.loading.values())


class CheckoutSession:
    """One shopper's checkout, from cart snapshot to confirmation redirect."""

    def __init__(
        self,
        cart_store: CartStore,
        address: AddressCollector,
        intents: PaymentIntentManager,
        payment_backend: PaymentBackend,
        finalizer: OrderFinalizer,
        navigate: Navigator,
        customer: Optional[CustomerIdentity] = None,
        guest_email: Optional[str] = None,
        vat_rate: Decimal = Decimal("0.21"),
        currency: str = "EUR",
    ):
        self.session_id = uuid.uuid4().hex[:12]
        self.cart_store = cart_store
        self.address = address
        self.intents = intents
        self.payment_backend = payment_backend
        self.confirmation = PaymentConfirmation(payment_backend, intents)
        self.finalizer = finalizer
        self.navigate = navigate
        self.customer = customer or CustomerIdentity()
        self.guest_email = guest_email
        self.vat_rate = vat_rate
        self.currency = currency

        self.cart: List[CartItem] = []
        self.controller = StepController(address, intents, lambda: self.cart)
        self.started = False
        self.cart_emptied = False
        self.payment_succeeded = False
        self.completed = False
        self.confirmation_error: Optional[str] = None
        self.finalization: Optional[FinalizationResult] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._closers: List[Any] = []

    @classmethod
    def create(
        cls,
        settings: CheckoutSettings,
        storage: StorageContext,
        navigate: Navigator,
        customer: Optional[CustomerIdentity] = None,
        guest_email: Optional[str] = None,
        api_transport: Optional[httpx.AsyncBaseTransport] = None,
        payment_backend: Optional[PaymentBackend] = None,
        payment_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "CheckoutSession":
        """Build a session and all its collaborators from configuration."""
        client = BackendClient(
            settings.api_base_url,
            timeout=settings.request_timeout_seconds,
            transport=api_transport,
        )
        cart_store = CartStore(storage, key=settings.cart_storage_key)
        retry_config = RetryConfig(
            max_retries=settings.intent_max_retries,
            base_delay=settings.intent_retry_base_delay,
            retry_condition=is_transient,
        )
        backend = payment_backend or create_payment_backend(settings, transport=payment_transport)
        session = cls(
            cart_store=cart_store,
            address=AddressCollector(AddressAPI(client), allowed_countries=settings.allowed_countries),
            intents=PaymentIntentManager(PaymentIntentAPI(client), customer, retry_config),
            payment_backend=backend,
            finalizer=OrderFinalizer(
                OrderAPI(client),
                cart_store,
                navigate,
                success_route=settings.order_success_route,
                auth_token=customer.auth_token if customer else None,
            ),
            navigate=navigate,
            customer=customer,
            guest_email=guest_email,
            vat_rate=settings.vat_rate,
            currency=settings.currency,
        )
        session._closers = [client, backend]
        return session

    # Entry

    async def start(self) -> "CheckoutSession":
        """
        Enter checkout.

        Loads the cart and pre-fills the address. Nothing is requested from
        the payment service until the shopper leaves the Address step.

        Raises:
            EmptyCartError: if the cart has no payable items
        """
        checkout_session_id_var.set(self.session_id)
        items = valid_items(await self.cart_store.load())
        if not items:
            self.cart_emptied = True
            logger.warning("Checkout entered with an empty cart")
            raise EmptyCartError(
                EMPTY_CART_MESSAGE,
                details={"actions": list(EMPTY_CART_ACTIONS)},
            )

        self.cart = items
        self.cart_emptied = False
        if self._unsubscribe is None:
            self._unsubscribe = self.cart_store.subscribe(self._on_cart_changed)
        self.started = True
        logger.info(f"Checkout started with {len(items)} line(s), total {cart_total(items)}")
        await self.address.prefill(self.customer)
        return self

    # Address

    async def update_address(self, **fields) -> ShippingAddress:
        """Apply address edits; a material change retires the authorization."""
        value = self.address.update(**fields)
        await self._address_changed()
        return value

    async def set_address(self, address: ShippingAddress) -> ShippingAddress:
        value = self.address.replace_value(address)
        await self._address_changed()
        return value

    async def _address_changed(self) -> None:
        current = self.intents.current
        if current is None or current.address_fingerprint == self.address.value.fingerprint():
            return
        await self.controller.inputs_changed("shipping address changed")

    # Navigation

    async def advance(self) -> bool:
        """Continue to the next step. Returns False when the step is not complete."""
        if self.cart_emptied:
            logger.debug("Advance refused: cart is empty")
            return False
        try:
            await self.controller.advance()
        except StepTransitionError as e:
            logger.debug(f"Advance refused: {e.message}")
            return False
        return True

    async def retreat(self) -> bool:
        try:
            await self.controller.retreat()
        except StepTransitionError:
            return False
        return True

    async def go_to(self, step: StepId) -> bool:
        if self.cart_emptied and step != StepId.ADDRESS:
            logger.debug("Step jump refused: cart is empty")
            return False
        try:
            await self.controller.go_to(step)
        except StepTransitionError as e:
            logger.debug(f"Step jump refused: {e.message}")
            return False
        return True

    async def retry_authorization(self) -> PaymentFormState:
        """The retry control shown when the payment form could not be prepared."""
        if self.cart_emptied:
            return self.controller.payment_form
        try:
            return await self.controller.retry_authorization()
        except StepTransitionError:
            return self.controller.payment_form

    # Payment

    async def place_order(self, payment_method: PaymentMethodDetails) -> ConfirmationResult:
        """
        Confirm the payment and, on success, finalize the order.

        Declines are returned (and shown inline); the cart and authorization
        stay valid for another attempt.
        """
        if self.controller.current != StepId.REVIEW:
            return self._refuse("Review your order before placing it")
        if self.confirmation.in_progress or self.finalizer.in_progress or self.payment_succeeded:
            return self._refuse(ALREADY_PROCESSING_MESSAGE)
        if self.cart_emptied or not self.cart:
            return self._refuse(EMPTY_CART_MESSAGE)
        if self.controller.authorization_stale:
            await self.controller.inputs_changed("order changed before confirmation")
            return self._refuse(ORDER_CHANGED_MESSAGE)

        authorization = self.intents.current
        self.confirmation_error = None
        result = await self.confirmation.confirm(authorization, payment_method, self.address.value)
        return await self._handle_result(result)

    async def resume_after_redirect(self) -> ConfirmationResult:
        """Called when the shopper comes back from a gateway challenge."""
        if self.intents.current is None:
            return self._refuse(ORDER_CHANGED_MESSAGE)
        result = await self.confirmation.resume(self.intents.current)
        return await self._handle_result(result)

    async def _handle_result(self, result: ConfirmationResult) -> ConfirmationResult:
        if result.succeeded:
            self.payment_succeeded = True
            for step in self.controller.steps:
                step.completed = True
            self.finalization = await self.finalizer.finalize(self._build_order(result))
            self.completed = True
            logger.info(f"Checkout completed (order {self.finalization.order_id})")
        elif result.outcome == ConfirmationOutcome.REQUIRES_ACTION:
            if result.redirect_url:
                await self.navigate(result.redirect_url)
        else:
            self.confirmation_error = result.reason
        return result

    def _build_order(self, result: ConfirmationResult) -> Order:
        address = self.address.value
        return Order(
            cart=list(self.cart),
            shipping_address=address,
            billing_address=address,
            total=cart_total(self.cart),
            payment_status=PaymentStatus.PAID,
            user_id=self.customer.user_id,
            guest_email=None if self.customer.is_authenticated else (self.guest_email or self.customer.email),
            payment_id=result.payment_id or (self.intents.current.intent_id if self.intents.current else None),
        )

    def _refuse(self, reason: str) -> ConfirmationResult:
        self.confirmation_error = reason
        return ConfirmationResult(outcome=ConfirmationOutcome.FAILED, reason=reason)

    # Cart sync

    async def _on_cart_changed(self, event: str, items: List[CartItem]) -> None:
        if self.payment_succeeded:
            return
        items = valid_items(items)
        if cart_fingerprint(items) == cart_fingerprint(self.cart):
            return

        logger.info(f"Cart changed during checkout ({event}), {len(items)} line(s) now")
        self.cart = items
        self.cart_emptied = not items
        await self.controller.inputs_changed("cart emptied" if not items else "cart changed")

    # View

    def view(self) -> CheckoutView:
        controller = self.controller
        step = controller.current
        return CheckoutView(
            session_id=self.session_id,
            step=step,
            steps=[
                {
                    "id": int(s.id),
                    "title": s.title,
                    "description": s.description,
                    "completed": s.completed,
                    "current": s.id == step,
                }
                for s in controller.steps
            ],
            summary=OrderSummary.for_cart(self.cart, self.vat_rate, self.currency),
            address=self.address.value,
            address_problems=self.address.problems(),
            continue_enabled=controller.can_advance and not self.cart_emptied,
            back_enabled=controller.can_retreat and not self.payment_succeeded,
            payment_form=controller.payment_form,
            payments_available=self.payment_backend.available,
            loading={
                "address": self.address.loading,
                "authorization": self.intents.in_flight or (
                    step != StepId.ADDRESS and controller.payment_form == PaymentFormState.LOADING
                ),
                "confirmation": self.confirmation.in_progress,
                "order": self.finalizer.in_progress,
            },
            authorization_error=controller.authorization_error,
            retry_available=controller.payment_form == PaymentFormState.BLOCKED and not self.cart_emptied,
            confirmation_error=self.confirmation_error,
            place_order_enabled=(
                step == StepId.REVIEW
                and self.intents.ready
                and not self.confirmation.in_progress
                and not self.payment_succeeded
                and not self.cart_emptied
            ),
            cart_emptied=self.cart_emptied,
            completed=self.completed,
        )

    async def close(self) -> None:
        """Stop listening for cart changes and release HTTP clients."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for closer in self._closers:
            await closer.close()
        self._closers = []
