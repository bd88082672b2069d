"""
Step Controller: the Address -> Payment -> Review wizard.

Owns the current step, the per-step completion flags and the state of the
payment form. Moving from Address to Payment (or entering Payment/Review
with an authorization that no longer matches the cart and address)
refreshes the payment authorization and keeps the payment form hidden
until a fresh token is available.

Every navigation bumps ``version``. Async work captures the version it
started under and drops its result if the shopper has navigated since.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, List, Optional

from tirestore_checkout.address import AddressCollector
from tirestore_checkout.errors import AuthorizationError, StepTransitionError
from tirestore_checkout.intents import PaymentIntentManager
from tirestore_checkout.models import CartItem, CheckoutStep, StepId, default_steps

logger = logging.getLogger(__name__)

# Bound on back-to-back refreshes when inputs keep changing during a request
MAX_REFRESH_ROUNDS = 3
EMPTY_CART_MESSAGE = "Your cart is empty. Add some tires before checking out."


class PaymentFormState(str, Enum):
    """What the Payment step shows."""
    IDLE = "idle"  # not entered yet
    LOADING = "loading"  # waiting for an authorization
    READY = "ready"  # payment form can be shown
    BLOCKED = "blocked"  # authorization failed, retry offered


class StepController:
    """Wizard state machine for one checkout session."""

    def __init__(
        self,
        address: AddressCollector,
        intents: PaymentIntentManager,
        cart: Callable[[], List[CartItem]],
    ):
        self.address = address
        self.intents = intents
        self._cart = cart
        self.steps: List[CheckoutStep] = default_steps()
        self.current: StepId = StepId.ADDRESS
        self.version = 0
        self.payment_form = PaymentFormState.IDLE
        self.authorization_error: Optional[str] = None

    # Queries

    def step(self, step_id: StepId) -> CheckoutStep:
        return self.steps[int(step_id) - 1]

    def is_completed(self, step_id: StepId) -> bool:
        return self.step(step_id).completed

    @property
    def cart_empty(self) -> bool:
        return not self._cart()

    @property
    def can_advance(self) -> bool:
        """Whether the "continue" action is enabled on the current step."""
        if self.cart_empty:
            return False
        if self.current == StepId.ADDRESS:
            return self.address.is_complete and not self.intents.in_flight
        if self.current == StepId.PAYMENT:
            return self.payment_form == PaymentFormState.READY
        return False

    @property
    def can_retreat(self) -> bool:
        return self.current != StepId.ADDRESS

    @property
    def authorization_stale(self) -> bool:
        return self.intents.needs_refresh(self._cart(), self.address.value)

    # Transitions

    async def advance(self) -> StepId:
        """
        Complete the current step and move to the next one.

        Raises:
            StepTransitionError: on Review (terminal) or when the current step is invalid
        """
        if self.current == StepId.REVIEW:
            raise StepTransitionError("Review is the last step; place the order instead")
        if not self.can_advance:
            raise StepTransitionError(
                f"Step {self.step(self.current).title} is not complete",
                details={"step": int(self.current)},
            )

        self.step(self.current).completed = True
        if self.current == StepId.ADDRESS:
            await self._enter_payment()
        else:
            self._move_to(StepId.REVIEW)
        return self.current

    async def retreat(self) -> StepId:
        """Go back one step. Completion flags and collected data are kept."""
        if not self.can_retreat:
            raise StepTransitionError("Already at the first step")
        self._move_to(StepId(int(self.current) - 1))
        return self.current

    async def go_to(self, target: StepId) -> StepId:
        """
        Jump to a step from the step indicator.

        Only allowed when every earlier step is completed. Entering Review
        with a stale authorization lands on Payment instead, so a new token
        is issued before the order can be placed.
        """
        target = StepId(target)
        blocked_by = [s for s in self.steps if s.id < target and not s.completed]
        if blocked_by:
            raise StepTransitionError(
                f"Complete {blocked_by[0].title} first",
                details={"step": int(target)},
            )
        if target == self.current:
            return self.current
        if target == StepId.ADDRESS:
            self._move_to(StepId.ADDRESS)
        elif target == StepId.PAYMENT or self.authorization_stale:
            if not self.address.is_complete:
                raise StepTransitionError("Shipping address is incomplete", details={"step": 1})
            await self._enter_payment()
        else:
            self._move_to(StepId.REVIEW)
        return self.current

    async def retry_authorization(self) -> PaymentFormState:
        """Manual retry after an authorization failure."""
        if self.current == StepId.ADDRESS:
            raise StepTransitionError("Authorization is requested when entering the Payment step")
        await self._refresh(self.version)
        return self.payment_form

    async def inputs_changed(self, reason: str) -> None:
        """
        Cart or address changed underneath an issued authorization.

        Retires the authorization. If the shopper is past the Address step,
        the wizard returns to Payment and requests a new one, unless the
        cart is now empty, in which case the payment form is blocked.
        """
        if self.intents.in_flight:
            # The running refresh re-checks its inputs when it returns
            self.version += 1
            return
        if self.intents.current is not None:
            self.intents.invalidate(reason)
        if self.cart_empty:
            self._block_empty_cart()
            return
        if self.current != StepId.ADDRESS:
            await self._enter_payment()
        elif self.payment_form == PaymentFormState.BLOCKED:
            # Requested again on the next Address -> Payment transition
            self.payment_form = PaymentFormState.IDLE
            self.authorization_error = None

    # Internals

    def _move_to(self, step_id: StepId) -> None:
        self.current = step_id
        self.version += 1
        logger.debug(f"Checkout step -> {step_id.name} (v{self.version})")

    def _block_empty_cart(self) -> None:
        self.intents.invalidate("cart emptied")
        self.payment_form = PaymentFormState.BLOCKED
        self.authorization_error = EMPTY_CART_MESSAGE

    async def _enter_payment(self) -> None:
        self._move_to(StepId.PAYMENT)
        await self._refresh(self.version)

    async def _refresh(self, version: int) -> None:
        if self.cart_empty:
            self._block_empty_cart()
            return
        if self.intents.in_flight:
            # The running request re-checks its inputs when it returns
            self.payment_form = PaymentFormState.LOADING
            return

        for _ in range(MAX_REFRESH_ROUNDS):
            cart = self._cart()
            if not cart:
                self._block_empty_cart()
                return
            address = self.address.value
            if not self.intents.needs_refresh(cart, address):
                if version == self.version:
                    self.payment_form = PaymentFormState.READY
                    self.authorization_error = None
                return

            self.payment_form = PaymentFormState.LOADING
            self.authorization_error = None
            try:
                await self.intents.create_or_refresh(cart, address)
            except AuthorizationError as e:
                if self.current == StepId.ADDRESS:
                    logger.debug("Dropping authorization failure, shopper went back to Address")
                    return
                self.payment_form = PaymentFormState.BLOCKED
                self.authorization_error = e.message
                return

            if version != self.version:
                logger.debug("Authorization returned after navigation, re-checking inputs")
                if self.current == StepId.ADDRESS:
                    return
                version = self.version

        self.payment_form = PaymentFormState.BLOCKED
        self.authorization_error = "Your order changed during payment setup. Please retry."
