"""
Order Finalizer.

Runs after the gateway reports a successful payment. The payment is the
source of truth for whether the purchase happened, so a failure to record
the order is logged and left to backend reconciliation; the cart is
cleared and the shopper is sent to the confirmation view regardless.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from tirestore_checkout.api import OrderAPI
from tirestore_checkout.cart import CartStore
from tirestore_checkout.models import Order

logger = logging.getLogger(__name__)

Navigator = Callable[[str], Awaitable[None]]

ORDER_SUCCESS_ROUTE = "/order-success"


@dataclass
class FinalizationResult:
    """What finalize() did."""
    order_id: Optional[str]
    order_recorded: bool
    cart_cleared: bool
    route: str


class OrderFinalizer:
    """Records the order, clears the cart, then navigates to the success view."""

    def __init__(
        self,
        order_api: OrderAPI,
        cart_store: CartStore,
        navigate: Navigator,
        success_route: str = ORDER_SUCCESS_ROUTE,
        auth_token: Optional[str] = None,
    ):
        self.order_api = order_api
        self.cart_store = cart_store
        self.navigate = navigate
        self.success_route = success_route
        self.auth_token = auth_token
        self.in_progress = False

    async def finalize(self, order: Order) -> FinalizationResult:
        self.in_progress = True
        try:
            order_id: Optional[str] = None
            recorded = False
            try:
                order_id = await self.order_api.create_order(order, auth_token=self.auth_token)
                recorded = True
                logger.info(f"Recorded order {order_id} for payment {order.payment_id}")
            except Exception:
                logger.error(
                    f"Failed to record order for payment {order.payment_id}; "
                    f"left for reconciliation",
                    exc_info=True,
                )

            # clear() persists the empty cart and emits cart-updated
            cleared = False
            try:
                await self.cart_store.clear()
                cleared = True
            except Exception:
                logger.error("Failed to clear cart after payment", exc_info=True)

            await self.navigate(self.success_route)
            return FinalizationResult(
                order_id=order_id,
                order_recorded=recorded,
                cart_cleared=cleared,
                route=self.success_route,
            )
        finally:
            self.in_progress = False


async def enter_order_success(cart_store: CartStore) -> None:
    """The confirmation view clears the cart again; harmless if already empty."""
    if await cart_store.load():
        await cart_store.clear()
