"""
Tirestore command line.

Usage:
    tirestore [OPTIONS] COMMAND [ARGS]...

    tirestore cart add 42 "Pilot Sport 5" --brand Michelin --size 225/45R17 --price 129.95
    tirestore cart show
    tirestore checkout --email shopper@example.com
"""
from __future__ import annotations

import asyncio
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.progress import Progress
from rich.table import Table

from tirestore_checkout.cart import CartStore
from tirestore_checkout.config import CheckoutSettings, load_settings
from tirestore_checkout.errors import EmptyCartError
from tirestore_checkout.finalizer import enter_order_success
from tirestore_checkout.logging_config import setup_logging
from tirestore_checkout.models import (
    CartItem,
    ConfirmationOutcome,
    CustomerIdentity,
    OrderSummary,
    PaymentMethodDetails,
    StepId,
)
from tirestore_checkout.orchestrator import CheckoutSession
from tirestore_checkout.steps import PaymentFormState
from tirestore_checkout.storage import StorageBackend, create_storage

console = Console()

DEFAULT_STORAGE_FILE = Path.home() / ".tirestore" / "storage.json"

ADDRESS_PROMPTS = (
    ("name", "Full name"),
    ("line1", "Street and number"),
    ("line2", "Address line 2"),
    ("city", "City"),
    ("state", "State / province"),
    ("postal_code", "Postal code"),
    ("country", "Country code"),
)


def _open_storage(ctx) -> StorageBackend:
    settings: CheckoutSettings = ctx.obj["settings"]
    return create_storage(settings.redis_url or None, path=ctx.obj["storage_file"])


def _money(amount: Decimal, currency: str) -> str:
    symbol = "€" if currency == "EUR" else f"{currency} "
    return f"{symbol}{amount:.2f}"


def _render_cart(items: List[CartItem], summary: OrderSummary) -> None:
    table = Table(title="Cart")
    table.add_column("ID", style="dim")
    table.add_column("Tire")
    table.add_column("Size")
    table.add_column("Qty", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Line total", justify="right")

    for item in items:
        table.add_row(
            str(item.id),
            f"{item.brand} {item.name}".strip(),
            item.size,
            str(item.quantity),
            _money(item.unit_price, summary.currency),
            _money(item.line_total, summary.currency),
        )
    console.print(table)
    console.print("  Shipping: [green]free[/green]")
    console.print(f"  Incl. VAT: {_money(summary.vat, summary.currency)}")
    console.print(f"  [bold]Total: {_money(summary.total, summary.currency)}[/bold]\n")


@click.group()
@click.version_option(package_name="tirestore-checkout", message="%(prog)s %(version)s")
@click.option("--api-url", envvar="TIRESTORE_API_BASE_URL", help="Backend API base URL")
@click.option(
    "--storage-file",
    envvar="TIRESTORE_STORAGE_FILE",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_STORAGE_FILE,
    show_default=True,
    help="Cart storage file (ignored when TIRESTORE_REDIS_URL is set)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, api_url: str | None, storage_file: Path, verbose: bool):
    """Tirestore checkout - cart and checkout from the command line."""
    ctx.ensure_object(dict)
    setup_logging("DEBUG" if verbose else "WARNING")

    settings = load_settings()
    if api_url:
        settings = settings.model_copy(update={"api_base_url": api_url.rstrip("/")})

    ctx.obj["settings"] = settings
    ctx.obj["storage_file"] = storage_file
    ctx.obj["verbose"] = verbose


@cli.command()
@click.pass_context
def status(ctx):
    """Show current configuration."""
    settings: CheckoutSettings = ctx.obj["settings"]

    console.print("\n[bold blue]Tirestore Checkout Status[/bold blue]\n")
    console.print(f"Environment: [cyan]{settings.environment}[/cyan]")
    console.print(f"API URL: [cyan]{settings.api_base_url}[/cyan]")

    key = settings.stripe_publishable_key
    if settings.payments_configured:
        masked = key[:8] + "..." + key[-4:] if len(key) > 12 else "***"
        console.print(f"Payments: [green]enabled[/green] ({masked})")
    else:
        console.print("Payments: [yellow]unavailable (no publishable key)[/yellow]")

    if settings.redis_url:
        console.print("Cart storage: [cyan]redis[/cyan]")
    else:
        console.print(f"Cart storage: [cyan]{ctx.obj['storage_file']}[/cyan]")
    countries = ", ".join(settings.allowed_countries) or "any"
    console.print(f"Shipping countries: {countries}")
    console.print(f"Currency: {settings.currency} (VAT {settings.vat_rate * 100:.0f}% included)")
    console.print()


# Cart


@cli.group()
def cart():
    """Cart commands."""
    pass


async def _with_cart(ctx, action):
    backend = _open_storage(ctx)
    settings: CheckoutSettings = ctx.obj["settings"]
    try:
        store = CartStore(backend.context(), key=settings.cart_storage_key)
        return await action(store)
    finally:
        await backend.close()


async def _show(store: CartStore, settings: CheckoutSettings) -> None:
    items = await store.load()
    if not items:
        console.print("[yellow]Your cart is empty[/yellow]")
        return
    _render_cart(items, OrderSummary.for_cart(items, settings.vat_rate, settings.currency))


@cart.command("show")
@click.pass_context
def cart_show(ctx):
    """Show the cart and its total."""
    asyncio.run(_with_cart(ctx, lambda store: _show(store, ctx.obj["settings"])))


@cart.command("add")
@click.argument("item_id", type=int)
@click.argument("name")
@click.option("--brand", default="", help="Tire brand")
@click.option("--size", default="", help="Tire size, e.g. 225/45R17")
@click.option("--price", required=True, type=Decimal, help="Unit price including VAT")
@click.option("--quantity", default=1, type=click.IntRange(min=1), help="Quantity (default: 1)")
@click.pass_context
def cart_add(ctx, item_id: int, name: str, brand: str, size: str, price: Decimal, quantity: int):
    """Add a tire to the cart."""
    item = CartItem(id=item_id, name=name, brand=brand, size=size, unit_price=price, quantity=quantity)

    async def action(store: CartStore):
        await store.add_item(item)
        return await store.item_count()

    count = asyncio.run(_with_cart(ctx, action))
    console.print(f"[green]✓ Added {quantity} x {name}[/green] ({count} item(s) in cart)")


@cart.command("update")
@click.argument("item_id", type=int)
@click.option("--size", default="", help="Tire size of the line")
@click.option("--delta", required=True, type=int, help="Quantity change, e.g. 1 or -1")
@click.pass_context
def cart_update(ctx, item_id: int, size: str, delta: int):
    """Change the quantity of a cart line."""

    async def action(store: CartStore):
        await store.update_quantity(item_id, size, delta)
        await _show(store, ctx.obj["settings"])

    asyncio.run(_with_cart(ctx, action))


@cart.command("remove")
@click.argument("item_id", type=int)
@click.option("--size", default="", help="Tire size of the line")
@click.pass_context
def cart_remove(ctx, item_id: int, size: str):
    """Remove a line from the cart."""

    async def action(store: CartStore):
        before = len(await store.load())
        items = await store.remove_item(item_id, size)
        return before - len(items)

    removed = asyncio.run(_with_cart(ctx, action))
    if removed:
        console.print(f"[green]✓ Removed item {item_id}[/green]")
    else:
        console.print(f"[yellow]Item {item_id} is not in the cart[/yellow]")


@cart.command("clear")
@click.confirmation_option(prompt="Empty the cart?")
@click.pass_context
def cart_clear(ctx):
    """Empty the cart."""

    async def action(store: CartStore):
        await store.clear()

    asyncio.run(_with_cart(ctx, action))
    console.print("[green]✓ Cart cleared[/green]")


# Checkout


def _prompt_address(session: CheckoutSession) -> dict:
    current = session.address.value
    problems = set(session.address.problems())
    fields = {}
    for name, label in ADDRESS_PROMPTS:
        default = getattr(current, name) or ""
        if name in problems and default:
            label = f"{label} [not accepted]"
        value = click.prompt(label, default=default, show_default=bool(default)).strip()
        if name in ("line2", "state"):
            value = value or None
        fields[name] = value
    return fields


async def _collect_address(session: CheckoutSession) -> bool:
    console.print("\n[bold]1. Shipping information[/bold]")
    while True:
        await session.update_address(**_prompt_address(session))
        if await session.advance():
            return True
        view = session.view()
        if view.cart_emptied:
            return False
        console.print(f"[red]Please check: {', '.join(view.address_problems)}[/red]")


async def _prepare_payment(session: CheckoutSession) -> bool:
    console.print("\n[bold]2. Payment method[/bold]")
    while True:
        view = session.view()
        if view.payment_form == PaymentFormState.READY:
            return await session.advance()
        if view.cart_emptied:
            return False
        console.print(f"[red]{view.authorization_error or 'Payment could not be prepared'}[/red]")
        if not click.confirm("Retry?", default=True):
            return False
        with Progress() as progress:
            task = progress.add_task("Preparing payment...", total=None)
            await session.retry_authorization()
            progress.update(task, completed=True)


async def _place_order(session: CheckoutSession, payment_method: str) -> bool:
    console.print("\n[bold]3. Review & place order[/bold]")
    view = session.view()
    _render_cart(session.cart, view.summary)
    address = view.address
    console.print(f"Ship to: {address.name}, {address.line1}, {address.postal_code} {address.city}, {address.country}")
    if not view.payments_available:
        console.print("[yellow]Payments are currently unavailable.[/yellow]")

    while True:
        if not click.confirm("Place order?", default=True):
            return False
        method_id = click.prompt("Payment method", default=payment_method)
        with Progress() as progress:
            task = progress.add_task("Processing payment...", total=None)
            result = await session.place_order(PaymentMethodDetails(type="card", data={"id": method_id}))
            progress.update(task, completed=True)

        if result.outcome == ConfirmationOutcome.REQUIRES_ACTION:
            click.prompt("Complete the verification in your browser, then press Enter", default="", show_default=False)
            result = await session.resume_after_redirect()

        if result.succeeded:
            return True
        console.print(f"[red]{result.reason}[/red]")
        if session.controller.current != StepId.REVIEW:
            # The order changed and the payment step was re-entered
            if not await _prepare_payment(session):
                return False


async def _run_checkout(
    ctx,
    customer: Optional[CustomerIdentity],
    guest_email: Optional[str],
    payment_method: str,
) -> int:
    settings: CheckoutSettings = ctx.obj["settings"]
    backend = _open_storage(ctx)
    session: Optional[CheckoutSession] = None

    async def navigate(route: str) -> None:
        console.print(f"[dim]→ {route}[/dim]")
        if route == settings.order_success_route and session is not None:
            await enter_order_success(session.cart_store)

    session = CheckoutSession.create(
        settings,
        backend.context(),
        navigate,
        customer=customer,
        guest_email=guest_email,
    )
    try:
        try:
            await session.start()
        except EmptyCartError as e:
            console.print(f"[yellow]{e.message}[/yellow]")
            return 1

        _render_cart(session.cart, session.view().summary)
        if not await _collect_address(session):
            console.print("[yellow]Checkout cancelled[/yellow]")
            return 1
        if not await _prepare_payment(session):
            console.print("[yellow]Checkout cancelled[/yellow]")
            return 1
        if not await _place_order(session, payment_method):
            console.print("[yellow]Order not placed[/yellow]")
            return 1

        finalization = session.finalization
        console.print("\n[green]✓ Payment successful, thank you for your order![/green]")
        if finalization and finalization.order_id:
            console.print(f"  Order: [cyan]{finalization.order_id}[/cyan]")
        return 0
    finally:
        await session.close()
        await backend.close()


@cli.command()
@click.option("--email", help="Email address (guest checkout)")
@click.option("--user-id", help="Customer id (signed-in checkout)")
@click.option("--name", help="Customer name (signed-in checkout)")
@click.option("--token", envvar="TIRESTORE_AUTH_TOKEN", help="Auth token (signed-in checkout)")
@click.option("--payment-method", default="pm_card_visa", show_default=True, help="Gateway payment method id")
@click.pass_context
def checkout(
    ctx,
    email: str | None,
    user_id: str | None,
    name: str | None,
    token: str | None,
    payment_method: str,
):
    """Check out the current cart."""
    customer = None
    if token:
        customer = CustomerIdentity(user_id=user_id, email=email, name=name, auth_token=token)

    console.print("\n[bold blue]Checkout[/bold blue]\n")
    code = asyncio.run(_run_checkout(ctx, customer, None if customer else email, payment_method))
    ctx.exit(code)


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
