"""
Main CLI application using Typer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, List, Optional

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.marketplace_client import MarketplaceClient
from ..adapters.mock_marketplace_client import MockMarketplaceClient
from ..adapters.payment import RecordingCompletionListener, SimulatedPaymentGateway
from ..config import AppConfig, load_config
from ..domain.exceptions import BookingError, ExternalOperationError
from ..domain.models import ChargeBreakdown
from ..domain.workflow import BookingStep, BookingWorkflow
from ..services.booking_service import BookingService
from ..services.catalog_service import CatalogService

app = typer.Typer(
    name="slotbooker",
    help="Browse host availability, price sessions and walk through bookings",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")]
MockOption = Annotated[bool, typer.Option("--mock", help="Use the bundled mock marketplace data.")]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging.")] = False,
):
    """
    slotbooker - availability & pricing engine.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _setup(config_file: Optional[Path], mock: bool) -> tuple:
    """Load config and build the booking service over the chosen client."""
    config = load_config(config_file)
    if not logging.getLogger().isEnabledFor(logging.DEBUG):
        logging.getLogger().setLevel(config.log_level)

    if mock:
        client = MockMarketplaceClient()
    else:
        client = MarketplaceClient(
            base_url=config.marketplace.base_url,
            access_token=config.marketplace.access_token,
            timeout=config.marketplace.timeout_seconds,
        )

    service = BookingService.from_config(config, client, client, client)
    return config, service


def _today(config: AppConfig):
    return pendulum.today(config.timezone).date()


def _parse_date(value: str, tz: str):
    try:
        return pendulum.from_format(value, "YYYY-MM-DD", tz=tz).date()
    except Exception as e:
        console.print(f"[red]Invalid date '{value}': {e}[/red]")
        raise typer.Exit(1)


def _print_breakdown(breakdown: ChargeBreakdown, title: str = "Charge") -> None:
    shown = breakdown.rounded()
    table = Table(title=title, show_header=False)
    table.add_column("Item", style="bold")
    table.add_column("Amount", justify="right")
    table.add_row("Session", f"{shown.base_price} {shown.currency}")
    table.add_row("Add-ons", f"{shown.add_on_total} {shown.currency}")
    table.add_row("[bold]Total[/bold]", f"[bold]{shown.total} {shown.currency}[/bold]")
    table.add_row("Platform commission", f"{shown.commission} {shown.currency}")
    table.add_row("Tax on commission", f"{shown.tax} {shown.currency}")
    table.add_row("Host payout", f"{shown.host_payout} {shown.currency}")
    console.print(table)


@app.command()
def dates(
    host: Annotated[str, typer.Argument(help="Host id")],
    start: Annotated[Optional[str], typer.Option("--start", help="Start date (YYYY-MM-DD), default today")] = None,
    days: Annotated[int, typer.Option("--days", help="Number of days to look ahead")] = 14,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    List the dates on which a host can be booked.
    """
    try:
        config, service = _setup(config_file, mock)
        today = _today(config)
        first = _parse_date(start, config.timezone) if start else today
        last = pendulum.Date(first.year, first.month, first.day).add(days=days - 1)

        found = asyncio.run(service.available_dates(host, first, last, today=today))

        if not found:
            console.print(f"[yellow]⚠ {host} has no availability between {first} and {last}.[/yellow]")
            return

        console.print(f"[bold green]✓ {len(found)} bookable date(s):[/bold green]\n")
        for day in found:
            console.print(f"  {pendulum.Date(day.year, day.month, day.day).format('dddd, DD.MM.YYYY')}")
        console.print()

    except (BookingError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def slots(
    host: Annotated[str, typer.Argument(help="Host id")],
    day: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    List bookable start times of a host on one date.
    """
    try:
        config, service = _setup(config_file, mock)
        target = _parse_date(day, config.timezone)

        found = asyncio.run(service.find_slots(host, target))

        if not found:
            console.print(f"[yellow]⚠ No slots for {host} on {target}.[/yellow]")
            return

        console.print(f"[bold green]✓ {len(found)} slot(s) on {target}:[/bold green]")
        console.print("  " + "  ".join(found))

    except (BookingError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def tiers(
    host: Annotated[str, typer.Argument(help="Host id")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Show a host's pricing tiers.
    """
    try:
        _, service = _setup(config_file, mock)
        catalog = asyncio.run(service.load_catalog(host))

        if not catalog.tiers():
            console.print(f"[yellow]{host} has no pricing tiers.[/yellow]")
            return

        table = Table(title=f"Pricing tiers of {host}", show_header=True, header_style="bold cyan")
        table.add_column("Duration", justify="right")
        table.add_column("Price", justify="right")
        table.add_column("Active")
        table.add_column("Custom")
        table.add_column("Add-ons", style="dim")

        for tier in catalog.tiers():
            duration = "free consultation" if catalog.is_free_duration(tier.duration) else f"{tier.duration} min"
            table.add_row(
                duration,
                f"{tier.price} {tier.currency}",
                "✓" if tier.is_active else "",
                "✓" if tier.is_custom else "",
                ", ".join(sorted(add_on.value for add_on in tier.included_add_ons())),
            )

        console.print()
        console.print(table)
        console.print(f"{catalog.active_count}/{catalog.max_active} tiers active\n")

    except (BookingError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def quote(
    host: Annotated[str, typer.Argument(help="Host id")],
    duration: Annotated[int, typer.Option("--duration", "-d", help="Tier duration in minutes")],
    add_on: Annotated[Optional[List[str]], typer.Option("--add-on", "-a", help="Add-on (screen_sharing, translation, recording, transcription)")] = None,
    account: Annotated[Optional[str], typer.Option("--account", help="Booking account (email or username)")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Price a session: total, commission, tax and host payout.
    """
    try:
        _, service = _setup(config_file, mock)
        breakdown = asyncio.run(service.quote(host, duration, add_on or [], account=account))
        _print_breakdown(breakdown, title=f"{duration}-minute session with {host}")

    except (BookingError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _run_wizard(workflow: BookingWorkflow, today) -> None:
    """
    Walk the workflow up to PAYMENT, prompting for each selection.

    Validation errors are shown and the same step is asked again.
    """
    while workflow.step is not BookingStep.PAYMENT:
        step = workflow.step
        try:
            if step is BookingStep.HOST_INTRO:
                console.print(f"[bold]1️⃣  Host[/bold]: {workflow.offer.host_id}")
            elif step is BookingStep.SELECT_DATE:
                start = pendulum.Date(today.year, today.month, today.day)
                options = workflow.resolver.bookable_dates(start, start.add(days=13), workflow.offer.rules, today=today)
                if not options:
                    console.print("[yellow]⚠ No availability in the next two weeks.[/yellow]")
                    raise typer.Exit(1)
                console.print("\n[bold]2️⃣  Date[/bold]: " + ", ".join(day.isoformat() for day in options))
                workflow.select_date(typer.prompt("→ Date (YYYY-MM-DD)", default=options[0].isoformat()))
            elif step is BookingStep.SELECT_TIME:
                available = workflow.available_slots()
                console.print("\n[bold]3️⃣  Time[/bold]: " + "  ".join(available))
                workflow.select_time(typer.prompt("→ Time (HH:MM)", default=available[0]))
                tiers = workflow.available_tiers()
                if not tiers:
                    console.print("[yellow]⚠ This host offers no bookable durations.[/yellow]")
                    raise typer.Exit(1)
                console.print("   Durations: " + ", ".join(f"{t.duration} min ({t.price} {t.currency})" for t in tiers))
                workflow.select_tier(typer.prompt("→ Duration (minutes)", default=tiers[0].duration, type=int))
            elif step is BookingStep.SELECT_SERVICES:
                console.print("\n[bold]4️⃣  Services[/bold]")
                for add_on in sorted(workflow.offer.services.enabled(), key=lambda a: a.value):
                    if not workflow.gates.allows(add_on):
                        continue
                    chosen = add_on in workflow.selection.selected_add_ons
                    workflow.set_add_on(add_on, typer.confirm(f"→ {add_on.value}?", default=chosen))
            workflow.advance()
        except BookingError as e:
            console.print(f"[red]{e}[/red]")


@app.command()
def book(
    host: Annotated[str, typer.Argument(help="Host id")],
    account: Annotated[Optional[str], typer.Option("--account", help="Booking account (email or username)")] = None,
    decline: Annotated[bool, typer.Option("--decline", help="Make the simulated payment fail.")] = False,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Book a session interactively (payment is simulated).
    """
    try:
        config, service = _setup(config_file, mock)
        today = _today(config)
        workflow = asyncio.run(service.start_booking(host, account=account, today=today))

        console.print("\n" + "="*60)
        console.print("[bold cyan]📅 slotbooker - Book a session[/bold cyan]")
        console.print("="*60 + "\n")

        _run_wizard(workflow, today)

        _print_breakdown(workflow.quote(), title="5️⃣  Payment")
        if not typer.confirm("→ Pay now?", default=True):
            workflow.cancel()
            workflow.close()
            console.print("[yellow]Booking cancelled.[/yellow]")
            return

        gateway = SimulatedPaymentGateway(decline_reason="Card declined" if decline else None)
        listener = RecordingCompletionListener()
        while True:
            try:
                event = asyncio.run(workflow.pay(gateway, listener))
                break
            except ExternalOperationError as e:
                console.print(f"[red]✗ Payment failed: {e}[/red]")
                if not typer.confirm("→ Retry payment?", default=False):
                    workflow.cancel()
                    workflow.close()
                    console.print("[yellow]Booking cancelled.[/yellow]")
                    raise typer.Exit(1)

        console.print(Panel.fit(
            f"[bold green]✓ Booking confirmed![/bold green]\n\n"
            f"[bold]Reference:[/bold] {event.booking_reference}\n"
            f"[bold]When:[/bold] {event.date} {event.time.strftime('%H:%M')} ({event.duration} min)\n"
            f"[bold]Total:[/bold] {event.breakdown.rounded().total} {event.breakdown.currency}",
            title="✓ Success"
        ))
        workflow.close()

    except (BookingError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def activate(
    host: Annotated[str, typer.Argument(help="Host id")],
    duration: Annotated[int, typer.Argument(help="Tier duration in minutes (0 = free consultation)")],
    price: Annotated[Optional[str], typer.Option("--price", "-p", help="Price; omit to keep the stored price")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Activate (or update) a pricing tier of a host.
    """
    try:
        _, service = _setup(config_file, mock)
        catalog_service = CatalogService(service.pricing_source, service)
        tier = asyncio.run(catalog_service.activate(host, duration, price))
        console.print(f"[green]✓ {tier.duration}-minute tier active at {tier.price} {tier.currency}[/green]")

    except (BookingError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def deactivate(
    host: Annotated[str, typer.Argument(help="Host id")],
    duration: Annotated[int, typer.Argument(help="Tier duration in minutes")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Deactivate a pricing tier; its price is kept for later reactivation.
    """
    try:
        _, service = _setup(config_file, mock)
        catalog_service = CatalogService(service.pricing_source, service)
        asyncio.run(catalog_service.deactivate(host, duration))
        console.print(f"[green]✓ {duration}-minute tier deactivated[/green]")

    except (BookingError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def include_add_on(
    host: Annotated[str, typer.Argument(help="Host id")],
    service_name: Annotated[str, typer.Argument(metavar="ADD_ON", help="screen_sharing, translation, recording or transcription")],
    off: Annotated[bool, typer.Option("--off", help="Remove the add-on instead of including it")] = False,
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Include (or remove) an add-on on all active tiers of a host.
    """
    try:
        _, service = _setup(config_file, mock)
        catalog_service = CatalogService(service.pricing_source, service)
        changed = asyncio.run(catalog_service.set_add_on_inclusion(host, service_name, not off))
        console.print(f"[green]✓ Updated {len(changed)} active tier(s)[/green]")

    except (BookingError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def test_connection(
    config_file: ConfigOption = None,
):
    """
    Test the connection to the marketplace API.
    """
    try:
        config = load_config(config_file)
        client = MarketplaceClient(
            base_url=config.marketplace.base_url,
            access_token=config.marketplace.access_token,
            timeout=config.marketplace.timeout_seconds,
        )

        console.print(f"\n[bold]Testing {config.marketplace.base_url}...[/bold]\n")
        client.test_connection()
        console.print(Panel.fit(
            f"[bold green]✓ Marketplace API reachable[/bold green]\n\n"
            f"[bold]URL:[/bold] {config.marketplace.base_url}",
            title="✓ Connection test"
        ))
        console.print()

    except (BookingError, FileNotFoundError, ValueError) as e:
        console.print(f"\n[bold red]✗ Error:[/bold red] {e}\n")
        raise typer.Exit(1)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]slotbooker[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
