"""
Command-line interface for the Sales Tax Service.

Provides subcommands to run the HTTP API, calculate tax for an order
file, and inspect the jurisdiction rate table.
"""

from __future__ import annotations

import argparse
import json
import sys
from decimal import InvalidOperation
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box
from rich.markup import escape

from tax_service.calculator import (
    OrderRequest,
    TaxResolutionError,
    calculate_tax,
)
from tax_service.config import load_settings
from tax_service.log import setup_logging
from tax_service.rates import JurisdictionIndex, RateTableError

console = Console()


def _load_index(path: str) -> JurisdictionIndex:
    try:
        return JurisdictionIndex.from_csv(path)
    except RateTableError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


def _load_order(path: str) -> OrderRequest:
    order_path = Path(path)
    if not order_path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        sys.exit(1)

    try:
        with open(order_path, encoding="utf-8") as f:
            return OrderRequest.from_dict(json.load(f))
    except KeyError as e:
        console.print(f"[red]Order is missing field {e}[/red]")
    except (ValueError, TypeError, InvalidOperation) as e:
        console.print(f"[red]Invalid order file {path}[/red]")
        console.print(f"[red]{escape(str(e))}[/red]")
    sys.exit(1)


def _pct(rate: float) -> str:
    return f"{rate:.3f}%"


# -----------------------------------------------------------------------
# Subcommand: serve
# -----------------------------------------------------------------------


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the HTTP API under uvicorn."""
    import uvicorn

    from tax_service.api import create_app

    settings = load_settings()
    index = _load_index(args.rates or settings.rates_path)
    app = create_app(settings, index=index)
    uvicorn.run(
        app,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log_level.lower(),
    )


# -----------------------------------------------------------------------
# Subcommand: calculate
# -----------------------------------------------------------------------


def cmd_calculate(args: argparse.Namespace) -> None:
    """Calculate sales tax for an order stored as JSON."""
    index = _load_index(args.rates or load_settings().rates_path)
    order = _load_order(args.order)

    try:
        result = calculate_tax(order, index)
    except TaxResolutionError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    body = result.to_dict()
    breakdown = body["breakdown"]

    table = Table(title="Tax Breakdown", box=box.ROUNDED)
    table.add_column("Component")
    table.add_column("Tax", justify="right", style="bold")
    table.add_row("State", f"${breakdown['stateTax']}")
    table.add_row("County", f"${breakdown['countyTax']}")
    table.add_row("City", f"${breakdown['cityTax']}")
    table.add_row("Special", f"${breakdown['specialTax']}")
    console.print(table)

    console.print(
        Panel(
            f"[bold]Tax Region:[/bold] {body['taxRegion']}\n"
            f"[bold]Sourcing:[/bold] {order.sourcing.value}\n"
            f"[bold]Delivery:[/bold] {body['deliveryMethod'] or 'N/A'}\n"
            f"[bold]Products:[/bold] {len(order.products)}\n"
            f"[bold]Total Price:[/bold] ${body['totalPrice']}\n"
            f"[bold]Total Tax:[/bold] ${body['totalTax']}\n"
            f"[bold]Final Total:[/bold] ${body['finalTotal']}\n"
            f"[bold]Exempt:[/bold] {'Yes' if order.is_tax_exempt else 'No'}",
            title="Order Tax",
            border_style="blue",
        )
    )

    if args.export_json:
        with open(args.export_json, "w", encoding="utf-8") as f:
            json.dump(body, f, indent=2)
        console.print(f"[green]JSON exported to {args.export_json}[/green]")


# -----------------------------------------------------------------------
# Subcommand: lookup
# -----------------------------------------------------------------------


def cmd_lookup(args: argparse.Namespace) -> None:
    """Show the jurisdiction for a ZIP code or every ZIP in a state."""
    if not args.zip and not args.state:
        console.print("[red]Provide --zip or --state[/red]")
        sys.exit(1)

    index = _load_index(args.rates or load_settings().rates_path)

    if args.zip:
        record = index.lookup(args.zip)
        if record is None:
            console.print(f"[red]Unknown ZIP code: {args.zip}[/red]")
            sys.exit(1)

        console.print(
            Panel(
                f"[bold]State:[/bold] {record.state_code}\n"
                f"[bold]Region:[/bold] {record.region_name}\n"
                f"[bold]Combined Rate:[/bold] {_pct(record.combined_rate)}\n"
                f"[bold]State Rate:[/bold] {_pct(record.state_rate)}\n"
                f"[bold]County Rate:[/bold] {_pct(record.county_rate)}\n"
                f"[bold]City Rate:[/bold] {_pct(record.city_rate)}\n"
                f"[bold]Special Rate:[/bold] {_pct(record.special_rate)}",
                title=f"ZIP {args.zip}",
                border_style="cyan",
            )
        )
        return

    records = index.for_state(args.state)
    if not records:
        console.print(f"[red]No jurisdictions for state: {args.state}[/red]")
        sys.exit(1)

    table = Table(title=f"Jurisdictions - {args.state}", box=box.ROUNDED)
    table.add_column("ZIP", style="bold")
    table.add_column("Region")
    table.add_column("State", justify="right")
    table.add_column("County", justify="right")
    table.add_column("City", justify="right")
    table.add_column("Special", justify="right")
    table.add_column("Combined", justify="right")

    for zip_code, record in records.items():
        table.add_row(
            zip_code,
            record.region_name,
            _pct(record.state_rate),
            _pct(record.county_rate),
            _pct(record.city_rate),
            _pct(record.special_rate),
            _pct(record.combined_rate),
        )
    console.print(table)


# -----------------------------------------------------------------------
# Argument parser
# -----------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tax-service",
        description="Sales Tax Service - ZIP code based order tax calculation",
    )
    parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve
    serve_p = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_p.add_argument("--host", help="Bind address")
    serve_p.add_argument("--port", type=int, help="Bind port")
    serve_p.add_argument("--rates", help="Rate table CSV")
    serve_p.set_defaults(func=cmd_serve)

    # calculate
    calc_p = subparsers.add_parser("calculate", help="Calculate tax for an order")
    calc_p.add_argument("--order", "-o", required=True, help="JSON order file")
    calc_p.add_argument("--rates", help="Rate table CSV")
    calc_p.add_argument("--export-json", help="Export the breakdown to JSON file")
    calc_p.set_defaults(func=cmd_calculate)

    # lookup
    lookup_p = subparsers.add_parser("lookup", help="Inspect the rate table")
    lookup_p.add_argument("--zip", "-z", help="ZIP code to look up")
    lookup_p.add_argument("--state", "-s", help="State code or name to list")
    lookup_p.add_argument("--rates", help="Rate table CSV")
    lookup_p.set_defaults(func=cmd_lookup)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    setup_logging(args.log_level or load_settings().log_level, console=console)
    args.func(args)
