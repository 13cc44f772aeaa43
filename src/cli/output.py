"""CLI output formatters for Rich panels and JSON.

Provides human-readable Rich output (default) and machine-parseable JSON
output (--json flag). All formatting goes through these functions so the
CLI commands stay clean.
"""

import json
from typing import Any

from pydantic import BaseModel
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.fulfillment.models import (
    ConfirmOrderResult,
    MockupGenerationResult,
    SyncOrderResult,
    WebhookOutcome,
)

console = Console()

# Status color map for local and provider statuses
STATUS_COLORS = {
    "pending": "yellow",
    "draft": "yellow",
    "processing": "blue",
    "inprocess": "blue",
    "shipped": "green",
    "fulfilled": "green",
    "delivered": "green",
    "cancelled": "dim",
    "canceled": "dim",
    "fulfillment_failed": "red",
    "failed": "red",
}


def _render(renderable: Any) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def _status(value: str | None) -> str:
    if not value:
        return "—"
    color = STATUS_COLORS.get(value, "white")
    return f"[{color}]{value}[/{color}]"


def _error_lines(error_code: str | None, error: str | None) -> list[str]:
    return [f"[bold red]Error:[/bold red] {error_code or '—'}: {error or 'unknown error'}"]


def _as_json(model: BaseModel) -> str:
    return model.model_dump_json(indent=2)


def format_sync_result(order_id: str, result: SyncOrderResult, as_json: bool = False) -> str:
    """Format the result of a manual order sync.

    Args:
        order_id: Local order that was synced.
        result: Result from FulfillmentService.sync_order_status.
        as_json: If True, return JSON string instead of a Rich panel.

    Returns:
        Formatted string output.
    """
    if as_json:
        return _as_json(result)

    lines = [
        f"[bold]Order:[/bold]           {order_id}",
        f"[bold]Provider status:[/bold] {_status(result.provider_status)}",
    ]
    if not result.ok:
        lines.extend(_error_lines(result.error_code, result.error))
        return _render(Panel("\n".join(lines), title="Order Sync", border_style="red"))

    if not result.updated:
        lines.append("[dim]Already in sync, nothing written.[/dim]")
        return _render(Panel("\n".join(lines), title="Order Sync", border_style="cyan"))

    table = Table(show_header=True, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("New value")
    for field, value in (result.updates or {}).items():
        table.add_row(field, _status(value) if field == "status" else str(value))
    panel = Panel("\n".join(lines), title="Order Sync", border_style="green")
    return _render(panel) + _render(table)


def format_confirm_result(
    external_order_id: str, result: ConfirmOrderResult, as_json: bool = False
) -> str:
    """Format the result of a draft confirmation."""
    if as_json:
        return _as_json(result)

    lines = [
        f"[bold]Provider order:[/bold]  {external_order_id}",
        f"[bold]Provider status:[/bold] {_status(result.provider_status)}",
    ]
    if not result.ok:
        lines.extend(_error_lines(result.error_code, result.error))
        border = "red"
    else:
        lines.append("[green]Confirmed.[/green]")
        border = "green"
    if result.warning:
        lines.append(f"[bold yellow]Warning:[/bold yellow] {result.warning}")
        border = "yellow"
    return _render(Panel("\n".join(lines), title="Confirm Order", border_style=border))


def format_mockup_result(
    product_id: str, result: MockupGenerationResult, as_json: bool = False
) -> str:
    """Format the result of mockup generation."""
    if as_json:
        return _as_json(result)

    lines = [f"[bold]Product:[/bold] {product_id}"]
    if result.success:
        lines.append(f"[bold]Images:[/bold]  [green]{result.count or 0}[/green] stored")
        border = "green"
    else:
        lines.extend(_error_lines(result.error_code, result.error))
        border = "red"
    return _render(Panel("\n".join(lines), title="Mockups", border_style=border))


def format_webhook_outcome(outcome: WebhookOutcome, as_json: bool = False) -> str:
    """Format what the dispatcher did with a replayed event."""
    if as_json:
        return _as_json(outcome)

    lines = [
        f"[bold]Event:[/bold]   {outcome.event_type}",
        f"[bold]Handled:[/bold] {'yes' if outcome.handled else 'no'}",
        f"[bold]Order:[/bold]   {outcome.order_id or '—'}",
    ]
    if outcome.updates:
        for field, value in outcome.updates.items():
            lines.append(f"  {field}: {value}")
    if outcome.reason:
        lines.append(f"[dim]{outcome.reason}[/dim]")
    border = "green" if outcome.handled else "yellow"
    return _render(Panel("\n".join(lines), title="Webhook Replay", border_style=border))


def format_config(config: dict[str, Any], as_json: bool = False) -> str:
    """Format a (redacted) configuration dict."""
    if as_json:
        return json.dumps(config, indent=2, default=str)

    lines: list[str] = []
    for key, value in config.items():
        if isinstance(value, dict):
            lines.append(f"\n[bold]{key}:[/bold]")
            for sub_key, sub_value in value.items():
                lines.append(f"  {sub_key}: {sub_value}")
        else:
            lines.append(f"[bold]{key}:[/bold] {value if value is not None else '—'}")
    return _render("\n".join(lines).lstrip("\n"))
