"""printsync CLI: operator tools for the fulfillment sync.

Usage:
    printsync sync-order ORDER_ID             Reconcile one order with the provider
    printsync confirm-order EXTERNAL_ID       Confirm a provider draft
    printsync generate-mockups PRODUCT_ID     Generate mockup images for a product
    printsync replay-webhook event.json       Run a saved webhook through the dispatcher
    printsync config show                     Show resolved configuration
    printsync serve                           Run the webhook/admin API
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from src.cli.output import (
    format_config,
    format_confirm_result,
    format_mockup_result,
    format_sync_result,
    format_webhook_outcome,
)
from src.fulfillment.config import FulfillmentConfig, load_config
from src.fulfillment.service import open_service
from src.utils.redaction import redact_for_logging

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="printsync",
    help="Print-on-demand fulfillment sync operator CLI",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Configuration management")
app.add_typer(config_app, name="config")

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to printsync.yaml config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """printsync CLI for the fulfillment provider sync."""
    global _config_path
    _config_path = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )


def _load() -> FulfillmentConfig:
    """Load config or exit with a readable message."""
    try:
        return load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)


def _require_configured(cfg: FulfillmentConfig) -> None:
    if not cfg.is_configured:
        console.print("[red]PRINTFUL_NOT_CONFIGURED[/red]: set PRINTFUL_API_TOKEN or api_token in printsync.yaml")
        raise typer.Exit(1)


# --- Order commands ---


@app.command("sync-order")
def sync_order(
    order_id: str = typer.Argument(help="Local order ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Reconcile a local order with the provider's current state."""
    cfg = _load()
    _require_configured(cfg)

    async def _run():
        async with open_service(cfg) as service:
            return await service.sync_order_status(order_id)

    result = asyncio.run(_run())
    console.print(format_sync_result(order_id, result, as_json=json_output))
    if not result.ok:
        raise typer.Exit(1)


@app.command("confirm-order")
def confirm_order(
    external_order_id: str = typer.Argument(help="Provider order ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Confirm a provider draft order and mark the local order processing."""
    cfg = _load()
    _require_configured(cfg)

    async def _run():
        async with open_service(cfg) as service:
            return await service.confirm_fulfillment_order(external_order_id)

    result = asyncio.run(_run())
    console.print(format_confirm_result(external_order_id, result, as_json=json_output))
    if not result.ok:
        raise typer.Exit(1)


# --- Mockups ---


@app.command("generate-mockups")
def generate_mockups(
    product_id: str = typer.Argument(help="Provider sync product ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Generate and store mockup images for one product."""
    cfg = _load()
    _require_configured(cfg)

    async def _run():
        async with open_service(cfg) as service:
            return await service.generate_mockups(product_id)

    with console.status("Generating mockups..."):
        result = asyncio.run(_run())
    console.print(format_mockup_result(product_id, result, as_json=json_output))
    if not result.success:
        raise typer.Exit(1)


# --- Webhooks ---


@app.command("replay-webhook")
def replay_webhook(
    file_path: Path = typer.Argument(help="JSON file containing one webhook body"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Run a saved webhook delivery through the dispatcher."""
    if not file_path.exists():
        console.print(f"[red]File not found:[/red] {file_path}")
        raise typer.Exit(1)
    try:
        payload = json.loads(file_path.read_text())
    except ValueError as e:
        console.print(f"[red]Invalid JSON:[/red] {e}")
        raise typer.Exit(1)

    cfg = _load()

    async def _run():
        async with open_service(cfg) as service:
            return await service.handle_webhook_event(payload)

    outcome = asyncio.run(_run())
    console.print(format_webhook_outcome(outcome, as_json=json_output))


# --- Config commands ---


@config_app.command("show")
def config_show(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Display resolved configuration (secrets masked)."""
    cfg = _load()
    data = redact_for_logging(cfg.model_dump(mode="json"))
    data["configured"] = cfg.is_configured
    console.print(format_config(data, as_json=json_output))


# --- Server ---


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
    log_level: str = typer.Option("info", "--log-level", help="uvicorn log level"),
):
    """Run the webhook receiver and admin API with uvicorn."""
    import uvicorn

    if _config_path:
        os.environ["PRINTSYNC_CONFIG_PATH"] = _config_path
    _log.info("Starting API on %s:%d", host, port)
    uvicorn.run("src.api.main:app", host=host, port=port, log_level=log_level)


if __name__ == "__main__":
    app()
