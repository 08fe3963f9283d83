"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path

import typer
from bleak import BleakScanner

from fognode.api import FogNode
from fognode.core.config_loader import LoadedConfig, load_config
from fognode.core.errors import FognodeError
from fognode.core.model import Advertisement
from fognode.devices.registry import best_recognizer, build_recognizers
from fognode.transports.peripheral import advertisement_from_bleak

app = typer.Typer(help="BLE fog-node gateway for sensor and actuator peripherals")

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-28s | %(message)s"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT, force=True)


def _load(config: Path | None) -> LoadedConfig:
    loaded = load_config(config)
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return loaded


async def _serve(node: FogNode) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    await node.serve(stop)


async def discover_advertisements(timeout_s: float, adapter: str | None) -> list[Advertisement]:
    kwargs = {"adapter": adapter} if adapter else {}
    found = await BleakScanner.discover(timeout=timeout_s, return_adv=True, **kwargs)
    return [advertisement_from_bleak(device, data) for device, data in found.values()]


@app.command("run")
def run_gateway(
    config: Path | None = typer.Option(None, "--config", help="Path to config YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Scan, connect and serve the REST API until interrupted."""
    _configure_logging(verbose)
    try:
        loaded = _load(config)
        asyncio.run(_serve(FogNode(loaded.config)))
    except FognodeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("devices")
def list_devices(
    timeout: float = typer.Option(5.0, "--timeout", help="Scan duration in seconds"),
    config: Path | None = typer.Option(None, "--config", help="Path to config YAML"),
) -> None:
    """List nearby BLE peripherals and the device variant they match."""
    try:
        loaded = _load(config)
        recognizers = build_recognizers(loaded.config)
        advertisements = asyncio.run(discover_advertisements(timeout, loaded.config.ble.adapter))
        if not advertisements:
            typer.echo("No BLE peripherals found")
            return

        for adv in advertisements:
            recognizer = best_recognizer(adv, recognizers)
            matched = recognizer.variant if recognizer else "<no-match>"
            typer.echo(f"{adv.address} {adv.name or adv.local_name or '<unknown>'} -> {matched}")
    except FognodeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("config")
def show_config(
    config: Path | None = typer.Option(None, "--config", help="Path to config YAML"),
) -> None:
    """Print the effective configuration."""
    try:
        loaded = _load(config)
        cfg = loaded.config
        typer.echo(f"Source: {loaded.source or '<defaults>'}")
        typer.echo(f"Server: {cfg.server.host}:{cfg.server.port}")
        typer.echo(
            f"BLE: scan_period_s={cfg.ble.scan_period_s} mtu={cfg.ble.mtu} "
            f"action_settle_s={cfg.ble.action_settle_s} adapter={cfg.ble.adapter or '<default>'}"
        )
        if cfg.device_service:
            typer.echo(f"Device service: {cfg.device_service.url}")
        else:
            typer.echo("Device service: <disabled>")
        for entry in cfg.devices:
            names = ", ".join(entry.match.name_contains) or "-"
            prefixes = ", ".join(entry.match.address_prefix) or "-"
            typer.echo(f"  {entry.variant}: name_contains=[{names}] address_prefix=[{prefixes}]")
    except FognodeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
