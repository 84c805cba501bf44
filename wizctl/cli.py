"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import NoReturn, TypeVar

import typer

from wizctl.core.errors import TransportError, WizctlError
from wizctl.core.light import WizLight
from wizctl.core.model import DEFAULT_RETRY_COUNT, DEFAULT_TIMEOUT_MS, ConnectionOptions, LightProperties
from wizctl.core.options import DEFAULT_PORT_SENTINEL, build_options
from wizctl.core.presets import load_presets

T = TypeVar("T")

DEFAULT_COLOR = "white"
DEFAULT_DIMMING = 80

app = typer.Typer(help="Control WiZ-style smart bulbs over their JSON/UDP pilot protocol")

IP_ARGUMENT = typer.Argument(None, envvar="WIZCTL_IP", help="IP address of the bulb", show_default=False)
PORT_OPTION = typer.Option(
    DEFAULT_PORT_SENTINEL, "--port", envvar="WIZCTL_PORT", help="UDP port (-1 selects 38899)"
)
TIMEOUT_OPTION = typer.Option(
    DEFAULT_TIMEOUT_MS, "--timeout-ms", envvar="WIZCTL_TIMEOUT_MS", help="Per-attempt reply timeout"
)
RETRIES_OPTION = typer.Option(
    DEFAULT_RETRY_COUNT, "--retries", envvar="WIZCTL_RETRIES", help="Total attempts per request"
)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run(options: ConnectionOptions, action: Callable[[WizLight], Awaitable[T]]) -> T:
    async def _session() -> T:
        light = WizLight.from_options(options)
        try:
            return await action(light)
        finally:
            light.shutdown()

    return asyncio.run(_session())


def _fail(exc: WizctlError, options: ConnectionOptions | None) -> NoReturn:
    typer.echo(f"Error: {exc}", err=True)
    if isinstance(exc, TransportError) and options is not None:
        typer.echo("Troubleshooting tips:", err=True)
        typer.echo(f"1. Check if the IP address is correct: {options.ip}", err=True)
        typer.echo(f"2. Check if the port is correct: {options.port}", err=True)
        typer.echo("3. Ensure the light is powered on and connected to WiFi", err=True)
    raise typer.Exit(code=1) from None


@app.command("on")
def turn_on(
    ip: str | None = IP_ARGUMENT,
    port: int = PORT_OPTION,
    timeout_ms: int = TIMEOUT_OPTION,
    retries: int = RETRIES_OPTION,
) -> None:
    """Turn the light on."""
    _switch(True, ip, port, timeout_ms, retries)


@app.command("off")
def turn_off(
    ip: str | None = IP_ARGUMENT,
    port: int = PORT_OPTION,
    timeout_ms: int = TIMEOUT_OPTION,
    retries: int = RETRIES_OPTION,
) -> None:
    """Turn the light off."""
    _switch(False, ip, port, timeout_ms, retries)


def _switch(on: bool, ip: str | None, port: int, timeout_ms: int, retries: int) -> None:
    label = "ON" if on else "OFF"
    options = None
    try:
        options = build_options(ip, port, timeout_ms=timeout_ms, retry_count=retries)
        success = _run(options, lambda light: light.set_status(on))
    except WizctlError as exc:
        _fail(exc, options)
    if not success:
        typer.echo(f"Failed to turn {label.lower()} light at {options.ip}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Light turned {label} ({options.ip}:{options.port})")


@app.command("color")
def set_color(
    ip: str | None = IP_ARGUMENT,
    color: str = typer.Argument(DEFAULT_COLOR, help="Preset name, see 'wizctl presets'"),
    brightness: int = typer.Argument(DEFAULT_DIMMING, help="Dimming 0-100"),
    port: int = PORT_OPTION,
    timeout_ms: int = TIMEOUT_OPTION,
    retries: int = RETRIES_OPTION,
) -> None:
    """Set the light to a named colour preset at the given brightness."""
    options = None
    try:
        presets = load_presets()
        for warning in presets.warnings:
            typer.echo(f"Warning: {warning}", err=True)
        preset = presets.presets.get(color.lower())
        if preset is None:
            available = ", ".join(sorted(presets.presets))
            typer.echo(f"Error: Unknown color '{color}'. Available colors: {available}", err=True)
            raise typer.Exit(code=1)

        options = build_options(ip, port, timeout_ms=timeout_ms, retry_count=retries)
        properties = LightProperties(dimming=brightness).merged_over(preset).validate()
        success = _run(options, lambda light: light.set_properties(properties))
    except WizctlError as exc:
        _fail(exc, options)
    if not success:
        typer.echo(f"Failed to set color on {options.ip}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Color set to {color.lower()} at {brightness}% ({options.ip}:{options.port})")


@app.command("status")
def show_status(
    ip: str | None = IP_ARGUMENT,
    port: int = PORT_OPTION,
    timeout_ms: int = TIMEOUT_OPTION,
    retries: int = RETRIES_OPTION,
) -> None:
    """Show the current state reported by the light."""
    options = None
    try:
        options = build_options(ip, port, timeout_ms=timeout_ms, retry_count=retries)
        status = _run(options, lambda light: light.fetch_status())
    except WizctlError as exc:
        _fail(exc, options)

    result = status.result
    props = result.properties
    typer.echo(f"Light {options.ip}:{options.port}")
    typer.echo(f"  State: {'ON' if result.state else 'OFF'}")
    typer.echo(f"  Dimming: {result.dimming or 0}%")
    if props.r is not None or props.g is not None or props.b is not None:
        typer.echo(f"  RGB: R={props.r or 0}, G={props.g or 0}, B={props.b or 0}")
    if props.w is not None or props.c is not None:
        typer.echo(f"  White/Cold: W={props.w or 0}, C={props.c or 0}")
    if result.mac:
        typer.echo(f"  MAC: {result.mac} RSSI: {result.rssi}")


@app.command("presets")
def list_presets() -> None:
    """List available colour presets."""
    try:
        loaded = load_presets()
    except WizctlError as exc:
        _fail(exc, None)
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    for name, properties in sorted(loaded.presets.items()):
        values = ", ".join(f"{key}={value}" for key, value in properties.to_params().items())
        typer.echo(f"{name}: {values}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
