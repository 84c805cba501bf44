"""Validation of the connection options handed to the light facade."""

from __future__ import annotations

import ipaddress

from wizctl.core.errors import OptionsError
from wizctl.core.model import DEFAULT_PORT, DEFAULT_RETRY_COUNT, DEFAULT_TIMEOUT_MS, ConnectionOptions

DEFAULT_PORT_SENTINEL = -1


def resolve_port(port: int | None) -> int:
    if port is None or port == DEFAULT_PORT_SENTINEL:
        return DEFAULT_PORT
    if not 1 <= port <= 65535:
        raise OptionsError(
            f"Invalid port number '{port}'. Port must be between 1-65535 or -1 for default."
        )
    return port


def validate_ip(ip: str | None) -> str:
    if not ip or not ip.strip():
        raise OptionsError("IP address is required.")
    try:
        return str(ipaddress.ip_address(ip.strip()))
    except ValueError as exc:
        raise OptionsError(f"Invalid IP address '{ip}'.") from exc


def build_options(
    ip: str | None,
    port: int | None = None,
    *,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    retry_count: int = DEFAULT_RETRY_COUNT,
) -> ConnectionOptions:
    if timeout_ms <= 0:
        raise OptionsError(f"Timeout must be a positive number of milliseconds, got {timeout_ms}")
    if retry_count < 1:
        raise OptionsError(f"Attempt count must be at least 1, got {retry_count}")
    return ConnectionOptions(
        ip=validate_ip(ip),
        port=resolve_port(port),
        timeout_ms=timeout_ms,
        retry_count=retry_count,
    )
