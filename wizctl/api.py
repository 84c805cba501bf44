"""Stable public API for building tooling on top of wizctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from wizctl.core.errors import (
    DeviceError,
    OptionsError,
    PresetLoadError,
    PresetValidationError,
    PropertyValidationError,
    ResponseDecodeError,
    TransportClosedError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
    WizctlError,
)
from wizctl.core.light import WizLight
from wizctl.core.model import (
    DEFAULT_RETRY_COUNT,
    DEFAULT_STATE,
    DEFAULT_TIMEOUT_MS,
    ConnectionOptions,
    FullStateResponse,
    LightProperties,
    PilotState,
    Response,
)
from wizctl.core.options import build_options
from wizctl.core.presets import load_presets
from wizctl.transports.base import Transport
from wizctl.transports.udp import UDPTransport

__all__ = [
    "WizctlError",
    "DeviceError",
    "OptionsError",
    "PresetLoadError",
    "PresetValidationError",
    "PropertyValidationError",
    "ResponseDecodeError",
    "TransportError",
    "TransportClosedError",
    "TransportSendError",
    "TransportTimeoutError",
    "DEFAULT_STATE",
    "ConnectionOptions",
    "FullStateResponse",
    "LightProperties",
    "PilotState",
    "Response",
    "Transport",
    "UDPTransport",
    "WizLight",
    "Client",
]


class Client:
    """Public async client for one bulb.

    A `Client` validates connection options, resolves colour presets, and
    drives a `WizLight` behind a stable API intended for third-party tools
    (GUI/TUI/services/scripts). Use it as an async context manager so the
    socket is released on exit.
    """

    def __init__(
        self,
        ip: str,
        *,
        port: int | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        retry_count: int = DEFAULT_RETRY_COUNT,
        transport: Transport | None = None,
    ) -> None:
        self.options = build_options(ip, port, timeout_ms=timeout_ms, retry_count=retry_count)
        self._light = WizLight(
            self.options.ip,
            port=self.options.port,
            timeout_ms=self.options.timeout_ms,
            retry_count=self.options.retry_count,
            transport=transport,
        )
        self._presets: dict[str, LightProperties] | None = None

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def light(self) -> WizLight:
        return self._light

    def list_presets(self) -> dict[str, LightProperties]:
        if self._presets is None:
            self._presets = load_presets().presets
        return dict(self._presets)

    async def turn_on(self) -> bool:
        return await self._light.turn_on()

    async def turn_off(self) -> bool:
        return await self._light.turn_off()

    async def set_properties(self, properties: LightProperties | Mapping[str, Any]) -> bool:
        return await self._light.set_properties(properties)

    async def set_color(self, name: str, *, dimming: int | None = None) -> bool:
        presets = self.list_presets()
        preset = presets.get(name.lower())
        if preset is None:
            available = ", ".join(sorted(presets))
            raise PropertyValidationError(f"Unknown color '{name}'. Available colors: {available}")
        return await self._light.set_properties(LightProperties(dimming=dimming).merged_over(preset))

    async def get_status(self) -> FullStateResponse:
        return await self._light.fetch_status()

    def close(self) -> None:
        self._light.shutdown()
