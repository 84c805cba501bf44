"""Device facade: turns high-level light intents into complete pilot commands."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from wizctl.core.errors import DeviceError, ResponseDecodeError
from wizctl.core.model import (
    DEFAULT_PORT,
    DEFAULT_RETRY_COUNT,
    DEFAULT_STATE,
    DEFAULT_TIMEOUT_MS,
    METHOD_GET_PILOT,
    METHOD_SET_PILOT,
    Command,
    ConnectionOptions,
    FullStateResponse,
    LightProperties,
    Response,
)
from wizctl.transports.base import Transport
from wizctl.transports.udp import UDPTransport

LOGGER = logging.getLogger(__name__)


class WizLight:
    """One bulb, one transport, one cached desired state.

    The bulb only accepts complete ``setPilot`` states, so partial updates are
    merged over ``attempted_state``. The merge is committed before the device
    answers: ``attempted_state`` is the last state sent, ``confirmed_state`` the
    last state the device acknowledged.
    """

    def __init__(
        self,
        ip: str,
        *,
        port: int = DEFAULT_PORT,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        retry_count: int = DEFAULT_RETRY_COUNT,
        transport: Transport | None = None,
    ) -> None:
        self.ip = ip
        self.port = port
        self._transport = transport or UDPTransport(
            ip,
            port,
            timeout_ms=timeout_ms,
            retry_count=retry_count,
        )
        self._attempted = DEFAULT_STATE
        self._confirmed: LightProperties | None = None

    @classmethod
    def from_options(cls, options: ConnectionOptions) -> WizLight:
        return cls(
            options.ip,
            port=options.port,
            timeout_ms=options.timeout_ms,
            retry_count=options.retry_count,
        )

    async def __aenter__(self) -> WizLight:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.shutdown()

    @property
    def attempted_state(self) -> LightProperties:
        return self._attempted

    @property
    def confirmed_state(self) -> LightProperties | None:
        return self._confirmed

    async def set_status(self, on: bool) -> bool:
        response = await self._send_set(LightProperties(state=bool(on)).to_params())
        return _success(response)

    async def turn_on(self) -> bool:
        return await self.set_status(True)

    async def turn_off(self) -> bool:
        return await self.set_status(False)

    async def set_properties(self, partial: LightProperties | Mapping[str, Any]) -> bool:
        if not isinstance(partial, LightProperties):
            partial = LightProperties.from_mapping(partial)
        partial.validate()

        merged = partial.merged_over(self._attempted)
        self._attempted = merged
        response = await self._send_set(merged.to_params())
        success = _success(response)
        if success:
            self._confirmed = merged
        return success

    apply_properties = set_properties

    async def fetch_status(self, *, refresh_cache: bool = False) -> FullStateResponse:
        payload = await self._transport.request(Command(METHOD_GET_PILOT, {}).to_payload())
        _raise_for_error(Response.from_payload(payload))
        status = FullStateResponse.from_payload(payload)
        if refresh_cache:
            self._attempted = status.result.properties.merged_over(self._attempted)
            self._confirmed = self._attempted
        return status

    def shutdown(self) -> None:
        self._transport.close()

    async def _send_set(self, params: dict[str, Any]) -> Response:
        LOGGER.debug("setPilot %s -> %s", self.ip, params)
        payload = await self._transport.request(Command(METHOD_SET_PILOT, params).to_payload())
        response = Response.from_payload(payload)
        _raise_for_error(response)
        return response


def _raise_for_error(response: Response) -> None:
    if response.error is not None:
        raise DeviceError(response.error.code, response.error.message)


def _success(response: Response) -> bool:
    if response.success is None:
        raise ResponseDecodeError(f"Reply {response.id} carries no boolean success flag and no error")
    return response.success
