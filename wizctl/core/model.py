"""Core data models used across transport, light facade, and CLI."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any

from wizctl.core.errors import PropertyValidationError, ResponseDecodeError

DEFAULT_PORT = 38899
DEFAULT_TIMEOUT_MS = 1000
DEFAULT_RETRY_COUNT = 5

METHOD_GET_PILOT = "getPilot"
METHOD_SET_PILOT = "setPilot"

_CHANNEL_RANGE = (0, 255)
_DIMMING_RANGE = (0, 100)
_RANGES = {
    "r": _CHANNEL_RANGE,
    "g": _CHANNEL_RANGE,
    "b": _CHANNEL_RANGE,
    "c": _CHANNEL_RANGE,
    "w": _CHANNEL_RANGE,
    "dimming": _DIMMING_RANGE,
}


@dataclass(frozen=True)
class ConnectionOptions:
    ip: str
    port: int = DEFAULT_PORT
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retry_count: int = DEFAULT_RETRY_COUNT


@dataclass(frozen=True)
class Command:
    method: str
    params: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {"method": self.method, "params": dict(self.params)}


@dataclass(frozen=True)
class LightProperties:
    """Device-facing light state; unset fields are ``None`` and never sent."""

    state: bool | None = None
    r: int | None = None
    g: int | None = None
    b: int | None = None
    c: int | None = None
    w: int | None = None
    dimming: int | None = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> LightProperties:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise PropertyValidationError(
                f"Unknown light properties: {', '.join(unknown)}. Allowed: {', '.join(sorted(known))}"
            )
        return cls(**dict(values))

    def validate(self) -> LightProperties:
        if self.state is not None and not isinstance(self.state, bool):
            raise PropertyValidationError(f"state must be a boolean, got {self.state!r}")
        for name, (low, high) in _RANGES.items():
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int):
                raise PropertyValidationError(f"{name} must be an integer, got {value!r}")
            if not low <= value <= high:
                raise PropertyValidationError(f"{name} must be within {low}-{high}, got {value}")
        return self

    def merged_over(self, base: LightProperties) -> LightProperties:
        """Shallow merge: fields set here win, unset fields keep ``base`` values."""
        return replace(base, **self.to_params())

    def to_params(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def is_empty(self) -> bool:
        return not self.to_params()


DEFAULT_STATE = LightProperties(r=255, g=255, b=255, c=255, w=255, dimming=100)


@dataclass(frozen=True)
class ErrorInfo:
    code: int
    message: str


@dataclass(frozen=True)
class Response:
    id: int
    method: str
    env: str
    success: bool | None
    error: ErrorInfo | None
    raw: dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Response:
        result = payload.get("result")
        success = None
        if isinstance(result, Mapping) and isinstance(result.get("success"), bool):
            success = result["success"]
        return cls(
            id=payload["id"],
            method=str(payload.get("method", "")),
            env=str(payload.get("env", "")),
            success=success,
            error=_error_info(payload.get("error")),
            raw=dict(payload),
        )


@dataclass(frozen=True)
class PilotState:
    mac: str | None
    rssi: str | None
    src: str | None
    scene_id: int | None
    properties: LightProperties

    @property
    def state(self) -> bool | None:
        return self.properties.state

    @property
    def dimming(self) -> int | None:
        return self.properties.dimming


@dataclass(frozen=True)
class FullStateResponse:
    id: int
    method: str
    env: str
    result: PilotState
    raw: dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> FullStateResponse:
        result = payload.get("result")
        if not isinstance(result, Mapping):
            raise ResponseDecodeError(f"getPilot reply {payload.get('id')} has no result object")
        properties = LightProperties(
            **{name: result[name] for name in ("state", "r", "g", "b", "c", "w", "dimming") if name in result}
        )
        return cls(
            id=payload["id"],
            method=str(payload.get("method", "")),
            env=str(payload.get("env", "")),
            result=PilotState(
                mac=result.get("mac"),
                rssi=None if result.get("rssi") is None else str(result["rssi"]),
                src=result.get("src"),
                scene_id=result.get("sceneId"),
                properties=properties,
            ),
            raw=dict(payload),
        )


def _error_info(error: Any) -> ErrorInfo | None:
    if error is None:
        return None
    if not isinstance(error, Mapping):
        return ErrorInfo(code=-1, message=str(error))
    try:
        code = int(error.get("code", -1))
    except (TypeError, ValueError) as exc:
        raise ResponseDecodeError(f"Reply error object has no integer code: {error.get('code')!r}") from exc
    return ErrorInfo(code=code, message=str(error.get("message", "")))
