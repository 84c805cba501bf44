"""Transport interfaces."""

from __future__ import annotations

from typing import Any, Protocol


class Transport(Protocol):
    async def request(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send payload to the device and return the reply carrying the same id."""

    def close(self) -> None:
        """Release the socket and settle outstanding requests."""
