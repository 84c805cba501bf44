"""UDP request/response transport with id correlation, timeouts and retries."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from wizctl.core.errors import (
    ResponseDecodeError,
    TransportClosedError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
)
from wizctl.core.model import DEFAULT_PORT, DEFAULT_RETRY_COUNT, DEFAULT_TIMEOUT_MS

LOGGER = logging.getLogger(__name__)

MAX_REQUEST_ID = 1000


def encode_command(payload: dict[str, Any], request_id: int) -> bytes:
    return json.dumps({"id": request_id, **payload}, separators=(",", ":")).encode("utf-8")


def decode_datagram(data: bytes) -> dict[str, Any]:
    try:
        message = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ResponseDecodeError(f"Datagram is not valid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise ResponseDecodeError("Datagram must contain a JSON object at root")
    request_id = message.get("id")
    if isinstance(request_id, bool) or not isinstance(request_id, int):
        raise ResponseDecodeError(f"Datagram carries no integer id: {request_id!r}")
    return message


@dataclass
class _PendingRequest:
    id: int
    datagram: bytes
    future: asyncio.Future[dict[str, Any]]
    retries_left: int


class _ReplyDispatcher(asyncio.DatagramProtocol):
    """Single inbound path: decodes each datagram once and hands it to the owner."""

    def __init__(self, owner: UDPTransport) -> None:
        self._owner = owner

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            message = decode_datagram(data)
        except ResponseDecodeError as exc:
            LOGGER.debug("Dropping datagram from %s: %s", addr, exc)
            return
        self._owner._dispatch(message)

    def error_received(self, exc: Exception) -> None:
        self._owner._socket_error(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            LOGGER.warning("UDP endpoint lost: %s", exc)


class UDPTransport:
    """Request/response semantics over a UDP endpoint bound to one peer.

    Every ``request()`` gets an id from a counter cycling through
    ``1..max_request_id``; the id is never handed out while a request holding it
    is still outstanding. A request sends its datagram, waits ``timeout_ms`` for
    the reply with the same id, and resends the identical bytes until
    ``retry_count`` attempts (first one included) have been made.
    """

    def __init__(
        self,
        ip: str,
        port: int = DEFAULT_PORT,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        retry_count: int = DEFAULT_RETRY_COUNT,
        max_request_id: int = MAX_REQUEST_ID,
    ) -> None:
        self.ip = ip
        self.port = port
        self.timeout_ms = timeout_ms
        self.retry_count = max(retry_count, 1)
        self.max_request_id = max_request_id

        self._counter = 0
        self._pending: dict[int, _PendingRequest] = {}
        self._endpoint: asyncio.DatagramTransport | None = None
        self._open_lock: asyncio.Lock | None = None
        self._slot_freed: asyncio.Event | None = None
        self._closed = False
        self._sending = False
        self._send_error: Exception | None = None

    async def __aenter__(self) -> UDPTransport:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pending_ids(self) -> tuple[int, ...]:
        return tuple(self._pending)

    async def open(self) -> None:
        if self._closed:
            raise TransportClosedError(f"Transport to {self.ip}:{self.port} is closed")
        if self._endpoint is not None:
            return
        if self._open_lock is None:
            self._open_lock = asyncio.Lock()
        async with self._open_lock:
            if self._endpoint is not None:
                return
            loop = asyncio.get_running_loop()
            try:
                endpoint, _ = await loop.create_datagram_endpoint(
                    lambda: _ReplyDispatcher(self),
                    remote_addr=(self.ip, self.port),
                )
            except OSError as exc:
                raise TransportSendError(
                    f"Could not open UDP endpoint for {self.ip}:{self.port}: {exc}"
                ) from exc
            if self._closed:
                endpoint.close()
                raise TransportClosedError(f"Transport to {self.ip}:{self.port} is closed")
            self._endpoint = endpoint
            LOGGER.debug("Opened UDP endpoint to %s:%s", self.ip, self.port)

    async def request(self, payload: dict[str, Any]) -> dict[str, Any]:
        await self.open()
        request_id = await self._allocate_id()

        loop = asyncio.get_running_loop()
        pending = _PendingRequest(
            id=request_id,
            datagram=encode_command(payload, request_id),
            future=loop.create_future(),
            retries_left=self.retry_count - 1,
        )
        self._pending[request_id] = pending
        try:
            return await self._send_await_retry(pending)
        finally:
            self._pending.pop(request_id, None)
            self._free_slot()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for pending in list(self._pending.values()):
            if not pending.future.done():
                pending.future.set_exception(
                    TransportClosedError(f"Transport closed while request {pending.id} was pending")
                )
        self._free_slot()
        if self._endpoint is not None:
            self._endpoint.close()
            self._endpoint = None
        LOGGER.debug("Closed UDP transport to %s:%s", self.ip, self.port)

    async def _send_await_retry(self, pending: _PendingRequest) -> dict[str, Any]:
        timeout_s = self.timeout_ms / 1000
        last_error: TransportError
        while True:
            try:
                self._send(pending)
            except TransportSendError as exc:
                LOGGER.debug("Send of request %s failed: %s", pending.id, exc)
                last_error = exc
            else:
                try:
                    return await asyncio.wait_for(asyncio.shield(pending.future), timeout_s)
                except asyncio.TimeoutError:
                    last_error = TransportTimeoutError(
                        f"No reply to request {pending.id} from {self.ip}:{self.port} "
                        f"within {self.timeout_ms} ms"
                    )

            if pending.retries_left <= 0:
                raise last_error
            pending.retries_left -= 1
            LOGGER.debug(
                "Retrying request %s (%s retries left): %s",
                pending.id,
                pending.retries_left,
                last_error,
            )

    def _send(self, pending: _PendingRequest) -> None:
        if pending.future.done():
            return
        if self._closed or self._endpoint is None:
            raise TransportClosedError(f"Transport to {self.ip}:{self.port} is closed")
        # Selector-based endpoints report immediate send failures through
        # error_received() before sendto() returns.
        self._sending = True
        self._send_error = None
        try:
            self._endpoint.sendto(pending.datagram)
        except OSError as exc:
            self._send_error = exc
        finally:
            self._sending = False
        error, self._send_error = self._send_error, None
        if error is not None:
            raise TransportSendError(f"UDP send to {self.ip}:{self.port} failed: {error}") from error
        LOGGER.debug("Sent request %s to %s:%s", pending.id, self.ip, self.port)

    def _dispatch(self, message: dict[str, Any]) -> None:
        pending = self._pending.get(message["id"])
        if pending is None or pending.future.done():
            LOGGER.debug("Ignoring reply with unmatched id %s", message["id"])
            return
        pending.future.set_result(message)

    def _socket_error(self, exc: Exception) -> None:
        if self._sending:
            self._send_error = exc
            return
        LOGGER.warning("Socket error on UDP endpoint to %s:%s: %s", self.ip, self.port, exc)

    async def _allocate_id(self) -> int:
        while len(self._pending) >= self.max_request_id:
            if self._slot_freed is None:
                self._slot_freed = asyncio.Event()
            self._slot_freed.clear()
            LOGGER.debug("All %s request ids in flight; waiting for a free slot", self.max_request_id)
            await self._slot_freed.wait()
            if self._closed:
                raise TransportClosedError(f"Transport to {self.ip}:{self.port} is closed")
        while True:
            self._counter = (self._counter % self.max_request_id) + 1
            if self._counter not in self._pending:
                return self._counter

    def _free_slot(self) -> None:
        if self._slot_freed is not None:
            self._slot_freed.set()
