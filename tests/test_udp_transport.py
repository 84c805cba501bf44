from __future__ import annotations

import asyncio
import json

import pytest

from mock_bulb import MockBulb, ack
from wizctl.core.errors import (
    ResponseDecodeError,
    TransportClosedError,
    TransportSendError,
    TransportTimeoutError,
)
from wizctl.transports.udp import UDPTransport, decode_datagram, encode_command

GET_PILOT = {"method": "getPilot", "params": {}}


class RefusingEndpoint:
    """Stands in for the datagram endpoint; every send reports an OS error."""

    def __init__(self, owner: UDPTransport, *, raise_directly: bool = False) -> None:
        self.owner = owner
        self.raise_directly = raise_directly
        self.sends: list[bytes] = []

    def sendto(self, data: bytes) -> None:
        self.sends.append(data)
        error = OSError(101, "Network is unreachable")
        if self.raise_directly:
            raise error
        self.owner._socket_error(error)

    def close(self) -> None:
        pass


def test_encode_command_puts_id_at_top_level() -> None:
    data = encode_command({"method": "setPilot", "params": {"state": True}}, 7)
    assert json.loads(data) == {"id": 7, "method": "setPilot", "params": {"state": True}}


def test_decode_datagram_rejects_bad_shapes() -> None:
    assert decode_datagram(b'{"id": 3, "method": "getPilot"}')["id"] == 3
    for data in (b"\xff\xfe", b"{not json", b"[1, 2]", b'{"method": "x"}', b'{"id": true}', b'{"id": "1"}'):
        with pytest.raises(ResponseDecodeError):
            decode_datagram(data)


def test_request_round_trip_matches_assigned_id() -> None:
    async def scenario() -> None:
        bulb = await MockBulb().start()
        try:
            async with UDPTransport("127.0.0.1", bulb.port, timeout_ms=500) as transport:
                reply = await transport.request({"method": "setPilot", "params": {"state": True}})
                assert transport.pending_ids == ()
        finally:
            bulb.close()

        assert len(bulb.received) == 1
        sent = bulb.received[0]
        assert sent["id"] == 1
        assert sent["params"] == {"state": True}
        assert reply["id"] == sent["id"]
        assert reply["result"] == {"success": True}

    asyncio.run(scenario())


def test_concurrent_requests_get_unique_ids() -> None:
    async def scenario() -> None:
        bulb = await MockBulb().start()
        try:
            async with UDPTransport("127.0.0.1", bulb.port, timeout_ms=500) as transport:
                replies = await asyncio.gather(*(transport.request(GET_PILOT) for _ in range(10)))
        finally:
            bulb.close()

        sent_ids = [message["id"] for message in bulb.received]
        assert len(set(sent_ids)) == 10
        assert sorted(reply["id"] for reply in replies) == sorted(sent_ids)

    asyncio.run(scenario())


def test_retry_resends_identical_bytes_and_succeeds() -> None:
    async def scenario() -> None:
        bulb = await MockBulb(drop_first=1).start()
        try:
            async with UDPTransport("127.0.0.1", bulb.port, timeout_ms=50, retry_count=5) as transport:
                reply = await transport.request({"method": "setPilot", "params": {"r": 10}})
        finally:
            bulb.close()

        assert reply["result"]["success"] is True
        assert len(bulb.raw) == 2
        assert bulb.raw[0] == bulb.raw[1]

    asyncio.run(scenario())


def test_timeout_after_all_attempts() -> None:
    async def scenario() -> None:
        bulb = await MockBulb(handler=None).start()
        loop = asyncio.get_running_loop()
        try:
            async with UDPTransport("127.0.0.1", bulb.port, timeout_ms=50, retry_count=2) as transport:
                started = loop.time()
                with pytest.raises(TransportTimeoutError):
                    await transport.request(GET_PILOT)
                elapsed = loop.time() - started
        finally:
            bulb.close()

        assert len(bulb.received) == 2
        assert elapsed >= 0.09

    asyncio.run(scenario())


def test_reply_in_last_attempt_window_stops_retries() -> None:
    async def scenario() -> None:
        bulb = await MockBulb(drop_first=2).start()
        try:
            async with UDPTransport("127.0.0.1", bulb.port, timeout_ms=50, retry_count=3) as transport:
                reply = await transport.request(GET_PILOT)
                await asyncio.sleep(0.15)
        finally:
            bulb.close()

        assert reply["id"] == 1
        assert len(bulb.received) == 3

    asyncio.run(scenario())


def test_late_reply_from_earlier_attempt_is_accepted() -> None:
    class SlowBulb(MockBulb):
        def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
            self.received.append(json.loads(data))
            reply = ack(self.received[-1])
            asyncio.get_running_loop().call_later(0.08, self.send, reply, addr)

    async def scenario() -> None:
        bulb = await SlowBulb().start()
        try:
            async with UDPTransport("127.0.0.1", bulb.port, timeout_ms=50, retry_count=5) as transport:
                reply = await transport.request(GET_PILOT)
        finally:
            bulb.close()

        assert reply["id"] == 1
        assert len(bulb.received) == 2

    asyncio.run(scenario())


def test_mismatched_id_does_not_resolve_request() -> None:
    def wrong_id(message):
        return {**ack(message), "id": message["id"] + 500}

    async def scenario() -> None:
        bulb = await MockBulb(handler=wrong_id).start()
        try:
            async with UDPTransport("127.0.0.1", bulb.port, timeout_ms=50, retry_count=2) as transport:
                with pytest.raises(TransportTimeoutError):
                    await transport.request(GET_PILOT)
        finally:
            bulb.close()

        assert len(bulb.received) == 2

    asyncio.run(scenario())


def test_malformed_datagrams_are_dropped() -> None:
    class NoisyBulb(MockBulb):
        def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
            self.send(b"\xff{not json", addr)
            self.send({"id": "one", "result": {"success": False}}, addr)
            self.send({"id": 999, "result": {"success": False}}, addr)
            super().datagram_received(data, addr)

    async def scenario() -> None:
        bulb = await NoisyBulb().start()
        try:
            async with UDPTransport("127.0.0.1", bulb.port, timeout_ms=500) as transport:
                reply = await transport.request(GET_PILOT)
        finally:
            bulb.close()

        assert reply["result"] == {"success": True}
        assert len(bulb.received) == 1

    asyncio.run(scenario())


def test_send_failure_on_every_attempt() -> None:
    async def scenario() -> None:
        transport = UDPTransport("127.0.0.1", 38899, timeout_ms=5000, retry_count=3)
        endpoint = RefusingEndpoint(transport)
        transport._endpoint = endpoint
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(TransportSendError):
            await transport.request(GET_PILOT)
        assert loop.time() - started < 1.0
        assert len(endpoint.sends) == 3
        assert len(set(endpoint.sends)) == 1
        transport.close()

    asyncio.run(scenario())


def test_send_failure_raised_by_endpoint() -> None:
    async def scenario() -> None:
        transport = UDPTransport("127.0.0.1", 38899, timeout_ms=5000, retry_count=2)
        endpoint = RefusingEndpoint(transport, raise_directly=True)
        transport._endpoint = endpoint
        with pytest.raises(TransportSendError):
            await transport.request(GET_PILOT)
        assert len(endpoint.sends) == 2
        transport.close()

    asyncio.run(scenario())


def test_close_settles_pending_request() -> None:
    async def scenario() -> None:
        bulb = await MockBulb(handler=None).start()
        transport = UDPTransport("127.0.0.1", bulb.port, timeout_ms=5000)
        try:
            task = asyncio.create_task(transport.request(GET_PILOT))
            await asyncio.sleep(0.05)
            assert transport.pending_ids == (1,)
            transport.close()
            transport.close()
            for _ in range(10):
                await asyncio.sleep(0)
            assert task.done()
            with pytest.raises(TransportClosedError):
                task.result()
            assert transport.is_closed
            assert transport.pending_ids == ()
        finally:
            bulb.close()

    asyncio.run(scenario())


def test_request_after_close_fails() -> None:
    async def scenario() -> None:
        transport = UDPTransport("127.0.0.1", 38899)
        transport.close()
        with pytest.raises(TransportClosedError):
            await transport.request(GET_PILOT)

    asyncio.run(scenario())


def test_transport_reusable_after_timeout() -> None:
    async def scenario() -> None:
        bulb = await MockBulb(drop_first=2).start()
        try:
            async with UDPTransport("127.0.0.1", bulb.port, timeout_ms=50, retry_count=2) as transport:
                with pytest.raises(TransportTimeoutError):
                    await transport.request(GET_PILOT)
                reply = await transport.request(GET_PILOT)
        finally:
            bulb.close()

        assert reply["id"] == 2

    asyncio.run(scenario())


def test_ids_wrap_and_skip_pending() -> None:
    def hold_marked(message):
        if message["params"].get("hold"):
            return None
        return ack(message)

    async def scenario() -> None:
        bulb = await MockBulb(handler=hold_marked).start()
        transport = UDPTransport("127.0.0.1", bulb.port, timeout_ms=2000, max_request_id=3)
        try:
            held = asyncio.create_task(transport.request({"method": "getPilot", "params": {"hold": True}}))
            await asyncio.sleep(0.02)
            ids = [(await transport.request(GET_PILOT))["id"] for _ in range(3)]
            transport.close()
            with pytest.raises(TransportClosedError):
                await held
        finally:
            bulb.close()

        assert ids == [2, 3, 2]

    asyncio.run(scenario())


def test_requests_past_id_space_are_serialized() -> None:
    async def scenario() -> None:
        bulb = await MockBulb().start()
        try:
            async with UDPTransport("127.0.0.1", bulb.port, timeout_ms=500, max_request_id=1) as transport:
                first, second = await asyncio.gather(transport.request(GET_PILOT), transport.request(GET_PILOT))
        finally:
            bulb.close()

        assert first["id"] == second["id"] == 1
        assert len(bulb.received) == 2

    asyncio.run(scenario())
