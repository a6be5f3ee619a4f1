"""Unit tests for BridgeGateway."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from chatgate.adapters.gateway.bridge import BridgeGateway
from chatgate.config import BridgeConfig
from chatgate.ports.inbound import MessageEnvelope
from chatgate.ports.outbound import GatewayPort, GatewayTransport

BASE = "http://bridge.test"


def _mock_rest_session(responses, calls):
    """Fake aiohttp.ClientSession for REST calls.

    responses: list of (status, body) tuples, or exceptions, consumed in order.
    calls: list that receives (method, url, json) for every request.
    """
    call_idx = 0

    class FakeResponse:
        def __init__(self, item):
            self._item = item

        @property
        def status(self):
            return self._item[0]

        async def json(self):
            return self._item[1]

        async def __aenter__(self):
            if isinstance(self._item, Exception):
                raise self._item
            return self

        async def __aexit__(self, *args):
            pass

    class FakeSession:
        def __init__(self, *args, **kwargs):
            self.kwargs = kwargs

        def request(self, method, url, json=None):
            nonlocal call_idx
            calls.append((method, url, json))
            resp = FakeResponse(responses[call_idx])
            call_idx += 1
            return resp

        async def __aenter__(self):
            return self

        async def __aexit__(self, *args):
            pass

    return FakeSession


def _text(event):
    return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(event))


class FakeWebSocket:
    def __init__(self, messages, hold_open=False):
        self._messages = list(messages)
        self._hold_open = hold_open
        self._released = asyncio.Event()
        self.sent = []
        self.closed = False
        self.close_code = 1006

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True
        self._released.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for msg in self._messages:
            yield msg
        if self._hold_open:
            await self._released.wait()


def _mock_ws_session(ws, urls):
    class FakeSession:
        def __init__(self, *args, **kwargs):
            self.closed = False

        async def ws_connect(self, url, **kwargs):
            urls.append(url)
            return ws

        async def close(self):
            self.closed = True

    return FakeSession


@pytest.fixture
def gateway():
    return BridgeGateway(BridgeConfig(url=BASE, token="secret", timeout_seconds=5))


def test_implements_ports(gateway):
    assert isinstance(gateway, GatewayTransport)
    assert isinstance(gateway, GatewayPort)


class TestRest:
    @pytest.mark.asyncio
    async def test_send_text(self, gateway):
        calls = []
        session = _mock_rest_session([(200, {"id": "msg-1"})], calls)
        with patch("chatgate.adapters.gateway.bridge.aiohttp.ClientSession", session):
            result = await gateway.send_text("1@s.whatsapp.net", "hi", mentions=["2@s.whatsapp.net"])
        assert result.success is True
        assert result.data == {"id": "msg-1"}
        method, url, payload = calls[0]
        assert (method, url) == ("POST", f"{BASE}/messages")
        assert payload == {
            "conversation_id": "1@s.whatsapp.net",
            "kind": "text",
            "text": "hi",
            "mentions": ["2@s.whatsapp.net"],
        }

    @pytest.mark.asyncio
    async def test_send_audio_base64(self, gateway):
        calls = []
        session = _mock_rest_session([(200, {})], calls)
        with patch("chatgate.adapters.gateway.bridge.aiohttp.ClientSession", session):
            await gateway.send_audio("1@s.whatsapp.net", b"\x00\x01")
        assert calls[0][2]["kind"] == "audio"
        assert calls[0][2]["audio"] == "AAE="

    @pytest.mark.asyncio
    async def test_participant_actions(self, gateway):
        calls = []
        session = _mock_rest_session([(200, {}), (200, {})], calls)
        with patch("chatgate.adapters.gateway.bridge.aiohttp.ClientSession", session):
            await gateway.remove_participant("g@g.us", "u@s.whatsapp.net")
            await gateway.promote_participant("g@g.us", "u@s.whatsapp.net")
        assert calls[0][1] == f"{BASE}/groups/g@g.us/participants"
        assert calls[0][2] == {"action": "remove", "participants": ["u@s.whatsapp.net"]}
        assert calls[1][2]["action"] == "promote"

    @pytest.mark.asyncio
    async def test_description_and_profile(self, gateway):
        calls = []
        session = _mock_rest_session([(200, {}), (200, {"name": "Bob"})], calls)
        with patch("chatgate.adapters.gateway.bridge.aiohttp.ClientSession", session):
            await gateway.update_group_description("g@g.us", "rules")
            profile = await gateway.fetch_profile("u@s.whatsapp.net")
        assert calls[0][1:] == (f"{BASE}/groups/g@g.us/description", {"description": "rules"})
        assert calls[1] == ("GET", f"{BASE}/profiles/u@s.whatsapp.net", None)
        assert profile.data["name"] == "Bob"

    @pytest.mark.asyncio
    async def test_http_error_becomes_result(self, gateway):
        session = _mock_rest_session([(403, {"error": "not an admin"})], [])
        with patch("chatgate.adapters.gateway.bridge.aiohttp.ClientSession", session):
            result = await gateway.promote_participant("g@g.us", "u@s.whatsapp.net")
        assert result.success is False
        assert result.error == "not an admin"

    @pytest.mark.asyncio
    async def test_network_error_becomes_result(self, gateway):
        session = _mock_rest_session([aiohttp.ClientConnectionError("refused")], [])
        with patch("chatgate.adapters.gateway.bridge.aiohttp.ClientSession", session):
            result = await gateway.send_text("1@s.whatsapp.net", "hi")
        assert result.success is False
        assert "refused" in result.error

    @pytest.mark.asyncio
    async def test_timeout_becomes_result(self, gateway):
        session = _mock_rest_session([asyncio.TimeoutError()], [])
        with patch("chatgate.adapters.gateway.bridge.aiohttp.ClientSession", session):
            result = await gateway.send_text("1@s.whatsapp.net", "hi")
        assert result.success is False
        assert result.error == "TimeoutError"


class TestEvents:
    @pytest.mark.asyncio
    async def test_events_dispatched(self, gateway):
        ws = FakeWebSocket([
            _text({"type": "pairing", "token": "2@abc"}),
            _text({"type": "credentials", "credentials": {"me": {"id": "999"}}}),
            _text({"type": "open", "identity": "999@s.whatsapp.net", "version": "2.3000"}),
            _text({"type": "message", "message": {
                "id": "m1", "conversation_id": "1@s.whatsapp.net",
                "sender_id": "1@s.whatsapp.net", "timestamp_ms": 5, "text": "hi",
            }}),
        ])
        urls = []
        events = AsyncMock()
        with patch("chatgate.adapters.gateway.bridge.aiohttp.ClientSession", _mock_ws_session(ws, urls)):
            await gateway.open({"me": {"id": "999"}}, events)
            await asyncio.sleep(0.01)
        assert urls == [f"{BASE}/ws"]
        assert ws.sent == [{"type": "hello", "credentials": {"me": {"id": "999"}}}]
        events.on_pairing.assert_awaited_once_with("2@abc")
        events.on_credentials.assert_awaited_once_with({"me": {"id": "999"}})
        events.on_open.assert_awaited_once_with("999@s.whatsapp.net", "2.3000")
        envelope = events.on_message.await_args.args[0]
        assert isinstance(envelope, MessageEnvelope)
        assert envelope.text == "hi"
        # stream ended without a close event
        events.on_close.assert_awaited_once_with(1006, "connection lost")

    @pytest.mark.asyncio
    async def test_close_event_reported_once(self, gateway):
        ws = FakeWebSocket([_text({"type": "close", "code": 401, "reason": "logged out"})])
        events = AsyncMock()
        with patch("chatgate.adapters.gateway.bridge.aiohttp.ClientSession", _mock_ws_session(ws, [])):
            await gateway.open(None, events)
            await asyncio.sleep(0.01)
        events.on_close.assert_awaited_once_with(401, "logged out")

    @pytest.mark.asyncio
    async def test_bad_event_skipped(self, gateway):
        ws = FakeWebSocket([
            SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data="not json"),
            _text({"type": "pairing", "token": "t"}),
        ], hold_open=True)
        events = AsyncMock()
        with patch("chatgate.adapters.gateway.bridge.aiohttp.ClientSession", _mock_ws_session(ws, [])):
            await gateway.open(None, events)
            await asyncio.sleep(0.01)
            await gateway.close()
        events.on_pairing.assert_awaited_once_with("t")

    @pytest.mark.asyncio
    async def test_close_is_silent(self, gateway):
        ws = FakeWebSocket([], hold_open=True)
        events = AsyncMock()
        with patch("chatgate.adapters.gateway.bridge.aiohttp.ClientSession", _mock_ws_session(ws, [])):
            await gateway.open(None, events)
            await asyncio.sleep(0.01)
            assert gateway.is_open is True
            await gateway.close()
        assert ws.closed is True
        assert gateway.is_open is False
        events.on_close.assert_not_awaited()
