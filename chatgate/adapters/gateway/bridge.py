"""Gateway bridge client using aiohttp.

The platform protocol itself (encryption, pairing, multi-device sync) lives
in a bridge sidecar. We talk to it over a WebSocket for session events and
plain REST for imperative operations.
"""

import asyncio
import base64
import json
import sys
from typing import Any, Dict, Optional

import aiohttp

from chatgate.config import BridgeConfig
from chatgate.ports.inbound import GatewayEvents, MessageEnvelope
from chatgate.ports.outbound import ActionResult


def _log(msg: str):
    print(msg, file=sys.stderr)


class BridgeGateway:
    """Implements both GatewayTransport and GatewayPort against the bridge."""

    def __init__(self, config: Optional[BridgeConfig] = None):
        self._config = config or BridgeConfig()
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._events: Optional[GatewayEvents] = None
        self._closing = False
        self._close_emitted = False

    @property
    def base_url(self) -> str:
        return self._config.url.rstrip("/")

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    def _headers(self) -> Dict[str, str]:
        if not self._config.token:
            return {}
        return {"Authorization": f"Bearer {self._config.token}"}

    # -- GatewayTransport --

    async def open(self, credentials: Optional[Dict[str, Any]], events: GatewayEvents) -> None:
        await self.close()
        self._events = events
        self._closing = False
        self._close_emitted = False
        self._session = aiohttp.ClientSession(headers=self._headers())
        try:
            self._ws = await self._session.ws_connect(
                f"{self.base_url}/ws", heartbeat=self._config.timeout_seconds
            )
            await self._ws.send_json({"type": "hello", "credentials": credentials})
        except Exception:
            await self._session.close()
            self._session = None
            self._ws = None
            raise
        self._reader = asyncio.create_task(self._read_loop(self._ws, events))

    async def close(self) -> None:
        """Tear down the session without reporting a close event."""
        self._closing = True
        reader, self._reader = self._reader, None
        if reader and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._session is not None:
            await self._session.close()
        self._session = None

    async def _read_loop(self, ws, events: GatewayEvents):
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        await self._dispatch(json.loads(msg.data), events)
                    except Exception as e:
                        _log(f"[bridge] bad event from bridge: {e}")
                elif msg.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSED):
                    break
        except aiohttp.ClientError as e:
            _log(f"[bridge] websocket error: {e}")
        if not self._closing:
            await self._emit_close(events, ws.close_code, "connection lost")

    async def _emit_close(self, events: GatewayEvents, code: Optional[int], reason: str):
        if self._close_emitted:
            return
        self._close_emitted = True
        await events.on_close(code, reason)

    async def _dispatch(self, event: Dict[str, Any], events: GatewayEvents):
        kind = event.get("type")
        if kind == "pairing":
            await events.on_pairing(str(event["token"]))
        elif kind == "open":
            await events.on_open(str(event.get("identity", "")), str(event.get("version", "")))
        elif kind == "close":
            code = event.get("code")
            await self._emit_close(
                events, int(code) if code is not None else None, str(event.get("reason", ""))
            )
        elif kind == "credentials":
            await events.on_credentials(event.get("credentials") or {})
        elif kind == "message":
            await events.on_message(MessageEnvelope.from_dict(event["message"]))
        else:
            _log(f"[bridge] ignoring unknown event type: {kind}")

    # -- GatewayPort --

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> ActionResult:
        url = f"{self.base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self._config.timeout_seconds)
        try:
            async with aiohttp.ClientSession(headers=self._headers(), timeout=timeout) as session:
                async with session.request(method, url, json=payload) as resp:
                    try:
                        data = await resp.json()
                    except (aiohttp.ContentTypeError, json.JSONDecodeError):
                        data = {}
                    if not isinstance(data, dict):
                        data = {"result": data}
                    if resp.status >= 400:
                        error = data.get("error") or f"HTTP {resp.status}"
                        return ActionResult(success=False, error=str(error), data=data)
                    return ActionResult(success=True, data=data)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            _log(f"[bridge] {method} {path} failed: {e!r}")
            return ActionResult(success=False, error=str(e) or type(e).__name__)

    async def send_text(self, conversation_id: str, text: str, mentions: Optional[list] = None) -> ActionResult:
        payload = {"conversation_id": conversation_id, "kind": "text", "text": text}
        if mentions:
            payload["mentions"] = list(mentions)
        return await self._request("POST", "/messages", payload)

    async def send_audio(self, conversation_id: str, audio: bytes) -> ActionResult:
        return await self._request(
            "POST",
            "/messages",
            {
                "conversation_id": conversation_id,
                "kind": "audio",
                "audio": base64.b64encode(audio).decode("ascii"),
            },
        )

    async def remove_participant(self, group_id: str, user_id: str) -> ActionResult:
        return await self._request(
            "POST", f"/groups/{group_id}/participants", {"action": "remove", "participants": [user_id]}
        )

    async def promote_participant(self, group_id: str, user_id: str) -> ActionResult:
        return await self._request(
            "POST", f"/groups/{group_id}/participants", {"action": "promote", "participants": [user_id]}
        )

    async def update_group_description(self, group_id: str, description: str) -> ActionResult:
        return await self._request("POST", f"/groups/{group_id}/description", {"description": description})

    async def fetch_profile(self, user_id: str) -> ActionResult:
        return await self._request("GET", f"/profiles/{user_id}")
