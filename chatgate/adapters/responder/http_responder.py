"""HTTP responder client using aiohttp."""

import asyncio
import base64
import sys
from typing import Any, Dict, Optional

import aiohttp

from chatgate.config import ResponderConfig
from chatgate.ports.outbound import ResponderReply, ResponderRequest


def _log(msg: str):
    print(msg, file=sys.stderr)


class ResponderError(Exception):
    """The responder could not produce a reply after all retries."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def _retryable(status: int) -> bool:
    return status >= 500 or status == 408


class HttpResponder:
    """POSTs normalized messages to ``{url}/reply`` and returns the reply."""

    def __init__(self, config: Optional[ResponderConfig] = None):
        self._config = config or ResponderConfig()

    @property
    def is_configured(self) -> bool:
        return bool(self._config.url)

    @staticmethod
    def build_payload(request: ResponderRequest) -> Dict[str, Any]:
        payload = {
            "user": request.sender_name,
            "number": request.sender_id,
            "message": request.text,
            "conversation_type": request.conversation_type,
            "message_kind": request.message_kind,
            "reply_metadata": {
                "quoted_text": request.quoted_text,
                "quoted_sender": request.quoted_sender_id,
                "reply_to_bot": request.reply_to_bot,
            },
        }
        if request.group_id:
            payload["group_id"] = request.group_id
        if request.payload_ref:
            payload["payload_ref"] = request.payload_ref
        return payload

    @staticmethod
    def parse_reply(data: Any) -> ResponderReply:
        if not isinstance(data, dict):
            return ResponderReply(text=str(data or ""))
        audio = data.get("audio")
        return ResponderReply(
            text=str(data.get("reply") or data.get("text") or ""),
            audio=base64.b64decode(audio) if audio else None,
        )

    async def respond(self, request: ResponderRequest) -> ResponderReply:
        if not self.is_configured:
            raise ResponderError("RESPONDER_URL not configured")

        url = f"{self._config.url.rstrip('/')}/reply"
        payload = self.build_payload(request)
        timeout = aiohttp.ClientTimeout(total=self._config.timeout_seconds)
        attempts = max(1, self._config.retry_attempts)
        last_error = "no attempt made"
        last_status = None

        for attempt in range(attempts):
            try:
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    async with session.post(url, json=payload) as resp:
                        if resp.status < 400:
                            return self.parse_reply(await resp.json())
                        last_status = resp.status
                        last_error = f"HTTP {resp.status}"
                        if not _retryable(resp.status):
                            raise ResponderError(f"responder rejected request: {last_error}", resp.status)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = str(e) or type(e).__name__

            if attempt < attempts - 1:
                delay = self._config.retry_delay_seconds * (2 ** attempt)
                _log(f"[responder] attempt {attempt + 1}/{attempts} failed ({last_error}), retrying in {delay}s")
                await asyncio.sleep(delay)

        raise ResponderError(f"responder failed after {attempts} attempts: {last_error}", last_status)
