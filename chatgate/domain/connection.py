"""Connection lifecycle — session state machine, credentials and reconnection.

States: disconnected -> connecting -> (awaiting_pairing ->) connected -> closed
        closed -> connecting again after an exponential, capped backoff
        any -> disconnected when credentials are stale, invalid or rejected
"""

import asyncio
import sys
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from chatgate.config import ConnectionConfig
from chatgate.domain.models import (
    AWAITING_PAIRING,
    CLOSED,
    CONNECTED,
    CONNECTING,
    DISCONNECTED,
    Session,
)
from chatgate.ports.inbound import MessageEnvelope
from chatgate.ports.outbound import (
    CREDENTIALS_INVALID,
    CREDENTIALS_MISSING,
    CREDENTIALS_STALE,
    CredentialPort,
    GatewayTransport,
)


def _log(msg: str):
    print(msg, file=sys.stderr)


def reconnect_delay_ms(attempts: int, base_ms: int = 5000, cap_ms: int = 30000) -> int:
    """Backoff before reconnect attempt number ``attempts`` (0-based)."""
    return min(base_ms * (2 ** attempts), cap_ms)


class ConnectionManager:
    """Owns the gateway session. Implements the GatewayEvents protocol.

    Only one reconnect timer is ever pending. Fatal gateway codes leave the
    session closed for the operator to deal with.
    """

    def __init__(
        self,
        transport: GatewayTransport,
        credentials: CredentialPort,
        config: Optional[ConnectionConfig] = None,
        on_message: Optional[Callable[[MessageEnvelope], Awaitable[None]]] = None,
        on_connected: Optional[Callable[[Session], None]] = None,
        bot_name: str = "chatgate",
        clock: Callable[[], float] = time.time,
    ):
        self._transport = transport
        self._credentials = credentials
        self._config = config or ConnectionConfig()
        self._on_message = on_message
        self._on_connected = on_connected
        self._bot_name = bot_name
        self._clock = clock
        self.session = Session()
        self._pairing_timer: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._message_tasks: Set[asyncio.Task] = set()
        self._pairing_restart_used = False
        self._closing = False  # suppresses on_close while we tear down ourselves
        self._shutdown = False

    @property
    def state(self) -> str:
        return self.session.state

    @property
    def pairing_token(self) -> Optional[str]:
        return self.session.pairing_token

    @property
    def reconnect_pending(self) -> bool:
        return bool(self._reconnect_task and not self._reconnect_task.done())

    def _transition(self, new_state: str, detail: str = ""):
        old = self.session.state
        self.session.state = new_state
        suffix = f" ({detail})" if detail else ""
        _log(f"[connection] {old} -> {new_state}{suffix}")

    # -- Public API --

    async def connect(self):
        if self.session.state == CONNECTED:
            _log("[connection] already connected, ignoring connect()")
            return
        if self.session.state in (CONNECTING, AWAITING_PAIRING):
            _log(f"[connection] attempt in progress ({self.session.state}), ignoring connect()")
            return
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None
        self._shutdown = False
        self.session.terminal = False
        self._pairing_restart_used = False
        await self._open()

    async def shutdown(self):
        self._shutdown = True
        self._cancel_pairing_timer()
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None
        await self._teardown()
        self._transition(CLOSED, "shutdown")
        for task in list(self._message_tasks):
            task.cancel()

    def status(self) -> Dict[str, Any]:
        s = self.session
        return {
            "state": s.state,
            "identity": s.identity,
            "version": s.version,
            "reconnect_attempts": s.reconnect_attempts,
            "reconnect_pending": self.reconnect_pending,
            "last_connected_at": s.last_connected_at,
            "has_pairing_token": s.pairing_token is not None,
            "has_credentials": s.credentials is not None,
            "last_close_code": s.last_close_code,
            "last_close_reason": s.last_close_reason,
            "terminal": s.terminal,
        }

    # -- Internals --

    def _load_credentials(self):
        status, creds = self._credentials.inspect()
        if status == CREDENTIALS_STALE:
            self._wipe_credentials("credentials older than the allowed age")
        elif status == CREDENTIALS_INVALID:
            self._wipe_credentials("credentials failed validation")
        elif status == CREDENTIALS_MISSING:
            _log("[connection] no stored credentials, pairing required")
        self.session.credentials = creds
        self.session.credentials_saved_at = self._credentials.saved_at() if creds else None

    def _wipe_credentials(self, reason: str):
        _log(f"[connection] wiping credentials: {reason}")
        try:
            self._credentials.wipe()
        except Exception as e:
            _log(f"[connection] failed to wipe credentials: {e}")
        self.session.credentials = None
        self.session.credentials_saved_at = None
        self.session.pairing_token = None
        self._transition(DISCONNECTED, reason)

    async def _open(self):
        self._load_credentials()
        self.session.pairing_token = None
        self._transition(CONNECTING)
        try:
            await self._transport.open(self.session.credentials, self)
        except Exception as e:
            _log(f"[connection] gateway open failed: {e}")
            self.session.last_close_reason = str(e)
            self._transition(CLOSED, "open failed")
            self._schedule_reconnect()
            return
        # The transport may already have reported pairing or an open session.
        if self.session.state == CONNECTING:
            self._start_pairing_timer()

    async def _teardown(self):
        self._closing = True
        try:
            await self._transport.close()
        except Exception as e:
            _log(f"[connection] error closing gateway transport: {e}")
        finally:
            self._closing = False

    def _start_pairing_timer(self):
        self._cancel_pairing_timer()
        self._pairing_timer = asyncio.create_task(self._pairing_watchdog())

    def _cancel_pairing_timer(self):
        if self._pairing_timer and not self._pairing_timer.done():
            self._pairing_timer.cancel()
        self._pairing_timer = None

    async def _pairing_watchdog(self):
        await asyncio.sleep(self._config.pairing_timeout_seconds)
        if self.session.state != CONNECTING or self.session.pairing_token is not None:
            return
        self._pairing_timer = None
        if self._pairing_restart_used:
            _log("[connection] still no pairing challenge after restart, waiting on gateway")
            return
        self._pairing_restart_used = True
        _log("[connection] no pairing challenge received, restarting connection attempt")
        await self._teardown()
        try:
            await self._open()
        except Exception as e:
            _log(f"[connection] restart after pairing timeout failed: {e}")

    def _schedule_reconnect(self):
        if self._shutdown or self.session.terminal:
            return
        if self.reconnect_pending:
            _log("[connection] reconnect already pending, not scheduling another")
            return
        delay_ms = reconnect_delay_ms(
            self.session.reconnect_attempts,
            self._config.reconnect_base_ms,
            self._config.reconnect_cap_ms,
        )
        self.session.reconnect_attempts += 1
        _log(
            f"[connection] reconnecting in {delay_ms / 1000:.1f}s "
            f"(attempt {self.session.reconnect_attempts})"
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay_ms / 1000))

    async def _reconnect_after(self, delay_seconds: float):
        await asyncio.sleep(delay_seconds)
        self._reconnect_task = None
        if self._shutdown or self.session.state == CONNECTED:
            return
        try:
            await self._open()
        except Exception as e:
            _log(f"[connection] reconnect failed: {e}")
            self._schedule_reconnect()

    # -- GatewayEvents --

    async def on_pairing(self, token: str) -> None:
        self._cancel_pairing_timer()
        self.session.pairing_token = token
        if self.session.state != AWAITING_PAIRING:
            self._transition(AWAITING_PAIRING, "pairing token received")
        else:
            _log("[connection] pairing token refreshed")

    async def on_open(self, identity: str, version: str) -> None:
        self._cancel_pairing_timer()
        s = self.session
        s.reconnect_attempts = 0
        s.last_connected_at = self._clock()
        s.pairing_token = None
        s.identity = identity
        s.version = version
        s.terminal = False
        self._transition(CONNECTED)
        _log(f"[connection] {self._bot_name} online as {identity} (gateway {version})")
        if self._on_connected:
            try:
                self._on_connected(s)
            except Exception as e:
                _log(f"[connection] on_connected hook failed: {e}")

    async def on_close(self, code: Optional[int], reason: str) -> None:
        if self._closing:
            return
        self._cancel_pairing_timer()
        s = self.session
        s.last_close_code = code
        s.last_close_reason = reason or ""
        s.pairing_token = None
        self._transition(CLOSED, f"code={code}, reason={reason or 'unknown'}")

        if code in self._config.fatal_codes:
            s.terminal = True
            _log(f"[connection] fatal gateway code {code}, not reconnecting; operator action required")
            return
        if code in self._config.auth_failure_codes:
            self._wipe_credentials("authentication rejected by gateway")
        self._schedule_reconnect()

    async def on_credentials(self, credentials: Dict[str, Any]) -> None:
        self.session.credentials = credentials
        self.session.credentials_saved_at = self._clock()
        try:
            self._credentials.save(credentials)
        except Exception as e:
            _log(f"[connection] failed to persist credentials: {e}")

    async def on_message(self, envelope: MessageEnvelope) -> None:
        if self._on_message is None:
            return
        task = asyncio.create_task(self._on_message(envelope))
        self._message_tasks.add(task)
        task.add_done_callback(self._message_tasks.discard)
