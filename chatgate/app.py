"""Application wiring and startup."""

import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from chatgate.adapters.gateway.bridge import BridgeGateway
from chatgate.adapters.responder.http_responder import HttpResponder
from chatgate.adapters.storage import CredentialStore, JsonStorage
from chatgate.adapters.web.server import create_app
from chatgate.config import AppConfig
from chatgate.domain.connection import ConnectionManager
from chatgate.domain.dedup import DedupFilter
from chatgate.domain.leveling import LevelSystem
from chatgate.domain.moderation import ModerationPolicy
from chatgate.domain.pipeline import MessagePipeline
from chatgate.domain.rate_limiter import RateLimiter
from chatgate.ports.outbound import CredentialPort, ResponderPort, StoragePort


def _log(msg: str):
    print(msg, file=sys.stderr)


class ChatGate:
    """Composition root: one instance of every engine, built from AppConfig.

    ``gateway`` must implement both GatewayTransport and GatewayPort, as
    BridgeGateway does.
    """

    def __init__(
        self,
        config: AppConfig,
        gateway=None,
        responder: Optional[ResponderPort] = None,
        storage: Optional[StoragePort] = None,
        credentials: Optional[CredentialPort] = None,
    ):
        self.config = config
        self.storage = storage or JsonStorage(str(config.data_path))
        self.gateway = gateway or BridgeGateway(config.bridge)
        if responder is None and config.responder.url:
            responder = HttpResponder(config.responder)
        self.responder = responder
        self.credentials = credentials or CredentialStore(
            config.auth_dir, config.connection.credentials_max_age_hours
        )

        self.rate_limiter = RateLimiter(self.storage, config.rate_limit)
        self.moderation = ModerationPolicy(
            self.storage, config.moderation, blacklist_check=self.rate_limiter.is_blacklisted
        )
        self.levels = LevelSystem(self.storage, config.leveling, gateway=self.gateway)
        self.dedup = DedupFilter(
            window_seconds=config.dedup.window_seconds,
            grace_period_seconds=config.dedup.grace_period_seconds,
            bot_id=config.bot_number,
        )
        self.pipeline = MessagePipeline(
            config,
            self.dedup,
            self.rate_limiter,
            self.moderation,
            self.levels,
            self.gateway,
            self.responder,
        )
        self.connection = ConnectionManager(
            self.gateway,
            self.credentials,
            config.connection,
            on_message=self.pipeline.handle,
            on_connected=self.pipeline.on_connected,
            bot_name=config.bot_name,
        )

    async def start(self):
        _log(f"{self.config.bot_name} starting")
        _log(f"Data dir: {self.config.data_path}")
        _log(f"Owners: {', '.join(self.config.owner_numbers) or 'none configured'}")
        if self.responder is None:
            _log("Responder not configured (set RESPONDER_URL in .env), replies disabled")
        self.pipeline.start()
        await self.connection.connect()

    async def stop(self):
        await self.connection.shutdown()
        await self.pipeline.stop()
        _log(f"{self.config.bot_name} stopped")

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        await self.start()
        try:
            yield
        finally:
            await self.stop()


def build_app(config: Optional[AppConfig] = None) -> FastAPI:
    gate = ChatGate(config or AppConfig.from_env())
    return create_app(gate, lifespan=gate.lifespan)


def main():
    config = AppConfig.from_env()
    app = build_app(config)
    uvicorn.run(app, host="0.0.0.0", port=config.port, log_level="info")


if __name__ == "__main__":
    main()
