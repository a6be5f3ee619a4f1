"""Message pipeline — dedup, abuse containment, moderation, leveling, dispatch.

Every envelope is handled in isolation: a failure while processing one
message is logged and never affects the next.
"""

import asyncio
import random
import sys
from typing import Optional

from chatgate.config import AppConfig
from chatgate.domain.dedup import DedupFilter
from chatgate.domain.leveling import LevelSystem
from chatgate.domain.locks import KeyedLock
from chatgate.domain.models import RATE_LIMIT_EXCEEDED, Session
from chatgate.domain.moderation import ModerationPolicy
from chatgate.domain.rate_limiter import RateLimiter
from chatgate.ports.inbound import MessageEnvelope
from chatgate.ports.outbound import GatewayPort, ResponderPort, ResponderRequest

# Outcomes returned by handle(), mostly for logging and tests
DROPPED_DEDUP = "dropped:dedup"
DROPPED_BANNED = "dropped:banned"
DROPPED_BLACKLISTED = "dropped:blacklisted"
DENIED_RATE_LIMIT = "denied:rate_limit"
DROPPED_SPAM = "dropped:spam"
REMOVED_MUTED = "removed:muted"
REMOVED_LINK = "removed:link"
DISPATCHED = "dispatched"
IGNORED = "ignored"
FAILED = "failed"


def _log(msg: str):
    print(msg, file=sys.stderr)


class MessagePipeline:
    """Root of message intake. Consumes envelopes from the connection manager."""

    def __init__(
        self,
        config: AppConfig,
        dedup: DedupFilter,
        rate_limiter: RateLimiter,
        moderation: ModerationPolicy,
        levels: LevelSystem,
        gateway: GatewayPort,
        responder: Optional[ResponderPort] = None,
        rng: Optional[random.Random] = None,
    ):
        self._config = config
        self.dedup = dedup
        self.rate_limiter = rate_limiter
        self.moderation = moderation
        self.levels = levels
        self._gateway = gateway
        self._responder = responder
        self._rng = rng or random.Random()
        self._user_locks = KeyedLock()
        self._record_locks = KeyedLock()
        self._group_locks = KeyedLock()
        self._purge_task: Optional[asyncio.Task] = None

    # -- Lifecycle --

    def on_connected(self, session: Session):
        """Hook for ConnectionManager: remember session start and own identity."""
        if session.last_connected_at is not None:
            self.dedup.mark_connected(session.last_connected_at)
        if session.identity:
            self.dedup.set_bot_id(session.identity)

    def start(self):
        self.rate_limiter.start()
        if not self._purge_task or self._purge_task.done():
            self._purge_task = asyncio.create_task(self._purge_loop())

    async def stop(self):
        await self.rate_limiter.stop()
        if self._purge_task and not self._purge_task.done():
            self._purge_task.cancel()
            try:
                await self._purge_task
            except asyncio.CancelledError:
                pass
        self._purge_task = None

    async def _purge_loop(self):
        while True:
            await asyncio.sleep(self._config.dedup.purge_interval_seconds)
            try:
                self.dedup.purge()
            except Exception as e:
                _log(f"[pipeline] dedup purge error: {e}")

    # -- Intake --

    async def handle(self, envelope: MessageEnvelope) -> str:
        try:
            return await self._process(envelope)
        except Exception as e:
            _log(
                f"[pipeline] error handling message {envelope.id} "
                f"from {envelope.author_id} in {envelope.conversation_id}: {e!r}"
            )
            return FAILED

    async def _process(self, envelope: MessageEnvelope) -> str:
        if not self.dedup.admit(envelope):
            return DROPPED_DEDUP

        user_id = envelope.author_id
        name = envelope.display_name
        is_owner = self._config.is_owner(user_id)

        if self.moderation.is_banned(user_id) and not is_owner:
            _log(f"[pipeline] ignoring banned user {name} ({user_id})")
            return DROPPED_BANNED

        async with self._user_locks.hold(user_id):
            verdict = self.rate_limiter.check(user_id, is_owner=is_owner)
        if not verdict.allowed:
            if verdict.reason == RATE_LIMIT_EXCEEDED:
                _log(f"[pipeline] rate limit exceeded by {name} ({user_id})")
                await self._notify(
                    envelope.conversation_id,
                    f"⏳ {name}, you have reached the limit of "
                    f"{self.rate_limiter.hourly_limit} messages per hour. "
                    f"Try again in {verdict.wait_minutes} min.",
                )
                return DENIED_RATE_LIMIT
            _log(f"[pipeline] ignoring blacklisted user {name} ({user_id})")
            return DROPPED_BLACKLISTED

        if not is_owner and self.moderation.check_spam(user_id):
            _log(f"[pipeline] burst spam from {name} ({user_id})")
            return DROPPED_SPAM

        if envelope.is_group and envelope.participant_id:
            outcome = await self._moderate_group(envelope, is_owner)
            if outcome:
                return outcome
            if self._config.leveling.enabled:
                await self._award_group_xp(envelope)

        return await self._dispatch(envelope)

    async def _moderate_group(self, envelope: MessageEnvelope, is_owner: bool) -> Optional[str]:
        gid = envelope.conversation_id
        uid = envelope.participant_id
        name = envelope.display_name

        if not is_owner and self.moderation.is_user_muted(gid, uid):
            _log(f"[pipeline] {name} spoke while muted in {gid}")
            await self._remove(gid, uid, f"🚫 {name} was removed for sending messages while muted.")
            return REMOVED_MUTED

        if (
            not is_owner
            and self.moderation.is_anti_link_active(gid)
            and self.moderation.contains_link(envelope.text)
        ):
            _log(f"[pipeline] anti-link: {name} posted a link in {gid}")
            await self._remove(
                gid, uid, f"🚫 {name} was removed for posting a link. Anti-link is active in this group."
            )
            return REMOVED_LINK
        return None

    async def _remove(self, gid: str, uid: str, notice: str):
        result = await self._gateway.remove_participant(gid, uid)
        if not result.success:
            _log(f"[pipeline] failed to remove {uid} from {gid}: {result.error}")
            return
        await self._notify(gid, notice)

    async def _award_group_xp(self, envelope: MessageEnvelope):
        gid = envelope.conversation_id
        uid = envelope.participant_id
        amount = self._rng.randint(self._config.leveling.xp_min, self._config.leveling.xp_max)
        try:
            async with self._record_locks.hold((gid, uid)):
                result = self.levels.award_xp(gid, uid, amount)
            if not result.leveled_up:
                return
            level = result.record.level
            await self._notify(
                gid,
                f"🎉 @{uid.split('@')[0]} reached level {level}! 🏅 {self.levels.rank_title(level)}",
                mentions=[uid],
            )
            if level >= self.levels.max_level:
                async with self._group_locks.hold(gid):
                    registration = await self.levels.register_max_level_user(
                        gid, uid, envelope.display_name
                    )
                _log(f"[pipeline] max level registration for {uid} in {gid}: {registration.message}")
                if registration.promoted:
                    await self._notify(
                        gid, f"🎊 {envelope.display_name} was automatically promoted to admin!"
                    )
        except Exception as e:
            _log(f"[pipeline] error awarding XP to {uid} in {gid}: {e}")

    async def _dispatch(self, envelope: MessageEnvelope) -> str:
        if self._responder is None:
            return IGNORED
        if envelope.content_kind not in ("text", "audio", "image"):
            return IGNORED

        request = ResponderRequest(
            sender_name=envelope.display_name,
            sender_id=envelope.author_id,
            conversation_type="group" if envelope.is_group else "private",
            text=envelope.text,
            message_kind=envelope.content_kind,
            group_id=envelope.conversation_id if envelope.is_group else None,
            quoted_text=envelope.quoted_text,
            quoted_sender_id=envelope.quoted_sender_id,
            reply_to_bot=envelope.reply_to_bot,
            payload_ref=envelope.payload_ref,
        )
        try:
            reply = await self._responder.respond(request)
        except Exception as e:
            _log(f"[pipeline] responder failed for message {envelope.id}: {e}")
            return FAILED

        if reply.audio:
            result = await self._gateway.send_audio(envelope.conversation_id, reply.audio)
        elif reply.text:
            result = await self._gateway.send_text(envelope.conversation_id, reply.text)
        else:
            return IGNORED
        if not result.success:
            _log(f"[pipeline] failed to deliver reply to {envelope.conversation_id}: {result.error}")
            return FAILED
        return DISPATCHED

    async def _notify(self, conversation_id: str, text: str, mentions: Optional[list] = None):
        result = await self._gateway.send_text(conversation_id, text, mentions=mentions)
        if not result.success:
            _log(f"[pipeline] failed to send notice to {conversation_id}: {result.error}")
