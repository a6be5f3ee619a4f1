"""Tests for the dedup/staleness filter."""

import pytest

from chatgate.domain.dedup import DUPLICATE, EMPTY, OWN_MESSAGE, STALE, DedupFilter
from chatgate.ports.inbound import MessageEnvelope


def _env(mid="m1", text="hi", ts_ms=None, **kwargs):
    return MessageEnvelope(
        id=mid,
        conversation_id="123@s.whatsapp.net",
        sender_id=kwargs.pop("sender_id", "123@s.whatsapp.net"),
        timestamp_ms=ts_ms if ts_ms is not None else 1_700_050_200_000,
        text=text,
        **kwargs,
    )


@pytest.fixture
def dedup(clock):
    return DedupFilter(window_seconds=30, grace_period_seconds=10, clock=clock)


class TestAdmitOnce:
    def test_second_delivery_rejected(self, dedup):
        assert dedup.admit(_env()) is True
        assert dedup.admit(_env()) is False
        assert dedup.rejection_reason(_env()) == DUPLICATE

    def test_readmitted_after_window(self, dedup, clock):
        assert dedup.admit(_env()) is True
        clock.advance(29)
        assert dedup.admit(_env()) is False
        clock.advance(2)
        assert dedup.admit(_env()) is True

    def test_distinct_ids_independent(self, dedup):
        assert dedup.admit(_env("a")) is True
        assert dedup.admit(_env("b")) is True
        assert len(dedup) == 2

    def test_purge_drops_expired(self, dedup, clock):
        dedup.admit(_env("a"))
        clock.advance(20)
        dedup.admit(_env("b"))
        clock.advance(15)
        assert dedup.purge() == 1
        assert len(dedup) == 1

    def test_rejected_envelope_not_remembered(self, dedup):
        assert dedup.admit(_env(text="  ")) is False
        assert len(dedup) == 0


class TestRejectionReasons:
    def test_own_message_flag(self, dedup):
        assert dedup.rejection_reason(_env(from_me=True)) == OWN_MESSAGE

    def test_own_identity_with_device_suffix(self, dedup):
        dedup.set_bot_id("999:5@s.whatsapp.net")
        assert dedup.rejection_reason(_env(sender_id="999@s.whatsapp.net")) == OWN_MESSAGE

    def test_empty_text(self, dedup):
        assert dedup.rejection_reason(_env(text="")) == EMPTY

    def test_media_without_payload_is_empty(self, dedup):
        assert dedup.rejection_reason(_env(text="", content_kind="image")) == EMPTY

    def test_media_with_payload_admitted(self, dedup):
        env = _env(text="", content_kind="audio", payload_ref="media/1")
        assert dedup.admit(env) is True

    def test_stale_backlog_rejected(self, dedup):
        dedup.mark_connected(1_700_050_200.0)
        assert dedup.rejection_reason(_env(ts_ms=1_700_050_185_000)) == STALE

    def test_within_grace_admitted(self, dedup):
        dedup.mark_connected(1_700_050_200.0)
        assert dedup.admit(_env(ts_ms=1_700_050_195_000)) is True

    def test_no_staleness_before_first_connect(self, dedup):
        assert dedup.admit(_env(ts_ms=1)) is True
