"""Tests for LevelSystem — XP ledger and auto-promotion window."""

import math
from unittest.mock import AsyncMock

import pytest

from chatgate.adapters.storage.json_store import JsonStorage
from chatgate.config import LevelingConfig
from chatgate.domain.leveling import LevelSystem
from chatgate.ports.outbound import ActionResult

GID = "g1@g.us"


@pytest.fixture
def storage(tmp_path):
    return JsonStorage(storage_dir=str(tmp_path))


@pytest.fixture
def gateway():
    gw = AsyncMock()
    gw.promote_participant.return_value = ActionResult(success=True)
    gw.update_group_description.return_value = ActionResult(success=True)
    return gw


def _system(storage, clock, gateway=None, **overrides):
    return LevelSystem(storage, LevelingConfig(**overrides), gateway=gateway, clock=clock)


class TestXp:
    def test_required_xp_doubles(self, storage, clock):
        levels = _system(storage, clock)
        assert levels.required_xp(0) == 100
        assert levels.required_xp(1) == 200
        assert levels.required_xp(5) == 3200
        assert levels.required_xp(60) == math.inf

    def test_award_without_level_up(self, storage, clock):
        levels = _system(storage, clock)
        result = levels.award_xp(GID, "u1", 10)
        assert result.leveled_up is False
        assert (result.record.level, result.record.xp) == (0, 10)

    def test_single_grant_crosses_several_levels(self, storage, clock):
        levels = _system(storage, clock)
        result = levels.award_xp(GID, "u1", 350)
        assert result.leveled_up is True
        assert result.record.level == 2
        assert result.record.xp == 50

    def test_xp_zero_at_max_level(self, storage, clock):
        levels = _system(storage, clock, max_level=3)
        result = levels.award_xp(GID, "u1", 10_000)
        assert (result.record.level, result.record.xp) == (3, 0)
        again = levels.award_xp(GID, "u1", 50)
        assert again.leveled_up is False
        assert (again.record.level, again.record.xp) == (3, 0)

    def test_negative_amount_rejected(self, storage, clock):
        levels = _system(storage, clock)
        with pytest.raises(ValueError):
            levels.award_xp(GID, "u1", -1)

    def test_records_persist(self, storage, clock):
        _system(storage, clock).award_xp(GID, "u1", 120)
        rec = _system(storage, clock).get_record(GID, "u1")
        assert (rec.level, rec.xp) == (1, 20)

    def test_corrupt_document_starts_empty(self, storage, clock, tmp_path):
        (tmp_path / "group_levels.json").write_text("[{broken")
        levels = _system(storage, clock)
        assert levels.get_record(GID, "u1").level == 0

    def test_bad_record_skipped(self, storage, clock):
        storage.save("group_levels", [
            {"gid": GID, "uid": "u1", "level": -2, "xp": 0},
            {"gid": GID, "uid": "u2", "level": 4, "xp": 7},
        ])
        levels = _system(storage, clock)
        assert levels.get_record(GID, "u1").level == 0
        assert levels.get_record(GID, "u2").level == 4

    def test_non_object_entries_skipped(self, storage, clock):
        storage.save("group_levels", [None, "u1", {"gid": GID, "uid": "u2", "level": 1, "xp": 5}])
        storage.save("level_promotions", {GID: None})
        levels = _system(storage, clock)
        record = levels.get_record(GID, "u2")
        assert (record.level, record.xp) == (1, 5)
        assert levels.get_record(GID, "u1").level == 0
        assert levels.get_status(GID) == {"active": False}

    def test_leaderboard_order(self, storage, clock):
        levels = _system(storage, clock)
        levels.award_xp(GID, "low", 10)
        levels.award_xp(GID, "high", 150)
        levels.award_xp(GID, "mid", 90)
        levels.award_xp("other@g.us", "elsewhere", 500)
        assert [r.uid for r in levels.leaderboard(GID)] == ["high", "mid", "low"]

    def test_rank_titles(self):
        assert LevelSystem.rank_title(0) == "Recruit"
        assert LevelSystem.rank_title(15) == "Emperor"
        assert LevelSystem.rank_title(42) == "Level 42"


class TestAutoPromotion:
    @pytest.mark.asyncio
    async def test_first_k_promoted_rest_registered(self, storage, clock, gateway):
        levels = _system(storage, clock, gateway, top_k=2)
        levels.set_auto_promotion(GID, True)

        a = await levels.register_max_level_user(GID, "a", "Alice")
        b = await levels.register_max_level_user(GID, "b", "Bob")
        c = await levels.register_max_level_user(GID, "c", "Carol")

        assert a.promoted and a.position == 1
        assert b.promoted and b.position == 2
        assert c.success is True and c.promoted is False
        assert c.message == "Max level registered (3/2)."
        assert gateway.promote_participant.await_count == 2
        gateway.update_group_description.assert_any_await(
            GID, "Auto-admin: Alice (level 60 - top 1/2)"
        )

        again = await levels.register_max_level_user(GID, "c", "Carol")
        assert again.promoted is False
        assert again.message == "Already registered at position 3, not promoted."
        assert gateway.promote_participant.await_count == 2

    @pytest.mark.asyncio
    async def test_promoted_user_not_promoted_twice(self, storage, clock, gateway):
        levels = _system(storage, clock, gateway)
        levels.set_auto_promotion(GID, True)
        await levels.register_max_level_user(GID, "a", "Alice")
        repeat = await levels.register_max_level_user(GID, "a", "Alice")
        assert repeat.success is False
        assert repeat.message == "Already promoted in this window."
        assert gateway.promote_participant.await_count == 1

    @pytest.mark.asyncio
    async def test_disabled_only_registers(self, storage, clock, gateway):
        levels = _system(storage, clock, gateway)
        result = await levels.register_max_level_user(GID, "a", "Alice")
        assert result.success is True and result.promoted is False
        gateway.promote_participant.assert_not_awaited()
        assert levels.get_status(GID)["max_level_users"][0]["uid"] == "a"

    @pytest.mark.asyncio
    async def test_failed_promotion_recorded(self, storage, clock, gateway):
        gateway.promote_participant.return_value = ActionResult(success=False, error="not an admin")
        levels = _system(storage, clock, gateway)
        levels.set_auto_promotion(GID, True)
        result = await levels.register_max_level_user(GID, "a", "Alice")
        assert result.success is False
        assert levels.get_status(GID)["failed"] == ["a"]
        assert levels.get_status(GID)["promoted"] == []
        repeat = await levels.register_max_level_user(GID, "a", "Alice")
        assert repeat.message == "Promotion already failed in this window."
        gateway.update_group_description.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_window_rollover_is_clean_slate(self, storage, clock, gateway):
        levels = _system(storage, clock, gateway, window_days=3)
        await levels.register_max_level_user(GID, "a", "Alice")
        clock.advance(3 * 24 * 3600 + 1)
        result = await levels.register_max_level_user(GID, "b", "Bob")
        assert result.position == 1
        status = levels.get_status(GID)
        assert [u["uid"] for u in status["max_level_users"]] == ["b"]
        assert status["active"] is True
        assert status["days_remaining"] == 3

    @pytest.mark.asyncio
    async def test_window_and_settings_persist(self, storage, clock, gateway):
        levels = _system(storage, clock, gateway)
        levels.set_auto_promotion(GID, True)
        await levels.register_max_level_user(GID, "a", "Alice")
        reloaded = _system(storage, clock, gateway)
        assert reloaded.is_auto_promotion_enabled(GID) is True
        assert reloaded.get_status(GID)["promoted"] == ["a"]

    def test_status_without_window(self, storage, clock):
        assert _system(storage, clock).get_status(GID) == {"active": False}
