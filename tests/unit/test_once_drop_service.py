"""
Unit tests for OnceDropService (the award state machine).

The repository is mocked; randomness and time are injected.
"""

import asyncio

import pytest

from oncedrop.core.exceptions import DatabaseError
from oncedrop.modules.once_drop.record import RewardRecord
from oncedrop.modules.once_drop.service import AwardState, GrantDecision, OnceDropService
from oncedrop.modules.once_drop.settings import OnceDropSettings
from tests.fakes import FIXED_NOW, AlwaysLoses, AlwaysWins, FakeLoot

pytestmark = pytest.mark.unit

KEY = "geddon_17782_once"


def storage_down(operation="load"):
    return DatabaseError(operation, ConnectionRefusedError("db down"))


@pytest.fixture
def rng():
    return AlwaysWins()


@pytest.fixture
def service(mock_repository, config_manager, mock_event_bus, rng, clock):
    return OnceDropService(
        repository=mock_repository,
        config_manager=config_manager,
        event_bus=mock_event_bus,
        rng=rng,
        clock=clock,
    )


@pytest.fixture
async def ready(service, sure_settings):
    await service.initialize(sure_settings)
    return service


class TestInitialize:
    async def test_starts_unknown(self, service):
        assert service.state is AwardState.UNKNOWN

    async def test_loads_ungranted(self, ready, mock_repository):
        mock_repository.ensure_schema.assert_awaited_once_with(KEY)
        mock_repository.reset_to_ungranted.assert_not_called()
        assert ready.state is AwardState.UNGRANTED
        assert ready.already_granted is False

    async def test_loads_granted(self, service, mock_repository, sure_settings):
        mock_repository.load.side_effect = None
        mock_repository.load.return_value = RewardRecord(KEY, True, 123, "Ragnar")

        await service.initialize(sure_settings)

        assert service.state is AwardState.GRANTED
        assert service.already_granted is True

    async def test_reset_on_startup_runs_before_load(self, service, mock_repository):
        calls = []

        async def reset(key):
            calls.append("reset")

        async def load(key):
            calls.append("load")
            return RewardRecord(key, True, 99, "Ragnar") if "reset" not in calls else RewardRecord.ungranted(key)

        mock_repository.reset_to_ungranted.side_effect = reset
        mock_repository.load.side_effect = load

        await service.initialize(OnceDropSettings(reset_on_startup=True))

        assert calls == ["reset", "load"]
        assert service.already_granted is False

    async def test_storage_failure_fails_open(self, service, mock_repository, sure_settings):
        mock_repository.ensure_schema.side_effect = storage_down("ensure_schema")

        await service.initialize(sure_settings)

        assert service.state is AwardState.UNGRANTED
        assert service.already_granted is False

    async def test_reinitialize_reloads_flag(self, ready, mock_repository, sure_settings):
        mock_repository.load.side_effect = None
        mock_repository.load.return_value = RewardRecord(KEY, True, 5, None)

        await ready.initialize(sure_settings)

        assert ready.already_granted is True

    async def test_programming_errors_propagate(self, service, mock_repository, sure_settings):
        mock_repository.load.side_effect = TypeError("bug")
        with pytest.raises(TypeError):
            await service.initialize(sure_settings)


class TestTryGrantOnDefeat:
    async def test_rejected_before_initialize(self, service, mock_repository):
        decision = await service.try_grant_on_defeat(12056, "Ragnar", FakeLoot())
        assert decision is GrantDecision.DENIED
        mock_repository.record_grant.assert_not_called()

    async def test_grants_and_persists(self, ready, mock_repository, mock_event_bus):
        decision = await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())

        assert decision is GrantDecision.GRANTED
        assert ready.state is AwardState.GRANTED
        assert ready.already_granted is True
        mock_repository.record_grant.assert_awaited_once_with(KEY, "Ragnar", FIXED_NOW)
        event_name, payload = mock_event_bus.publish.await_args.args
        assert event_name == "once_drop.granted"
        assert payload["persisted"] is True
        assert payload["item_id"] == 17782

    async def test_wrong_target_is_skipped(self, ready, rng):
        assert await ready.try_grant_on_defeat(11502, "Ragnar", FakeLoot()) is GrantDecision.SKIP
        assert rng.calls == 0

    async def test_disabled_is_skipped(self, service):
        await service.initialize(OnceDropSettings(enabled=False, chance_percent=100.0))
        assert await service.try_grant_on_defeat(12056, "Ragnar", FakeLoot()) is GrantDecision.SKIP

    async def test_item_already_in_loot_is_skipped(self, ready, mock_repository):
        loot = FakeLoot(quest_items=[17782])
        assert await ready.try_grant_on_defeat(12056, "Ragnar", loot) is GrantDecision.SKIP
        mock_repository.record_grant.assert_not_called()

    async def test_failed_roll_is_denied(self, mock_repository, config_manager, mock_event_bus, clock):
        losing = OnceDropService(
            mock_repository, config_manager, mock_event_bus, rng=AlwaysLoses(), clock=clock
        )
        await losing.initialize(OnceDropSettings(chance_percent=50.0))

        assert await losing.try_grant_on_defeat(12056, "Ragnar", FakeLoot()) is GrantDecision.DENIED
        assert losing.already_granted is False
        mock_repository.record_grant.assert_not_called()

    async def test_second_grant_is_denied_without_rolling(self, service, rng):
        await service.initialize(OnceDropSettings(chance_percent=50.0))

        first = await service.try_grant_on_defeat(12056, "Ragnar", FakeLoot())
        second = await service.try_grant_on_defeat(12056, "Bjorn", FakeLoot())

        assert first is GrantDecision.GRANTED
        assert second is GrantDecision.DENIED
        assert rng.calls == 1

    async def test_allow_repeat_grants_again(self, service, mock_repository):
        await service.initialize(OnceDropSettings(chance_percent=100.0, allow_repeat=True))

        first = await service.try_grant_on_defeat(12056, "Ragnar", FakeLoot())
        second = await service.try_grant_on_defeat(12056, "Bjorn", FakeLoot())

        assert (first, second) == (GrantDecision.GRANTED, GrantDecision.GRANTED)
        assert mock_repository.record_grant.await_count == 2

    async def test_persistence_failure_still_grants(self, ready, mock_repository, mock_event_bus):
        mock_repository.record_grant.side_effect = storage_down("record_grant")

        decision = await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())

        assert decision is GrantDecision.GRANTED
        assert ready.already_granted is True
        assert mock_event_bus.publish.await_args.args[1]["persisted"] is False
        assert await ready.try_grant_on_defeat(12056, "Bjorn", FakeLoot()) is GrantDecision.DENIED

    async def test_concurrent_defeats_grant_exactly_once(self, ready, mock_repository):
        async def slow_write(*args):
            await asyncio.sleep(0)

        mock_repository.record_grant.side_effect = slow_write

        decisions = await asyncio.gather(
            *(ready.try_grant_on_defeat(12056, f"Player{i}", FakeLoot()) for i in range(64))
        )

        assert decisions.count(GrantDecision.GRANTED) == 1
        assert decisions.count(GrantDecision.DENIED) == 63
        assert mock_repository.record_grant.await_count == 1

    async def test_events_during_reinitialize_are_rejected(self, ready, mock_repository, sure_settings):
        gate = asyncio.Event()

        async def blocked_load(key):
            await gate.wait()
            return RewardRecord.ungranted(key)

        mock_repository.load.side_effect = blocked_load
        reload_task = asyncio.create_task(ready.initialize(sure_settings))
        await asyncio.sleep(0)

        decision = await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())
        gate.set()
        await reload_task

        assert decision is GrantDecision.DENIED
        assert ready.state is AwardState.UNGRANTED


class TestConfirmOnCollection:
    async def test_records_metadata_only(self, ready, mock_repository, mock_event_bus):
        await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())

        assert await ready.confirm_on_collection("Bjorn", 1_700_000_500) is True

        mock_repository.record_collection_metadata.assert_awaited_once_with(KEY, "Bjorn", 1_700_000_500)
        assert ready.already_granted is True
        assert mock_event_bus.publish.await_args.args[0] == "once_drop.collected"

    async def test_defaults_timestamp_to_clock(self, ready, mock_repository):
        await ready.confirm_on_collection("Bjorn")
        mock_repository.record_collection_metadata.assert_awaited_once_with(KEY, "Bjorn", FIXED_NOW)

    @pytest.mark.parametrize("timestamp", [0, -5])
    async def test_non_positive_timestamp_uses_clock(self, ready, mock_repository, timestamp):
        await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())

        assert await ready.confirm_on_collection("Bjorn", timestamp) is True

        mock_repository.record_collection_metadata.assert_awaited_once_with(KEY, "Bjorn", FIXED_NOW)

    @pytest.mark.parametrize("actor", [None, ""])
    async def test_missing_actor_is_skipped(self, ready, mock_repository, actor):
        assert await ready.confirm_on_collection(actor) is False
        mock_repository.record_collection_metadata.assert_not_called()

    async def test_storage_failure_never_raises(self, ready, mock_repository):
        mock_repository.record_collection_metadata.side_effect = storage_down("record_collection_metadata")
        assert await ready.confirm_on_collection("Bjorn") is False

    async def test_rejected_before_initialize(self, service, mock_repository):
        assert await service.confirm_on_collection("Bjorn") is False
        mock_repository.record_collection_metadata.assert_not_called()


class TestResetAndStatus:
    async def test_reset_allows_a_new_grant(self, ready, mock_repository, mock_event_bus):
        await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())

        assert await ready.reset() is True

        mock_repository.reset_to_ungranted.assert_awaited_with(KEY)
        assert ready.state is AwardState.UNGRANTED
        assert mock_event_bus.publish.await_args.args[0] == "once_drop.reset"
        assert await ready.try_grant_on_defeat(12056, "Bjorn", FakeLoot()) is GrantDecision.GRANTED

    async def test_reset_with_storage_down_clears_memory(self, ready, mock_repository):
        await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())
        mock_repository.reset_to_ungranted.side_effect = storage_down("reset_to_ungranted")

        assert await ready.reset() is False
        assert ready.already_granted is False

    async def test_status_snapshot(self, ready, sure_settings):
        status = ready.status()
        assert status.state is AwardState.UNGRANTED
        assert status.settings == sure_settings
        assert status.to_dict()["state"] == "ungranted"
        assert status.to_dict()["chance_percent"] == 100.0


class TestUnpersistedGrant:
    async def test_collection_write_persists_a_failed_grant(self, ready, mock_repository):
        mock_repository.record_grant.side_effect = [storage_down("record_grant"), None]
        await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())
        assert ready.has_unpersisted_grant is True
        assert ready.status().grant_persisted is False

        assert await ready.confirm_on_collection("Lagertha") is True

        mock_repository.record_grant.assert_awaited_with(KEY, "Lagertha", FIXED_NOW)
        mock_repository.record_collection_metadata.assert_not_called()
        assert ready.has_unpersisted_grant is False
        assert ready.status().grant_persisted is True

    async def test_next_defeat_retries_the_write(self, ready, mock_repository):
        mock_repository.record_grant.side_effect = [storage_down("record_grant"), None]
        await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())

        assert await ready.try_grant_on_defeat(12056, "Bjorn", FakeLoot()) is GrantDecision.DENIED

        assert mock_repository.record_grant.await_count == 2
        mock_repository.record_grant.assert_awaited_with(KEY, "Ragnar", FIXED_NOW)
        assert ready.has_unpersisted_grant is False

    async def test_failed_retry_keeps_the_grant_queued(self, ready, mock_repository):
        mock_repository.record_grant.side_effect = storage_down("record_grant")
        await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())

        assert await ready.confirm_on_collection("Lagertha") is False

        assert ready.has_unpersisted_grant is True
        assert ready.already_granted is True

    async def test_reinitialize_keeps_and_writes_the_grant(self, ready, mock_repository, sure_settings):
        mock_repository.record_grant.side_effect = [storage_down("record_grant"), None]
        await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())

        await ready.initialize(sure_settings)

        mock_repository.record_grant.assert_awaited_with(KEY, "Ragnar", FIXED_NOW)
        assert ready.already_granted is True
        assert ready.has_unpersisted_grant is False

    async def test_reinitialize_with_storage_down_still_remembers(self, ready, mock_repository, sure_settings):
        mock_repository.record_grant.side_effect = storage_down("record_grant")
        await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())

        await ready.initialize(sure_settings)

        assert ready.state is AwardState.GRANTED
        assert await ready.try_grant_on_defeat(12056, "Bjorn", FakeLoot()) is GrantDecision.DENIED

    async def test_reset_discards_the_queued_grant(self, ready, mock_repository):
        mock_repository.record_grant.side_effect = storage_down("record_grant")
        await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())

        await ready.reset()

        assert ready.has_unpersisted_grant is False


class TestRevokeUnplacedGrant:
    async def test_revoke_returns_to_ungranted(self, ready, mock_repository, mock_event_bus):
        await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())

        assert await ready.revoke_unplaced_grant() is True

        mock_repository.reset_to_ungranted.assert_awaited_once_with(KEY)
        assert ready.state is AwardState.UNGRANTED
        assert ready.already_granted is False
        assert mock_event_bus.publish.await_args.args[0] == "once_drop.revoked"
        assert await ready.try_grant_on_defeat(12056, "Bjorn", FakeLoot()) is GrantDecision.GRANTED

    async def test_revoke_with_storage_down_still_clears_memory(self, ready, mock_repository):
        await ready.try_grant_on_defeat(12056, "Ragnar", FakeLoot())
        mock_repository.reset_to_ungranted.side_effect = storage_down("reset_to_ungranted")

        assert await ready.revoke_unplaced_grant() is False
        assert ready.already_granted is False

    async def test_revoke_with_repeats_leaves_the_record(self, service, mock_repository):
        await service.initialize(OnceDropSettings(chance_percent=100.0, allow_repeat=True))
        await service.try_grant_on_defeat(12056, "Ragnar", FakeLoot())

        assert await service.revoke_unplaced_grant() is True
        mock_repository.reset_to_ungranted.assert_not_called()
