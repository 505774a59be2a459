import pytest

from daily_bar.cache import DailyBarCache
from daily_bar.realtime import DailyBarWatcher
from daily_bar.service import DailyBarAggregator
from daily_bar.store import RewardCard
from daily_bar.visibility import Viewer

from tests.conftest import FIXED_NOW


def _aggregator(store):
    return DailyBarAggregator(store, DailyBarCache(), timezone_name="America/Denver", clock=lambda: FIXED_NOW)


@pytest.mark.asyncio
async def test_change_notification_triggers_full_rerun(fake_store, viewer):
    fake_store.card = RewardCard(id="card-1", is_scratched=False)
    updates = []

    async with DailyBarWatcher(_aggregator(fake_store), viewer, on_update=updates.append) as watcher:
        assert watcher.latest.has_available_card is True
        assert watcher.is_subscribed

        fake_store.card = RewardCard(id="card-1", is_scratched=True)
        fake_store.emit("user-1", {"eventType": "UPDATE"})
        await watcher.wait_idle()

        assert watcher.latest.has_available_card is False
        assert len(updates) == 2

    assert fake_store.listeners == {}


@pytest.mark.asyncio
async def test_bursts_are_not_coalesced(fake_store, viewer):
    fake_store.card = RewardCard(id="card-1")
    watcher = DailyBarWatcher(_aggregator(fake_store), viewer)
    await watcher.start()
    baseline = fake_store.call_names().count("fetch_icons")

    for _ in range(3):
        fake_store.emit("user-1")
    await watcher.wait_idle()

    assert fake_store.call_names().count("fetch_icons") == baseline + 3
    await watcher.stop()


@pytest.mark.asyncio
async def test_async_update_handler_is_awaited(fake_store, viewer):
    fake_store.card = RewardCard(id="card-1")
    seen = []

    async def handler(snapshot):
        seen.append(snapshot.date)

    async with DailyBarWatcher(_aggregator(fake_store), viewer, on_update=handler):
        pass

    assert seen == ["2025-03-10"]


@pytest.mark.asyncio
async def test_signed_out_viewer_is_never_subscribed(fake_store):
    watcher = DailyBarWatcher(_aggregator(fake_store), Viewer.anonymous())

    snapshot = await watcher.start()

    assert snapshot.loading is False
    assert not watcher.is_subscribed
    assert fake_store.listeners == {}
    await watcher.stop()


@pytest.mark.asyncio
async def test_leaving_the_context_finishes_in_flight_passes(fake_store, viewer):
    fake_store.card = RewardCard(id="card-1", is_scratched=False)
    updates = []

    async with DailyBarWatcher(_aggregator(fake_store), viewer, on_update=updates.append) as watcher:
        fake_store.card = RewardCard(id="card-1", is_scratched=True)
        fake_store.emit("user-1")

    assert len(updates) == 2
    assert watcher.latest.has_available_card is False
    assert not watcher.is_subscribed
