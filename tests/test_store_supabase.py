"""Tests for SupabaseDailyBarStore against a mocked async query builder."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from daily_bar.store import (
    ProvisioningConflict,
    RewardCard,
    SupabaseDailyBarStore,
    is_conflict_error,
)

CHAIN_METHODS = ("select", "eq", "order", "limit", "or_")


def _builder(rows=None, single=None):
    """Query builder whose filters chain and whose execute() resolves to ``rows``."""
    builder = MagicMock()
    for name in CHAIN_METHODS:
        getattr(builder, name).return_value = builder
    builder.execute = AsyncMock(return_value=MagicMock(data=rows))
    single_builder = MagicMock()
    single_builder.execute = AsyncMock(return_value=single)
    builder.maybe_single.return_value = single_builder
    return builder


def _client(builder):
    client = MagicMock()
    client.table.return_value = builder
    return client


class TestReads:
    @pytest.mark.asyncio
    async def test_icons_are_active_and_ordered(self):
        builder = _builder(rows=[{"id": "i1", "item_key": "mood"}])
        client = _client(builder)

        icons = await SupabaseDailyBarStore(client).fetch_icons()

        assert icons == [{"id": "i1", "item_key": "mood"}]
        client.table.assert_called_once_with("daily_bar_icons")
        builder.eq.assert_called_once_with("is_active", True)
        builder.order.assert_called_once_with("display_order")

    @pytest.mark.asyncio
    async def test_settings_become_feature_settings(self):
        builder = _builder(
            rows=[{"feature_key": "mood", "is_enabled": False, "visible_to_roles": ["bestie"]}]
        )

        settings = await SupabaseDailyBarStore(_client(builder)).fetch_settings()

        assert settings[0].feature_key == "mood"
        assert settings[0].is_enabled is False
        assert settings[0].visible_to_roles == ("bestie",)

    @pytest.mark.asyncio
    async def test_missing_single_row_is_none(self):
        builder = _builder(single=None)

        store = SupabaseDailyBarStore(_client(builder))

        assert await store.mood_logged("user-1", "2025-03-10") is False
        assert await store.daily_word_id("2025-03-10") is None
        assert await store.daily_card("user-1", "2025-03-10") is None

    @pytest.mark.asyncio
    async def test_daily_card_filters_non_bonus_card_for_the_day(self):
        builder = _builder(
            single=MagicMock(data={"id": "card-1", "is_scratched": False, "collection_id": "col-1"})
        )

        card = await SupabaseDailyBarStore(_client(builder)).daily_card("user-1", "2025-03-10")

        assert card == RewardCard(id="card-1", is_scratched=False, collection_id="col-1")
        builder.eq.assert_any_call("user_id", "user-1")
        builder.eq.assert_any_call("date", "2025-03-10")
        builder.eq.assert_any_call("is_bonus_card", False)

    @pytest.mark.asyncio
    async def test_bonus_card_check_looks_for_unscratched_cards(self):
        builder = _builder(rows=[{"id": "bonus-1"}])

        assert await SupabaseDailyBarStore(_client(builder)).has_unscratched_bonus_card("user-1", "2025-03-10")
        builder.eq.assert_any_call("is_bonus_card", True)
        builder.eq.assert_any_call("is_scratched", False)
        builder.limit.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_featured_preview_reads_joined_sticker(self):
        builder = _builder(rows=[{"id": "col-1", "preview_sticker": {"image_url": "https://cdn/p.png"}}])

        url = await SupabaseDailyBarStore(_client(builder)).featured_preview_url("2025-03-10")

        assert url == "https://cdn/p.png"

    @pytest.mark.asyncio
    async def test_featured_preview_without_sticker_is_none(self):
        builder = _builder(rows=[{"id": "col-1", "preview_sticker": None}])

        assert await SupabaseDailyBarStore(_client(builder)).featured_preview_url("2025-03-10") is None

    @pytest.mark.asyncio
    async def test_query_errors_propagate(self):
        builder = _builder()
        builder.execute = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await SupabaseDailyBarStore(_client(builder)).fetch_icons()


class TestProvisioning:
    @pytest.mark.asyncio
    async def test_rpc_returns_new_card_id(self):
        client = MagicMock()
        rpc = MagicMock()
        rpc.execute = AsyncMock(return_value=MagicMock(data="card-42"))
        client.rpc.return_value = rpc

        card_id = await SupabaseDailyBarStore(client).provision_daily_card("user-1", "2025-03-10")

        assert card_id == "card-42"
        client.rpc.assert_called_once_with("generate_daily_scratch_card", {"_user_id": "user-1"})

    @pytest.mark.asyncio
    async def test_rpc_with_empty_result_returns_none(self):
        client = MagicMock()
        client.rpc.return_value.execute = AsyncMock(return_value=MagicMock(data=None))

        assert await SupabaseDailyBarStore(client).provision_daily_card("user-1", "2025-03-10") is None

    @pytest.mark.asyncio
    async def test_unique_violation_becomes_conflict(self):
        client = MagicMock()
        client.rpc.return_value.execute = AsyncMock(
            side_effect=Exception('duplicate key value violates unique constraint "daily_cards_key"')
        )

        with pytest.raises(ProvisioningConflict):
            await SupabaseDailyBarStore(client).provision_daily_card("user-1", "2025-03-10")

    @pytest.mark.asyncio
    async def test_other_rpc_errors_are_reraised(self):
        client = MagicMock()
        client.rpc.return_value.execute = AsyncMock(side_effect=TimeoutError("slow"))

        with pytest.raises(TimeoutError):
            await SupabaseDailyBarStore(client).provision_daily_card("user-1", "2025-03-10")


def test_conflict_detection_matches_postgres_messages():
    assert is_conflict_error(Exception("Duplicate key value violates ..."))
    assert is_conflict_error(Exception("UNIQUE constraint failed: daily_scratch_cards.user_id"))
    assert not is_conflict_error(Exception("connection reset"))


@pytest.mark.asyncio
async def test_subscription_is_scoped_to_the_users_cards():
    client = MagicMock()
    channel = MagicMock()
    channel.subscribe = AsyncMock()
    client.channel.return_value = channel
    client.remove_channel = AsyncMock()
    callback = MagicMock()
    store = SupabaseDailyBarStore(client)

    handle = await store.subscribe_card_changes("user-1", callback)
    await store.unsubscribe(handle)

    channel.on_postgres_changes.assert_called_once_with(
        "*",
        callback=callback,
        table="daily_scratch_cards",
        schema="public",
        filter="user_id=eq.user-1",
    )
    channel.subscribe.assert_awaited_once()
    client.remove_channel.assert_awaited_once_with(channel)
