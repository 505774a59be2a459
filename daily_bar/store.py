"""Data access for the daily bar: Supabase first, local SQLAlchemy tables as a fallback.

Both stores expose the same coroutine interface so the aggregator never cares
which backend answered. Query errors are raised, not swallowed; the aggregator
owns the failure policy.
"""

from __future__ import annotations

import weakref
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import event, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, object_session

from daily_bar.dates import next_day_start
from daily_bar.models import (
    DailyBarIcon,
    DailyEngagementSetting,
    DailyFortuneView,
    DailyScratchCard,
    MoodEntry,
    WordleAttempt,
    WordleDailyWord,
)
from daily_bar.visibility import FeatureSetting
from extensions import db
from models import Sticker, StickerCollection, find_featured_collection

SCRATCH_CARD_TABLE = "daily_scratch_cards"
PROVISION_RPC = "generate_daily_scratch_card"
CARD_COLUMNS = "id, is_scratched, collection_id"
# Listener key that hears every user's card changes.
ALL_USERS = "*"

ChangeCallback = Callable[[Dict[str, Any]], None]


class DailyBarError(Exception):
    """Raised when a daily bar store operation fails."""


class ProvisioningConflict(DailyBarError):
    """The backend already holds today's card for this user."""


@dataclass(frozen=True)
class RewardCard:
    id: str
    is_scratched: bool = False
    collection_id: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return not self.is_scratched

    @classmethod
    def from_row(cls, row: Optional[dict]) -> Optional["RewardCard"]:
        if not row or not row.get("id"):
            return None
        return cls(
            id=str(row["id"]),
            is_scratched=bool(row.get("is_scratched")),
            collection_id=row.get("collection_id"),
        )


def is_conflict_error(exc: Exception) -> bool:
    message = str(exc).lower()
    return "duplicate key value" in message or "unique constraint" in message


async def _maybe_single(query) -> Optional[dict]:
    # postgrest returns None (not an empty response) when maybe_single() finds no row
    resp = await query.maybe_single().execute()
    if resp is None:
        return None
    return getattr(resp, "data", None) or None


async def _rows(query) -> List[dict]:
    resp = await query.execute()
    return getattr(resp, "data", None) or []


class SupabaseDailyBarStore:
    """Reads and provisions daily bar rows through an async supabase client."""

    def __init__(self, client) -> None:
        self.client = client

    async def fetch_icons(self) -> List[dict]:
        return await _rows(
            self.client.table("daily_bar_icons")
            .select("*")
            .eq("is_active", True)
            .order("display_order")
        )

    async def fetch_settings(self) -> List[FeatureSetting]:
        rows = await _rows(
            self.client.table("daily_engagement_settings").select(
                "feature_key, is_enabled, visible_to_roles"
            )
        )
        return [FeatureSetting.from_row(row) for row in rows]

    async def mood_logged(self, user_id: str, date_key: str) -> bool:
        row = await _maybe_single(
            self.client.table("mood_entries")
            .select("id")
            .eq("user_id", user_id)
            .eq("entry_date", date_key)
        )
        return row is not None

    async def fortune_viewed(self, user_id: str, date_key: str) -> bool:
        row = await _maybe_single(
            self.client.table("daily_fortune_views")
            .select("id")
            .eq("user_id", user_id)
            .eq("view_date", date_key)
        )
        return row is not None

    async def daily_word_id(self, date_key: str) -> Optional[str]:
        row = await _maybe_single(
            self.client.table("wordle_daily_words").select("id").eq("word_date", date_key)
        )
        return row.get("id") if row else None

    async def word_attempt_status(self, user_id: str, word_id: str) -> Optional[str]:
        row = await _maybe_single(
            self.client.table("wordle_attempts")
            .select("status")
            .eq("user_id", user_id)
            .eq("daily_word_id", word_id)
        )
        return row.get("status") if row else None

    async def daily_card(self, user_id: str, date_key: str) -> Optional[RewardCard]:
        row = await _maybe_single(
            self.client.table(SCRATCH_CARD_TABLE)
            .select(CARD_COLUMNS)
            .eq("user_id", user_id)
            .eq("date", date_key)
            .eq("is_bonus_card", False)
        )
        return RewardCard.from_row(row)

    async def has_unscratched_bonus_card(self, user_id: str, date_key: str) -> bool:
        rows = await _rows(
            self.client.table(SCRATCH_CARD_TABLE)
            .select("id")
            .eq("user_id", user_id)
            .eq("date", date_key)
            .eq("is_bonus_card", True)
            .eq("is_scratched", False)
            .limit(1)
        )
        return bool(rows)

    async def featured_preview_url(self, date_key: str) -> Optional[str]:
        rows = await _rows(
            self.client.table("sticker_collections")
            .select("id, preview_sticker_id, preview_sticker:stickers!preview_sticker_id(image_url)")
            .eq("is_active", True)
            .eq("is_featured", True)
            .or_(f"featured_start_date.is.null,featured_start_date.lte.{date_key}")
            .order("featured_start_date", desc=True, nullsfirst=False)
            .limit(1)
        )
        if not rows:
            return None
        preview = rows[0].get("preview_sticker") or {}
        return preview.get("image_url") or None

    async def provision_daily_card(self, user_id: str, date_key: str) -> Optional[str]:
        """Ask the backend to create today's card; returns the new card id."""
        try:
            resp = await self.client.rpc(PROVISION_RPC, {"_user_id": user_id}).execute()
        except Exception as exc:
            if is_conflict_error(exc):
                raise ProvisioningConflict(str(exc)) from exc
            raise
        data = getattr(resp, "data", None)
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict):
            data = data.get("id") or data.get(PROVISION_RPC)
        return str(data) if data else None

    async def card_by_id(self, card_id: str) -> Optional[RewardCard]:
        row = await _maybe_single(
            self.client.table(SCRATCH_CARD_TABLE).select(CARD_COLUMNS).eq("id", card_id)
        )
        return RewardCard.from_row(row)

    async def first_sticker_url(self, collection_id: str) -> Optional[str]:
        rows = await _rows(
            self.client.table("stickers")
            .select("image_url")
            .eq("collection_id", collection_id)
            .eq("is_active", True)
            .order("display_order")
            .limit(1)
        )
        return rows[0].get("image_url") if rows else None

    async def subscribe_card_changes(self, user_id: str, callback: ChangeCallback):
        channel = self.client.channel(f"daily_bar_scratch_updates:{user_id}")
        channel.on_postgres_changes(
            "*",
            callback=callback,
            table=SCRATCH_CARD_TABLE,
            schema="public",
            filter=f"user_id=eq.{user_id}",
        )
        await channel.subscribe()
        return channel

    async def unsubscribe(self, channel) -> None:
        await self.client.remove_channel(channel)


class SqlDailyBarStore:
    """Same interface over the local tables; needs an active Flask app context.

    Committed scratch card writes, from this store or any other session code, are
    announced to in-process subscribers. That stands in for Supabase realtime
    when the app runs without Supabase.
    """

    def __init__(self, timezone_name: Optional[str] = None) -> None:
        self.timezone_name = timezone_name
        self._listeners: Dict[str, List[ChangeCallback]] = {}
        _sql_stores.add(self)

    async def fetch_icons(self) -> List[dict]:
        icons = (
            DailyBarIcon.query.filter_by(is_active=True)
            .order_by(DailyBarIcon.display_order.asc())
            .all()
        )
        return [icon.to_dict() for icon in icons]

    async def fetch_settings(self) -> List[FeatureSetting]:
        return [
            FeatureSetting(
                feature_key=row.feature_key,
                is_enabled=bool(row.is_enabled),
                visible_to_roles=tuple(row.role_list),
            )
            for row in DailyEngagementSetting.query.all()
        ]

    async def mood_logged(self, user_id: str, date_key: str) -> bool:
        return MoodEntry.query.filter_by(user_id=user_id, entry_date=date_key).first() is not None

    async def fortune_viewed(self, user_id: str, date_key: str) -> bool:
        return (
            DailyFortuneView.query.filter_by(user_id=user_id, view_date=date_key).first()
            is not None
        )

    async def daily_word_id(self, date_key: str) -> Optional[str]:
        word = WordleDailyWord.query.filter_by(word_date=date_key).first()
        return word.id if word else None

    async def word_attempt_status(self, user_id: str, word_id: str) -> Optional[str]:
        attempt = WordleAttempt.query.filter_by(user_id=user_id, daily_word_id=word_id).first()
        return attempt.status if attempt else None

    async def daily_card(self, user_id: str, date_key: str) -> Optional[RewardCard]:
        card = DailyScratchCard.query.filter_by(
            user_id=user_id, date=date_key, is_bonus_card=False
        ).first()
        return _card_from_model(card)

    async def has_unscratched_bonus_card(self, user_id: str, date_key: str) -> bool:
        card = DailyScratchCard.query.filter_by(
            user_id=user_id, date=date_key, is_bonus_card=True, is_scratched=False
        ).first()
        return card is not None

    async def featured_preview_url(self, date_key: str) -> Optional[str]:
        collections = StickerCollection.query.filter_by(is_active=True, is_featured=True).all()
        featured = find_featured_collection(collections, date_key)
        if not featured or not featured.preview_sticker:
            return None
        return featured.preview_sticker.image_url or None

    async def provision_daily_card(self, user_id: str, date_key: str) -> Optional[str]:
        collection = self._active_collection(date_key)
        if collection is None:
            return None

        card = DailyScratchCard(
            user_id=user_id,
            date=date_key,
            collection_id=collection.id,
            is_bonus_card=False,
            purchase_number=0,
            expires_at=next_day_start(date_key, self.timezone_name),
        )
        db.session.add(card)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise ProvisioningConflict(str(exc)) from exc
        return card.id

    async def card_by_id(self, card_id: str) -> Optional[RewardCard]:
        return _card_from_model(db.session.get(DailyScratchCard, card_id))

    async def first_sticker_url(self, collection_id: str) -> Optional[str]:
        sticker = (
            Sticker.query.filter_by(collection_id=collection_id, is_active=True)
            .order_by(Sticker.display_order.asc())
            .first()
        )
        return sticker.image_url if sticker else None

    async def subscribe_card_changes(self, user_id: str, callback: ChangeCallback):
        return self.listen(user_id, callback)

    async def unsubscribe(self, handle) -> None:
        self.forget(handle)

    def listen(self, user_id: str, callback: ChangeCallback):
        """Register ``callback`` for one user's card changes, or every user's with ``ALL_USERS``."""
        self._listeners.setdefault(user_id, []).append(callback)
        return (user_id, callback)

    def forget(self, handle) -> None:
        user_id, callback = handle
        callbacks = self._listeners.get(user_id) or []
        if callback in callbacks:
            callbacks.remove(callback)
        if not callbacks:
            self._listeners.pop(user_id, None)

    def _notify(self, user_id: Optional[str], payload: Dict[str, Any]) -> None:
        callbacks = list(self._listeners.get(ALL_USERS) or [])
        if user_id:
            callbacks.extend(self._listeners.get(user_id) or [])
        for callback in callbacks:
            callback(payload)

    def _active_collection(self, date_key: str) -> Optional[StickerCollection]:
        return (
            StickerCollection.query.filter(
                StickerCollection.is_active.is_(True),
                StickerCollection.start_date <= date_key,
                or_(
                    StickerCollection.end_date.is_(None),
                    StickerCollection.end_date >= date_key,
                ),
            )
            .order_by(StickerCollection.display_order.asc())
            .first()
        )


def _card_from_model(card: Optional[DailyScratchCard]) -> Optional[RewardCard]:
    if card is None:
        return None
    return RewardCard(id=card.id, is_scratched=bool(card.is_scratched), collection_id=card.collection_id)


# ====== Local change feed ======
_PENDING_CARD_CHANGES = "daily_bar_card_changes"
_sql_stores: "weakref.WeakSet[SqlDailyBarStore]" = weakref.WeakSet()


def _card_change_recorder(event_type: str):
    record_key = "old" if event_type == "DELETE" else "new"

    def record(mapper, connection, target) -> None:
        session = object_session(target)
        if session is None:
            return
        session.info.setdefault(_PENDING_CARD_CHANGES, []).append(
            {
                "eventType": event_type,
                "table": SCRATCH_CARD_TABLE,
                record_key: {"id": target.id, "user_id": target.user_id},
            }
        )

    return record


for _event_type, _mapper_event in (
    ("INSERT", "after_insert"),
    ("UPDATE", "after_update"),
    ("DELETE", "after_delete"),
):
    event.listen(DailyScratchCard, _mapper_event, _card_change_recorder(_event_type))


@event.listens_for(Session, "after_commit")
def _announce_card_changes(session) -> None:
    # flushed rows are only announced once the transaction is durable
    for payload in session.info.pop(_PENDING_CARD_CHANGES, None) or []:
        record = payload.get("new") or payload.get("old") or {}
        for store in list(_sql_stores):
            store._notify(record.get("user_id"), payload)


@event.listens_for(Session, "after_rollback")
def _discard_card_changes(session) -> None:
    session.info.pop(_PENDING_CARD_CHANGES, None)
