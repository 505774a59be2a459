from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from app import create_app
from daily_bar.store import RewardCard
from daily_bar.visibility import FeatureSetting, Viewer
from extensions import db

# 18:00 UTC on 2025-03-10 is midday in Denver, so the partition key is 2025-03-10.
FIXED_NOW = datetime(2025, 3, 10, 18, 0, tzinfo=timezone.utc)
FIXED_DATE = "2025-03-10"


class FakeStore:
    """In-memory stand-in for a daily bar store that records every call."""

    def __init__(self) -> None:
        self.icons: List[dict] = []
        self.settings: List[FeatureSetting] = []
        self.mood = False
        self.fortune = False
        self.word_id: Optional[str] = None
        self.attempt_status: Optional[str] = None
        self.card: Optional[RewardCard] = None
        self.bonus = False
        self.featured_url: Optional[str] = None
        self.first_sticker: Optional[str] = None
        self.provisioned_card: Optional[RewardCard] = None
        self.provision_error: Optional[Exception] = None
        self.card_after_conflict: Optional[RewardCard] = None
        self.fail_on: set = set()
        self.calls: List[tuple] = []
        self.listeners: Dict[str, Any] = {}

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise RuntimeError(f"{name} exploded")

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    async def fetch_icons(self):
        self._record("fetch_icons")
        return list(self.icons)

    async def fetch_settings(self):
        self._record("fetch_settings")
        return list(self.settings)

    async def mood_logged(self, user_id, date_key):
        self._record("mood_logged", user_id, date_key)
        return self.mood

    async def fortune_viewed(self, user_id, date_key):
        self._record("fortune_viewed", user_id, date_key)
        return self.fortune

    async def daily_word_id(self, date_key):
        self._record("daily_word_id", date_key)
        return self.word_id

    async def word_attempt_status(self, user_id, word_id):
        self._record("word_attempt_status", user_id, word_id)
        return self.attempt_status

    async def daily_card(self, user_id, date_key):
        self._record("daily_card", user_id, date_key)
        return self.card

    async def has_unscratched_bonus_card(self, user_id, date_key):
        self._record("has_unscratched_bonus_card", user_id, date_key)
        return self.bonus

    async def featured_preview_url(self, date_key):
        self._record("featured_preview_url", date_key)
        return self.featured_url

    async def provision_daily_card(self, user_id, date_key):
        self._record("provision_daily_card", user_id, date_key)
        if self.provision_error is not None:
            if self.card_after_conflict is not None:
                self.card = self.card_after_conflict
            raise self.provision_error
        if self.provisioned_card is None:
            return None
        self.card = self.provisioned_card
        return self.provisioned_card.id

    async def card_by_id(self, card_id):
        self._record("card_by_id", card_id)
        if self.card and self.card.id == card_id:
            return self.card
        return None

    async def first_sticker_url(self, collection_id):
        self._record("first_sticker_url", collection_id)
        return self.first_sticker

    async def subscribe_card_changes(self, user_id, callback):
        self.listeners[user_id] = callback
        return user_id

    async def unsubscribe(self, handle):
        self.listeners.pop(handle, None)

    def emit(self, user_id: str, payload: Optional[dict] = None) -> None:
        self.listeners[user_id](payload or {"eventType": "UPDATE"})


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def viewer() -> Viewer:
    return Viewer(user_id="user-1", role="bestie", is_authenticated=True)


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "USE_SUPABASE": False,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "DAILY_BAR_CACHE_MAX_AGE_SECONDS": 0,
        }
    )
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()
