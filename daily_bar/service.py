"""Daily bar aggregation: one pass gathers icons, settings, completions and card state."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from flask import current_app, has_app_context

from daily_bar.cache import DailyBarCache
from daily_bar.dates import today_key
from daily_bar.store import ProvisioningConflict, RewardCard
from daily_bar.visibility import FeatureSetting, Viewer, VisibilityPolicy

COMPLETION_KEYS = ("mood", "fortune", "daily-five")
FINISHED_ATTEMPT_STATUSES = frozenset({"won", "lost"})

_module_logger = logging.getLogger(__name__)


def _empty_completions() -> Dict[str, bool]:
    return {key: False for key in COMPLETION_KEYS}


@dataclass
class DailyBarData:
    """What the daily bar UI needs for one viewer on one day."""

    viewer: Viewer
    icons: List[dict] = field(default_factory=list)
    settings: List[FeatureSetting] = field(default_factory=list)
    completions: Dict[str, bool] = field(default_factory=_empty_completions)
    has_available_card: bool = False
    preview_sticker_url: Optional[str] = None
    date: Optional[str] = None
    loading: bool = False
    refresh: Optional[Callable[[], Awaitable["DailyBarData"]]] = field(
        default=None, repr=False, compare=False
    )

    def can_see_feature(self, feature_key: str) -> bool:
        return VisibilityPolicy(self.settings).can_see(self.viewer, feature_key)

    def to_dict(self) -> dict:
        policy = VisibilityPolicy(self.settings)
        return {
            "date": self.date,
            "loading": self.loading,
            "icons": [
                {**icon, "visible": policy.can_see(self.viewer, str(icon.get("item_key") or ""))}
                for icon in self.icons
            ],
            "completions": dict(self.completions),
            "has_available_card": self.has_available_card,
            "preview_sticker_url": self.preview_sticker_url,
            "settings": [setting.to_dict() for setting in self.settings],
        }


class DailyBarAggregator:
    """Run aggregation passes against a store and keep the last good snapshot per user."""

    def __init__(
        self,
        store,
        cache: Optional[DailyBarCache] = None,
        *,
        timezone_name: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.cache = cache if cache is not None else DailyBarCache()
        self.timezone_name = timezone_name
        self._clock = clock

    async def load(self, viewer: Viewer, *, force: bool = False) -> DailyBarData:
        """Return the viewer's snapshot, running a pass when the cache has nothing fresh.

        Never raises: a failed pass is logged and answered with the previous
        snapshot, or an empty one when there is none.
        """
        if viewer.auth_loading:
            return self._empty(viewer, loading=True)
        if not viewer.is_signed_in:
            return self._empty(viewer)

        if not force:
            cached = self.cache.get(viewer.user_id)
            if cached is not None:
                return self._for_viewer(cached, viewer)

        date_key = today_key(self.timezone_name, self._clock() if self._clock else None)
        try:
            snapshot = await self._aggregate(viewer, date_key)
        except Exception as exc:
            _log("error", "Daily bar load failed for user %s on %s: %s", viewer.user_id, date_key, exc)
            previous = self.cache.peek(viewer.user_id)
            if previous is not None:
                return self._for_viewer(previous, viewer)
            return self._empty(viewer, date_key=date_key)

        self.cache.put(viewer.user_id, snapshot)
        return snapshot

    async def refresh(self, viewer: Viewer) -> DailyBarData:
        return await self.load(viewer, force=True)

    async def _aggregate(self, viewer: Viewer, date_key: str) -> DailyBarData:
        user_id = viewer.user_id
        (
            icons,
            settings,
            mood_done,
            fortune_done,
            word_id,
            daily_card,
            has_bonus,
            featured_url,
        ) = await _gather_all(
            self.store.fetch_icons(),
            self.store.fetch_settings(),
            self.store.mood_logged(user_id, date_key),
            self.store.fortune_viewed(user_id, date_key),
            self.store.daily_word_id(date_key),
            self.store.daily_card(user_id, date_key),
            self.store.has_unscratched_bonus_card(user_id, date_key),
            self.store.featured_preview_url(date_key),
        )

        # the attempt lookup needs the word id, so it runs after the batch
        daily_five_done = False
        if word_id:
            status = await self.store.word_attempt_status(user_id, word_id)
            daily_five_done = status in FINISHED_ATTEMPT_STATUSES

        card = daily_card
        if card is None:
            card = await self._provision(user_id, date_key)

        preview_url = featured_url
        if not preview_url and card and card.collection_id:
            preview_url = await self.store.first_sticker_url(card.collection_id)

        return DailyBarData(
            viewer=viewer,
            icons=list(icons),
            settings=list(settings),
            completions={
                "mood": bool(mood_done),
                "fortune": bool(fortune_done),
                "daily-five": daily_five_done,
            },
            has_available_card=bool(card and card.is_available) or bool(has_bonus),
            preview_sticker_url=preview_url,
            date=date_key,
            refresh=lambda: self.refresh(viewer),
        )

    async def _provision(self, user_id: str, date_key: str) -> Optional[RewardCard]:
        """Create today's card on first read; a lost creation race still yields the card."""
        try:
            card_id = await self.store.provision_daily_card(user_id, date_key)
        except ProvisioningConflict:
            _log("info", "Daily card for user %s on %s already exists; re-reading", user_id, date_key)
            return await self.store.daily_card(user_id, date_key)
        except Exception as exc:
            _log("warning", "Daily card provisioning failed for user %s on %s: %s", user_id, date_key, exc)
            return None

        if not card_id:
            return None
        return await self.store.card_by_id(card_id)

    def _for_viewer(self, snapshot: DailyBarData, viewer: Viewer) -> DailyBarData:
        """Cached snapshots are per user; visibility follows whoever is asking now."""
        if snapshot.viewer == viewer:
            return snapshot
        return replace(snapshot, viewer=viewer, refresh=lambda: self.refresh(viewer))

    def _empty(
        self, viewer: Viewer, *, loading: bool = False, date_key: Optional[str] = None
    ) -> DailyBarData:
        return DailyBarData(
            viewer=viewer,
            date=date_key,
            loading=loading,
            refresh=lambda: self.refresh(viewer),
        )


async def _gather_all(*aws: Awaitable[Any]) -> List[Any]:
    """Await every query, then raise the first failure if any query failed."""
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


def _log(level: str, message: str, *args: Any) -> None:
    logger = current_app.logger if has_app_context() else _module_logger
    getattr(logger, level)(message, *args)
