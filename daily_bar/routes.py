"""JSON blueprint for the daily bar."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from flask import Blueprint, jsonify

from daily_bar.service import DailyBarAggregator
from daily_bar.visibility import Viewer

ViewerProvider = Callable[[], Optional[Viewer]]
AggregatorProvider = Callable[[], Awaitable[DailyBarAggregator]]

UNAUTHORIZED_MESSAGE = "Please log in to see your daily activities."


def create_daily_bar_blueprint(
    current_viewer_provider: ViewerProvider,
    aggregator_provider: AggregatorProvider,
) -> Blueprint:
    """Factory so the main app can inject its session lookup and store wiring."""

    bp = Blueprint("daily_bar", __name__, url_prefix="/api/daily-bar")

    def _viewer() -> Viewer:
        return current_viewer_provider() or Viewer.anonymous()

    def _unauthorized():
        return jsonify({"status": "error", "reason": UNAUTHORIZED_MESSAGE}), 401

    @bp.get("")
    async def get_daily_bar():
        viewer = _viewer()
        if not viewer.is_signed_in and not viewer.auth_loading:
            return _unauthorized()
        aggregator = await aggregator_provider()
        snapshot = await aggregator.load(viewer)
        return jsonify(snapshot.to_dict())

    @bp.post("/refresh")
    async def refresh_daily_bar():
        viewer = _viewer()
        if not viewer.is_signed_in:
            return _unauthorized()
        aggregator = await aggregator_provider()
        snapshot = await aggregator.refresh(viewer)
        return jsonify(snapshot.to_dict())

    @bp.get("/features/<feature_key>")
    async def feature_visibility(feature_key: str):
        viewer = _viewer()
        if not viewer.is_signed_in:
            return jsonify({"feature_key": feature_key, "visible": False})
        aggregator = await aggregator_provider()
        snapshot = await aggregator.load(viewer)
        return jsonify({"feature_key": feature_key, "visible": snapshot.can_see_feature(feature_key)})

    return bp
