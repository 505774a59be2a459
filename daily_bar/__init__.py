"""Daily engagement bar: today's completions, scratch card status and feature visibility."""

from .routes import create_daily_bar_blueprint
from .service import DailyBarAggregator, DailyBarData
from .visibility import Viewer

__all__ = ["create_daily_bar_blueprint", "DailyBarAggregator", "DailyBarData", "Viewer"]
