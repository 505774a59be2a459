import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

from flask import Flask, jsonify, session
from supabase import acreate_client

from daily_bar import DailyBarAggregator, Viewer, create_daily_bar_blueprint
from daily_bar.cache import DailyBarCache
from daily_bar.dates import DEFAULT_TIMEZONE
from daily_bar.store import ALL_USERS, SqlDailyBarStore, SupabaseDailyBarStore
from extensions import db


# ====== Feature toggle ======
def _env_flag(name: str, default: bool) -> bool:
    """Parse truthy feature-toggle values from the environment."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        print(f"⚠️ Invalid {name} value: {raw!r}. Using default {default}.")
        return default


USE_SUPABASE = _env_flag("USE_SUPABASE", True)  # ✅ Supabase for daily bar reads
SUPABASE_URL = os.environ.get("SUPABASE_URL")
SUPABASE_KEY = os.environ.get("SUPABASE_KEY")

# ====== Daily bar settings ======
DAILY_BAR_TIMEZONE = os.environ.get("DAILY_BAR_TIMEZONE") or DEFAULT_TIMEZONE
DAILY_BAR_CACHE_MAX_AGE_SECONDS = _env_int("DAILY_BAR_CACHE_MAX_AGE_SECONDS", 60)


def create_app(config_overrides: Optional[dict] = None) -> Flask:
    app = Flask(__name__)
    app.secret_key = os.environ.get("SECRET_KEY") or os.urandom(24)
    app.permanent_session_lifetime = timedelta(days=365)

    data_dir = Path(app.root_path) / "data"
    app.config.setdefault("USE_SUPABASE", USE_SUPABASE)
    app.config.setdefault("SUPABASE_URL", SUPABASE_URL)
    app.config.setdefault("SUPABASE_KEY", SUPABASE_KEY)
    app.config.setdefault("DAILY_BAR_TIMEZONE", DAILY_BAR_TIMEZONE)
    app.config.setdefault("DAILY_BAR_CACHE_MAX_AGE_SECONDS", DAILY_BAR_CACHE_MAX_AGE_SECONDS)
    app.config.setdefault("SQLALCHEMY_DATABASE_URI", f"sqlite:///{data_dir / 'app.db'}")
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
    if config_overrides:
        app.config.update(config_overrides)

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        # async views run their event loop on a worker thread
        options = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
        options.setdefault("connect_args", {}).setdefault("check_same_thread", False)
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith(f"sqlite:///{data_dir}"):
            data_dir.mkdir(parents=True, exist_ok=True)

    db.init_app(app)
    cache = DailyBarCache()
    cache.init_app(app)
    sql_store = SqlDailyBarStore(app.config["DAILY_BAR_TIMEZONE"])
    app.extensions["daily_bar_sql_store"] = sql_store

    def invalidate_on_card_change(payload: dict) -> None:
        record = payload.get("new") or payload.get("old") or {}
        user_id = record.get("user_id")
        app.logger.debug("Scratch card %s for user %s; dropping cached daily bar", payload.get("eventType"), user_id)
        # no user on the record: drop everyone
        cache.invalidate(user_id)

    sql_store.listen(ALL_USERS, invalidate_on_card_change)

    @app.errorhandler(404)
    @app.errorhandler(500)
    def show_json_error(err):
        status_code = getattr(err, "code", 500) or 500
        return jsonify({"status": "error", "code": status_code}), status_code

    async def daily_bar_aggregator() -> DailyBarAggregator:
        return DailyBarAggregator(
            await _daily_bar_store(app),
            app.extensions["daily_bar_cache"],
            timezone_name=app.config["DAILY_BAR_TIMEZONE"],
        )

    app.register_blueprint(create_daily_bar_blueprint(get_current_viewer, daily_bar_aggregator))

    with app.app_context():
        db.create_all()

    return app


def supabase_enabled(app: Flask) -> bool:
    return bool(
        app.config.get("USE_SUPABASE")
        and app.config.get("SUPABASE_URL")
        and app.config.get("SUPABASE_KEY")
    )


async def _daily_bar_store(app: Flask):
    """Async supabase clients are bound to the loop that made them, so build one per request."""
    if supabase_enabled(app):
        try:
            client = await acreate_client(app.config["SUPABASE_URL"], app.config["SUPABASE_KEY"])
            return SupabaseDailyBarStore(client)
        except Exception as e:
            app.logger.warning("Could not init Supabase client, using local tables: %s", e)
    return app.extensions["daily_bar_sql_store"]


def get_current_viewer() -> Optional[Viewer]:
    """Return the signed-in viewer from the session (the auth layer fills these keys)."""
    user_id = session.get("user_id")
    if not user_id:
        return None
    return Viewer(
        user_id=str(user_id),
        role=session.get("role"),
        is_authenticated=True,
    )


# ====== Entrypoint ======
if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.environ.get("PORT", 8080)), debug=True)
