"""Local tables mirroring the Supabase rows the daily bar reads (used when Supabase is off)."""

from datetime import datetime, timezone

from extensions import db
from models import _new_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DailyBarIcon(db.Model):
    __tablename__ = "daily_bar_icons"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    item_key = db.Column(db.String(50), nullable=False)
    label = db.Column(db.String(120), nullable=False)
    icon_url = db.Column(db.String(500), nullable=True)
    display_order = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_key": self.item_key,
            "label": self.label,
            "icon_url": self.icon_url,
            "display_order": self.display_order,
            "is_active": self.is_active,
        }


class DailyEngagementSetting(db.Model):
    __tablename__ = "daily_engagement_settings"

    feature_key = db.Column(db.String(50), primary_key=True)
    is_enabled = db.Column(db.Boolean, default=True, nullable=False)
    # comma separated role labels
    visible_to_roles = db.Column(db.Text, default="", nullable=False)

    @property
    def role_list(self) -> list[str]:
        return [role.strip() for role in (self.visible_to_roles or "").split(",") if role.strip()]


class MoodEntry(db.Model):
    __tablename__ = "mood_entries"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(36), index=True, nullable=False)
    entry_date = db.Column(db.String(10), nullable=False)
    mood = db.Column(db.String(30), nullable=True)

    __table_args__ = (db.UniqueConstraint("user_id", "entry_date", name="uq_mood_user_date"),)


class DailyFortuneView(db.Model):
    __tablename__ = "daily_fortune_views"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(36), index=True, nullable=False)
    view_date = db.Column(db.String(10), nullable=False)

    __table_args__ = (db.UniqueConstraint("user_id", "view_date", name="uq_fortune_user_date"),)


class WordleDailyWord(db.Model):
    __tablename__ = "wordle_daily_words"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    word_date = db.Column(db.String(10), unique=True, nullable=False)
    word = db.Column(db.String(5), nullable=False)


class WordleAttempt(db.Model):
    __tablename__ = "wordle_attempts"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(36), index=True, nullable=False)
    daily_word_id = db.Column(db.String(36), db.ForeignKey("wordle_daily_words.id"), nullable=False)
    status = db.Column(db.String(20), default="in_progress", nullable=False)

    __table_args__ = (
        db.UniqueConstraint("user_id", "daily_word_id", name="uq_wordle_user_word"),
    )


class DailyScratchCard(db.Model):
    """One scratch card per user/day, plus numbered bonus cards."""

    __tablename__ = "daily_scratch_cards"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(36), index=True, nullable=False)
    date = db.Column(db.String(10), nullable=False)
    collection_id = db.Column(db.String(36), db.ForeignKey("sticker_collections.id"), nullable=False)
    is_bonus_card = db.Column(db.Boolean, default=False, nullable=False)
    purchase_number = db.Column(db.Integer, default=0, nullable=False)
    is_scratched = db.Column(db.Boolean, default=False, nullable=False)
    scratched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revealed_sticker_id = db.Column(db.String(36), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "date", "is_bonus_card", "purchase_number", name="uq_scratch_user_date_card"
        ),
    )
