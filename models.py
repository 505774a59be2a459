"""Database models for the sticker collections behind daily scratch cards."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import func

from extensions import db


def _new_id() -> str:
    return str(uuid.uuid4())


class StickerCollection(db.Model):
    """A themed set of stickers that daily scratch cards draw their prizes from."""

    __tablename__ = "sticker_collections"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    name = db.Column(db.String(120), nullable=False)
    theme = db.Column(db.String(50), nullable=False, default="classic")
    description = db.Column(db.Text, nullable=True)

    # YYYY-MM-DD keys, compared as strings against the daily partition key
    start_date = db.Column(db.String(10), nullable=False)
    end_date = db.Column(db.String(10), nullable=True)
    featured_start_date = db.Column(db.String(10), nullable=True)

    display_order = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_featured = db.Column(db.Boolean, default=False, nullable=False)

    preview_sticker_id = db.Column(db.String(36), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    preview_sticker = db.relationship(
        "Sticker",
        primaryjoin="foreign(StickerCollection.preview_sticker_id) == Sticker.id",
        viewonly=True,
    )

    STATUS_LIVE = "Live"
    STATUS_SCHEDULED = "Scheduled"
    STATUS_EXPIRED = "Expired"
    STATUS_INACTIVE = "Inactive"

    def status(self, date_key: Optional[str] = None) -> str:
        """Return a friendly status label for the given day (UTC today by default)."""
        ref = date_key or datetime.now(timezone.utc).strftime("%Y-%m-%d")
        if not self.is_active:
            return self.STATUS_INACTIVE
        if self.start_date and self.start_date > ref:
            return self.STATUS_SCHEDULED
        if self.end_date and self.end_date < ref:
            return self.STATUS_EXPIRED
        return self.STATUS_LIVE

    def is_live_on(self, date_key: str) -> bool:
        return self.status(date_key) == self.STATUS_LIVE

    def is_featured_on(self, date_key: str) -> bool:
        if not (self.is_active and self.is_featured):
            return False
        return not self.featured_start_date or self.featured_start_date <= date_key

    def __repr__(self) -> str:  # pragma: no cover - helper for shell debugging
        return f"<StickerCollection id={self.id} name={self.name!r}>"


class Sticker(db.Model):
    __tablename__ = "stickers"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    collection_id = db.Column(
        db.String(36), db.ForeignKey("sticker_collections.id"), index=True, nullable=False
    )
    name = db.Column(db.String(120), nullable=False)
    image_url = db.Column(db.String(500), nullable=False)
    rarity = db.Column(db.String(20), nullable=False, default="common")
    display_order = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)


def find_featured_collection(
    collections: Iterable[StickerCollection], date_key: str
) -> Optional[StickerCollection]:
    """Pick the featured collection for a day: latest featured start first, undated last."""
    eligible = [collection for collection in collections if collection.is_featured_on(date_key)]
    if not eligible:
        return None
    dated = [c for c in eligible if c.featured_start_date]
    if dated:
        return max(dated, key=lambda c: c.featured_start_date)
    return min(eligible, key=lambda c: c.display_order)
