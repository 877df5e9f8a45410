from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.domain.models.profile import Profile


class SubscriberResolver:
    def __init__(self, db: Session) -> None:
        self.db = db

    def resolve_by_email(self, email: str | None) -> UUID | None:
        normalized = (email or "").strip().lower()
        if not normalized:
            return None
        return self.db.execute(
            select(Profile.id)
            .where(func.lower(Profile.email) == normalized)
            .order_by(Profile.created_at.asc())
            .limit(1)
        ).scalar_one_or_none()
