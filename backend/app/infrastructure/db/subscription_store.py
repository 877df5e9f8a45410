"""
Persistence for subscription rows keyed by the Stripe subscription id.

Every write is a single statement committed on its own, so a row is either
fully written or untouched. Upserts use ``INSERT ... ON CONFLICT
(stripe_subscription_id) DO UPDATE``; keyed updates that match nothing are a
no-op rather than an error.
"""
from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.errors import StoreWriteError
from app.domain.models.service_subscription import ServiceSubscription
from app.domain.models.subscription import Subscription

logger = logging.getLogger(__name__)

_CONFLICT_TARGET = "stripe_subscription_id"
_IMMUTABLE_ON_CONFLICT = frozenset({"id", _CONFLICT_TARGET, "created_at"})
_UPSERT_FACTORIES = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SqlAlchemySubscriptionStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def upsert_subscription(self, values: dict[str, Any]) -> None:
        self._upsert(Subscription, values)

    def upsert_service_subscription(self, values: dict[str, Any]) -> None:
        self._upsert(ServiceSubscription, values)

    def update_subscription(self, external_id: str, patch: dict[str, Any]) -> int:
        return self._update(Subscription, external_id, patch)

    def update_service_subscription(self, external_id: str, patch: dict[str, Any]) -> int:
        return self._update(ServiceSubscription, external_id, patch)

    def find_service_subscription(self, external_id: str) -> ServiceSubscription | None:
        statement = select(ServiceSubscription).where(ServiceSubscription.stripe_subscription_id == external_id)
        try:
            return self.db.execute(statement).scalar_one_or_none()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "subscription_store_lookup_failed table=%s stripe_subscription_id=%s error=%s",
                ServiceSubscription.__tablename__,
                external_id,
                exc,
            )
            raise StoreWriteError(f"service_subscriptions.lookup failed for {external_id}") from exc

    def _upsert(self, model: type[Subscription] | type[ServiceSubscription], values: dict[str, Any]) -> None:
        external_id = values.get(_CONFLICT_TARGET)
        if not external_id:
            raise StoreWriteError(f"{model.__tablename__} upsert requires {_CONFLICT_TARGET}")

        dialect_name = self.db.get_bind().dialect.name
        insert_factory = _UPSERT_FACTORIES.get(dialect_name)
        if insert_factory is None:
            raise StoreWriteError(f"Upsert is not supported on dialect '{dialect_name}'")

        row = {**values, "updated_at": datetime.now(UTC)}
        statement = insert_factory(model).values(**row)
        statement = statement.on_conflict_do_update(
            index_elements=[_CONFLICT_TARGET],
            set_={key: statement.excluded[key] for key in row if key not in _IMMUTABLE_ON_CONFLICT},
        )
        self._write(statement, operation=f"{model.__tablename__}.upsert", external_id=external_id)

    def _update(
        self,
        model: type[Subscription] | type[ServiceSubscription],
        external_id: str,
        patch: dict[str, Any],
    ) -> int:
        statement = (
            update(model)
            .where(model.stripe_subscription_id == external_id)
            .values(**patch, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        matched = self._write(statement, operation=f"{model.__tablename__}.update", external_id=external_id)
        if matched == 0:
            logger.info(
                "subscription_store_update_no_match table=%s stripe_subscription_id=%s",
                model.__tablename__,
                external_id,
            )
        return matched

    def _write(self, statement, *, operation: str, external_id: str) -> int:
        try:
            result = self.db.execute(statement)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "subscription_store_write_failed operation=%s stripe_subscription_id=%s error=%s",
                operation,
                external_id,
                exc,
            )
            raise StoreWriteError(f"{operation} failed for {external_id}") from exc
        return int(getattr(result, "rowcount", 0) or 0)
