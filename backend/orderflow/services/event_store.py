# Overview: Service-layer event store; append-only account events and their read API.

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from ..extensions import db
from ..models import AccountEvent, Resource, ENTITY_LABELS, entity_kind, model_for_kind
from ..money import format_money
from orderflow.time_utils import to_utc_z, utcnow
"""
Event Store Invariants

- Append-only: there is no update or delete API, and mapper hooks refuse
  ORM updates/deletes of AccountEvent rows.
- Events are written inside the same DB transaction as the change they
  record; append() never commits.
- Every event is account-scoped and points at a Resource (kind, id).
- Reads are most-recent-first: created_at desc, then id desc.
- Time windows: since is inclusive, until is exclusive.
"""


def jsonable(value):
    """Convert payload values to JSON-safe primitives."""
    if isinstance(value, Decimal):
        return format_money(value)
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


class EventStore:
    def resource_for(self, entity, *, session=None) -> Resource:
        """
        Find or create the Resource pointer for a persisted entity.

        Pending Resource rows in the session are checked first so that two
        events for the same entity within one flush share a pointer.
        """
        session = session or db.session
        kind = entity_kind(entity)
        if entity.id is None:
            raise ValueError(f"{kind} must be flushed before events can reference it")

        for obj in session.new:
            if isinstance(obj, Resource) and obj.resource_type == kind and obj.entity_id == entity.id:
                return obj

        with session.no_autoflush:
            resource = (
                session.query(Resource)
                .filter_by(resource_type=kind, entity_id=entity.id)
                .first()
            )
        if resource is None:
            resource = Resource(
                resource_type=kind,
                entity_id=entity.id,
                name=f"{ENTITY_LABELS[kind]}#{entity.id}",
            )
            session.add(resource)
        return resource

    def resolve(self, resource: Resource, *, session=None):
        """Load the entity a Resource points at (None if it no longer exists)."""
        session = session or db.session
        model = model_for_kind(resource.resource_type)
        return session.get(model, resource.entity_id)

    def append(
        self,
        *,
        account_id: int,
        entity,
        event_type: str,
        payload: Optional[dict] = None,
        created_at: Optional[datetime] = None,
        session=None,
    ) -> AccountEvent:
        """
        Append-only account event.

        - No domain logic here.
        - No deletes/updates of existing events.
        - Does not flush: safe to call from inside a before_flush hook.
        """
        if not event_type or not event_type.strip():
            raise ValueError("event_type is required")
        if account_id is None:
            raise ValueError("account_id is required")

        session = session or db.session
        ev = AccountEvent(
            account_id=account_id,
            resource=self.resource_for(entity, session=session),
            event_type=event_type,
            payload=jsonable(payload) if payload is not None else None,
            created_at=created_at or utcnow(),
        )
        session.add(ev)
        return ev

    def query(
        self,
        account_id: int,
        *,
        event_type: Optional[str] = None,
        entity=None,
        resource_type: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[AccountEvent]:
        q = db.session.query(AccountEvent).filter(AccountEvent.account_id == account_id)

        if event_type is not None:
            q = q.filter(AccountEvent.event_type == event_type)

        if entity is not None or resource_type is not None:
            q = q.join(Resource, AccountEvent.resource_id == Resource.id)
            if entity is not None:
                q = q.filter(
                    Resource.resource_type == entity_kind(entity),
                    Resource.entity_id == entity.id,
                )
            if resource_type is not None:
                q = q.filter(Resource.resource_type == resource_type)

        if since is not None:
            q = q.filter(AccountEvent.created_at >= since)
        if until is not None:
            q = q.filter(AccountEvent.created_at < until)

        q = q.order_by(AccountEvent.created_at.desc(), AccountEvent.id.desc())
        if limit is not None:
            q = q.limit(limit)
        return q.all()

    def for_entity(self, entity, *, limit: Optional[int] = None) -> list[AccountEvent]:
        return self.query(entity.owning_account_id, entity=entity, limit=limit)

    def latest(self, account_id: int, event_type: Optional[str] = None) -> Optional[AccountEvent]:
        events = self.query(account_id, event_type=event_type, limit=1)
        return events[0] if events else None
