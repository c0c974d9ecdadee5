# Overview: Service-layer audit trail; turns tracked field changes into account events at flush time.

"""
Audit Trail

================================================================================
PURPOSE: Record every change to a tracked field without instrumenting callers
================================================================================

HOW IT HOOKS IN:
- install(session) registers one before_flush listener on the session class
  and a "set" listener with active_history=True on every tracked attribute.
  active_history forces SQLAlchemy to load the previous value even when the
  attribute was expired, so the flush always sees (old, new).
- At flush time every dirty tracked entity is diffed from its attribute
  history and one AccountEvent per changed field is added to the same
  flush. A failure here fails the flush and the whole transaction.

WHAT IS RECORDED:
- Only updates of persistent rows. Inserts are announced by explicit
  business events (invoice.debit.created, ...).
- event_type: "<entity-kind>.<field>.changed"
- payload:    {"field", "old_value", "new_value"} with JSON-safe values

The listener resolves the AuditTrail configured on the current Flask app,
so several apps sharing the db.session factory record with their own
tracked-field mapping.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from flask import current_app, has_app_context
from sqlalchemy import event, inspect

from ..config import Config
from ..models import ENTITY_MODELS, ENTITY_KINDS, entity_kind
from ..validation import ValidationError
from .event_store import EventStore, jsonable


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: Any
    new_value: Any

    def to_payload(self) -> dict:
        return {
            "field": self.field,
            "old_value": jsonable(self.old_value),
            "new_value": jsonable(self.new_value),
        }


class AuditTrail:
    def __init__(self, tracked_fields: Mapping[str, Iterable[str]], event_store: Optional[EventStore] = None):
        normalized: dict[str, tuple[str, ...]] = {}
        for kind, fields in tracked_fields.items():
            model = ENTITY_MODELS.get(kind)
            if model is None:
                raise ValidationError(f"Cannot track unknown entity kind {kind!r}")
            fields = tuple(fields)
            columns = inspect(model).column_attrs.keys()
            for field in fields:
                if field not in columns:
                    raise ValidationError(f"{kind} has no column {field!r} to track")
            normalized[kind] = fields
        self.tracked_fields = normalized
        self.event_store = event_store or EventStore()

    def fields_for(self, kind: str) -> tuple[str, ...]:
        return self.tracked_fields.get(kind, ())

    def diff(self, kind: str, before: Mapping[str, Any], after: Mapping[str, Any]) -> list[FieldChange]:
        """One FieldChange per tracked field whose value differs. Pure."""
        changes = []
        for field in self.fields_for(kind):
            old = before.get(field)
            new = after.get(field)
            if old != new:
                changes.append(FieldChange(field, old, new))
        return changes

    def pending_changes(self, entity) -> list[FieldChange]:
        """Diff an entity's unflushed attribute history."""
        kind = ENTITY_KINDS.get(type(entity))
        if kind is None:
            return []

        state = inspect(entity)
        before: dict[str, Any] = {}
        after: dict[str, Any] = {}
        for field in self.fields_for(kind):
            history = state.attrs[field].history
            if not history.has_changes():
                continue
            before[field] = history.deleted[0] if history.deleted else None
            after[field] = history.added[0] if history.added else None
        return self.diff(kind, before, after)

    def record(self, entity, changes: Iterable[FieldChange], *, session=None) -> list:
        kind = entity_kind(entity)
        events = []
        for change in changes:
            events.append(
                self.event_store.append(
                    account_id=entity.owning_account_id,
                    entity=entity,
                    event_type=f"{kind}.{change.field}.changed",
                    payload=change.to_payload(),
                    session=session,
                )
            )
        return events

    def collect(self, session) -> list:
        """Record pending changes for every dirty tracked entity in session."""
        events = []
        for obj in list(session.dirty):
            if type(obj) not in ENTITY_KINDS:
                continue
            changes = self.pending_changes(obj)
            if changes:
                events.extend(self.record(obj, changes, session=session))
        return events

    def _tracked_attributes(self):
        for kind, fields in self.tracked_fields.items():
            model = ENTITY_MODELS[kind]
            for field in fields:
                yield getattr(model, field)

    def install(self, session) -> None:
        if not event.contains(session, "before_flush", _before_flush):
            event.listen(session, "before_flush", _before_flush)
        for attribute in self._tracked_attributes():
            if not event.contains(attribute, "set", _load_previous_value):
                event.listen(attribute, "set", _load_previous_value, active_history=True)

    def uninstall(self, session) -> None:
        if event.contains(session, "before_flush", _before_flush):
            event.remove(session, "before_flush", _before_flush)


def _load_previous_value(target, value, oldvalue, initiator):
    # Registered only for active_history.
    return None


_default_trail: Optional[AuditTrail] = None


def get_audit_trail() -> AuditTrail:
    """AuditTrail of the current app, or one built from the default tracked fields."""
    global _default_trail
    if has_app_context():
        components = current_app.extensions.get("orderflow")
        if components is not None:
            return components["audit_trail"]
    if _default_trail is None:
        _default_trail = AuditTrail(Config.TRACKED_FIELDS)
    return _default_trail


def _before_flush(session, flush_context, instances) -> None:
    get_audit_trail().collect(session)
