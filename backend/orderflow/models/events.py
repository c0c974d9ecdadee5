from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from orderflow.time_utils import to_utc_z, utcnow


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to rewrite or remove an append-only record."""


class Resource(db.Model):
    """
    Lightweight polymorphic pointer used by AccountEvent.

    A resource is the tagged pair (resource_type, entity_id), e.g.
    ("order", 12) named "Order#12". resource_type is an entity kind from
    models.ENTITY_MODELS, which maps it back to a concrete model.
    """
    __tablename__ = "resources"
    __table_args__ = (
        db.UniqueConstraint("resource_type", "entity_id", name="uq_resources_type_entity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    resource_type = db.Column(db.String(32), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(96), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Resource {self.name}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "resource_type": self.resource_type,
            "entity_id": self.entity_id,
            "name": self.name,
        }


class AccountEvent(db.Model):
    """
    Append-only audit event scoped to an account.

    event_type is a dotted name: "order.status.changed" for tracked field
    changes, "order.cancelled" / "invoice.credit.created" for business
    actions. payload is a small JSON object.

    IMMUTABLE: rows are never updated or deleted (enforced by mapper hooks).
    """
    __tablename__ = "account_events"
    __table_args__ = (
        db.Index("ix_account_events_account_created", "account_id", "created_at"),
        db.Index("ix_account_events_account_type", "account_id", "event_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    resource_id = db.Column(db.Integer, db.ForeignKey("resources.id"), nullable=False, index=True)

    event_type = db.Column(db.String(128), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    account = db.relationship("Account", backref=db.backref("events", lazy="dynamic"))
    resource = db.relationship("Resource", backref=db.backref("events", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "resource": self.resource.to_dict() if self.resource else None,
            "event_type": self.event_type,
            "payload": self.payload or {},
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(AccountEvent, "before_update")
def _refuse_event_update(mapper, connection, target: AccountEvent) -> None:
    raise ImmutableRecordError(f"AccountEvent {target.id} is immutable")


@event.listens_for(AccountEvent, "before_delete")
def _refuse_event_delete(mapper, connection, target: AccountEvent) -> None:
    raise ImmutableRecordError(f"AccountEvent {target.id} cannot be deleted")
