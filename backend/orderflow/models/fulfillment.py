from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..validation import ValidationError, require_text, optional_text
from orderflow.time_utils import to_utc_z


class FulfillmentService(db.Model):
    """
    Shipping/delivery provider configured for an account (e.g. "DHL Express").

    Only active services can be used for new fulfillments.
    """
    __tablename__ = "fulfillment_services"
    __table_args__ = (
        db.UniqueConstraint("account_id", "name", name="uq_fulfillment_services_account_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    provider = db.Column(db.String(64), nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    account = db.relationship("Account", backref=db.backref("fulfillment_services", lazy=True))

    @validates("name")
    def _validate_name(self, key, value):
        return require_text("Fulfillment service name", value)

    @validates("provider")
    def _validate_provider(self, key, value):
        return optional_text(value)

    @property
    def owning_account_id(self) -> int:
        return self.account_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "name": self.name,
            "provider": self.provider,
            "active": self.active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Fulfillment(db.Model):
    """
    Shipment of an order through a fulfillment service.

    LIFECYCLE:
        pending -> processing -> shipped -> delivered
        pending -> shipped (direct ship)
    """
    __tablename__ = "fulfillments"
    __table_args__ = (
        db.UniqueConstraint("tracking_number", name="uq_fulfillments_tracking_number"),
        {"sqlite_autoincrement": True},
    )

    STATUSES = ("pending", "processing", "shipped", "delivered")

    id = db.Column(db.Integer, primary_key=True)
    fulfillment_service_id = db.Column(
        db.Integer, db.ForeignKey("fulfillment_services.id"), nullable=False, index=True
    )

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    tracking_number = db.Column(db.String(128), nullable=True)
    carrier = db.Column(db.String(64), nullable=True)

    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    fulfillment_service = db.relationship("FulfillmentService", backref=db.backref("fulfillments", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @validates("status")
    def _validate_status(self, key, value):
        if value not in self.STATUSES:
            raise ValidationError(f"Invalid fulfillment status {value!r}")
        return value

    @validates("tracking_number", "carrier")
    def _validate_optional_text(self, key, value):
        return optional_text(value)

    @property
    def owning_account_id(self) -> int:
        return self.fulfillment_service.account_id

    @property
    def transit_days(self) -> int | None:
        if self.shipped_at is None or self.delivered_at is None:
            return None
        return (self.delivered_at.date() - self.shipped_at.date()).days

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fulfillment_service_id": self.fulfillment_service_id,
            "status": self.status,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "transit_days": self.transit_days,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
