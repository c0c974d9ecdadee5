from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..validation import require_text, optional_text, require_email
from orderflow.time_utils import to_utc_z


class Account(db.Model):
    """
    Multi-tenant root: every customer, order, fulfillment service and
    audit event belongs to exactly one Account.

    Names are required but not unique; two tenants may share a trading name.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.Index("ix_accounts_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @validates("name")
    def _validate_name(self, key, value):
        return require_text("Account name", value)

    @property
    def owning_account_id(self) -> int:
        return self.id

    def __repr__(self) -> str:
        return f"<Account id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Customer(db.Model):
    """
    A client placing orders within an account.

    All contact fields are optional; display_name falls back from the
    full name to the email and finally to "Customer #<id>".
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("account_id", "email", name="uq_customers_account_email"),
        db.Index("ix_customers_email", "email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    first_name = db.Column(db.String(128), nullable=True)
    last_name = db.Column(db.String(128), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    account = db.relationship("Account", backref=db.backref("customers", lazy=True))

    @validates("first_name", "last_name", "phone", "address")
    def _validate_optional_text(self, key, value):
        return optional_text(value)

    @validates("email")
    def _validate_email(self, key, value):
        return require_email("Customer email", value)

    @property
    def full_name(self) -> str | None:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or f"Customer #{self.id}"

    @property
    def owning_account_id(self) -> int:
        return self.account_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "display_name": self.display_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
