from __future__ import annotations

from datetime import date

from sqlalchemy import event
from sqlalchemy.orm import validates

from ..extensions import db
from ..money import ZERO, to_money
from .events import ImmutableRecordError
from ..validation import ValidationError, require_amount
from orderflow.time_utils import to_utc_z, to_iso_date, utctoday


class Invoice(db.Model):
    """
    Billing document for an order.

    KINDS:
    - debit:  the original bill (amount >= 0), at most one per order
    - credit: compensating credit note (amount <= 0) issued when a billed
              order is cancelled, at most one per order

    LIFECYCLE:
        draft -> sent -> paid

    Invoices are append-only financial records: they are created by the
    workflow coordinator and are never deleted. A cancelled sale is
    reversed by a credit note, not by editing the debit invoice.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_invoices_number"),
        db.UniqueConstraint("order_id", "kind", name="uq_invoices_order_kind"),
        db.Index("ix_invoices_status_due", "status", "due_at"),
        {"sqlite_autoincrement": True},
    )

    STATUSES = ("draft", "sent", "paid")
    KINDS = ("debit", "credit")

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False, default="debit")

    # Human-readable number (e.g., "INV-20260118-E5F6A7B8", "CN-...")
    number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    tax_amount = db.Column(db.Numeric(10, 2), nullable=False, default=ZERO)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)

    issued_at = db.Column(db.Date, nullable=True)
    due_at = db.Column(db.Date, nullable=True)
    paid_at = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", back_populates="invoices")
    __mapper_args__ = {"version_id_col": version_id}

    @validates("kind")
    def _validate_kind(self, key, value):
        if value not in self.KINDS:
            raise ValidationError(f"Invalid invoice kind {value!r}")
        return value

    @validates("status")
    def _validate_status(self, key, value):
        if value not in self.STATUSES:
            raise ValidationError(f"Invalid invoice status {value!r}")
        return value

    @validates("amount")
    def _validate_amount(self, key, value):
        amount = require_amount("Invoice amount", value, allow_negative=True)
        self.total_amount = to_money(amount + to_money(self.tax_amount))
        return amount

    @validates("tax_amount")
    def _validate_tax_amount(self, key, value):
        tax_amount = require_amount("Tax amount", value, allow_negative=True)
        self.total_amount = to_money(to_money(self.amount) + tax_amount)
        return tax_amount

    def check_amount_sign(self) -> None:
        """Debit invoices bill (>= 0); credit notes refund (<= 0)."""
        if self.kind == "credit":
            if to_money(self.amount) > 0 or to_money(self.tax_amount) > 0:
                raise ValidationError("Credit note amounts must not be positive")
        elif to_money(self.amount) < 0 or to_money(self.tax_amount) < 0:
            raise ValidationError("Invoice amounts must not be negative")

    @property
    def is_credit(self) -> bool:
        return self.kind == "credit"

    @property
    def owning_account_id(self) -> int:
        return self.order.account_id

    def is_overdue(self, today: date | None = None) -> bool:
        today = today or utctoday()
        return self.status == "sent" and self.due_at is not None and self.due_at < today

    def days_until_due(self, today: date | None = None) -> int | None:
        if self.due_at is None:
            return None
        today = today or utctoday()
        return (self.due_at - today).days

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "kind": self.kind,
            "number": self.number,
            "status": self.status,
            "amount": str(to_money(self.amount)),
            "tax_amount": str(to_money(self.tax_amount)),
            "total_amount": str(to_money(self.total_amount)),
            "issued_at": to_iso_date(self.issued_at),
            "due_at": to_iso_date(self.due_at),
            "paid_at": to_iso_date(self.paid_at),
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


@event.listens_for(Invoice, "before_insert")
@event.listens_for(Invoice, "before_update")
def _check_invoice_amounts(mapper, connection, target: Invoice) -> None:
    target.check_amount_sign()


@event.listens_for(Invoice, "before_delete")
def _refuse_invoice_delete(mapper, connection, target: Invoice) -> None:
    raise ImmutableRecordError(f"Invoice {target.number} cannot be deleted; issue a credit note instead")
