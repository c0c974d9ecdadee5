from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..money import ZERO, sum_money, to_money
from ..validation import ValidationError, require_text, optional_text, require_quantity, require_amount
from orderflow.time_utils import to_utc_z


class Order(db.Model):
    """
    Sales order placed by a customer within an account.

    LIFECYCLE:
        pending -> validated -> invoiced
        pending | validated | invoiced -> cancelled

    total_amount is derived from the lines and is recomputed by the
    workflow coordinator on every line change. Lines can only change while
    the order is pending or validated.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("reference", name="uq_orders_reference"),
        db.UniqueConstraint("fulfillment_id", name="uq_orders_fulfillment"),
        db.Index("ix_orders_account_status_created", "account_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    STATUSES = ("pending", "validated", "invoiced", "cancelled")
    MUTABLE_STATUSES = ("pending", "validated")

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    fulfillment_id = db.Column(db.Integer, db.ForeignKey("fulfillments.id"), nullable=True)

    # Human-readable reference (e.g., "ORD-20260118-A1B2C3D4")
    reference = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False, default=ZERO)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    account = db.relationship("Account", backref=db.backref("orders", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    fulfillment = db.relationship("Fulfillment", backref=db.backref("order", uselist=False))
    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )
    invoices = db.relationship("Invoice", back_populates="order", order_by="Invoice.id")
    __mapper_args__ = {"version_id_col": version_id}

    @validates("status")
    def _validate_status(self, key, value):
        if value not in self.STATUSES:
            raise ValidationError(f"Invalid order status {value!r}")
        return value

    @validates("notes")
    def _validate_notes(self, key, value):
        return optional_text(value)

    @validates("total_amount")
    def _validate_total(self, key, value):
        return to_money(value)

    @property
    def invoice(self):
        """The debit invoice billing this order, if any."""
        return next((inv for inv in self.invoices if inv.kind == "debit"), None)

    @property
    def credit_note(self):
        return next((inv for inv in self.invoices if inv.kind == "credit"), None)

    @property
    def is_mutable(self) -> bool:
        return self.status in self.MUTABLE_STATUSES

    @property
    def owning_account_id(self) -> int:
        return self.account_id

    def calculate_total(self):
        return sum_money(line.total_price for line in self.lines)

    def recalculate_total(self):
        self.total_amount = self.calculate_total()
        return self.total_amount

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "customer_id": self.customer_id,
            "fulfillment_id": self.fulfillment_id,
            "reference": self.reference,
            "status": self.status,
            "total_amount": str(to_money(self.total_amount)),
            "notes": self.notes,
            "lines": [line.to_dict() for line in self.lines],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class OrderLine(db.Model):
    """Line item on an order. total_price is kept equal to quantity * unit_price."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.Index("ix_order_lines_sku", "sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    total_price = db.Column(db.Numeric(10, 2), nullable=False, default=ZERO)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    order = db.relationship("Order", back_populates="lines")

    @validates("name")
    def _validate_name(self, key, value):
        return require_text("Line name", value)

    @validates("sku")
    def _validate_sku(self, key, value):
        return optional_text(value)

    @validates("quantity")
    def _validate_quantity(self, key, value):
        quantity = require_quantity("Quantity", value)
        self.total_price = to_money(quantity * to_money(self.unit_price))
        return quantity

    @validates("unit_price")
    def _validate_unit_price(self, key, value):
        unit_price = require_amount("Unit price", value)
        quantity = self.quantity if self.quantity is not None else 1
        self.total_price = to_money(quantity * unit_price)
        return unit_price

    @property
    def owning_account_id(self) -> int:
        return self.order.account_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "name": self.name,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price": str(to_money(self.unit_price)),
            "total_price": str(to_money(self.total_price)),
            "created_at": to_utc_z(self.created_at),
        }
