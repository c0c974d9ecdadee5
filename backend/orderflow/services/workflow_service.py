# Overview: Service-layer workflow coordinator; runs every order/invoice/fulfillment operation as one transaction.

"""
Workflow Coordinator - the single write path for the order lifecycle

WHY: Status legality lives in the status engine, identifiers in the
reference generator, and field-level audit in the audit trail. The
coordinator sequences them so that each business operation is one atomic
unit: either every row and event it writes is committed, or none is.

TRANSACTION SHAPE (every operation):
1. run_atomic(_op): rollback + retry on competing writers
2. re-read the rows under lock, always Order -> Invoice -> Fulfillment
3. check preconditions, raising WorkflowError subclasses
4. mutate, flush (the audit trail records field changes here)
5. append business events, commit

RESULTS: every public operation returns a ServiceResult. Workflow failures
(illegal transition, unmet precondition, lost race) are returned, never
raised. ValidationError from model setters and unexpected errors roll back
and propagate.

CANCELLATION:
- pending   -> cancelled, no side record
- validated -> cancelled + "order.cancelled" event
- invoiced  -> credit note (negated debit amounts) + "invoice.credit.created",
               then cancelled; no "order.cancelled" event
Fulfillments are never touched by cancellation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from flask import current_app

from ..extensions import db
from ..models import (
    Account, Customer, Order, OrderLine, Invoice, FulfillmentService, Fulfillment, entity_kind,
)
from ..money import ZERO, to_money, format_money
from ..validation import ValidationError, optional_text
from orderflow.time_utils import utcnow, utctoday
from . import status_engine
from .concurrency import lock_for_update, run_atomic
from .errors import InvalidState, InvalidTransition, ServiceResult, WorkflowError
from .event_store import EventStore
from .reference_service import ReferenceGenerator


FULFILLMENT_POLICIES = ("payment_confirmed", "invoice_issued")


@dataclass(frozen=True)
class WorkflowPolicy:
    fulfillment_policy: str = "payment_confirmed"
    invoice_due_days: int = 30
    invoice_tax_rate: Decimal = Decimal("0")

    def __post_init__(self):
        if self.fulfillment_policy not in FULFILLMENT_POLICIES:
            raise ValidationError(
                f"Invalid fulfillment policy '{self.fulfillment_policy}'. "
                f"Must be one of: {', '.join(FULFILLMENT_POLICIES)}"
            )
        if self.invoice_due_days < 0:
            raise ValidationError("Invoice due days must not be negative")
        if self.invoice_tax_rate < 0:
            raise ValidationError("Invoice tax rate must not be negative")

    @classmethod
    def from_config(cls, config: Mapping) -> "WorkflowPolicy":
        try:
            tax_rate = Decimal(str(config.get("INVOICE_TAX_RATE", "0")))
        except ArithmeticError:
            raise ValidationError(f"Invalid INVOICE_TAX_RATE {config.get('INVOICE_TAX_RATE')!r}")
        return cls(
            fulfillment_policy=config.get("FULFILLMENT_POLICY", "payment_confirmed"),
            invoice_due_days=int(config.get("INVOICE_DUE_DAYS", 30)),
            invoice_tax_rate=tax_rate,
        )


def _ident(obj_or_id):
    return getattr(obj_or_id, "id", obj_or_id)


def _transition(entity, target_status: str) -> None:
    status_engine.apply_transition(entity, target_status).unwrap()


def _require_transition(entity, target_status: str) -> None:
    """Raise InvalidTransition without touching the entity."""
    kind = entity_kind(entity)
    if not status_engine.can_transition(kind, entity.status, target_status):
        raise InvalidTransition(
            f"Cannot move {kind} {entity.id} from '{entity.status}' to '{target_status}'",
            details={"entity_kind": kind, "entity_id": entity.id, "from": entity.status, "to": target_status},
        )


class WorkflowCoordinator:
    def __init__(
        self,
        policy: WorkflowPolicy,
        references: ReferenceGenerator,
        events: EventStore,
        *,
        clock=utcnow,
        today=utctoday,
    ):
        self.policy = policy
        self.references = references
        self.events = events
        self._clock = clock
        self._today = today

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    def _run(self, label: str, op) -> ServiceResult:
        try:
            value = run_atomic(op, label=label)
        except WorkflowError as exc:
            current_app.logger.warning("%s failed: %s", label, exc.message)
            return ServiceResult.failure(exc)
        return ServiceResult.success(value)

    def _lock(self, model, ident):
        row = lock_for_update(db.session.query(model).filter_by(id=ident)).first()
        if row is None:
            raise InvalidState(f"{model.__name__} {ident} not found", details={"id": ident})
        return row

    def _lock_debit_invoice(self, order: Order) -> Optional[Invoice]:
        return lock_for_update(
            db.session.query(Invoice).filter_by(order_id=order.id, kind="debit")
        ).first()

    def _lock_fulfillment_chain(self, fulfillment_id) -> Fulfillment:
        # Order first, then the fulfillment it references
        lock_for_update(db.session.query(Order).filter_by(fulfillment_id=fulfillment_id)).first()
        return self._lock(Fulfillment, fulfillment_id)

    @staticmethod
    def _require_mutable(order: Order) -> None:
        if not order.is_mutable:
            raise InvalidState(
                f"Order {order.reference} is {order.status}; lines can only change while pending or validated",
                details={"order_id": order.id, "status": order.status},
            )

    def _log_created(self, invoice: Invoice, order: Order) -> None:
        self.events.append(
            account_id=order.account_id,
            entity=invoice,
            event_type=f"invoice.{invoice.kind}.created",
            payload={
                "number": invoice.number,
                "order_reference": order.reference,
                "total_amount": format_money(invoice.total_amount),
            },
        )

    # ------------------------------------------------------------------
    # orders and lines
    # ------------------------------------------------------------------

    def create_order(
        self,
        account,
        customer,
        *,
        notes: Optional[str] = None,
        reference: Optional[str] = None,
        lines: Iterable[Mapping] = (),
    ) -> ServiceResult:
        account_id = _ident(account)
        customer_id = _ident(customer)
        lines = [dict(line) for line in lines]

        def _op():
            account_row = db.session.get(Account, account_id)
            if account_row is None:
                raise InvalidState(f"Account {account_id} not found", details={"account_id": account_id})
            customer_row = db.session.get(Customer, customer_id)
            if customer_row is None or customer_row.account_id != account_row.id:
                raise InvalidState(
                    "Customer does not belong to this account",
                    details={"account_id": account_id, "customer_id": customer_id},
                )

            order = Order(status="pending", notes=notes, total_amount=ZERO)
            explicit = optional_text(reference)
            if explicit:
                if self.references.is_taken(Order, "reference", explicit):
                    raise InvalidState(
                        f"Order reference {explicit} is already in use", details={"reference": explicit}
                    )
                order.reference = explicit
            else:
                self.references.assign(order, "order", "reference")

            order.account = account_row
            order.customer = customer_row
            for line in lines:
                order.lines.append(OrderLine(**line))
            order.recalculate_total()
            db.session.add(order)
            db.session.flush()

            current_app.logger.info("order %s created for account %s", order.reference, account_row.id)
            return order

        return self._run("create_order", _op)

    def add_line(
        self,
        order,
        *,
        name: str,
        quantity: int,
        unit_price,
        sku: Optional[str] = None,
    ) -> ServiceResult:
        order_id = _ident(order)

        def _op():
            locked = self._lock(Order, order_id)
            self._require_mutable(locked)
            line = OrderLine(name=name, sku=sku, quantity=quantity, unit_price=unit_price)
            locked.lines.append(line)
            locked.recalculate_total()
            db.session.flush()
            return line

        return self._run("add_line", _op)

    def update_line(self, line, *, quantity: Optional[int] = None, unit_price=None) -> ServiceResult:
        line_id = _ident(line)

        def _op():
            found = db.session.get(OrderLine, line_id)
            if found is None:
                raise InvalidState(f"OrderLine {line_id} not found", details={"id": line_id})
            locked = self._lock(Order, found.order_id)
            self._require_mutable(locked)
            if quantity is not None:
                found.quantity = quantity
            if unit_price is not None:
                found.unit_price = unit_price
            locked.recalculate_total()
            db.session.flush()
            return found

        return self._run("update_line", _op)

    def remove_line(self, line) -> ServiceResult:
        line_id = _ident(line)

        def _op():
            found = db.session.get(OrderLine, line_id)
            if found is None:
                raise InvalidState(f"OrderLine {line_id} not found", details={"id": line_id})
            locked = self._lock(Order, found.order_id)
            self._require_mutable(locked)
            locked.lines.remove(found)
            locked.recalculate_total()
            db.session.flush()
            return locked

        return self._run("remove_line", _op)

    def validate_order(self, order) -> ServiceResult:
        order_id = _ident(order)

        def _op():
            locked = self._lock(Order, order_id)
            _transition(locked, "validated")
            db.session.flush()
            current_app.logger.info("order %s validated", locked.reference)
            return locked

        return self._run("validate_order", _op)

    # ------------------------------------------------------------------
    # invoicing
    # ------------------------------------------------------------------

    def invoice_order(self, order) -> ServiceResult:
        order_id = _ident(order)

        def _op():
            locked = self._lock(Order, order_id)
            if self._lock_debit_invoice(locked) is not None:
                raise InvalidState(
                    f"Order {locked.reference} already has an invoice", details={"order_id": locked.id}
                )
            if not locked.lines:
                raise InvalidState(
                    f"Order {locked.reference} has no lines to invoice", details={"order_id": locked.id}
                )
            if locked.status != "validated":
                raise InvalidState(
                    f"Order {locked.reference} must be validated before invoicing",
                    details={"order_id": locked.id, "status": locked.status},
                )

            amount = locked.recalculate_total()
            invoice = Invoice(kind="debit", status="draft")
            invoice.amount = amount
            invoice.tax_amount = to_money(amount * self.policy.invoice_tax_rate)
            self.references.assign(invoice, "invoice", "number")
            invoice.order = locked
            db.session.add(invoice)

            _transition(locked, "invoiced")
            db.session.flush()
            self._log_created(invoice, locked)

            current_app.logger.info("order %s invoiced as %s", locked.reference, invoice.number)
            return invoice

        return self._run("invoice_order", _op)

    def send_invoice(self, invoice) -> ServiceResult:
        invoice_id = _ident(invoice)

        def _op():
            found = db.session.get(Invoice, invoice_id)
            if found is None:
                raise InvalidState(f"Invoice {invoice_id} not found", details={"id": invoice_id})
            self._lock(Order, found.order_id)
            locked = self._lock(Invoice, invoice_id)

            _transition(locked, "sent")
            today = self._today()
            locked.issued_at = today
            locked.due_at = today + timedelta(days=self.policy.invoice_due_days)
            db.session.flush()

            current_app.logger.info("invoice %s sent, due %s", locked.number, locked.due_at.isoformat())
            return locked

        return self._run("send_invoice", _op)

    def mark_invoice_paid(self, invoice, paid_on: Optional[date] = None) -> ServiceResult:
        invoice_id = _ident(invoice)

        def _op():
            found = db.session.get(Invoice, invoice_id)
            if found is None:
                raise InvalidState(f"Invoice {invoice_id} not found", details={"id": invoice_id})
            self._lock(Order, found.order_id)
            locked = self._lock(Invoice, invoice_id)

            _transition(locked, "paid")
            locked.paid_at = paid_on or self._today()
            db.session.flush()

            current_app.logger.info("invoice %s paid", locked.number)
            return locked

        return self._run("mark_invoice_paid", _op)

    # ------------------------------------------------------------------
    # cancellation
    # ------------------------------------------------------------------

    def cancel_order(self, order) -> ServiceResult:
        order_id = _ident(order)

        def _op():
            locked = self._lock(Order, order_id)
            previous = locked.status
            _require_transition(locked, "cancelled")

            credit = None
            if previous == "invoiced":
                credit = self._issue_credit_note(locked)

            _transition(locked, "cancelled")
            db.session.flush()

            if previous == "validated":
                self.events.append(
                    account_id=locked.account_id,
                    entity=locked,
                    event_type="order.cancelled",
                    payload={"reference": locked.reference, "previous_status": previous},
                )

            if credit is not None:
                current_app.logger.info("order %s cancelled with credit note %s", locked.reference, credit.number)
            else:
                current_app.logger.info("order %s cancelled", locked.reference)
            return locked

        return self._run("cancel_order", _op)

    def _issue_credit_note(self, order: Order) -> Invoice:
        debit = self._lock_debit_invoice(order)
        if debit is None:
            raise InvalidState(
                f"Invoiced order {order.reference} has no invoice to credit", details={"order_id": order.id}
            )
        if order.credit_note is not None:
            raise InvalidState(
                f"Order {order.reference} already has a credit note", details={"order_id": order.id}
            )

        credit = Invoice(kind="credit", status="draft")
        credit.amount = ZERO - to_money(debit.amount)
        credit.tax_amount = ZERO - to_money(debit.tax_amount)
        self.references.assign(credit, "credit_note", "number")
        credit.order = order
        db.session.add(credit)
        db.session.flush()
        self._log_created(credit, order)
        return credit

    # ------------------------------------------------------------------
    # fulfillment
    # ------------------------------------------------------------------

    def _check_fulfillment_policy(self, order: Order, invoice: Optional[Invoice]) -> None:
        if order.status != "invoiced" or invoice is None:
            raise InvalidState(
                f"Order {order.reference} must be invoiced before fulfillment",
                details={"order_id": order.id, "status": order.status, "policy": self.policy.fulfillment_policy},
            )
        if self.policy.fulfillment_policy == "payment_confirmed" and invoice.status != "paid":
            raise InvalidState(
                f"Invoice {invoice.number} must be paid before fulfillment",
                details={"order_id": order.id, "invoice_status": invoice.status, "policy": "payment_confirmed"},
            )

    def create_fulfillment(self, order, fulfillment_service) -> ServiceResult:
        order_id = _ident(order)
        service_id = _ident(fulfillment_service)

        def _op():
            locked = self._lock(Order, order_id)
            invoice = self._lock_debit_invoice(locked)
            if locked.fulfillment_id is not None:
                raise InvalidState(
                    f"Order {locked.reference} already has a fulfillment", details={"order_id": locked.id}
                )

            service = db.session.get(FulfillmentService, service_id)
            if service is None or service.account_id != locked.account_id:
                raise InvalidState(
                    "Fulfillment service does not belong to this account",
                    details={"order_id": locked.id, "fulfillment_service_id": service_id},
                )
            if not service.active:
                raise InvalidState(
                    f"Fulfillment service {service.name} is inactive",
                    details={"fulfillment_service_id": service.id},
                )
            self._check_fulfillment_policy(locked, invoice)

            fulfillment = Fulfillment(status="pending", fulfillment_service=service)
            db.session.add(fulfillment)
            db.session.flush()
            locked.fulfillment = fulfillment
            db.session.flush()

            current_app.logger.info("fulfillment %s created for order %s", fulfillment.id, locked.reference)
            return fulfillment

        return self._run("create_fulfillment", _op)

    def start_processing(self, fulfillment) -> ServiceResult:
        fulfillment_id = _ident(fulfillment)

        def _op():
            locked = self._lock_fulfillment_chain(fulfillment_id)
            _transition(locked, "processing")
            db.session.flush()
            current_app.logger.info("fulfillment %s processing", locked.id)
            return locked

        return self._run("start_processing", _op)

    def ship(self, fulfillment, tracking_number: str, carrier: Optional[str] = None) -> ServiceResult:
        fulfillment_id = _ident(fulfillment)

        def _op():
            locked = self._lock_fulfillment_chain(fulfillment_id)
            _require_transition(locked, "shipped")
            tracking = optional_text(tracking_number)
            if not tracking:
                raise InvalidState("Tracking number is required to ship", details={"fulfillment_id": locked.id})
            with db.session.no_autoflush:
                taken = (
                    db.session.query(Fulfillment.id)
                    .filter(Fulfillment.tracking_number == tracking, Fulfillment.id != locked.id)
                    .first()
                )
            if taken is not None:
                raise InvalidState(
                    f"Tracking number {tracking} is already in use",
                    details={"fulfillment_id": locked.id, "tracking_number": tracking},
                )

            _transition(locked, "shipped")
            locked.tracking_number = tracking
            locked.carrier = carrier
            locked.shipped_at = self._clock()
            db.session.flush()

            current_app.logger.info("fulfillment %s shipped (%s)", locked.id, tracking)
            return locked

        return self._run("ship", _op)

    def mark_delivered(self, fulfillment) -> ServiceResult:
        fulfillment_id = _ident(fulfillment)

        def _op():
            locked = self._lock_fulfillment_chain(fulfillment_id)
            _transition(locked, "delivered")
            locked.delivered_at = self._clock()
            db.session.flush()
            current_app.logger.info("fulfillment %s delivered", locked.id)
            return locked

        return self._run("mark_delivered", _op)

    def _set_service_active(self, service, active: bool, label: str) -> ServiceResult:
        service_id = _ident(service)

        def _op():
            locked = self._lock(FulfillmentService, service_id)
            if locked.active != active:
                locked.active = active
                db.session.flush()
                current_app.logger.info(
                    "fulfillment service %s %s", locked.name, "activated" if active else "deactivated"
                )
            return locked

        return self._run(label, _op)

    def activate_service(self, service) -> ServiceResult:
        return self._set_service_active(service, True, "activate_service")

    def deactivate_service(self, service) -> ServiceResult:
        return self._set_service_active(service, False, "deactivate_service")


def get_coordinator() -> WorkflowCoordinator:
    return current_app.extensions["orderflow"]["coordinator"]
