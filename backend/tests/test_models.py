# Overview: Pytest coverage for model validation, derived amounts and immutability hooks.

from datetime import date, datetime
from decimal import Decimal

import pytest

from orderflow.models import (
    Account, Customer, Order, OrderLine, Invoice, Fulfillment, AccountEvent,
    ImmutableRecordError, entity_kind, model_for_kind,
)
from orderflow.validation import ValidationError


class TestAccountsAndCustomers:
    def test_account_name_required(self, db_session):
        with pytest.raises(ValidationError):
            Account(name="   ")

    def test_display_name_prefers_full_name(self, customer):
        assert customer.display_name == "Ada Lovelace"

    def test_display_name_falls_back_to_email(self, db_session, account):
        customer = Customer(account_id=account.id, email="Grace@Example.com")
        db_session.add(customer)
        db_session.commit()
        assert customer.email == "grace@example.com"
        assert customer.display_name == "grace@example.com"

    def test_display_name_falls_back_to_id(self, db_session, account):
        customer = Customer(account_id=account.id)
        db_session.add(customer)
        db_session.commit()
        assert customer.display_name == f"Customer #{customer.id}"

    def test_invalid_email_rejected(self, db_session, account):
        with pytest.raises(ValidationError):
            Customer(account_id=account.id, email="not-an-email")


class TestOrderAmounts:
    def test_line_total_is_quantity_times_unit_price(self):
        line = OrderLine(name="Widget", quantity=3, unit_price="2.50")
        assert line.total_price == Decimal("7.50")

        line.quantity = 4
        assert line.total_price == Decimal("10.00")

        line.unit_price = Decimal("1.005")
        assert line.unit_price == Decimal("1.01")
        assert line.total_price == Decimal("4.04")

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True])
    def test_line_quantity_must_be_positive_integer(self, quantity):
        with pytest.raises(ValidationError):
            OrderLine(name="Widget", quantity=quantity, unit_price="1.00")

    def test_line_unit_price_must_not_be_negative(self):
        with pytest.raises(ValidationError):
            OrderLine(name="Widget", quantity=1, unit_price="-0.01")

    def test_line_name_required(self):
        with pytest.raises(ValidationError):
            OrderLine(name="", quantity=1, unit_price="1.00")

    def test_order_total_is_sum_of_lines(self, order_with_lines):
        assert order_with_lines.total_amount == Decimal("42.00")
        assert order_with_lines.calculate_total() == Decimal("42.00")
        assert [line.total_price for line in order_with_lines.lines] == [Decimal("30.00"), Decimal("12.00")]

    def test_order_rejects_unknown_status(self, order_with_lines):
        with pytest.raises(ValidationError):
            order_with_lines.status = "shipped"

    def test_to_dict_serializes_money_as_strings(self, order_with_lines):
        data = order_with_lines.to_dict()
        assert data["status"] == "pending"
        assert data["total_amount"] == "42.00"
        assert len(data["lines"]) == 2


class TestInvoices:
    def test_total_is_amount_plus_tax(self):
        invoice = Invoice(kind="debit", status="draft", amount="100.00", tax_amount="20.00")
        assert invoice.total_amount == Decimal("120.00")

        invoice.tax_amount = "0.00"
        assert invoice.total_amount == Decimal("100.00")

    def test_credit_note_must_not_be_positive(self, db_session, invoiced_order):
        credit = Invoice(kind="credit", status="draft", number="CN-20260101-00000000", amount="5.00")
        credit.order = invoiced_order
        db_session.add(credit)
        with pytest.raises(ValidationError):
            db_session.flush()
        db_session.rollback()

    def test_invoices_cannot_be_deleted(self, db_session, invoiced_order):
        invoice = invoiced_order.invoice
        db_session.delete(invoice)
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

    def test_due_date_helpers(self):
        invoice = Invoice(kind="debit", status="sent", amount="1.00", due_at=date(2026, 2, 1))
        assert invoice.days_until_due(date(2026, 1, 22)) == 10
        assert not invoice.is_overdue(date(2026, 2, 1))
        assert invoice.is_overdue(date(2026, 2, 2))

        invoice.status = "paid"
        assert not invoice.is_overdue(date(2026, 2, 2))


class TestEventsAndKinds:
    def test_account_events_are_immutable(self, db_session, coordinator, order_with_lines):
        coordinator.validate_order(order_with_lines).unwrap()
        event = db_session.query(AccountEvent).first()
        assert event is not None

        event.event_type = "order.rewritten"
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

        db_session.delete(db_session.query(AccountEvent).first())
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

    def test_entity_kind_lookup(self):
        assert entity_kind(Order()) == "order"
        assert entity_kind(OrderLine()) == "order_line"
        assert model_for_kind("fulfillment") is Fulfillment
        with pytest.raises(ValueError):
            entity_kind(Account())
        with pytest.raises(ValueError):
            model_for_kind("warehouse")

    def test_transit_days(self):
        fulfillment = Fulfillment(
            status="delivered",
            shipped_at=datetime(2026, 1, 10, 23, 0),
            delivered_at=datetime(2026, 1, 13, 8, 0),
        )
        assert fulfillment.transit_days == 3
        assert Fulfillment(status="pending").transit_days is None
