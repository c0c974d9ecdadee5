# Overview: Pytest coverage for reference generation and uniqueness checks.

from datetime import datetime

import pytest

from orderflow.models import Order
from orderflow.services.errors import GenerationExhausted
from orderflow.services.reference_service import REFERENCE_PATTERN, ReferenceGenerator
from orderflow.validation import ValidationError


PREFIXES = {"order": "ORD", "invoice": "INV", "credit_note": "CN"}


def fixed_clock():
    return datetime(2026, 1, 18, 9, 30)


def test_format():
    generator = ReferenceGenerator(PREFIXES, clock=fixed_clock)
    reference = generator.generate("ORD")
    assert REFERENCE_PATTERN.match(reference)
    assert reference.startswith("ORD-20260118-")


def test_ten_thousand_samples_are_unique():
    generator = ReferenceGenerator(PREFIXES)
    samples = [generator.generate("INV") for _ in range(10_000)]
    assert all(REFERENCE_PATTERN.match(s) for s in samples)
    assert len(set(samples)) == len(samples)


@pytest.mark.parametrize("prefix", ["", "ord", "OR1", "OR-D"])
def test_invalid_prefix_rejected(prefix):
    generator = ReferenceGenerator(PREFIXES)
    with pytest.raises(ValidationError):
        generator.generate(prefix)


def test_invalid_prefix_mapping_rejected():
    with pytest.raises(ValidationError):
        ReferenceGenerator({"order": "ord"})


def test_unknown_reference_kind():
    generator = ReferenceGenerator(PREFIXES)
    with pytest.raises(ValidationError):
        generator.prefix_for("receipt")


def test_assign_keeps_explicit_value(db_session):
    generator = ReferenceGenerator(PREFIXES)
    order = Order(reference="LEGACY-0001")
    assert generator.assign(order, "order", "reference") == "LEGACY-0001"
    assert order.reference == "LEGACY-0001"


def test_assign_fills_blank_value(db_session):
    generator = ReferenceGenerator(PREFIXES, clock=fixed_clock)
    order = Order()
    reference = generator.assign(order, "order", "reference")
    assert order.reference == reference
    assert reference.startswith("ORD-20260118-")


def test_assign_regenerates_on_collision(db_session, order_with_lines):
    _, stored_date, taken_suffix = order_with_lines.reference.split("-")
    tokens = iter([taken_suffix, "0000ABCD"])
    # Same date and suffix as the stored reference, so the first candidate collides
    generator = ReferenceGenerator(
        PREFIXES,
        clock=lambda: datetime.strptime(stored_date, "%Y%m%d"),
        token_source=lambda: next(tokens),
    )

    order = Order()
    reference = generator.assign(order, "order", "reference")
    assert reference == f"ORD-{stored_date}-0000ABCD"


def test_assign_exhausts_after_max_attempts(db_session, order_with_lines):
    taken = order_with_lines.reference
    _, stamp, suffix = taken.split("-")
    generator = ReferenceGenerator(
        PREFIXES,
        max_attempts=3,
        clock=lambda: datetime.strptime(stamp, "%Y%m%d"),
        token_source=lambda: suffix,
    )

    order = Order()
    with pytest.raises(GenerationExhausted) as excinfo:
        generator.assign(order, "order", "reference")
    assert excinfo.value.details["attempts"] == 3
    assert order.reference is None


def test_is_taken(db_session, order_with_lines):
    generator = ReferenceGenerator(PREFIXES)
    assert generator.is_taken(Order, "reference", order_with_lines.reference)
    assert not generator.is_taken(Order, "reference", "ORD-20000101-00000000")
