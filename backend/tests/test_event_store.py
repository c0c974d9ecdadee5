# Overview: Pytest coverage for the append-only event store read/write API.

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from orderflow.models import Order, Resource
from orderflow.services.event_store import jsonable


def test_append_creates_resource_once(db_session, event_store, account, order_with_lines):
    first = event_store.append(account_id=account.id, entity=order_with_lines, event_type="order.note")
    second = event_store.append(account_id=account.id, entity=order_with_lines, event_type="order.note")
    db_session.commit()

    assert first.resource_id == second.resource_id
    resources = db_session.query(Resource).filter_by(resource_type="order", entity_id=order_with_lines.id).all()
    assert len(resources) == 1
    assert resources[0].name == f"Order#{order_with_lines.id}"


def test_resolve_returns_entity(db_session, event_store, account, order_with_lines):
    ev = event_store.append(account_id=account.id, entity=order_with_lines, event_type="order.note")
    db_session.commit()
    assert event_store.resolve(ev.resource) is order_with_lines


def test_append_requires_event_type(db_session, event_store, account, order_with_lines):
    with pytest.raises(ValueError):
        event_store.append(account_id=account.id, entity=order_with_lines, event_type=" ")


def test_append_requires_persisted_entity(db_session, event_store, account):
    with pytest.raises(ValueError):
        event_store.append(account_id=account.id, entity=Order(), event_type="order.note")


def test_payload_made_json_safe():
    payload = jsonable({
        "amount": Decimal("-42"),
        "due": date(2026, 2, 17),
        "at": datetime(2026, 1, 18, 9, 30),
        "items": [Decimal("1.5"), "x", 3],
    })
    assert payload == {
        "amount": "-42.00",
        "due": "2026-02-17",
        "at": "2026-01-18T09:30:00Z",
        "items": ["1.50", "x", 3],
    }


class TestQuery:
    @pytest.fixture
    def timeline(self, db_session, event_store, account, other_account, order_with_lines):
        base = datetime(2026, 1, 10, 12, 0)
        line = order_with_lines.lines[0]
        rows = [
            event_store.append(account_id=account.id, entity=order_with_lines,
                               event_type="order.status.changed", created_at=base),
            event_store.append(account_id=account.id, entity=line,
                               event_type="order_line.unit_price.changed", created_at=base + timedelta(days=1)),
            event_store.append(account_id=account.id, entity=order_with_lines,
                               event_type="order.cancelled", created_at=base + timedelta(days=2)),
            event_store.append(account_id=other_account.id, entity=order_with_lines,
                               event_type="order.status.changed", created_at=base + timedelta(days=3)),
        ]
        db_session.commit()
        return base, rows

    def test_most_recent_first_and_account_scoped(self, event_store, account, timeline):
        _, rows = timeline
        events = event_store.query(account.id)
        assert [e.id for e in events] == [rows[2].id, rows[1].id, rows[0].id]

    def test_same_timestamp_ordered_by_id(self, db_session, event_store, account, order_with_lines):
        at = datetime(2026, 3, 1)
        a = event_store.append(account_id=account.id, entity=order_with_lines, event_type="a", created_at=at)
        b = event_store.append(account_id=account.id, entity=order_with_lines, event_type="b", created_at=at)
        db_session.commit()
        assert [e.event_type for e in event_store.query(account.id)] == [b.event_type, a.event_type]

    def test_filters(self, event_store, account, order_with_lines, timeline):
        base, rows = timeline
        assert [e.id for e in event_store.query(account.id, event_type="order.cancelled")] == [rows[2].id]
        assert [e.id for e in event_store.query(account.id, resource_type="order_line")] == [rows[1].id]
        assert [e.id for e in event_store.query(account.id, entity=order_with_lines)] == [rows[2].id, rows[0].id]
        assert len(event_store.query(account.id, limit=2)) == 2

    def test_time_window_since_inclusive_until_exclusive(self, event_store, account, timeline):
        base, rows = timeline
        events = event_store.query(
            account.id, since=base + timedelta(days=1), until=base + timedelta(days=2)
        )
        assert [e.id for e in events] == [rows[1].id]

    def test_for_entity_and_latest(self, event_store, account, order_with_lines, timeline):
        _, rows = timeline
        line = order_with_lines.lines[0]
        assert [e.id for e in event_store.for_entity(line)] == [rows[1].id]
        assert event_store.latest(account.id).id == rows[2].id
        assert event_store.latest(account.id, "order.status.changed").id == rows[0].id
        assert event_store.latest(account.id, "invoice.paid") is None

    def test_to_dict(self, event_store, account, timeline):
        data = event_store.latest(account.id).to_dict()
        assert data["event_type"] == "order.cancelled"
        assert data["resource"]["resource_type"] == "order"
        assert data["created_at"] == "2026-01-12T12:00:00Z"
        assert data["payload"] == {}
