# Overview: Service-layer status engine; owns the transition tables for orders, invoices and fulfillments.

"""
Status Engine

================================================================================
PURPOSE: Decide which status changes are legal and apply them
================================================================================

STATE MACHINES:

    Order:        pending -> validated -> invoiced
                  pending | validated | invoiced -> cancelled
                  cancelled is terminal

    Invoice:      draft -> sent -> paid
                  paid is terminal (paying a draft or a paid invoice fails)

    Fulfillment:  pending -> processing -> shipped -> delivered
                  pending -> shipped
                  delivered is terminal

RULES:
1. Anything not listed above is rejected as InvalidTransition, including
   same-state "transitions" and backward moves.
2. Applying a transition is a pure status assignment. Cascading effects
   (credit notes, events, timestamps) belong to the workflow coordinator,
   so this module knows nothing about other entities.
================================================================================
"""

from __future__ import annotations

from ..models import Order, Invoice, Fulfillment, entity_kind
from ..validation import ValidationError
from .errors import InvalidTransition, ServiceResult


TRANSITIONS: dict[str, dict[str, frozenset[str]]] = {
    "order": {
        "pending": frozenset({"validated", "cancelled"}),
        "validated": frozenset({"invoiced", "cancelled"}),
        "invoiced": frozenset({"cancelled"}),
        "cancelled": frozenset(),
    },
    "invoice": {
        "draft": frozenset({"sent"}),
        "sent": frozenset({"paid"}),
        "paid": frozenset(),
    },
    "fulfillment": {
        "pending": frozenset({"processing", "shipped"}),
        "processing": frozenset({"shipped"}),
        "shipped": frozenset({"delivered"}),
        "delivered": frozenset(),
    },
}

STATUS_MODELS = {
    "order": Order,
    "invoice": Invoice,
    "fulfillment": Fulfillment,
}


def _table(entity_kind_name: str) -> dict[str, frozenset[str]]:
    try:
        return TRANSITIONS[entity_kind_name]
    except KeyError:
        raise ValidationError(f"No status workflow for entity kind {entity_kind_name!r}")


def validate_status(entity_kind_name: str, status: str) -> None:
    """Raise ValidationError if status is not a known status for the kind."""
    table = _table(entity_kind_name)
    if status not in table:
        raise ValidationError(
            f"Invalid {entity_kind_name} status '{status}'. Must be one of: {', '.join(sorted(table))}"
        )


def allowed_targets(entity_kind_name: str, current_status: str) -> frozenset[str]:
    validate_status(entity_kind_name, current_status)
    return _table(entity_kind_name)[current_status]


def is_terminal(entity_kind_name: str, status: str) -> bool:
    return not allowed_targets(entity_kind_name, status)


def can_transition(entity_kind_name: str, current_status: str, target_status: str) -> bool:
    """
    True if current_status -> target_status is in the kind's table.

    Unknown statuses (on either side) are simply not transitionable.
    """
    table = TRANSITIONS.get(entity_kind_name)
    if table is None or current_status not in table:
        return False
    return target_status in table[current_status]


def apply_transition(entity, target_status: str) -> ServiceResult:
    """
    Assign target_status to entity if the transition is legal.

    Returns ServiceResult(value=entity) on success. On failure the entity is
    untouched and the result carries an InvalidTransition.
    """
    kind = entity_kind(entity)
    if kind not in STATUS_MODELS:
        raise ValidationError(f"No status workflow for entity kind {kind!r}")

    current = entity.status
    if not can_transition(kind, current, target_status):
        return ServiceResult.failure(
            InvalidTransition(
                f"Cannot move {kind} {entity.id} from '{current}' to '{target_status}'",
                details={"entity_kind": kind, "entity_id": entity.id, "from": current, "to": target_status},
            )
        )

    entity.status = target_status
    return ServiceResult.success(entity)
