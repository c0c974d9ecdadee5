from .accounts import Account, Customer
from .orders import Order, OrderLine
from .billing import Invoice
from .fulfillment import FulfillmentService, Fulfillment
from .events import Resource, AccountEvent, ImmutableRecordError

# Entity kind <-> model lookup table. Kinds name audit events
# ("order.status.changed") and tag Resource rows.
ENTITY_MODELS = {
    "order": Order,
    "order_line": OrderLine,
    "invoice": Invoice,
    "fulfillment": Fulfillment,
    "customer": Customer,
}
ENTITY_KINDS = {model: kind for kind, model in ENTITY_MODELS.items()}

# Display names used in Resource.name ("Order#12")
ENTITY_LABELS = {
    "order": "Order",
    "order_line": "OrderLine",
    "invoice": "Invoice",
    "fulfillment": "Fulfillment",
    "customer": "Customer",
}


def entity_kind(entity) -> str:
    """Entity kind for a model instance; ValueError for untracked types."""
    try:
        return ENTITY_KINDS[type(entity)]
    except KeyError:
        raise ValueError(f"{type(entity).__name__} is not a tracked entity type")


def model_for_kind(kind: str):
    try:
        return ENTITY_MODELS[kind]
    except KeyError:
        raise ValueError(f"Unknown entity kind {kind!r}")


__all__ = [
    'Account', 'Customer',
    'Order', 'OrderLine',
    'Invoice',
    'FulfillmentService', 'Fulfillment',
    'Resource', 'AccountEvent', 'ImmutableRecordError',
    'ENTITY_MODELS', 'ENTITY_KINDS', 'ENTITY_LABELS',
    'entity_kind', 'model_for_kind',
]
