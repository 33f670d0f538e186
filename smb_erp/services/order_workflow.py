"""Status lattice and stock-consumption table for purchase and sale orders."""

from enum import Enum

from smb_erp.core.errors import InvalidTransition, ValidationError


class OrderKind(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"


DRAFT = "draft"
CONFIRMED = "confirmed"
SHIPPED = "shipped"
RECEIVED = "received"
DELIVERED = "delivered"
PAID = "paid"
CANCELLED = "cancelled"

ORDER_STATUSES: dict[OrderKind, tuple[str, ...]] = {
    OrderKind.PURCHASE: (DRAFT, CONFIRMED, SHIPPED, RECEIVED, PAID, CANCELLED),
    OrderKind.SALE: (DRAFT, CONFIRMED, SHIPPED, DELIVERED, PAID, CANCELLED),
}

ALLOWED_ORDER_TRANSITIONS: dict[OrderKind, dict[str, set[str]]] = {
    OrderKind.PURCHASE: {
        DRAFT: {CONFIRMED, CANCELLED},
        CONFIRMED: {SHIPPED, RECEIVED, PAID, CANCELLED},
        SHIPPED: {RECEIVED, PAID, CANCELLED},
        RECEIVED: {PAID, CANCELLED},
        PAID: set(),
        CANCELLED: set(),
    },
    OrderKind.SALE: {
        DRAFT: {CONFIRMED, CANCELLED},
        CONFIRMED: {SHIPPED, DELIVERED, PAID, CANCELLED},
        SHIPPED: {DELIVERED, PAID, CANCELLED},
        DELIVERED: {PAID, CANCELLED},
        PAID: set(),
        CANCELLED: set(),
    },
}

# The only place that decides whether a status holds stock.
STOCK_CONSUMING_STATUSES: dict[OrderKind, frozenset[str]] = {
    OrderKind.PURCHASE: frozenset({CONFIRMED, SHIPPED, RECEIVED, PAID}),
    OrderKind.SALE: frozenset({CONFIRMED, SHIPPED, DELIVERED, PAID}),
}

TERMINAL_STATUSES = frozenset({PAID, CANCELLED})

# Status an order must be in before a payment can be registered against it.
PAYABLE_STATUS: dict[OrderKind, str] = {
    OrderKind.PURCHASE: RECEIVED,
    OrderKind.SALE: DELIVERED,
}


def validate_status(kind: OrderKind, status: str) -> str:
    normalized = (status or "").strip().lower()
    if normalized not in ORDER_STATUSES[kind]:
        raise ValidationError(
            f"Unknown {kind.value} order status '{status}'",
            field="status",
        )
    return normalized


def consumes_stock(kind: OrderKind, status: str) -> bool:
    return status in STOCK_CONSUMING_STATUSES[kind]


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def ensure_transition_allowed(kind: OrderKind, current_status: str, next_status: str) -> bool:
    """Return True when the status actually changes; same status is a no-op."""
    if current_status == next_status:
        return False
    allowed = ALLOWED_ORDER_TRANSITIONS[kind].get(current_status, set())
    if next_status not in allowed:
        raise InvalidTransition(
            f"Cannot move {kind.value} order from '{current_status}' to '{next_status}'",
            details=[
                {
                    "from": current_status,
                    "to": next_status,
                    "allowed": sorted(allowed),
                }
            ],
        )
    return True
