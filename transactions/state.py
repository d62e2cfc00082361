"""Transaction status machine.

Every status change a transaction may take is listed in TRANSITIONS. Mutators
call check_transition before writing, so adding a status or edge happens here
and nowhere else.
"""
from typing import Dict, FrozenSet

from errors import InvalidTransitionError

PENDING_PAYMENT = 'pending_payment'
PAYMENT_CONFIRMED = 'payment_confirmed'
PROCESSING = 'processing'
SHIPPED = 'shipped'
DELIVERED = 'delivered'
COMPLETED = 'completed'
CANCELLED = 'cancelled'
REFUNDED = 'refunded'
DISPUTED = 'disputed'

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING_PAYMENT: frozenset({PAYMENT_CONFIRMED, CANCELLED}),
    PAYMENT_CONFIRMED: frozenset({PROCESSING, CANCELLED}),
    PROCESSING: frozenset({SHIPPED, CANCELLED}),
    SHIPPED: frozenset({DELIVERED, CANCELLED}),
    DELIVERED: frozenset({COMPLETED}),
    DISPUTED: frozenset({COMPLETED, CANCELLED, REFUNDED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
    REFUNDED: frozenset(),
}

TRANSACTION_STATUSES = tuple(TRANSITIONS)
TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)
OPEN_STATUSES = frozenset(TRANSITIONS) - TERMINAL_STATUSES

# Money has been captured once a transaction got past pending_payment
CAPTURED_STATUSES = frozenset({PAYMENT_CONFIRMED, PROCESSING, SHIPPED, DELIVERED, DISPUTED})


def can_transition(current: str, requested: str) -> bool:
    return requested in TRANSITIONS.get(current, frozenset())


def check_transition(current: str, requested: str) -> None:
    """Raise InvalidTransitionError unless current -> requested is allowed."""
    if not can_transition(current, requested):
        raise InvalidTransitionError(current, requested)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES
