"""
Order lifecycle rules.

Pure functions over ``OrderStatus``; nothing here touches the database.
Callers persist the returned status through ``OrderRepository.save_status``.
"""

from coursepay.constants.order_status import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    OrderStatus,
)
from coursepay.exceptions import InvalidTransitionError


def _status_of(order_or_status) -> OrderStatus:
    status = getattr(order_or_status, "status", order_or_status)
    return OrderStatus(status)


def can_transition(current, target) -> bool:
    current, target = OrderStatus(current), OrderStatus(target)
    return current == target or target in ALLOWED_TRANSITIONS[current]


def transition(order, target) -> OrderStatus:
    """
    Validate moving ``order`` to ``target`` and return the resulting status.

    Requesting the order's current status is a no-op success so retries stay
    safe. Any pair missing from the table raises InvalidTransitionError and the
    order is left untouched.
    """
    current = _status_of(order)
    target = OrderStatus(target)

    if current == target:
        return current
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current, target)
    return target


def is_terminal(order_or_status) -> bool:
    return _status_of(order_or_status) in TERMINAL_STATUSES
