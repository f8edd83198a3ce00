"""Tests for the order lifecycle table and the pure transition function."""

from types import SimpleNamespace

import pytest

from coursepay.constants.order_status import ALLOWED_TRANSITIONS, OrderStatus
from coursepay.exceptions import InvalidTransitionError
from coursepay.services import order_state_machine

LEGAL = [(current, target) for current, targets in ALLOWED_TRANSITIONS.items() for target in targets]
ILLEGAL = [
    (current, target)
    for current in OrderStatus
    for target in OrderStatus
    if current != target and target not in ALLOWED_TRANSITIONS[current]
]


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(OrderStatus)

    def test_happy_path_is_legal(self):
        path = [
            OrderStatus.NEW,
            OrderStatus.PENDING_PAYMENT,
            OrderStatus.PAID,
            OrderStatus.UNDER_PROCESS,
            OrderStatus.PROCESSED,
        ]
        for current, target in zip(path, path[1:]):
            assert order_state_machine.can_transition(current, target)


class TestTransition:
    @pytest.mark.parametrize("current,target", LEGAL)
    def test_legal_pairs_return_target(self, current, target):
        assert order_state_machine.transition(current, target) == target

    @pytest.mark.parametrize("current,target", ILLEGAL)
    def test_illegal_pairs_raise(self, current, target):
        with pytest.raises(InvalidTransitionError) as exc_info:
            order_state_machine.transition(current, target)
        assert exc_info.value.current == current
        assert exc_info.value.target == target

    def test_new_straight_to_processed_is_rejected(self):
        order = SimpleNamespace(status=OrderStatus.NEW)
        with pytest.raises(InvalidTransitionError):
            order_state_machine.transition(order, OrderStatus.PROCESSED)
        assert order.status == OrderStatus.NEW

    @pytest.mark.parametrize("status", list(OrderStatus))
    def test_same_status_is_noop(self, status):
        order = SimpleNamespace(status=status)
        assert order_state_machine.transition(order, status) == status

    def test_does_not_mutate_the_order(self):
        order = SimpleNamespace(status=OrderStatus.PENDING_PAYMENT)
        assert order_state_machine.transition(order, OrderStatus.PAID) == OrderStatus.PAID
        assert order.status == OrderStatus.PENDING_PAYMENT

    def test_accepts_raw_values(self):
        assert order_state_machine.transition("paid", "under_process") == OrderStatus.UNDER_PROCESS


class TestTerminal:
    @pytest.mark.parametrize(
        "status",
        [OrderStatus.PROCESSED, OrderStatus.FAILED, OrderStatus.EXPIRED, OrderStatus.REFUNDED],
    )
    def test_terminal_statuses(self, status):
        assert order_state_machine.is_terminal(status)

    @pytest.mark.parametrize(
        "status",
        [OrderStatus.NEW, OrderStatus.PENDING_PAYMENT, OrderStatus.PAID, OrderStatus.UNDER_PROCESS],
    )
    def test_open_statuses(self, status):
        assert not order_state_machine.is_terminal(status)

    def test_failed_admits_nothing(self):
        assert not order_state_machine.can_transition(OrderStatus.FAILED, OrderStatus.PENDING_PAYMENT)

    def test_processed_still_admits_refund(self):
        assert order_state_machine.can_transition(OrderStatus.PROCESSED, OrderStatus.REFUNDED)
