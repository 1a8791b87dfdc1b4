import pytest

from greendrop.models.domain import OrderStatus
from greendrop.services.state_machine import (
    ORDER_STATE_TRANSITIONS,
    InvalidTransitionError,
    TerminalStateError,
    ensure_valid_transition,
    is_terminal,
)


def test_forward_path_is_allowed():
    path = ["created", "paid", "confirmed", "shipped", "delivered"]
    for current, nxt in zip(path, path[1:]):
        ensure_valid_transition(OrderStatus(current), OrderStatus(nxt))


def test_forward_steps_may_be_skipped():
    ensure_valid_transition(OrderStatus.CREATED, OrderStatus.SHIPPED)


@pytest.mark.parametrize("status", ["created", "paid", "confirmed", "shipped"])
def test_cancel_is_reachable_from_every_open_status(status):
    ensure_valid_transition(OrderStatus(status), OrderStatus.CANCELLED)


def test_backward_transition_is_rejected():
    with pytest.raises(InvalidTransitionError, match="shipped -> paid"):
        ensure_valid_transition(OrderStatus.SHIPPED, OrderStatus.PAID)


@pytest.mark.parametrize("terminal", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
def test_terminal_statuses_accept_no_transition(terminal):
    assert is_terminal(terminal)
    assert ORDER_STATE_TRANSITIONS[terminal] == set()
    with pytest.raises(TerminalStateError):
        ensure_valid_transition(terminal, OrderStatus.SHIPPED)


def test_same_status_is_not_a_transition():
    ensure_valid_transition(OrderStatus.DELIVERED, OrderStatus.DELIVERED)
