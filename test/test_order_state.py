from itertools import product

import pytest

from orderdesk.order_state import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    OrderStatus,
    is_valid_transition,
    valid_next_states,
)

EXPECTED = {
    "pending": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"in_transit", "cancelled"},
    "in_transit": {"delivered", "cancelled"},
    "delivered": {"delivered"},
    "cancelled": {"cancelled"},
}


@pytest.mark.parametrize("current,target", list(product(OrderStatus, OrderStatus)))
def test_matrix_pair(current, target):
    assert is_valid_transition(current, target) == (target.value in EXPECTED[current.value])


def test_every_status_has_an_entry():
    assert set(VALID_TRANSITIONS) == set(OrderStatus)


def test_accepts_plain_strings():
    assert is_valid_transition("shipped", "in_transit")
    assert not is_valid_transition("shipped", "delivered")


def test_terminal_states_only_loop_to_themselves():
    for status in TERMINAL_STATUSES:
        assert valid_next_states(status) == [status]


def test_cancel_reachable_from_every_non_terminal_state():
    for status in set(OrderStatus) - TERMINAL_STATUSES:
        assert OrderStatus.cancelled in valid_next_states(status)


def test_no_backward_edges():
    order = list(OrderStatus)[:5]  # pending .. delivered, in lifecycle order
    for i, current in enumerate(order):
        for earlier in order[:i]:
            assert not is_valid_transition(current, earlier)


def test_pending_next_states_in_order():
    assert [s.value for s in valid_next_states("pending")] == ["processing", "cancelled"]
