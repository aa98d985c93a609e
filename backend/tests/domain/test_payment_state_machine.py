"""Tests for the transaction status transition table."""

import pytest

from calvarypay.payments.schemas import TransactionStatus
from calvarypay.payments.state_machine import (
    TERMINAL_STATES,
    TRANSITIONS,
    allowed_sources,
    can_transition,
    is_terminal,
)

pytestmark = pytest.mark.unit

S = TransactionStatus


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (S.PENDING, S.PROCESSING),
        (S.PENDING, S.SUCCESS),
        (S.PENDING, S.FAILED),
        (S.PROCESSING, S.SUCCESS),
        (S.PROCESSING, S.FAILED),
    ],
)
def test_forward_transitions_allowed(current, target):
    assert can_transition(current, target) is True


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (S.SUCCESS, S.FAILED),
        (S.FAILED, S.SUCCESS),
        (S.SUCCESS, S.PENDING),
        (S.PROCESSING, S.PENDING),
        (S.FAILED, S.PROCESSING),
    ],
)
def test_backward_and_terminal_transitions_refused(current, target):
    assert can_transition(current, target) is False


def test_terminal_states_have_no_exits():
    assert TERMINAL_STATES == {S.SUCCESS, S.FAILED}
    for state in TERMINAL_STATES:
        assert is_terminal(state)
        assert TRANSITIONS[state] == frozenset()


def test_pending_and_processing_are_not_terminal():
    assert not is_terminal(S.PENDING)
    assert not is_terminal(S.PROCESSING)


def test_allowed_sources_for_success():
    assert set(allowed_sources(S.SUCCESS)) == {S.PENDING, S.PROCESSING}


def test_allowed_sources_for_processing():
    assert set(allowed_sources(S.PROCESSING)) == {S.PENDING}


def test_nothing_may_move_back_to_pending():
    assert not set(allowed_sources(S.PENDING))
