"""Transaction status transitions.

``pending`` is the only initial state; ``success`` and ``failed`` are terminal.
A webhook or an explicit verify can land before the initiation workflow has
moved the row to ``processing``, so ``pending`` may go straight to a terminal
state.
"""

from calvarypay.payments.schemas import TransactionStatus

TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.PROCESSING, TransactionStatus.SUCCESS, TransactionStatus.FAILED}
    ),
    TransactionStatus.PROCESSING: frozenset({TransactionStatus.SUCCESS, TransactionStatus.FAILED}),
    TransactionStatus.SUCCESS: frozenset(),  # Terminal state
    TransactionStatus.FAILED: frozenset(),  # Terminal state
}

TERMINAL_STATES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


def is_terminal(status: TransactionStatus | str) -> bool:
    return TransactionStatus(status) in TERMINAL_STATES


def can_transition(current: TransactionStatus | str, new: TransactionStatus | str) -> bool:
    """True if ``current -> new`` is a legal move. Re-applying ``current`` is not a move."""
    return TransactionStatus(new) in TRANSITIONS[TransactionStatus(current)]


def allowed_sources(new: TransactionStatus | str) -> frozenset[TransactionStatus]:
    """States a transaction may be in for a transition into ``new`` to apply."""
    target = TransactionStatus(new)
    return frozenset(s for s, targets in TRANSITIONS.items() if target in targets)
