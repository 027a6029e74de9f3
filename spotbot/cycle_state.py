"""
State machine for a single strategy cycle.

State Transitions:
    IDLE → PRICE_FETCHED → INDICATORS_COMPUTED → SIGNAL_DETERMINED → DONE
                                                     ↓ (actionable, not dry run)
                                              BALANCE_CHECKED → ORDER_SUBMITTED → TRADE_RECORDED → DONE

    BALANCE_CHECKED → DONE when the balance is insufficient (no-trade result).
    Any non-terminal state → FAILED on an unrecovered gateway error.

Typical Flow:
    1. Engine creates a CycleStateMachine per execute_strategy() call
    2. advance() is called after each step completes
    3. fail() records the error that aborted the cycle

Examples:
    >>> sm = CycleStateMachine("BTCUSDT")
    >>> sm.advance(CycleState.PRICE_FETCHED)
    >>> sm.state
    <CycleState.PRICE_FETCHED: 'price_fetched'>
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Optional


class CycleState(Enum):
    """Strategy cycle states."""

    IDLE = "idle"
    PRICE_FETCHED = "price_fetched"
    INDICATORS_COMPUTED = "indicators_computed"
    SIGNAL_DETERMINED = "signal_determined"
    BALANCE_CHECKED = "balance_checked"
    ORDER_SUBMITTED = "order_submitted"
    TRADE_RECORDED = "trade_recorded"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES: FrozenSet[CycleState] = frozenset({CycleState.DONE, CycleState.FAILED})

TRANSITIONS: Dict[CycleState, FrozenSet[CycleState]] = {
    CycleState.IDLE: frozenset({CycleState.PRICE_FETCHED}),
    CycleState.PRICE_FETCHED: frozenset({CycleState.INDICATORS_COMPUTED}),
    CycleState.INDICATORS_COMPUTED: frozenset({CycleState.SIGNAL_DETERMINED}),
    CycleState.SIGNAL_DETERMINED: frozenset({CycleState.BALANCE_CHECKED, CycleState.DONE}),
    CycleState.BALANCE_CHECKED: frozenset({CycleState.ORDER_SUBMITTED, CycleState.DONE}),
    CycleState.ORDER_SUBMITTED: frozenset({CycleState.TRADE_RECORDED}),
    CycleState.TRADE_RECORDED: frozenset({CycleState.DONE}),
    CycleState.DONE: frozenset(),
    CycleState.FAILED: frozenset(),
}


class CycleStateMachine:
    """Tracks the progress of one execute_strategy() call.

    Attributes:
        symbol: Trading pair the cycle runs for
        state: Current CycleState
        history: Every state entered, in order, starting with IDLE
        error: Exception that moved the cycle to FAILED, if any

    Note:
        This is a state container; the engine performs the work and reports
        each completed step through advance().
    """

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        self.state = CycleState.IDLE
        self.history: List[CycleState] = [CycleState.IDLE]
        self.error: Optional[BaseException] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, new_state: CycleState) -> None:
        """Move to ``new_state``.

        Raises:
            ValueError: If the transition is not allowed from the current state
        """
        if new_state not in TRANSITIONS[self.state]:
            raise ValueError(
                f"Illegal cycle transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    def fail(self, error: BaseException) -> None:
        """Abort the cycle. Has no effect once a terminal state is reached."""
        if self.is_terminal:
            return
        self.error = error
        self.state = CycleState.FAILED
        self.history.append(CycleState.FAILED)
