"""
Smart Execution - Application Context.

============================================================
PURPOSE
============================================================
Explicit owner of the state shared by the evaluator, the
loan engine and the sequencer. Passed by reference; there is
no module-level singleton.

OWNS:
- accounts: AccountRegistry
- warnings: SafetyWarningBoard
- loans: LoanBook
- history: TransactionHistory
- active runs: one per account
- state-change listeners

============================================================
"""

import logging
from typing import Dict, Iterator, List, Optional

from collateral_engine.engine import LoanBook
from core.clock import ClockProtocol, SystemClock
from risk_limits.types import Account
from risk_limits.warnings import SafetyWarningBoard

from .history import TransactionHistory
from .state_machine import StateListener, StateTransitionEvent


logger = logging.getLogger(__name__)


class AccountRegistry:
    """Accounts by id."""

    def __init__(self):
        self._accounts: Dict[str, Account] = {}

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._accounts

    def __iter__(self) -> Iterator[Account]:
        return iter(list(self._accounts.values()))

    def add(self, account: Account) -> Account:
        if account.account_id in self._accounts:
            raise ValueError(f"Account {account.account_id} already registered")
        self._accounts[account.account_id] = account
        return account

    def get(self, account_id: str) -> Optional[Account]:
        return self._accounts.get(account_id)


class AppContext:
    """Application state container."""

    def __init__(
        self,
        accounts: Optional[AccountRegistry] = None,
        warnings: Optional[SafetyWarningBoard] = None,
        loans: Optional[LoanBook] = None,
        history: Optional[TransactionHistory] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self.accounts = accounts if accounts is not None else AccountRegistry()
        self.warnings = warnings if warnings is not None else SafetyWarningBoard()
        self.loans = loans if loans is not None else LoanBook()
        self.history = history if history is not None else TransactionHistory()
        self.clock = clock or SystemClock()
        self._listeners: List[StateListener] = []
        self._active_runs: Dict[str, str] = {}

    # --------------------------------------------------------
    # STATE-CHANGE NOTIFICATIONS
    # --------------------------------------------------------

    def add_listener(self, listener: StateListener) -> None:
        """Subscribe to every run state transition."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self, event: StateTransitionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Context listener error: {e}")

    # --------------------------------------------------------
    # ACTIVE RUNS
    # --------------------------------------------------------

    def reserve_run(self, account_id: str, execution_id: str) -> Optional[str]:
        """
        Claim the account's run slot.

        Returns:
            None if claimed, else the id of the run holding it
        """
        holder = self._active_runs.get(account_id)
        if holder is not None and holder != execution_id:
            return holder
        self._active_runs[account_id] = execution_id
        return None

    def release_run(self, account_id: str, execution_id: str) -> None:
        if self._active_runs.get(account_id) == execution_id:
            del self._active_runs[account_id]

    def active_run(self, account_id: str) -> Optional[str]:
        return self._active_runs.get(account_id)
