"""
Smart Execution - Transaction History.

Read-only view of execution runs for display, and the source
of daily activity for the risk evaluator.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from core.clock import ensure_utc
from risk_limits.types import Account, AccountActivity

from .types import ChildOrderState, ExecutionRecord, ExecutionResult


class TransactionHistory:
    """
    Execution records by id, in-flight and finished.

    Only the sequencer writes; list() and get() have no side effects.
    """

    def __init__(self):
        self._records: Dict[str, ExecutionRecord] = {}
        self._results: Dict[str, ExecutionResult] = {}
        self._order: List[str] = []

    def __len__(self) -> int:
        return len(self._order)

    def open(self, record: ExecutionRecord) -> None:
        """Register an in-flight run."""
        if record.execution_id not in self._records:
            self._order.append(record.execution_id)
        self._records[record.execution_id] = record

    def close(self, result: ExecutionResult) -> None:
        """Register a finished run."""
        self.open(result.record)
        self._results[result.execution_id] = result

    def get(self, execution_id: str) -> Optional[ExecutionRecord]:
        return self._records.get(execution_id)

    def result(self, execution_id: str) -> Optional[ExecutionResult]:
        return self._results.get(execution_id)

    def list(self, account_id: Optional[str] = None) -> List[ExecutionRecord]:
        """Records newest first."""
        records = [self._records[i] for i in reversed(self._order)]
        if account_id is not None:
            records = [r for r in records if r.account_id == account_id]
        return records

    def activity_for(self, account: Account, now: datetime) -> AccountActivity:
        """
        Confirmed activity of an account on top of its baseline.

        used_today counts confirmed child orders on now's UTC date,
        including those of runs still in flight.
        """
        today = ensure_utc(now).date()
        used_today = Decimal("0")
        confirmed_volume = Decimal("0")
        trades = 0

        for record in self._records.values():
            if record.account_id != account.account_id:
                continue

            confirmed = [c for c in record.children if c.state == ChildOrderState.CONFIRMED]
            if not confirmed:
                continue

            trades += 1
            for child in confirmed:
                confirmed_volume += child.order.usd_amount
                if child.confirmed_at and ensure_utc(child.confirmed_at).date() == today:
                    used_today += child.order.usd_amount

        return AccountActivity(
            used_today_usd=used_today,
            trade_count=account.historical_trade_count + trades,
            total_volume_usd=account.historical_volume_usd + confirmed_volume,
        )
