"""
Transaction History and Application Context Tests.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from risk_limits import Account, KycTier
from smart_execution.context import AccountRegistry, AppContext
from smart_execution.history import TransactionHistory
from smart_execution.state_machine import StateTransitionEvent
from smart_execution.types import (
    ChildOrder,
    ExecutionPlan,
    ExecutionRecord,
    ExecutionResult,
    ExecutionState,
)


TOKEN = "0x" + "66" * 20
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def record_with(account_id, execution_id, *confirmations):
    """Record with one confirmed child per (usd, confirmed_at) pair."""
    record = ExecutionRecord(execution_id, account_id, NOW)
    children = tuple(
        ChildOrder(i, Decimal(usd), Decimal(usd), TOKEN)
        for i, (usd, _) in enumerate(confirmations)
    )
    plan = ExecutionPlan(sum((c.usd_amount for c in children), Decimal("0")), TOKEN, children)
    for order, (_, at) in zip(children, confirmations):
        record.mark_confirmed(record.track(plan, order), at)
    return record


class TestTransactionHistory:
    """Tests for TransactionHistory."""

    def test_list_newest_first_and_filter(self):
        history = TransactionHistory()
        history.open(ExecutionRecord("e1", "alice", NOW))
        history.open(ExecutionRecord("e2", "bob", NOW))
        history.open(ExecutionRecord("e3", "alice", NOW))

        assert [r.execution_id for r in history.list()] == ["e3", "e2", "e1"]
        assert [r.execution_id for r in history.list("alice")] == ["e3", "e1"]
        assert len(history) == 3

    def test_close_stores_result(self):
        history = TransactionHistory()
        record = ExecutionRecord("e1", "alice", NOW)
        history.open(record)
        result = ExecutionResult("e1", "alice", ExecutionState.REJECTED, record)

        history.close(result)

        assert history.result("e1") is result
        assert history.get("e1") is record
        assert len(history) == 1

    def test_activity_counts_today_only(self):
        history = TransactionHistory()
        history.open(record_with(
            "alice", "e1",
            ("100", NOW - timedelta(days=1)),
            ("200", NOW - timedelta(hours=1)),
        ))
        history.open(record_with("alice", "e2", ("50", NOW)))
        history.open(record_with("bob", "e3", ("999", NOW)))
        history.open(ExecutionRecord("e4", "alice", NOW))

        account = Account(
            "alice",
            kyc_tier=KycTier.BASIC,
            historical_volume_usd=Decimal("1000"),
            historical_trade_count=2,
        )
        activity = history.activity_for(account, NOW)

        assert activity.used_today_usd == Decimal("250")
        assert activity.trade_count == 4
        assert activity.total_volume_usd == Decimal("1350")


class TestAccountRegistry:
    """Tests for AccountRegistry."""

    def test_add_and_get(self):
        registry = AccountRegistry()
        account = registry.add(Account("alice"))

        assert registry.get("alice") is account
        assert "alice" in registry
        assert list(registry) == [account]

    def test_duplicate_rejected(self):
        registry = AccountRegistry()
        registry.add(Account("alice"))

        with pytest.raises(ValueError):
            registry.add(Account("alice"))


class TestAppContext:
    """Tests for AppContext."""

    def test_run_slot_is_exclusive(self):
        context = AppContext()

        assert context.reserve_run("alice", "e1") is None
        assert context.reserve_run("alice", "e2") == "e1"
        assert context.reserve_run("bob", "e3") is None

        context.release_run("alice", "e2")
        assert context.active_run("alice") == "e1"

        context.release_run("alice", "e1")
        assert context.active_run("alice") is None
        assert context.reserve_run("alice", "e2") is None

    def test_listeners(self):
        context = AppContext()
        events = []
        context.add_listener(events.append)

        def broken(event):
            raise RuntimeError("boom")

        context.add_listener(broken)
        event = StateTransitionEvent(
            "e1", "alice", ExecutionState.IDLE, ExecutionState.VALIDATING,
        )
        context.notify(event)
        context.remove_listener(events.append)
        context.notify(event)

        assert events == [event]
