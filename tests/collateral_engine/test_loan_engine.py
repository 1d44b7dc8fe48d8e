"""
Collateral & Loan Engine Tests.

============================================================
PURPOSE
============================================================
Tests for the LTV ceiling and the loan status lifecycle.

TEST PRINCIPLES:
- principal <= collateral_usd * ltv is approved, boundary included
- Violations are rejected, never partially filled
- Only the engine writes status

============================================================
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from collateral_engine import (
    CollateralLoanEngine,
    CollateralLot,
    LoanBook,
    LoanPolicyConfig,
    LoanRejectionCode,
    LoanStatus,
)
from core.clock import MockClock
from risk_limits.types import Account, KycTier


NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
PRICES = {"ETH": Decimal("2000"), "BTC": Decimal("50000")}


@pytest.fixture
def engine():
    return CollateralLoanEngine(clock=MockClock(NOW))


@pytest.fixture
def borrower():
    return Account("borrower", kyc_tier=KycTier.VERIFIED)


def eth(amount):
    return [CollateralLot("ETH", Decimal(amount))]


# ============================================================
# OPEN LOAN
# ============================================================

class TestOpenLoan:
    """Tests for open_loan."""

    def test_boundary_600_against_1000_at_60_percent(self, engine, borrower):
        """$600 against $1,000 at 60% is exactly the ceiling."""
        decision = engine.open_loan(
            borrower, Decimal("600"), eth("0.5"), PRICES, Decimal("0.60"),
        )

        assert decision.approved is True
        position = decision.position
        assert position.status == LoanStatus.OPEN
        assert position.principal_usd == Decimal("600")
        assert position.collateral_usd == Decimal("1000")
        assert position.ltv_at_origination == Decimal("0.6000")
        assert position.opened_at == NOW

    def test_601_rejected_exceeds_ltv(self, engine, borrower):
        decision = engine.open_loan(
            borrower, Decimal("601"), eth("0.5"), PRICES, Decimal("0.60"),
        )

        assert decision.approved is False
        assert decision.reason_code == LoanRejectionCode.EXCEEDS_LTV
        assert decision.position is None
        assert len(engine.book) == 0

    @pytest.mark.parametrize("principal,collateral_usd,ltv,approved", [
        ("300", "1000", "0.30", True),
        ("300.01", "1000", "0.30", False),
        ("0.01", "0.02", "0.5", True),
        ("500", "1000", "0.5", True),
        ("1000", "1000", "1", True),
        ("1000.01", "1000", "1", False),
    ])
    def test_ltv_property(self, engine, borrower, principal, collateral_usd, ltv, approved):
        lots = [CollateralLot("USDC", Decimal(collateral_usd))]
        decision = engine.open_loan(
            borrower, Decimal(principal), lots, {"USDC": Decimal("1")}, Decimal(ltv),
        )

        assert decision.approved is approved

    def test_multi_asset_collateral(self, engine, borrower):
        lots = [CollateralLot("ETH", Decimal("1")), CollateralLot("BTC", Decimal("0.1"))]
        decision = engine.open_loan(borrower, Decimal("2800"), lots, PRICES, Decimal("0.4"))

        assert decision.approved is True
        assert decision.position.collateral_usd == Decimal("7000")

    def test_tier_policy_used_when_no_ceiling(self, engine):
        """Tier 2 policy is 40%."""
        account = Account("b", kyc_tier=KycTier.VERIFIED)

        assert engine.open_loan(account, Decimal("400"), eth("0.5"), PRICES).approved
        rejected = engine.open_loan(account, Decimal("400.01"), eth("0.5"), PRICES)
        assert rejected.reason_code == LoanRejectionCode.EXCEEDS_LTV

    @pytest.mark.parametrize("principal,lots,prices,ltv,code", [
        ("0", eth("1"), PRICES, "0.5", LoanRejectionCode.INVALID_PRINCIPAL),
        ("-1", eth("1"), PRICES, "0.5", LoanRejectionCode.INVALID_PRINCIPAL),
        ("NaN", eth("1"), PRICES, "0.5", LoanRejectionCode.INVALID_PRINCIPAL),
        ("Infinity", eth("1"), PRICES, "0.5", LoanRejectionCode.INVALID_PRINCIPAL),
        ("10", eth("NaN"), PRICES, "0.5", LoanRejectionCode.INVALID_COLLATERAL),
        ("10", eth("1"), {"ETH": Decimal("0")}, "0.5", LoanRejectionCode.MISSING_PRICE),
        ("10", eth("1"), {"ETH": Decimal("NaN")}, "0.5", LoanRejectionCode.MISSING_PRICE),
        ("10", eth("1"), PRICES, "NaN", LoanRejectionCode.INVALID_LTV),
        ("10", [], PRICES, "0.5", LoanRejectionCode.INVALID_COLLATERAL),
        ("10", eth("0"), PRICES, "0.5", LoanRejectionCode.INVALID_COLLATERAL),
        ("10", [CollateralLot("DOGE", Decimal("1"))], PRICES, "0.5", LoanRejectionCode.MISSING_PRICE),
        ("10", eth("1"), PRICES, "0", LoanRejectionCode.INVALID_LTV),
        ("10", eth("1"), PRICES, "1.5", LoanRejectionCode.INVALID_LTV),
    ])
    def test_rejections(self, engine, borrower, principal, lots, prices, ltv, code):
        decision = engine.open_loan(borrower, Decimal(principal), lots, prices, Decimal(ltv))

        assert decision.approved is False
        assert decision.reason_code == code


# ============================================================
# REPAY / LIQUIDATE
# ============================================================

class TestLoanLifecycle:
    """Tests for repay_loan and liquidate."""

    def _open(self, engine, borrower, principal="600"):
        return engine.open_loan(
            borrower, Decimal(principal), eth("0.5"), PRICES, Decimal("0.6"),
        ).position

    def test_partial_repayment_keeps_open(self, engine, borrower):
        loan = self._open(engine, borrower)

        decision = engine.repay_loan(loan.loan_id, Decimal("200"))

        assert decision.approved is True
        assert loan.principal_usd == Decimal("400")
        assert loan.status == LoanStatus.OPEN
        assert loan.repayments == [Decimal("200")]

    def test_full_repayment_marks_repaid(self, engine, borrower):
        loan = self._open(engine, borrower)
        engine.repay_loan(loan.loan_id, Decimal("250"))
        engine.repay_loan(loan.loan_id, Decimal("350"))

        assert loan.status == LoanStatus.REPAID
        assert loan.principal_usd == Decimal("0")
        assert loan.closed_at == NOW

    def test_repay_closed_loan_rejected(self, engine, borrower):
        loan = self._open(engine, borrower)
        engine.repay_loan(loan.loan_id, Decimal("600"))

        decision = engine.repay_loan(loan.loan_id, Decimal("1"))

        assert decision.reason_code == LoanRejectionCode.LOAN_NOT_OPEN

    @pytest.mark.parametrize("amount,code", [
        ("0", LoanRejectionCode.INVALID_REPAYMENT),
        ("NaN", LoanRejectionCode.INVALID_REPAYMENT),
        ("-Infinity", LoanRejectionCode.INVALID_REPAYMENT),
        ("600.01", LoanRejectionCode.REPAYMENT_EXCEEDS_PRINCIPAL),
    ])
    def test_invalid_repayments(self, engine, borrower, amount, code):
        loan = self._open(engine, borrower)

        decision = engine.repay_loan(loan.loan_id, Decimal(amount))

        assert decision.reason_code == code
        assert loan.principal_usd == Decimal("600")

    def test_unknown_loan(self, engine):
        assert engine.repay_loan("nope", Decimal("1")).reason_code == LoanRejectionCode.UNKNOWN_LOAN
        assert engine.liquidate("nope").reason_code == LoanRejectionCode.UNKNOWN_LOAN

    def test_liquidate(self, engine, borrower):
        loan = self._open(engine, borrower)

        decision = engine.liquidate(loan.loan_id, "Collateral value fell")

        assert decision.approved is True
        assert loan.status == LoanStatus.LIQUIDATED
        assert loan.status_reason == "Collateral value fell"
        assert engine.liquidate(loan.loan_id).reason_code == LoanRejectionCode.LOAN_NOT_OPEN
        assert engine.repay_loan(loan.loan_id, Decimal("1")).reason_code == LoanRejectionCode.LOAN_NOT_OPEN


# ============================================================
# QUERIES
# ============================================================

class TestLoanQueries:
    """Tests for the book and health queries."""

    def test_book_by_borrower_and_status(self, borrower):
        book = LoanBook()
        engine = CollateralLoanEngine(book=book, clock=MockClock(NOW))
        first = engine.open_loan(borrower, Decimal("100"), eth("1"), PRICES, Decimal("0.5")).position
        engine.open_loan(borrower, Decimal("100"), eth("1"), PRICES, Decimal("0.5"))
        engine.repay_loan(first.loan_id, Decimal("100"))

        assert len(book.for_borrower("borrower")) == 2
        assert len(book.for_borrower("borrower", LoanStatus.OPEN)) == 1
        assert engine.get_loan(first.loan_id) is first

    def test_health_against_fresh_prices(self, engine, borrower):
        loan = engine.open_loan(borrower, Decimal("600"), eth("0.5"), PRICES, Decimal("0.6")).position

        healthy = engine.health(loan.loan_id, PRICES)
        crashed = engine.health(loan.loan_id, {"ETH": Decimal("1500")})

        assert healthy.within_ceiling is True
        assert crashed.current_ltv == Decimal("0.8000")
        assert crashed.within_ceiling is False
        assert loan.status == LoanStatus.OPEN
        assert engine.health("missing", PRICES) is None


class TestLoanPolicyConfig:
    """Tests for tier LTV policy."""

    @pytest.mark.parametrize("tier,ltv", [
        (0, Decimal("0.30")),
        (1, Decimal("0.30")),
        (2, Decimal("0.40")),
        (3, Decimal("0.50")),
        (None, Decimal("0.60")),
    ])
    def test_ltv_for_tier(self, tier, ltv):
        assert LoanPolicyConfig().ltv_for_tier(tier) == ltv
