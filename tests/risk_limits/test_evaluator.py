"""
Risk & Limit Evaluator Tests.

============================================================
PURPOSE
============================================================
Tests for tier ceilings, the risk rule table and the
SafetyWarning side effects of check().

TEST PRINCIPLES:
- Ceiling equality is allowed, one cent over is denied
- Violations are denied, never clamped
- Time enters only through `now`

============================================================
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.clock import MockClock
from risk_limits import (
    Account,
    AccountActivity,
    DenialCode,
    KycService,
    KycTier,
    RiskLevel,
    RiskLimitConfig,
    RiskLimitEvaluator,
    SafetyWarningBoard,
    SessionInfo,
    StaticKycProvider,
    WarningSeverity,
    format_usd,
    risk_warning_id,
)


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def fresh_session(now=NOW):
    return SessionInfo(started_at=now - timedelta(minutes=5), last_seen_at=now)


def make_account(tier=KycTier.VERIFIED, session=None, volume="10000", trades=10):
    return Account(
        "acc-1",
        kyc_tier=tier,
        session=session if session is not None else fresh_session(),
        historical_volume_usd=Decimal(volume),
        historical_trade_count=trades,
    )


# ============================================================
# TIER CEILING
# ============================================================

class TestTierCeiling:
    """Tests for the daily ceiling gate."""

    @pytest.mark.parametrize("tier,ceiling", [
        (KycTier.UNVERIFIED, Decimal("500")),
        (KycTier.BASIC, Decimal("500")),
        (KycTier.VERIFIED, Decimal("5000")),
    ])
    def test_boundary_allowed_one_cent_over_denied(self, tier, ceiling):
        evaluator = RiskLimitEvaluator()
        account = make_account(tier)

        at_ceiling = evaluator.evaluate(account, ceiling, NOW)
        over = evaluator.evaluate(account, ceiling + Decimal("0.01"), NOW)

        assert at_ceiling.allow is True
        assert over.allow is False
        assert over.reason_code == DenialCode.TIER_LIMIT_EXCEEDED
        assert over.ceiling_usd == ceiling

    def test_tier_one_600_denied_citing_500_ceiling(self):
        """A tier-1 account requesting $600 is denied with the $500 ceiling named."""
        evaluator = RiskLimitEvaluator()
        verdict = evaluator.evaluate(make_account(KycTier.BASIC), Decimal("600"), NOW)

        assert verdict.allow is False
        assert verdict.reason_code == DenialCode.TIER_LIMIT_EXCEEDED
        assert "$500.00" in verdict.reasons[0]
        assert "tier 1" in verdict.reasons[0]

    def test_institutional_is_unlimited(self):
        evaluator = RiskLimitEvaluator()
        verdict = evaluator.evaluate(
            make_account(KycTier.INSTITUTIONAL),
            Decimal("10000000"),
            NOW,
        )

        assert verdict.allow is True
        assert verdict.ceiling_usd is None

    def test_used_today_counts_against_ceiling(self):
        evaluator = RiskLimitEvaluator()
        account = make_account(KycTier.BASIC)
        activity = AccountActivity(
            used_today_usd=Decimal("400"),
            trade_count=10,
            total_volume_usd=Decimal("1000"),
        )

        assert evaluator.evaluate(account, Decimal("100"), NOW, activity).allow is True
        denied = evaluator.evaluate(account, Decimal("100.01"), NOW, activity)
        assert denied.allow is False
        assert "already used $400.00" in denied.reasons[0]

    @pytest.mark.parametrize("amount", [
        Decimal("0"), Decimal("-5"), Decimal("NaN"), Decimal("Infinity"), Decimal("-Infinity"),
    ])
    def test_non_positive_notional_denied(self, amount):
        verdict = RiskLimitEvaluator().evaluate(make_account(), amount, NOW)

        assert verdict.allow is False
        assert verdict.reason_code == DenialCode.INVALID_NOTIONAL


# ============================================================
# RISK RULE TABLE
# ============================================================

class TestRiskRuleTable:
    """Tests for the three risk signals."""

    def test_no_negative_signal_is_low(self):
        verdict = RiskLimitEvaluator().evaluate(make_account(), Decimal("100"), NOW)

        assert verdict.risk_level == RiskLevel.LOW
        assert verdict.negative_signals == []
        assert len(verdict.signals) == 3

    def test_incomplete_kyc_is_medium(self):
        verdict = RiskLimitEvaluator().evaluate(
            make_account(KycTier.BASIC),
            Decimal("100"),
            NOW,
        )

        assert verdict.risk_level == RiskLevel.MEDIUM
        assert [s.name for s in verdict.negative_signals] == ["kyc_completeness"]

    def test_size_ratio_equality_counts_as_negative(self):
        """Average trade is $1,000; exactly 5x is negative."""
        evaluator = RiskLimitEvaluator()
        account = make_account()

        at_threshold = evaluator.evaluate(account, Decimal("5000"), NOW)
        below = evaluator.evaluate(account, Decimal("4999.99"), NOW)

        assert at_threshold.risk_level == RiskLevel.MEDIUM
        assert below.risk_level == RiskLevel.LOW

    def test_first_trade_review_threshold(self):
        evaluator = RiskLimitEvaluator()
        account = make_account(volume="0", trades=0)

        assert evaluator.evaluate(account, Decimal("249.99"), NOW).risk_level == RiskLevel.LOW
        assert evaluator.evaluate(account, Decimal("250"), NOW).risk_level == RiskLevel.MEDIUM

    def test_missing_session_is_negative(self):
        account = Account("acc-1", kyc_tier=KycTier.VERIFIED)
        verdict = RiskLimitEvaluator().evaluate(account, Decimal("1"), NOW)

        assert [s.name for s in verdict.negative_signals] == ["session_freshness"]

    def test_idle_session_judged_against_supplied_now(self):
        evaluator = RiskLimitEvaluator()
        account = make_account()

        fresh = evaluator.evaluate(account, Decimal("100"), NOW + timedelta(seconds=899))
        idle = evaluator.evaluate(account, Decimal("100"), NOW + timedelta(seconds=900))

        assert fresh.risk_level == RiskLevel.LOW
        assert idle.risk_level == RiskLevel.MEDIUM

    def test_old_session_is_negative(self):
        start = NOW - timedelta(hours=24)
        account = make_account(session=SessionInfo(started_at=start, last_seen_at=NOW))

        verdict = RiskLimitEvaluator().evaluate(account, Decimal("100"), NOW)

        assert verdict.risk_level == RiskLevel.MEDIUM

    def test_two_negatives_is_high(self):
        account = Account("acc-1", kyc_tier=KycTier.BASIC)
        verdict = RiskLimitEvaluator().evaluate(account, Decimal("10"), NOW)

        assert verdict.risk_level == RiskLevel.HIGH

    def test_high_risk_does_not_block(self):
        """Blocking is solely via allow."""
        account = Account("acc-1", kyc_tier=KycTier.BASIC)
        verdict = RiskLimitEvaluator().evaluate(account, Decimal("300"), NOW)

        assert verdict.risk_level == RiskLevel.HIGH
        assert verdict.allow is True

    def test_deterministic(self):
        evaluator = RiskLimitEvaluator()
        account = make_account(KycTier.BASIC)

        assert evaluator.evaluate(account, Decimal("450"), NOW) == \
            evaluator.evaluate(account, Decimal("450"), NOW)

    def test_custom_thresholds(self):
        config = RiskLimitConfig(kyc_complete_tier=KycTier.BASIC)
        verdict = RiskLimitEvaluator(config).evaluate(
            make_account(KycTier.BASIC),
            Decimal("100"),
            NOW,
        )

        assert verdict.risk_level == RiskLevel.LOW


# ============================================================
# CHECK (SIDE EFFECTS)
# ============================================================

class TestCheck:
    """Tests for check(): KYC sync, risk level, warnings."""

    def _evaluator(self, board, provider=None):
        return RiskLimitEvaluator(
            warnings=board,
            kyc=KycService(provider),
            clock=MockClock(NOW),
        )

    @pytest.mark.asyncio
    async def test_medium_risk_raises_warning(self):
        board = SafetyWarningBoard()
        account = make_account(KycTier.BASIC)

        verdict = await self._evaluator(board).check(account, Decimal("100"))

        assert verdict.risk_level == RiskLevel.MEDIUM
        assert account.risk_level == RiskLevel.MEDIUM
        warning = board.get(risk_warning_id("acc-1"))
        assert warning is not None
        assert warning.severity == WarningSeverity.MEDIUM
        assert warning.suggested_action

    @pytest.mark.asyncio
    async def test_low_risk_resolves_warning(self):
        board = SafetyWarningBoard()
        account = make_account(KycTier.BASIC)
        evaluator = self._evaluator(board)
        await evaluator.check(account, Decimal("100"))

        account.upgrade_kyc_tier(KycTier.VERIFIED)
        verdict = await evaluator.check(account, Decimal("100"))

        assert verdict.risk_level == RiskLevel.LOW
        assert risk_warning_id("acc-1") not in board

    @pytest.mark.asyncio
    async def test_kyc_upgrade_applied_before_evaluation(self):
        board = SafetyWarningBoard()
        provider = StaticKycProvider({"acc-1": KycTier.VERIFIED})
        account = make_account(KycTier.BASIC)

        verdict = await self._evaluator(board, provider).check(account, Decimal("600"))

        assert account.kyc_tier == KycTier.VERIFIED
        assert verdict.allow is True

    @pytest.mark.asyncio
    async def test_denied_trade_still_records_risk(self):
        board = SafetyWarningBoard()
        account = Account("acc-1", kyc_tier=KycTier.BASIC)

        verdict = await self._evaluator(board).check(account, Decimal("600"))

        assert verdict.allow is False
        assert account.risk_level == RiskLevel.HIGH
        assert board.get(risk_warning_id("acc-1")).severity == WarningSeverity.HIGH


def test_format_usd():
    assert format_usd(Decimal("1234.5")) == "$1,234.50"
