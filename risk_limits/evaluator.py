"""
Risk Limits - Risk & Limit Evaluator.

============================================================
PURPOSE
============================================================
Classifies a prospective trade by account risk and gates it
against the account's KYC tier ceiling.

    evaluate(account, notional, now) -> RiskVerdict

============================================================
RULES
============================================================
1. DAILY CEILING
   used_today + notional must not exceed the tier ceiling.
   Equality is allowed. Violations are denied, never clamped.

2. RISK LEVEL (three independent signals)
   - kyc_completeness
   - trade_size_vs_history
   - session_freshness
   0 negative -> LOW, 1 -> MEDIUM, 2+ -> HIGH

3. WARNINGS
   MEDIUM/HIGH raises a SafetyWarning of the same severity.
   LOW resolves it. Warnings never block; only `allow` does.

============================================================
DESIGN PRINCIPLES
============================================================
- evaluate() is pure; time enters only through `now`
- check() is the async wrapper that performs side effects
- Deterministic: same inputs, same verdict

============================================================
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from core.clock import ClockProtocol, SystemClock, ensure_utc

from .config import RiskLimitConfig
from .kyc import KycService
from .types import (
    Account,
    AccountActivity,
    DenialCode,
    RiskLevel,
    RiskSignal,
    RiskVerdict,
    SafetyWarning,
    WarningSeverity,
)
from .warnings import SafetyWarningBoard


logger = logging.getLogger(__name__)


SIGNAL_KYC = "kyc_completeness"
SIGNAL_SIZE = "trade_size_vs_history"
SIGNAL_SESSION = "session_freshness"


def format_usd(amount: Decimal) -> str:
    """Format a USD amount as $1,234.56."""
    return f"${amount:,.2f}"


def risk_warning_id(account_id: str) -> str:
    """Id of the evaluator's warning for an account."""
    return f"risk:{account_id}"


class RiskLimitEvaluator:
    """
    Risk & Limit Evaluator.

    Usage:
        evaluator = RiskLimitEvaluator(config, warnings=board, kyc=kyc_service)
        verdict = await evaluator.check(account, Decimal("600"), activity)

        if not verdict.allow:
            # Rejected before any side effect
            pass
    """

    def __init__(
        self,
        config: Optional[RiskLimitConfig] = None,
        warnings: Optional[SafetyWarningBoard] = None,
        kyc: Optional[KycService] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config or RiskLimitConfig()
        self._warnings = warnings
        self._kyc = kyc or KycService()
        self._clock = clock or SystemClock()

    @property
    def config(self) -> RiskLimitConfig:
        return self._config

    # --------------------------------------------------------
    # PURE EVALUATION
    # --------------------------------------------------------

    def evaluate(
        self,
        account: Account,
        trade_notional_usd: Decimal,
        now: datetime,
        activity: Optional[AccountActivity] = None,
    ) -> RiskVerdict:
        """
        Evaluate a prospective trade.

        Args:
            account: Account placing the trade
            trade_notional_usd: Proposed USD notional
            now: Reference time for the session freshness signal
            activity: Prior activity (defaults to the account baseline)

        Returns:
            RiskVerdict (never raises for bad amounts)
        """
        activity = activity or AccountActivity.baseline(account)
        notional = Decimal(trade_notional_usd)
        tier = account.kyc_tier
        ceiling = tier.daily_ceiling_usd

        valid = notional.is_finite() and notional > 0
        signals = (
            self._kyc_signal(account),
            self._size_signal(notional if valid else Decimal("0"), activity),
            self._session_signal(account, now),
        )
        negatives = sum(1 for s in signals if s.negative)
        risk_level = RiskLevel.from_negative_signals(negatives)
        reasons: List[str] = [s.detail for s in signals if s.negative]

        if not valid:
            return RiskVerdict(
                allow=False,
                risk_level=risk_level,
                reasons=tuple([f"Notional must be positive, got {notional}"] + reasons),
                signals=signals,
                reason_code=DenialCode.INVALID_NOTIONAL,
                ceiling_usd=ceiling,
                kyc_tier=tier,
            )

        if ceiling is not None:
            projected = activity.used_today_usd + notional
            if projected > ceiling:
                denial = (
                    f"KYC tier {int(tier)} daily ceiling of {format_usd(ceiling)} exceeded: "
                    f"requested {format_usd(notional)}, "
                    f"already used {format_usd(activity.used_today_usd)} today"
                )
                return RiskVerdict(
                    allow=False,
                    risk_level=risk_level,
                    reasons=tuple([denial] + reasons),
                    signals=signals,
                    reason_code=DenialCode.TIER_LIMIT_EXCEEDED,
                    ceiling_usd=ceiling,
                    kyc_tier=tier,
                )

        return RiskVerdict(
            allow=True,
            risk_level=risk_level,
            reasons=tuple(reasons),
            signals=signals,
            ceiling_usd=ceiling,
            kyc_tier=tier,
        )

    # --------------------------------------------------------
    # CHECK WITH SIDE EFFECTS
    # --------------------------------------------------------

    async def check(
        self,
        account: Account,
        trade_notional_usd: Decimal,
        activity: Optional[AccountActivity] = None,
    ) -> RiskVerdict:
        """
        Sync KYC, evaluate, then record the risk level and
        raise or resolve the account's SafetyWarning.
        """
        await self._kyc.sync(account)

        verdict = self.evaluate(
            account,
            trade_notional_usd,
            self._clock.now(),
            activity,
        )

        account.record_risk_level(verdict.risk_level)
        self._apply_warning(account, verdict)

        if verdict.allow:
            logger.info(
                f"Risk check passed for {account.account_id}: "
                f"{format_usd(Decimal(trade_notional_usd))} ({verdict.risk_level.value})"
            )
        else:
            logger.warning(
                f"Risk check denied for {account.account_id}: "
                f"{verdict.reason_code.value} - {verdict.reasons[0]}"
            )

        return verdict

    # --------------------------------------------------------
    # SIGNALS
    # --------------------------------------------------------

    def _kyc_signal(self, account: Account) -> RiskSignal:
        required = self._config.kyc_complete_tier
        if account.kyc_tier < required:
            return RiskSignal(
                name=SIGNAL_KYC,
                negative=True,
                detail=(
                    f"KYC incomplete: tier {int(account.kyc_tier)} "
                    f"below tier {int(required)}"
                ),
            )
        return RiskSignal(name=SIGNAL_KYC, negative=False)

    def _size_signal(
        self,
        notional: Decimal,
        activity: AccountActivity,
    ) -> RiskSignal:
        average = activity.average_trade_usd

        if average is None or average <= 0:
            threshold = self._config.first_trade_review_usd
            if notional >= threshold:
                return RiskSignal(
                    name=SIGNAL_SIZE,
                    negative=True,
                    detail=(
                        f"No trade history and trade size {format_usd(notional)} "
                        f"is at least {format_usd(threshold)}"
                    ),
                )
            return RiskSignal(name=SIGNAL_SIZE, negative=False)

        ratio = notional / average
        if ratio >= self._config.size_ratio_threshold:
            return RiskSignal(
                name=SIGNAL_SIZE,
                negative=True,
                detail=(
                    f"Trade size {format_usd(notional)} is {ratio:.1f}x "
                    f"the average trade of {format_usd(average)}"
                ),
            )
        return RiskSignal(name=SIGNAL_SIZE, negative=False)

    def _session_signal(self, account: Account, now: datetime) -> RiskSignal:
        session = account.session
        if session is None:
            return RiskSignal(
                name=SIGNAL_SESSION,
                negative=True,
                detail="No active session",
            )

        now = ensure_utc(now)
        idle = (now - ensure_utc(session.last_seen_at)).total_seconds()
        age = (now - ensure_utc(session.started_at)).total_seconds()

        if idle >= self._config.max_session_idle_seconds:
            return RiskSignal(
                name=SIGNAL_SESSION,
                negative=True,
                detail=f"Session idle for {int(idle)}s",
            )
        if age >= self._config.max_session_age_seconds:
            return RiskSignal(
                name=SIGNAL_SESSION,
                negative=True,
                detail=f"Session is {int(age)}s old",
            )
        return RiskSignal(name=SIGNAL_SESSION, negative=False)

    # --------------------------------------------------------
    # WARNINGS
    # --------------------------------------------------------

    def _apply_warning(self, account: Account, verdict: RiskVerdict) -> None:
        if self._warnings is None or not self._config.raise_warnings:
            return

        warning_id = risk_warning_id(account.account_id)

        if verdict.risk_level == RiskLevel.LOW:
            self._warnings.resolve(warning_id)
            return

        details = "; ".join(s.detail for s in verdict.negative_signals)
        self._warnings.raise_warning(SafetyWarning(
            warning_id=warning_id,
            account_id=account.account_id,
            severity=WarningSeverity.from_risk_level(verdict.risk_level),
            message=f"Elevated {verdict.risk_level.value} risk: {details}",
            suggested_action=_suggested_action(verdict),
            created_at=self._clock.now(),
        ))


def _suggested_action(verdict: RiskVerdict) -> str:
    names = {s.name for s in verdict.negative_signals}
    if SIGNAL_KYC in names:
        return "Complete identity verification to raise your limits"
    if SIGNAL_SESSION in names:
        return "Sign in again to refresh your session"
    return "Consider splitting the trade into smaller amounts"
