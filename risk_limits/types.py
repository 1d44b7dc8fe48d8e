"""
Risk Limits - Type Definitions.

============================================================
PURPOSE
============================================================
Data contracts for the Risk & Limit Evaluator.

The evaluator classifies a prospective trade by account risk
and gates it against the account's KYC tier ceiling.

============================================================
DESIGN PRINCIPLES
============================================================
- Account is the long-lived root entity
- KYC tier only moves up, through upgrade_kyc_tier()
- Risk level is derived, never user-settable
- Verdicts are plain values, never exceptions

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum, IntEnum
from typing import List, Optional, Tuple
import re
import uuid


ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


def is_valid_address(address: Optional[str]) -> bool:
    """Check an EVM address (0x followed by 40 hex characters)."""
    return bool(address) and ADDRESS_PATTERN.match(address) is not None


# ============================================================
# ENUMS
# ============================================================

class KycTier(IntEnum):
    """
    Ordered KYC verification level.

    Each tier bounds the notional an account may trade per day.
    """

    UNVERIFIED = 0
    BASIC = 1
    VERIFIED = 2
    INSTITUTIONAL = 3

    @property
    def daily_ceiling_usd(self) -> Optional[Decimal]:
        """Daily notional ceiling. None means unlimited."""
        return TIER_DAILY_CEILINGS[self]


TIER_DAILY_CEILINGS = {
    KycTier.UNVERIFIED: Decimal("500.00"),
    KycTier.BASIC: Decimal("500.00"),
    KycTier.VERIFIED: Decimal("5000.00"),
    KycTier.INSTITUTIONAL: None,
}


class RiskLevel(str, Enum):
    """Account risk classification for a prospective trade."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def severity_order(self) -> int:
        """Numeric ordering for severity comparison."""
        return {"low": 0, "medium": 1, "high": 2}[self.value]

    @classmethod
    def from_negative_signals(cls, count: int) -> "RiskLevel":
        """
        Rule table: no negative signal is low, one is medium,
        two or more is high.
        """
        if count <= 0:
            return cls.LOW
        if count == 1:
            return cls.MEDIUM
        return cls.HIGH

    @staticmethod
    def highest(*levels: "RiskLevel") -> "RiskLevel":
        """Return the most conservative of the given levels."""
        return max(levels, key=lambda level: level.severity_order)


class CustodyMode(str, Enum):
    """Who holds the account's keys."""

    SELF = "self"
    VAULT = "vault"


class WarningSeverity(str, Enum):
    """Severity of a SafetyWarning."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def severity_order(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]

    @classmethod
    def from_risk_level(cls, level: RiskLevel) -> "WarningSeverity":
        """Warning severity mirrors the risk level."""
        return cls(level.value)


class DenialCode(str, Enum):
    """Reason codes for a denied verdict."""

    INVALID_NOTIONAL = "INVALID_NOTIONAL"
    TIER_LIMIT_EXCEEDED = "TIER_LIMIT_EXCEEDED"


# ============================================================
# ACCOUNT
# ============================================================

@dataclass
class SessionInfo:
    """Current authenticated session of an account."""

    started_at: datetime
    """When the session was opened."""

    last_seen_at: datetime
    """Last activity observed in the session."""


class KycDowngradeError(ValueError):
    """KYC tiers are monotonically non-decreasing."""
    pass


class Account:
    """
    Long-lived account root.

    KYC tier and risk level are exposed read-only; only the KYC
    service and the risk evaluator change them, through explicit
    calls.
    """

    def __init__(
        self,
        account_id: str,
        kyc_tier: KycTier = KycTier.UNVERIFIED,
        wallet_address: Optional[str] = None,
        custody_mode: CustodyMode = CustodyMode.SELF,
        session: Optional[SessionInfo] = None,
        historical_volume_usd: Decimal = Decimal("0"),
        historical_trade_count: int = 0,
    ):
        if not account_id:
            raise ValueError("account_id is required")

        self.account_id = account_id
        self.custody_mode = custody_mode
        self.session = session
        self.historical_volume_usd = Decimal(historical_volume_usd)
        self.historical_trade_count = historical_trade_count

        self._kyc_tier = KycTier(kyc_tier)
        self._risk_level = RiskLevel.LOW
        self._wallet_address: Optional[str] = None

        if wallet_address is not None:
            self.connect_wallet(wallet_address)

    def __repr__(self) -> str:
        return (
            f"Account(account_id={self.account_id!r}, "
            f"kyc_tier={self._kyc_tier.name}, risk_level={self._risk_level.value})"
        )

    @property
    def kyc_tier(self) -> KycTier:
        return self._kyc_tier

    @property
    def risk_level(self) -> RiskLevel:
        return self._risk_level

    @property
    def wallet_address(self) -> Optional[str]:
        return self._wallet_address

    def upgrade_kyc_tier(self, tier: int) -> bool:
        """
        Raise the KYC tier.

        Returns:
            True if the tier changed

        Raises:
            KycDowngradeError: If tier is below the current tier
        """
        new_tier = KycTier(tier)
        if new_tier < self._kyc_tier:
            raise KycDowngradeError(
                f"Cannot downgrade {self.account_id} from tier "
                f"{int(self._kyc_tier)} to {int(new_tier)}"
            )
        changed = new_tier != self._kyc_tier
        self._kyc_tier = new_tier
        return changed

    def record_risk_level(self, level: RiskLevel) -> None:
        """Store the level derived by the risk evaluator."""
        self._risk_level = RiskLevel(level)

    def connect_wallet(self, address: str) -> None:
        if not is_valid_address(address):
            raise ValueError(f"Invalid wallet address: {address!r}")
        self._wallet_address = address

    def disconnect_wallet(self) -> None:
        self._wallet_address = None


@dataclass(frozen=True)
class AccountActivity:
    """Trading activity used by the size and daily-ceiling checks."""

    used_today_usd: Decimal = Decimal("0")
    """Notional already executed today (UTC)."""

    trade_count: int = 0
    """Number of past trades."""

    total_volume_usd: Decimal = Decimal("0")
    """Lifetime traded notional."""

    @property
    def average_trade_usd(self) -> Optional[Decimal]:
        if self.trade_count <= 0:
            return None
        return self.total_volume_usd / self.trade_count

    @classmethod
    def baseline(cls, account: Account) -> "AccountActivity":
        """Activity known from the account's onboarding baseline only."""
        return cls(
            trade_count=account.historical_trade_count,
            total_volume_usd=account.historical_volume_usd,
        )


# ============================================================
# VERDICT
# ============================================================

@dataclass(frozen=True)
class RiskSignal:
    """One independent risk signal."""

    name: str
    negative: bool
    detail: str = ""


@dataclass(frozen=True)
class RiskVerdict:
    """
    Output of the evaluator.

    Blocking happens only through `allow`; the risk level is
    informational and drives SafetyWarnings.
    """

    allow: bool
    risk_level: RiskLevel
    reasons: Tuple[str, ...] = ()
    signals: Tuple[RiskSignal, ...] = ()
    reason_code: Optional[DenialCode] = None
    ceiling_usd: Optional[Decimal] = None
    kyc_tier: KycTier = KycTier.UNVERIFIED

    @property
    def negative_signals(self) -> List[RiskSignal]:
        return [s for s in self.signals if s.negative]


# ============================================================
# SAFETY WARNING
# ============================================================

@dataclass
class SafetyWarning:
    """User-facing safety warning with a dismiss lifecycle."""

    account_id: str
    severity: WarningSeverity
    message: str
    suggested_action: Optional[str] = None
    warning_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "risk_evaluator"
