"""
Risk Limits Package.

============================================================
PURPOSE
============================================================
Gates every execution decision on KYC tier limits and
account risk.

CRITICAL PRINCIPLE:
    "Blocking happens solely through the verdict's allow flag."

============================================================
MODULES
============================================================
- types: Account, KYC tiers, risk levels, verdicts, warnings
- config: Rule table thresholds
- evaluator: RiskLimitEvaluator
- warnings: SafetyWarningBoard
- kyc: KYC providers and KycService

============================================================
"""

# ============================================================
# TYPES
# ============================================================
from .types import (
    KycTier,
    RiskLevel,
    CustodyMode,
    WarningSeverity,
    DenialCode,
    SessionInfo,
    Account,
    AccountActivity,
    RiskSignal,
    RiskVerdict,
    SafetyWarning,
    KycDowngradeError,
    TIER_DAILY_CEILINGS,
    is_valid_address,
)

# ============================================================
# CONFIGURATION
# ============================================================
from .config import RiskLimitConfig

# ============================================================
# COMPONENTS
# ============================================================
from .warnings import SafetyWarningBoard
from .kyc import (
    KycStatus,
    KycProvider,
    KycProviderError,
    StaticKycProvider,
    HttpKycProvider,
    KycService,
)
from .evaluator import RiskLimitEvaluator, format_usd, risk_warning_id


__all__ = [
    # Types
    "KycTier",
    "RiskLevel",
    "CustodyMode",
    "WarningSeverity",
    "DenialCode",
    "SessionInfo",
    "Account",
    "AccountActivity",
    "RiskSignal",
    "RiskVerdict",
    "SafetyWarning",
    "KycDowngradeError",
    "TIER_DAILY_CEILINGS",
    "is_valid_address",
    # Config
    "RiskLimitConfig",
    # Components
    "SafetyWarningBoard",
    "KycStatus",
    "KycProvider",
    "KycProviderError",
    "StaticKycProvider",
    "HttpKycProvider",
    "KycService",
    "RiskLimitEvaluator",
    "format_usd",
    "risk_warning_id",
]
