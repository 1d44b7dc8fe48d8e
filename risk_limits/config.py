"""
Risk Limits - Configuration.

============================================================
PURPOSE
============================================================
Thresholds for the deterministic risk rule table.

Threshold equality counts as a negative signal, which breaks
ties toward the more conservative risk level.

============================================================
"""

from dataclasses import dataclass
from decimal import Decimal

from .types import KycTier


@dataclass
class RiskLimitConfig:
    """Risk & Limit Evaluator configuration."""
    
    # KYC completeness signal
    kyc_complete_tier: KycTier = KycTier.VERIFIED
    """Tiers below this count as incomplete KYC."""
    
    # Trade size vs history signal
    size_ratio_threshold: Decimal = Decimal("5")
    """Negative when notional >= this multiple of the average trade."""
    
    first_trade_review_usd: Decimal = Decimal("250")
    """Negative when an account without history trades at least this."""
    
    # Session freshness signal
    max_session_idle_seconds: float = 15 * 60
    """Negative when the session has been idle at least this long."""
    
    max_session_age_seconds: float = 24 * 60 * 60
    """Negative when the session is at least this old."""
    
    # Warnings
    raise_warnings: bool = True
    """Whether medium/high risk enqueues a SafetyWarning."""