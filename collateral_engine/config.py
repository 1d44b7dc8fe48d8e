"""
Collateral Engine - Configuration.

LTV ceilings are policy, varied per KYC tier; the engine never
hard-codes one.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional

from risk_limits.types import KycTier


def _default_tier_ltv() -> Dict[KycTier, Decimal]:
    return {
        KycTier.UNVERIFIED: Decimal("0.30"),
        KycTier.BASIC: Decimal("0.30"),
        KycTier.VERIFIED: Decimal("0.40"),
        KycTier.INSTITUTIONAL: Decimal("0.50"),
    }


@dataclass
class LoanPolicyConfig:
    """Loan policy configuration."""

    tier_ltv: Dict[KycTier, Decimal] = field(default_factory=_default_tier_ltv)
    """LTV ceiling per KYC tier."""

    default_ltv: Decimal = Decimal("0.60")
    """Ceiling used when neither caller nor tier supplies one."""

    def ltv_for_tier(self, tier: Optional[int]) -> Decimal:
        """LTV ceiling for a tier, or the default when tier is unknown."""
        if tier is None:
            return self.default_ltv
        return self.tier_ltv.get(KycTier(tier), self.default_ltv)
