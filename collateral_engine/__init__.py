"""
Collateral Engine Package.

============================================================
PURPOSE
============================================================
Loan-to-value enforcement and loan status ownership.

CRITICAL PRINCIPLE:
    "A borrow that would breach the LTV ceiling is rejected,
     never partially filled."

============================================================
MODULES
============================================================
- types: LoanPosition, collateral lots, decisions
- config: Per-tier LTV policy
- engine: CollateralLoanEngine and LoanBook

============================================================
"""

from .types import (
    LoanStatus,
    LoanRejectionCode,
    CollateralLot,
    LockedCollateral,
    LoanPosition,
    LoanDecision,
    LoanHealth,
)
from .config import LoanPolicyConfig
from .engine import CollateralLoanEngine, LoanBook


__all__ = [
    "LoanStatus",
    "LoanRejectionCode",
    "CollateralLot",
    "LockedCollateral",
    "LoanPosition",
    "LoanDecision",
    "LoanHealth",
    "LoanPolicyConfig",
    "CollateralLoanEngine",
    "LoanBook",
]
