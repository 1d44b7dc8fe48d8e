"""
Collateral Engine - Types.

============================================================
PURPOSE
============================================================
Loan positions, collateral lots and loan decisions.

INVARIANT:
    principal <= collateral_usd * ltv_ceiling
    while a position is open.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple
import uuid


class LoanStatus(str, Enum):
    """Loan lifecycle status."""

    OPEN = "open"
    REPAID = "repaid"
    LIQUIDATED = "liquidated"

    def is_terminal(self) -> bool:
        return self in {LoanStatus.REPAID, LoanStatus.LIQUIDATED}


class LoanRejectionCode(str, Enum):
    """Why a loan operation was rejected."""

    EXCEEDS_LTV = "EXCEEDS_LTV"
    """Principal above collateral value times the LTV ceiling."""

    INVALID_PRINCIPAL = "INVALID_PRINCIPAL"
    """Principal is not positive."""

    INVALID_COLLATERAL = "INVALID_COLLATERAL"
    """Collateral list empty or has a non-positive amount."""

    MISSING_PRICE = "MISSING_PRICE"
    """No caller-supplied price for a collateral symbol."""

    INVALID_LTV = "INVALID_LTV"
    """LTV ceiling outside (0, 1]."""

    UNKNOWN_LOAN = "UNKNOWN_LOAN"
    """No loan with this id."""

    LOAN_NOT_OPEN = "LOAN_NOT_OPEN"
    """Loan is repaid or liquidated."""

    INVALID_REPAYMENT = "INVALID_REPAYMENT"
    """Repayment amount is not positive."""

    REPAYMENT_EXCEEDS_PRINCIPAL = "REPAYMENT_EXCEEDS_PRINCIPAL"
    """Repayment larger than the outstanding principal."""


@dataclass(frozen=True)
class CollateralLot:
    """Collateral offered for a loan, before valuation."""

    symbol: str
    amount: Decimal


@dataclass(frozen=True)
class LockedCollateral:
    """Collateral valued at lock time."""

    symbol: str
    amount: Decimal
    usd_value: Decimal
    price_usd: Decimal


@dataclass
class LoanPosition:
    """
    Loan owned by one account.

    Status transitions are written only by the CollateralLoanEngine.
    """

    borrower_id: str
    collateral: Tuple[LockedCollateral, ...]
    principal_usd: Decimal
    original_principal_usd: Decimal
    ltv_ceiling: Decimal
    ltv_at_origination: Decimal
    status: LoanStatus = LoanStatus.OPEN
    loan_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed_at: Optional[datetime] = None
    repayments: List[Decimal] = field(default_factory=list)
    status_reason: str = ""

    @property
    def collateral_usd(self) -> Decimal:
        """Collateral value at lock time."""
        return sum((c.usd_value for c in self.collateral), Decimal("0"))

    @property
    def max_principal_usd(self) -> Decimal:
        return self.collateral_usd * self.ltv_ceiling

    @property
    def is_open(self) -> bool:
        return self.status == LoanStatus.OPEN


@dataclass(frozen=True)
class LoanDecision:
    """Outcome of a loan operation."""

    approved: bool
    position: Optional[LoanPosition] = None
    reason_code: Optional[LoanRejectionCode] = None
    message: str = ""

    @classmethod
    def reject(cls, code: LoanRejectionCode, message: str) -> "LoanDecision":
        return cls(approved=False, reason_code=code, message=message)


@dataclass(frozen=True)
class LoanHealth:
    """Read-only LTV of an open loan against fresh prices."""

    loan_id: str
    collateral_usd: Decimal
    principal_usd: Decimal
    current_ltv: Optional[Decimal]
    ltv_ceiling: Decimal

    @property
    def within_ceiling(self) -> bool:
        return self.current_ltv is not None and self.current_ltv <= self.ltv_ceiling
