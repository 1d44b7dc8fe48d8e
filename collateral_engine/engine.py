"""
Collateral Engine - Collateral & Loan Engine.

============================================================
PURPOSE
============================================================
Enforces the loan-to-value ceiling and owns loan status.

    open_loan(account, principal, collateral, prices, ltv)
        -> LoanDecision (approved with LoanPosition, or rejection)

STATUS LIFECYCLE:

    OPEN ──► REPAID       (repay_loan brings principal to zero)
      │
      └────► LIQUIDATED   (liquidate, external trigger)

============================================================
DESIGN PRINCIPLES
============================================================
- Prices are supplied by the caller; no internal price fetch
- A violating borrow is rejected, never partially filled
- This engine is the sole writer of loan status
- Decisions are returned, not raised

============================================================
"""

import logging
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

from core.clock import ClockProtocol, SystemClock
from risk_limits.types import Account

from .config import LoanPolicyConfig
from .types import (
    CollateralLot,
    LoanDecision,
    LoanHealth,
    LoanPosition,
    LoanRejectionCode,
    LoanStatus,
    LockedCollateral,
)


logger = logging.getLogger(__name__)


RATIO_QUANTUM = Decimal("0.0001")


def _positive(value: Decimal) -> bool:
    return value.is_finite() and value > 0


# ============================================================
# LOAN BOOK
# ============================================================

class LoanBook:
    """
    In-memory loan store indexed by loan id and borrower.

    Readers may hold positions; only the engine mutates them.
    """

    def __init__(self):
        self._loans: Dict[str, LoanPosition] = {}
        self._by_borrower: Dict[str, List[str]] = {}

    def __len__(self) -> int:
        return len(self._loans)

    def add(self, position: LoanPosition) -> None:
        self._loans[position.loan_id] = position
        self._by_borrower.setdefault(position.borrower_id, []).append(position.loan_id)

    def get(self, loan_id: str) -> Optional[LoanPosition]:
        return self._loans.get(loan_id)

    def for_borrower(
        self,
        borrower_id: str,
        status: Optional[LoanStatus] = None,
    ) -> List[LoanPosition]:
        loans = [self._loans[i] for i in self._by_borrower.get(borrower_id, [])]
        if status is not None:
            loans = [loan for loan in loans if loan.status == status]
        return loans


# ============================================================
# ENGINE
# ============================================================

class CollateralLoanEngine:
    """Collateral & Loan Engine."""

    def __init__(
        self,
        book: Optional[LoanBook] = None,
        config: Optional[LoanPolicyConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._book = book if book is not None else LoanBook()
        self._config = config or LoanPolicyConfig()
        self._clock = clock or SystemClock()

    @property
    def book(self) -> LoanBook:
        return self._book

    @property
    def config(self) -> LoanPolicyConfig:
        return self._config

    def ceiling_for(self, account: Account) -> Decimal:
        """Policy LTV ceiling for an account's tier."""
        return self._config.ltv_for_tier(account.kyc_tier)

    # --------------------------------------------------------
    # VALUATION
    # --------------------------------------------------------

    @staticmethod
    def value_collateral(
        collateral: Sequence[CollateralLot],
        prices: Mapping[str, Decimal],
    ) -> List[LockedCollateral]:
        """
        Value each lot at the supplied price.

        Raises:
            KeyError: If a symbol has no price
        """
        locked = []
        for lot in collateral:
            price = Decimal(prices[lot.symbol])
            amount = Decimal(lot.amount)
            locked.append(LockedCollateral(
                symbol=lot.symbol,
                amount=amount,
                usd_value=amount * price,
                price_usd=price,
            ))
        return locked

    # --------------------------------------------------------
    # OPEN
    # --------------------------------------------------------

    def open_loan(
        self,
        account: Account,
        principal_usd: Decimal,
        collateral: Sequence[CollateralLot],
        prices: Mapping[str, Decimal],
        ltv_ceiling: Optional[Decimal] = None,
    ) -> LoanDecision:
        """
        Open a loan if principal fits under the LTV ceiling.

        Args:
            account: Borrower
            principal_usd: Requested borrow amount
            collateral: Lots to lock
            prices: USD price per collateral symbol
            ltv_ceiling: Ceiling ratio; defaults to the tier policy

        Returns:
            LoanDecision
        """
        principal = Decimal(principal_usd)
        ceiling = (
            Decimal(ltv_ceiling) if ltv_ceiling is not None
            else self.ceiling_for(account)
        )

        if not _positive(principal):
            return self._reject(
                account,
                LoanRejectionCode.INVALID_PRINCIPAL,
                f"Principal must be positive, got {principal}",
            )

        if not (_positive(ceiling) and ceiling <= Decimal("1")):
            return self._reject(
                account,
                LoanRejectionCode.INVALID_LTV,
                f"LTV ceiling must be in (0, 1], got {ceiling}",
            )

        if not collateral or not all(_positive(Decimal(lot.amount)) for lot in collateral):
            return self._reject(
                account,
                LoanRejectionCode.INVALID_COLLATERAL,
                "Collateral must contain at least one lot with a positive amount",
            )

        missing = sorted({lot.symbol for lot in collateral if lot.symbol not in prices})
        if missing:
            return self._reject(
                account,
                LoanRejectionCode.MISSING_PRICE,
                f"No price supplied for: {', '.join(missing)}",
            )

        unpriced = sorted({
            lot.symbol for lot in collateral if not _positive(Decimal(prices[lot.symbol]))
        })
        if unpriced:
            return self._reject(
                account,
                LoanRejectionCode.MISSING_PRICE,
                f"Non-positive price supplied for: {', '.join(unpriced)}",
            )

        locked = self.value_collateral(collateral, prices)
        collateral_usd = sum((c.usd_value for c in locked), Decimal("0"))
        max_principal = collateral_usd * ceiling

        if principal > max_principal:
            return self._reject(
                account,
                LoanRejectionCode.EXCEEDS_LTV,
                f"Principal ${principal:,.2f} exceeds ${max_principal:,.2f} "
                f"({ceiling:.0%} of ${collateral_usd:,.2f} collateral)",
            )

        position = LoanPosition(
            borrower_id=account.account_id,
            collateral=tuple(locked),
            principal_usd=principal,
            original_principal_usd=principal,
            ltv_ceiling=ceiling,
            ltv_at_origination=(principal / collateral_usd).quantize(RATIO_QUANTUM),
            opened_at=self._clock.now(),
        )
        self._book.add(position)

        logger.info(
            f"Loan {position.loan_id} opened for {account.account_id}: "
            f"${principal:,.2f} against ${collateral_usd:,.2f} "
            f"(LTV {position.ltv_at_origination}, ceiling {ceiling})"
        )
        return LoanDecision(approved=True, position=position)

    # --------------------------------------------------------
    # REPAY
    # --------------------------------------------------------

    def repay_loan(self, loan_id: str, amount_usd: Decimal) -> LoanDecision:
        """
        Repay part or all of a loan.

        Partial repayment reduces principal; status becomes REPAID
        only when principal reaches zero.
        """
        position = self._book.get(loan_id)
        if position is None:
            return LoanDecision.reject(
                LoanRejectionCode.UNKNOWN_LOAN,
                f"Unknown loan {loan_id}",
            )

        if not position.is_open:
            return LoanDecision.reject(
                LoanRejectionCode.LOAN_NOT_OPEN,
                f"Loan {loan_id} is {position.status.value}",
            )

        amount = Decimal(amount_usd)
        if not _positive(amount):
            return LoanDecision.reject(
                LoanRejectionCode.INVALID_REPAYMENT,
                f"Repayment must be positive, got {amount}",
            )

        if amount > position.principal_usd:
            return LoanDecision.reject(
                LoanRejectionCode.REPAYMENT_EXCEEDS_PRINCIPAL,
                f"Repayment ${amount:,.2f} exceeds outstanding "
                f"${position.principal_usd:,.2f}",
            )

        position.principal_usd -= amount
        position.repayments.append(amount)

        if position.principal_usd == 0:
            self._close(position, LoanStatus.REPAID, "Principal fully repaid")
        else:
            logger.info(
                f"Loan {loan_id} partially repaid: ${amount:,.2f}, "
                f"outstanding ${position.principal_usd:,.2f}"
            )

        return LoanDecision(approved=True, position=position)

    # --------------------------------------------------------
    # LIQUIDATE
    # --------------------------------------------------------

    def liquidate(self, loan_id: str, reason: str = "Liquidation triggered") -> LoanDecision:
        """Entry point for the external liquidation trigger."""
        position = self._book.get(loan_id)
        if position is None:
            return LoanDecision.reject(
                LoanRejectionCode.UNKNOWN_LOAN,
                f"Unknown loan {loan_id}",
            )

        if not position.is_open:
            return LoanDecision.reject(
                LoanRejectionCode.LOAN_NOT_OPEN,
                f"Loan {loan_id} is {position.status.value}",
            )

        self._close(position, LoanStatus.LIQUIDATED, reason)
        return LoanDecision(approved=True, position=position)

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    def get_loan(self, loan_id: str) -> Optional[LoanPosition]:
        return self._book.get(loan_id)

    def health(
        self,
        loan_id: str,
        prices: Mapping[str, Decimal],
    ) -> Optional[LoanHealth]:
        """Current LTV of a loan against fresh prices. Read-only."""
        position = self._book.get(loan_id)
        if position is None:
            return None

        lots = [CollateralLot(c.symbol, c.amount) for c in position.collateral]
        collateral_usd = sum(
            (c.usd_value for c in self.value_collateral(lots, prices)),
            Decimal("0"),
        )
        current = None
        if collateral_usd > 0:
            current = (position.principal_usd / collateral_usd).quantize(RATIO_QUANTUM)

        return LoanHealth(
            loan_id=loan_id,
            collateral_usd=collateral_usd,
            principal_usd=position.principal_usd,
            current_ltv=current,
            ltv_ceiling=position.ltv_ceiling,
        )

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    def _close(self, position: LoanPosition, status: LoanStatus, reason: str) -> None:
        previous = position.status
        position.status = status
        position.status_reason = reason
        position.closed_at = self._clock.now()
        logger.info(
            f"Loan {position.loan_id}: {previous.value} -> {status.value} ({reason})"
        )

    def _reject(
        self,
        account: Account,
        code: LoanRejectionCode,
        message: str,
    ) -> LoanDecision:
        logger.warning(f"Loan rejected for {account.account_id}: {code.value} - {message}")
        return LoanDecision.reject(code, message)
