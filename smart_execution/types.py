"""
Smart Execution - Types.

============================================================
PURPOSE
============================================================
All type definitions for the Smart Execution Engine.

CRITICAL PRINCIPLE:
    "Nothing is submitted until the risk verdict allows it."
    "An execution plan is never mutated, only consumed."

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple
import uuid

from collateral_engine.types import CollateralLot, LoanPosition
from risk_limits.types import RiskVerdict

from .errors import ReasonCode


USD_QUANTUM = Decimal("0.01")
TOKEN_QUANTUM = Decimal("0.000001")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ============================================================
# RUN LIFECYCLE STATES
# ============================================================

class ExecutionState(Enum):
    """
    Execution run state.

    State Machine:

    IDLE
      │
      ▼
    VALIDATING ──────────────► REJECTED
      │                           ▲
      ▼                           │
    PLANNING ─────────────────────┘
      │
      ▼
    SUBMITTING(i) ───────────► PARTIALLY_FAILED
      │                           ▲
      ▼                           │
    CONFIRMING(i) ────────────────┘
      │
      ├──► SUBMITTING(i+1)
      └──► COMPLETED
    """

    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    PLANNING = "PLANNING"
    SUBMITTING = "SUBMITTING"
    CONFIRMING = "CONFIRMING"

    # Terminal states
    COMPLETED = "COMPLETED"
    PARTIALLY_FAILED = "PARTIALLY_FAILED"
    REJECTED = "REJECTED"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in {
            ExecutionState.COMPLETED,
            ExecutionState.PARTIALLY_FAILED,
            ExecutionState.REJECTED,
        }

    def is_active(self) -> bool:
        """Check if the run may still submit transactions."""
        return self in {
            ExecutionState.SUBMITTING,
            ExecutionState.CONFIRMING,
        }


class ChildOrderState(Enum):
    """Child order lifecycle: planned -> submitted -> confirmed | failed."""

    PLANNED = "PLANNED"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"

    def is_terminal(self) -> bool:
        return self in {ChildOrderState.CONFIRMED, ChildOrderState.FAILED}


# ============================================================
# REQUESTS
# ============================================================

@dataclass(frozen=True)
class LoanRequest:
    """Borrow to fund a trade, opened before planning."""

    principal_usd: Decimal
    """Requested borrow amount."""

    collateral: Tuple[CollateralLot, ...]
    """Collateral lots to lock."""

    prices: Mapping[str, Decimal]
    """Caller-supplied USD price per collateral symbol."""

    ltv_ceiling: Optional[Decimal] = None
    """LTV ceiling; None uses the account's tier policy."""

    def __post_init__(self):
        object.__setattr__(self, "principal_usd", Decimal(self.principal_usd))
        object.__setattr__(self, "collateral", tuple(self.collateral))
        object.__setattr__(
            self,
            "prices",
            MappingProxyType({k: Decimal(v) for k, v in dict(self.prices).items()}),
        )


@dataclass(frozen=True)
class TradeRequest:
    """
    Fiat-denominated trade intent.

    Immutable once handed to the sequencer.
    """

    account_id: str
    """Account placing the trade."""

    token_address: str
    """Token contract to mint/transfer."""

    notional_usd: Decimal
    """USD notional (> 0)."""

    recipient: Optional[str] = None
    """Fixed recipient; defaults to the account wallet."""

    loan: Optional[LoanRequest] = None
    """Optional borrow opened before execution."""

    request_id: str = field(default_factory=_new_id)
    """Unique request identifier."""

    def __post_init__(self):
        object.__setattr__(self, "notional_usd", Decimal(self.notional_usd))


@dataclass(frozen=True)
class BasketAllocation:
    """One asset of a basket."""

    symbol: str
    percent: Decimal
    token_address: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "percent", Decimal(self.percent))


@dataclass(frozen=True)
class BasketRequest:
    """Execute-basket request: one plan per allocation, one record."""

    account_id: str
    allocations: Tuple[BasketAllocation, ...]
    total_usd: Decimal
    recipient: Optional[str] = None
    default_token_address: Optional[str] = None
    """Token used for allocations without their own address."""

    fund_token_address: Optional[str] = None
    """Fund-share token minted (total_usd / 100 shares) after all allocations."""

    request_id: str = field(default_factory=_new_id)

    def __post_init__(self):
        object.__setattr__(self, "allocations", tuple(self.allocations))
        object.__setattr__(self, "total_usd", Decimal(self.total_usd))


# ============================================================
# MARKET CONTEXT
# ============================================================

@dataclass(frozen=True)
class LiquiditySource:
    """A venue able to absorb part of a trade."""

    name: str
    price_multiplier: Decimal
    """Effective price relative to reference (1.0 = at reference)."""

    available_usd: Decimal
    """Liquidity available at this venue."""

    @property
    def impact_pct(self) -> Decimal:
        return (self.price_multiplier - 1) * 100


@dataclass(frozen=True)
class Quote:
    """Price/route answer from the quote gateway."""

    amount_usd: Decimal
    sources: Tuple[LiquiditySource, ...]
    price_usd: Decimal = Decimal("1")
    """Reference token price in USD."""

    fetched_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class MarketContext:
    """Market conditions the splitter plans against."""

    price_usd: Decimal = Decimal("1")
    """Reference token price in USD."""

    depth_usd: Decimal = Decimal("2000000")
    """Total liquidity across sources."""

    sources: Tuple[LiquiditySource, ...] = ()
    """Venues, in any order."""

    @classmethod
    def from_quote(cls, quote: Quote) -> "MarketContext":
        depth = sum((s.available_usd for s in quote.sources), Decimal("0"))
        return cls(
            price_usd=quote.price_usd,
            depth_usd=depth,
            sources=quote.sources,
        )

    def ranked_sources(self) -> List[LiquiditySource]:
        """Sources ordered best price first, then by name."""
        return sorted(self.sources, key=lambda s: (s.price_multiplier, s.name))


# ============================================================
# PLAN
# ============================================================

@dataclass(frozen=True)
class ChildOrder:
    """One on-chain sub-transaction of a plan."""

    index: int
    """Position within the plan, from 0."""

    usd_amount: Decimal
    """USD sub-amount."""

    token_amount: Decimal
    """Token amount to mint/transfer."""

    token_address: str
    """Token contract."""

    recipient: Optional[str] = None
    """Target recipient; None means the signer's default address."""

    route: Optional[str] = None
    """Liquidity source this child is routed through."""

    delay_seconds: float = 0.0
    """Pacing delay before this child is submitted."""

    label: str = ""
    """Display label (basket symbol)."""


@dataclass(frozen=True)
class ExecutionPlan:
    """
    Ordered child orders for one trade.

    Produced once, never mutated.
    """

    notional_usd: Decimal
    token_address: str
    children: Tuple[ChildOrder, ...]
    split: bool = False
    """Whether the notional was split into several children."""

    estimated_max_impact_bps: Decimal = Decimal("0")
    """Estimated market impact of the largest child."""

    label: str = ""
    plan_id: str = field(default_factory=_new_id)

    @property
    def total_usd(self) -> Decimal:
        return sum((c.usd_amount for c in self.children), Decimal("0"))

    def validate(self) -> None:
        """
        Check plan invariants.

        Raises:
            PlanningDefect: EMPTY_PLAN or INVALID_PLAN
        """
        if not self.children:
            raise PlanningDefect(
                "Order splitter returned an empty plan",
                code=ReasonCode.EMPTY_PLAN,
            )

        for position, child in enumerate(self.children):
            if child.index != position:
                raise PlanningDefect(
                    f"Child order at position {position} has index {child.index}"
                )
            if not child.usd_amount.is_finite() or child.usd_amount <= 0:
                raise PlanningDefect(
                    f"Child order {position} has non-positive amount {child.usd_amount}"
                )
            if not child.token_amount.is_finite() or child.token_amount <= 0:
                raise PlanningDefect(
                    f"Child order {position} delivers no tokens: "
                    f"${child.usd_amount} buys {child.token_amount}"
                )

        if self.total_usd != self.notional_usd:
            raise PlanningDefect(
                f"Child orders sum to {self.total_usd}, expected {self.notional_usd}"
            )


# ============================================================
# EXECUTION RECORD
# ============================================================

@dataclass(frozen=True)
class RecordStep:
    """One human-readable log line."""

    timestamp: datetime
    message: str
    child_index: Optional[int] = None
    """Run-wide child sequence number, if the step concerns a child."""


@dataclass
class ChildExecution:
    """Lifecycle of one child order inside a run."""

    sequence: int
    """Run-wide submission order."""

    plan_id: str
    order: ChildOrder
    state: ChildOrderState = ChildOrderState.PLANNED
    tx_hash: Optional[str] = None
    error_code: Optional[ReasonCode] = None
    error: Optional[str] = None
    submitted_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None


class ExecutionRecord:
    """
    Append-only audit trail of one execution run.

    Steps and transaction hashes are only ever appended; readers
    receive tuples, so they observe a monotonically growing log.
    """

    def __init__(self, execution_id: str, account_id: str, created_at: Optional[datetime] = None):
        self.execution_id = execution_id
        self.account_id = account_id
        self.created_at = created_at or _utcnow()
        self._steps: List[RecordStep] = []
        self._tx_hashes: List[str] = []
        self._children: List[ChildExecution] = []
        self._confirmed_usd = Decimal("0")

    def __repr__(self) -> str:
        return (
            f"ExecutionRecord(execution_id={self.execution_id!r}, "
            f"steps={len(self._steps)}, tx_hashes={len(self._tx_hashes)})"
        )

    @property
    def steps(self) -> Tuple[RecordStep, ...]:
        return tuple(self._steps)

    @property
    def messages(self) -> Tuple[str, ...]:
        return tuple(s.message for s in self._steps)

    @property
    def tx_hashes(self) -> Tuple[str, ...]:
        return tuple(self._tx_hashes)

    @property
    def children(self) -> Tuple[ChildExecution, ...]:
        return tuple(self._children)

    @property
    def confirmed_usd(self) -> Decimal:
        """USD confirmed on-chain so far."""
        return self._confirmed_usd

    def log(
        self,
        message: str,
        at: Optional[datetime] = None,
        child_index: Optional[int] = None,
    ) -> RecordStep:
        step = RecordStep(timestamp=at or _utcnow(), message=message, child_index=child_index)
        self._steps.append(step)
        return step

    def add_tx_hash(self, tx_hash: str) -> None:
        self._tx_hashes.append(tx_hash)

    def track(self, plan: ExecutionPlan, order: ChildOrder) -> ChildExecution:
        """Register a child order about to be submitted."""
        child = ChildExecution(
            sequence=len(self._children),
            plan_id=plan.plan_id,
            order=order,
        )
        self._children.append(child)
        return child

    def mark_confirmed(self, child: ChildExecution, at: datetime) -> None:
        """Book a child already advanced to CONFIRMED."""
        child.confirmed_at = at
        self._confirmed_usd += child.order.usd_amount

    def entries_for(self, sequence: int) -> Tuple[RecordStep, ...]:
        return tuple(s for s in self._steps if s.child_index == sequence)


# ============================================================
# EXECUTION RESULT
# ============================================================

@dataclass
class ExecutionResult:
    """
    Outcome of an execution run.

    Succeeded steps and the failed step are kept apart so a
    partial run is never reported as total success or failure.
    """

    execution_id: str
    account_id: str
    status: ExecutionState
    record: ExecutionRecord
    reason_code: Optional[ReasonCode] = None
    reason: str = ""
    plans: Tuple[ExecutionPlan, ...] = ()
    verdict: Optional[RiskVerdict] = None
    loan: Optional[LoanPosition] = None
    request_id: str = ""
    completed_at: datetime = field(default_factory=_utcnow)
    fund_token_tx: Optional[str] = None
    """Hash of the confirmed basket fund-share mint."""

    @property
    def is_success(self) -> bool:
        return self.status == ExecutionState.COMPLETED

    @property
    def is_partial(self) -> bool:
        return self.status == ExecutionState.PARTIALLY_FAILED

    @property
    def is_rejected(self) -> bool:
        return self.status == ExecutionState.REJECTED

    @property
    def tx_hashes(self) -> Tuple[str, ...]:
        return self.record.tx_hashes

    @property
    def succeeded(self) -> List[ChildExecution]:
        """Confirmed child orders."""
        return [c for c in self.record.children if c.state == ChildOrderState.CONFIRMED]

    @property
    def failed(self) -> Optional[ChildExecution]:
        """The child order that stopped the run, if any."""
        for child in self.record.children:
            if child.state == ChildOrderState.FAILED:
                return child
        return None

    @property
    def confirmed_usd(self) -> Decimal:
        return self.record.confirmed_usd

    @property
    def planned_usd(self) -> Decimal:
        return sum((p.notional_usd for p in self.plans), Decimal("0"))

    def summary(self) -> Dict[str, object]:
        """Plain-dict view for display layers."""
        failed = self.failed
        return {
            "execution_id": self.execution_id,
            "account_id": self.account_id,
            "status": self.status.value,
            "reason_code": self.reason_code.value if self.reason_code else None,
            "reason": self.reason,
            "planned_usd": str(self.planned_usd),
            "confirmed_usd": str(self.confirmed_usd),
            "succeeded": [
                {"sequence": c.sequence, "usd": str(c.order.usd_amount), "tx_hash": c.tx_hash}
                for c in self.succeeded
            ],
            "failed": None if failed is None else {
                "sequence": failed.sequence,
                "usd": str(failed.order.usd_amount),
                "tx_hash": failed.tx_hash,
                "error_code": failed.error_code.value if failed.error_code else None,
                "error": failed.error,
            },
            "tx_hashes": list(self.tx_hashes),
            "fund_token_tx": self.fund_token_tx,
            "steps": list(self.record.messages),
        }


# ============================================================
# EXCEPTIONS
# ============================================================

class SmartExecutionError(Exception):
    """Base exception for Smart Execution."""

    default_code: Optional[ReasonCode] = None

    def __init__(self, message: str, code: Optional[ReasonCode] = None):
        super().__init__(message)
        self.code = code or self.default_code


class ValidationError(SmartExecutionError):
    """Malformed request, rejected before any side effect."""

    default_code = ReasonCode.INVALID_NOTIONAL


class PolicyDenied(SmartExecutionError):
    """KYC/tier/LTV limit violated, rejected before any side effect."""

    default_code = ReasonCode.TIER_LIMIT_EXCEEDED


class PlanningDefect(SmartExecutionError):
    """Splitter produced an invalid plan. A bug, never retried."""

    default_code = ReasonCode.INVALID_PLAN


class SubmissionFailure(SmartExecutionError):
    """Signer rejected or errored."""

    default_code = ReasonCode.SUBMISSION_REJECTED


class ConfirmationTimeout(SmartExecutionError):
    """Confirmation not observed in time; booked as a failure."""

    default_code = ReasonCode.CONFIRMATION_TIMEOUT


class SignerError(SmartExecutionError):
    """Signer adapter communication error."""

    default_code = ReasonCode.SIGNER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ReasonCode] = None,
        is_retryable: bool = False,
    ):
        super().__init__(message, code)
        self.is_retryable = is_retryable


class GatewayError(SmartExecutionError):
    """Quote/routing service communication error."""

    default_code = ReasonCode.QUOTE_UNAVAILABLE
