"""
Smart Execution - Execution Sequencer.

============================================================
PURPOSE
============================================================
Owns the lifecycle of a multi-step execution run.

This is the primary entry point of the Smart Execution Engine.
It gates the request on risk, plans it, then submits child
orders one at a time and keeps the audit trail.

============================================================
DESIGN PRINCIPLES
============================================================
- GATED: Nothing is submitted unless the risk verdict allows it
- SEQUENTIAL: Child i+1 is never submitted before child i returns
- APPEND-ONLY: Hashes are recorded before confirmation
- NO RETRY: A failed child stops the run
- BOUNDED: Every signer call has a timeout

============================================================
EXECUTION WORKFLOW
============================================================
1. Claim the account's run slot (else EXECUTION_IN_PROGRESS)
2. Validate the request
3. Risk check (KYC sync, tier ceiling, risk level)
4. Open the loan, if one is requested
5. Quote and plan
6. For each child: submit, record hash, await confirmation
7. Store the result, notify, alert on failures

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
import uuid

from collateral_engine.engine import CollateralLoanEngine
from collateral_engine.types import LoanPosition, LoanRejectionCode
from risk_limits.evaluator import RiskLimitEvaluator, format_usd
from risk_limits.types import Account, DenialCode, RiskVerdict, is_valid_address

from .adapters.base import SignerAdapter, SubmitTransactionRequest
from .config import SmartExecutionConfig
from .context import AppContext
from .errors import ReasonCode
from .gateways import QuoteGateway, StaticQuoteGateway, check_quote
from .splitter import OrderSplitter
from .state_machine import ExecutionStateMachine, advance_child
from .types import (
    BasketRequest,
    ChildExecution,
    ChildOrder,
    ChildOrderState,
    ConfirmationTimeout,
    ExecutionPlan,
    ExecutionRecord,
    ExecutionResult,
    ExecutionState,
    GatewayError,
    MarketContext,
    PlanningDefect,
    PolicyDenied,
    SignerError,
    SmartExecutionError,
    SubmissionFailure,
    TOKEN_QUANTUM,
    TradeRequest,
    USD_QUANTUM,
    ValidationError,
)


logger = logging.getLogger(__name__)


AlertCallback = Callable[[str, str, Dict[str, Any]], Awaitable[None]]
CompletionCallback = Callable[[ExecutionResult], Awaitable[None]]

HUNDRED = Decimal("100")
FUND_SHARE_LABEL = "FUND"


def _positive(value: Decimal) -> bool:
    return value.is_finite() and value > 0


# ============================================================
# RUN BOOKKEEPING
# ============================================================

@dataclass
class _Run:
    """Mutable bookkeeping of one execution run."""

    execution_id: str
    account_id: str
    request_id: str
    record: ExecutionRecord
    machine: ExecutionStateMachine
    busy_with: Optional[str] = None
    plans: Tuple[ExecutionPlan, ...] = ()
    fund_share: Optional[ExecutionPlan] = None
    verdict: Optional[RiskVerdict] = None
    loan: Optional[LoanPosition] = None
    current: Optional[ChildExecution] = None
    started: bool = False
    cancel_requested: bool = False
    finished: bool = False
    task: Optional["asyncio.Task[ExecutionResult]"] = None


class ExecutionHandle:
    """
    Handle on a run started with ExecutionSequencer.start().

    Awaiting result() does not tie the run to the caller: cancelling
    the awaiting task leaves the run going.
    """

    def __init__(self, sequencer: "ExecutionSequencer", run: _Run):
        self._sequencer = sequencer
        self._run = run

    def __repr__(self) -> str:
        return f"ExecutionHandle({self.execution_id!r}, state={self.state.value})"

    @property
    def execution_id(self) -> str:
        return self._run.execution_id

    @property
    def account_id(self) -> str:
        return self._run.account_id

    @property
    def record(self) -> ExecutionRecord:
        return self._run.record

    @property
    def state(self) -> ExecutionState:
        return self._run.machine.current_state

    def done(self) -> bool:
        return self._run.task is not None and self._run.task.done()

    def cancel(self) -> bool:
        """Stop scheduling further child orders."""
        return self._sequencer.cancel(self.execution_id)

    async def result(self) -> ExecutionResult:
        return await asyncio.shield(self._run.task)


# ============================================================
# EXECUTION SEQUENCER
# ============================================================

class ExecutionSequencer:
    """
    Execution Sequencer.

    AUTHORITY BOUNDARIES:
    - CAN: Submit child orders, record hashes, stop a run
    - MUST NOT: Change account KYC tier or risk level
    - MUST NOT: Write loan status
    - MUST NOT: Retry a failed child order
    """

    def __init__(
        self,
        context: AppContext,
        signer: SignerAdapter,
        config: Optional[SmartExecutionConfig] = None,
        evaluator: Optional[RiskLimitEvaluator] = None,
        loan_engine: Optional[CollateralLoanEngine] = None,
        splitter: Optional[OrderSplitter] = None,
        quote_gateway: Optional[QuoteGateway] = None,
        on_execution_complete: Optional[CompletionCallback] = None,
        on_alert: Optional[AlertCallback] = None,
    ):
        """
        Initialize the sequencer.

        Args:
            context: Shared application state
            signer: Signer adapter (simulated or relayer)
            config: Master configuration
            evaluator: Risk evaluator (defaults to one on context.warnings)
            loan_engine: Loan engine (defaults to one on context.loans)
            splitter: Order splitter
            quote_gateway: Quote service (defaults to the static book)
            on_execution_complete: Callback for every finished run
            on_alert: Callback for alerts (severity, message, details)
        """
        self._context = context
        self._signer = signer
        self._config = config or SmartExecutionConfig()
        self._evaluator = evaluator or RiskLimitEvaluator(
            self._config.risk,
            warnings=context.warnings,
            clock=context.clock,
        )
        self._loan_engine = loan_engine or CollateralLoanEngine(
            context.loans,
            self._config.loans,
            context.clock,
        )
        self._splitter = splitter or OrderSplitter(self._config.splitter)
        self._quote_gateway = quote_gateway or StaticQuoteGateway()
        self._on_execution_complete = on_execution_complete
        self._on_alert = on_alert

        self._runs: Dict[str, _Run] = {}

        # Statistics
        self._stats = {
            "total": 0,
            "completed": 0,
            "partially_failed": 0,
            "rejected": 0,
        }

    @property
    def context(self) -> AppContext:
        return self._context

    @property
    def signer(self) -> SignerAdapter:
        return self._signer

    # --------------------------------------------------------
    # ENTRY POINTS
    # --------------------------------------------------------

    def start(self, request: TradeRequest) -> ExecutionHandle:
        """
        Start a trade run on its own task.

        Must be called from a running event loop. The account's run
        slot is claimed before this returns.
        """
        run = self._open_run(request.account_id, request.request_id)
        return self._launch(run, self._run_trade(run, request))

    def start_basket(self, request: BasketRequest) -> ExecutionHandle:
        """Start a basket run on its own task."""
        run = self._open_run(request.account_id, request.request_id)
        return self._launch(run, self._run_basket(run, request))

    async def execute(self, request: TradeRequest) -> ExecutionResult:
        """Run a trade to completion."""
        return await self._await_handle(self.start(request))

    async def execute_basket(self, request: BasketRequest) -> ExecutionResult:
        """Run a basket to completion: one plan per allocation, one record."""
        return await self._await_handle(self.start_basket(request))

    def cancel(self, execution_id: str) -> bool:
        """
        Request cancellation of a run.

        Submitted transactions are not recalled; the run stops
        scheduling child orders.

        Returns:
            True if the run was still going
        """
        run = self._runs.get(execution_id)
        if run is None or run.finished:
            return False

        run.cancel_requested = True
        if run.started and run.task is not None and not run.task.done():
            run.task.cancel()
        logger.warning(f"Cancellation requested for execution {execution_id}")
        return True

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    def get_record(self, execution_id: str) -> Optional[ExecutionRecord]:
        run = self._runs.get(execution_id)
        return run.record if run else self._context.history.get(execution_id)

    def get_result(self, execution_id: str) -> Optional[ExecutionResult]:
        return self._context.history.result(execution_id)

    def get_state(self, execution_id: str) -> Optional[ExecutionState]:
        run = self._runs.get(execution_id)
        return run.machine.current_state if run else None

    def get_active_execution(self, account_id: str) -> Optional[str]:
        return self._context.active_run(account_id)

    def get_statistics(self) -> Dict[str, int]:
        return dict(self._stats)

    # --------------------------------------------------------
    # RUN SETUP
    # --------------------------------------------------------

    def _open_run(self, account_id: str, request_id: str) -> _Run:
        execution_id = str(uuid.uuid4())
        machine = ExecutionStateMachine(
            execution_id,
            account_id,
            listeners=[self._context.notify],
            clock=self._context.clock,
        )
        record = ExecutionRecord(execution_id, account_id, self._now())
        run = _Run(
            execution_id=execution_id,
            account_id=account_id,
            request_id=request_id,
            record=record,
            machine=machine,
        )
        run.busy_with = self._context.reserve_run(account_id, execution_id)
        self._runs[execution_id] = run
        self._context.history.open(record)
        return run

    def _launch(self, run: _Run, coro: Awaitable[ExecutionResult]) -> ExecutionHandle:
        run.task = asyncio.get_running_loop().create_task(coro)
        run.task.add_done_callback(
            lambda _: self._context.release_run(run.account_id, run.execution_id)
        )
        return ExecutionHandle(self, run)

    async def _await_handle(self, handle: ExecutionHandle) -> ExecutionResult:
        try:
            return await handle.result()
        except asyncio.CancelledError:
            handle.cancel()
            raise

    # --------------------------------------------------------
    # TRADE RUN
    # --------------------------------------------------------

    async def _run_trade(self, run: _Run, request: TradeRequest) -> ExecutionResult:
        run.started = True

        async def prepare(account: Account) -> List[ExecutionPlan]:
            self._validate_trade(request)
            recipient = request.recipient or account.wallet_address
            self._log(
                run,
                f"Validated request: {format_usd(request.notional_usd)} of "
                f"{request.token_address}",
            )

            await self._check_risk(run, account, request.notional_usd)

            if request.loan is not None:
                self._open_loan(run, account, request)

            run.machine.mark_planning()
            plan = await self._plan(
                run,
                request.notional_usd,
                request.token_address,
                recipient,
            )
            return [plan]

        return await self._drive(run, prepare)

    # --------------------------------------------------------
    # BASKET RUN
    # --------------------------------------------------------

    async def _run_basket(self, run: _Run, request: BasketRequest) -> ExecutionResult:
        run.started = True

        async def prepare(account: Account) -> List[ExecutionPlan]:
            amounts = self._validate_basket(request)
            recipient = request.recipient or account.wallet_address
            self._log(
                run,
                f"Validated basket: {format_usd(request.total_usd)} across "
                f"{len(amounts)} allocations",
            )

            await self._check_risk(run, account, request.total_usd)

            run.machine.mark_planning()
            plans = []
            for allocation, amount, token_address in amounts:
                plans.append(await self._plan(
                    run,
                    amount,
                    token_address,
                    recipient,
                    label=allocation.symbol,
                ))

            if request.fund_token_address:
                run.fund_share = self._fund_share_plan(request, recipient)
                shares = run.fund_share.children[0].token_amount
                self._log(
                    run,
                    f"Fund shares: {shares} of {request.fund_token_address} "
                    f"minted after the allocations",
                )
            return plans

        return await self._drive(run, prepare)

    # --------------------------------------------------------
    # DRIVER
    # --------------------------------------------------------

    async def _drive(
        self,
        run: _Run,
        prepare: Callable[[Account], Awaitable[List[ExecutionPlan]]],
    ) -> ExecutionResult:
        """Common lifecycle: gate, plan, submit, finish."""
        if run.busy_with is not None:
            return await self._finish(
                run,
                ExecutionState.REJECTED,
                ReasonCode.EXECUTION_IN_PROGRESS,
                f"Execution {run.busy_with} already in progress for account {run.account_id}",
            )

        try:
            if run.cancel_requested:
                raise asyncio.CancelledError()

            run.machine.mark_validating()
            account = self._context.accounts.get(run.account_id)
            if account is None:
                raise ValidationError(
                    f"Unknown account {run.account_id}",
                    code=ReasonCode.UNKNOWN_ACCOUNT,
                )

            try:
                plans = await prepare(account)
            except PlanningDefect as e:
                await self._send_alert(
                    "CRITICAL",
                    "Order splitter produced an invalid plan",
                    {"execution_id": run.execution_id, "error": str(e)},
                )
                raise

            run.plans = tuple(plans)
            return await self._submit_all(run)

        except SmartExecutionError as e:
            return await self._finish(run, ExecutionState.REJECTED, e.code, str(e))

        except asyncio.CancelledError:
            asyncio.current_task().uncancel()
            return await self._cancelled(run)

        except Exception as e:
            logger.exception(f"Execution {run.execution_id} aborted by internal error")
            self._log(run, f"Aborted: internal error {type(e).__name__}: {e}")
            if not run.finished and not run.machine.is_terminal():
                await self._aborted(run, e)
            raise

    # --------------------------------------------------------
    # VALIDATION & GATING
    # --------------------------------------------------------

    def _validate_trade(self, request: TradeRequest) -> None:
        if not _positive(request.notional_usd):
            raise ValidationError(
                f"Notional must be positive, got {request.notional_usd}",
                code=ReasonCode.INVALID_NOTIONAL,
            )
        if not is_valid_address(request.token_address):
            raise ValidationError(
                f"Missing or malformed token address: {request.token_address!r}",
                code=ReasonCode.MISSING_TOKEN_ADDRESS,
            )
        self._validate_recipient(request.recipient)

    def _validate_recipient(self, recipient: Optional[str]) -> None:
        if recipient is not None and not is_valid_address(recipient):
            raise ValidationError(
                f"Malformed recipient address: {recipient!r}",
                code=ReasonCode.INVALID_RECIPIENT,
            )

    def _validate_basket(self, request: BasketRequest):
        """
        Validate a basket and split its total across allocations.

        Returns:
            List of (allocation, usd_amount, token_address)
        """
        if not _positive(request.total_usd):
            raise ValidationError(
                f"Basket total must be positive, got {request.total_usd}",
                code=ReasonCode.INVALID_NOTIONAL,
            )
        if not request.allocations:
            raise ValidationError(
                "Basket has no allocations",
                code=ReasonCode.INVALID_ALLOCATIONS,
            )
        if not all(_positive(a.percent) for a in request.allocations):
            raise ValidationError(
                "Basket percentages must be positive",
                code=ReasonCode.INVALID_ALLOCATIONS,
            )
        total_percent = sum((a.percent for a in request.allocations), Decimal("0"))
        if total_percent != HUNDRED:
            raise ValidationError(
                f"Basket percentages sum to {total_percent}, expected 100",
                code=ReasonCode.INVALID_ALLOCATIONS,
            )
        self._validate_recipient(request.recipient)
        if request.fund_token_address is not None and not is_valid_address(
            request.fund_token_address
        ):
            raise ValidationError(
                f"Malformed fund token address: {request.fund_token_address!r}",
                code=ReasonCode.MISSING_TOKEN_ADDRESS,
            )

        amounts = []
        allocated = Decimal("0")
        last = len(request.allocations) - 1
        for position, allocation in enumerate(request.allocations):
            token_address = allocation.token_address or request.default_token_address
            if not is_valid_address(token_address):
                raise ValidationError(
                    f"Missing or malformed token address for {allocation.symbol}",
                    code=ReasonCode.MISSING_TOKEN_ADDRESS,
                )

            if position == last:
                amount = request.total_usd - allocated
            else:
                amount = (request.total_usd * allocation.percent / HUNDRED).quantize(
                    USD_QUANTUM, rounding=ROUND_DOWN,
                )
            if amount <= 0:
                raise ValidationError(
                    f"Allocation {allocation.symbol} rounds to {amount}",
                    code=ReasonCode.INVALID_ALLOCATIONS,
                )
            allocated += amount
            amounts.append((allocation, amount, token_address))

        return amounts

    async def _check_risk(self, run: _Run, account: Account, notional: Decimal) -> None:
        activity = self._context.history.activity_for(account, self._now())
        verdict = await self._evaluator.check(account, notional, activity)
        run.verdict = verdict

        if not verdict.allow:
            code = (
                ReasonCode.INVALID_NOTIONAL
                if verdict.reason_code == DenialCode.INVALID_NOTIONAL
                else ReasonCode.TIER_LIMIT_EXCEEDED
            )
            raise PolicyDenied(verdict.reasons[0], code=code)

        self._log(run, f"Risk check passed ({verdict.risk_level.value} risk)")

    def _open_loan(self, run: _Run, account: Account, request: TradeRequest) -> None:
        loan = request.loan
        decision = self._loan_engine.open_loan(
            account,
            loan.principal_usd,
            loan.collateral,
            loan.prices,
            loan.ltv_ceiling,
        )
        if not decision.approved:
            code = (
                ReasonCode.EXCEEDS_LTV
                if decision.reason_code == LoanRejectionCode.EXCEEDS_LTV
                else ReasonCode.LOAN_REJECTED
            )
            raise PolicyDenied(decision.message, code=code)

        run.loan = decision.position
        self._log(
            run,
            f"Loan {decision.position.loan_id} opened: "
            f"{format_usd(decision.position.principal_usd)} at LTV "
            f"{decision.position.ltv_at_origination}",
        )

    async def _plan(
        self,
        run: _Run,
        notional: Decimal,
        token_address: str,
        recipient: Optional[str],
        label: str = "",
    ) -> ExecutionPlan:
        market = await self._market_context(notional)
        plan = self._splitter.plan(
            notional,
            market,
            token_address=token_address,
            recipient=recipient,
            label=label,
        )
        plan.validate()

        prefix = f"{label}: " if label else ""
        if plan.split:
            self._log(
                run,
                f"{prefix}Smart route: {format_usd(notional)} split into "
                f"{len(plan.children)} child orders "
                f"(max impact {plan.estimated_max_impact_bps} bps)",
            )
        else:
            self._log(run, f"{prefix}Instant route: single settlement for {format_usd(notional)}")
        return plan

    async def _market_context(self, notional: Decimal) -> MarketContext:
        if not self._config.sequencer.require_quote:
            return MarketContext()
        try:
            quote = check_quote(await self._quote_gateway.quote(notional))
        except GatewayError as e:
            raise GatewayError(f"Quote unavailable: {e}", code=ReasonCode.QUOTE_UNAVAILABLE) from e
        except Exception as e:
            raise GatewayError(
                f"Quote unavailable: {type(e).__name__}: {e}",
                code=ReasonCode.QUOTE_UNAVAILABLE,
            ) from e
        return MarketContext.from_quote(quote)

    def _fund_share_plan(self, request: BasketRequest, recipient: Optional[str]) -> ExecutionPlan:
        """One mint of total_usd / 100 fund shares, submitted after the allocations."""
        shares = (request.total_usd / HUNDRED).quantize(TOKEN_QUANTUM, rounding=ROUND_DOWN)
        order = ChildOrder(
            index=0,
            usd_amount=Decimal("0"),
            token_amount=shares,
            token_address=request.fund_token_address,
            recipient=recipient,
            delay_seconds=self._config.splitter.child_interval_seconds,
            label=FUND_SHARE_LABEL,
        )
        return ExecutionPlan(
            notional_usd=Decimal("0"),
            token_address=request.fund_token_address,
            children=(order,),
            label=FUND_SHARE_LABEL,
        )

    # --------------------------------------------------------
    # SUBMISSION LOOP
    # --------------------------------------------------------

    async def _submit_all(self, run: _Run) -> ExecutionResult:
        plans = run.plans + ((run.fund_share,) if run.fund_share else ())
        total = sum(len(p.children) for p in plans)

        for plan in plans:
            for order in plan.children:
                if order.delay_seconds > 0:
                    await asyncio.sleep(order.delay_seconds)

                child = run.record.track(plan, order)
                run.current = child
                try:
                    await self._submit_child(run, child, total)
                except (SubmissionFailure, ConfirmationTimeout) as e:
                    self._fail_child(run, child, e.code, str(e))
                    return await self._finish(
                        run,
                        ExecutionState.PARTIALLY_FAILED,
                        e.code,
                        f"Child order {child.sequence + 1}/{total} failed: {e}",
                    )
                run.current = None

        run.machine.mark_completed()
        return await self._finish(
            run,
            ExecutionState.COMPLETED,
            None,
            f"{total}/{total} child orders confirmed",
        )

    async def _submit_child(self, run: _Run, child: ChildExecution, total: int) -> None:
        seq = child.sequence
        order = child.order
        name = f"Child {seq + 1}/{total}"
        route = f" via {order.route}" if order.route else ""
        label = f" {order.label}" if order.label else ""

        run.machine.mark_submitting(seq)
        self._log(
            run,
            f"{name}: sending {format_usd(order.usd_amount)}{label} "
            f"({order.token_amount} tokens){route}",
            seq,
        )

        sequencer_config = self._config.sequencer
        request = SubmitTransactionRequest.from_child(
            order,
            reference=f"{run.execution_id}:{seq}",
        )

        try:
            response = await asyncio.wait_for(
                self._signer.submit(request),
                sequencer_config.submission_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise SubmissionFailure(
                f"Signer did not answer within {sequencer_config.submission_timeout_seconds}s",
                code=ReasonCode.SUBMISSION_TIMEOUT,
            )
        except SignerError as e:
            raise SubmissionFailure(f"Signer error: {e}", code=ReasonCode.SIGNER_ERROR) from e
        except Exception as e:
            raise SubmissionFailure(
                f"Signer error: {type(e).__name__}: {e}",
                code=ReasonCode.SIGNER_ERROR,
            ) from e

        if not response.success or not response.tx_hash:
            raise SubmissionFailure(
                f"Signer rejected the transaction: {response.error_message or response.error_code}",
                code=ReasonCode.SUBMISSION_REJECTED,
            )

        # Recorded before confirmation
        child.tx_hash = response.tx_hash
        child.submitted_at = self._now()
        advance_child(child, ChildOrderState.SUBMITTED)
        run.record.add_tx_hash(response.tx_hash)
        self._log(run, f"{name} submitted: {response.tx_hash}", seq)

        run.machine.mark_confirming(seq)
        timeout = sequencer_config.confirmation_timeout_seconds
        try:
            confirmation = await asyncio.wait_for(
                self._signer.wait_for_confirmation(response.tx_hash, timeout),
                timeout,
            )
        except (asyncio.TimeoutError, ConfirmationTimeout):
            raise ConfirmationTimeout(
                f"{response.tx_hash} not confirmed within {timeout}s",
                code=ReasonCode.CONFIRMATION_TIMEOUT,
            )
        except SignerError as e:
            raise SubmissionFailure(
                f"Signer error while confirming: {e}",
                code=ReasonCode.SIGNER_ERROR,
            ) from e
        except Exception as e:
            raise SubmissionFailure(
                f"Signer error while confirming: {type(e).__name__}: {e}",
                code=ReasonCode.SIGNER_ERROR,
            ) from e

        if not confirmation.confirmed:
            raise SubmissionFailure(
                f"{response.tx_hash} failed on-chain: {confirmation.error_message or 'reverted'}",
                code=ReasonCode.CONFIRMATION_FAILED,
            )

        advance_child(child, ChildOrderState.CONFIRMED)
        run.record.mark_confirmed(child, self._now())
        block = f" in block {confirmation.block_number}" if confirmation.block_number else ""
        self._log(run, f"{name} confirmed{block}", seq)

    def _fail_child(
        self,
        run: _Run,
        child: ChildExecution,
        code: Optional[ReasonCode],
        message: str,
    ) -> None:
        if not child.state.is_terminal():
            advance_child(child, ChildOrderState.FAILED)
        child.error_code = code
        child.error = message
        run.current = None
        self._log(run, f"Child {child.sequence + 1} failed: {message}", child.sequence)

    # --------------------------------------------------------
    # TERMINATION
    # --------------------------------------------------------

    async def _cancelled(self, run: _Run) -> ExecutionResult:
        if run.current is not None:
            self._fail_child(
                run,
                run.current,
                ReasonCode.CANCELLED,
                "Cancelled; a submitted transaction may still confirm",
            )

        status = (
            ExecutionState.PARTIALLY_FAILED
            if run.machine.has_submitted()
            else ExecutionState.REJECTED
        )
        await self._send_alert(
            "WARNING",
            "Execution cancelled",
            {"execution_id": run.execution_id, "submitted": len(run.record.tx_hashes)},
        )
        return await self._finish(run, status, ReasonCode.CANCELLED, "Cancelled by caller")

    async def _aborted(self, run: _Run, error: Exception) -> ExecutionResult:
        reason = f"Internal error {type(error).__name__}: {error}"
        if run.current is not None:
            self._fail_child(run, run.current, ReasonCode.INTERNAL_ERROR, reason)

        status = (
            ExecutionState.PARTIALLY_FAILED
            if run.machine.has_submitted()
            else ExecutionState.REJECTED
        )
        await self._send_alert(
            "CRITICAL",
            "Execution aborted by internal error",
            {
                "execution_id": run.execution_id,
                "error": reason,
                "tx_hashes": list(run.record.tx_hashes),
            },
        )
        return await self._finish(run, status, ReasonCode.INTERNAL_ERROR, reason)

    async def _finish(
        self,
        run: _Run,
        status: ExecutionState,
        code: Optional[ReasonCode],
        reason: str,
    ) -> ExecutionResult:
        if status == ExecutionState.REJECTED:
            run.machine.mark_rejected(reason, code.value if code else None)
            self._log(run, f"Rejected: {reason}")
        elif status == ExecutionState.PARTIALLY_FAILED:
            run.machine.mark_partially_failed(reason, code.value if code else None)
            self._log(
                run,
                f"Partially failed: {len(run.record.tx_hashes)} submitted, "
                f"{format_usd(run.record.confirmed_usd)} confirmed. {reason}",
            )
        else:
            self._log(run, f"Completed: {reason}, {format_usd(run.record.confirmed_usd)}")

        run.finished = True

        result = ExecutionResult(
            execution_id=run.execution_id,
            account_id=run.account_id,
            status=status,
            record=run.record,
            reason_code=code,
            reason=reason,
            plans=run.plans,
            verdict=run.verdict,
            loan=run.loan,
            request_id=run.request_id,
            completed_at=self._now(),
            fund_token_tx=self._fund_token_tx(run),
        )

        self._context.history.close(result)
        self._context.release_run(run.account_id, run.execution_id)

        self._stats["total"] += 1
        if status == ExecutionState.COMPLETED:
            self._stats["completed"] += 1
        elif status == ExecutionState.PARTIALLY_FAILED:
            self._stats["partially_failed"] += 1
        else:
            self._stats["rejected"] += 1

        if (
            status == ExecutionState.PARTIALLY_FAILED
            and code != ReasonCode.CANCELLED
            and self._config.sequencer.alert_on_partial_failure
        ):
            await self._send_alert(
                "ERROR",
                "Execution partially failed",
                {
                    "execution_id": run.execution_id,
                    "reason_code": code.value if code else None,
                    "tx_hashes": list(run.record.tx_hashes),
                },
            )

        if self._on_execution_complete:
            try:
                await self._on_execution_complete(result)
            except Exception as e:
                logger.error(f"Execution complete callback failed: {e}")

        return result

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    def _now(self):
        return self._context.clock.now()

    @staticmethod
    def _fund_token_tx(run: _Run) -> Optional[str]:
        if run.fund_share is None:
            return None
        for child in run.record.children:
            if child.plan_id == run.fund_share.plan_id and child.state == ChildOrderState.CONFIRMED:
                return child.tx_hash
        return None

    def _log(self, run: _Run, message: str, child_index: Optional[int] = None) -> None:
        run.record.log(message, at=self._now(), child_index=child_index)

    async def _send_alert(
        self,
        severity: str,
        message: str,
        details: Dict[str, Any],
    ) -> None:
        """Send an alert."""
        if self._on_alert:
            try:
                await self._on_alert(severity, message, details)
            except Exception as e:
                logger.error(f"Failed to send alert: {e}")

        # Always log
        log_func = {
            "CRITICAL": logger.critical,
            "ERROR": logger.error,
            "WARNING": logger.warning,
            "INFO": logger.info,
        }.get(severity, logger.info)

        log_func(f"ALERT [{severity}]: {message} - {details}")
