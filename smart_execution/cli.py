"""
Smart Execution - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for practice-mode executions.

- Simulated signer, static quote book, in-memory state
- Prints the execution log and transaction hashes
- Exit code 0 only when the run completed

============================================================
USAGE
============================================================
python -m smart_execution.cli execute --token 0x... --amount 10000
python -m smart_execution.cli execute --token 0x... --amount 10000 --fail-at 3
python -m smart_execution.cli basket --token 0x... --total 1000 \\
    --allocation BTC:60 --allocation ETH:40
python -m smart_execution.cli basket --token 0x... --total 1000 \\
    --allocation BTC:60 --allocation ETH:40 --fund-token 0x...

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from core.clock import SystemClock
from risk_limits.types import Account, KycTier, SessionInfo

from .adapters.simulated import SimulatedSigner, SimulatedSignerConfig
from .config import SmartExecutionConfig
from .context import AppContext
from .sequencer import ExecutionSequencer
from .types import BasketAllocation, BasketRequest, ExecutionResult, TradeRequest


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="smart-execution",
        description="Risk-gated smart execution (practice mode)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  execute   - Execute one trade
  basket    - Execute a basket of allocations

Examples:
  %(prog)s execute --token 0x... --amount 10000
  %(prog)s basket --token 0x... --total 1000 --allocation BTC:60 --allocation ETH:40
        """,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    execute = subparsers.add_parser("execute", help="Execute one trade")
    execute.add_argument("--amount", required=True, help="USD notional")
    _add_common_arguments(execute)

    basket = subparsers.add_parser("basket", help="Execute a basket")
    basket.add_argument("--total", required=True, help="Basket USD total")
    basket.add_argument(
        "--allocation",
        action="append",
        default=[],
        metavar="SYMBOL:PERCENT",
        help="Allocation, repeatable (percentages must sum to 100)",
    )
    basket.add_argument(
        "--fund-token",
        default=None,
        help="Fund-share token minted (total / 100 shares) after the allocations",
    )
    _add_common_arguments(basket)

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--account", default="practice", help="Account id")
    parser.add_argument("--token", required=True, help="Token contract address")
    parser.add_argument("--recipient", default=None, help="Fixed recipient address")
    parser.add_argument(
        "--kyc-tier",
        type=int,
        choices=[int(t) for t in KycTier],
        default=int(KycTier.INSTITUTIONAL),
        help="KYC tier of the practice account (default: 3)",
    )
    parser.add_argument(
        "--fail-at",
        type=int,
        default=None,
        metavar="K",
        help="Make the K-th child submission fail (1-based)",
    )
    parser.add_argument(
        "--threshold",
        default=None,
        help="Small-order threshold in USD (default: INSTITUTIONAL_THRESHOLD or 5000)",
    )
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    logging_group = parser.add_argument_group("Logging Options")
    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )


def parse_allocation(value: str) -> Tuple[str, Decimal]:
    """Parse SYMBOL:PERCENT."""
    symbol, sep, percent = value.partition(":")
    if not sep or not symbol:
        raise ValueError(f"Allocation must be SYMBOL:PERCENT, got {value!r}")
    try:
        parsed = Decimal(percent)
    except InvalidOperation:
        raise ValueError(f"Invalid percent in allocation {value!r}")
    if not parsed.is_finite():
        raise ValueError(f"Invalid percent in allocation {value!r}")
    return symbol.strip(), parsed


def validate_args(args: argparse.Namespace) -> List[str]:
    """Validate arguments, returning error messages."""
    errors = []

    for name in ("amount", "total", "threshold"):
        value = getattr(args, name, None)
        if value is None:
            continue
        try:
            parsed = Decimal(value)
        except InvalidOperation:
            errors.append(f"--{name} must be a number, got {value!r}")
            continue
        if not parsed.is_finite():
            errors.append(f"--{name} must be a finite number, got {value!r}")

    if args.command == "basket":
        if not args.allocation:
            errors.append("basket requires at least one --allocation")
        for value in args.allocation:
            try:
                parse_allocation(value)
            except ValueError as e:
                errors.append(str(e))

    if args.fail_at is not None and args.fail_at < 1:
        errors.append("--fail-at must be 1 or more")

    return errors


# ============================================================
# PRACTICE WIRING
# ============================================================

def build_sequencer(args: argparse.Namespace) -> ExecutionSequencer:
    """Wire a practice-mode sequencer around a fresh context."""
    config = SmartExecutionConfig.from_env()
    if args.threshold is not None:
        config.splitter.small_order_threshold_usd = Decimal(args.threshold)

    clock = SystemClock()
    context = AppContext(clock=clock)
    now = clock.now()
    context.accounts.add(Account(
        account_id=args.account,
        kyc_tier=KycTier(args.kyc_tier),
        session=SessionInfo(started_at=now, last_seen_at=now),
    ))

    failures = {args.fail_at - 1} if args.fail_at else set()
    signer = SimulatedSigner(SimulatedSignerConfig(fail_submission_at=failures))

    return ExecutionSequencer(context, signer, config=config)


def print_result(result: ExecutionResult) -> None:
    """Print a run's log and hashes."""
    print()
    print("=" * 60)
    print(f"  Execution:  {result.execution_id}")
    print(f"  Status:     {result.status.value}")
    if result.reason_code:
        print(f"  Reason:     {result.reason_code.value} - {result.reason}")
    print(f"  Confirmed:  ${result.confirmed_usd:,.2f} of ${result.planned_usd:,.2f}")
    print("=" * 60)
    for step in result.record.steps:
        print(f"  {step.timestamp:%H:%M:%S}  {step.message}")
    if result.tx_hashes:
        print("-" * 60)
        for tx_hash in result.tx_hashes:
            print(f"  {tx_hash}")
    print()


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    sequencer = build_sequencer(args)
    await sequencer.signer.connect()

    try:
        if args.command == "basket":
            allocations = [
                BasketAllocation(symbol, percent)
                for symbol, percent in map(parse_allocation, args.allocation)
            ]
            result = await sequencer.execute_basket(BasketRequest(
                account_id=args.account,
                allocations=tuple(allocations),
                total_usd=Decimal(args.total),
                recipient=args.recipient,
                default_token_address=args.token,
                fund_token_address=args.fund_token,
            ))
        else:
            result = await sequencer.execute(TradeRequest(
                account_id=args.account,
                token_address=args.token,
                notional_usd=Decimal(args.amount),
                recipient=args.recipient,
            ))
    finally:
        await sequencer.signer.disconnect()

    if args.json:
        print(json.dumps(result.summary(), indent=2))
    else:
        print_result(result)

    return 0 if result.is_success else 1


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
