"""
Smart Execution - Order Splitter.

============================================================
PURPOSE
============================================================
Turns a USD notional into an ordered ExecutionPlan.

    plan(notional, market_context) -> ExecutionPlan

============================================================
ALGORITHM
============================================================
1. notional < small_order_threshold
   One child order for the full notional.

2. notional >= small_order_threshold
   impact_bps(usd) = usd / depth * 10_000 * impact_coefficient
   max_child_usd   = largest usd keeping impact_bps <= budget
   N = max(min_children_when_split, ceil(notional / max_child_usd))
   capped at max_child_orders.

3. Sizes are notional / N rounded down to the cent; the
   rounding remainder goes to the final child so the sum is
   exact.

4. Children are routed round-robin over the liquidity
   sources, best price multiplier first.

============================================================
DESIGN PRINCIPLES
============================================================
- Deterministic: no randomness, no clock reads
- Never emits a non-positive child
- Plans are frozen once returned

============================================================
"""

import logging
from decimal import ROUND_CEILING, ROUND_DOWN, Decimal
from typing import List, Optional

from .config import SplitterConfig
from .errors import ReasonCode
from .types import (
    ChildOrder,
    ExecutionPlan,
    MarketContext,
    PlanningDefect,
    TOKEN_QUANTUM,
    USD_QUANTUM,
)


logger = logging.getLogger(__name__)


BPS = Decimal("10000")
IMPACT_QUANTUM = Decimal("0.01")


def _positive(value: Decimal) -> bool:
    return value.is_finite() and value > 0


class OrderSplitter:
    """
    Order Splitter.

    Usage:
        splitter = OrderSplitter(SplitterConfig())
        plan = splitter.plan(Decimal("10000"), market, token_address="0x...")
    """

    def __init__(self, config: Optional[SplitterConfig] = None):
        self._config = config or SplitterConfig()

    @property
    def config(self) -> SplitterConfig:
        return self._config

    # --------------------------------------------------------
    # IMPACT MODEL
    # --------------------------------------------------------

    def impact_bps(self, usd: Decimal, depth_usd: Decimal) -> Decimal:
        """Estimated market impact of a single order."""
        if depth_usd <= 0:
            return BPS
        return usd / depth_usd * BPS * self._config.impact_coefficient

    def max_child_usd(self, depth_usd: Decimal) -> Optional[Decimal]:
        """Largest child keeping impact under the budget; None if unbounded."""
        coefficient = self._config.impact_coefficient
        if coefficient <= 0:
            return None
        if depth_usd <= 0:
            return USD_QUANTUM
        return self._config.slippage_budget_bps * depth_usd / (BPS * coefficient)

    def child_count(self, notional: Decimal, market: MarketContext) -> int:
        """Number of child orders for a notional."""
        config = self._config
        if notional < config.small_order_threshold_usd:
            return 1

        count = config.min_children_when_split
        max_child = self.max_child_usd(market.depth_usd)
        if max_child is not None and max_child > 0:
            needed = int((notional / max_child).to_integral_value(rounding=ROUND_CEILING))
            count = max(count, needed)

        count = min(count, config.max_child_orders)

        # Every child must carry at least one cent
        cents = int((notional / USD_QUANTUM).to_integral_value(rounding=ROUND_DOWN))
        return max(1, min(count, cents))

    # --------------------------------------------------------
    # PLAN
    # --------------------------------------------------------

    def plan(
        self,
        trade_notional_usd: Decimal,
        market: MarketContext,
        token_address: str = "",
        recipient: Optional[str] = None,
        label: str = "",
    ) -> ExecutionPlan:
        """
        Build the execution plan for a notional.

        Raises:
            PlanningDefect: If inputs cannot yield a valid plan
        """
        notional = Decimal(trade_notional_usd)
        if not _positive(notional):
            raise PlanningDefect(
                f"Cannot plan a non-positive notional {notional}",
                code=ReasonCode.INVALID_PLAN,
            )
        if not _positive(market.price_usd):
            raise PlanningDefect(
                f"Cannot plan against non-positive price {market.price_usd}",
                code=ReasonCode.INVALID_PLAN,
            )
        if not market.depth_usd.is_finite():
            raise PlanningDefect(
                f"Cannot plan against market depth {market.depth_usd}",
                code=ReasonCode.INVALID_PLAN,
            )
        for source in market.sources:
            if not _positive(source.price_multiplier):
                raise PlanningDefect(
                    f"Source {source.name} has non-positive price multiplier "
                    f"{source.price_multiplier}",
                    code=ReasonCode.INVALID_PLAN,
                )

        count = self.child_count(notional, market)
        sizes = self._sizes(notional, count)
        sources = market.ranked_sources()
        interval = self._config.child_interval_seconds

        children: List[ChildOrder] = []
        for index, usd in enumerate(sizes):
            source = sources[index % len(sources)] if sources else None
            multiplier = source.price_multiplier if source else Decimal("1")
            token_amount = (usd / (market.price_usd * multiplier)).quantize(
                TOKEN_QUANTUM, rounding=ROUND_DOWN,
            )
            children.append(ChildOrder(
                index=index,
                usd_amount=usd,
                token_amount=token_amount,
                token_address=token_address,
                recipient=recipient,
                route=source.name if source else None,
                delay_seconds=interval if index > 0 else 0.0,
                label=label,
            ))

        largest = max(sizes)
        plan = ExecutionPlan(
            notional_usd=notional,
            token_address=token_address,
            children=tuple(children),
            split=count > 1,
            estimated_max_impact_bps=self.impact_bps(largest, market.depth_usd).quantize(
                IMPACT_QUANTUM,
            ),
            label=label,
        )

        logger.debug(
            f"Planned ${notional:,.2f} as {count} child order(s), "
            f"max impact {plan.estimated_max_impact_bps} bps"
        )
        return plan

    @staticmethod
    def _sizes(notional: Decimal, count: int) -> List[Decimal]:
        base = (notional / count).quantize(USD_QUANTUM, rounding=ROUND_DOWN)
        sizes = [base] * (count - 1)
        sizes.append(notional - base * (count - 1))
        return sizes
