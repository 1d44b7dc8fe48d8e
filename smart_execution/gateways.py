"""
Smart Execution - Quote/Routing Gateway.

============================================================
PURPOSE
============================================================
Fetches a price quote and liquidity sources that seed the
order splitter's market context.

GATEWAYS:
- StaticQuoteGateway: fixed four-venue book, deterministic
- HttpQuoteGateway: POST {base_url}/api/quote {"amountUsd": N}
  returning {"amountUsd": N, "sources": [{"name",
  "priceMultiplier", "availableUsd"}], "priceUsd": P}

Any failure surfaces as GatewayError; there is no fallback
quote.

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence

import aiohttp

from .config import GatewayConfig
from .errors import ReasonCode
from .types import GatewayError, LiquiditySource, Quote


logger = logging.getLogger(__name__)


DEFAULT_SOURCES = (
    LiquiditySource("CEX-Quote", Decimal("1.0002"), Decimal("1000000")),
    LiquiditySource("Curve", Decimal("1.0004"), Decimal("200000")),
    LiquiditySource("Uniswap", Decimal("1.0006"), Decimal("500000")),
    LiquiditySource("SushiSwap", Decimal("1.0010"), Decimal("300000")),
)


def check_quote(quote: Quote) -> Quote:
    """
    Reject quotes the splitter cannot plan against.

    Raises:
        GatewayError: On missing sources or non-positive prices
    """
    if not quote.sources:
        raise GatewayError("Quote has no liquidity sources")
    if not quote.price_usd.is_finite() or quote.price_usd <= 0:
        raise GatewayError(f"Quote has non-positive token price {quote.price_usd}")
    for source in quote.sources:
        if not source.price_multiplier.is_finite() or source.price_multiplier <= 0:
            raise GatewayError(
                f"Source {source.name} has non-positive price multiplier "
                f"{source.price_multiplier}"
            )
        if not source.available_usd.is_finite() or source.available_usd < 0:
            raise GatewayError(
                f"Source {source.name} has invalid liquidity {source.available_usd}"
            )
    return quote


class QuoteGateway(ABC):
    """External quote/routing service."""

    @abstractmethod
    async def quote(self, amount_usd: Decimal) -> Quote:
        """
        Quote a USD amount.

        Raises:
            GatewayError: If no quote can be obtained
        """
        pass

    async def close(self) -> None:
        pass


class StaticQuoteGateway(QuoteGateway):
    """Deterministic in-memory quote book."""

    def __init__(
        self,
        sources: Sequence[LiquiditySource] = DEFAULT_SOURCES,
        price_usd: Decimal = Decimal("1"),
    ):
        self._sources = tuple(sources)
        self._price_usd = Decimal(price_usd)
        self._unavailable: Optional[str] = None
        self.requests = 0

    def set_unavailable(self, reason: Optional[str] = "Quote service unavailable") -> None:
        """Make subsequent quotes fail (None restores service)."""
        self._unavailable = reason

    async def quote(self, amount_usd: Decimal) -> Quote:
        self.requests += 1
        if self._unavailable:
            raise GatewayError(self._unavailable, code=ReasonCode.QUOTE_UNAVAILABLE)
        return check_quote(Quote(
            amount_usd=Decimal(amount_usd),
            sources=self._sources,
            price_usd=self._price_usd,
        ))


class HttpQuoteGateway(QuoteGateway):
    """Quote gateway calling the backend's /api/quote endpoint."""

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._config = config or GatewayConfig()
        self._base_url = self._config.base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def quote(self, amount_usd: Decimal) -> Quote:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.timeout_seconds),
            )

        url = f"{self._base_url}/api/quote"
        try:
            async with self._session.post(url, json={"amountUsd": str(amount_usd)}) as response:
                if response.status != 200:
                    body = await response.text()
                    raise GatewayError(f"Quote request failed {response.status}: {body}")
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise GatewayError(f"Quote request failed: {e}") from e

        if not isinstance(data, dict):
            raise GatewayError(f"Malformed quote response: {data!r}")

        try:
            sources = tuple(
                LiquiditySource(
                    name=str(s["name"]),
                    price_multiplier=Decimal(str(s["priceMultiplier"])),
                    available_usd=Decimal(str(s["availableUsd"])),
                )
                for s in data.get("sources", [])
            )
            price = Decimal(str(data.get("priceUsd", "1")))
        except (KeyError, TypeError, AttributeError, InvalidOperation) as e:
            raise GatewayError(f"Malformed quote response: {data!r}") from e

        quote = check_quote(Quote(amount_usd=Decimal(amount_usd), sources=sources, price_usd=price))
        logger.debug(f"Quoted ${amount_usd} across {len(sources)} sources")
        return quote
