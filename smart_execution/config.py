"""
Smart Execution - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the Smart Execution Engine.

CRITICAL CONSTRAINTS:
- No automatic retry of a failed child order
- Every wait is bounded
- Deterministic planning

============================================================
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional
import os

from dotenv import load_dotenv

from collateral_engine.config import LoanPolicyConfig
from risk_limits.config import RiskLimitConfig


SIGNER_MODE_SIMULATED = "simulated"
SIGNER_MODE_RELAYER = "relayer"


# ============================================================
# SPLITTER CONFIGURATION
# ============================================================

@dataclass
class SplitterConfig:
    """
    Order splitter configuration.

    Trades below the threshold are executed as a single child
    order.
    """

    small_order_threshold_usd: Decimal = Decimal("5000")
    """Institutional threshold; at or above it the notional is split."""

    slippage_budget_bps: Decimal = Decimal("10")
    """Maximum estimated market impact per child, in basis points."""

    impact_coefficient: Decimal = Decimal("1")
    """Scales the linear impact model."""

    min_children_when_split: int = 2
    """Lower bound on N once splitting kicks in."""

    max_child_orders: int = 20
    """Upper bound on N."""

    child_interval_seconds: float = 0.0
    """Pacing delay between consecutive child orders."""


# ============================================================
# SEQUENCER CONFIGURATION
# ============================================================

@dataclass
class SequencerConfig:
    """
    Execution sequencer configuration.
    """

    submission_timeout_seconds: float = 30.0
    """Timeout for one signer submission."""

    confirmation_timeout_seconds: float = 120.0
    """Timeout for one confirmation wait."""

    require_quote: bool = True
    """Whether a quote is fetched to seed the market context."""

    alert_on_partial_failure: bool = True
    """Whether partial failures are sent to the alert callback."""


# ============================================================
# GATEWAY CONFIGURATION
# ============================================================

@dataclass
class GatewayConfig:
    """
    Quote/routing and KYC backend configuration.
    """

    base_url: str = "http://localhost:4000"
    """Backend base URL."""

    timeout_seconds: float = 10.0
    """HTTP request timeout."""


# ============================================================
# RELAYER CONFIGURATION
# ============================================================

@dataclass
class RelayerConfig:
    """
    Relayer signer configuration.

    Key custody stays inside the relayer; only an API key is held here.
    """

    base_url: str = "http://localhost:4100"
    """Relayer base URL."""

    api_key: Optional[str] = None
    """Relayer API key (loaded from env)."""

    request_timeout_seconds: float = 10.0
    """HTTP request timeout."""

    poll_interval_seconds: float = 2.0
    """Delay between confirmation polls."""

    default_address: Optional[str] = None
    """Relayer's own address, used when a child has no recipient."""

    fallback_to_transfer: bool = True
    """Retry a rejected mint as a transfer."""


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class SmartExecutionConfig:
    """
    Master configuration for the Smart Execution Engine.
    """

    splitter: SplitterConfig = field(default_factory=SplitterConfig)
    """Splitter configuration."""

    sequencer: SequencerConfig = field(default_factory=SequencerConfig)
    """Sequencer configuration."""

    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    """Backend configuration."""

    relayer: RelayerConfig = field(default_factory=RelayerConfig)
    """Relayer configuration."""

    risk: RiskLimitConfig = field(default_factory=RiskLimitConfig)
    """Risk rule table."""

    loans: LoanPolicyConfig = field(default_factory=LoanPolicyConfig)
    """Loan policy."""

    signer_mode: str = SIGNER_MODE_SIMULATED
    """Signer adapter: simulated or relayer."""

    @classmethod
    def for_testing(cls) -> "SmartExecutionConfig":
        """Get configuration for testing."""
        return cls(
            splitter=SplitterConfig(child_interval_seconds=0.0),
            sequencer=SequencerConfig(
                submission_timeout_seconds=1.0,
                confirmation_timeout_seconds=1.0,
            ),
            relayer=RelayerConfig(poll_interval_seconds=0.01),
            signer_mode=SIGNER_MODE_SIMULATED,
        )

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "SmartExecutionConfig":
        """
        Load configuration from the environment (and .env if present).
        """
        load_dotenv(dotenv_path)

        config = cls()

        threshold = os.getenv("INSTITUTIONAL_THRESHOLD")
        if threshold:
            config.splitter.small_order_threshold_usd = Decimal(threshold)

        backend_url = os.getenv("BACKEND_URL")
        if backend_url:
            config.gateway.base_url = backend_url.rstrip("/")

        relayer_url = os.getenv("RELAYER_URL")
        if relayer_url:
            config.relayer.base_url = relayer_url.rstrip("/")

        config.relayer.api_key = os.getenv("RELAYER_API_KEY") or None
        config.relayer.default_address = os.getenv("RELAYER_ADDRESS") or None

        timeout = os.getenv("CONFIRMATION_TIMEOUT_SECONDS")
        if timeout:
            config.sequencer.confirmation_timeout_seconds = float(timeout)

        config.signer_mode = os.getenv("SIGNER_MODE", SIGNER_MODE_SIMULATED).lower()

        return config
