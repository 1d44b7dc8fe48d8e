"""
Smart Execution Package.

============================================================
PURPOSE
============================================================
Turns fiat-denominated trade intent into a sequence of
risk-gated, auditable on-chain transactions.

CRITICAL PRINCIPLE:
    "Nothing is submitted until the risk verdict allows it."

============================================================
MODULES
============================================================
- types: Requests, plans, records, results, exceptions
- errors: Reason code registry
- config: Configuration
- state_machine: Run lifecycle
- splitter: OrderSplitter
- sequencer: ExecutionSequencer
- adapters: Signer adapters
- gateways: Quote/routing gateway
- history: TransactionHistory
- context: AppContext
- cli: Practice-mode command line

============================================================
"""

# ============================================================
# TYPES
# ============================================================
from .types import (
    ExecutionState,
    ChildOrderState,
    LoanRequest,
    TradeRequest,
    BasketAllocation,
    BasketRequest,
    LiquiditySource,
    Quote,
    MarketContext,
    ChildOrder,
    ExecutionPlan,
    RecordStep,
    ChildExecution,
    ExecutionRecord,
    ExecutionResult,
    SmartExecutionError,
    ValidationError,
    PolicyDenied,
    PlanningDefect,
    SubmissionFailure,
    ConfirmationTimeout,
    SignerError,
    GatewayError,
)

# ============================================================
# ERRORS
# ============================================================
from .errors import (
    ErrorCategory,
    ReasonCode,
    ReasonCodeInfo,
    REASON_CODES,
    get_reason_info,
    category_of,
    is_policy_denial,
    is_pre_submission,
)

# ============================================================
# CONFIGURATION
# ============================================================
from .config import (
    SplitterConfig,
    SequencerConfig,
    GatewayConfig,
    RelayerConfig,
    SmartExecutionConfig,
)

# ============================================================
# STATE MACHINE
# ============================================================
from .state_machine import (
    VALID_TRANSITIONS,
    StateTransitionEvent,
    TransitionGuard,
    ExecutionStateMachine,
)

# ============================================================
# COMPONENTS
# ============================================================
from .splitter import OrderSplitter
from .gateways import QuoteGateway, StaticQuoteGateway, HttpQuoteGateway
from .history import TransactionHistory
from .context import AccountRegistry, AppContext
from .sequencer import ExecutionSequencer, ExecutionHandle

# ============================================================
# ADAPTERS
# ============================================================
from .adapters import (
    SignerAdapter,
    SimulatedSigner,
    SimulatedSignerConfig,
    HttpRelayerSigner,
    create_signer,
)


__all__ = [
    # Types
    "ExecutionState",
    "ChildOrderState",
    "LoanRequest",
    "TradeRequest",
    "BasketAllocation",
    "BasketRequest",
    "LiquiditySource",
    "Quote",
    "MarketContext",
    "ChildOrder",
    "ExecutionPlan",
    "RecordStep",
    "ChildExecution",
    "ExecutionRecord",
    "ExecutionResult",
    "SmartExecutionError",
    "ValidationError",
    "PolicyDenied",
    "PlanningDefect",
    "SubmissionFailure",
    "ConfirmationTimeout",
    "SignerError",
    "GatewayError",
    # Errors
    "ErrorCategory",
    "ReasonCode",
    "ReasonCodeInfo",
    "REASON_CODES",
    "get_reason_info",
    "category_of",
    "is_policy_denial",
    "is_pre_submission",
    # Config
    "SplitterConfig",
    "SequencerConfig",
    "GatewayConfig",
    "RelayerConfig",
    "SmartExecutionConfig",
    # State machine
    "VALID_TRANSITIONS",
    "StateTransitionEvent",
    "TransitionGuard",
    "ExecutionStateMachine",
    # Components
    "OrderSplitter",
    "QuoteGateway",
    "StaticQuoteGateway",
    "HttpQuoteGateway",
    "TransactionHistory",
    "AccountRegistry",
    "AppContext",
    "ExecutionSequencer",
    "ExecutionHandle",
    # Adapters
    "SignerAdapter",
    "SimulatedSigner",
    "SimulatedSignerConfig",
    "HttpRelayerSigner",
    "create_signer",
]
