"""
Smart Execution - Reason Code Taxonomy.

============================================================
PURPOSE
============================================================
Every terminal outcome of an execution run carries one
reason code. This module classifies them.

ERROR CATEGORIES:
1. Validation   - Malformed request, rejected before side effects
2. Policy       - KYC tier / LTV limit, rejected before side effects
3. Planning     - Splitter produced an invalid plan (a bug)
4. Submission   - Signer rejected or errored
5. Confirmation - Transaction failed or timed out
6. Concurrency  - Another run is active for the account
7. External     - Quote service unavailable
8. Cancellation - Caller cancelled the run
9. Internal     - Unexpected error inside the engine

============================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


# ============================================================
# CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Reason code classification."""

    VALIDATION = "VALIDATION"
    POLICY = "POLICY"
    PLANNING = "PLANNING"
    SUBMISSION = "SUBMISSION"
    CONFIRMATION = "CONFIRMATION"
    CONCURRENCY = "CONCURRENCY"
    EXTERNAL = "EXTERNAL"
    CANCELLATION = "CANCELLATION"
    INTERNAL = "INTERNAL"


class ReasonCode(str, Enum):
    """Reason codes for terminal run outcomes."""

    # Validation
    INVALID_NOTIONAL = "INVALID_NOTIONAL"
    MISSING_TOKEN_ADDRESS = "MISSING_TOKEN_ADDRESS"
    INVALID_RECIPIENT = "INVALID_RECIPIENT"
    INVALID_ALLOCATIONS = "INVALID_ALLOCATIONS"
    UNKNOWN_ACCOUNT = "UNKNOWN_ACCOUNT"

    # Policy
    TIER_LIMIT_EXCEEDED = "TIER_LIMIT_EXCEEDED"
    EXCEEDS_LTV = "EXCEEDS_LTV"
    LOAN_REJECTED = "LOAN_REJECTED"

    # Planning
    EMPTY_PLAN = "EMPTY_PLAN"
    INVALID_PLAN = "INVALID_PLAN"

    # Submission
    SUBMISSION_REJECTED = "SUBMISSION_REJECTED"
    SIGNER_ERROR = "SIGNER_ERROR"
    SUBMISSION_TIMEOUT = "SUBMISSION_TIMEOUT"

    # Confirmation
    CONFIRMATION_FAILED = "CONFIRMATION_FAILED"
    CONFIRMATION_TIMEOUT = "CONFIRMATION_TIMEOUT"

    # Concurrency
    EXECUTION_IN_PROGRESS = "EXECUTION_IN_PROGRESS"

    # External
    QUOTE_UNAVAILABLE = "QUOTE_UNAVAILABLE"

    # Cancellation
    CANCELLED = "CANCELLED"

    # Internal
    INTERNAL_ERROR = "INTERNAL_ERROR"


# ============================================================
# REGISTRY
# ============================================================

@dataclass(frozen=True)
class ReasonCodeInfo:
    """Information about a reason code."""

    code: ReasonCode
    """Reason code."""

    category: ErrorCategory
    """Category."""

    description: str
    """Human-readable description."""

    recommended_action: str
    """What the caller can do about it."""

    before_side_effects: bool = True
    """Whether the run is guaranteed to have submitted nothing."""


def _info(
    code: ReasonCode,
    category: ErrorCategory,
    description: str,
    recommended_action: str,
    before_side_effects: bool = True,
) -> ReasonCodeInfo:
    return ReasonCodeInfo(code, category, description, recommended_action, before_side_effects)


REASON_CODES: Dict[ReasonCode, ReasonCodeInfo] = {
    info.code: info for info in [
        # ========== VALIDATION ==========
        _info(
            ReasonCode.INVALID_NOTIONAL,
            ErrorCategory.VALIDATION,
            "Trade notional is missing, zero or negative",
            "Submit a positive USD amount",
        ),
        _info(
            ReasonCode.MISSING_TOKEN_ADDRESS,
            ErrorCategory.VALIDATION,
            "Token address is missing or malformed",
            "Provide a 0x-prefixed 40 hex character token address",
        ),
        _info(
            ReasonCode.INVALID_RECIPIENT,
            ErrorCategory.VALIDATION,
            "Recipient address is malformed",
            "Provide a 0x-prefixed 40 hex character recipient",
        ),
        _info(
            ReasonCode.INVALID_ALLOCATIONS,
            ErrorCategory.VALIDATION,
            "Basket allocations are empty, non-positive or do not sum to 100%",
            "Fix the basket percentages",
        ),
        _info(
            ReasonCode.UNKNOWN_ACCOUNT,
            ErrorCategory.VALIDATION,
            "Account is not registered",
            "Register the account before trading",
        ),
        # ========== POLICY ==========
        _info(
            ReasonCode.TIER_LIMIT_EXCEEDED,
            ErrorCategory.POLICY,
            "Trade exceeds the KYC tier daily ceiling",
            "Reduce the amount or complete a higher KYC tier",
        ),
        _info(
            ReasonCode.EXCEEDS_LTV,
            ErrorCategory.POLICY,
            "Borrow exceeds the loan-to-value ceiling",
            "Borrow less or add collateral",
        ),
        _info(
            ReasonCode.LOAN_REJECTED,
            ErrorCategory.POLICY,
            "Loan request was rejected",
            "Check collateral and prices",
        ),
        # ========== PLANNING ==========
        _info(
            ReasonCode.EMPTY_PLAN,
            ErrorCategory.PLANNING,
            "Order splitter returned no child orders",
            "Report as a defect",
        ),
        _info(
            ReasonCode.INVALID_PLAN,
            ErrorCategory.PLANNING,
            "Order splitter returned an inconsistent plan",
            "Report as a defect",
        ),
        # ========== SUBMISSION ==========
        _info(
            ReasonCode.SUBMISSION_REJECTED,
            ErrorCategory.SUBMISSION,
            "Signer refused the transaction",
            "Inspect the signer error; submitted steps stand",
            before_side_effects=False,
        ),
        _info(
            ReasonCode.SIGNER_ERROR,
            ErrorCategory.SUBMISSION,
            "Signer adapter raised an error",
            "Check signer connectivity; submitted steps stand",
            before_side_effects=False,
        ),
        _info(
            ReasonCode.SUBMISSION_TIMEOUT,
            ErrorCategory.SUBMISSION,
            "Signer did not answer in time",
            "Check signer connectivity; submitted steps stand",
            before_side_effects=False,
        ),
        # ========== CONFIRMATION ==========
        _info(
            ReasonCode.CONFIRMATION_FAILED,
            ErrorCategory.CONFIRMATION,
            "Transaction reverted or was dropped",
            "Inspect the transaction hash",
            before_side_effects=False,
        ),
        _info(
            ReasonCode.CONFIRMATION_TIMEOUT,
            ErrorCategory.CONFIRMATION,
            "Confirmation not observed within the timeout",
            "The transaction may still confirm; check the hash later",
            before_side_effects=False,
        ),
        # ========== CONCURRENCY ==========
        _info(
            ReasonCode.EXECUTION_IN_PROGRESS,
            ErrorCategory.CONCURRENCY,
            "Another execution run is active for this account",
            "Wait for the active run to finish",
        ),
        # ========== EXTERNAL ==========
        _info(
            ReasonCode.QUOTE_UNAVAILABLE,
            ErrorCategory.EXTERNAL,
            "Quote/routing service unavailable",
            "Retry later",
        ),
        # ========== CANCELLATION ==========
        _info(
            ReasonCode.CANCELLED,
            ErrorCategory.CANCELLATION,
            "Run cancelled by the caller",
            "Submitted transactions are not recalled",
            before_side_effects=False,
        ),
        # ========== INTERNAL ==========
        _info(
            ReasonCode.INTERNAL_ERROR,
            ErrorCategory.INTERNAL,
            "Unexpected error inside the engine",
            "Report as a defect; inspect recorded hashes",
            before_side_effects=False,
        ),
    ]
}


# ============================================================
# LOOKUP HELPERS
# ============================================================

def get_reason_info(code: ReasonCode) -> Optional[ReasonCodeInfo]:
    """Get registry entry for a reason code."""
    return REASON_CODES.get(ReasonCode(code))


def category_of(code: ReasonCode) -> ErrorCategory:
    """Category of a reason code."""
    return REASON_CODES[ReasonCode(code)].category


def is_policy_denial(code: Optional[ReasonCode]) -> bool:
    """Whether a code is a KYC/tier/LTV policy denial."""
    return code is not None and category_of(code) == ErrorCategory.POLICY


def is_pre_submission(code: Optional[ReasonCode]) -> bool:
    """Whether a code guarantees nothing was submitted."""
    return code is not None and REASON_CODES[ReasonCode(code)].before_side_effects
