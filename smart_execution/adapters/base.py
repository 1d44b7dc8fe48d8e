"""
Smart Execution - Signer Adapter Base.

============================================================
PURPOSE
============================================================
Abstract interface for signers and relayers.

    submit(request) -> SubmitTransactionResponse(tx_hash)
    wait_for_confirmation(tx_hash, timeout) -> ConfirmationResult

DESIGN PRINCIPLES:
- Signer-agnostic interface
- Key custody stays behind the adapter
- The sequencer's state machine is identical for every adapter

============================================================
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from ..types import ChildOrder


logger = logging.getLogger(__name__)


TX_HASH_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")


def is_valid_tx_hash(tx_hash: Optional[str]) -> bool:
    """Check a transaction hash (0x followed by 64 hex characters)."""
    return bool(tx_hash) and TX_HASH_PATTERN.match(tx_hash) is not None


# ============================================================
# ADAPTER REQUEST/RESPONSE TYPES
# ============================================================

class TransactionAction(str, Enum):
    """On-chain action requested from the signer."""

    MINT = "mint"
    TRANSFER = "transfer"


@dataclass
class SubmitTransactionRequest:
    """Request to submit one child order on-chain."""

    token_address: str
    """Token contract."""

    amount: Decimal
    """Token amount."""

    recipient: Optional[str] = None
    """Recipient; None uses the signer's default address."""

    usd_amount: Decimal = Decimal("0")
    """USD value, informational."""

    action: TransactionAction = TransactionAction.MINT
    """Preferred action; relayers may fall back to transfer."""

    reference: Optional[str] = None
    """Caller reference, e.g. execution id and child index."""

    @classmethod
    def from_child(
        cls,
        child: ChildOrder,
        reference: Optional[str] = None,
    ) -> "SubmitTransactionRequest":
        return cls(
            token_address=child.token_address,
            amount=child.token_amount,
            recipient=child.recipient,
            usd_amount=child.usd_amount,
            reference=reference,
        )


@dataclass
class SubmitTransactionResponse:
    """Response from a submission."""

    success: bool
    """Whether the signer accepted the transaction."""

    tx_hash: Optional[str] = None
    """Pending transaction hash."""

    action: Optional[TransactionAction] = None
    """Action actually used."""

    error_code: Optional[str] = None
    """Error code if rejected."""

    error_message: Optional[str] = None
    """Error message if rejected."""

    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    raw_response: Dict[str, Any] = field(default_factory=dict)
    """Raw signer response."""


class ConfirmationStatus(str, Enum):
    """Final on-chain outcome of a transaction."""

    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class ConfirmationResult:
    """Outcome of waiting for a transaction."""

    tx_hash: str
    status: ConfirmationStatus
    block_number: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return self.status == ConfirmationStatus.CONFIRMED


# ============================================================
# SIGNER ADAPTER INTERFACE
# ============================================================

class SignerAdapter(ABC):
    """
    Abstract signer adapter.

    Implementations:
    - SimulatedSigner (practice mode)
    - HttpRelayerSigner

    Errors:
        Transport problems raise SignerError. A refusal by the
        signer is a response with success=False.
    """

    @property
    @abstractmethod
    def signer_id(self) -> str:
        """Signer identifier."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if connected."""
        pass

    @property
    def default_address(self) -> Optional[str]:
        """Address used when a child order has no recipient."""
        return None

    async def connect(self) -> None:
        """Open resources."""
        pass

    async def disconnect(self) -> None:
        """Release resources."""
        pass

    @abstractmethod
    async def submit(
        self,
        request: SubmitTransactionRequest,
    ) -> SubmitTransactionResponse:
        """
        Submit a transaction.

        Raises:
            SignerError: On transport failure
        """
        pass

    @abstractmethod
    async def wait_for_confirmation(
        self,
        tx_hash: str,
        timeout_seconds: float,
    ) -> ConfirmationResult:
        """
        Wait for a transaction to confirm or fail.

        May block up to timeout_seconds; callers enforce their own
        bound on top.

        Raises:
            SignerError: On transport failure
        """
        pass
