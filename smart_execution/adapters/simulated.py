"""
Smart Execution - Simulated Signer.

============================================================
PURPOSE
============================================================
Practice-mode signer: virtual funds, no real transactions.

FEATURES:
- Synthetic 0x + 64 hex transaction hashes
- Configurable latency
- Failure injection by submission number
- Full state tracking

============================================================
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from ..errors import ReasonCode
from ..types import SignerError
from .base import (
    ConfirmationResult,
    ConfirmationStatus,
    SignerAdapter,
    SubmitTransactionRequest,
    SubmitTransactionResponse,
    TransactionAction,
)


logger = logging.getLogger(__name__)


PRACTICE_ADDRESS = "0x000000000000000000000000000000000000dEaD"


# ============================================================
# SIMULATION CONFIGURATION
# ============================================================

@dataclass
class SimulatedSignerConfig:
    """
    Configuration for the simulated signer.

    Failure positions count submissions made through this signer,
    starting at 0.
    """

    submit_latency_seconds: float = 0.0
    """Simulated submission latency."""

    confirmation_latency_seconds: float = 0.0
    """Simulated block time."""

    default_address: str = PRACTICE_ADDRESS
    """Address used when a child order has no recipient."""

    fail_submission_at: Set[int] = field(default_factory=set)
    """Submissions the signer refuses."""

    raise_on_submit_at: Set[int] = field(default_factory=set)
    """Submissions that raise SignerError."""

    fail_confirmation_at: Set[int] = field(default_factory=set)
    """Submissions whose transaction reverts."""

    hang_confirmation_at: Set[int] = field(default_factory=set)
    """Submissions whose confirmation never arrives."""

    seed: Optional[int] = None
    """Seed for hash generation; None is non-deterministic."""


# ============================================================
# SIMULATED SIGNER
# ============================================================

class SimulatedSigner(SignerAdapter):
    """
    No-op signer returning synthetic hashes.

    The sequencer cannot tell it apart from a real relayer.
    """

    def __init__(self, config: Optional[SimulatedSignerConfig] = None):
        self._config = config or SimulatedSignerConfig()
        self._rng = random.Random(self._config.seed)
        self._connected = False

        # State
        self._submissions: List[SubmitTransactionRequest] = []
        self._positions: Dict[str, int] = {}
        self._confirmations: Dict[str, ConfirmationStatus] = {}

        # Error injection hook
        self._force_next_error: Optional[str] = None

    @property
    def signer_id(self) -> str:
        return "simulated"

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def default_address(self) -> Optional[str]:
        return self._config.default_address

    @property
    def submissions(self) -> List[SubmitTransactionRequest]:
        """Requests received, in order."""
        return list(self._submissions)

    @property
    def submission_count(self) -> int:
        return len(self._submissions)

    def status_of(self, tx_hash: str) -> Optional[ConfirmationStatus]:
        return self._confirmations.get(tx_hash)

    def force_next_error(self, error_code: str) -> None:
        """Make the next submission fail with this code."""
        self._force_next_error = error_code

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        self._connected = True
        logger.info("SimulatedSigner connected")

    async def disconnect(self) -> None:
        self._connected = False
        logger.info("SimulatedSigner disconnected")

    # --------------------------------------------------------
    # SUBMISSION
    # --------------------------------------------------------

    async def submit(
        self,
        request: SubmitTransactionRequest,
    ) -> SubmitTransactionResponse:
        position = len(self._submissions)
        self._submissions.append(request)

        if self._config.submit_latency_seconds > 0:
            await asyncio.sleep(self._config.submit_latency_seconds)

        if position in self._config.raise_on_submit_at:
            raise SignerError(
                f"Simulated signer error on submission {position}",
                code=ReasonCode.SIGNER_ERROR,
                is_retryable=True,
            )

        if self._force_next_error:
            error = self._force_next_error
            self._force_next_error = None
            return SubmitTransactionResponse(
                success=False,
                error_code=error,
                error_message=f"Injected error: {error}",
            )

        if position in self._config.fail_submission_at:
            return SubmitTransactionResponse(
                success=False,
                error_code="SIMULATED_REJECTION",
                error_message=f"Simulated rejection of submission {position}",
            )

        tx_hash = self._fake_tx_hash()
        self._positions[tx_hash] = position
        recipient = request.recipient or self._config.default_address

        logger.debug(
            f"Simulated {request.action.value} of {request.amount} "
            f"{request.token_address} to {recipient}: {tx_hash}"
        )

        return SubmitTransactionResponse(
            success=True,
            tx_hash=tx_hash,
            action=request.action or TransactionAction.MINT,
            raw_response={"simulated": True, "recipient": recipient},
        )

    # --------------------------------------------------------
    # CONFIRMATION
    # --------------------------------------------------------

    async def wait_for_confirmation(
        self,
        tx_hash: str,
        timeout_seconds: float,
    ) -> ConfirmationResult:
        position = self._positions.get(tx_hash)
        if position is None:
            raise SignerError(f"Unknown transaction {tx_hash}")

        if position in self._config.hang_confirmation_at:
            # Never resolves; the caller's timeout ends the wait
            await asyncio.Event().wait()

        if self._config.confirmation_latency_seconds > 0:
            await asyncio.sleep(min(self._config.confirmation_latency_seconds, timeout_seconds))

        if position in self._config.fail_confirmation_at:
            self._confirmations[tx_hash] = ConfirmationStatus.FAILED
            return ConfirmationResult(
                tx_hash=tx_hash,
                status=ConfirmationStatus.FAILED,
                error_message="Simulated revert",
            )

        self._confirmations[tx_hash] = ConfirmationStatus.CONFIRMED
        return ConfirmationResult(
            tx_hash=tx_hash,
            status=ConfirmationStatus.CONFIRMED,
            block_number=1000 + position,
        )

    def _fake_tx_hash(self) -> str:
        return "0x" + format(self._rng.getrandbits(256), "064x")
