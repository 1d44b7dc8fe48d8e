"""
Smart Execution - Signer Adapters.

============================================================
ADAPTERS
============================================================
- SimulatedSigner: practice mode, synthetic hashes
- HttpRelayerSigner: external relayer over HTTP

============================================================
"""

from .base import (
    SignerAdapter,
    SubmitTransactionRequest,
    SubmitTransactionResponse,
    ConfirmationResult,
    ConfirmationStatus,
    TransactionAction,
    is_valid_tx_hash,
)
from .simulated import SimulatedSigner, SimulatedSignerConfig, PRACTICE_ADDRESS
from .relayer import HttpRelayerSigner
from .factory import create_signer, SUPPORTED_MODES


__all__ = [
    # Base
    "SignerAdapter",
    "SubmitTransactionRequest",
    "SubmitTransactionResponse",
    "ConfirmationResult",
    "ConfirmationStatus",
    "TransactionAction",
    "is_valid_tx_hash",
    # Implementations
    "SimulatedSigner",
    "SimulatedSignerConfig",
    "PRACTICE_ADDRESS",
    "HttpRelayerSigner",
    # Factory
    "create_signer",
    "SUPPORTED_MODES",
]
