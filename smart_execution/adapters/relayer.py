"""
Smart Execution - HTTP Relayer Signer.

============================================================
PURPOSE
============================================================
Submits child orders through an external relayer that holds
the signing key.

ENDPOINTS:
- POST {base_url}/relay/submit
    {"action": "mint"|"transfer", "tokenAddress", "amount",
     "recipient", "reference"}  ->  {"txHash": "0x..."}
- GET  {base_url}/relay/tx/{tx_hash}
    -> {"status": "pending"|"confirmed"|"failed",
        "blockNumber": N, "error": "..."}

A rejected mint is retried once as a transfer (tokens that
are not mintable by the relayer are paid from its balance).

============================================================
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from ..config import RelayerConfig
from ..errors import ReasonCode
from ..types import ConfirmationTimeout, SignerError
from .base import (
    ConfirmationResult,
    ConfirmationStatus,
    SignerAdapter,
    SubmitTransactionRequest,
    SubmitTransactionResponse,
    TransactionAction,
)


logger = logging.getLogger(__name__)


class HttpRelayerSigner(SignerAdapter):
    """
    Relayer signer over HTTP.

    Owns its aiohttp session unless one is injected.
    """

    def __init__(
        self,
        config: Optional[RelayerConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._config = config or RelayerConfig()
        if not self._config.base_url:
            raise ValueError("Relayer base_url is required")
        self._base_url = self._config.base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

    @property
    def signer_id(self) -> str:
        return "relayer"

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed

    @property
    def default_address(self) -> Optional[str]:
        return self._config.default_address

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        if self.is_connected:
            return

        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)
        headers = {}
        if self._config.api_key:
            headers["X-API-Key"] = self._config.api_key

        self._session = aiohttp.ClientSession(timeout=timeout, headers=headers)
        self._owns_session = True
        logger.info(f"Relayer signer connected to {self._base_url}")

    async def disconnect(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
        logger.info("Relayer signer disconnected")

    # --------------------------------------------------------
    # SUBMISSION
    # --------------------------------------------------------

    async def submit(
        self,
        request: SubmitTransactionRequest,
    ) -> SubmitTransactionResponse:
        response = await self._submit_action(request, request.action)

        if (
            not response.success
            and request.action == TransactionAction.MINT
            and self._config.fallback_to_transfer
        ):
            logger.warning(
                f"Relayer rejected mint of {request.token_address} "
                f"({response.error_message}), falling back to transfer"
            )
            response = await self._submit_action(request, TransactionAction.TRANSFER)

        return response

    async def _submit_action(
        self,
        request: SubmitTransactionRequest,
        action: TransactionAction,
    ) -> SubmitTransactionResponse:
        payload = {
            "action": action.value,
            "tokenAddress": request.token_address,
            "amount": str(request.amount),
            "recipient": request.recipient or self._config.default_address,
            "reference": request.reference,
        }

        status, data = await self._request("POST", "/relay/submit", json=payload)

        if status >= 500:
            raise SignerError(
                f"Relayer error {status}: {data.get('error', data)}",
                code=ReasonCode.SIGNER_ERROR,
                is_retryable=True,
            )

        tx_hash = data.get("txHash")
        if status != 200 or not tx_hash:
            return SubmitTransactionResponse(
                success=False,
                action=action,
                error_code=str(data.get("code") or status),
                error_message=str(data.get("error") or "Relayer refused the transaction"),
                raw_response=data,
            )

        return SubmitTransactionResponse(
            success=True,
            tx_hash=tx_hash,
            action=action,
            raw_response=data,
        )

    # --------------------------------------------------------
    # CONFIRMATION
    # --------------------------------------------------------

    async def wait_for_confirmation(
        self,
        tx_hash: str,
        timeout_seconds: float,
    ) -> ConfirmationResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds

        while True:
            status, data = await self._request("GET", f"/relay/tx/{tx_hash}")

            if status == 200:
                state = str(data.get("status", "pending")).lower()
                if state == ConfirmationStatus.CONFIRMED.value:
                    return ConfirmationResult(
                        tx_hash=tx_hash,
                        status=ConfirmationStatus.CONFIRMED,
                        block_number=data.get("blockNumber"),
                    )
                if state == ConfirmationStatus.FAILED.value:
                    return ConfirmationResult(
                        tx_hash=tx_hash,
                        status=ConfirmationStatus.FAILED,
                        error_message=data.get("error"),
                    )
            elif status != 404:
                raise SignerError(
                    f"Relayer status query failed {status}: {data.get('error', data)}",
                    is_retryable=status >= 500,
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ConfirmationTimeout(
                    f"Transaction {tx_hash} not confirmed within {timeout_seconds}s"
                )
            await asyncio.sleep(min(self._config.poll_interval_seconds, remaining))

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Dict[str, Any]]:
        """Make a relayer request, returning (status, body)."""
        if not self.is_connected:
            await self.connect()

        url = f"{self._base_url}{path}"
        try:
            async with self._session.request(method, url, json=json) as response:
                try:
                    data = await response.json()
                except (aiohttp.ContentTypeError, ValueError):
                    data = {"error": await response.text()}
                if not isinstance(data, dict):
                    data = {"data": data}
                return response.status, data

        except aiohttp.ClientError as e:
            raise SignerError(
                f"Network error: {e}",
                code=ReasonCode.SIGNER_ERROR,
                is_retryable=True,
            )
        except asyncio.TimeoutError:
            raise SignerError(
                "Relayer request timeout",
                code=ReasonCode.SUBMISSION_TIMEOUT,
                is_retryable=True,
            )
