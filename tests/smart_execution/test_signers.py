"""
Signer Adapter Tests.

============================================================
PURPOSE
============================================================
Tests for the simulated signer, the HTTP relayer signer and
the adapter factory.

============================================================
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from smart_execution.adapters import (
    ConfirmationStatus,
    HttpRelayerSigner,
    SimulatedSigner,
    SimulatedSignerConfig,
    SubmitTransactionRequest,
    TransactionAction,
    create_signer,
    is_valid_tx_hash,
)
from smart_execution.adapters.simulated import PRACTICE_ADDRESS
from smart_execution.config import RelayerConfig, SmartExecutionConfig
from smart_execution.types import ConfirmationTimeout, SignerError


TOKEN = "0x" + "44" * 20
RECIPIENT = "0x" + "55" * 20
TX_HASH = "0x" + "ab" * 32


def request(amount="1"):
    return SubmitTransactionRequest(
        token_address=TOKEN,
        amount=Decimal(amount),
        recipient=RECIPIENT,
        usd_amount=Decimal(amount),
    )


def response_context(status, payload):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value="")

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def relayer_session(*responses):
    """Session whose request() yields (status, payload) pairs in order."""
    session = MagicMock()
    session.closed = False
    session.request = MagicMock(side_effect=[response_context(s, p) for s, p in responses])
    session.close = AsyncMock()
    return session


# ============================================================
# SIMULATED SIGNER
# ============================================================

class TestSimulatedSigner:
    """Tests for SimulatedSigner."""

    @pytest.mark.asyncio
    async def test_submit_and_confirm(self):
        signer = SimulatedSigner(SimulatedSignerConfig(seed=7))

        response = await signer.submit(request())
        result = await signer.wait_for_confirmation(response.tx_hash, 1.0)

        assert response.success is True
        assert is_valid_tx_hash(response.tx_hash)
        assert response.action == TransactionAction.MINT
        assert result.confirmed is True
        assert result.block_number == 1000
        assert signer.status_of(response.tx_hash) == ConfirmationStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_seeded_hashes_are_reproducible(self):
        first = SimulatedSigner(SimulatedSignerConfig(seed=1))
        second = SimulatedSigner(SimulatedSignerConfig(seed=1))

        assert (await first.submit(request())).tx_hash == (await second.submit(request())).tx_hash

    @pytest.mark.asyncio
    async def test_fail_submission_at(self):
        signer = SimulatedSigner(SimulatedSignerConfig(fail_submission_at={1}))

        ok = await signer.submit(request())
        refused = await signer.submit(request())

        assert ok.success is True
        assert refused.success is False
        assert refused.tx_hash is None
        assert signer.submission_count == 2

    @pytest.mark.asyncio
    async def test_raise_on_submit_at(self):
        signer = SimulatedSigner(SimulatedSignerConfig(raise_on_submit_at={0}))

        with pytest.raises(SignerError) as exc:
            await signer.submit(request())

        assert exc.value.is_retryable is True

    @pytest.mark.asyncio
    async def test_force_next_error_is_one_shot(self):
        signer = SimulatedSigner()
        signer.force_next_error("NONCE_TOO_LOW")

        first = await signer.submit(request())
        second = await signer.submit(request())

        assert first.error_code == "NONCE_TOO_LOW"
        assert second.success is True

    @pytest.mark.asyncio
    async def test_fail_confirmation_at(self):
        signer = SimulatedSigner(SimulatedSignerConfig(fail_confirmation_at={0}))
        response = await signer.submit(request())

        result = await signer.wait_for_confirmation(response.tx_hash, 1.0)

        assert result.confirmed is False
        assert result.status == ConfirmationStatus.FAILED

    @pytest.mark.asyncio
    async def test_hang_confirmation_at(self):
        signer = SimulatedSigner(SimulatedSignerConfig(hang_confirmation_at={0}))
        response = await signer.submit(request())

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(signer.wait_for_confirmation(response.tx_hash, 1.0), 0.05)

    @pytest.mark.asyncio
    async def test_unknown_hash(self):
        with pytest.raises(SignerError):
            await SimulatedSigner().wait_for_confirmation(TX_HASH, 1.0)

    @pytest.mark.asyncio
    async def test_connect_and_default_address(self):
        signer = SimulatedSigner()
        await signer.connect()

        assert signer.is_connected is True
        assert signer.default_address == PRACTICE_ADDRESS

        await signer.disconnect()
        assert signer.is_connected is False


# ============================================================
# HTTP RELAYER SIGNER
# ============================================================

class TestHttpRelayerSigner:
    """Tests for HttpRelayerSigner with a mocked session."""

    def _signer(self, session, **overrides):
        config = RelayerConfig(
            base_url="http://relayer/",
            poll_interval_seconds=0.01,
            **overrides,
        )
        return HttpRelayerSigner(config, session=session)

    @pytest.mark.asyncio
    async def test_submit_mint(self):
        session = relayer_session((200, {"txHash": TX_HASH}))
        signer = self._signer(session)

        response = await signer.submit(request("2.5"))

        assert response.success is True
        assert response.tx_hash == TX_HASH
        method, url = session.request.call_args[0]
        payload = session.request.call_args[1]["json"]
        assert (method, url) == ("POST", "http://relayer/relay/submit")
        assert payload["action"] == "mint"
        assert payload["amount"] == "2.5"
        assert payload["recipient"] == RECIPIENT

    @pytest.mark.asyncio
    async def test_rejected_mint_falls_back_to_transfer(self):
        session = relayer_session(
            (400, {"error": "not mintable"}),
            (200, {"txHash": TX_HASH}),
        )
        signer = self._signer(session)

        response = await signer.submit(request())

        assert response.success is True
        assert response.action == TransactionAction.TRANSFER
        actions = [c[1]["json"]["action"] for c in session.request.call_args_list]
        assert actions == ["mint", "transfer"]

    @pytest.mark.asyncio
    async def test_no_fallback_when_disabled(self):
        session = relayer_session((400, {"error": "not mintable", "code": "NOT_MINTABLE"}))
        signer = self._signer(session, fallback_to_transfer=False)

        response = await signer.submit(request())

        assert response.success is False
        assert response.error_code == "NOT_MINTABLE"
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        session = relayer_session((502, {"error": "bad gateway"}))

        with pytest.raises(SignerError):
            await self._signer(session).submit(request())

    @pytest.mark.asyncio
    async def test_network_error_wrapped(self):
        session = MagicMock()
        session.closed = False
        session.request = MagicMock(side_effect=aiohttp.ClientError("refused"))

        with pytest.raises(SignerError) as exc:
            await self._signer(session).submit(request())

        assert exc.value.is_retryable is True

    @pytest.mark.asyncio
    async def test_polls_until_confirmed(self):
        session = relayer_session(
            (404, {"error": "unknown"}),
            (200, {"status": "pending"}),
            (200, {"status": "confirmed", "blockNumber": 42}),
        )

        result = await self._signer(session).wait_for_confirmation(TX_HASH, 5.0)

        assert result.confirmed is True
        assert result.block_number == 42
        assert session.request.call_count == 3
        assert session.request.call_args[0] == ("GET", f"http://relayer/relay/tx/{TX_HASH}")

    @pytest.mark.asyncio
    async def test_failed_transaction(self):
        session = relayer_session((200, {"status": "failed", "error": "reverted"}))

        result = await self._signer(session).wait_for_confirmation(TX_HASH, 5.0)

        assert result.status == ConfirmationStatus.FAILED
        assert result.error_message == "reverted"

    @pytest.mark.asyncio
    async def test_confirmation_deadline(self):
        session = MagicMock()
        session.closed = False
        session.request = MagicMock(
            side_effect=lambda *a, **k: response_context(200, {"status": "pending"}),
        )

        with pytest.raises(ConfirmationTimeout):
            await self._signer(session).wait_for_confirmation(TX_HASH, 0.05)

    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self):
        session = relayer_session()
        signer = self._signer(session)

        await signer.disconnect()

        session.close.assert_not_awaited()
        assert signer.is_connected is False

    def test_requires_base_url(self):
        with pytest.raises(ValueError):
            HttpRelayerSigner(RelayerConfig(base_url=""))


# ============================================================
# FACTORY
# ============================================================

class TestCreateSigner:
    """Tests for create_signer."""

    def test_simulated(self):
        assert isinstance(create_signer("simulated"), SimulatedSigner)

    def test_relayer(self):
        config = SmartExecutionConfig()
        config.relayer.default_address = RECIPIENT

        signer = create_signer("RELAYER", config)

        assert isinstance(signer, HttpRelayerSigner)
        assert signer.default_address == RECIPIENT

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            create_signer("hardware")


@pytest.mark.parametrize("tx_hash,valid", [
    (TX_HASH, True),
    ("0x" + "ab" * 31, False),
    ("ab" * 32, False),
    (None, False),
])
def test_is_valid_tx_hash(tx_hash, valid):
    assert is_valid_tx_hash(tx_hash) is valid
