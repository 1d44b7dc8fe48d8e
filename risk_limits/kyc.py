"""
Risk Limits - KYC Service.

============================================================
PURPOSE
============================================================
Consults the external KYC verification before tier-gated
notional is allowed, and applies upgrades to the account.

PROVIDERS:
- StaticKycProvider: dict-backed, for practice mode and tests
- HttpKycProvider: POST {base_url}/api/kyc {"userId": ...}
  returning {"kycTier": N, "rules": {"ltv": percent}}

A provider failure never lowers a tier; the stored tier is
kept and a warning is logged.

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

import aiohttp

from .types import Account, KycTier


logger = logging.getLogger(__name__)


class KycProviderError(Exception):
    """KYC verification could not be obtained."""
    pass


@dataclass(frozen=True)
class KycStatus:
    """Result of a KYC lookup."""

    user_id: str
    tier: KycTier
    ltv_ceiling: Optional[Decimal] = None
    """Tier LTV rule published by the backend, as a ratio."""


# ============================================================
# PROVIDERS
# ============================================================

class KycProvider(ABC):
    """External KYC verification."""

    @abstractmethod
    async def kyc(self, user_id: str) -> KycStatus:
        """
        Look up the verified tier of a user.

        Raises:
            KycProviderError: If the lookup fails
        """
        pass


class StaticKycProvider(KycProvider):
    """KYC provider backed by an in-memory mapping."""

    def __init__(
        self,
        tiers: Optional[Dict[str, int]] = None,
        default_tier: KycTier = KycTier.BASIC,
    ):
        self._tiers: Dict[str, KycTier] = {
            user_id: KycTier(tier) for user_id, tier in (tiers or {}).items()
        }
        self._default_tier = default_tier

    def set_tier(self, user_id: str, tier: int) -> None:
        self._tiers[user_id] = KycTier(tier)

    async def kyc(self, user_id: str) -> KycStatus:
        tier = self._tiers.setdefault(user_id, self._default_tier)
        return KycStatus(user_id=user_id, tier=tier)


class HttpKycProvider(KycProvider):
    """KYC provider calling the backend's /api/kyc endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        if not base_url:
            raise ValueError("base_url is required for HttpKycProvider")
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def kyc(self, user_id: str) -> KycStatus:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

        url = f"{self._base_url}/api/kyc"
        try:
            async with self._session.post(url, json={"userId": user_id}) as response:
                if response.status != 200:
                    body = await response.text()
                    raise KycProviderError(
                        f"KYC request failed {response.status}: {body}"
                    )
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise KycProviderError(f"KYC request failed: {e}") from e

        if not isinstance(data, dict):
            raise KycProviderError(f"Malformed KYC response: {data!r}")

        try:
            tier = KycTier(int(data["kycTier"]))
            ltv = None
            rules = data.get("rules") or {}
            if rules.get("ltv") is not None:
                ltv = Decimal(str(rules["ltv"])) / Decimal("100")
        except (KeyError, TypeError, ValueError, AttributeError, InvalidOperation) as e:
            raise KycProviderError(f"Malformed KYC response: {data!r}") from e

        if ltv is not None and not (ltv.is_finite() and Decimal("0") < ltv <= Decimal("1")):
            raise KycProviderError(f"KYC response has LTV rule out of range: {data!r}")

        return KycStatus(user_id=user_id, tier=tier, ltv_ceiling=ltv)


# ============================================================
# KYC SERVICE
# ============================================================

class KycService:
    """
    Applies external KYC results to accounts.

    This is the only component that calls Account.upgrade_kyc_tier().
    """

    def __init__(self, provider: Optional[KycProvider] = None):
        self._provider = provider

    @property
    def provider(self) -> Optional[KycProvider]:
        return self._provider

    async def sync(self, account: Account) -> KycTier:
        """
        Refresh the account's tier from the provider.

        Returns:
            The account's effective tier after the sync
        """
        if self._provider is None:
            return account.kyc_tier

        try:
            status = await self._provider.kyc(account.account_id)
        except KycProviderError as e:
            logger.warning(
                f"KYC lookup failed for {account.account_id}, "
                f"keeping tier {int(account.kyc_tier)}: {e}"
            )
            return account.kyc_tier

        if status.tier > account.kyc_tier:
            account.upgrade_kyc_tier(status.tier)
            logger.info(
                f"Account {account.account_id} upgraded to KYC tier {int(status.tier)}"
            )
        elif status.tier < account.kyc_tier:
            logger.warning(
                f"KYC provider reports tier {int(status.tier)} below stored tier "
                f"{int(account.kyc_tier)} for {account.account_id}; ignoring"
            )

        return account.kyc_tier
