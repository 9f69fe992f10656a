"""
Remote marketplace backend sync.

WHAT: Push committed offer transitions to the marketplace REST API
WHY: The engine mirrors server-side state; the server keeps the durable record
HOW: httpx.AsyncClient with bearer auth, retry with exponential backoff on transient errors
"""

import asyncio
import json
from typing import Any, Optional

import httpx

from ..core.config import settings
from ..models.offer import CounterOfferResult, Offer, OfferStatus
from ..utils.exceptions import BackendSyncError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class OfferBackendClient:
    """Outbound client for the marketplace offers API (disabled by default)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.enabled = settings.BACKEND_SYNC_ENABLED if enabled is None else enabled
        self.base_url = (base_url or settings.BACKEND_BASE_URL).rstrip("/")
        self.api_token = settings.BACKEND_API_TOKEN if api_token is None else api_token
        self.max_retries = max(1, settings.BACKEND_MAX_RETRIES if max_retries is None else max_retries)
        self.retry_delay = settings.BACKEND_RETRY_DELAY if retry_delay is None else retry_delay
        self.client: Optional[httpx.AsyncClient] = None

        if self.enabled:
            headers = {"Content-Type": "application/json"}
            if self.api_token:
                headers["Authorization"] = f"Bearer {self.api_token}"
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout or settings.BACKEND_TIMEOUT),
                headers=headers,
            )
            logger.info(f"Backend sync initialized (enabled, base_url: {self.base_url})")
        else:
            logger.info("Backend sync initialized (disabled)")

    async def close(self):
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    def status(self) -> dict:
        return {"enabled": self.enabled, "base_url": self.base_url}

    async def _send(self, method: str, path: str, payload: dict) -> Optional[dict]:
        """
        Send one request with retries.

        Returns:
            Decoded JSON body, or None when sync is disabled

        Raises:
            BackendSyncError: Client error, or transient errors on every attempt
        """
        if not self.enabled or self.client is None:
            logger.debug(f"Backend sync disabled, skipping {method} {path}")
            return None

        url = f"{self.base_url}{path}"
        for attempt in range(self.max_retries):
            try:
                response = await self.client.request(method, url, json=payload)
                response.raise_for_status()
                logger.info(f"Backend sync {method} {path} -> {response.status_code}")
                return response.json() if response.content else {}

            except httpx.TimeoutException as e:
                logger.warning(f"Backend sync timeout on {path} (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise BackendSyncError(f"Request timed out after {self.max_retries} attempts") from e

            except httpx.ConnectError as e:
                logger.warning(f"Backend unreachable on {path} (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise BackendSyncError("Marketplace backend is not reachable") from e

            except httpx.HTTPStatusError as e:
                code = e.response.status_code
                if code < 500:
                    # Client errors don't retry
                    raise BackendSyncError(f"HTTP {code}: {e.response.text}", status_code=code) from e
                logger.error(f"Backend server error {code} on {path} (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise BackendSyncError(f"Server error: {code}", status_code=code) from e

            except json.JSONDecodeError as e:
                raise BackendSyncError(f"Invalid response format: {e}") from e

            await asyncio.sleep(self.retry_delay * (2 ** attempt))
        return None

    @staticmethod
    def _offer_payload(offer: Offer) -> dict[str, Any]:
        return offer.model_dump(mode="json", exclude_none=True)

    async def push_offer(self, offer: Offer) -> Optional[dict]:
        """Mirror a newly created offer."""
        return await self._send("POST", "/offers", self._offer_payload(offer))

    async def push_counter(self, result: CounterOfferResult) -> Optional[dict]:
        """Mirror a counter-offer against its countered record."""
        original = result.original_offer
        return await self._send(
            "POST",
            f"/offers/{original.id}/counter",
            {
                "counterOffer": self._offer_payload(result.counter_offer),
                "counterOfferCount": original.counter_offer_count,
            },
        )

    async def push_response(self, offer: Offer) -> Optional[dict]:
        """Mirror an accept or reject decision."""
        if offer.status == OfferStatus.ACCEPTED:
            payload = {"action": "accept", "actionBy": offer.accepted_by}
        elif offer.status == OfferStatus.REJECTED:
            payload = {
                "action": "reject",
                "actionBy": offer.rejected_by,
                "message": offer.rejection_reason or "",
            }
        else:
            raise ValueError(f"Offer {offer.id} has no response to sync (status={offer.status.value})")
        return await self._send("PUT", f"/offers/{offer.id}/respond", payload)
