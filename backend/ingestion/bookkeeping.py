from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from claimdesk.core.config import settings
from claimdesk.domain import BookkeepingMarket, BookkeepingRecord, SourceUnavailable
from claimdesk.domain.units import to_display

from .normalize import normalize_bets, normalize_bookkeeping_market


class BookkeepingClient:
    """Thin async wrapper around the off-chain bet registry."""

    source = "bookkeeping"

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        decimals: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or str(settings.bookkeeping_base_url)
        self.timeout = timeout or settings.source_timeout_seconds
        self.decimals = settings.token_decimals if decimals is None else decimals
        headers = {"Content-Type": "application/json"}
        bearer = token or settings.bookkeeping_api_token
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        logger.debug("Bookkeeping {} {}", method, path)
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Bookkeeping {} {} returned HTTP {}", method, path, exc.response.status_code
            )
            raise SourceUnavailable(
                self.source, f"{method} {path} returned HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Bookkeeping {} {} failed: {}", method, path, exc)
            raise SourceUnavailable(self.source, f"{method} {path}: {exc}") from exc

    async def fetch_market(self, market_id: str) -> BookkeepingMarket:
        payload = await self._request("GET", f"{settings.bookkeeping_markets_path}/{market_id}")
        if isinstance(payload, dict) and isinstance(payload.get("market"), dict):
            payload = payload["market"]
        if not isinstance(payload, dict):
            raise SourceUnavailable(self.source, f"market {market_id} payload is not an object")
        try:
            return normalize_bookkeeping_market(payload)
        except ValueError as exc:
            raise SourceUnavailable(self.source, f"malformed market {market_id}: {exc}") from exc

    async def fetch_user_bets(self, campaign_address: str) -> list[BookkeepingRecord]:
        payload = await self._request("GET", settings.bookkeeping_bets_path)
        try:
            return normalize_bets(payload, campaign_address, decimals=self.decimals)
        except (TypeError, ValueError) as exc:
            raise SourceUnavailable(self.source, f"malformed bets payload: {exc}") from exc

    async def notify_claim(
        self, *, campaign_address: str, ticket_id: int, payout: int, tx_hash: str | None
    ) -> None:
        body = {
            "campaign_address": campaign_address,
            "ticket_id": ticket_id,
            "payout": str(to_display(payout, self.decimals)),
            "tx_hash": tx_hash,
        }
        await self._request("POST", settings.bookkeeping_claims_path, json=body)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "BookkeepingClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
