"""Async reads and claim transactions against BetCampaign contracts."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

from loguru import logger
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from claimdesk.core.config import settings
from claimdesk.domain import ClaimRejected, Market, SourceUnavailable, StakeTicket

from .abi import BET_CAMPAIGN_ABI
from .normalize import normalize_ledger_market, normalize_ledger_ticket

_READ_ERRORS = (Web3Exception, OSError, ValueError, asyncio.TimeoutError)
_SEND_ERRORS = (Web3Exception, OSError, ValueError)


def _build_web3(rpc_url: str | None, timeout: float) -> AsyncWeb3:
    provider = AsyncWeb3.AsyncHTTPProvider(
        rpc_url or str(settings.ledger_rpc_url),
        request_kwargs={"timeout": timeout},
    )
    return AsyncWeb3(provider)


class CampaignLedger:
    """Read-only view of campaign contract state."""

    source = "ledger"

    def __init__(
        self,
        *,
        rpc_url: str | None = None,
        timeout: float | None = None,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        self.timeout = timeout or settings.source_timeout_seconds
        self._web3 = web3 or _build_web3(rpc_url, self.timeout)

    def _contract(self, campaign_address: str) -> Any:
        return self._web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(campaign_address),
            abi=BET_CAMPAIGN_ABI,
        )

    async def _read(self, description: str, coroutine) -> Any:
        try:
            return await asyncio.wait_for(coroutine, timeout=self.timeout)
        except _READ_ERRORS as exc:
            logger.warning("Ledger read {} failed: {}", description, exc)
            raise SourceUnavailable(self.source, f"{description}: {exc}") from exc

    async def fetch_market(self, campaign_address: str) -> Market:
        logger.debug("Reading campaign state for {}", campaign_address)
        try:
            functions = self._contract(campaign_address).functions
        except ValueError as exc:
            raise SourceUnavailable(self.source, f"invalid campaign address {campaign_address}") from exc
        state, outcome, total_true, total_false, initial_pot, fee_bps = await self._read(
            f"campaign {campaign_address}",
            asyncio.gather(
                functions.state().call(),
                functions.outcomeTrue().call(),
                functions.totalTrue().call(),
                functions.totalFalse().call(),
                functions.totalInitialPot().call(),
                functions.feeBps().call(),
            ),
        )
        try:
            return normalize_ledger_market(
                campaign_address,
                state=state,
                outcome_true=outcome,
                total_true=total_true,
                total_false=total_false,
                total_initial_pot=initial_pot,
                fee_bps=fee_bps,
            )
        except ValueError as exc:
            raise SourceUnavailable(self.source, f"malformed campaign state: {exc}") from exc

    async def fetch_ticket(self, campaign_address: str, ticket_id: int) -> StakeTicket:
        try:
            functions = self._contract(campaign_address).functions
        except ValueError as exc:
            raise SourceUnavailable(self.source, f"invalid campaign address {campaign_address}") from exc
        raw = await self._read(f"ticket #{ticket_id}", functions.tickets(ticket_id).call())
        try:
            return normalize_ledger_ticket(ticket_id, raw)
        except (ValueError, KeyError, IndexError) as exc:
            raise SourceUnavailable(self.source, f"malformed ticket #{ticket_id}: {exc}") from exc

    async def fetch_tickets(self, campaign_address: str, ticket_ids: Iterable[int]) -> list[StakeTicket]:
        return list(
            await asyncio.gather(
                *(self.fetch_ticket(campaign_address, ticket_id) for ticket_id in ticket_ids)
            )
        )


class Web3ClaimSender:
    """Send ``claim(ticketId)`` from an account managed by the connected node.

    JSON-RPC rejections surface as ``ValueError`` on web3 6 and as
    ``Web3Exception`` subclasses on web3 7; both become ``ClaimRejected``.
    """

    def __init__(
        self,
        account: str,
        *,
        rpc_url: str | None = None,
        web3: AsyncWeb3 | None = None,
        receipt_timeout: float | None = None,
    ) -> None:
        self.account = AsyncWeb3.to_checksum_address(account)
        self.receipt_timeout = receipt_timeout or settings.claim_confirmation_timeout_seconds
        self._web3 = web3 or _build_web3(rpc_url, settings.source_timeout_seconds)
        self._submitted: dict[str, int] = {}

    async def send_claim(self, campaign_address: str, ticket_id: int) -> str:
        contract = self._web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(campaign_address),
            abi=BET_CAMPAIGN_ABI,
        )
        try:
            tx_hash = await contract.functions.claim(ticket_id).transact({"from": self.account})
        except ContractLogicError as exc:
            raise ClaimRejected(ticket_id, f"reverted: {exc}") from exc
        except _SEND_ERRORS as exc:
            raise ClaimRejected(ticket_id, f"not broadcast: {exc}") from exc
        tx_hex = AsyncWeb3.to_hex(tx_hash)
        self._submitted[tx_hex] = ticket_id
        return tx_hex

    async def wait_for_receipt(self, tx_hash: str) -> bool:
        ticket_id = self._submitted.get(tx_hash)
        try:
            receipt = await self._web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except TimeExhausted as exc:
            raise asyncio.TimeoutError(f"no receipt for {tx_hash}") from exc
        except _SEND_ERRORS as exc:
            raise ClaimRejected(ticket_id, f"receipt unavailable: {exc}", tx_hash) from exc
        self._submitted.pop(tx_hash, None)
        return receipt["status"] == 1
