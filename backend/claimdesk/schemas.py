from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from claimdesk.domain import ClaimEntitlement, PayoutQuote
from claimdesk.domain.units import DEFAULT_DECIMALS, to_display
from claimdesk.services.market_view import MarketView


class Entitlement(BaseModel):
    ticket_id: int
    is_winner: bool
    claimed: bool
    claimable: bool
    already_claimed_elsewhere: bool
    provisional: bool
    stake: Decimal
    payout: Decimal
    pnl: Decimal
    claimed_payout: Decimal | None = None

    @classmethod
    def from_domain(cls, entitlement: ClaimEntitlement, decimals: int = DEFAULT_DECIMALS) -> "Entitlement":
        return cls(
            ticket_id=entitlement.ticket_id,
            is_winner=entitlement.is_winner,
            claimed=entitlement.claimed,
            claimable=entitlement.claimable,
            already_claimed_elsewhere=entitlement.already_claimed_elsewhere,
            provisional=entitlement.provisional,
            stake=to_display(entitlement.stake_amount, decimals),
            payout=to_display(entitlement.payout_amount, decimals),
            pnl=to_display(entitlement.pnl, decimals),
            claimed_payout=(
                to_display(entitlement.claimed_payout, decimals)
                if entitlement.claimed_payout is not None
                else None
            ),
        )


class ClaimView(BaseModel):
    market_id: str
    campaign_address: str | None = None
    status: str
    outcome_true: bool | None = None
    provisional: bool = False
    verdict: str | None = None
    has_joined: bool = False
    total_claimable: Decimal = Decimal(0)
    claimed_total: Decimal = Decimal(0)
    entitlements: list[Entitlement] = Field(default_factory=list)
    unavailable_sources: list[str] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: MarketView, decimals: int = DEFAULT_DECIMALS) -> "ClaimView":
        return cls(
            market_id=view.market_id,
            campaign_address=view.campaign_address,
            status=view.status.value,
            outcome_true=view.outcome_true,
            provisional=view.provisional,
            verdict=view.verdict.value if view.verdict else None,
            has_joined=view.has_joined,
            total_claimable=to_display(view.total_claimable, decimals),
            claimed_total=to_display(view.claimed_total, decimals),
            entitlements=[Entitlement.from_domain(item, decimals) for item in view.entitlements],
            unavailable_sources=list(view.unavailable_sources),
        )


class Quote(BaseModel):
    side: str
    stake: Decimal
    potential_payout: Decimal
    potential_profit: Decimal

    @classmethod
    def from_domain(cls, quote: PayoutQuote, decimals: int = DEFAULT_DECIMALS) -> "Quote":
        return cls(
            side=quote.side.name,
            stake=to_display(quote.stake, decimals),
            potential_payout=to_display(quote.potential_payout, decimals),
            potential_profit=to_display(quote.potential_profit, decimals),
        )
