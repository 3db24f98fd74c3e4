"""Pure payout arithmetic mirroring the campaign contract.

Every amount is an integer in token base units and every division floors,
so the payouts of a set of winning tickets can never exceed the
distributable pool; rounding dust stays with the protocol.
"""

from __future__ import annotations

from loguru import logger

from claimdesk.domain import (
    DivisionByZero,
    InvalidState,
    Market,
    PayoutQuote,
    Side,
    StakeTicket,
)
from claimdesk.domain.models import MAX_FEE_BPS


def compute_fee(pool: int, fee_bps: int) -> int:
    return pool * fee_bps // MAX_FEE_BPS


def compute_distributable(market: Market) -> int:
    """Return the resolved pool minus the protocol fee."""

    _require_resolved(market)
    return market.pool - compute_fee(market.pool, market.fee_bps)


def winning_side(market: Market) -> Side:
    _require_resolved(market)
    return Side.YES if market.outcome_true else Side.NO


def winners_total(market: Market) -> int:
    return market.total_true_stake if winning_side(market) is Side.YES else market.total_false_stake


def is_winner(market: Market, ticket: StakeTicket) -> bool:
    return ticket.side == winning_side(market)


def compute_entitlement(market: Market, ticket: StakeTicket) -> int:
    """Return the payout owed to ``ticket``; zero for losing tickets."""

    distributable = compute_distributable(market)
    total = winners_total(market)
    if total == 0:
        logger.critical(
            "Data-integrity alarm: market {} resolved outcome_true={} with zero winning stake",
            market.market_id,
            market.outcome_true,
        )
        raise DivisionByZero(market.market_id)
    if not is_winner(market, ticket):
        return 0
    return ticket.stake_amount * distributable // total


def ticket_pnl(market: Market, ticket: StakeTicket) -> int:
    """Net result of a ticket: ``payout - stake`` for winners, ``-stake`` for losers."""

    return compute_entitlement(market, ticket) - ticket.stake_amount


def quote_payout(market: Market, side: Side, stake: int) -> PayoutQuote:
    """Preview what a new ``stake`` on ``side`` would receive if that side wins.

    Works on running markets: the stake is added to the pool and to its side
    before applying the same fee and floor rules used at settlement.
    """

    if stake <= 0:
        raise ValueError("stake must be positive")
    side = Side(side)
    pool = market.pool + stake
    distributable = pool - compute_fee(pool, market.fee_bps)
    side_total = (market.total_true_stake if side is Side.YES else market.total_false_stake) + stake
    return PayoutQuote(side=side, stake=stake, potential_payout=stake * distributable // side_total)


def _require_resolved(market: Market) -> None:
    if not market.resolved:
        raise InvalidState(f"Market {market.market_id} is not resolved")


__all__ = [
    "compute_distributable",
    "compute_entitlement",
    "compute_fee",
    "is_winner",
    "quote_payout",
    "ticket_pnl",
    "winners_total",
    "winning_side",
]
