from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime, timezone
from decimal import InvalidOperation
from typing import Any

from dateutil import parser as date_parser

from claimdesk.domain import (
    BookkeepingMarket,
    BookkeepingRecord,
    LedgerState,
    Market,
    Side,
    StakeTicket,
)
from claimdesk.domain.units import DEFAULT_DECIMALS, to_base_units


def _as_list(value: Any) -> list[Any]:
    """Return value as a list when possible, decoding JSON strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


def _parse_side(value: Any) -> Side | None:
    if value is None:
        return None
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"yes", "true", "1"}:
            return Side.YES
        if lowered in {"no", "false", "0"}:
            return Side.NO
        return None
    return Side.YES if int(value) == 1 else Side.NO


def _parse_amount(value: Any, decimals: int) -> int | None:
    if value is None or value == "":
        return None
    try:
        return to_base_units(value, decimals)
    except (InvalidOperation, ValueError):
        return None


def _parse_end_time(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    try:
        parsed = date_parser.isoparse(str(value))
    except (ValueError, TypeError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def normalize_bet(raw_bet: dict[str, Any], *, decimals: int = DEFAULT_DECIMALS) -> BookkeepingRecord:
    """Normalize one bookkeeping bet; amounts arrive as decimal token values."""

    raw_ticket = raw_bet.get("ticket_id", raw_bet.get("ticketId"))
    if raw_ticket is None:
        raise ValueError("bookkeeping bet is missing ticket_id")
    campaign = raw_bet.get("campaign_address") or raw_bet.get("campaignAddress") or ""
    return BookkeepingRecord(
        ticket_id=int(raw_ticket),
        campaign_address=str(campaign),
        side=_parse_side(raw_bet.get("side")),
        stake=_parse_amount(raw_bet.get("stake"), decimals),
        claimed=_parse_bool(raw_bet.get("claimed", False)),
        payout=_parse_amount(raw_bet.get("payout"), decimals),
    )


def normalize_bets(
    payload: Any, campaign_address: str, *, decimals: int = DEFAULT_DECIMALS
) -> list[BookkeepingRecord]:
    """Return the bets of ``payload`` that belong to ``campaign_address``."""

    if isinstance(payload, dict):
        raw_bets = _as_list(payload.get("bets") or payload.get("data"))
    else:
        raw_bets = _as_list(payload)

    target = campaign_address.lower()
    records: list[BookkeepingRecord] = []
    for raw_bet in raw_bets:
        if not isinstance(raw_bet, dict):
            continue
        record = normalize_bet(raw_bet, decimals=decimals)
        if record.campaign_address.lower() == target:
            records.append(record)
    return records


def normalize_bookkeeping_market(raw_market: dict[str, Any]) -> BookkeepingMarket:
    campaign = raw_market.get("campaign_address") or raw_market.get("campaignAddress")
    if not campaign:
        raise ValueError("bookkeeping market is missing campaign_address")
    raw_outcome = raw_market.get("outcome_true", raw_market.get("outcomeTrue"))
    resolved = _parse_bool(raw_market.get("resolved", False))
    return BookkeepingMarket(
        market_id=str(raw_market.get("id") or raw_market.get("market_id") or campaign),
        campaign_address=str(campaign),
        end_time=_parse_end_time(raw_market.get("end_time") or raw_market.get("endTime")),
        resolved=resolved,
        outcome_true=_parse_bool(raw_outcome) if resolved and raw_outcome is not None else None,
        name=raw_market.get("name"),
    )


def normalize_ledger_market(
    campaign_address: str,
    *,
    state: int,
    outcome_true: bool,
    total_true: int,
    total_false: int,
    total_initial_pot: int,
    fee_bps: int,
) -> Market:
    return Market(
        market_id=campaign_address,
        resolved=LedgerState(int(state)) is LedgerState.RESOLVED,
        outcome_true=bool(outcome_true),
        total_true_stake=int(total_true),
        total_false_stake=int(total_false),
        total_initial_pot=int(total_initial_pot),
        fee_bps=int(fee_bps),
    )


def normalize_ledger_ticket(ticket_id: int, raw_ticket: Sequence[Any] | dict[str, Any]) -> StakeTicket:
    """Build a ticket from the ``tickets(id)`` getter output ``(side, stake, claimed)``."""

    if isinstance(raw_ticket, dict):
        side, stake, claimed = raw_ticket["side"], raw_ticket["stake"], raw_ticket["claimed"]
    else:
        side, stake, claimed = raw_ticket[0], raw_ticket[1], raw_ticket[2]
    return StakeTicket(
        ticket_id=int(ticket_id),
        side=Side(int(side)),
        stake_amount=int(stake),
        claimed=bool(claimed),
    )
