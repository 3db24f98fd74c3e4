"""In-memory view of one user's stake tickets in one market."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import replace

from claimdesk.domain import StakeTicket


class TicketStore:
    """Hold ledger snapshots of a user's tickets keyed by ticket id.

    Tickets are immutable snapshots. The only mutation is the one-way flip of
    ``claimed`` once a claim has been confirmed; a later snapshot that still
    reports the ticket unclaimed never reverts it.
    """

    def __init__(self, market_id: str, tickets: Iterable[StakeTicket] = ()) -> None:
        self.market_id = market_id
        self._tickets: dict[int, StakeTicket] = {}
        for ticket in tickets:
            self.put(ticket)

    def put(self, ticket: StakeTicket) -> StakeTicket:
        existing = self._tickets.get(ticket.ticket_id)
        if existing is not None and existing.claimed and not ticket.claimed:
            ticket = replace(ticket, claimed=True)
        self._tickets[ticket.ticket_id] = ticket
        return ticket

    def get(self, ticket_id: int) -> StakeTicket:
        try:
            return self._tickets[ticket_id]
        except KeyError as exc:
            raise KeyError(f"Ticket #{ticket_id} is not held in market {self.market_id}") from exc

    def mark_claimed(self, ticket_id: int) -> StakeTicket:
        ticket = self.get(ticket_id)
        if ticket.claimed:
            return ticket
        claimed = replace(ticket, claimed=True)
        self._tickets[ticket_id] = claimed
        return claimed

    def unclaimed(self) -> list[StakeTicket]:
        return [ticket for ticket in self if not ticket.claimed]

    def __contains__(self, ticket_id: object) -> bool:
        return ticket_id in self._tickets

    def __iter__(self) -> Iterator[StakeTicket]:
        return iter(sorted(self._tickets.values(), key=lambda ticket: ticket.ticket_id))

    def __len__(self) -> int:
        return len(self._tickets)
