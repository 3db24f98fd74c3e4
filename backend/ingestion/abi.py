"""Subset of the BetCampaign contract ABI used by the claim engine."""

from __future__ import annotations


def _view(name: str, output_type: str) -> dict:
    return {
        "name": name,
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": output_type}],
    }


BET_CAMPAIGN_ABI: list[dict] = [
    _view("state", "uint8"),
    _view("outcomeTrue", "bool"),
    _view("totalTrue", "uint256"),
    _view("totalFalse", "uint256"),
    _view("totalInitialPot", "uint256"),
    _view("feeBps", "uint256"),
    {
        "name": "tickets",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "ticketId", "type": "uint256"}],
        "outputs": [
            {"name": "side", "type": "uint8"},
            {"name": "stake", "type": "uint256"},
            {"name": "claimed", "type": "bool"},
        ],
    },
    {
        "name": "claim",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "ticketId", "type": "uint256"}],
        "outputs": [],
    },
]
