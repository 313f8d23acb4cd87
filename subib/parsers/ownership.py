"""
Ownership aggregation: group RetailClient records into Sub-IB summaries.

Grouping is by exact owner-name string. "Jane Doe" and "jane doe" are two
different Sub-IBs; owner names are not normalised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from subib.parsers.client_sheet import ClientSheetParser, RetailClient, WorkbookSource, load_clients
from subib.parsers.values import cell_text, parse_int, parse_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubIB:
    """Aggregate over every client sharing one owner name."""

    owner_name: str
    client_count: int = 0
    total_balance: float = 0.0
    total_equity: float = 0.0
    total_deposits: float = 0.0  # sum of strictly positive last deposits
    deposit_count: int = 0
    average_balance: float = 0.0
    average_equity: float = 0.0
    average_deposit: float = 0.0
    clients: tuple[RetailClient, ...] = field(default_factory=tuple)

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "SubIB":
        """Build a Sub-IB from a snapshot API ``sub_ibs`` entry.

        When the entry carries its clients the totals are recomputed from them;
        otherwise the API's own figures are kept.
        """
        owner_name = cell_text(raw.get("ownerName")) or "Unknown"
        clients = [RetailClient.from_api(c, owner_name) for c in raw.get("clients") or []]
        if clients:
            return summarize_owner(owner_name, clients)
        return cls(
            owner_name=owner_name,
            client_count=parse_int(raw.get("clientCount")),
            total_balance=parse_number(raw.get("totalBalance")),
            total_equity=parse_number(raw.get("totalEquity")),
            total_deposits=parse_number(raw.get("totalDeposits")),
            deposit_count=parse_int(raw.get("depositCount")),
            average_balance=parse_number(raw.get("averageBalance")),
            average_equity=parse_number(raw.get("averageEquity")),
            average_deposit=parse_number(raw.get("averageDeposit")),
        )


def summarize_owner(owner_name: str, clients: list[RetailClient]) -> SubIB:
    """Totals and averages for one owner's clients."""
    client_count = len(clients)
    total_balance = sum(c.account_balance for c in clients)
    total_equity = sum(c.equity for c in clients)

    deposits = [
        c.last_deposit_amount
        for c in clients
        if c.last_deposit_amount is not None and c.last_deposit_amount > 0
    ]
    total_deposits = sum(deposits)

    def average(total: float) -> float:
        return total / client_count if client_count > 0 else 0.0

    return SubIB(
        owner_name=owner_name,
        client_count=client_count,
        total_balance=total_balance,
        total_equity=total_equity,
        total_deposits=total_deposits,
        deposit_count=len(deposits),
        average_balance=average(total_balance),
        average_equity=average(total_equity),
        average_deposit=average(total_deposits),
        clients=tuple(clients),
    )


def group_by_owner(clients: list[RetailClient]) -> list[SubIB]:
    """Group clients by owner name, in order of each owner's first appearance."""
    groups: dict[str, list[RetailClient]] = {}
    for client in clients:
        groups.setdefault(client.owner_name, []).append(client)

    sub_ibs = [summarize_owner(owner, owned) for owner, owned in groups.items()]
    logger.info("[Ownership] %d clients grouped into %d Sub-IBs", len(clients), len(sub_ibs))
    return sub_ibs


def parse_sub_ibs(source: WorkbookSource) -> list[SubIB]:
    """Spreadsheet file or bytes -> Sub-IB summaries (synchronous)."""
    return group_by_owner(ClientSheetParser().parse_file(source))


async def load_sub_ibs(source: WorkbookSource) -> list[SubIB]:
    """Spreadsheet file or bytes -> Sub-IB summaries; the file read runs off-loop."""
    return group_by_owner(await load_clients(source))
