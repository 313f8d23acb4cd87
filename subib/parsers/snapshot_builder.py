"""
Snapshot assembly.

A Snapshot is an immutable capture of accounts, per-account client results and
Sub-IB aggregates at one instant. Snapshots come from two places:

1. A spreadsheet import: ``assemble_snapshot(group_by_owner(clients))``
2. The snapshot API: ``snapshot_from_api(payload)``, accepting either the
   unified structure (``accounts`` + ``sub_ibs[].clients``) or the legacy one
   (``VantageAccounts`` + ``VantageRetailHeaders[].VantageRetailClients``)

``metadata`` indices are views over the same client/account objects, not copies.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping, Optional

from subib.parsers.client_sheet import ClientSheetParser, RetailClient, WorkbookSource, load_clients
from subib.parsers.ownership import SubIB, group_by_owner
from subib.parsers.values import (
    cell_text,
    millis_to_datetime,
    now_millis,
    parse_epoch_millis,
    parse_int,
    parse_number,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Account:
    """Owner trading account as reported by the broker back office."""

    id: int
    user_id: int
    login: int
    currency: str = "USD"
    balance: float = 0.0
    equity: float = 0.0
    credit: float = 0.0
    commission: float = 0.0
    profit: float = 0.0
    margin_level: float = 0.0
    account_deal_type: Optional[int] = None
    data_source_id: int = 0
    mt_account_type: int = 0
    approved_time: Optional[int] = None
    has_negative_balance_no_position: bool = False

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "Account":
        deal_type = raw.get("accountDealType")
        return cls(
            id=parse_int(raw.get("vantage_id", raw.get("id"))),
            user_id=parse_int(raw.get("userId")),
            login=parse_int(raw.get("login")),
            currency=(cell_text(raw.get("currency")) or "USD").upper(),
            balance=parse_number(raw.get("balance")),
            equity=parse_number(raw.get("equity")),
            credit=parse_number(raw.get("credit")),
            commission=parse_number(raw.get("commission")),
            profit=parse_number(raw.get("profit")),
            margin_level=parse_number(raw.get("marginLevel")),
            account_deal_type=parse_int(deal_type) if deal_type else None,
            data_source_id=parse_int(raw.get("dataSourceId")),
            mt_account_type=parse_int(raw.get("mtAccountType")),
            approved_time=parse_epoch_millis(raw.get("approvedTime")),
            has_negative_balance_no_position=bool(raw.get("hasNegativeBalanceNoPosition")),
        )


@dataclass(frozen=True)
class RetailResult:
    """Clients reported under one owner account. ``login`` is 0 for Sub-IB aggregates."""

    login: int
    owner_name: Optional[str]
    clients: tuple[RetailClient, ...] = field(default_factory=tuple)
    code: int = 0
    msg: Optional[str] = None
    errmsg: Optional[str] = None


@dataclass(frozen=True)
class SnapshotMetadata:
    total_accounts: int
    total_retail_clients: int
    accounts_by_user_id: Mapping[int, tuple[Account, ...]]
    clients_by_owner: Mapping[str, tuple[RetailClient, ...]]


@dataclass(frozen=True)
class Snapshot:
    id: str
    timestamp: int  # epoch millis
    scraped_at: str  # ISO-8601
    accounts: tuple[Account, ...]
    retail_results: tuple[RetailResult, ...]
    sub_ibs: tuple[SubIB, ...]
    all_clients: Optional[tuple[RetailClient, ...]]
    metadata: SnapshotMetadata

    @property
    def captured_at(self) -> datetime:
        return millis_to_datetime(self.timestamp)


# ---------------------------------------------------------------------------
# Index helpers
# ---------------------------------------------------------------------------


def _index_accounts(accounts: tuple[Account, ...]) -> Mapping[int, tuple[Account, ...]]:
    groups: dict[int, list[Account]] = {}
    for account in accounts:
        groups.setdefault(account.user_id, []).append(account)
    return MappingProxyType({k: tuple(v) for k, v in groups.items()})


def _index_clients(clients: list[RetailClient]) -> Mapping[str, tuple[RetailClient, ...]]:
    groups: dict[str, list[RetailClient]] = {}
    for client in clients:
        groups.setdefault(client.owner_name, []).append(client)
    return MappingProxyType({k: tuple(v) for k, v in groups.items()})


def _iso(millis: int) -> str:
    return millis_to_datetime(millis).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def assemble_snapshot(
    sub_ibs: list[SubIB],
    accounts: tuple[Account, ...] | list[Account] = (),
    *,
    timestamp: Optional[int] = None,
    prefix: str = "excel",
    snapshot_id: Optional[str] = None,
) -> Snapshot:
    """Wrap Sub-IB aggregates (and any owner accounts) into a Snapshot.

    One retail result per Sub-IB with ``login = 0``. The id is the prefix and the
    capture timestamp plus a short random suffix, so two snapshots assembled in the
    same millisecond still get distinct ids.
    """
    ts = timestamp if timestamp is not None else now_millis()
    accounts = tuple(accounts)

    retail_results = tuple(
        RetailResult(login=0, owner_name=s.owner_name, clients=s.clients) for s in sub_ibs
    )
    all_clients = tuple(c for s in sub_ibs for c in s.clients)

    snapshot = Snapshot(
        id=snapshot_id or f"{prefix}_{ts}_{uuid.uuid4().hex[:6]}",
        timestamp=ts,
        scraped_at=_iso(ts),
        accounts=accounts,
        retail_results=retail_results,
        sub_ibs=tuple(sub_ibs),
        all_clients=all_clients,
        metadata=SnapshotMetadata(
            total_accounts=len(accounts),
            total_retail_clients=len(all_clients),
            accounts_by_user_id=_index_accounts(accounts),
            clients_by_owner=_index_clients(list(all_clients)),
        ),
    )
    logger.info(
        "[Snapshot] Assembled %s: %d Sub-IBs, %d clients",
        snapshot.id, len(snapshot.sub_ibs), len(all_clients),
    )
    return snapshot


def import_workbook(source: WorkbookSource, *, timestamp: Optional[int] = None) -> Snapshot:
    """Spreadsheet -> Snapshot in one call (synchronous)."""
    clients = ClientSheetParser().parse_file(source)
    return assemble_snapshot(group_by_owner(clients), timestamp=timestamp)


async def load_workbook_snapshot(source: WorkbookSource, *, timestamp: Optional[int] = None) -> Snapshot:
    """Spreadsheet -> Snapshot; only the file read is awaited."""
    clients = await load_clients(source)
    return assemble_snapshot(group_by_owner(clients), timestamp=timestamp)


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


def _legacy_retail_results(headers: list[dict[str, Any]]) -> list[RetailResult]:
    """Merge legacy retail headers by account login, keeping first-seen order."""
    merged: dict[int, dict[str, Any]] = {}
    for header in headers:
        login = parse_int(header.get("account_login"))
        owner = cell_text(header.get("ownerName"))
        clients = [RetailClient.from_api(c, owner) for c in header.get("VantageRetailClients") or []]
        if login not in merged:
            merged[login] = {
                "owner_name": owner,
                "clients": clients,
                "code": parse_int(header.get("code")),
                "msg": cell_text(header.get("msg")),
                "errmsg": cell_text(header.get("errmsg")),
            }
        else:
            merged[login]["clients"].extend(clients)

    return [
        RetailResult(
            login=login,
            owner_name=entry["owner_name"],
            clients=tuple(entry["clients"]),
            code=entry["code"],
            msg=entry["msg"],
            errmsg=entry["errmsg"],
        )
        for login, entry in merged.items()
    ]


def _unified_retail_results(raw_results: list[dict[str, Any]]) -> list[RetailResult]:
    results = []
    for raw in raw_results:
        owner = cell_text(raw.get("ownerName"))
        retail = raw.get("retail") or {}
        results.append(RetailResult(
            login=parse_int(raw.get("login")),
            owner_name=owner,
            clients=tuple(RetailClient.from_api(c, owner) for c in retail.get("data") or []),
            code=parse_int(retail.get("code")),
            msg=cell_text(retail.get("msg")),
            errmsg=cell_text(retail.get("errmsg")),
        ))
    return results


def snapshot_from_api(payload: dict[str, Any]) -> Snapshot:
    """Build a Snapshot from one snapshot API record (unified or legacy shape)."""
    ts = parse_epoch_millis(payload.get("timestamp")) or now_millis()

    if "VantageAccounts" in payload or "VantageRetailHeaders" in payload:
        raw_accounts = payload.get("VantageAccounts") or []
        retail_results = _legacy_retail_results(payload.get("VantageRetailHeaders") or [])
        sub_ibs: list[SubIB] = []
    else:
        raw_accounts = payload.get("accounts") or []
        retail_results = _unified_retail_results(
            payload.get("retailResults") or payload.get("retail_results") or []
        )
        sub_ibs = [SubIB.from_api(s) for s in payload.get("sub_ibs") or payload.get("subIBs") or []]

    raw_all = payload.get("all_clients") or payload.get("allClients")
    all_clients = tuple(RetailClient.from_api(c) for c in raw_all) if raw_all else None

    accounts = tuple(Account.from_api(a) for a in raw_accounts)
    snapshot = Snapshot(
        id=cell_text(payload.get("id")) or f"api_{ts}",
        timestamp=ts,
        scraped_at=cell_text(payload.get("scraped_at") or payload.get("scrapedAt")) or _iso(ts),
        accounts=accounts,
        retail_results=tuple(retail_results),
        sub_ibs=tuple(sub_ibs),
        all_clients=all_clients,
        metadata=SnapshotMetadata(
            total_accounts=0,
            total_retail_clients=0,
            accounts_by_user_id=_index_accounts(accounts),
            clients_by_owner=MappingProxyType({}),
        ),
    )

    clients = flatten_clients(snapshot)
    reported_accounts = parse_int(payload.get("total_accounts"))
    reported_clients = parse_int(payload.get("total_retail_clients"))
    metadata = SnapshotMetadata(
        total_accounts=reported_accounts or len(accounts),
        total_retail_clients=reported_clients or len(clients),
        accounts_by_user_id=snapshot.metadata.accounts_by_user_id,
        clients_by_owner=_index_clients(clients),
    )
    return replace(snapshot, metadata=metadata)


# ---------------------------------------------------------------------------
# Client extraction
# ---------------------------------------------------------------------------


def _with_owner(client: RetailClient, owner_name: Optional[str]) -> RetailClient:
    if client.owner_name and client.owner_name != "Unknown":
        return client
    if not owner_name:
        return client
    return replace(client, owner_name=owner_name)


def flatten_clients(snapshot: Snapshot) -> list[RetailClient]:
    """Every client row in a snapshot, each with an owner name. No deduplication.

    Sources, first non-empty wins: Sub-IB client lists, then ``all_clients``, then
    the per-account retail results.
    """
    clients: list[RetailClient] = [
        _with_owner(c, s.owner_name) for s in snapshot.sub_ibs for c in s.clients
    ]
    if not clients and snapshot.all_clients:
        clients = list(snapshot.all_clients)
    if not clients:
        clients = [
            _with_owner(c, r.owner_name) for r in snapshot.retail_results for c in r.clients
        ]
    return clients


def extract_all_clients(snapshot: Snapshot) -> list[RetailClient]:
    """Clients of ``flatten_clients`` deduplicated by user id, first occurrence kept."""
    seen: set[int] = set()
    unique: list[RetailClient] = []
    for client in flatten_clients(snapshot):
        if client.user_id in seen:
            continue
        seen.add(client.user_id)
        unique.append(client)
    return unique


def clients_by_owner(snapshot: Snapshot) -> dict[str, list[RetailClient]]:
    groups: dict[str, list[RetailClient]] = {}
    for client in flatten_clients(snapshot):
        groups.setdefault(client.owner_name, []).append(client)
    return groups


def find_client(snapshot: Snapshot, user_id: int) -> Optional[RetailClient]:
    for client in extract_all_clients(snapshot):
        if client.user_id == user_id:
            return client
    return None
