"""
Journal aggregation: fold a month of snapshots into day buckets.

Pipeline:
1. fetch_month_snapshots(): page through the snapshot source newest-first,
   at most MAX_PAGES pages of PAGE_SIZE, stopping early on a short page or
   once a page reaches back before the month start
2. build_daily_journal(): bucket each client's registration, first deposit,
   last deposit and last trade into UTC calendar days
3. compute_monthly_totals(): roll the day buckets up into month figures

Equity is a point-in-time value. It lands on the day of the client's first
known activity date and is counted once per snapshot the client appears in.
"""

from __future__ import annotations

import asyncio
import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional, Protocol, Union

from subib.config import JournalConfig
from subib.parsers.client_sheet import RetailClient
from subib.parsers.snapshot_builder import Snapshot, flatten_clients
from subib.parsers.values import millis_to_datetime

logger = logging.getLogger(__name__)

PAGE_SIZE = 50
MAX_PAGES = 10

MonthLike = Union[date, datetime, tuple[int, int]]


class SnapshotSource(Protocol):
    """Paginated snapshot feed, newest first. Pages are 1-based."""

    async def fetch(self, page: int, limit: int) -> dict[str, Any]:
        """Return ``{"snapshots": [Snapshot, ...]}``; fewer than ``limit`` means no more data."""
        ...


@dataclass
class DepositEvent:
    client: RetailClient
    amount: float
    currency: str


@dataclass
class TradeEvent:
    client: RetailClient
    volume: float
    symbol: str


@dataclass
class DayBucket:
    date: str  # YYYY-MM-DD (UTC)
    new_users: list[RetailClient] = field(default_factory=list)
    first_deposits: list[RetailClient] = field(default_factory=list)
    deposits: list[DepositEvent] = field(default_factory=list)
    trading_activity: list[TradeEvent] = field(default_factory=list)
    total_equity: float = 0.0
    total_deposits: float = 0.0
    total_volume: float = 0.0

    @property
    def is_active(self) -> bool:
        return bool(self.new_users or self.deposits or self.trading_activity)


@dataclass
class MonthlyTotals:
    total_equity: float = 0.0
    total_deposits: float = 0.0
    total_volume: float = 0.0
    new_users: int = 0
    active_days: int = 0
    total_clients: int = 0


@dataclass
class JournalReport:
    month_start: int
    month_end: int
    snapshots: list[Snapshot]
    days: list[DayBucket]
    totals: MonthlyTotals


# ---------------------------------------------------------------------------
# Month window
# ---------------------------------------------------------------------------


def month_bounds(month: MonthLike) -> tuple[int, int]:
    """First and last millisecond (inclusive, UTC) of the month containing ``month``."""
    if isinstance(month, tuple):
        year, mon = month
    else:
        year, mon = month.year, month.month
    if not 1 <= mon <= 12:
        raise ValueError(f"Invalid month: {mon}")

    start = datetime(year, mon, 1, tzinfo=timezone.utc)
    last_day = calendar.monthrange(year, mon)[1]
    end = datetime(year, mon, last_day, 23, 59, 59, 999000, tzinfo=timezone.utc)
    return round(start.timestamp() * 1000), round(end.timestamp() * 1000)


def _in_month(millis: Optional[int], start: int, end: int) -> bool:
    return millis is not None and start <= millis <= end


def _day_key(millis: int) -> str:
    return millis_to_datetime(millis).strftime("%Y-%m-%d")


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


async def fetch_month_snapshots(source: SnapshotSource, month: MonthLike) -> list[Snapshot]:
    """Collect the snapshots captured within ``month``.

    Pages are requested strictly one after another. Cancelling the caller
    cancels the in-flight fetch; nothing collected so far is returned.
    """
    start, end = month_bounds(month)
    collected: list[Snapshot] = []

    page = 1
    while page <= MAX_PAGES:
        try:
            response = await source.fetch(page, PAGE_SIZE)
        except asyncio.CancelledError:
            logger.info("[Journal] Cancelled while fetching page %d", page)
            raise

        snapshots: list[Snapshot] = list(response.get("snapshots") or [])
        collected.extend(snapshots)
        logger.debug("[Journal] Page %d: %d snapshots", page, len(snapshots))

        if len(snapshots) < PAGE_SIZE:
            break
        if snapshots[-1].timestamp < start:
            logger.debug("[Journal] Page %d reaches before month start, stopping", page)
            break
        page += 1
    else:
        logger.info("[Journal] Stopped at the %d-page cap", MAX_PAGES)

    in_month = [s for s in collected if start <= s.timestamp <= end]
    logger.info(
        "[Journal] %d of %d fetched snapshots fall in %s",
        len(in_month), len(collected), _day_key(start)[:7],
    )
    return in_month


# ---------------------------------------------------------------------------
# Folding
# ---------------------------------------------------------------------------


def _snapshot_clients(snapshot: Snapshot, owner_name: Optional[str]) -> list[RetailClient]:
    clients = flatten_clients(snapshot)
    if owner_name:
        clients = [c for c in clients if c.owner_name == owner_name]
    return clients


def build_daily_journal(
    snapshots: list[Snapshot],
    month: MonthLike,
    owner_name: Optional[str] = None,
) -> list[DayBucket]:
    """Day buckets for the month, ascending by date. Days with no events are omitted."""
    start, end = month_bounds(month)
    days: dict[str, DayBucket] = {}

    def bucket(millis: int) -> DayBucket:
        key = _day_key(millis)
        if key not in days:
            days[key] = DayBucket(date=key)
        return days[key]

    for snapshot in snapshots:
        for client in _snapshot_clients(snapshot, owner_name):
            if client.register_date and _in_month(client.register_date, start, end):
                bucket(client.register_date).new_users.append(client)

            if client.first_deposit_date and _in_month(client.first_deposit_date, start, end):
                bucket(client.first_deposit_date).first_deposits.append(client)

            if client.last_deposit_time and client.last_deposit_amount:
                if _in_month(client.last_deposit_time, start, end):
                    day = bucket(client.last_deposit_time)
                    day.deposits.append(DepositEvent(
                        client=client,
                        amount=client.last_deposit_amount,
                        currency=client.last_deposit_currency or "USD",
                    ))
                    day.total_deposits += client.last_deposit_amount

            if client.last_trade_time and client.last_trade_volume:
                if _in_month(client.last_trade_time, start, end):
                    day = bucket(client.last_trade_time)
                    day.trading_activity.append(TradeEvent(
                        client=client,
                        volume=client.last_trade_volume,
                        symbol=client.last_trade_symbol or "N/A",
                    ))
                    day.total_volume += client.last_trade_volume

            activity = (
                client.register_date
                or client.first_deposit_date
                or client.last_deposit_time
                or client.last_trade_time
            )
            if activity and _in_month(activity, start, end):
                bucket(activity).total_equity += client.equity

    return [days[k] for k in sorted(days)]


def compute_monthly_totals(days: list[DayBucket], snapshots: list[Snapshot]) -> MonthlyTotals:
    totals = MonthlyTotals(
        total_clients=sum(s.metadata.total_retail_clients for s in snapshots),
    )
    for day in days:
        totals.total_equity += day.total_equity
        totals.total_deposits += day.total_deposits
        totals.total_volume += day.total_volume
        totals.new_users += len(day.new_users)
        if day.is_active:
            totals.active_days += 1
    return totals


async def load_journal(
    source: SnapshotSource,
    month: MonthLike,
    config: Optional[JournalConfig] = None,
) -> JournalReport:
    """Fetch, filter and fold one month of snapshots."""
    config = config or JournalConfig()
    start, end = month_bounds(month)

    snapshots = await fetch_month_snapshots(source, month)
    days = build_daily_journal(snapshots, month, owner_name=config.owner_name)
    totals = compute_monthly_totals(days, snapshots)

    logger.info(
        "[Journal] %d active days, %d new users, deposits %.2f",
        totals.active_days, totals.new_users, totals.total_deposits,
    )
    return JournalReport(month_start=start, month_end=end, snapshots=snapshots, days=days, totals=totals)
