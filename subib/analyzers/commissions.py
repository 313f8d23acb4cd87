"""
Commission history and per-country breakdown over registration records.

Dates are bucketed by UTC calendar day. A week starts on Monday.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from subib.analyzers.eligibility import Registration
from subib.config import RulesConfig
from subib.parsers.values import MS_PER_DAY, millis_to_datetime, now_millis

LEADER_MIN_REGISTRATIONS = 3
LEADER_LIMIT = 5


# ---------------------------------------------------------------------------
# Commission history
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommissionEntry:
    registration: Registration
    date: str  # YYYY-MM-DD
    commission: float


@dataclass(frozen=True)
class CommissionHistory:
    total: float = 0.0
    this_month: float = 0.0
    last_7_days: float = 0.0
    this_week: float = 0.0
    entries: list[CommissionEntry] = field(default_factory=list)
    chart: list[dict[str, Any]] = field(default_factory=list)  # [{"date", "commission"}] ascending


def _sort_value(entry: CommissionEntry, sort_by: str) -> Any:
    if sort_by in ("date", "commission"):
        return getattr(entry, sort_by)
    return getattr(entry.registration, sort_by, None)


def _sort_entries(entries: list[CommissionEntry], sort_by: str, descending: bool) -> list[CommissionEntry]:
    values = [_sort_value(e, sort_by) for e in entries]
    if all(isinstance(v, str) for v in values) or all(
        isinstance(v, (int, float)) and not isinstance(v, bool) for v in values
    ):
        return sorted(entries, key=lambda e: _sort_value(e, sort_by), reverse=descending)
    # Mixed or missing values: leave the input order alone
    return entries


def commission_history(
    registrations: list[Registration],
    now: Optional[int] = None,
    sort_by: Optional[str] = None,
    descending: bool = False,
) -> CommissionHistory:
    """Commission earned over time.

    Only records with a positive commission and a qualification (or creation)
    date take part.
    """
    now = now if now is not None else now_millis()
    now_dt = millis_to_datetime(now)
    week_start = (now_dt - timedelta(days=now_dt.weekday())).date()
    week_end = week_start + timedelta(days=7)
    last_7_cutoff = now - 7 * MS_PER_DAY

    total = this_month = last_7 = this_week = 0.0
    by_day: dict[str, float] = defaultdict(float)
    entries: list[CommissionEntry] = []

    for reg in registrations:
        when = reg.qualification_date if reg.qualification_date is not None else reg.created_at
        if when is None or reg.commission <= 0:
            continue

        dt = millis_to_datetime(when)
        day = dt.strftime("%Y-%m-%d")
        amount = reg.commission

        total += amount
        if (dt.year, dt.month) == (now_dt.year, now_dt.month):
            this_month += amount
        if when > last_7_cutoff:
            last_7 += amount
        if week_start <= dt.date() < week_end:
            this_week += amount

        by_day[day] += amount
        entries.append(CommissionEntry(registration=reg, date=day, commission=amount))

    if sort_by:
        entries = _sort_entries(entries, sort_by, descending)

    return CommissionHistory(
        total=total,
        this_month=this_month,
        last_7_days=last_7,
        this_week=this_week,
        entries=entries,
        chart=[{"date": d, "commission": by_day[d]} for d in sorted(by_day)],
    )


# ---------------------------------------------------------------------------
# Country breakdown
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CountryStats:
    country: str
    commission: float = 0.0
    registrations: int = 0
    cpas: int = 0  # registrations reaching the minimum deposit

    @property
    def conversion_rate(self) -> float:
        return self.cpas / self.registrations * 100 if self.registrations > 0 else 0.0


@dataclass(frozen=True)
class CountryBreakdown:
    total_commission: float
    countries: list[CountryStats]  # by commission, highest first
    conversion_leaders: list[CountryStats]


def country_breakdown(
    registrations: list[Registration],
    rules: Optional[RulesConfig] = None,
) -> CountryBreakdown:
    rules = rules or RulesConfig()
    acc: dict[str, dict[str, float]] = {}

    for reg in registrations:
        country = (reg.country or "").strip() or "Unknown"
        stats = acc.setdefault(country, {"commission": 0.0, "registrations": 0, "cpas": 0})
        stats["commission"] += reg.commission
        stats["registrations"] += 1
        if reg.net_deposits >= rules.min_deposit:
            stats["cpas"] += 1

    countries = [
        CountryStats(
            country=name,
            commission=s["commission"],
            registrations=int(s["registrations"]),
            cpas=int(s["cpas"]),
        )
        for name, s in acc.items()
    ]
    leaders = sorted(
        (c for c in countries if c.registrations >= LEADER_MIN_REGISTRATIONS),
        key=lambda c: c.conversion_rate,
        reverse=True,
    )[:LEADER_LIMIT]

    return CountryBreakdown(
        total_commission=sum(c.commission for c in countries),
        countries=sorted(countries, key=lambda c: c.commission, reverse=True),
        conversion_leaders=leaders,
    )
