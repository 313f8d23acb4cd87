"""
Commission eligibility and payout status for referral registrations.

Every figure here is a pure function of the registration fields, the business
rules and ``now``. Nothing is cached between evaluations, so a record whose
deposits or dates change upstream is simply re-evaluated on the next call.

Qualification axis (per registration):
    below threshold    net_deposits < min_deposit
    early withdrawal   first deposit within hold_days of registration
    eligible           neither of the above

Payout axis (independent of qualification):
    paid               a payment exists for the record's ce_user_id
    available          qualified at least hold_days ago
    pending            no qualification date yet, or still inside the hold window
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from subib.config import RulesConfig
from subib.parsers.values import (
    MS_PER_DAY,
    cell_text,
    now_millis,
    parse_epoch_millis,
    parse_number,
)

logger = logging.getLogger(__name__)

PAYOUT_PAID = "paid"
PAYOUT_AVAILABLE = "available"
PAYOUT_PENDING = "pending"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Registration:
    """One referred user's financial record, as delivered by the affiliate backend."""

    ce_user_id: Optional[str] = None
    customer_name: Optional[str] = None
    net_deposits: float = 0.0
    commission: float = 0.0
    volume: float = 0.0
    country: Optional[str] = None
    registration_date: Optional[int] = None  # epoch millis
    first_deposit_date: Optional[int] = None
    qualification_date: Optional[int] = None
    created_at: Optional[int] = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Registration":
        return cls(
            ce_user_id=cell_text(raw.get("ce_user_id")),
            customer_name=cell_text(raw.get("customer_name")),
            net_deposits=parse_number(raw.get("net_deposits")),
            commission=parse_number(raw.get("commission")),
            volume=parse_number(raw.get("volume")),
            country=cell_text(raw.get("country")),
            registration_date=parse_epoch_millis(raw.get("registration_date")),
            first_deposit_date=parse_epoch_millis(raw.get("first_deposit_date")),
            qualification_date=parse_epoch_millis(raw.get("qualification_date")),
            created_at=parse_epoch_millis(raw.get("createdAt", raw.get("created_at"))),
        )


@dataclass(frozen=True)
class Payment:
    ce_user_id: Optional[str]
    amount: float = 0.0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Payment":
        return cls(ce_user_id=cell_text(raw.get("ce_user_id")), amount=parse_number(raw.get("amount")))


@dataclass(frozen=True)
class RegistrationStatus:
    registration: Registration
    commission: float
    eligible: bool
    below_threshold: bool
    early_withdrawal: bool
    amount_needed: float  # 0 unless below threshold and not an early withdrawal
    paid: bool
    payout_state: str
    days_until_payment: Optional[int]  # None: no qualification date yet, 0: ready


@dataclass(frozen=True)
class WeeklyBonus:
    paid_count: int
    unpaid_count: int
    total_registrations: int
    bonus_threshold: int
    bonus_amount: float
    progress_percentage: float
    new_registrations_this_week: int


@dataclass(frozen=True)
class EligibilitySummary:
    total_users: int = 0
    eligible_users: int = 0
    below_threshold: int = 0
    total_needed: float = 0.0
    domestic_revenue: float = 0.0
    international_revenue: float = 0.0
    available_to_withdraw: float = 0.0
    pending_qualification: float = 0.0
    total_claimed: float = 0.0
    total_earned: float = 0.0
    next_payout_days: int = 0
    next_payout_amount: float = 0.0
    weekly_bonus: Optional[WeeklyBonus] = None
    statuses: list[RegistrationStatus] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Per-record rules
# ---------------------------------------------------------------------------


def is_early_withdrawal(reg: Registration, hold_days: int) -> bool:
    """First deposit landed within ``hold_days`` of registration (inclusive)."""
    if reg.first_deposit_date is None or reg.registration_date is None:
        return False
    days = (reg.first_deposit_date - reg.registration_date) / MS_PER_DAY
    return days <= hold_days


def payout_deadline(reg: Registration, hold_days: int) -> Optional[int]:
    if reg.qualification_date is None:
        return None
    return reg.qualification_date + hold_days * MS_PER_DAY


def days_until_payment(
    qualification_date: Optional[int],
    now: Optional[int] = None,
    hold_days: int = 30,
) -> Optional[int]:
    """Whole days (rounded up) until a qualified commission can be claimed.

    None when the record has no qualification date; 0 once it is claimable.
    """
    if qualification_date is None:
        return None
    now = now if now is not None else now_millis()
    remaining = math.ceil((qualification_date + hold_days * MS_PER_DAY - now) / MS_PER_DAY)
    return remaining if remaining > 0 else 0


def commission_for(reg: Registration, rules: RulesConfig) -> float:
    """Commission owed for a record: the fixed deal amount when one is configured."""
    if rules.deal_amount is not None:
        return rules.deal_amount
    return reg.commission


def evaluate_registration(
    reg: Registration,
    rules: Optional[RulesConfig] = None,
    now: Optional[int] = None,
    paid: bool = False,
) -> RegistrationStatus:
    rules = rules or RulesConfig()
    now = now if now is not None else now_millis()

    below = reg.net_deposits < rules.min_deposit
    early = is_early_withdrawal(reg, rules.hold_days)
    eligible = not below and not early

    deadline = payout_deadline(reg, rules.hold_days)
    if paid:
        state = PAYOUT_PAID
    elif deadline is not None and now >= deadline:
        state = PAYOUT_AVAILABLE
    else:
        state = PAYOUT_PENDING

    return RegistrationStatus(
        registration=reg,
        commission=commission_for(reg, rules),
        eligible=eligible,
        below_threshold=below,
        early_withdrawal=early,
        amount_needed=rules.min_deposit - reg.net_deposits if below and not early else 0.0,
        paid=paid,
        payout_state=state,
        days_until_payment=days_until_payment(reg.qualification_date, now, rules.hold_days),
    )


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def _paid_user_ids(payments: Iterable[Payment]) -> set[str]:
    return {p.ce_user_id for p in payments if p.ce_user_id}


def weekly_bonus(
    registrations: list[Registration],
    payments: list[Payment],
    rules: Optional[RulesConfig] = None,
    now: Optional[int] = None,
) -> WeeklyBonus:
    """Progress toward the bonus paid out after ``bonus_threshold`` paid referrals."""
    rules = rules or RulesConfig()
    now = now if now is not None else now_millis()
    week_ago = now - 7 * MS_PER_DAY

    paid_ids = _paid_user_ids(payments)
    paid_count = sum(1 for r in registrations if r.ce_user_id in paid_ids)
    new_this_week = sum(
        1 for r in registrations
        if r.registration_date is not None and r.registration_date >= week_ago
    )
    progress = (
        min(paid_count / rules.bonus_threshold * 100, 100.0) if rules.bonus_threshold > 0 else 100.0
    )

    return WeeklyBonus(
        paid_count=paid_count,
        unpaid_count=len(registrations) - paid_count,
        total_registrations=len(registrations),
        bonus_threshold=rules.bonus_threshold,
        bonus_amount=rules.bonus_amount,
        progress_percentage=progress,
        new_registrations_this_week=new_this_week,
    )


def summarize_eligibility(
    registrations: list[Registration],
    payments: Optional[list[Payment]] = None,
    rules: Optional[RulesConfig] = None,
    now: Optional[int] = None,
) -> EligibilitySummary:
    """Qualification counts, revenue split and payout totals over all registrations.

    Never raises: a record with missing dates simply falls out of the date-based
    rules (no early withdrawal, payout pending).
    """
    rules = rules or RulesConfig()
    now = now if now is not None else now_millis()
    payments = payments or []
    paid_ids = _paid_user_ids(payments)

    statuses = [
        evaluate_registration(r, rules, now, paid=r.ce_user_id in paid_ids)
        for r in registrations
    ]

    eligible = below = 0
    needed = domestic = international = 0.0
    available = pending = 0.0
    pending_deadlines: list[int] = []

    for status in statuses:
        reg = status.registration
        if status.eligible:
            eligible += 1
            if reg.country == rules.domestic_country:
                domestic += status.commission
            else:
                international += status.commission
        elif status.below_threshold:
            below += 1
            needed += status.amount_needed

        if status.payout_state == PAYOUT_AVAILABLE:
            available += status.commission
        elif status.payout_state == PAYOUT_PENDING:
            pending += status.commission
            deadline = payout_deadline(reg, rules.hold_days)
            if deadline is not None:
                pending_deadlines.append(deadline)

    claimed = sum(p.amount for p in payments)

    if pending_deadlines:
        next_days = math.ceil((min(pending_deadlines) - now) / MS_PER_DAY)
        next_amount = pending
    else:
        next_days, next_amount = 0, 0.0

    summary = EligibilitySummary(
        total_users=len(registrations),
        eligible_users=eligible,
        below_threshold=below,
        total_needed=needed,
        domestic_revenue=domestic,
        international_revenue=international,
        available_to_withdraw=available,
        pending_qualification=pending,
        total_claimed=claimed,
        total_earned=available + pending + claimed,
        next_payout_days=next_days,
        next_payout_amount=next_amount,
        weekly_bonus=weekly_bonus(registrations, payments, rules, now),
        statuses=statuses,
    )
    logger.info(
        "[Eligibility] %d registrations: %d eligible, %d below threshold, %.2f available",
        summary.total_users, summary.eligible_users, summary.below_threshold, available,
    )
    return summary
