"""Runtime configuration.

Business-rule constants and service settings are explicit objects passed into
the entry points. Each has a ``from_env()`` constructor reading:

    SUBIB_MIN_DEPOSIT            – minimum net deposit for a qualified referral (300)
    SUBIB_COMMISSION_HOLD_DAYS   – hold period in days (30)
    SUBIB_BONUS_THRESHOLD        – paid referrals needed for the weekly bonus (10)
    SUBIB_BONUS_AMOUNT           – weekly bonus amount (300)
    SUBIB_DEAL_AMOUNT            – fixed commission per qualified referral (unset = use record value)
    SUBIB_DOMESTIC_COUNTRY       – country code counted as domestic revenue ("GB")
    SUBIB_SNAPSHOT_API_URL       – base URL of the snapshot API
    SUBIB_SNAPSHOT_API_TOKEN     – bearer token for the snapshot API
    SUBIB_SNAPSHOT_API_TIMEOUT   – request timeout in seconds (120)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from subib.storage.kv_store import KeyValueStore, load_selected_owner

logger = logging.getLogger(__name__)

MIN_DEPOSIT = 300.0
COMMISSION_HOLD_DAYS = 30
BONUS_THRESHOLD = 10
BONUS_AMOUNT = 300.0
DOMESTIC_COUNTRY = "GB"


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r, using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class RulesConfig:
    """Commission eligibility rules."""

    min_deposit: float = MIN_DEPOSIT
    hold_days: int = COMMISSION_HOLD_DAYS
    bonus_threshold: int = BONUS_THRESHOLD
    bonus_amount: float = BONUS_AMOUNT
    deal_amount: Optional[float] = None  # None: use each record's own commission
    domestic_country: str = DOMESTIC_COUNTRY

    @classmethod
    def from_env(cls) -> "RulesConfig":
        return cls(
            min_deposit=_env_float("SUBIB_MIN_DEPOSIT", MIN_DEPOSIT),
            hold_days=_env_int("SUBIB_COMMISSION_HOLD_DAYS", COMMISSION_HOLD_DAYS),
            bonus_threshold=_env_int("SUBIB_BONUS_THRESHOLD", BONUS_THRESHOLD),
            bonus_amount=_env_float("SUBIB_BONUS_AMOUNT", BONUS_AMOUNT),
            deal_amount=_env_float("SUBIB_DEAL_AMOUNT", None),
            domestic_country=os.environ.get("SUBIB_DOMESTIC_COUNTRY", DOMESTIC_COUNTRY).strip()
            or DOMESTIC_COUNTRY,
        )


@dataclass(frozen=True)
class JournalConfig:
    """Options for a journal run. ``owner_name`` restricts the fold to one Sub-IB."""

    owner_name: Optional[str] = None

    @classmethod
    def from_store(cls, store: KeyValueStore) -> "JournalConfig":
        return cls(owner_name=load_selected_owner(store))


@dataclass(frozen=True)
class ApiConfig:
    """Connection settings for the snapshot API."""

    base_url: Optional[str] = None
    token: Optional[str] = None
    timeout: float = 120.0

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    @classmethod
    def from_env(cls) -> "ApiConfig":
        return cls(
            base_url=os.environ.get("SUBIB_SNAPSHOT_API_URL") or None,
            token=os.environ.get("SUBIB_SNAPSHOT_API_TOKEN") or None,
            timeout=_env_float("SUBIB_SNAPSHOT_API_TIMEOUT", 120.0),
        )
