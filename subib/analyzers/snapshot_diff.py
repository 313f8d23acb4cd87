"""Compare two snapshots client by client (matched on user id)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from subib.parsers.client_sheet import RetailClient
from subib.parsers.snapshot_builder import Snapshot, extract_all_clients

logger = logging.getLogger(__name__)

MONITORED_FIELDS = (
    "equity",
    "last_trade_time",
    "last_deposit_time",
    "last_deposit_amount",
    "account_balance",
    "funding_status",
    "archive_status",
    "credit",
    "account_journey",
)

# Numeric deltas below this are ignored
NUMERIC_TOLERANCE = 0.01


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class ChangedClient:
    client: RetailClient
    changes: list[FieldChange]


@dataclass(frozen=True)
class ComparisonResult:
    new_clients: list[RetailClient] = field(default_factory=list)
    removed_clients: list[RetailClient] = field(default_factory=list)
    changed_clients: list[ChangedClient] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        return {
            "total_new": len(self.new_clients),
            "total_removed": len(self.removed_clients),
            "total_changed": len(self.changed_clients),
        }


def detect_changes(previous: RetailClient, current: RetailClient) -> list[FieldChange]:
    changes = []
    for name in MONITORED_FIELDS:
        old, new = getattr(previous, name), getattr(current, name)
        if old == new:
            continue
        if isinstance(old, (int, float)) and isinstance(new, (int, float)) and abs(old - new) < NUMERIC_TOLERANCE:
            continue
        changes.append(FieldChange(field=name, old_value=old, new_value=new))
    return changes


def compare_snapshots(previous: Snapshot, current: Snapshot) -> ComparisonResult:
    """New, removed and changed clients going from ``previous`` to ``current``."""
    before = {c.user_id: c for c in extract_all_clients(previous)}
    after = {c.user_id: c for c in extract_all_clients(current)}

    changed = []
    for user_id, client in after.items():
        if user_id in before:
            changes = detect_changes(before[user_id], client)
            if changes:
                changed.append(ChangedClient(client=client, changes=changes))

    result = ComparisonResult(
        new_clients=[c for uid, c in after.items() if uid not in before],
        removed_clients=[c for uid, c in before.items() if uid not in after],
        changed_clients=changed,
    )
    logger.info("[SnapshotDiff] %s -> %s: %s", previous.id, current.id, result.summary)
    return result

