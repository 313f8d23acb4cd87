"""FastAPI service for Sub-IB reporting.

    GET  /health                   liveness + configuration check
    POST /imports                  client spreadsheet -> snapshot summary
    POST /eligibility              registrations + payments -> eligibility summary
    GET  /journal/{year}/{month}   month journal from the snapshot API
    PUT  /preferences/owner        persist the default Sub-IB owner
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any, Iterator, Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from subib.analyzers.commissions import commission_history, country_breakdown
from subib.analyzers.eligibility import Payment, Registration, summarize_eligibility
from subib.analyzers.journal import JournalReport, SnapshotSource, load_journal
from subib.config import ApiConfig, JournalConfig, RulesConfig
from subib.errors import IngestionError, MissingColumnError, SnapshotFetchError
from subib.parsers.ownership import SubIB
from subib.parsers.snapshot_builder import Snapshot, load_workbook_snapshot
from subib.services.snapshot_api import HttpSnapshotSource
from subib.storage.kv_store import JsonFileStore, KeyValueStore, save_selected_owner

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"
DATA_DIR = Path(os.environ.get("SUBIB_DATA_DIR", Path.cwd() / "data"))

logger.info(
    "[STARTUP] Env check: SUBIB_SNAPSHOT_API_URL=%s, SUBIB_SNAPSHOT_API_TOKEN=%s",
    "set" if os.environ.get("SUBIB_SNAPSHOT_API_URL") else "missing",
    "set" if os.environ.get("SUBIB_SNAPSHOT_API_TOKEN") else "missing",
)

app = FastAPI(
    title="Sub-IB Reports",
    description="Client spreadsheet ingestion, commission eligibility and journal analytics",
    version=VERSION,
)


# ─── Dependencies ────────────────────────────────────────────────────────────


def get_store() -> KeyValueStore:
    return JsonFileStore(DATA_DIR / "preferences.json")


def get_rules() -> RulesConfig:
    return RulesConfig.from_env()


def get_snapshot_source() -> Iterator[Optional[SnapshotSource]]:
    config = ApiConfig.from_env()
    if not config.is_configured:
        yield None
        return
    source = HttpSnapshotSource(config)
    try:
        yield source
    finally:
        source.close()


# ─── Error mapping ───────────────────────────────────────────────────────────


def _status_for(exc: IngestionError) -> int:
    # Schema problems are 422; empty sheets and unreadable files are 400
    return 422 if isinstance(exc, MissingColumnError) else 400


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
    logger.warning("[Imports] Rejected upload: %s", exc)
    return JSONResponse({"error": str(exc), "kind": exc.kind}, status_code=_status_for(exc))


@app.exception_handler(SnapshotFetchError)
async def snapshot_fetch_error_handler(request: Request, exc: SnapshotFetchError) -> JSONResponse:
    logger.error("[Journal] Snapshot API failure: %s", exc)
    return JSONResponse({"error": str(exc), "kind": "snapshot_fetch"}, status_code=502)


# ─── Serialisation helpers ───────────────────────────────────────────────────


def _sub_ib_summary(sub_ib: SubIB) -> dict[str, Any]:
    return {
        "owner_name": sub_ib.owner_name,
        "client_count": sub_ib.client_count,
        "total_balance": sub_ib.total_balance,
        "total_equity": sub_ib.total_equity,
        "total_deposits": sub_ib.total_deposits,
        "deposit_count": sub_ib.deposit_count,
        "average_balance": sub_ib.average_balance,
        "average_equity": sub_ib.average_equity,
        "average_deposit": sub_ib.average_deposit,
    }


def _snapshot_summary(snapshot: Snapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "timestamp": snapshot.timestamp,
        "scraped_at": snapshot.scraped_at,
        "total_accounts": snapshot.metadata.total_accounts,
        "total_retail_clients": snapshot.metadata.total_retail_clients,
        "sub_ibs": [_sub_ib_summary(s) for s in snapshot.sub_ibs],
    }


def _journal_payload(report: JournalReport) -> dict[str, Any]:
    return {
        "month_start": report.month_start,
        "month_end": report.month_end,
        "snapshot_count": len(report.snapshots),
        "totals": asdict(report.totals),
        "days": [
            {
                "date": day.date,
                "new_users": len(day.new_users),
                "first_deposits": len(day.first_deposits),
                "deposits": [
                    {"user_id": d.client.user_id, "amount": d.amount, "currency": d.currency}
                    for d in day.deposits
                ],
                "trading_activity": [
                    {"user_id": t.client.user_id, "volume": t.volume, "symbol": t.symbol}
                    for t in day.trading_activity
                ],
                "total_equity": day.total_equity,
                "total_deposits": day.total_deposits,
                "total_volume": day.total_volume,
            }
            for day in report.days
        ],
    }


# ─── Endpoints ───────────────────────────────────────────────────────────────


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "version": VERSION,
        "snapshot_api_configured": ApiConfig.from_env().is_configured,
    }


@app.post("/imports")
async def import_spreadsheet(file: UploadFile = File(...)) -> JSONResponse:
    """Parse an uploaded .xlsx/.xls client export into a snapshot summary."""
    content = await file.read()
    logger.info("[Imports] %s: %d bytes", file.filename, len(content))
    snapshot = await load_workbook_snapshot(content)
    return JSONResponse(_snapshot_summary(snapshot))


class EligibilityRequest(BaseModel):
    registrations: list[dict[str, Any]]
    payments: list[dict[str, Any]] = []
    now: Optional[int] = None  # epoch millis; defaults to the current time


@app.post("/eligibility")
def eligibility(req: EligibilityRequest, rules: RulesConfig = Depends(get_rules)) -> JSONResponse:
    registrations = [Registration.from_dict(r) for r in req.registrations]
    payments = [Payment.from_dict(p) for p in req.payments]

    summary = summarize_eligibility(registrations, payments, rules=rules, now=req.now)
    history = commission_history(registrations, now=req.now)
    countries = country_breakdown(registrations, rules=rules)

    payload = asdict(summary)
    payload.pop("statuses")
    payload["records"] = [
        {
            "ce_user_id": s.registration.ce_user_id,
            "eligible": s.eligible,
            "below_threshold": s.below_threshold,
            "early_withdrawal": s.early_withdrawal,
            "amount_needed": s.amount_needed,
            "commission": s.commission,
            "payout_state": s.payout_state,
            "days_until_payment": s.days_until_payment,
        }
        for s in summary.statuses
    ]
    payload["commission_history"] = {
        "total": history.total,
        "this_month": history.this_month,
        "last_7_days": history.last_7_days,
        "this_week": history.this_week,
        "chart": history.chart,
    }
    payload["countries"] = [
        {**asdict(c), "conversion_rate": c.conversion_rate} for c in countries.countries
    ]
    payload["conversion_leaders"] = [c.country for c in countries.conversion_leaders]
    return JSONResponse(payload)


@app.get("/journal/{year}/{month}")
async def journal(
    year: int,
    month: int,
    owner: Optional[str] = None,
    source: Optional[SnapshotSource] = Depends(get_snapshot_source),
    store: KeyValueStore = Depends(get_store),
) -> JSONResponse:
    if not 1 <= month <= 12:
        return JSONResponse({"error": f"Invalid month: {month}"}, status_code=422)
    if source is None:
        return JSONResponse({"error": "Snapshot API not configured"}, status_code=503)

    config = JournalConfig(owner_name=owner) if owner else JournalConfig.from_store(store)
    report = await load_journal(source, (year, month), config)
    return JSONResponse(_journal_payload(report))


class OwnerPreference(BaseModel):
    owner_name: Optional[str] = None


@app.put("/preferences/owner")
def set_owner(pref: OwnerPreference, store: KeyValueStore = Depends(get_store)) -> dict[str, Any]:
    save_selected_owner(store, pref.owner_name)
    return {"owner_name": pref.owner_name or None}
