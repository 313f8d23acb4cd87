"""Tests for the FastAPI service."""

import io
from datetime import datetime, timezone

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from subib.api import app, get_snapshot_source, get_store
from subib.parsers.client_sheet import RetailClient
from subib.parsers.ownership import group_by_owner
from subib.parsers.snapshot_builder import assemble_snapshot
from subib.storage.kv_store import InMemoryStore, load_selected_owner

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
DAY = 86_400_000


def _ms(*args) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


def _xlsx_bytes(rows, columns):
    buf = io.BytesIO()
    pd.DataFrame(rows, columns=columns).to_excel(buf, index=False)
    return buf.getvalue()


class FakeSource:
    def __init__(self, snapshots):
        self.snapshots = snapshots

    async def fetch(self, page, limit):
        return {"snapshots": self.snapshots if page == 1 else []}


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client, monkeypatch):
        monkeypatch.delenv("SUBIB_SNAPSHOT_API_URL", raising=False)
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["snapshot_api_configured"] is False


class TestImports:
    def test_upload_spreadsheet(self, client):
        data = _xlsx_bytes(
            [["Jane", 1, 100, "50(EUR)"], ["Max", 2, 40, None], ["Jane", 3, 20, 10]],
            ["Account owner", "User ID", "Balance", "Last Deposit Amount"],
        )
        resp = client.post("/imports", files={"file": ("clients.xlsx", data, XLSX)})

        assert resp.status_code == 200
        body = resp.json()
        assert body["id"].startswith("excel_")
        assert body["total_retail_clients"] == 3
        jane = body["sub_ibs"][0]
        assert jane["owner_name"] == "Jane"
        assert jane["client_count"] == 2
        assert jane["total_balance"] == 120
        assert jane["total_deposits"] == 60
        assert jane["average_deposit"] == 30

    def test_missing_owner_column(self, client):
        data = _xlsx_bytes([[1, "Alice"]], ["User ID", "Name"])
        resp = client.post("/imports", files={"file": ("clients.xlsx", data, XLSX)})
        assert resp.status_code == 422
        assert resp.json()["kind"] == "missing_column"

    def test_no_valid_rows(self, client):
        data = _xlsx_bytes([[None, 1]], ["Account owner", "User ID"])
        resp = client.post("/imports", files={"file": ("clients.xlsx", data, XLSX)})
        assert resp.status_code == 400
        assert resp.json()["kind"] == "no_valid_rows"

    def test_unreadable_file(self, client):
        resp = client.post("/imports", files={"file": ("clients.xlsx", b"garbage", XLSX)})
        assert resp.status_code == 400
        assert resp.json()["kind"] == "unreadable_file"


class TestEligibility:
    def test_summary(self, client):
        now = _ms(2024, 6, 15)
        payload = {
            "now": now,
            "registrations": [
                {
                    "ce_user_id": "a", "net_deposits": 300, "commission": 100, "country": "GB",
                    "registration_date": "2024-01-01", "first_deposit_date": "2024-03-01",
                    "qualification_date": now - 40 * DAY,
                },
                {"ce_user_id": "b", "net_deposits": 120, "commission": 0},
            ],
            "payments": [{"ce_user_id": "z", "amount": 25}],
        }
        resp = client.post("/eligibility", json=payload)

        assert resp.status_code == 200
        body = resp.json()
        assert body["eligible_users"] == 1
        assert body["below_threshold"] == 1
        assert body["total_needed"] == 180
        assert body["domestic_revenue"] == 100
        assert body["available_to_withdraw"] == 100
        assert body["total_claimed"] == 25
        assert body["weekly_bonus"]["bonus_threshold"] == 10
        assert [r["payout_state"] for r in body["records"]] == ["available", "pending"]
        assert body["commission_history"]["total"] == 100
        assert {c["country"] for c in body["countries"]} == {"GB", "Unknown"}

    def test_rejects_bad_body(self, client):
        resp = client.post("/eligibility", json={"payments": []})
        assert resp.status_code == 422


class TestJournal:
    def test_journal_month(self, client):
        snap = assemble_snapshot(group_by_owner([
            RetailClient(
                user_id=1, account_number=1, name="A", owner_name="Jane",
                register_date=_ms(2024, 3, 1), equity=100.0,
                last_deposit_time=_ms(2024, 3, 2), last_deposit_amount=300.0,
            ),
        ]), timestamp=_ms(2024, 3, 10))
        app.dependency_overrides[get_snapshot_source] = lambda: FakeSource([snap])

        resp = client.get("/journal/2024/3")

        assert resp.status_code == 200
        body = resp.json()
        assert body["snapshot_count"] == 1
        assert body["totals"]["total_deposits"] == 300
        assert body["totals"]["active_days"] == 2
        assert [d["date"] for d in body["days"]] == ["2024-03-01", "2024-03-02"]

    def test_saved_owner_used_by_default(self, client, store):
        snap = assemble_snapshot(group_by_owner([
            RetailClient(user_id=1, account_number=1, name="A", owner_name="Jane", register_date=_ms(2024, 3, 1)),
            RetailClient(user_id=2, account_number=2, name="B", owner_name="Max", register_date=_ms(2024, 3, 1)),
        ]), timestamp=_ms(2024, 3, 10))
        app.dependency_overrides[get_snapshot_source] = lambda: FakeSource([snap])

        assert client.put("/preferences/owner", json={"owner_name": "Max"}).status_code == 200
        assert load_selected_owner(store) == "Max"

        body = client.get("/journal/2024/3").json()
        assert body["totals"]["new_users"] == 1

        body = client.get("/journal/2024/3", params={"owner": "Jane"}).json()
        assert body["totals"]["new_users"] == 1

    def test_not_configured(self, client):
        app.dependency_overrides[get_snapshot_source] = lambda: None
        resp = client.get("/journal/2024/3")
        assert resp.status_code == 503

    def test_invalid_month(self, client):
        app.dependency_overrides[get_snapshot_source] = lambda: FakeSource([])
        assert client.get("/journal/2024/13").status_code == 422
