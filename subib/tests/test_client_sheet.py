"""Tests for the client spreadsheet parser."""

import asyncio
from datetime import datetime, timezone

import pandas as pd
import pytest

from subib.errors import EmptyDataError, FileReadError, MissingColumnError, NoValidRowsError
from subib.parsers.client_sheet import ClientSheetParser, load_clients, read_first_sheet

DAY_MS = 86_400_000
# 2024-03-01 as a spreadsheet serial
MARCH_1_SERIAL = 45352
MARCH_1_MS = int(datetime(2024, 3, 1, tzinfo=timezone.utc).timestamp() * 1000)

HEADERS = [
    "Date", "User ID", "Account", "Name", "Account owner", "Account Type", "Platform",
    "Base Currency", "Balance", "Account Equity", "Credit", "Last Deposit Time",
    "Last Deposit Amount", "Last Trade Time", "Last Traded Instrument", "Last Traded Lots",
]

ALICE = [
    MARCH_1_SERIAL, 1001, 5001, "Alice", "Jane Doe", "Standard STP", "MT5", "usd",
    "1,500.50", 1400, 0, MARCH_1_SERIAL + 1, "70(EUR)", MARCH_1_SERIAL + 2, "EURUSD", 1.5,
]


def _run(coro):
    """Helper to run an async function from sync test code."""
    return asyncio.run(coro)


def _write_xlsx(path, rows):
    pd.DataFrame(rows[1:], columns=rows[0]).to_excel(path, index=False)
    return path


class TestParseRows:
    def test_full_row(self):
        parser = ClientSheetParser()
        clients = parser.parse_rows([HEADERS, ALICE])

        assert len(clients) == 1
        c = clients[0]
        assert c.user_id == 1001
        assert c.account_number == 5001
        assert c.name == "Alice"
        assert c.owner_name == "Jane Doe"
        assert c.register_date == MARCH_1_MS
        assert c.account_balance == 1500.5
        assert c.equity == 1400
        assert c.platform == 1
        assert c.account_type == 1
        assert c.base_currency == "USD"
        assert c.last_deposit_time == MARCH_1_MS + DAY_MS
        assert c.last_deposit_amount == 70
        assert c.last_deposit_currency == "EUR"
        assert c.last_trade_time == MARCH_1_MS + 2 * DAY_MS
        assert c.last_trade_symbol == "EURUSD"
        assert c.last_trade_volume == 1.5
        assert c.email is None
        assert c.first_deposit_date is None

    def test_blank_and_ownerless_rows_skipped(self):
        blank = [None] * len(HEADERS)
        ownerless = list(ALICE)
        ownerless[4] = "   "

        parser = ClientSheetParser()
        clients = parser.parse_rows([HEADERS, ALICE, blank, ownerless])

        assert len(clients) == 1
        assert parser.total_rows == 3
        assert parser.skipped_rows == 2

    def test_defaults_fill_gaps(self):
        rows = [["Account owner", "User ID"], ["Bob's IB", 42]]
        now = 1_700_000_000_000
        c = ClientSheetParser().parse_rows(rows, now=now)[0]

        assert c.name == "User 42"
        assert c.account_number == 42
        assert c.register_date == now
        assert c.account_balance == 0
        assert c.credit == 0
        assert c.base_currency == "USD"
        assert c.phone is None
        assert c.poi_status is None
        assert c.funding_status == 0

    def test_equity_falls_back_to_balance(self):
        rows = [["Account owner", "User ID", "Balance"], ["Jane", 1, "250"]]
        c = ClientSheetParser().parse_rows(rows)[0]
        assert c.equity == 250

    def test_account_number_only(self):
        rows = [["Sub-IB", "Account"], ["Jane", 777]]
        c = ClientSheetParser().parse_rows(rows)[0]
        assert c.user_id == 777
        assert c.account_number == 777

    def test_deposit_currency_column_fallback(self):
        rows = [
            ["Account owner", "User ID", "Last Deposit Amount", "lastDepositCurrency"],
            ["Jane", 1, 100, "gbp"],
            ["Jane", 2, "50(EUR)", "gbp"],
        ]
        clients = ClientSheetParser().parse_rows(rows)
        assert clients[0].last_deposit_currency == "GBP"
        assert clients[1].last_deposit_currency == "EUR"

    def test_header_only_is_empty(self):
        with pytest.raises(EmptyDataError):
            ClientSheetParser().parse_rows([HEADERS])

    def test_no_valid_rows(self):
        ownerless = list(ALICE)
        ownerless[4] = None
        with pytest.raises(NoValidRowsError):
            ClientSheetParser().parse_rows([HEADERS, ownerless])

    def test_no_valid_rows_is_empty_data(self):
        assert issubclass(NoValidRowsError, EmptyDataError)
        assert not issubclass(MissingColumnError, EmptyDataError)

    def test_missing_owner_column(self):
        headers = [h for h in HEADERS if h != "Account owner"]
        with pytest.raises(MissingColumnError):
            ClientSheetParser().parse_rows([headers, ALICE[:-1]])

    def test_short_rows_tolerated(self):
        c = ClientSheetParser().parse_rows([HEADERS, ALICE[:5]])[0]
        assert c.owner_name == "Jane Doe"
        assert c.last_trade_volume is None


class TestWorkbookFiles:
    def test_parse_xlsx_file(self, tmp_path):
        path = _write_xlsx(tmp_path / "clients.xlsx", [HEADERS, ALICE])
        clients = ClientSheetParser().parse_file(path)
        assert len(clients) == 1
        assert clients[0].owner_name == "Jane Doe"
        assert clients[0].register_date == MARCH_1_MS

    def test_parse_bytes(self, tmp_path):
        path = _write_xlsx(tmp_path / "clients.xlsx", [HEADERS, ALICE])
        clients = ClientSheetParser().parse_file(path.read_bytes())
        assert clients[0].user_id == 1001

    def test_first_sheet_only(self, tmp_path):
        path = tmp_path / "two-sheets.xlsx"
        with pd.ExcelWriter(path) as writer:
            pd.DataFrame([ALICE], columns=HEADERS).to_excel(writer, sheet_name="Clients", index=False)
            pd.DataFrame([["x"]], columns=["Notes"]).to_excel(writer, sheet_name="Notes", index=False)
        rows = read_first_sheet(path)
        assert rows[0][0] == "Date"
        assert len(rows) == 2

    def test_later_sheets_not_parsed(self, tmp_path, monkeypatch):
        path = _write_xlsx(tmp_path / "clients.xlsx", [HEADERS, ALICE])
        calls = []
        real_read_excel = pd.read_excel

        def recording_read_excel(*args, **kwargs):
            calls.append(kwargs.get("sheet_name"))
            return real_read_excel(*args, **kwargs)

        monkeypatch.setattr("subib.parsers.client_sheet.pd.read_excel", recording_read_excel)
        read_first_sheet(path)
        assert calls == [0]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileReadError):
            read_first_sheet(tmp_path / "nope.xlsx")

    def test_not_a_spreadsheet(self, tmp_path):
        path = tmp_path / "broken.xlsx"
        path.write_bytes(b"definitely not a workbook")
        with pytest.raises(FileReadError):
            ClientSheetParser().parse_file(path)
        with pytest.raises(FileReadError):
            ClientSheetParser().parse_file(b"definitely not a workbook")

    def test_async_loader(self, tmp_path):
        path = _write_xlsx(tmp_path / "clients.xlsx", [HEADERS, ALICE])
        clients = _run(load_clients(path))
        assert [c.user_id for c in clients] == [1001]
