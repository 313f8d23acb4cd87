"""
Sub-IB client spreadsheet parser.

Client exports have quirks:
- Header names vary between exports and hand-edited copies (see columns.py)
- Amounts may carry a currency annotation: "70(EUR)"
- Dates may be spreadsheet serials, datetimes or free text
- Blank spacer rows and rows without an account owner are common

Only the first worksheet is read; its first row is the header row.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd

from subib.errors import EmptyDataError, FileReadError, MissingColumnError, NoValidRowsError
from subib.parsers.columns import resolve_columns
from subib.parsers.values import (
    cell_text,
    extract_currency,
    is_blank,
    map_account_type,
    map_platform,
    now_millis,
    parse_date,
    parse_epoch_millis,
    parse_int,
    parse_number,
    parse_optional_number,
)

logger = logging.getLogger(__name__)

WorkbookSource = Union[str, Path, bytes, bytearray]


@dataclass(frozen=True)
class RetailClient:
    """One referred trading account, normalised."""

    user_id: int
    account_number: int
    name: str
    owner_name: str
    register_date: int  # epoch millis
    email: Optional[str] = None
    phone: Optional[str] = None
    account_balance: float = 0.0
    equity: float = 0.0
    credit: float = 0.0
    platform: int = 0  # 0 = MT4, 1 = MT5
    account_type: int = 0  # 0 = raw/ECN, 1 = standard, 2 = cent
    base_currency: str = "USD"
    first_deposit_date: Optional[int] = None
    last_deposit_time: Optional[int] = None
    last_deposit_amount: Optional[float] = None
    last_deposit_currency: Optional[str] = None
    last_trade_time: Optional[int] = None
    last_trade_symbol: Optional[str] = None
    last_trade_volume: Optional[float] = None
    poi_status: Optional[int] = None
    poa_status: Optional[int] = None
    funding_status: int = 0
    archive_status: int = 0
    account_journey: int = 0

    @classmethod
    def from_api(cls, raw: dict[str, Any], owner_name: Optional[str] = None) -> "RetailClient":
        """Build a client from a snapshot API record (camelCase keys)."""
        user_id = parse_int(raw.get("userId"))
        account_number = raw.get("accountNmber", raw.get("accountNumber"))
        amount = raw.get("lastDepositAmount")

        def optional_code(key: str) -> Optional[int]:
            value = parse_optional_number(raw.get(key))
            return int(value) if value is not None else None

        return cls(
            user_id=user_id,
            account_number=parse_int(account_number) if not is_blank(account_number) else user_id,
            name=cell_text(raw.get("name")) or f"User {user_id}",
            owner_name=cell_text(raw.get("ownerName")) or owner_name or "Unknown",
            register_date=parse_epoch_millis(raw.get("registerDate")) or 0,
            email=cell_text(raw.get("email")),
            phone=cell_text(raw.get("phone")),
            account_balance=parse_number(raw.get("accountBalance")),
            equity=parse_number(raw.get("equity")),
            credit=parse_number(raw.get("credit")),
            platform=map_platform(raw.get("platform")),
            account_type=map_account_type(raw.get("accountType")),
            base_currency=(cell_text(raw.get("baseCurrency")) or "USD").upper(),
            first_deposit_date=parse_epoch_millis(raw.get("firstDepositDate")),
            last_deposit_time=parse_epoch_millis(raw.get("lastDepositTime")),
            last_deposit_amount=parse_optional_number(amount),
            last_deposit_currency=extract_currency(amount)
            or _upper(cell_text(raw.get("lastDepositCurrency"))),
            last_trade_time=parse_epoch_millis(raw.get("lastTradeTime")),
            last_trade_symbol=cell_text(raw.get("lastTradeSymbol")),
            last_trade_volume=parse_optional_number(raw.get("lastTradeVolume")),
            poi_status=optional_code("poiStatus"),
            poa_status=optional_code("poaStatus"),
            funding_status=parse_int(raw.get("fundingStatus")),
            archive_status=parse_int(raw.get("archiveStatus")),
            account_journey=parse_int(raw.get("accountJourney")),
        )


def _upper(text: Optional[str]) -> Optional[str]:
    return text.upper() if text else None


# ---------------------------------------------------------------------------
# Workbook loading
# ---------------------------------------------------------------------------


def read_first_sheet(source: WorkbookSource) -> list[list[Any]]:
    """Read the first worksheet as raw rows (no header inference).

    Raises FileReadError when the file is missing or not a readable spreadsheet.
    """
    if isinstance(source, (bytes, bytearray)):
        handle: Any = io.BytesIO(bytes(source))
        label = "<bytes>"
    else:
        handle = Path(source)
        label = handle.name
        if not handle.exists():
            raise FileReadError(f"Failed to read file: {handle} does not exist")

    try:
        df = pd.read_excel(handle, sheet_name=0, header=None, dtype=object)
    except FileNotFoundError as e:
        raise FileReadError(f"Failed to read file: {e}") from e
    except Exception as e:
        # pandas surfaces corrupt/unknown formats as ValueError, BadZipFile,
        # XLRDError, InvalidFileException... none of them share a base class.
        logger.warning("[ClientSheet] Could not read workbook %s: %s", label, e)
        raise FileReadError(f"Failed to read file: {e}") from e

    logger.info("[ClientSheet] %s: %d raw rows in first sheet", label, len(df))
    return df.astype(object).where(pd.notna(df), None).values.tolist()


# ---------------------------------------------------------------------------
# Main parser
# ---------------------------------------------------------------------------


class ClientSheetParser:
    """
    Parse a Sub-IB client export into RetailClient records.

    Usage:
        parser = ClientSheetParser()
        clients = parser.parse_file("path/to/ib-accounts.xlsx")
    """

    def __init__(self) -> None:
        self.clients: list[RetailClient] = []
        self.column_map: dict[str, Optional[int]] = {}
        self.skipped_rows: int = 0
        self.total_rows: int = 0

    def parse_file(self, source: WorkbookSource) -> list[RetailClient]:
        """Parse a spreadsheet file path or raw file bytes."""
        return self.parse_rows(read_first_sheet(source))

    def parse_rows(self, rows: list[list[Any]], now: Optional[int] = None) -> list[RetailClient]:
        """
        Parse header + data rows.

        ``now`` (epoch millis) stands in for a missing registration date; it
        defaults to the current time.
        """
        self.clients = []
        self.skipped_rows = 0
        self.total_rows = 0

        if len(rows) < 2:
            raise EmptyDataError("Spreadsheet must have at least a header row and one data row")

        headers = [cell_text(h) or "" for h in rows[0]]
        try:
            self.column_map = resolve_columns(headers)
        except MissingColumnError:
            logger.warning("[ClientSheet] Header row not recognised: %s", headers)
            raise

        logger.debug(
            "[ClientSheet] Resolved columns: %s",
            {k: v for k, v in self.column_map.items() if v is not None},
        )

        ingested_at = now if now is not None else now_millis()
        for row in rows[1:]:
            self.total_rows += 1
            client = self._parse_data_row(list(row or []), ingested_at)
            if client is None:
                self.skipped_rows += 1
                continue
            self.clients.append(client)

        logger.info(
            "[ClientSheet] Parsed %d clients from %d rows (%d skipped)",
            len(self.clients), self.total_rows, self.skipped_rows,
        )

        if not self.clients:
            raise NoValidRowsError("No valid client data found in spreadsheet")

        return self.clients

    def _parse_data_row(self, row: list[Any], ingested_at: int) -> Optional[RetailClient]:
        """Parse a single data row; None when the row must be skipped."""
        col_map = self.column_map

        if not row or all(is_blank(cell) for cell in row):
            return None

        def get(key: str) -> Any:
            idx = col_map.get(key)
            if idx is not None and idx < len(row):
                return row[idx]
            return None

        def has(key: str) -> bool:
            return col_map.get(key) is not None

        owner_name = cell_text(get("owner_name"))
        if not owner_name:
            return None

        if has("user_id"):
            user_id = parse_int(get("user_id"))
        else:
            user_id = parse_int(get("account_number"))
        account_number = parse_int(get("account_number")) if has("account_number") else user_id

        balance = parse_number(get("account_balance"))
        # Without an equity column the balance is the best available figure
        equity = parse_number(get("equity")) if has("equity") else balance

        deposit_cell = get("last_deposit_amount")
        deposit_currency = extract_currency(deposit_cell) if not is_blank(deposit_cell) else None
        if deposit_currency is None:
            deposit_currency = _upper(cell_text(get("last_deposit_currency")))

        def optional_code(key: str) -> Optional[int]:
            value = parse_optional_number(get(key))
            return int(value) if value is not None else None

        return RetailClient(
            user_id=user_id,
            account_number=account_number,
            name=cell_text(get("name")) or ("" if has("name") else f"User {user_id}"),
            owner_name=owner_name,
            register_date=parse_date(get("register_date")) or ingested_at,
            email=cell_text(get("email")),
            phone=cell_text(get("phone")),
            account_balance=balance,
            equity=equity,
            credit=parse_number(get("credit")),
            platform=map_platform(get("platform")),
            account_type=map_account_type(get("account_type")),
            base_currency=(cell_text(get("base_currency")) or "USD").upper(),
            first_deposit_date=parse_date(get("first_deposit_date")),
            last_deposit_time=parse_date(get("last_deposit_time")),
            last_deposit_amount=parse_optional_number(deposit_cell),
            last_deposit_currency=deposit_currency,
            last_trade_time=parse_date(get("last_trade_time")),
            last_trade_symbol=cell_text(get("last_trade_symbol")),
            last_trade_volume=parse_optional_number(get("last_trade_volume")),
            poi_status=optional_code("poi_status"),
            poa_status=optional_code("poa_status"),
            funding_status=parse_int(get("funding_status")),
            archive_status=parse_int(get("archive_status")),
            account_journey=parse_int(get("account_journey")),
        )


async def load_clients(source: WorkbookSource) -> list[RetailClient]:
    """Read a workbook without blocking the event loop, then parse it."""
    rows = await asyncio.to_thread(read_first_sheet, source)
    return ClientSheetParser().parse_rows(rows)
