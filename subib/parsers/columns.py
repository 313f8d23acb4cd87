"""
Header resolution for Sub-IB client spreadsheets.

Exports from the broker back office (and hand-edited copies of them) name the
same column in many ways: "Account owner", "sub-ib", "Sub_IB"... Each canonical
field carries an ordered alias list. Matching is exact after normalisation
(lower-case, trimmed, whitespace/underscores/hyphens removed), so it is
case- and separator-insensitive but never fuzzy.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from subib.errors import MissingColumnError

# ---------------------------------------------------------------------------
# Alias table
# ---------------------------------------------------------------------------

# Reference export headers (ib-accounts.xlsx):
# Date, User ID, Account, Name, Account owner, Campaign source, Account Type,
# Platform, Base Currency, Balance, Account Equity, Credit, Account Journey,
# Last Trade Time, Last Traded Instrument, Last Traded Lots, Last Deposit Time,
# Last Deposit Amount
COLUMN_ALIASES: dict[str, list[str]] = {
    "owner_name": [
        "Account owner", "ownerName", "owner name", "owner",
        "sub-ib", "subib", "sub ib", "sub_ib", "sub-ib name",
    ],
    "user_id": ["User ID", "userId", "user id", "userid", "user_id", "id"],
    "name": ["Name", "name", "client name", "clientname", "full name", "fullname"],
    "account_number": [
        "Account", "accountNumber", "account number", "accountnumber",
        "account_number", "accountnmber",
    ],
    "account_balance": ["Balance", "accountBalance", "account balance", "accountbalance", "account_balance"],
    "equity": ["Account Equity", "equity", "equity balance"],
    "credit": ["Credit", "credit", "credit amount"],
    "email": ["email", "e-mail", "email address"],
    "phone": ["phone", "phone number", "phonenumber", "telephone", "tel"],
    "platform": ["Platform", "platform", "mt platform", "mtplatform"],
    "account_type": ["Account Type", "accountType", "account type", "accounttype", "type"],
    "base_currency": ["Base Currency", "baseCurrency", "base currency", "basecurrency", "currency"],
    "register_date": ["Date", "registerDate", "register date", "registerdate", "registration date", "reg date"],
    "first_deposit_date": ["firstDepositDate", "first deposit date", "firstdepositdate", "first deposit"],
    "last_deposit_time": ["Last Deposit Time", "lastDepositTime", "last deposit time", "lastdeposittime", "last deposit"],
    "last_deposit_amount": ["Last Deposit Amount", "lastDepositAmount", "last deposit amount", "lastdepositamount"],
    "last_deposit_currency": ["lastDepositCurrency", "last deposit currency", "lastdepositcurrency"],
    "poi_status": ["poiStatus", "poi status", "poistatus", "poi"],
    "poa_status": ["poaStatus", "poa status", "poastatus", "poa"],
    "funding_status": ["fundingStatus", "funding status", "fundingstatus"],
    "archive_status": ["archiveStatus", "archive status", "archivestatus"],
    "account_journey": ["Account Journey", "accountJourney", "account journey", "accountjourney"],
    "last_trade_time": ["Last Trade Time", "lastTradeTime", "last trade time", "lasttradetime", "last trade"],
    "last_trade_symbol": ["Last Traded Instrument", "lastTradeSymbol", "last trade symbol", "lasttradesymbol"],
    "last_trade_volume": ["Last Traded Lots", "lastTradeVolume", "last trade volume", "lasttradevolume"],
}

_SEPARATORS_RE = re.compile(r"[\s_\-]+")


def normalize_header(name: Any) -> str:
    """Lower-case, trim and drop whitespace/underscore/hyphen runs."""
    if name is None:
        return ""
    return _SEPARATORS_RE.sub("", str(name).strip().lower())


def find_column_index(headers: list[Any], aliases: list[str]) -> Optional[int]:
    """Index of the first header matching any alias (alias order wins), or None."""
    normalized = [normalize_header(h) for h in headers]
    for alias in aliases:
        target = normalize_header(alias)
        if target in normalized:
            return normalized.index(target)
    return None


def resolve_columns(
    headers: list[Any],
    aliases: Optional[dict[str, list[str]]] = None,
) -> dict[str, Optional[int]]:
    """Map every canonical field to its column index (None when absent).

    Raises MissingColumnError when the owner column is absent, or when neither a
    user-id nor an account-number column is present.
    """
    table = aliases if aliases is not None else COLUMN_ALIASES
    col_map = {field: find_column_index(headers, names) for field, names in table.items()}

    if col_map.get("owner_name") is None:
        raise MissingColumnError("ownerName")
    if col_map.get("user_id") is None and col_map.get("account_number") is None:
        raise MissingColumnError("userId or accountNumber")

    return col_map
