from .client_sheet import ClientSheetParser, RetailClient, load_clients, read_first_sheet
from .columns import COLUMN_ALIASES, find_column_index, normalize_header, resolve_columns
from .ownership import SubIB, group_by_owner, load_sub_ibs, parse_sub_ibs, summarize_owner
from .snapshot_builder import (
    Account,
    RetailResult,
    Snapshot,
    assemble_snapshot,
    clients_by_owner,
    extract_all_clients,
    find_client,
    flatten_clients,
    import_workbook,
    load_workbook_snapshot,
    snapshot_from_api,
)
