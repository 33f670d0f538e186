from datetime import date

from smb_erp.services.order_workflow import OrderKind

DOCUMENT_PREFIXES: dict[OrderKind, str] = {
    OrderKind.SALE: "PV",
    OrderKind.PURCHASE: "OP",
}
JOURNAL_ENTRY_PREFIX = "AS"


def format_document_number(prefix: str, row_id: int, on_date: date) -> str:
    if row_id is None or row_id <= 0:
        raise ValueError("Document numbers need a persisted row id")
    return f"{prefix}-{on_date.year:04d}{on_date.month:02d}-{row_id}"


def next_number(kind: OrderKind, row_id: int, on_date: date) -> str:
    """`<PREFIX>-<YYYYMM>-<rowId>`; YYYYMM comes from the order date."""
    return format_document_number(DOCUMENT_PREFIXES[kind], row_id, on_date)
