from dataclasses import dataclass

from receipt_tracker.models import HistoryView, SavedReceipt

NOT_AVAILABLE = "N/A"
FLAT_HEADERS = ("Date", "Transaction", "Amount", "Category")
SUMMARY_HEADERS = ("Category", "Total Amount", "Transaction Count")


@dataclass(frozen=True)
class CsvExport:
    filename: str
    content: str


def quote_field(value: str) -> str:
    escaped = value.replace('"', '""')
    return f'"{escaped}"'


def _flat_row(receipt: SavedReceipt) -> str:
    amount = receipt.total_amount
    return ",".join([
        receipt.transaction_date or NOT_AVAILABLE,
        quote_field(receipt.transaction_name or NOT_AVAILABLE),
        f"{amount:.2f}" if amount is not None else NOT_AVAILABLE,
        receipt.category or NOT_AVAILABLE,
    ])


def export_filename(view: HistoryView) -> str:
    if not view.is_summary:
        return "all_transactions.csv"
    safe_name = view.period.value.lower().replace(" ", "_")
    return f"summary_{safe_name}.csv"


def export_csv(view: HistoryView) -> CsvExport:
    """Render whichever table ``view`` shows: flat receipts or category totals."""
    if view.is_summary:
        lines = [",".join(SUMMARY_HEADERS)]
        lines.extend(
            f"{item.category},{item.total:.2f},{item.transaction_count}"
            for item in view.summary
        )
    else:
        lines = [",".join(FLAT_HEADERS)]
        lines.extend(_flat_row(receipt) for receipt in view.receipts)

    return CsvExport(filename=export_filename(view), content="\n".join(lines))
