from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

from rapidfuzz import fuzz

from receipt_tracker.domain.categories import group_label
from receipt_tracker.domain.periods import PeriodRange, period_range, record_moment
from receipt_tracker.models import CategorySummary, HistoryView, Period, SavedReceipt

ALL_TITLE = "All Transactions"
SEARCH_FUZZY_THRESHOLD = 80.0

_EPOCH = datetime(1970, 1, 1)


def sort_by_date_desc(receipts: Iterable[SavedReceipt]) -> list[SavedReceipt]:
    """Newest first; undated receipts sort as if dated at the epoch."""
    return sorted(
        receipts,
        key=lambda receipt: record_moment(receipt.transaction_date) or _EPOCH,
        reverse=True,
    )


def filter_by_range(receipts: Iterable[SavedReceipt], window: PeriodRange) -> list[SavedReceipt]:
    selected: list[SavedReceipt] = []
    for receipt in receipts:
        moment = record_moment(receipt.transaction_date)
        if moment is not None and window.contains(moment):
            selected.append(receipt)
    return selected


def summarize_by_category(receipts: Iterable[SavedReceipt]) -> list[CategorySummary]:
    totals: dict[str, float] = {}
    counts: dict[str, int] = {}
    for receipt in receipts:
        label = group_label(receipt.category)
        totals[label] = totals.get(label, 0.0) + (receipt.total_amount or 0.0)
        counts[label] = counts.get(label, 0) + 1

    summary = [
        CategorySummary(category=label, total=total, transaction_count=counts[label])
        for label, total in totals.items()
    ]
    # sorted() is stable, so equal totals keep first-seen order
    return sorted(summary, key=lambda item: item.total, reverse=True)


def build_history(
    receipts: Sequence[SavedReceipt],
    period: Period,
    now: datetime | None = None,
) -> HistoryView:
    window = period_range(period, now or datetime.now())
    if window is None:
        return HistoryView(period=Period.ALL, title=ALL_TITLE, receipts=sort_by_date_desc(receipts))

    relevant = filter_by_range(receipts, window)
    return HistoryView(
        period=period,
        title=window.title,
        receipts=relevant,
        summary=summarize_by_category(relevant),
    )


def _amount_text(amount: float | None) -> str:
    if amount is None:
        return ""
    return f"{amount:.2f}"


def search_receipts(receipts: Sequence[SavedReceipt], term: str | None) -> list[SavedReceipt]:
    """Match name, category or amount text; merchant names also match fuzzily."""
    needle = (term or "").strip().lower()
    if not needle:
        return list(receipts)

    matches: list[SavedReceipt] = []
    for receipt in receipts:
        name = (receipt.transaction_name or "").lower()
        category = (receipt.category or "").lower()
        if needle in name or needle in category or needle in _amount_text(receipt.total_amount):
            matches.append(receipt)
        elif name and fuzz.partial_ratio(needle, name) >= SEARCH_FUZZY_THRESHOLD:
            matches.append(receipt)
    return matches
