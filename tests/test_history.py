from datetime import date, datetime, timedelta

import pytest

from receipt_tracker.domain.history import build_history, search_receipts, summarize_by_category
from receipt_tracker.models import Period, SavedReceipt

NOW = datetime(2024, 3, 20, 10, 0)


def _receipt(
    receipt_id: int,
    date_value: str | None,
    amount: float | None,
    category: str | None,
    name: str | None = "Shop",
) -> SavedReceipt:
    return SavedReceipt(
        id=receipt_id,
        transaction_name=name,
        total_amount=amount,
        transaction_date=date_value,
        category=category,
    )


@pytest.fixture
def scenario_receipts() -> list[SavedReceipt]:
    return [
        _receipt(1, "2024-03-01", 50.0, "Groceries"),
        _receipt(2, "2024-03-15", 30.0, "Groceries"),
        _receipt(3, "2024-04-01", 20.0, "Travel"),
    ]


def test_monthly_summary_excludes_other_months(scenario_receipts: list[SavedReceipt]) -> None:
    view = build_history(scenario_receipts, Period.MONTHLY, NOW)

    assert view.is_summary
    assert [(s.category, s.total, s.transaction_count) for s in view.summary] == [
        ("Groceries", 80.0, 2),
    ]


def test_yearly_summary_sorted_by_total(scenario_receipts: list[SavedReceipt]) -> None:
    view = build_history(scenario_receipts, Period.YEARLY, NOW)

    assert [(s.category, s.total, s.transaction_count) for s in view.summary] == [
        ("Groceries", 80.0, 2),
        ("Travel", 20.0, 1),
    ]


def test_daily_includes_only_today() -> None:
    receipts = [
        _receipt(1, "2024-03-20", 5.0, "Food & Drink"),
        _receipt(2, "2024-03-19", 7.0, "Food & Drink"),
        _receipt(3, "2024-03-21", 9.0, "Food & Drink"),
    ]
    view = build_history(receipts, Period.DAILY, datetime(2024, 3, 20, 23, 59, 59))

    assert [r.id for r in view.receipts] == [1]


def test_daily_filter_matches_local_calendar_date_for_every_day() -> None:
    start = date(2024, 1, 1)
    receipts = [
        _receipt(i, (start + timedelta(days=i)).isoformat(), 1.0, "Other") for i in range(60)
    ]
    for offset in range(60):
        today = start + timedelta(days=offset)
        view = build_history(receipts, Period.DAILY, datetime.combine(today, datetime.min.time()))
        assert [r.transaction_date for r in view.receipts] == [today.isoformat()]


def test_undated_receipts_only_appear_in_all() -> None:
    receipts = [_receipt(1, None, 10.0, "Other"), _receipt(2, "2024-03-20", 3.0, "Other")]

    for period in (Period.DAILY, Period.WEEKLY, Period.MONTHLY, Period.QUARTERLY, Period.YEARLY):
        view = build_history(receipts, period, NOW)
        assert [r.id for r in view.receipts] == [2]

    view = build_history(receipts, Period.ALL, NOW)
    assert {r.id for r in view.receipts} == {1, 2}


def test_all_view_sorts_newest_first_with_undated_last() -> None:
    receipts = [
        _receipt(1, "2024-01-05", 1.0, None),
        _receipt(2, None, 1.0, None),
        _receipt(3, "2024-03-01", 1.0, None),
        _receipt(4, "not a date", 1.0, None),
    ]
    view = build_history(receipts, Period.ALL, NOW)

    assert not view.is_summary
    assert view.title == "All Transactions"
    assert view.summary == []
    assert [r.id for r in view.receipts] == [3, 1, 2, 4]


def test_summary_groups_missing_category_and_amount() -> None:
    receipts = [
        _receipt(1, "2024-03-20", None, None),
        _receipt(2, "2024-03-20", 4.5, None),
        _receipt(3, "2024-03-20", 1.0, "Shopping"),
    ]
    view = build_history(receipts, Period.DAILY, NOW)

    assert [(s.category, s.total, s.transaction_count) for s in view.summary] == [
        ("Uncategorized", 4.5, 2),
        ("Shopping", 1.0, 1),
    ]
    # Grouping never rewrites the stored records
    assert receipts[0].category is None


def test_summary_ties_keep_encounter_order() -> None:
    receipts = [
        _receipt(1, "2024-03-20", 10.0, "Travel"),
        _receipt(2, "2024-03-20", 10.0, "Groceries"),
        _receipt(3, "2024-03-20", 10.0, "Utilities"),
    ]
    summary = summarize_by_category(receipts)
    assert [s.category for s in summary] == ["Travel", "Groceries", "Utilities"]


@pytest.mark.parametrize(
    "period",
    [Period.DAILY, Period.WEEKLY, Period.MONTHLY, Period.QUARTERLY, Period.YEARLY],
)
def test_summary_totals_match_included_receipts(period: Period) -> None:
    categories = ["Groceries", "Travel", None, "Shopping"]
    receipts = [
        _receipt(
            i,
            (date(2024, 1, 1) + timedelta(days=i * 3)).isoformat(),
            None if i % 7 == 0 else round(i * 1.25, 2),
            categories[i % len(categories)],
        )
        for i in range(120)
    ]
    view = build_history(receipts, period, NOW)

    included_total = sum(r.total_amount or 0 for r in view.receipts)
    assert sum(s.total for s in view.summary) == pytest.approx(included_total)
    assert sum(s.transaction_count for s in view.summary) == len(view.receipts)
    totals = [s.total for s in view.summary]
    assert all(a >= b for a, b in zip(totals, totals[1:]))


def test_stored_unknown_category_is_kept_verbatim() -> None:
    receipts = [_receipt(1, "2024-03-20", 2.0, "Pets")]
    view = build_history(receipts, Period.DAILY, NOW)
    assert view.summary[0].category == "Pets"


def test_search_matches_name_category_and_amount() -> None:
    receipts = [
        _receipt(1, "2024-03-20", 12.5, "Groceries", name="Whole Foods"),
        _receipt(2, "2024-03-20", 99.0, "Travel", name="Airline"),
    ]

    assert [r.id for r in search_receipts(receipts, "whole")] == [1]
    assert [r.id for r in search_receipts(receipts, "TRAVEL")] == [2]
    assert [r.id for r in search_receipts(receipts, "12.50")] == [1]
    assert [r.id for r in search_receipts(receipts, "")] == [1, 2]


def test_search_tolerates_typos_in_merchant_name() -> None:
    receipts = [
        _receipt(1, "2024-03-20", 4.0, "Food & Drink", name="Starbucks Coffee"),
        _receipt(2, "2024-03-20", 4.0, "Groceries", name="Trader Joe's"),
    ]

    assert [r.id for r in search_receipts(receipts, "starbuks")] == [1]
