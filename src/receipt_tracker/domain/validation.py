from datetime import datetime

from receipt_tracker.domain.periods import parse_record_date
from receipt_tracker.errors import ValidationError
from receipt_tracker.models import ReceiptData


def year_mismatch_message(current_year: int) -> str:
    return (
        f"Receipt date is not from the current year ({current_year}). "
        "Only transactions from the current calendar year are accepted."
    )


def check_current_year(receipt: ReceiptData, now: datetime | None = None) -> None:
    """Reject a dated receipt whose year is not the current year.

    Undated receipts pass; extraction may legitimately miss the date.
    """
    if not receipt.transaction_date:
        return
    current_year = (now or datetime.now()).year
    parsed = parse_record_date(receipt.transaction_date)
    if parsed is None or parsed.year != current_year:
        raise ValidationError(
            f"transaction_date={receipt.transaction_date!r} outside {current_year}",
            user_message=year_mismatch_message(current_year),
        )


def validate_extracted(receipt: ReceiptData, now: datetime | None = None) -> ReceiptData:
    check_current_year(receipt, now)
    return receipt


def validate_manual(receipt: ReceiptData, now: datetime | None = None) -> ReceiptData:
    if not receipt.transaction_date:
        raise ValidationError(
            "manual entry without transaction_date",
            user_message="Transaction date is required.",
        )
    check_current_year(receipt, now)
    return receipt
