from enum import Enum

from pydantic import BaseModel, Field


class Category(str, Enum):
    FOOD_AND_DRINK = "Food & Drink"
    GROCERIES = "Groceries"
    TRANSPORTATION = "Transportation"
    UTILITIES = "Utilities"
    RENT_MORTGAGE = "Rent/Mortgage"
    SHOPPING = "Shopping"
    ENTERTAINMENT = "Entertainment"
    HEALTH_AND_WELLNESS = "Health & Wellness"
    TRAVEL = "Travel"
    OTHER = "Other"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


class Period(str, Enum):
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    YEARLY = "Yearly"
    ALL = "All"

    @classmethod
    def parse(cls, raw: str | None) -> "Period":
        """Case-insensitive lookup; unknown or missing tokens mean All."""
        if raw:
            for member in cls:
                if member.value.lower() == raw.strip().lower():
                    return member
        return cls.ALL


class ReceiptData(BaseModel):
    transaction_name: str | None = None
    total_amount: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    transaction_date: str | None = None  # YYYY-MM-DD
    category: str | None = None


class SavedReceipt(ReceiptData):
    id: int | str  # int in local mode, document key in remote mode


class CategorySummary(BaseModel):
    category: str
    total: float
    transaction_count: int


class HistoryView(BaseModel):
    period: Period
    title: str
    receipts: list[SavedReceipt]
    summary: list[CategorySummary] = Field(default_factory=list)

    @property
    def is_summary(self) -> bool:
        return self.period is not Period.ALL

    @property
    def has_data(self) -> bool:
        return bool(self.summary) if self.is_summary else bool(self.receipts)
