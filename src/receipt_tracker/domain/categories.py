from receipt_tracker.models import Category

UNCATEGORIZED = "Uncategorized"

CATEGORY_STYLES: dict[Category, str] = {
    Category.FOOD_AND_DRINK: "badge-orange",
    Category.GROCERIES: "badge-green",
    Category.TRANSPORTATION: "badge-blue",
    Category.UTILITIES: "badge-yellow",
    Category.RENT_MORTGAGE: "badge-slate",
    Category.SHOPPING: "badge-pink",
    Category.ENTERTAINMENT: "badge-purple",
    Category.HEALTH_AND_WELLNESS: "badge-teal",
    Category.TRAVEL: "badge-indigo",
    Category.OTHER: "badge-slate",
}

MISSING_STYLE = "badge-slate"


def parse_category(value: str | None) -> Category | None:
    if not value:
        return None
    lowered = value.strip().lower()
    for member in Category:
        if member.value.lower() == lowered:
            return member
    return None


def category_style(value: str | None) -> str:
    """CSS class for a stored category; unknown labels share Other's style."""
    if not value:
        return MISSING_STYLE
    return CATEGORY_STYLES[parse_category(value) or Category.OTHER]


def group_label(value: str | None) -> str:
    return value or UNCATEGORIZED
