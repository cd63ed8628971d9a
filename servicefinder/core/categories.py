"""Service categories and their display descriptors."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, Optional


class Category(str, Enum):
    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"
    CARPENTRY = "carpentry"
    PAINTING = "painting"
    CLEANING = "cleaning"
    GARDENING = "gardening"
    LANDSCAPING = "landscaping"
    ROOFING = "roofing"
    HVAC = "hvac"
    HANDYMAN = "handyman"


CATEGORY_VALUES = frozenset(c.value for c in Category)

# Sentinel used by filters for "no category restriction"
ALL_CATEGORIES = "All"


@dataclass(frozen=True)
class CategoryStyle:
    gradient: str
    background: str
    badge: str
    icon_background: str
    icon_color: str
    hover_background: str
    border: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def _style(primary: str, secondary: str) -> CategoryStyle:
    return CategoryStyle(
        gradient=f"from-{primary}-500 to-{secondary}-600",
        background=f"bg-gradient-to-br from-{primary}-50 to-{secondary}-50",
        badge=f"from-{primary}-600 to-{secondary}-700",
        icon_background=f"bg-{primary}-100",
        icon_color=f"text-{primary}-600",
        hover_background=f"hover:bg-{primary}-50",
        border=f"border-{primary}-200",
    )


DEFAULT_STYLE = _style("gray", "slate")

CATEGORY_STYLES: Dict[Category, CategoryStyle] = {
    Category.PLUMBING: _style("blue", "cyan"),
    Category.ELECTRICAL: _style("amber", "orange"),
    Category.CARPENTRY: _style("emerald", "teal"),
    Category.PAINTING: _style("purple", "pink"),
    Category.CLEANING: _style("indigo", "blue"),
    Category.GARDENING: _style("green", "lime"),
}


def parse_category(value: Optional[str]) -> Optional[Category]:
    if not value:
        return None
    try:
        return Category(value.strip().lower())
    except ValueError:
        return None


def style_for(category: Optional[str]) -> CategoryStyle:
    """Descriptor for a category, falling back to the neutral style."""
    parsed = parse_category(category)
    if parsed is None:
        return DEFAULT_STYLE
    return CATEGORY_STYLES.get(parsed, DEFAULT_STYLE)
