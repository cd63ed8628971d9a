"""Local listing queries.

The full listing collection is fetched from the backend once and every
search, filter, sort and page operation runs over the in-memory copy.
PostgREST has no full-text search, so text matching happens here.
"""

import logging
import math
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from fastapi import HTTPException

from .categories import ALL_CATEGORIES, style_for


logger = logging.getLogger(__name__)

Listing = Dict[str, Any]

ALL_CITIES = "All"
DEFAULT_PAGE_SIZE = 9
TOP_RATED_THRESHOLD = 4.5
SEARCH_FIELDS = ("name", "description", "category", "city")

# Postgres trims trailing zeros from fractional seconds
_FRACTION_RE = re.compile(r"\.(\d+)")


class SortKey(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    RATING_HIGH = "rating-high"
    RATING_LOW = "rating-low"
    NAME = "name"


@dataclass(frozen=True)
class ListingFilters:
    search: str = ""
    category: str = ALL_CATEGORIES
    city: str = ALL_CITIES
    min_rating: float = 0
    sort: SortKey = SortKey.NEWEST


def _text(listing: Listing, key: str) -> str:
    value = listing.get(key)
    return value if isinstance(value, str) else ""


def _rating(listing: Listing) -> float:
    value = listing.get("rating")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


def _normalize_iso(value: str) -> str:
    value = value.strip().replace("Z", "+00:00")
    return _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)


def _timestamp(listing: Listing) -> float:
    value = listing.get("created_at")
    if isinstance(value, str) and value:
        try:
            value = datetime.fromisoformat(_normalize_iso(value))
        except ValueError:
            return 0.0
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    return 0.0


def matches_search(listing: Listing, term: str) -> bool:
    needle = term.lower()
    return any(needle in _text(listing, key).lower() for key in SEARCH_FIELDS)


def search_listings(listings: Iterable[Listing], term: str) -> List[Listing]:
    if not term:
        return list(listings)
    return [listing for listing in listings if matches_search(listing, term)]


def sort_listings(listings: Iterable[Listing], sort: SortKey) -> List[Listing]:
    items = list(listings)
    if sort == SortKey.NEWEST:
        return sorted(items, key=_timestamp, reverse=True)
    if sort == SortKey.OLDEST:
        return sorted(items, key=_timestamp)
    if sort == SortKey.RATING_HIGH:
        return sorted(items, key=_rating, reverse=True)
    if sort == SortKey.RATING_LOW:
        return sorted(items, key=_rating)
    if sort == SortKey.NAME:
        return sorted(items, key=lambda item: (_text(item, "name").casefold(), _text(item, "name")))
    return items


def filter_listings(listings: Iterable[Listing], filters: ListingFilters) -> List[Listing]:
    """Apply every active criterion (AND) and then the sort order."""
    filtered = search_listings(listings, filters.search)

    if filters.category and filters.category != ALL_CATEGORIES:
        category = filters.category.lower()
        filtered = [item for item in filtered if _text(item, "category") == category]

    if filters.city and filters.city != ALL_CITIES:
        filtered = [item for item in filtered if _text(item, "city") == filters.city]

    if filters.min_rating > 0:
        filtered = [item for item in filtered if _rating(item) >= filters.min_rating]

    return sort_listings(filtered, filters.sort)


def average_review_rating(listing: Listing) -> float:
    reviews = listing.get("reviews") or []
    ratings = [review.get("rating", 0) for review in reviews if isinstance(review, dict)]
    if not ratings:
        return 0
    return sum(ratings) / len(ratings)


def listing_card(listing: Listing) -> Listing:
    """Listing plus the derived fields a card renders."""
    average = average_review_rating(listing)
    card = dict(listing)
    card["average_rating"] = round(average, 1)
    card["review_count"] = len(listing.get("reviews") or [])
    card["is_top_rated"] = average >= TOP_RATED_THRESHOLD
    card["style"] = style_for(_text(listing, "category")).to_dict()
    return card


def page_count(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if total > 0 else 0


def clamp_page(page: int, total_pages: int) -> int:
    return max(1, min(page, total_pages))


def paginate(items: List[Listing], page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
    total_pages = page_count(len(items), page_size)
    current = clamp_page(page, total_pages)
    start = (current - 1) * page_size
    return {
        "items": items[start:start + page_size],
        "pagination": {
            "page": current,
            "page_size": page_size,
            "total_items": len(items),
            "total_pages": total_pages,
            "has_next": current < total_pages,
            "has_previous": current > 1,
        },
    }


class Paginator:
    """Page cursor over a list that resets whenever the list is replaced."""

    def __init__(self, items: Optional[List[Listing]] = None, page_size: int = DEFAULT_PAGE_SIZE):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self._items: List[Listing] = list(items or [])
        self.current_page = 1

    @property
    def total_pages(self) -> int:
        return page_count(len(self._items), self.page_size)

    @property
    def items(self) -> List[Listing]:
        start = (self.current_page - 1) * self.page_size
        return self._items[start:start + self.page_size]

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.current_page > 1

    def set_items(self, items: List[Listing]) -> None:
        self._items = list(items)
        self.current_page = 1

    def go_to(self, page: int) -> int:
        self.current_page = clamp_page(page, self.total_pages)
        return self.current_page

    def next_page(self) -> int:
        return self.go_to(self.current_page + 1)

    def previous_page(self) -> int:
        return self.go_to(self.current_page - 1)

    def reset(self) -> None:
        self.current_page = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page": self.current_page,
            "page_size": self.page_size,
            "total_items": len(self._items),
            "total_pages": self.total_pages,
            "has_next": self.has_next,
            "has_previous": self.has_previous,
        }


class ListingDirectory:
    """Fetch-once store of the listing collection.

    ``loader`` performs the single backend query. A failed fetch records the
    error message and keeps whatever collection was loaded before.
    """

    def __init__(self, loader: Callable[[], List[Listing]]):
        self._loader = loader
        self.listings: List[Listing] = []
        self.loading = False
        self.error: Optional[str] = None
        self._listeners: List[Callable[[List[Listing]], None]] = []

    def fetch(self) -> List[Listing]:
        self.loading = True
        self.error = None
        try:
            self.listings = list(self._loader())
        except HTTPException as e:
            logger.error(f"Error fetching listings: {e.detail}")
            self.error = e.detail or "Failed to fetch services"
        finally:
            self.loading = False

        if self.error is None:
            for listener in list(self._listeners):
                listener(self.listings)
        return self.listings

    refetch = fetch

    def subscribe(self, listener: Callable[[List[Listing]], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get(self, listing_id: str) -> Optional[Listing]:
        for listing in self.listings:
            if listing.get("id") == listing_id:
                return listing
        return None

    def cities(self) -> List[str]:
        return sorted({_text(item, "city") for item in self.listings if _text(item, "city")})

    def query(self, filters: ListingFilters) -> List[Listing]:
        return filter_listings(self.listings, filters)


@dataclass
class ListingBrowser:
    """Stateful view over a directory: criteria, visible subset and page.

    The visible subset is recomputed whenever a criterion changes or the
    directory reloads its collection.
    """

    directory: ListingDirectory
    page_size: int = DEFAULT_PAGE_SIZE
    filters: ListingFilters = field(default_factory=ListingFilters)
    filtered: List[Listing] = field(default_factory=list, init=False)
    paginator: Paginator = field(init=False)

    def __post_init__(self):
        self.paginator = Paginator(page_size=self.page_size)
        self._unsubscribe = self.directory.subscribe(lambda _: self.recompute())
        self.recompute()

    def recompute(self) -> List[Listing]:
        self.filtered = self.directory.query(self.filters)
        self.paginator.set_items(self.filtered)
        return self.filtered

    def update(self, **changes: Any) -> List[Listing]:
        if "sort" in changes and not isinstance(changes["sort"], SortKey):
            changes["sort"] = SortKey(changes["sort"])
        self.filters = replace(self.filters, **changes)
        return self.recompute()

    def close(self) -> None:
        self._unsubscribe()
