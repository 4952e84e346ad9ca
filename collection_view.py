"""Collection statistics plus the filter, sort and pagination views over card sets.

The same view is used for a player's own collection, for browsing another
player's collection when composing a trade, and for the duplicate trade-in
browser. Every function here takes the card list as input and returns new
values; nothing is cached between calls.
"""

from __future__ import annotations

import math
import unicodedata
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from card_models import RARITIES, RARITY_RANK, TIERS, Card


ALL = "all"
SORT_KEYS = ("newest", "oldest", "rarity", "rating", "name")
DEFAULT_SORT = "newest"
DEFAULT_PER_PAGE = 12

_TIER_POSITION = {tier: index for index, tier in enumerate(TIERS)}


@dataclass(frozen=True)
class CollectionStats:
    total: int
    by_rarity: dict[str, int]
    unique_players: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "byRarity": dict(self.by_rarity),
            "uniquePlayers": self.unique_players,
        }


def get_collection_stats(cards: Iterable[Card]) -> CollectionStats:
    by_rarity = {rarity: 0 for rarity in RARITIES}
    players: set[str] = set()
    total = 0
    for card in cards:
        total += 1
        by_rarity[card.rarity] += 1
        players.add(card.player.id)
    return CollectionStats(total=total, by_rarity=by_rarity, unique_players=len(players))


def available_tiers(cards: Iterable[Card]) -> list[str]:
    """Tier names present in ``cards``, in competitive order.

    Tier names outside the known ladder follow in order of first appearance.
    """

    seen: dict[str, int] = {}
    for card in cards:
        tier = card.player.tier
        if tier and tier not in seen:
            seen[tier] = len(seen)
    return sorted(seen, key=lambda tier: (_TIER_POSITION.get(tier, len(TIERS)), seen[tier]))


def _check_rarity_filter(rarity: str) -> None:
    if rarity != ALL and rarity not in RARITY_RANK:
        raise ValueError(f"Unknown rarity filter: {rarity!r}")


def filter_cards(
    cards: Iterable[Card],
    rarity: str = ALL,
    tier: str = ALL,
    search: str = "",
) -> list[Card]:
    _check_rarity_filter(rarity)
    needle = search.strip().casefold()
    matched: list[Card] = []
    for card in cards:
        if rarity != ALL and card.rarity != rarity:
            continue
        if tier != ALL and card.player.tier != tier:
            continue
        if needle and needle not in card.player.name.casefold():
            continue
        matched.append(card)
    return matched


# Letters with no Unicode decomposition, folded to their base spelling.
_NAME_FOLDS = str.maketrans(
    {
        "ø": "o", "Ø": "o",
        "æ": "ae", "Æ": "ae",
        "œ": "oe", "Œ": "oe",
        "đ": "d", "Đ": "d",
        "ł": "l", "Ł": "l",
        "þ": "th", "Þ": "th",
    }
)


def name_sort_key(name: str) -> tuple[str, str]:
    """Accent- and case-insensitive key so "Émile" sorts beside "Eve", not after "Zed"."""

    text = unicodedata.normalize("NFKD", name)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return (text.translate(_NAME_FOLDS).casefold(), name)


# (key function, descending)
_SORTS: dict[str, tuple[Callable[[Card], Any], bool]] = {
    "newest": (lambda card: card.obtained_at, True),
    "oldest": (lambda card: card.obtained_at, False),
    "rarity": (lambda card: RARITY_RANK[card.rarity], True),
    "rating": (lambda card: card.rating, True),
    "name": (lambda card: name_sort_key(card.player.name), False),
}


def sort_cards(cards: Iterable[Card], sort_key: str = DEFAULT_SORT) -> list[Card]:
    """Return ``cards`` ordered by ``sort_key``; ties keep their input order."""

    try:
        key, descending = _SORTS[sort_key]
    except KeyError:
        raise ValueError(f"Unknown sort key: {sort_key!r}. Expected one of {list(SORT_KEYS)}.") from None
    # sorted() stays stable with reverse=True
    return sorted(cards, key=key, reverse=descending)


def count_pages(count: int, per_page: int) -> int:
    if per_page < 1:
        raise ValueError(f"per_page must be at least 1, got {per_page}.")
    return math.ceil(count / per_page)


def clamp_page(page: int, total_pages: int) -> int:
    return min(max(page, 1), max(1, total_pages))


def paginate(cards: Sequence[Card], page: int, per_page: int) -> list[Card]:
    effective = clamp_page(page, count_pages(len(cards), per_page))
    return list(cards[(effective - 1) * per_page : effective * per_page])


@dataclass(frozen=True)
class ViewResult:
    filtered_cards: list[Card]
    total_pages: int
    effective_page: int
    page_cards: list[Card]
    tiers: list[str] = field(default_factory=list)

    @property
    def filtered_count(self) -> int:
        return len(self.filtered_cards)


@dataclass(frozen=True)
class CollectionView:
    """Filter, sort and page settings for browsing a card set.

    Changing any filter, the sort or the page size returns a view on page 1,
    so a stale page number never outlives the result set it was chosen for.
    """

    rarity: str = ALL
    tier: str = ALL
    search: str = ""
    sort: str = DEFAULT_SORT
    per_page: int = DEFAULT_PER_PAGE
    page: int = 1

    def __post_init__(self) -> None:
        _check_rarity_filter(self.rarity)
        if self.sort not in _SORTS:
            raise ValueError(f"Unknown sort key: {self.sort!r}")
        if self.per_page < 1:
            raise ValueError(f"per_page must be at least 1, got {self.per_page}.")

    def with_rarity(self, rarity: str) -> CollectionView:
        return replace(self, rarity=rarity, page=1)

    def with_tier(self, tier: str) -> CollectionView:
        return replace(self, tier=tier, page=1)

    def with_search(self, search: str) -> CollectionView:
        return replace(self, search=search, page=1)

    def with_sort(self, sort: str) -> CollectionView:
        return replace(self, sort=sort, page=1)

    def with_per_page(self, per_page: int) -> CollectionView:
        return replace(self, per_page=per_page, page=1)

    def with_page(self, page: int) -> CollectionView:
        return replace(self, page=page)

    def apply(self, cards: Sequence[Card]) -> ViewResult:
        filtered = sort_cards(
            filter_cards(cards, rarity=self.rarity, tier=self.tier, search=self.search),
            self.sort,
        )
        total_pages = count_pages(len(filtered), self.per_page)
        effective_page = clamp_page(self.page, total_pages)
        start = (effective_page - 1) * self.per_page
        return ViewResult(
            filtered_cards=filtered,
            total_pages=total_pages,
            effective_page=effective_page,
            page_cards=filtered[start : start + self.per_page],
            tiers=available_tiers(cards),
        )
