"""Duplicate detection for the normal-card trade-in."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from card_models import Card


CARDS_PER_PACK = 15
TRADEABLE_RARITY = "normal"


@dataclass(frozen=True)
class TradeableResult:
    tradeable: list[Card]
    packs_available: int

    @property
    def tradeable_ids(self) -> set[str]:
        return {card.id for card in self.tradeable}


def find_tradeable(cards: Iterable[Card], cards_per_pack: int = CARDS_PER_PACK) -> TradeableResult:
    """Split surplus normal cards from the copy that is always kept.

    Normal cards are grouped by snapshot (or player, for locally opened cards).
    The oldest card of each group stays in the collection; every later copy is
    tradeable. Higher rarities never qualify.
    """

    if cards_per_pack < 1:
        raise ValueError(f"cards_per_pack must be at least 1, got {cards_per_pack}.")

    groups: dict[str, list[Card]] = {}
    for card in cards:
        if card.rarity != TRADEABLE_RARITY:
            continue
        groups.setdefault(card.identity_key, []).append(card)

    tradeable: list[Card] = []
    for group in groups.values():
        if len(group) < 2:
            continue
        ordered = sorted(group, key=lambda card: card.obtained_at)
        tradeable.extend(ordered[1:])

    return TradeableResult(tradeable=tradeable, packs_available=len(tradeable) // cards_per_pack)


@dataclass
class TradeInSelection:
    """Cards picked for one trade-in; complete at exactly ``cards_per_pack``."""

    cards_per_pack: int = CARDS_PER_PACK
    selected: list[str] = field(default_factory=list)

    def toggle(self, card_id: str) -> bool:
        """Flip ``card_id``; returns whether it is selected afterwards."""

        if card_id in self.selected:
            self.selected.remove(card_id)
            return False
        if len(self.selected) >= self.cards_per_pack:
            return False
        self.selected.append(card_id)
        return True

    def select_first(self, tradeable: Sequence[Card]) -> None:
        self.selected = [card.id for card in tradeable[: self.cards_per_pack]]

    def clear(self) -> None:
        self.selected = []

    @property
    def is_complete(self) -> bool:
        return len(self.selected) == self.cards_per_pack
