"""Pack opening engine: weighted rarity rolls and player draws."""

from __future__ import annotations

import logging
import random
import time
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from card_models import RARITIES, Card, Player, validate_rarity


LOGGER = logging.getLogger(__name__)

DEFAULT_PACK_SIZE = 5

# roll_rarity scans in RARITIES order, not in this mapping's order.
RARITY_WEIGHTS: dict[str, float] = {
    "normal": 69.5,
    "foil": 20,
    "holo": 8,
    "gold": 2,
    "prismatic": 0.5,
}


class RandomSource(Protocol):
    """Anything that yields floats in [0, 1); ``random.Random`` qualifies."""

    def random(self) -> float: ...


@dataclass(frozen=True)
class PackConfig:
    """Pack size and drop weights used for one opening."""

    pack_size: int = DEFAULT_PACK_SIZE
    weights: Mapping[str, float] = field(default_factory=lambda: dict(RARITY_WEIGHTS))

    def validate(self) -> None:
        if isinstance(self.pack_size, bool) or not isinstance(self.pack_size, int):
            raise TypeError("pack_size must be an integer.")
        if self.pack_size < 0:
            raise ValueError(f"pack_size must be non-negative, got {self.pack_size}.")
        unknown = sorted(set(self.weights) - set(RARITIES))
        if unknown:
            raise ValueError(f"Unknown rarities in weights: {unknown}")
        if any(weight < 0 for weight in self.weights.values()):
            raise ValueError("Rarity weights must be non-negative.")
        if sum(self.weights.values()) <= 0:
            raise ValueError("Rarity weights must sum to a positive total.")


DEFAULT_CONFIG = PackConfig()


def _coerce_config(config: PackConfig | dict[str, Any] | None) -> PackConfig:
    if config is None:
        return DEFAULT_CONFIG
    if isinstance(config, PackConfig):
        return config
    if isinstance(config, dict):
        allowed_fields = {"pack_size", "weights"}
        unknown = sorted(set(config.keys()) - allowed_fields)
        if unknown:
            raise ValueError(f"Unknown config fields: {unknown}")
        return PackConfig(**config)
    raise TypeError("config must be PackConfig, dict, or None")


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def roll_rarity(rng: RandomSource, weights: Mapping[str, float] = RARITY_WEIGHTS) -> str:
    """Pick a rarity with probability proportional to its weight.

    Scans rarities in ``RARITIES`` order whatever the mapping order, subtracting
    each weight from a uniform draw over the total; the first rarity that brings
    the remainder to zero or below wins. Rarities without a positive weight are
    never picked. Falls back to ``"normal"`` on floating-point drift.
    """

    ordered = [(rarity, weights.get(rarity, 0)) for rarity in RARITIES]
    total_weight = sum(weight for _, weight in ordered)
    if total_weight <= 0:
        raise ValueError("Rarity weights must sum to a positive total.")

    remainder = rng.random() * total_weight
    for rarity, weight in ordered:
        if weight <= 0:
            continue
        remainder -= weight
        if remainder <= 0:
            return rarity
    return "normal"


def generate_card_id() -> str:
    return f"card-{time.time_ns()}-{uuid.uuid4().hex[:8]}"


def create_card(player: Player, rarity: str, now: int) -> Card:
    return Card(
        id=generate_card_id(),
        player=player,
        rarity=validate_rarity(rarity),
        obtained_at=now,
    )


def eligible_players(players: Sequence[Player]) -> list[Player]:
    """Players with recorded competitive games; only they can appear in packs."""

    return [player for player in players if player.is_pack_eligible]


def _pick_player(pool: Sequence[Player], rng: RandomSource) -> Player:
    index = int(rng.random() * len(pool))
    return pool[min(index, len(pool) - 1)]


def open_pack(
    players: Sequence[Player],
    pack_size: int = DEFAULT_PACK_SIZE,
    rng: RandomSource | None = None,
    now: int | None = None,
    *,
    weights: Mapping[str, float] = RARITY_WEIGHTS,
) -> list[Card]:
    """Open one pack of ``pack_size`` cards drawn from the eligible players.

    Each draw picks a player uniformly (with replacement) and then rolls an
    independent rarity. Returns an empty list when nobody is eligible.
    """

    if isinstance(pack_size, bool) or not isinstance(pack_size, int):
        raise TypeError("pack_size must be an integer.")
    if pack_size < 0:
        raise ValueError(f"pack_size must be non-negative, got {pack_size}.")

    if not players:
        return []
    pool = eligible_players(players)
    if not pool:
        LOGGER.info("open_pack_skipped players=%s eligible=0", len(players))
        return []

    rng = rng if rng is not None else random.Random()
    stamp = now if now is not None else _now_ms()

    cards: list[Card] = []
    for draw_index in range(pack_size):
        player = _pick_player(pool, rng)
        rarity = roll_rarity(rng, weights)
        cards.append(create_card(player, rarity, stamp))
        LOGGER.debug("Draw %s player=%s rarity=%s", draw_index + 1, player.id, rarity)

    LOGGER.info("Generated pack size=%s eligible_players=%s", len(cards), len(pool))
    return cards


def open_configured_pack(
    players: Sequence[Player],
    config: PackConfig | dict[str, Any] | None = None,
    *,
    seed: int | None = None,
    rng: RandomSource | None = None,
    now: int | None = None,
) -> list[Card]:
    """Open a pack from a ``PackConfig`` (or dict); ``seed`` makes the draw reproducible."""

    final_config = _coerce_config(config)
    final_config.validate()
    source = rng if rng is not None else random.Random(seed)
    return open_pack(
        players,
        final_config.pack_size,
        source,
        now,
        weights=final_config.weights,
    )
