from __future__ import annotations

import itertools
from collections.abc import Callable

import pytest

from card_models import Card, Player, PlayerStats


class ScriptedRandom:
    """Replays a fixed sequence of floats, cycling when exhausted."""

    def __init__(self, values: list[float]) -> None:
        self.values = list(values)
        self._cycle = itertools.cycle(self.values)
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return next(self._cycle)


@pytest.fixture
def scripted_rng() -> Callable[..., ScriptedRandom]:
    def _make(*values: float) -> ScriptedRandom:
        return ScriptedRandom(list(values))

    return _make


@pytest.fixture
def make_player() -> Callable[..., Player]:
    def _make(
        player_id: str,
        name: str | None = None,
        *,
        tier: str | None = "Contender",
        games: int | None = 10,
        rating: float = 1.0,
    ) -> Player:
        stats = None if games is None else PlayerStats(rating=rating, game_count=games)
        return Player(id=player_id, name=name or player_id, tier=tier, stats=stats)

    return _make


@pytest.fixture
def make_card(make_player: Callable[..., Player]) -> Callable[..., Card]:
    counter = itertools.count(1)

    def _make(
        player: Player | str = "p1",
        rarity: str = "normal",
        obtained_at: int | None = None,
        *,
        card_id: str | None = None,
        snapshot_id: str | None = None,
    ) -> Card:
        index = next(counter)
        if isinstance(player, str):
            player = make_player(player)
        return Card(
            id=card_id or f"card-{index}",
            player=player,
            rarity=rarity,
            obtained_at=index * 1000 if obtained_at is None else obtained_at,
            snapshot_id=snapshot_id,
        )

    return _make


@pytest.fixture
def player_pool(make_player: Callable[..., Player]) -> list[Player]:
    return [
        make_player("p1", "Alpha", tier="Recruit", rating=0.9),
        make_player("p2", "Bravo", tier="Elite", rating=1.2),
        make_player("p3", "Charlie", tier="Premier", rating=1.05),
    ]


def owned_card_payload(**overrides: object) -> dict:
    snapshot = {
        "id": "snap-1",
        "cscPlayerId": "csc-42",
        "playerName": "Zephyr",
        "avatarUrl": "https://cdn.example/zephyr.png",
        "season": 14,
        "statType": "Regulation",
        "tier": "Challenger",
        "teamName": "Sentinels",
        "franchiseName": "Night Watch",
        "franchisePrefix": "NW",
        "mmr": 1650,
        "rating": 1.18,
        "kr": 0.81,
        "adr": 84.2,
        "kast": 0.74,
        "impact": 1.3,
        "gameCount": 12,
        "kills": 240,
        "deaths": 190,
        "assists": 60,
        "createdAt": "2024-01-01T00:00:00.000Z",
    }
    snapshot.update(overrides.pop("snapshot", {}))  # type: ignore[arg-type]
    payload = {
        "id": "owned-1",
        "discordUserId": "discord-7",
        "cardSnapshotId": "snap-1",
        "rarity": "holo",
        "obtainedAt": "2024-03-05T12:00:00.000Z",
        "snapshot": snapshot,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def owned_card() -> Callable[..., dict]:
    return owned_card_payload
