"""Card, player and snapshot records shared by the pack engine and collection views."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


RARITIES = ("normal", "foil", "holo", "gold", "prismatic")
RARITY_RANK = {rarity: index + 1 for index, rarity in enumerate(RARITIES)}

TIERS = ("Recruit", "Prospect", "Contender", "Challenger", "Elite", "Premier")


def _as_number(value: Any, default: float = 0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value


def _as_optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def validate_rarity(rarity: Any) -> str:
    if rarity not in RARITY_RANK:
        raise ValueError(f"Unknown rarity: {rarity!r}. Expected one of {list(RARITIES)}.")
    return rarity


@dataclass(frozen=True)
class PlayerStats:
    rating: float = 0
    kr: float = 0
    adr: float = 0
    kast: float = 0
    impact: float = 0
    game_count: int = 0
    rounds: int = 0
    kills: int = 0
    deaths: int = 0
    assists: int = 0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> PlayerStats:
        return cls(
            rating=_as_number(raw.get("rating")),
            kr=_as_number(raw.get("kr")),
            adr=_as_number(raw.get("adr")),
            kast=_as_number(raw.get("kast")),
            impact=_as_number(raw.get("impact")),
            game_count=int(_as_number(raw.get("gameCount"))),
            rounds=int(_as_number(raw.get("rounds"))),
            kills=int(_as_number(raw.get("kills"))),
            deaths=int(_as_number(raw.get("deaths"))),
            assists=int(_as_number(raw.get("assists"))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rating": self.rating,
            "kr": self.kr,
            "adr": self.adr,
            "kast": self.kast,
            "impact": self.impact,
            "gameCount": self.game_count,
            "rounds": self.rounds,
            "kills": self.kills,
            "deaths": self.deaths,
            "assists": self.assists,
        }


@dataclass(frozen=True)
class Team:
    name: str
    franchise_name: str = ""
    franchise_prefix: str = ""

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Team:
        franchise = raw.get("franchise") if isinstance(raw.get("franchise"), dict) else {}
        return cls(
            name=str(raw.get("name", "")),
            franchise_name=str(franchise.get("name") or ""),
            franchise_prefix=str(franchise.get("prefix") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "franchise": {"name": self.franchise_name, "prefix": self.franchise_prefix},
        }


@dataclass(frozen=True)
class Player:
    """Point-in-time player record as supplied by the players feed.

    ``tier`` holds the tier name only; the feed nests it as ``{"name": ...}``.
    """

    id: str
    name: str
    avatar_url: str = ""
    tier: str | None = None
    team: Team | None = None
    stats: PlayerStats | None = None
    mmr: int | None = None

    @property
    def is_pack_eligible(self) -> bool:
        return self.stats is not None and self.stats.game_count > 0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Player:
        if not isinstance(raw, dict):
            raise TypeError("player must be a dictionary.")
        player_id = raw.get("id")
        if player_id is None or str(player_id).strip() == "":
            raise ValueError("player.id is missing.")

        tier_raw = raw.get("tier")
        tier = tier_raw.get("name") if isinstance(tier_raw, dict) else tier_raw
        team_raw = raw.get("team")
        stats_raw = raw.get("stats")
        mmr = raw.get("mmr")
        return cls(
            id=str(player_id),
            name=str(raw.get("name") or ""),
            avatar_url=str(raw.get("avatarUrl") or ""),
            tier=_as_optional_str(tier),
            team=Team.from_dict(team_raw) if isinstance(team_raw, dict) else None,
            stats=PlayerStats.from_dict(stats_raw) if isinstance(stats_raw, dict) else None,
            mmr=mmr if isinstance(mmr, int) and not isinstance(mmr, bool) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "avatarUrl": self.avatar_url,
            "tier": {"name": self.tier} if self.tier is not None else None,
        }
        if self.team is not None:
            payload["team"] = self.team.to_dict()
        if self.stats is not None:
            payload["stats"] = self.stats.to_dict()
        if self.mmr is not None:
            payload["mmr"] = self.mmr
        return payload


@dataclass(frozen=True)
class Card:
    """A single owned card instance.

    Cards never change player or rarity after creation. ``snapshot_id`` is only
    set for cards issued by the stats backend, which references an immutable
    season snapshot of the player rather than the live record.
    """

    id: str
    player: Player
    rarity: str
    obtained_at: int
    snapshot_id: str | None = None
    season: int | None = None
    stat_type: str | None = None

    @property
    def identity_key(self) -> str:
        return self.snapshot_id or self.player.id

    @property
    def rating(self) -> float:
        return self.player.stats.rating if self.player.stats is not None else 0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Card:
        if not isinstance(raw, dict):
            raise TypeError("card must be a dictionary.")
        card_id = raw.get("id")
        if not isinstance(card_id, str) or not card_id:
            raise ValueError("card.id is missing.")
        obtained_at = raw.get("obtainedAt")
        if isinstance(obtained_at, bool) or not isinstance(obtained_at, int):
            raise ValueError(f"card.obtainedAt must be an integer epoch, got {obtained_at!r}.")
        season = raw.get("season")
        return cls(
            id=card_id,
            player=Player.from_dict(raw.get("player")),
            rarity=validate_rarity(raw.get("rarity")),
            obtained_at=obtained_at,
            snapshot_id=_as_optional_str(raw.get("snapshotId")),
            season=season if isinstance(season, int) and not isinstance(season, bool) else None,
            stat_type=_as_optional_str(raw.get("statType")),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "player": self.player.to_dict(),
            "rarity": self.rarity,
            "obtainedAt": self.obtained_at,
        }
        if self.snapshot_id is not None:
            payload["snapshotId"] = self.snapshot_id
        if self.season is not None:
            payload["season"] = self.season
        if self.stat_type is not None:
            payload["statType"] = self.stat_type
        return payload


def iso_to_epoch_ms(value: str) -> int:
    """Parse an ISO-8601 timestamp into a millisecond epoch. Naive values are UTC."""

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def card_from_owned_card(payload: dict[str, Any]) -> Card:
    """Convert a server-issued owned card into the internal ``Card`` shape.

    Mapping:
      id                                  -> Card.id
      cardSnapshotId (or snapshot.id)     -> Card.snapshot_id
      rarity                              -> Card.rarity
      obtainedAt (ISO-8601)               -> Card.obtained_at (ms epoch)
      snapshot.season / snapshot.statType -> Card.season / Card.stat_type
      snapshot.cscPlayerId                -> Player.id
      snapshot.playerName                 -> Player.name
      snapshot.avatarUrl / tier / mmr     -> Player.avatar_url / tier / mmr
      snapshot.teamName, franchiseName,
        franchisePrefix                   -> Player.team (None without teamName)
      snapshot.rating, kr, adr, kast, impact, gameCount,
        kills, deaths, assists            -> Player.stats (rounds is not reported, 0)
    """

    if not isinstance(payload, dict):
        raise TypeError("owned card must be a dictionary.")
    snapshot = payload.get("snapshot")
    if not isinstance(snapshot, dict):
        raise ValueError(f"Owned card {payload.get('id')!r} has no snapshot.")

    team_name = _as_optional_str(snapshot.get("teamName"))
    team = None
    if team_name is not None:
        team = Team(
            name=team_name,
            franchise_name=snapshot.get("franchiseName") or "",
            franchise_prefix=snapshot.get("franchisePrefix") or "",
        )
    mmr = snapshot.get("mmr")
    player = Player(
        id=str(snapshot.get("cscPlayerId", "")),
        name=str(snapshot.get("playerName") or ""),
        avatar_url=str(snapshot.get("avatarUrl") or ""),
        tier=_as_optional_str(snapshot.get("tier")),
        team=team,
        stats=PlayerStats(
            rating=_as_number(snapshot.get("rating")),
            kr=_as_number(snapshot.get("kr")),
            adr=_as_number(snapshot.get("adr")),
            kast=_as_number(snapshot.get("kast")),
            impact=_as_number(snapshot.get("impact")),
            game_count=int(_as_number(snapshot.get("gameCount"))),
            rounds=0,
            kills=int(_as_number(snapshot.get("kills"))),
            deaths=int(_as_number(snapshot.get("deaths"))),
            assists=int(_as_number(snapshot.get("assists"))),
        ),
        mmr=mmr if isinstance(mmr, int) and not isinstance(mmr, bool) and mmr else None,
    )

    snapshot_id = _as_optional_str(payload.get("cardSnapshotId")) or _as_optional_str(
        snapshot.get("id")
    )
    season = snapshot.get("season")
    obtained_raw = payload.get("obtainedAt")
    if not isinstance(obtained_raw, str):
        raise ValueError(f"Owned card {payload.get('id')!r} has no obtainedAt timestamp.")

    return Card(
        id=str(payload.get("id", "")),
        player=player,
        rarity=validate_rarity(payload.get("rarity")),
        obtained_at=iso_to_epoch_ms(obtained_raw),
        snapshot_id=snapshot_id,
        season=season if isinstance(season, int) and not isinstance(season, bool) else None,
        stat_type=_as_optional_str(snapshot.get("statType")),
    )
