#!/usr/bin/env python3
"""Open many seeded packs and compare observed rarity rates with the drop table."""

from __future__ import annotations

import argparse
import random
from pathlib import Path
from typing import Any

from card_models import RARITIES, Player, PlayerStats
from collection_store import load_players
from collection_view import get_collection_stats
from pack_engine import DEFAULT_PACK_SIZE, RARITY_WEIGHTS, open_pack


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Simulate pack openings and report rarity frequencies against their weights."
    )
    parser.add_argument("--packs", default=10_000, type=int, help="Number of packs to open.")
    parser.add_argument(
        "--pack-size", default=DEFAULT_PACK_SIZE, type=int, help="Cards per pack."
    )
    parser.add_argument("--seed", default=None, type=int, help="Seed for a reproducible run.")
    parser.add_argument(
        "--players-file",
        default=None,
        type=Path,
        help="Players JSON to draw from. A synthetic pool of eligible players is used when omitted.",
    )
    parser.add_argument(
        "--synthetic-players",
        default=20,
        type=int,
        help="Size of the synthetic player pool.",
    )
    return parser.parse_args(argv)


def synthetic_players(count: int) -> list[Player]:
    return [
        Player(id=f"player-{index}", name=f"Player {index}", stats=PlayerStats(game_count=1))
        for index in range(1, count + 1)
    ]


def simulate(
    players: list[Player], packs: int, pack_size: int, seed: int | None
) -> dict[str, Any]:
    rng = random.Random(seed)
    cards = []
    for _ in range(packs):
        cards.extend(open_pack(players, pack_size, rng, now=0))

    stats = get_collection_stats(cards)
    total_weight = sum(RARITY_WEIGHTS.values())
    rows = []
    for rarity in RARITIES:
        observed = stats.by_rarity[rarity] / stats.total if stats.total else 0.0
        expected = RARITY_WEIGHTS[rarity] / total_weight
        rows.append(
            {
                "rarity": rarity,
                "count": stats.by_rarity[rarity],
                "observed": observed,
                "expected": expected,
                "delta": observed - expected,
            }
        )
    return {"total_cards": stats.total, "unique_players": stats.unique_players, "rows": rows}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.packs < 0 or args.pack_size < 0:
        print("--packs and --pack-size must be non-negative.")
        return 1

    if args.players_file is not None:
        if not args.players_file.exists():
            print(f"Players file not found: {args.players_file}")
            return 1
        players = load_players(args.players_file)
    else:
        players = synthetic_players(args.synthetic_players)

    report = simulate(players, args.packs, args.pack_size, args.seed)
    if report["total_cards"] == 0:
        print("No cards drawn: the player pool has no pack-eligible players.")
        return 1

    print(
        f"packs={args.packs} pack_size={args.pack_size} seed={args.seed} "
        f"total_cards={report['total_cards']} unique_players={report['unique_players']}"
    )
    for row in report["rows"]:
        print(
            f"  {row['rarity']:<10} count={row['count']:<8} "
            f"observed={row['observed']:.4%} expected={row['expected']:.4%} "
            f"delta={row['delta']:+.4%}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
