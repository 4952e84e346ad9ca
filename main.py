import json
import os
from pathlib import Path

import requests
from tqdm import tqdm

from card_models import Player

API_BASE_URL = os.getenv("CSC_API_URL", "http://localhost:3001")
OUTPUT_DIR = Path(os.getenv("DATA_DIR") or "data")
OUTPUT_FILE = OUTPUT_DIR / "players.json"

MAX_RETRIES = 3


def fetch_players_with_retry(url):
    for attempt in range(MAX_RETRIES):
        try:
            response = requests.get(url, timeout=20)
            response.raise_for_status()
            payload = response.json()
            return payload.get("players", []) if isinstance(payload, dict) else payload

        except (requests.RequestException, ValueError) as e:
            print(f"Retry {attempt+1}/{MAX_RETRIES} failed:", e)

    return None


def normalize_players(raw_players):
    players = []
    skipped = 0

    for raw in tqdm(raw_players, desc="players", unit="player"):
        try:
            players.append(Player.from_dict(raw))
        except (TypeError, ValueError) as e:
            skipped += 1
            print(f"⚠️ Skipping player entry: {e}")

    return players, skipped


def main():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    print(f"\n📦 Fetching players from {API_BASE_URL}")

    raw_players = fetch_players_with_retry(f"{API_BASE_URL}/players")
    if raw_players is None:
        print("❌ Failed to fetch players")
        return 1

    players, skipped = normalize_players(raw_players)
    eligible = sum(1 for player in players if player.is_pack_eligible)

    with open(OUTPUT_FILE, "w", encoding="utf-8") as f:
        json.dump([player.to_dict() for player in players], f, indent=2)

    print(
        f"\n✅ Saved {len(players)} players ({eligible} pack-eligible, {skipped} skipped) "
        f"-> {OUTPUT_FILE.as_posix()}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
