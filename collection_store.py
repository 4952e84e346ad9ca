"""Collection persistence, pack balance, pack codes and duplicate trade-ins."""

from __future__ import annotations

import copy
import json
import logging
import os
import secrets
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from card_models import Card, Player
from collection_view import CollectionStats, CollectionView, ViewResult, get_collection_stats
from duplicate_detector import TradeableResult, find_tradeable
from pack_engine import RandomSource, open_pack


LOGGER = logging.getLogger(__name__)

STATE_VERSION = 1
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

DEFAULT_STORE_CONFIG: dict[str, int] = {
    "default_pack_size": 5,
    "max_pack_size": 15,
    "cards_per_trade_in_pack": 15,
    "starting_pack_balance": 3,
    "default_per_page": 12,
    "code_length": 10,
}
# Keys that accept zero; every other setting must be positive.
_ZERO_ALLOWED = {"starting_pack_balance"}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def _from_iso(value: str) -> datetime:
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)


def load_store_config(config_path: str | Path = "config/store.json") -> dict[str, int]:
    """Load store settings, falling back to defaults for anything missing or invalid."""

    path = Path(config_path)
    default = dict(DEFAULT_STORE_CONFIG)
    if not path.exists():
        return default

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("Failed to parse store config (%s): %s. Using defaults.", path, exc)
        return default

    if not isinstance(raw, dict):
        LOGGER.warning("Store config must be an object. Using defaults.")
        return default

    config = dict(default)
    for key, fallback in default.items():
        value = raw.get(key, fallback)
        minimum = 0 if key in _ZERO_ALLOWED else 1
        if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
            LOGGER.warning("Invalid store config value %s=%r. Using %s.", key, value, fallback)
            value = fallback
        config[key] = value

    if config["default_pack_size"] > config["max_pack_size"]:
        LOGGER.warning(
            "default_pack_size=%s exceeds max_pack_size=%s. Clamping.",
            config["default_pack_size"],
            config["max_pack_size"],
        )
        config["default_pack_size"] = config["max_pack_size"]
    return config


def load_players(players_path: str | Path) -> list[Player]:
    """Read the cached players feed; unreadable files and bad entries are skipped."""

    path = Path(players_path)
    if not path.exists():
        LOGGER.warning("Players file missing at %s. Pack pool is empty.", path)
        return []
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        LOGGER.error("Players file is unreadable (%s): %s", path, exc)
        return []

    entries = raw.get("players") if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        LOGGER.error("Players file root is invalid: %s", path)
        return []

    players: list[Player] = []
    for entry in entries:
        try:
            players.append(Player.from_dict(entry))
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Skipping invalid player entry: %s", exc)
    return players


class CollectionError(ValueError):
    """A collection action the current state does not allow."""


class InsufficientPacksError(CollectionError):
    pass


class InvalidCodeError(CollectionError):
    pass


class CodeAlreadyRedeemedError(CollectionError):
    pass


class CodeExpiredError(CollectionError):
    pass


class InvalidTradeInError(CollectionError):
    pass


class CollectionRepository(ABC):
    """Where a player's collection state lives between runs."""

    @abstractmethod
    def load(self) -> dict[str, Any]:
        """Return the stored state, or ``{}`` when nothing usable is stored."""

    @abstractmethod
    def save(self, state: dict[str, Any]) -> None:
        """Replace the stored state with ``state``."""


class JsonCollectionRepository(CollectionRepository):
    """Collection state in one JSON file.

    Writes go to a sibling temp file that replaces the target only once fully
    written. An unreadable file is renamed to ``<name>.corrupt-<timestamp>``
    and loading starts over empty, so the next save never overwrites the only
    copy of a damaged collection.
    """

    def __init__(self, file_path: str | Path = "data/collection_state.json") -> None:
        self.file_path = Path(file_path)

    def load(self) -> dict[str, Any]:
        try:
            text = self.file_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            LOGGER.info("collection_state_missing path=%s starting=empty", self.file_path)
            return {}
        except UnicodeDecodeError:
            self._quarantine("not UTF-8 text")
            return {}

        try:
            state = json.loads(text)
        except json.JSONDecodeError as exc:
            self._quarantine(f"invalid JSON at line {exc.lineno}")
            return {}
        if not isinstance(state, dict):
            self._quarantine(f"root is {type(state).__name__}, expected object")
            return {}

        cards = state.get("cards")
        LOGGER.debug(
            "collection_state_loaded path=%s cards=%s",
            self.file_path,
            len(cards) if isinstance(cards, list) else 0,
        )
        return state

    def save(self, state: dict[str, Any]) -> None:
        directory = self.file_path.parent
        directory.mkdir(parents=True, exist_ok=True)
        handle, temp_name = tempfile.mkstemp(
            prefix=f".{self.file_path.name}.", suffix=".tmp", dir=directory
        )
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as stream:
                json.dump(state, stream, indent=2)
                stream.write("\n")
            os.replace(temp_name, self.file_path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise

    def _quarantine(self, reason: str) -> None:
        stamp = _utc_now().strftime("%Y%m%dT%H%M%S%f")
        target = self.file_path.with_name(f"{self.file_path.name}.corrupt-{stamp}")
        os.replace(self.file_path, target)
        LOGGER.error(
            "collection_state_corrupt path=%s reason=%s moved_to=%s starting=empty",
            self.file_path,
            reason,
            target,
        )



class InMemoryCollectionRepository(CollectionRepository):
    def __init__(self, state: dict[str, Any] | None = None) -> None:
        self.state = copy.deepcopy(state) if state else {}
        self.save_count = 0

    def load(self) -> dict[str, Any]:
        return copy.deepcopy(self.state)

    def save(self, state: dict[str, Any]) -> None:
        self.state = copy.deepcopy(state)
        self.save_count += 1


def normalize_code(code: str) -> str:
    return code.strip().upper()


class CollectionService:
    """Local authority for one player's cards, pack balance and codes.

    Pack draws, stats, views and duplicate detection are delegated to the pure
    modules; this class only decides what gets added or removed and persists
    the result.
    """

    def __init__(
        self,
        repository: CollectionRepository,
        config: dict[str, int] | None = None,
    ) -> None:
        self.repository = repository
        self.config = dict(DEFAULT_STORE_CONFIG)
        self.config.update(config or {})
        self.cards_per_trade_in_pack = self.config["cards_per_trade_in_pack"]

        self.state = self._validate_or_initialize_state(self.repository.load())
        self.cards = [Card.from_dict(raw) for raw in self.state["cards"]]
        self._persist()

    def _validate_or_initialize_state(self, raw: dict[str, Any]) -> dict[str, Any]:
        state: dict[str, Any] = {
            "version": STATE_VERSION,
            "cards": [],
            "pack_balance": self.config["starting_pack_balance"],
            "codes": {},
            "events": [],
        }
        if not raw:
            return state

        state["version"] = raw.get("version", STATE_VERSION)

        cards = raw.get("cards", [])
        if isinstance(cards, list):
            seen_ids: set[str] = set()
            for item in cards:
                try:
                    card = Card.from_dict(item)
                except (TypeError, ValueError) as exc:
                    LOGGER.warning("Dropping invalid card record: %s", exc)
                    continue
                if card.id in seen_ids:
                    LOGGER.warning("Dropping repeated card id: %s", card.id)
                    continue
                seen_ids.add(card.id)
                state["cards"].append(card.to_dict())

        balance = raw.get("pack_balance")
        if isinstance(balance, int) and not isinstance(balance, bool) and balance >= 0:
            state["pack_balance"] = balance
        elif balance is not None:
            LOGGER.warning("Invalid pack_balance=%r. Resetting to %s.", balance, state["pack_balance"])

        codes = raw.get("codes", {})
        if isinstance(codes, dict):
            for code, record in codes.items():
                validated = self._validate_code_record(code, record)
                if validated is not None:
                    state["codes"][code] = validated

        events = raw.get("events", [])
        if isinstance(events, list):
            state["events"] = [
                item
                for item in events
                if isinstance(item, dict)
                and isinstance(item.get("type"), str)
                and isinstance(item.get("timestamp"), str)
            ]
        return state

    def _validate_code_record(self, code: Any, record: Any) -> dict[str, Any] | None:
        if not isinstance(code, str) or not isinstance(record, dict):
            return None
        pack_count = record.get("pack_count")
        if isinstance(pack_count, bool) or not isinstance(pack_count, int) or pack_count < 1:
            return None
        expires_at = record.get("expires_at")
        if expires_at is not None:
            if not isinstance(expires_at, str):
                return None
            try:
                _from_iso(expires_at)
            except ValueError:
                return None
        redeemed_at = record.get("redeemed_at")
        if redeemed_at is not None and not isinstance(redeemed_at, str):
            return None
        return {
            "pack_count": pack_count,
            "created_at": str(record.get("created_at") or ""),
            "expires_at": expires_at,
            "redeemed_at": redeemed_at,
        }

    def _persist(self) -> None:
        self.state["cards"] = [card.to_dict() for card in self.cards]
        self.repository.save(self.state)

    def _log_event(self, *, event_type: str, details: dict[str, Any] | None = None) -> None:
        payload = {
            "type": event_type,
            "timestamp": _to_iso(_utc_now()),
            "details": details or {},
        }
        self.state["events"].append(payload)
        LOGGER.info("collection_event=%s", payload)

    def get_cards(self) -> list[Card]:
        return list(self.cards)

    def get_pack_balance(self) -> int:
        return self.state["pack_balance"]

    def get_stats(self) -> CollectionStats:
        return get_collection_stats(self.cards)

    def view(self, view: CollectionView) -> ViewResult:
        return view.apply(self.cards)

    def get_tradeable(self) -> TradeableResult:
        return find_tradeable(self.cards, self.cards_per_trade_in_pack)

    def add_cards(self, cards: Sequence[Card]) -> list[Card]:
        """Append cards in acquisition order; ids already owned are ignored."""

        owned = {card.id for card in self.cards}
        added = [card for card in cards if card.id not in owned]
        self.cards.extend(added)
        self._persist()
        return added

    def open_pack(
        self,
        players: Sequence[Player],
        pack_size: int | None = None,
        rng: RandomSource | None = None,
        now: int | None = None,
    ) -> list[Card]:
        size = self.config["default_pack_size"] if pack_size is None else pack_size
        if isinstance(size, bool) or not isinstance(size, int):
            raise TypeError("pack_size must be an integer.")
        if not 1 <= size <= self.config["max_pack_size"]:
            raise ValueError(
                f"pack_size must be between 1 and {self.config['max_pack_size']}, got {size}."
            )
        if self.state["pack_balance"] < 1:
            raise InsufficientPacksError("No packs left to open.")

        cards = open_pack(players, size, rng, now)
        if not cards:
            # An empty pool draws nothing and spends no pack.
            LOGGER.warning("open_pack_empty pack_size=%s players=%s", size, len(players))
            return []

        self.state["pack_balance"] -= 1
        self.cards.extend(cards)
        self._log_event(
            event_type="PACK_OPENED",
            details={"pack_size": size, "card_ids": [card.id for card in cards]},
        )
        self._persist()
        return cards

    def generate_code(
        self,
        pack_count: int = 1,
        expires_in_days: int | None = None,
        *,
        now: datetime | None = None,
    ) -> str:
        if isinstance(pack_count, bool) or not isinstance(pack_count, int) or pack_count < 1:
            raise ValueError("pack_count must be a positive integer.")
        if expires_in_days is not None and expires_in_days < 1:
            raise ValueError("expires_in_days must be positive when provided.")

        moment = now or _utc_now()
        while True:
            code = "".join(secrets.choice(CODE_ALPHABET) for _ in range(self.config["code_length"]))
            if code not in self.state["codes"]:
                break
        expires_at = _to_iso(moment + timedelta(days=expires_in_days)) if expires_in_days else None
        self.state["codes"][code] = {
            "pack_count": pack_count,
            "created_at": _to_iso(moment),
            "expires_at": expires_at,
            "redeemed_at": None,
        }
        LOGGER.info("code_generated pack_count=%s expires_at=%s", pack_count, expires_at)
        self._persist()
        return code

    def redeem_code(self, code: str, *, now: datetime | None = None) -> dict[str, Any]:
        key = normalize_code(code)
        record = self.state["codes"].get(key)
        if record is None:
            raise InvalidCodeError(f"Unknown code: {key}")
        if record["redeemed_at"] is not None:
            raise CodeAlreadyRedeemedError(f"Code {key} has already been redeemed.")
        moment = now or _utc_now()
        if record["expires_at"] is not None and _from_iso(record["expires_at"]) <= moment:
            raise CodeExpiredError(f"Code {key} has expired.")

        record["redeemed_at"] = _to_iso(moment)
        self.state["pack_balance"] += record["pack_count"]
        self._log_event(
            event_type="CODE_REDEEMED",
            details={"code": key, "packs_added": record["pack_count"]},
        )
        self._persist()
        packs_added = record["pack_count"]
        return {
            "message": f"Redeemed {packs_added} pack{'s' if packs_added != 1 else ''}.",
            "packs_added": packs_added,
            "pack_balance": self.state["pack_balance"],
        }

    def trade_in(self, card_ids: Sequence[str]) -> dict[str, Any]:
        """Exchange exactly one pack's worth of surplus duplicates for a pack."""

        requested = list(card_ids)
        if len(set(requested)) != len(requested):
            raise InvalidTradeInError("Trade-in card ids must be distinct.")
        if len(requested) != self.cards_per_trade_in_pack:
            raise InvalidTradeInError(
                f"Select exactly {self.cards_per_trade_in_pack} cards, got {len(requested)}."
            )
        tradeable_ids = self.get_tradeable().tradeable_ids
        not_tradeable = sorted(set(requested) - tradeable_ids)
        if not_tradeable:
            raise InvalidTradeInError(f"Cards are not tradeable duplicates: {not_tradeable}")

        removed = set(requested)
        self.cards = [card for card in self.cards if card.id not in removed]
        self.state["pack_balance"] += 1
        self._log_event(event_type="DUPLICATES_TRADED", details={"card_ids": requested})
        self._persist()
        return {
            "message": f"Traded {len(requested)} duplicates for 1 pack.",
            "pack_balance": self.state["pack_balance"],
        }

    def clear_collection(self) -> int:
        removed = len(self.cards)
        self.cards = []
        self._log_event(event_type="COLLECTION_CLEARED", details={"cards_removed": removed})
        self._persist()
        return removed

    def get_state(self) -> dict[str, Any]:
        return copy.deepcopy(self.state)


def create_default_collection_service(
    *,
    collection_file: str | Path = "data/collection_state.json",
    config_path: str | Path = "config/store.json",
) -> CollectionService:
    """Factory for standard single-user local setup."""

    repository = JsonCollectionRepository(file_path=collection_file)
    return CollectionService(repository=repository, config=load_store_config(config_path))
