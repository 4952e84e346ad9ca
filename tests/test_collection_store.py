import json
import random
from datetime import datetime, timedelta, timezone

import pytest

from collection_store import (
    DEFAULT_STORE_CONFIG,
    CodeAlreadyRedeemedError,
    CodeExpiredError,
    CollectionService,
    InMemoryCollectionRepository,
    InsufficientPacksError,
    InvalidCodeError,
    InvalidTradeInError,
    JsonCollectionRepository,
    create_default_collection_service,
    load_players,
    load_store_config,
)
from collection_view import CollectionView


@pytest.fixture
def repository():
    return InMemoryCollectionRepository()


@pytest.fixture
def service(repository):
    return CollectionService(repository, {"cards_per_trade_in_pack": 3})


class TestLoadStoreConfig:
    def test_missing_file_uses_defaults(self, tmp_path) -> None:
        assert load_store_config(tmp_path / "absent.json") == DEFAULT_STORE_CONFIG

    def test_corrupt_file_uses_defaults(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        path.write_text("{not json", encoding="utf-8")

        assert load_store_config(path) == DEFAULT_STORE_CONFIG

    def test_invalid_values_fall_back_individually(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        path.write_text(
            json.dumps(
                {
                    "default_pack_size": 7,
                    "cards_per_trade_in_pack": 0,
                    "starting_pack_balance": 0,
                    "default_per_page": "many",
                }
            ),
            encoding="utf-8",
        )

        config = load_store_config(path)

        assert config["default_pack_size"] == 7
        assert config["cards_per_trade_in_pack"] == DEFAULT_STORE_CONFIG["cards_per_trade_in_pack"]
        assert config["starting_pack_balance"] == 0
        assert config["default_per_page"] == DEFAULT_STORE_CONFIG["default_per_page"]

    def test_default_pack_size_clamped_to_max(self, tmp_path) -> None:
        path = tmp_path / "store.json"
        path.write_text(json.dumps({"default_pack_size": 20, "max_pack_size": 10}), encoding="utf-8")

        assert load_store_config(path)["default_pack_size"] == 10


class TestJsonCollectionRepository:
    def test_missing_file_loads_empty(self, tmp_path) -> None:
        assert JsonCollectionRepository(tmp_path / "state.json").load() == {}

    def test_corrupt_file_loads_empty(self, tmp_path) -> None:
        path = tmp_path / "state.json"
        path.write_text("[1, 2", encoding="utf-8")

        assert JsonCollectionRepository(path).load() == {}

    def test_corrupt_file_is_moved_aside(self, tmp_path) -> None:
        path = tmp_path / "state.json"
        path.write_text('{"cards": [', encoding="utf-8")
        repository = JsonCollectionRepository(path)

        assert repository.load() == {}
        repository.save({"pack_balance": 1})

        quarantined = list(tmp_path.glob("state.json.corrupt-*"))
        assert len(quarantined) == 1
        assert quarantined[0].read_text(encoding="utf-8") == '{"cards": ['
        assert repository.load() == {"pack_balance": 1}

    @pytest.mark.parametrize("content", [b"[1, 2]", b"\xff\xfe\x00junk"])
    def test_non_object_or_binary_file_is_moved_aside(self, tmp_path, content) -> None:
        path = tmp_path / "state.json"
        path.write_bytes(content)

        assert JsonCollectionRepository(path).load() == {}
        assert not path.exists()
        assert len(list(tmp_path.glob("state.json.corrupt-*"))) == 1

    def test_failed_write_keeps_previous_state(self, tmp_path) -> None:
        path = tmp_path / "state.json"
        repository = JsonCollectionRepository(path)
        repository.save({"pack_balance": 2})

        with pytest.raises(TypeError):
            repository.save({"pack_balance": object()})

        assert repository.load() == {"pack_balance": 2}
        assert [entry.name for entry in tmp_path.iterdir()] == ["state.json"]

    def test_save_then_load(self, tmp_path) -> None:
        repository = JsonCollectionRepository(tmp_path / "nested" / "state.json")

        repository.save({"pack_balance": 4})

        assert repository.load() == {"pack_balance": 4}
        assert not list((tmp_path / "nested").glob("*.tmp"))

    def test_service_state_survives_restart(self, tmp_path, player_pool) -> None:
        state_file = tmp_path / "collection_state.json"
        first = create_default_collection_service(
            collection_file=state_file, config_path=tmp_path / "missing.json"
        )
        opened = first.open_pack(player_pool, 5, random.Random(2))

        second = create_default_collection_service(
            collection_file=state_file, config_path=tmp_path / "missing.json"
        )

        assert second.get_cards() == opened
        assert second.get_pack_balance() == DEFAULT_STORE_CONFIG["starting_pack_balance"] - 1


class TestStateValidation:
    def test_invalid_records_dropped_on_load(self, make_card) -> None:
        good = make_card("p1").to_dict()
        repository = InMemoryCollectionRepository(
            {
                "cards": [good, {"id": "broken"}, good, "junk"],
                "pack_balance": -3,
                "codes": {"OK": {"pack_count": 2}, "BAD": {"pack_count": 0}},
                "events": [{"type": "PACK_OPENED", "timestamp": "t"}, {"type": 1}],
            }
        )

        service = CollectionService(repository)
        state = service.get_state()

        assert [card.id for card in service.get_cards()] == [good["id"]]
        assert state["pack_balance"] == DEFAULT_STORE_CONFIG["starting_pack_balance"]
        assert list(state["codes"]) == ["OK"]
        assert len(state["events"]) == 1
        assert repository.save_count == 1


class TestOpenPack:
    def test_spends_a_pack_and_records_cards(self, service, repository, player_pool) -> None:
        cards = service.open_pack(player_pool, rng=random.Random(4))

        assert len(cards) == DEFAULT_STORE_CONFIG["default_pack_size"]
        assert service.get_cards() == cards
        assert service.get_pack_balance() == 2
        assert repository.state["pack_balance"] == 2
        assert repository.state["events"][-1]["type"] == "PACK_OPENED"

    def test_no_balance_raises(self, repository, player_pool) -> None:
        service = CollectionService(repository, {"starting_pack_balance": 0})

        with pytest.raises(InsufficientPacksError):
            service.open_pack(player_pool)

    def test_empty_pool_spends_nothing(self, service, make_player) -> None:
        assert service.open_pack([make_player("rookie", games=0)]) == []
        assert service.get_pack_balance() == 3

    @pytest.mark.parametrize("size", [0, 16])
    def test_pack_size_bounds(self, service, player_pool, size) -> None:
        with pytest.raises(ValueError, match="pack_size"):
            service.open_pack(player_pool, size)

    def test_add_cards_skips_owned_ids(self, service, make_card) -> None:
        card = make_card("p1")

        assert service.add_cards([card]) == [card]
        assert service.add_cards([card]) == []
        assert service.get_stats().total == 1


class TestCodes:
    def test_redeem_adds_packs(self, service) -> None:
        code = service.generate_code(pack_count=4)

        result = service.redeem_code(f"  {code.lower()} ")

        assert result == {"message": "Redeemed 4 packs.", "packs_added": 4, "pack_balance": 7}
        assert service.get_state()["codes"][code]["redeemed_at"] is not None

    def test_code_is_single_use(self, service) -> None:
        code = service.generate_code()
        service.redeem_code(code)

        with pytest.raises(CodeAlreadyRedeemedError):
            service.redeem_code(code)

    def test_expired_code_rejected(self, service) -> None:
        issued = datetime(2024, 1, 1, tzinfo=timezone.utc)
        code = service.generate_code(expires_in_days=2, now=issued)

        with pytest.raises(CodeExpiredError):
            service.redeem_code(code, now=issued + timedelta(days=3))
        assert service.get_pack_balance() == 3

    def test_unknown_code_rejected(self, service) -> None:
        with pytest.raises(InvalidCodeError):
            service.redeem_code("NOPE")

    def test_generated_code_shape(self, service) -> None:
        code = service.generate_code()

        assert len(code) == DEFAULT_STORE_CONFIG["code_length"]
        assert code.isalnum() and code.isupper()

    @pytest.mark.parametrize("kwargs", [{"pack_count": 0}, {"expires_in_days": 0}])
    def test_invalid_code_options(self, service, kwargs) -> None:
        with pytest.raises(ValueError):
            service.generate_code(**kwargs)


class TestTradeIn:
    @pytest.fixture
    def duplicates(self, service, make_card):
        cards = [make_card("x", obtained_at=i, card_id=f"x{i}") for i in range(5)]
        service.add_cards(cards)
        return cards

    def test_surplus_exchanged_for_pack(self, service, duplicates) -> None:
        assert service.get_tradeable().packs_available == 1

        result = service.trade_in(["x1", "x2", "x3"])

        assert result["pack_balance"] == 4
        assert [card.id for card in service.get_cards()] == ["x0", "x4"]

    def test_oldest_copy_cannot_be_traded(self, service, duplicates) -> None:
        with pytest.raises(InvalidTradeInError, match="x0"):
            service.trade_in(["x0", "x1", "x2"])

    def test_wrong_count_rejected(self, service, duplicates) -> None:
        with pytest.raises(InvalidTradeInError, match="exactly 3"):
            service.trade_in(["x1", "x2"])

    def test_repeated_ids_rejected(self, service, duplicates) -> None:
        with pytest.raises(InvalidTradeInError):
            service.trade_in(["x1", "x1", "x2"])
        assert len(service.get_cards()) == 5


class TestCollectionQueries:
    def test_view_and_clear(self, service, make_card) -> None:
        service.add_cards([make_card("p1", "gold"), make_card("p2", "normal")])

        result = service.view(CollectionView(rarity="gold"))

        assert result.filtered_count == 1
        assert service.clear_collection() == 2
        assert service.get_cards() == []
        assert service.get_pack_balance() == 3


class TestLoadPlayers:
    def test_skips_invalid_entries(self, tmp_path) -> None:
        path = tmp_path / "players.json"
        path.write_text(
            json.dumps(
                {
                    "players": [
                        {"id": "1", "name": "One", "stats": {"gameCount": 2}},
                        {"name": "No id"},
                        "junk",
                    ]
                }
            ),
            encoding="utf-8",
        )

        players = load_players(path)

        assert [player.id for player in players] == ["1"]

    def test_missing_file_is_empty_pool(self, tmp_path) -> None:
        assert load_players(tmp_path / "none.json") == []
