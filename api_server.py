"""HTTP API wrapper for the pack engine and collection service.

Run:
  python -m uvicorn api_server:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
import os
import random
import threading
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from card_models import Card, Player
from collection_store import (
    CodeAlreadyRedeemedError,
    CodeExpiredError,
    CollectionService,
    InvalidCodeError,
    create_default_collection_service,
    load_players,
)
from collection_view import ALL, DEFAULT_SORT, CollectionView
from pack_engine import eligible_players


logging.basicConfig(level=logging.INFO)
LOGGER = logging.getLogger("api_server")

DATA_DIR = Path(os.getenv("DATA_DIR") or "data")
PLAYERS_PATH = Path(os.getenv("PLAYERS_PATH") or DATA_DIR / "players.json")
STORE_CONFIG_PATH = Path(os.getenv("STORE_CONFIG_PATH") or "config/store.json")

app = FastAPI(title="CSC Trading Cards API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_service_lock = threading.Lock()
_init_lock = threading.Lock()
_collection_service: CollectionService | None = None
_players: list[Player] | None = None


def get_collection_service() -> CollectionService:
    global _collection_service
    with _init_lock:
        if _collection_service is None:
            _collection_service = create_default_collection_service(
                collection_file=DATA_DIR / "collection_state.json",
                config_path=STORE_CONFIG_PATH,
            )
        return _collection_service


def get_players() -> list[Player]:
    global _players
    if _players is None:
        if not PLAYERS_PATH.exists():
            raise FileNotFoundError(f"Players file not found: {PLAYERS_PATH}. Run main.py first.")
        _players = load_players(PLAYERS_PATH)
        LOGGER.info("players_loaded path=%s count=%s", PLAYERS_PATH, len(_players))
    return _players


class OpenPackRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    packSize: int | None = None
    seed: int | None = None


class GenerateCodeRequest(BaseModel):
    packCount: int = 1
    expiresInDays: int | None = None


class RedeemCodeRequest(BaseModel):
    code: str


class TradeInRequest(BaseModel):
    cardIds: list[str]


@app.exception_handler(FileNotFoundError)
def file_not_found_handler(request: Request, exc: FileNotFoundError) -> JSONResponse:
    LOGGER.warning("file_not_found path=%s error=%s", request.url.path, exc)
    return JSONResponse(status_code=404, content={"detail": str(exc)})


def _serialize_cards(cards: list[Card]) -> list[dict[str, Any]]:
    return [card.to_dict() for card in cards]


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/players")
@app.get("/getPlayers")
def get_players_endpoint(players: list[Player] = Depends(get_players)) -> dict[str, Any]:
    return {"total": len(players), "eligible": len(eligible_players(players))}


@app.get("/packs/balance")
@app.get("/packBalance")
def get_pack_balance_endpoint(
    service: CollectionService = Depends(get_collection_service),
) -> dict[str, int]:
    return {"packBalance": service.get_pack_balance()}


@app.post("/packs/open")
@app.post("/openPack")
def open_pack_endpoint(
    payload: OpenPackRequest,
    service: CollectionService = Depends(get_collection_service),
    players: list[Player] = Depends(get_players),
) -> dict[str, Any]:
    rng = random.Random(payload.seed) if payload.seed is not None else None
    try:
        with _service_lock:
            cards = service.open_pack(players, payload.packSize, rng)
            balance = service.get_pack_balance()
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("open pack failed")
        raise HTTPException(status_code=500, detail=f"openPack failed: {exc}") from exc

    if not cards:
        raise HTTPException(status_code=404, detail="No eligible players available for packs.")
    LOGGER.info("open_pack_ok total_cards=%s pack_balance=%s", len(cards), balance)
    return {"cards": _serialize_cards(cards), "packBalance": balance}


@app.post("/codes/generate")
@app.post("/generateCode")
def generate_code_endpoint(
    payload: GenerateCodeRequest,
    service: CollectionService = Depends(get_collection_service),
) -> dict[str, Any]:
    try:
        with _service_lock:
            code = service.generate_code(payload.packCount, payload.expiresInDays)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"code": code, "packCount": payload.packCount}


@app.post("/codes/redeem")
@app.post("/redeemCode")
def redeem_code_endpoint(
    payload: RedeemCodeRequest,
    service: CollectionService = Depends(get_collection_service),
) -> dict[str, Any]:
    try:
        with _service_lock:
            result = service.redeem_code(payload.code)
    except InvalidCodeError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (CodeAlreadyRedeemedError, CodeExpiredError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "message": result["message"],
        "packsAdded": result["packs_added"],
        "packBalance": result["pack_balance"],
    }


@app.get("/collection")
@app.get("/getCollection")
def get_collection_endpoint(
    service: CollectionService = Depends(get_collection_service),
) -> dict[str, Any]:
    return {"cards": _serialize_cards(service.get_cards())}


@app.delete("/collection")
@app.delete("/clearCollection")
def clear_collection_endpoint(
    service: CollectionService = Depends(get_collection_service),
) -> dict[str, int]:
    with _service_lock:
        removed = service.clear_collection()
    return {"cardsRemoved": removed}


@app.get("/collection/stats")
@app.get("/collectionStats")
def get_collection_stats_endpoint(
    service: CollectionService = Depends(get_collection_service),
) -> dict[str, Any]:
    return service.get_stats().to_dict()


@app.get("/collection/view")
@app.get("/collectionView")
def get_collection_view_endpoint(
    rarity: str = Query(default=ALL),
    tier: str = Query(default=ALL),
    search: str = Query(default=""),
    sort: str = Query(default=DEFAULT_SORT),
    perPage: int | None = Query(default=None),
    page: int = Query(default=1),
    service: CollectionService = Depends(get_collection_service),
) -> dict[str, Any]:
    per_page = perPage if perPage is not None else service.config["default_per_page"]
    try:
        view = CollectionView(
            rarity=rarity, tier=tier, search=search, sort=sort, per_page=per_page, page=page
        )
        result = service.view(view)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "cards": _serialize_cards(result.page_cards),
        "filteredCount": result.filtered_count,
        "totalPages": result.total_pages,
        "effectivePage": result.effective_page,
        "tiers": result.tiers,
    }


@app.get("/packs/trade-in")
@app.get("/tradeableCards")
def get_trade_in_candidates_endpoint(
    service: CollectionService = Depends(get_collection_service),
) -> dict[str, Any]:
    result = service.get_tradeable()
    return {
        "cards": _serialize_cards(result.tradeable),
        "packsAvailable": result.packs_available,
        "cardsPerPack": service.cards_per_trade_in_pack,
    }


@app.post("/packs/trade-in")
@app.post("/tradeIn")
def trade_in_endpoint(
    payload: TradeInRequest,
    service: CollectionService = Depends(get_collection_service),
) -> dict[str, Any]:
    try:
        with _service_lock:
            result = service.trade_in(payload.cardIds)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("trade-in failed")
        raise HTTPException(status_code=500, detail=f"trade-in failed: {exc}") from exc
    return {"message": result["message"], "packBalance": result["pack_balance"]}
