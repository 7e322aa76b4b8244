"""Read-only JSON endpoints over the local store.

Decimals are serialized as strings. Errors use ``{"code", "error"}`` bodies.
"""

from dataclasses import asdict
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from bakerd import __version__
from bakerd.models import Account, AccountReward, Block, Pair, Price
from bakerd.storage.store import Store

router = APIRouter()


def _decimal_to_str(obj: Any) -> Any:
    """Recursively convert Decimal values to strings for JSON serialization."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {k: _decimal_to_str(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_decimal_to_str(item) for item in obj]
    return obj


def _store(request: Request) -> Store:
    store = request.app.state.store
    if store is None:
        raise HTTPException(status_code=503, detail="store not ready")
    return store


def _block(block: Block) -> dict:
    return asdict(block)


def _account(account: Account) -> dict:
    return _decimal_to_str({
        "address": account.address,
        "available_amount": account.available_amount,
        "staked_amount": account.staked_amount,
        "total_amount": account.total_amount,
        "lottery_power": account.lottery_power,
        "state": account.state.value,
        "updated_height": account.updated_height,
    })


def _reward(reward: AccountReward) -> dict:
    return _decimal_to_str({
        "block_hash": reward.block_hash,
        "amount": reward.amount,
        "epoch_ms": reward.epoch_ms,
        "kind": reward.kind.value,
    })


def _price(price: Price) -> dict:
    return _decimal_to_str({
        "pair": f"{price.pair.base}:{price.pair.quote}",
        "bid": price.bid,
        "ask": price.ask,
        "daily_change_relative": price.daily_change_relative,
        "high": price.high,
        "low": price.low,
        "updated_at_ms": price.updated_at_ms,
    })


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    """Ingestion watermark, last block and last status report."""
    store = _store(request)
    watermark = await store.get_watermark()
    last_block = await store.get_last_block()
    report = await store.get_last_status()
    scheduler = request.app.state.scheduler

    return JSONResponse(content={
        "version": __version__,
        "watermark": asdict(watermark) if watermark else None,
        "last_block": _block(last_block) if last_block else None,
        "report": asdict(report) if report else None,
        "jobs": scheduler.stats() if scheduler is not None else None,
    })


@router.get("/blocks")
async def get_blocks(
    request: Request,
    baker: int | None = Query(default=None, ge=0),
    since_ms: int | None = Query(default=None, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
) -> JSONResponse:
    """Stored blocks, newest first."""
    blocks = await _store(request).get_blocks(baker=baker, since_ms=since_ms, limit=limit)
    return JSONResponse(content=[_block(b) for b in blocks])


@router.get("/accounts/{address}")
async def get_account(request: Request, address: str) -> JSONResponse:
    account = await _store(request).get_account(address)
    if account is None:
        raise HTTPException(status_code=404, detail=f"unknown account {address}")
    return JSONResponse(content=_account(account))


@router.get("/accounts/{address}/rewards")
async def get_account_rewards(
    request: Request,
    address: str,
    limit: int = Query(default=100, ge=1, le=1000),
) -> JSONResponse:
    """Rewards of an account, newest first."""
    store = _store(request)
    account = await store.get_account(address)
    if account is None:
        raise HTTPException(status_code=404, detail=f"unknown account {address}")
    rewards = await store.get_rewards(account.id, limit=limit)
    return JSONResponse(content=[_reward(r) for r in rewards])


@router.get("/prices/{pair}")
async def get_price(request: Request, pair: str) -> JSONResponse:
    """Latest price of a pair given as ``BASE:QUOTE``."""
    try:
        parsed = Pair.parse(pair)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    price = await _store(request).get_price(parsed.base, parsed.quote)
    if price is None:
        raise HTTPException(status_code=404, detail=f"no price for {pair}")
    return JSONResponse(content=_price(price))
