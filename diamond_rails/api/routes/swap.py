"""
diamond_rails.api.routes.swap — Fixed-rate swap endpoints
=========================================================

The rate table is public.  Swaps are executed by the backend that holds
the non-diamond leg, so only ``is_system`` principals and admins may
post one; owners may read their own history.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from diamond_rails.api.deps import (
    authorize,
    get_config,
    get_current_principal,
    get_engine,
    unwrap,
)
from diamond_rails.config import RailsConfig
from diamond_rails.engine.authz import Action, Principal
from diamond_rails.services import swap_service

router = APIRouter(prefix="/swaps", tags=["swaps"])


class SwapRequest(BaseModel):
    owner_id: str
    from_currency: str
    to_currency: str
    amount: int
    reference_id: str | None = None


@router.get("/rates")
def rates():
    return swap_service.list_rates()


@router.post("")
def swap(
    body: SwapRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    authorize(principal, Action.SWAP, body.owner_id)
    return unwrap(swap_service.swap(
        engine, body.owner_id, body.from_currency, body.to_currency, body.amount,
        reference_id=body.reference_id, config=cfg,
    ))


@router.get("/history/{owner_id}")
def history(
    owner_id: str,
    limit: int = Query(50, ge=1, le=500),
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
):
    authorize(principal, Action.VIEW_WALLET, owner_id)
    return swap_service.list_swaps(engine, owner_id, limit=limit)
