"""
diamond_rails.api.routes.escrow — Wager escrow endpoints
========================================================

Owners lock their own stakes.  Only game servers (``is_system``) and
admins may release, forfeit or cancel, since they know the outcome.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
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
from diamond_rails.services import escrow_service

router = APIRouter(prefix="/escrow", tags=["escrow"])


class LockRequest(BaseModel):
    owner_id: str
    session_id: str
    stake: int
    game_mode: str = "ARCADE"
    payout_multiplier: float | None = None
    expiry_minutes: int | None = None
    metadata: dict | None = None


class ReleaseRequest(BaseModel):
    payout: int | None = None
    result: dict | None = None


class ForfeitRequest(BaseModel):
    result: dict | None = None


class CancelRequest(BaseModel):
    reason: str = "USER_CANCELLED"


def _escrow_or_404(engine: Engine, session_id: str) -> dict:
    entry = escrow_service.get_escrow(engine, session_id)
    if entry is None:
        raise HTTPException(404, "Escrow session not found")
    return entry


@router.post("/lock")
def lock_stake(
    body: LockRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    authorize(principal, Action.ESCROW_LOCK, body.owner_id)
    return unwrap(escrow_service.lock_stake(
        engine, body.owner_id, body.session_id, body.stake,
        game_mode=body.game_mode,
        payout_multiplier=body.payout_multiplier,
        expiry_minutes=body.expiry_minutes,
        metadata=body.metadata,
        config=cfg,
    ))


@router.get("/{session_id}")
def escrow_detail(
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
):
    entry = _escrow_or_404(engine, session_id)
    authorize(principal, Action.VIEW_WALLET, entry["owner_id"])
    return entry


@router.post("/{session_id}/release")
def release(
    session_id: str,
    body: ReleaseRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    entry = _escrow_or_404(engine, session_id)
    authorize(principal, Action.ESCROW_RESOLVE, entry["owner_id"])
    return unwrap(escrow_service.release(
        engine, session_id, payout=body.payout, result=body.result, config=cfg,
    ))


@router.post("/{session_id}/forfeit")
def forfeit(
    session_id: str,
    body: ForfeitRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    entry = _escrow_or_404(engine, session_id)
    authorize(principal, Action.ESCROW_RESOLVE, entry["owner_id"])
    return unwrap(escrow_service.forfeit(engine, session_id, result=body.result, config=cfg))


@router.post("/{session_id}/cancel")
def cancel(
    session_id: str,
    body: CancelRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    entry = _escrow_or_404(engine, session_id)
    authorize(principal, Action.ESCROW_CANCEL, entry["owner_id"])
    return unwrap(escrow_service.cancel(engine, session_id, reason=body.reason, config=cfg))
