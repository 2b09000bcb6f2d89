"""
diamond_rails.api.routes.rng — Provably-fair roll endpoints
===========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import Engine

from diamond_rails.api.deps import authorize, get_current_principal, get_engine, unwrap
from diamond_rails.engine.authz import Action, Principal
from diamond_rails.services import rng_service

router = APIRouter(prefix="/rng", tags=["rng"])


class CommitRequest(BaseModel):
    session_id: str
    client_seed: str | None = None
    game_mode: str | None = None


@router.post("/commit")
def commit(
    body: CommitRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
):
    return unwrap(rng_service.commit(
        engine, body.session_id,
        client_seed=body.client_seed,
        owner_id=principal.subject,
        game_mode=body.game_mode,
    ))


@router.get("/{commit_id}")
def commit_detail(
    commit_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
):
    row = rng_service.get_commit(engine, commit_id)
    if row is None:
        raise HTTPException(404, "Commit not found")
    return row


@router.post("/{commit_id}/reveal")
def reveal(
    commit_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
):
    return unwrap(rng_service.reveal(engine, commit_id))


@router.post("/sessions/{session_id}/close")
def close_session(
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
):
    authorize(principal, Action.ESCROW_RESOLVE)
    return {"closed": rng_service.close_session(engine, session_id)}
