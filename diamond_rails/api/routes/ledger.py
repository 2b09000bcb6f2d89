"""
diamond_rails.api.routes.ledger — Wallet, ledger & settlement endpoints
=======================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
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
from diamond_rails.database.models import BurnCategory
from diamond_rails.engine.authz import Action, Principal
from diamond_rails.services import (
    burn_service,
    journal_service,
    ledger_service,
    streak_service,
)

router = APIRouter(tags=["ledger"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class LedgerRequest(BaseModel):
    owner_id: str
    amount: int
    source: str
    reference_id: str | None = None
    reference_type: str | None = None
    metadata: dict | None = None


class TransferRequest(BaseModel):
    from_owner: str
    to_owner: str
    amount: int
    metadata: dict | None = None


class SettlementRequest(BaseModel):
    payer_id: str | None = None
    payee_id: str
    gross: int
    category: str = BurnCategory.MARKETPLACE
    reference_id: str | None = None
    reference_type: str | None = None
    metadata: dict | None = None


class ClaimRequest(BaseModel):
    owner_id: str | None = None


class StreakRewardRequest(BaseModel):
    owner_id: str
    base_amount: int
    source: str = "SESSION_REWARD"
    metadata: dict | None = None


class RakebackRequest(BaseModel):
    owner_id: str
    fee_source: str
    fee_amount: int


# ---------------------------------------------------------------------------
# Wallet views
# ---------------------------------------------------------------------------
@router.get("/wallets/{owner_id}")
def wallet_detail(
    owner_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
):
    authorize(principal, Action.VIEW_WALLET, owner_id)
    wallet = ledger_service.get_wallet(engine, owner_id)
    if wallet is None:
        raise HTTPException(404, "Wallet not found")
    return wallet


@router.get("/wallets/{owner_id}/journal")
def wallet_journal(
    owner_id: str,
    limit: int = Query(50, ge=1, le=500),
    before_id: int | None = None,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
):
    authorize(principal, Action.VIEW_WALLET, owner_id)
    return journal_service.list_entries(engine, owner_id, limit=limit, before_id=before_id)


# ---------------------------------------------------------------------------
# Mint / burn / transfer
# ---------------------------------------------------------------------------
@router.post("/ledger/mint")
def mint(
    body: LedgerRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    authorize(principal, Action.MINT, body.owner_id)
    return unwrap(ledger_service.mint(
        engine, body.owner_id, body.amount, body.source,
        reference_id=body.reference_id, reference_type=body.reference_type,
        metadata=body.metadata, config=cfg,
    ))


@router.post("/ledger/burn")
def burn(
    body: LedgerRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    authorize(principal, Action.BURN, body.owner_id)
    return unwrap(ledger_service.burn(
        engine, body.owner_id, body.amount, body.source,
        reference_id=body.reference_id, reference_type=body.reference_type,
        metadata=body.metadata, config=cfg,
    ))


@router.post("/ledger/transfer")
def transfer(
    body: TransferRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    authorize(principal, Action.TRANSFER, body.from_owner)
    return unwrap(ledger_service.transfer(
        engine, body.from_owner, body.to_owner, body.amount,
        metadata=body.metadata, config=cfg,
    ))


@router.post("/ledger/streak-reward")
def streak_reward(
    body: StreakRewardRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    authorize(principal, Action.MINT, body.owner_id)
    return unwrap(streak_service.mint_with_streak_bonus(
        engine, body.owner_id, body.base_amount,
        source=body.source, metadata=body.metadata, config=cfg,
    ))


@router.post("/ledger/rakeback")
def rakeback(
    body: RakebackRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    authorize(principal, Action.MINT, body.owner_id)
    return unwrap(streak_service.credit_rakeback(
        engine, body.owner_id, body.fee_source, body.fee_amount, config=cfg,
    ))


# ---------------------------------------------------------------------------
# Settlement with burn
# ---------------------------------------------------------------------------
@router.post("/settlements")
def settle(
    body: SettlementRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    if body.payer_id is None:
        # Issuance-funded settlements mint new money
        authorize(principal, Action.MINT, body.payee_id)
    else:
        authorize(principal, Action.SETTLE, body.payer_id)
    return unwrap(burn_service.settle_with_burn(
        engine, body.payer_id, body.payee_id, body.gross,
        category=body.category, reference_id=body.reference_id,
        reference_type=body.reference_type, metadata=body.metadata, config=cfg,
    ))


@router.get("/burn/stats")
def burn_stats(engine: Engine = Depends(get_engine)):
    return burn_service.get_burn_stats(engine)


# ---------------------------------------------------------------------------
# Daily claim
# ---------------------------------------------------------------------------
@router.post("/streak/claim")
def claim(
    body: ClaimRequest,
    principal: Principal = Depends(get_current_principal),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    owner_id = body.owner_id or principal.subject
    authorize(principal, Action.CLAIM, owner_id)
    return unwrap(streak_service.claim_daily_reward(engine, owner_id, config=cfg))
