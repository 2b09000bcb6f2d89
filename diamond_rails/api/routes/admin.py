"""
diamond_rails.api.routes.admin — Operator endpoints (JWT-protected)
===================================================================

Audits, burn-integrity checks, the ledger freeze, and manual runs of the
periodic sweeps.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from diamond_rails.api.deps import get_config, get_current_admin, get_engine, unwrap
from diamond_rails.config import RailsConfig
from diamond_rails.engine.authz import Principal
from diamond_rails.services import (
    audit_trail,
    escrow_service,
    reconciliation_service,
    streak_service,
)

router = APIRouter(prefix="/admin", tags=["admin"])


class FreezeRequest(BaseModel):
    reason: str


class UnfreezeRequest(BaseModel):
    resolution_note: str


class AnalyticsRequest(BaseModel):
    period: str = "daily"


@router.post("/audit")
def run_audit(
    admin: Principal = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    try:
        snapshot = reconciliation_service.audit(engine, config=cfg)
    except reconciliation_service.AuditLockTimeout:
        raise HTTPException(503, "Another audit is in progress")
    return snapshot.to_dict()


@router.post("/burn-integrity")
def burn_integrity(
    admin: Principal = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    return reconciliation_service.burn_integrity_check(engine, config=cfg)


@router.get("/reconciliations")
def reconciliations(
    limit: int = Query(20, ge=1, le=200),
    admin: Principal = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    return reconciliation_service.list_reconciliations(engine, limit=limit)


@router.get("/audit-trail")
def audit_log(
    limit: int = Query(50, ge=1, le=500),
    action_type: str | None = None,
    admin: Principal = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    return audit_trail.list_actions(engine, limit=limit, action_type=action_type)


# ---------------------------------------------------------------------------
# Freeze
# ---------------------------------------------------------------------------
@router.get("/freeze")
def freeze_status(
    admin: Principal = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    return reconciliation_service.get_freeze_status(engine).to_dict()


@router.post("/freeze")
def freeze(
    body: FreezeRequest,
    admin: Principal = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    return reconciliation_service.freeze_ledger(
        engine, operator_id=admin.subject, reason=body.reason,
    ).to_dict()


@router.post("/unfreeze")
def unfreeze(
    body: UnfreezeRequest,
    admin: Principal = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    return unwrap(reconciliation_service.unfreeze_ledger(
        engine, operator_id=admin.subject, resolution_note=body.resolution_note,
    ))


# ---------------------------------------------------------------------------
# Manual sweeps
# ---------------------------------------------------------------------------
@router.post("/sweeps/escrow")
def sweep_escrow(
    admin: Principal = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    return escrow_service.sweep_expired(engine, config=cfg)


@router.post("/sweeps/streaks")
def sweep_streaks(
    admin: Principal = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cfg: RailsConfig = Depends(get_config),
):
    return streak_service.expire_streaks(engine, config=cfg)


@router.post("/analytics")
def analytics(
    body: AnalyticsRequest,
    admin: Principal = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    if body.period not in ("daily", "weekly"):
        raise HTTPException(400, "period must be 'daily' or 'weekly'")
    return streak_service.capture_analytics(engine, period=body.period)
