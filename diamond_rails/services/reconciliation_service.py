"""
diamond_rails.services.reconciliation_service — Ledger audit & freeze
=====================================================================

Runs every ``audit_interval_seconds`` from the worker and opportunistically
after every ``audit_every_appends`` journal appends.

How an audit works:
    1. Sum all journal credits and debits → ``net_minted``.
    2. Sum all non-sink wallet balances plus the sink balance → ``allocated``.
    3. ``variance = net_minted − allocated`` decides the health:
       0 → BALANCED, within ``minor_variance_limit`` → MINOR_VARIANCE,
       anything else → CRITICAL.
    4. Cross-checks: journal rows breaking the balance equation, wallets
       whose balance differs from their own journal, and the sink wallet
       vs. the ``burn_sink`` aggregate.
    5. A CRITICAL result or any failed cross-check freezes the ledger and
       writes an ``admin_log`` entry.  The snapshot is always persisted.

Audits never correct anything.  Only an operator can unfreeze, and only
with a resolution note.

The burn integrity check compares the burn recorded in ``burn_sink`` with
the burn implied by settlement volume; ``burn_mismatch_strikes``
consecutive out-of-tolerance checks freeze the ledger.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from threading import Lock

from sqlalchemy import Engine, and_, case, func, not_, or_, select
from sqlalchemy.orm import Session

from diamond_rails.config import DEFAULT_CONFIG, RailsConfig
from diamond_rails.constants import BURN_SINK_ID, BURN_SINK_OWNER, LEDGER_FREEZE_ID, utcnow
from diamond_rails.database.engine import get_session
from diamond_rails.database.models import (
    AdminActionType,
    BurnAuditLog,
    BurnIntegrityLog,
    BurnSink,
    Direction,
    EscrowEntry,
    EscrowStatus,
    HealthStatus,
    JournalEntry,
    ReconciliationLog,
    Wallet,
)
from diamond_rails.engine.burn import implied_rate, split_burn
from diamond_rails.engine.results import ErrorKind, Failure, FreezeStatus, fail
from diamond_rails.services.audit_trail import log_action, row_to_dict
from diamond_rails.services.unit_of_work import load_freeze

logger = logging.getLogger(__name__)

_DRIFT_REPORT_LIMIT = 50

_audit_lock = Lock()


class AuditLockTimeout(RuntimeError):
    """Raised when a blocking audit cannot obtain the audit lock in time."""


@dataclass(frozen=True, slots=True)
class ReconciliationSnapshot:
    id: int
    total_credits: int
    total_debits: int
    net_minted: int
    wallet_total: int
    sink_balance: int
    allocated: int
    variance: int
    burn_counter_total: int
    escrow_locked_total: int
    status: HealthStatus
    journal_violations: int = 0
    drifted_wallets: list[str] = field(default_factory=list)
    sink_mismatch: bool = False
    froze_ledger: bool = False
    reconciled_at: datetime | None = None

    @property
    def healthy(self) -> bool:
        return (
            self.status is not HealthStatus.CRITICAL
            and not self.journal_violations
            and not self.drifted_wallets
            and not self.sink_mismatch
        )

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["status"] = self.status.value
        if self.reconciled_at is not None:
            payload["reconciled_at"] = self.reconciled_at.isoformat()
        return payload


def classify(variance: int, minor_limit: int) -> HealthStatus:
    if variance == 0:
        return HealthStatus.BALANCED
    if abs(variance) <= minor_limit:
        return HealthStatus.MINOR_VARIANCE
    return HealthStatus.CRITICAL


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------
def audit(engine: Engine, *, config: RailsConfig | None = None) -> ReconciliationSnapshot:
    """Run a full audit, waiting for any in-progress audit to finish first."""
    return run_audit(engine, config=config, blocking=True)


def run_audit(
    engine: Engine,
    *,
    config: RailsConfig | None = None,
    blocking: bool = True,
) -> ReconciliationSnapshot | None:
    """Run an audit under the audit lock.

    With ``blocking=False`` an audit already in progress makes this a
    no-op returning ``None``.  With ``blocking=True`` the call waits up to
    ``audit_lock_timeout_seconds`` and raises :class:`AuditLockTimeout`.
    """
    cfg = config or DEFAULT_CONFIG
    if blocking:
        acquired = _audit_lock.acquire(timeout=cfg.audit_lock_timeout_seconds)
        if not acquired:
            raise AuditLockTimeout("another reconciliation audit is still running")
    elif not _audit_lock.acquire(blocking=False):
        logger.debug("Audit already running; skipping")
        return None
    try:
        return _run_audit(engine, cfg)
    finally:
        _audit_lock.release()


def _run_audit(engine: Engine, cfg: RailsConfig) -> ReconciliationSnapshot:
    started = time.perf_counter()
    with get_session(engine) as session:
        if engine.dialect.name == "postgresql":
            session.connection(execution_options={"isolation_level": "REPEATABLE READ"})

        credits = _sum_journal(session, Direction.CREDIT)
        debits = _sum_journal(session, Direction.DEBIT)
        wallet_total = session.scalar(
            select(func.coalesce(func.sum(Wallet.balance), 0))
            .where(Wallet.owner_id != BURN_SINK_OWNER)
        )
        sink_balance = session.scalar(
            select(Wallet.balance).where(Wallet.owner_id == BURN_SINK_OWNER)
        )
        sink = session.get(BurnSink, BURN_SINK_ID)
        if sink_balance is None or sink is None:
            raise RuntimeError("burn sink is missing; run init_db() to seed system state")
        escrow_total = session.scalar(
            select(func.coalesce(func.sum(EscrowEntry.stake_amount), 0))
            .where(EscrowEntry.status == EscrowStatus.LOCKED)
        )

        net_minted = credits - debits
        allocated = wallet_total + sink_balance
        variance = net_minted - allocated
        status = classify(variance, cfg.minor_variance_limit)
        violations = _count_equation_violations(session)
        drifted = _drifted_wallets(session)
        sink_mismatch = sink_balance != sink.total_burned

        snapshot_values = dict(
            total_credits=credits,
            total_debits=debits,
            net_minted=net_minted,
            wallet_total=wallet_total,
            sink_balance=sink_balance,
            allocated=allocated,
            variance=variance,
            burn_counter_total=sink.total_burned,
            escrow_locked_total=escrow_total,
            status=status,
            journal_violations=violations,
            drifted_wallets=drifted,
            sink_mismatch=sink_mismatch,
        )

        froze = False
        problems = _describe_problems(status, violations, drifted, sink_mismatch)
        if problems:
            reason = "; ".join(problems)
            details = {k: v for k, v in snapshot_values.items() if k != "status"}
            details["status"] = status.value
            log_action(
                session,
                actor_id="reconciliation",
                action_type=AdminActionType.INTEGRITY_VIOLATION,
                target_table="reconciliation_log",
                target_id=None,
                before=None,
                after=details,
                reason=reason,
            )
            froze = _freeze(
                session,
                reason=reason,
                violation_type="RECONCILIATION_CRITICAL",
                frozen_by="reconciliation",
                details=details,
            )
        elif status is HealthStatus.MINOR_VARIANCE:
            logger.warning("Reconciliation minor variance: %d", variance)

        reconciled_at = utcnow()
        row = ReconciliationLog(
            **{k: v for k, v in snapshot_values.items() if k != "status"},
            status=status,
            froze_ledger=froze,
            duration_ms=(time.perf_counter() - started) * 1000,
            reconciled_at=reconciled_at,
        )
        session.add(row)
        session.flush()

        snapshot = ReconciliationSnapshot(
            id=row.id, froze_ledger=froze, reconciled_at=reconciled_at, **snapshot_values,
        )

    log = logger.error if problems else logger.info
    log(
        "Reconciliation %s: net_minted=%d allocated=%d variance=%d",
        status, net_minted, allocated, variance,
    )
    return snapshot


def _sum_journal(session: Session, direction: Direction) -> int:
    return session.scalar(
        select(func.coalesce(func.sum(JournalEntry.amount), 0))
        .where(JournalEntry.direction == direction)
    )


def _count_equation_violations(session: Session) -> int:
    consistent = or_(
        and_(
            JournalEntry.direction == Direction.CREDIT,
            JournalEntry.balance_after == JournalEntry.balance_before + JournalEntry.amount,
        ),
        and_(
            JournalEntry.direction == Direction.DEBIT,
            JournalEntry.balance_after == JournalEntry.balance_before - JournalEntry.amount,
        ),
    )
    return session.scalar(select(func.count()).select_from(JournalEntry).where(not_(consistent)))


def _drifted_wallets(session: Session) -> list[str]:
    """Owners whose balance differs from the sum of their own journal deltas."""
    delta = case(
        (JournalEntry.direction == Direction.CREDIT, JournalEntry.amount),
        else_=-JournalEntry.amount,
    )
    journal_net = (
        select(JournalEntry.owner_id, func.sum(delta).label("net"))
        .group_by(JournalEntry.owner_id)
        .subquery()
    )
    stmt = (
        select(Wallet.owner_id)
        .outerjoin(journal_net, journal_net.c.owner_id == Wallet.owner_id)
        .where(Wallet.balance != func.coalesce(journal_net.c.net, 0))
        .order_by(Wallet.owner_id)
        .limit(_DRIFT_REPORT_LIMIT)
    )
    return list(session.scalars(stmt))


def _describe_problems(
    status: HealthStatus, violations: int, drifted: list[str], sink_mismatch: bool
) -> list[str]:
    problems = []
    if status is HealthStatus.CRITICAL:
        problems.append("critical variance between journal and balances")
    if violations:
        problems.append(f"{violations} journal entries break the balance equation")
    if drifted:
        problems.append(f"{len(drifted)} wallet(s) drifted from their journal")
    if sink_mismatch:
        problems.append("burn sink wallet does not match burn aggregate")
    return problems


def list_reconciliations(engine: Engine, *, limit: int = 20) -> list[dict]:
    stmt = select(ReconciliationLog).order_by(ReconciliationLog.id.desc()).limit(limit)
    with Session(engine) as session:
        return [row_to_dict(row) for row in session.scalars(stmt)]


# ---------------------------------------------------------------------------
# Burn integrity
# ---------------------------------------------------------------------------
def burn_integrity_check(engine: Engine, *, config: RailsConfig | None = None) -> dict:
    """Compare recorded burns with the burn implied by settlement volume."""
    cfg = config or DEFAULT_CONFIG
    with get_session(engine) as session:
        settlements = 0
        volume = 0
        expected = 0
        for gross, rate in session.execute(
            select(BurnAuditLog.gross_amount, BurnAuditLog.burn_rate)
        ):
            settlements += 1
            volume += gross
            expected += split_burn(gross, rate, cfg.min_burn_threshold).burn

        sink = session.get(BurnSink, BURN_SINK_ID)
        if sink is None:
            raise RuntimeError("burn_sink row is missing; run init_db() to seed system state")
        recorded = sink.total_burned

        if expected:
            variance_ratio = abs(recorded - expected) / expected
        else:
            variance_ratio = 0.0 if recorded == 0 else 1.0
        within = variance_ratio <= cfg.burn_tolerance

        froze = False
        if not within:
            logger.error(
                "Burn drift: expected %d, recorded %d (%.4f%%)",
                expected, recorded, variance_ratio * 100,
            )
            previous = list(session.scalars(
                select(BurnIntegrityLog.within_tolerance)
                .order_by(BurnIntegrityLog.id.desc())
                .limit(max(cfg.burn_mismatch_strikes - 1, 0))
            ))
            strikes = 1 + sum(1 for ok in _leading(previous) if not ok)
            details = {
                "expected_burn": expected,
                "recorded_burn": recorded,
                "variance_ratio": variance_ratio,
                "strikes": strikes,
            }
            log_action(
                session,
                actor_id="burn_integrity",
                action_type=AdminActionType.BURN_DRIFT,
                target_table="burn_sink",
                target_id=str(BURN_SINK_ID),
                before=None,
                after=details,
                reason="recorded burn outside tolerance",
            )
            if strikes >= cfg.burn_mismatch_strikes:
                froze = _freeze(
                    session,
                    reason=f"burn drift sustained for {strikes} checks",
                    violation_type="BURN_RATE_DRIFT",
                    frozen_by="burn_integrity",
                    details=details,
                )

        session.add(BurnIntegrityLog(
            settlement_count=settlements,
            gross_volume=volume,
            expected_burn=expected,
            recorded_burn=recorded,
            implied_rate=implied_rate(volume, recorded),
            variance_ratio=variance_ratio,
            within_tolerance=within,
            froze_ledger=froze,
        ))

    return {
        "settlements": settlements,
        "gross_volume": volume,
        "expected_burn": expected,
        "recorded_burn": recorded,
        "implied_rate": implied_rate(volume, recorded),
        "target_rate": cfg.burn_rate,
        "variance_ratio": variance_ratio,
        "within_tolerance": within,
        "froze_ledger": froze,
    }


def _leading(flags: list[bool]) -> list[bool]:
    """Prefix of *flags* up to (not including) the first passing check."""
    out = []
    for ok in flags:
        if ok:
            break
        out.append(ok)
    return out


# ---------------------------------------------------------------------------
# Freeze / unfreeze
# ---------------------------------------------------------------------------
def _freeze(
    session: Session,
    *,
    reason: str,
    violation_type: str,
    frozen_by: str,
    details: dict | None = None,
) -> bool:
    """Set the freeze flag.  Returns False if the ledger was already frozen."""
    row = load_freeze(session, for_update=True)
    if row.is_frozen:
        return False
    before = row_to_dict(row)
    row.is_frozen = True
    row.frozen_at = utcnow()
    row.frozen_by = frozen_by
    row.freeze_reason = reason
    row.violation_type = violation_type
    row.details = details
    row.resolved_at = None
    row.resolved_by = None
    row.resolution_note = None
    log_action(
        session,
        actor_id=frozen_by,
        action_type=AdminActionType.LEDGER_FREEZE,
        target_table="ledger_freeze",
        target_id=str(LEDGER_FREEZE_ID),
        before=before,
        after=row_to_dict(row),
        reason=reason,
    )
    logger.critical("LEDGER FROZEN by %s: %s", frozen_by, reason)
    return True


def freeze_ledger(
    engine: Engine,
    *,
    operator_id: str,
    reason: str,
    violation_type: str = "MANUAL",
    details: dict | None = None,
) -> FreezeStatus:
    """Freeze the ledger by hand.  A no-op if it is already frozen."""
    with get_session(engine) as session:
        _freeze(
            session,
            reason=reason,
            violation_type=violation_type,
            frozen_by=operator_id,
            details=details,
        )
        return _status(load_freeze(session))


def unfreeze_ledger(
    engine: Engine, *, operator_id: str, resolution_note: str
) -> FreezeStatus | Failure:
    """Lift the freeze.  Requires a non-empty resolution note."""
    if not resolution_note or not resolution_note.strip():
        return fail(ErrorKind.INVALID_RESOLUTION, "A resolution note is required")

    with get_session(engine) as session:
        row = load_freeze(session, for_update=True)
        if not row.is_frozen:
            return fail(ErrorKind.NOT_FROZEN, "Ledger is not frozen")
        before = row_to_dict(row)
        row.is_frozen = False
        row.resolved_at = utcnow()
        row.resolved_by = operator_id
        row.resolution_note = resolution_note.strip()
        log_action(
            session,
            actor_id=operator_id,
            action_type=AdminActionType.LEDGER_UNFREEZE,
            target_table="ledger_freeze",
            target_id=str(LEDGER_FREEZE_ID),
            before=before,
            after=row_to_dict(row),
            reason=row.resolution_note,
        )
        status = _status(row)

    logger.warning("Ledger unfrozen by %s: %s", operator_id, resolution_note.strip())
    return status


def get_freeze_status(engine: Engine) -> FreezeStatus:
    with Session(engine) as session:
        return _status(load_freeze(session))


def _status(row) -> FreezeStatus:
    return FreezeStatus(
        is_frozen=row.is_frozen,
        frozen_at=row.frozen_at,
        frozen_by=row.frozen_by,
        freeze_reason=row.freeze_reason,
        violation_type=row.violation_type,
        resolved_at=row.resolved_at,
        resolved_by=row.resolved_by,
        resolution_note=row.resolution_note,
    )
