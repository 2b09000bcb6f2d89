"""
diamond_rails.services.rng_service — Provably-fair roll oracle
==============================================================

Commit/reveal flow:
    1. :func:`commit` generates a secret server seed, publishes its hash,
       and derives the roll from ``secret:client_seed:nonce``.
    2. The game resolves (escrow release/forfeit/cancel/expiry closes the
       session automatically; :func:`close_session` closes sessions that
       have no escrow).
    3. :func:`reveal` discloses the secret and re-checks both hashes.

Nonces are unique per session and increase from 0.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import Engine, func, select, update
from sqlalchemy.orm import Session

from diamond_rails.constants import utcnow
from diamond_rails.database.models import RngCommit
from diamond_rails.engine import rng
from diamond_rails.engine.results import (
    ErrorKind,
    Failure,
    RngCommitReceipt,
    RngReveal,
    fail,
)
from diamond_rails.services.locks import RowLockRegistry, rng_key
from diamond_rails.services.unit_of_work import run_atomic

logger = logging.getLogger(__name__)


def commit(
    engine: Engine,
    session_id: str,
    *,
    client_seed: str | None = None,
    owner_id: str | None = None,
    game_mode: str | None = None,
    locks: RowLockRegistry | None = None,
) -> RngCommitReceipt | Failure:
    """Commit to a new roll for *session_id* and return the public half."""
    server_seed = rng.new_server_seed()
    seed_hash = rng.hash_seed(server_seed)
    client = client_seed or rng.new_client_seed()

    def work(session: Session) -> RngCommitReceipt:
        last = session.scalar(
            select(func.max(RngCommit.nonce)).where(RngCommit.session_id == session_id)
        )
        nonce = 0 if last is None else last + 1
        final_hash = rng.combined_hash(server_seed, client, nonce)
        row = RngCommit(
            id=str(uuid.uuid4()),
            session_id=session_id,
            owner_id=owner_id,
            game_mode=game_mode,
            server_seed=server_seed,
            server_seed_hash=seed_hash,
            client_seed=client,
            nonce=nonce,
            final_hash=final_hash,
            roll_value=rng.roll_from_hash(final_hash),
        )
        session.add(row)
        session.flush()
        return RngCommitReceipt(
            commit_id=row.id,
            session_id=session_id,
            server_seed_hash=seed_hash,
            client_seed=client,
            nonce=nonce,
            roll_value=row.roll_value,
        )

    # Rolls do not move balances, so a frozen ledger does not block them.
    result = run_atomic(engine, [rng_key(session_id)], work, locks=locks, check_freeze=False)
    if result.ok:
        logger.info("RNG commit %s for session %s (nonce %d)", result.commit_id, session_id, result.nonce)
    return result


def close_session(engine: Engine, session_id: str, *, now: datetime | None = None) -> int:
    """Mark every commit of *session_id* revealable.  Returns the number closed."""
    with Session(engine) as session:
        closed = session.execute(
            update(RngCommit)
            .where(RngCommit.session_id == session_id, RngCommit.session_closed_at.is_(None))
            .values(session_closed_at=now or utcnow())
        ).rowcount
        session.commit()
    return closed


def reveal(engine: Engine, commit_id: str) -> RngReveal | Failure:
    """Disclose the server seed of a closed session and verify it."""
    with Session(engine, expire_on_commit=False) as session:
        row = session.get(RngCommit, commit_id)
        if row is None:
            return fail(ErrorKind.SEED_NOT_FOUND, "Commit not found", commit_id=commit_id)
        if row.session_closed_at is None:
            return fail(
                ErrorKind.SESSION_OPEN,
                "Seed can only be revealed after the session resolves",
                commit_id=commit_id,
                session_id=row.session_id,
            )

        verified = rng.verify(
            row.server_seed, row.server_seed_hash, row.client_seed, row.nonce, row.roll_value,
        ) and rng.combined_hash(row.server_seed, row.client_seed, row.nonce) == row.final_hash
        if row.revealed_at is None:
            row.revealed_at = utcnow()
        row.verified = verified
        session.commit()

        if not verified:
            logger.error("RNG commit %s failed verification", commit_id)
        return RngReveal(
            commit_id=row.id,
            session_id=row.session_id,
            server_seed=row.server_seed,
            server_seed_hash=row.server_seed_hash,
            client_seed=row.client_seed,
            nonce=row.nonce,
            final_hash=row.final_hash,
            roll_value=row.roll_value,
            verified=verified,
        )


def get_commit(engine: Engine, commit_id: str) -> dict | None:
    """Public view of a commit; the server seed is withheld until revealed."""
    with Session(engine) as session:
        row = session.get(RngCommit, commit_id)
        if row is None:
            return None
        return {
            "commit_id": row.id,
            "session_id": row.session_id,
            "server_seed_hash": row.server_seed_hash,
            "client_seed": row.client_seed,
            "nonce": row.nonce,
            "roll_value": row.roll_value,
            "server_seed": row.server_seed if row.revealed_at else None,
            "verified": row.verified,
        }
