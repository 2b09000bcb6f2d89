"""
diamond_rails.services.swap_service — Fixed-rate currency swaps
================================================================

Only the DIAMOND leg of a swap lives in this ledger.  The other unit (XP,
arena tickets) is held by the calling system, which debits or credits it
on its side once the swap receipt comes back:

- into DIAMOND   → credit ``output`` (``SWAP_CREDIT``), wallet auto-created
- out of DIAMOND → debit ``amount`` (``SWAP_DEBIT``)

The journal entry and the ``currency_swaps`` record commit in one unit.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from diamond_rails.config import RailsConfig
from diamond_rails.constants import CURRENCY, as_utc
from diamond_rails.database.models import CurrencySwap, Direction, JournalSource
from diamond_rails.engine.results import ErrorKind, Failure, SwapReceipt, fail
from diamond_rails.engine.swap import SWAP_RATES, quote, rate_for
from diamond_rails.services import journal_service
from diamond_rails.services.ledger_service import validate_amount, validate_owner
from diamond_rails.services.locks import RowLockRegistry, wallet_key
from diamond_rails.services.unit_of_work import (
    ensure_wallet,
    lock_wallets,
    require_wallet,
    run_atomic,
)

logger = logging.getLogger(__name__)


def swap(
    engine: Engine,
    owner_id: str,
    from_currency: str,
    to_currency: str,
    amount: int,
    *,
    reference_id: str | None = None,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> SwapReceipt | Failure:
    """Exchange *amount* units of *from_currency* for *to_currency*."""
    failure = validate_amount(amount) or validate_owner(owner_id)
    if failure:
        return failure

    rate = rate_for(from_currency, to_currency)
    if rate is None:
        return fail(
            ErrorKind.SWAP_PAIR_NOT_FOUND,
            "No swap rate for this currency pair",
            from_currency=from_currency,
            to_currency=to_currency,
        )
    if amount < rate.min_amount:
        return fail(ErrorKind.BELOW_MINIMUM, "Amount is below the swap minimum", min_amount=rate.min_amount)
    if rate.max_amount is not None and amount > rate.max_amount:
        return fail(ErrorKind.ABOVE_MAXIMUM, "Amount is above the swap maximum", max_amount=rate.max_amount)

    priced = quote(rate, amount)
    if priced.output < 1:
        return fail(
            ErrorKind.BELOW_MINIMUM,
            "Amount is too small to yield any output after fees",
            fee_amount=priced.fee,
            output_amount=priced.output,
        )

    crediting = rate.to_currency == CURRENCY

    def work(session: Session) -> SwapReceipt:
        wallets = lock_wallets(session, [owner_id])
        if crediting:
            wallet, _ = ensure_wallet(session, wallets, owner_id)
            entry = journal_service.append_entry(
                session, wallet, Direction.CREDIT, priced.output, JournalSource.SWAP_CREDIT,
                reference_id=reference_id, reference_type="SWAP",
                metadata={"from_currency": rate.from_currency, "input_amount": amount},
            )
        else:
            wallet = require_wallet(wallets, owner_id)
            entry = journal_service.append_entry(
                session, wallet, Direction.DEBIT, amount, JournalSource.SWAP_DEBIT,
                reference_id=reference_id, reference_type="SWAP",
                metadata={"to_currency": rate.to_currency, "output_amount": priced.output},
            )

        record = CurrencySwap(
            owner_id=owner_id,
            from_currency=rate.from_currency,
            to_currency=rate.to_currency,
            input_amount=amount,
            rate_applied=rate.rate,
            fee_percent=rate.fee_percent,
            fee_amount=priced.fee,
            output_amount=priced.output,
            journal_id=entry.id,
            reference_id=reference_id,
        )
        session.add(record)
        session.flush()

        return SwapReceipt(
            swap_id=record.id,
            owner_id=owner_id,
            from_currency=rate.from_currency,
            to_currency=rate.to_currency,
            input_amount=amount,
            rate=str(rate.rate),
            fee_percent=str(rate.fee_percent),
            fee_amount=priced.fee,
            output_amount=priced.output,
            journal_id=entry.id,
            balance_after=wallet.balance,
        )

    result = run_atomic(engine, [wallet_key(owner_id)], work, locks=locks, config=config)
    if result.ok:
        logger.info(
            "Swap %s: %d %s - %d fee = %d %s",
            owner_id, amount, rate.from_currency, priced.fee, priced.output, rate.to_currency,
        )
    return result


# ---------------------------------------------------------------------------
# Read-only views
# ---------------------------------------------------------------------------
def list_rates() -> list[dict]:
    return [rate.to_dict() for rate in SWAP_RATES.values()]


def list_swaps(engine: Engine, owner_id: str, *, limit: int = 50) -> list[dict]:
    stmt = (
        select(CurrencySwap)
        .where(CurrencySwap.owner_id == owner_id)
        .order_by(CurrencySwap.id.desc())
        .limit(limit)
    )
    with Session(engine) as session:
        return [
            {
                "swap_id": row.id,
                "from_currency": row.from_currency,
                "to_currency": row.to_currency,
                "input_amount": row.input_amount,
                "rate": str(row.rate_applied),
                "fee_percent": str(row.fee_percent),
                "fee_amount": row.fee_amount,
                "output_amount": row.output_amount,
                "journal_id": row.journal_id,
                "created_at": as_utc(row.created_at).isoformat() if row.created_at else None,
            }
            for row in session.scalars(stmt)
        ]
