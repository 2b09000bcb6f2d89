"""
Diamond Rails — Ledger & Economic-Rules Engine for a Virtual Currency
======================================================================
Mints, burns, transfers and escrows "diamond" balances, applies streak
multipliers to rewards, burns a fixed share of every settlement, and
audits its own books continuously.  A violation freezes the ledger until
an operator resolves it.

Package layout::

    diamond_rails/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Reserved owners, time helpers
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # System wallets + singleton rows
    ├── engine/            # Pure rules (no I/O)
    │   ├── results.py     # Tagged success / failure types
    │   ├── streak.py      # Streak tiers + multiplier lookup
    │   ├── burn.py        # Burn split
    │   ├── rng.py         # Commit/reveal hashing
    │   └── authz.py       # Who may do what to which wallet
    ├── services/
    │   ├── locks.py               # Non-blocking row lock registry
    │   ├── unit_of_work.py        # Atomic units with freeze gate
    │   ├── journal_service.py     # Append-only journal
    │   ├── ledger_service.py      # Mint / burn / transfer
    │   ├── burn_service.py        # Settlement with burn
    │   ├── escrow_service.py      # Wager stakes
    │   ├── reconciliation_service.py  # Audits + ledger freeze
    │   ├── rng_service.py         # Provably-fair rolls
    │   ├── streak_service.py      # Daily claim, expiry, analytics
    │   └── audit_trail.py         # admin_log writer
    ├── worker/            # Periodic jobs (asyncio loops)
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT + engine dependencies
        └── routes/        # Ledger, escrow, rng, admin endpoints
"""

__version__ = "0.1.0"
