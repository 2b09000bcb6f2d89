"""
diamond_rails.config — YAML Configuration Loader
=================================================

Reads ``config.yaml`` for the economic tuning of the rail (burn rate,
reconciliation thresholds, escrow expiry, streak windows) and the
scheduler cadence.  Secrets (``DATABASE_URL``, ``JWT_SECRET``) never live
here; they come from the environment via ``.env``.

Every key is optional.  A missing key falls back to the value in
:data:`DEFAULT_CONFIG`, so an empty file yields the production defaults.

Usage::

    from diamond_rails.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.burn_rate)         # 0.25
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RailsConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Burn protocol
    burn_rate: float = 0.25
    min_burn_threshold: int = 4  # gross at or above this always burns >= 1

    # Reconciliation
    minor_variance_limit: int = 10
    burn_tolerance: float = 0.001  # 0.1 %
    burn_mismatch_strikes: int = 3
    audit_every_appends: int = 100  # 0 disables the opportunistic audit
    audit_interval_seconds: int = 60
    audit_lock_timeout_seconds: float = 5.0

    # Escrow
    escrow_expiry_minutes: int = 60
    escrow_payout_multiplier: float = 2.0
    escrow_sweep_interval_seconds: int = 300

    # Streaks / daily claim
    streak_grace_hours: int = 48
    streak_min_claim_hours: int = 20
    streak_sweep_interval_seconds: int = 3600
    daily_base_reward: int = 5
    comeback_bonus: int = 3

    # Analytics
    analytics_interval_seconds: int = 86400


DEFAULT_CONFIG = RailsConfig()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> RailsConfig:
    """Read *path* and return a :class:`RailsConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a value cannot be coerced to the field's type, or the burn
        rate lies outside ``[0, 1)``.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    values = {}
    for field in fields(RailsConfig):
        if raw.get(field.name) is None:
            continue
        caster = float if isinstance(field.default, float) else int
        values[field.name] = caster(raw[field.name])

    cfg = RailsConfig(**values)
    if not 0 <= cfg.burn_rate < 1:
        raise ValueError(f"burn_rate must be in [0, 1), got {cfg.burn_rate}")
    return cfg
