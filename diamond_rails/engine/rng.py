"""
diamond_rails.engine.rng — Commit/reveal hashing for provably-fair rolls
========================================================================

The server commits to a secret seed by publishing ``SHA-256(secret)``
before the round.  The roll is derived from
``SHA-256("secret:client_seed:nonce")``: the first 8 hex digits, read as
an unsigned 32-bit integer, divided by 2**32, give a value in ``[0, 1)``.
After the round the secret is revealed and anyone can re-run
:func:`verify`.
"""

from __future__ import annotations

import hashlib
import secrets

ROLL_SCALE = 2**32


def new_server_seed() -> str:
    return secrets.token_hex(32)


def new_client_seed() -> str:
    return secrets.token_hex(16)


def hash_seed(server_seed: str) -> str:
    return hashlib.sha256(server_seed.encode("utf-8")).hexdigest()


def combined_hash(server_seed: str, client_seed: str, nonce: int) -> str:
    payload = f"{server_seed}:{client_seed}:{nonce}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def roll_from_hash(final_hash: str) -> float:
    return int(final_hash[:8], 16) / ROLL_SCALE


def verify(
    server_seed: str,
    server_seed_hash: str,
    client_seed: str,
    nonce: int,
    roll_value: float,
) -> bool:
    """Check a revealed seed against its commitment and the published roll."""
    if not secrets.compare_digest(hash_seed(server_seed), server_seed_hash):
        return False
    return roll_from_hash(combined_hash(server_seed, client_seed, nonce)) == roll_value
