"""
diamond_rails.api.deps — FastAPI dependency injection
=====================================================
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from diamond_rails.config import DEFAULT_CONFIG, RailsConfig, load_config
from diamond_rails.database.engine import create_db_engine
from diamond_rails.engine.authz import Action, Principal, is_allowed
from diamond_rails.engine.results import ErrorKind, Failure

logger = logging.getLogger(__name__)

# Placeholders shipped in .env.example and the README.  A server started
# with one of these would accept forged mint and settle tokens.
_PLACEHOLDER_SECRETS = frozenset({
    "change-me-to-a-long-random-string-of-32-plus-chars",
    "diamond-rails-dev-secret-change-me",
    "change-me",
    "secret",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Return the HS256 key that signs owner, system and admin tokens.

    System tokens can mint and settle on any wallet, so the API refuses to
    import unless the key is present and long enough to resist guessing.
    """
    secret = os.getenv("JWT_SECRET", "").strip()
    if not secret:
        raise RuntimeError(
            "JWT_SECRET is not set; the ledger API will not start without a signing key."
        )
    if secret in _PLACEHOLDER_SECRETS:
        raise RuntimeError("JWT_SECRET still holds a placeholder value from .env.example.")
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET has {len(secret)} characters; at least {_MIN_SECRET_LENGTH} are required."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> RailsConfig:
    path = Path(os.getenv("DIAMOND_RAILS_CONFIG", "config.yaml"))
    if not path.exists():
        logger.warning("No config file at %s; using defaults", path)
        return DEFAULT_CONFIG
    return load_config(path)


def get_current_principal(
    authorization: Annotated[str | None, Header()] = None,
) -> Principal:
    """Validate the bearer JWT and return its principal.  Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    principal = Principal.from_claims(payload)
    if not principal.subject:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no subject")
    return principal


def get_current_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return principal


def authorize(principal: Principal, action: Action, owner_id: str | None = None) -> None:
    if not is_allowed(principal, action, owner_id):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not allowed")


# ---------------------------------------------------------------------------
# Result → HTTP
# ---------------------------------------------------------------------------
_STATUS_BY_KIND = {
    ErrorKind.INVALID_AMOUNT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_SOURCE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.RESERVED_ACCOUNT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.SELF_TRANSFER: status.HTTP_400_BAD_REQUEST,
    ErrorKind.SELF_TRANSACTION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_RESOLUTION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.BELOW_MINIMUM: status.HTTP_400_BAD_REQUEST,
    ErrorKind.ABOVE_MAXIMUM: status.HTTP_400_BAD_REQUEST,
    ErrorKind.WALLET_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.SEED_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.SWAP_PAIR_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INSUFFICIENT_FUNDS: status.HTTP_409_CONFLICT,
    ErrorKind.RESOURCE_BUSY: status.HTTP_409_CONFLICT,
    ErrorKind.DUPLICATE_SESSION: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_RESOLVED: status.HTTP_409_CONFLICT,
    ErrorKind.SESSION_OPEN: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_FROZEN: status.HTTP_409_CONFLICT,
    ErrorKind.LEDGER_FROZEN: status.HTTP_423_LOCKED,
    ErrorKind.CLAIM_TOO_SOON: status.HTTP_429_TOO_MANY_REQUESTS,
}


def unwrap(result) -> dict:
    """Return the success payload or raise the matching HTTP error."""
    if isinstance(result, Failure):
        raise HTTPException(
            _STATUS_BY_KIND.get(result.kind, status.HTTP_400_BAD_REQUEST),
            detail=result.to_dict(),
        )
    return result.to_dict()
