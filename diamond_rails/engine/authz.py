"""
diamond_rails.engine.authz — Application-layer authorization
=============================================================

Decides whether a principal (decoded from a JWT) may perform an action on
a wallet.  Routes call :func:`is_allowed` before invoking any operation;
the ledger services themselves trust their caller.

Roles:
- **owner**  — the principal whose ``sub`` equals the wallet owner
- **admin**  — ``is_admin`` claim; operators
- **system** — ``is_system`` claim; trusted backend services (game
  servers, the store) that settle on behalf of users
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from diamond_rails.constants import SYSTEM_OWNERS


class Action(enum.StrEnum):
    VIEW_WALLET = "VIEW_WALLET"
    MINT = "MINT"
    BURN = "BURN"
    TRANSFER = "TRANSFER"
    SETTLE = "SETTLE"
    ESCROW_LOCK = "ESCROW_LOCK"
    ESCROW_CANCEL = "ESCROW_CANCEL"
    ESCROW_RESOLVE = "ESCROW_RESOLVE"
    SWAP = "SWAP"
    CLAIM = "CLAIM"
    OPERATE = "OPERATE"


# Actions an owner may perform on their own wallet.  Cancelling a stake
# is left to the match backend so a losing owner cannot refund it.
_OWNER_ACTIONS = frozenset({
    Action.VIEW_WALLET,
    Action.BURN,
    Action.TRANSFER,
    Action.SETTLE,
    Action.ESCROW_LOCK,
    Action.CLAIM,
})

# Actions trusted backends may perform on any user wallet
_SYSTEM_ACTIONS = frozenset({
    Action.VIEW_WALLET,
    Action.MINT,
    Action.SETTLE,
    Action.ESCROW_LOCK,
    Action.ESCROW_CANCEL,
    Action.ESCROW_RESOLVE,
    Action.SWAP,
})


@dataclass(frozen=True, slots=True)
class Principal:
    subject: str
    username: str | None = None
    is_admin: bool = False
    is_system: bool = False

    @classmethod
    def from_claims(cls, claims: dict) -> Principal:
        return cls(
            subject=str(claims.get("sub", "")),
            username=claims.get("username"),
            is_admin=bool(claims.get("is_admin")),
            is_system=bool(claims.get("is_system")),
        )


def is_allowed(principal: Principal, action: Action, owner_id: str | None = None) -> bool:
    if principal.is_admin:
        return True
    if action is Action.OPERATE:
        return False
    if owner_id in SYSTEM_OWNERS:
        return False
    if principal.is_system and action in _SYSTEM_ACTIONS:
        return True
    if owner_id is not None and principal.subject == owner_id:
        return action in _OWNER_ACTIONS
    return False
