"""
diamond_rails.services.locks — Non-blocking row lock registry
==============================================================

In-process exclusive locks keyed by resource (``wallet:<owner>``,
``escrow:<session>``, ``rng:<session>``).  Acquisition never waits: if a
key is held, :meth:`RowLockRegistry.hold` raises :class:`ResourceBusy`
and the caller reports ``RESOURCE_BUSY``.  On PostgreSQL the units of work
additionally take ``SELECT … FOR UPDATE NOWAIT`` row locks so separate
processes are serialised too.

All keys of one unit are acquired in sorted order, so two units touching
the same rows always contend on the same first key.

Thread-safe.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock

logger = logging.getLogger(__name__)


class ResourceBusy(Exception):
    """Raised when a lock key is already held."""

    def __init__(self, key: str) -> None:
        super().__init__(f"resource busy: {key}")
        self.key = key


def wallet_key(owner_id: str) -> str:
    return f"wallet:{owner_id}"


def escrow_key(session_id: str) -> str:
    return f"escrow:{session_id}"


def rng_key(session_id: str) -> str:
    return f"rng:{session_id}"


class RowLockRegistry:
    """Per-key exclusive locks with try-acquire semantics.

    Nothing ever waits on a key, so a key is tracked only while it is
    held and the registry stays empty between units.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._held: set[str] = set()

    def _try_acquire(self, key: str) -> bool:
        with self._guard:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    def _release(self, key: str) -> None:
        with self._guard:
            self._held.discard(key)

    @contextmanager
    def hold(self, *keys: str) -> Iterator[list[str]]:
        """Hold every key for the duration of the block or raise :class:`ResourceBusy`."""
        ordered = sorted(set(keys))
        acquired: list[str] = []
        try:
            for key in ordered:
                if not self._try_acquire(key):
                    logger.debug("Lock busy: %s", key)
                    raise ResourceBusy(key)
                acquired.append(key)
            yield ordered
        finally:
            for key in reversed(acquired):
                self._release(key)

    def is_held(self, key: str) -> bool:
        with self._guard:
            return key in self._held

    def __len__(self) -> int:
        with self._guard:
            return len(self._held)


# ---------------------------------------------------------------------------
# Module-level default instance
# ---------------------------------------------------------------------------
_default_registry = RowLockRegistry()


def get_default_registry() -> RowLockRegistry:
    """Return the module-level default registry for production use."""
    return _default_registry
