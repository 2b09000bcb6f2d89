"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================

Routes run against the in-memory engine via ``app.dependency_overrides``
(see the ``client`` fixture in conftest).

These tests verify:
- Auth guards on owner, system and admin endpoints
- Failure kinds mapped to HTTP status codes with the failure body
- The happy path of each route family
"""

from __future__ import annotations

import jwt
import pytest

from diamond_rails.api.deps import JWT_ALGORITHM, JWT_SECRET


def make_token(sub: str, *, is_admin: bool = False, is_system: bool = False) -> str:
    return jwt.encode(
        {"sub": sub, "username": sub.title(), "is_admin": is_admin, "is_system": is_system},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def alice():
    return _auth(make_token(sub="alice"))


@pytest.fixture
def mallory():
    return _auth(make_token(sub="mallory"))


@pytest.fixture
def system():
    return _auth(make_token(sub="arcade", is_system=True))


@pytest.fixture
def admin(admin_token):
    return _auth(admin_token)


def _mint(client, admin, owner_id: str = "alice", amount: int = 100):
    resp = client.post(
        "/api/ledger/mint",
        json={"owner_id": owner_id, "amount": amount, "source": "ADMIN_GRANT"},
        headers=admin,
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Auth guards — admin endpoints should reject unauthenticated/non-admin users
# ===========================================================================
class TestAdminAuthGuards:
    ADMIN_GET_ENDPOINTS = [
        "/api/admin/freeze",
        "/api/admin/reconciliations",
        "/api/admin/audit-trail",
    ]

    ADMIN_POST_ENDPOINTS = [
        "/api/admin/audit",
        "/api/admin/burn-integrity",
        "/api/admin/sweeps/escrow",
        "/api/admin/sweeps/streaks",
    ]

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_get_rejects_no_auth(self, client, endpoint):
        resp = client.get(endpoint)
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_POST_ENDPOINTS)
    def test_post_rejects_no_auth(self, client, endpoint):
        resp = client.post(endpoint)
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_get_rejects_invalid_token(self, client, endpoint):
        resp = client.get(endpoint, headers={"Authorization": "Bearer invalid"})
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_POST_ENDPOINTS)
    def test_post_rejects_system_principal(self, client, system, endpoint):
        resp = client.post(endpoint, headers=system)
        assert resp.status_code == 403


# ===========================================================================
# Wallet & ledger
# ===========================================================================
class TestLedgerRoutes:
    def test_admin_mints_and_owner_reads(self, client, admin, alice):
        body = _mint(client, admin)
        assert body["success"] is True
        assert body["balance_after"] == 100

        resp = client.get("/api/wallets/alice", headers=alice)
        assert resp.status_code == 200
        assert resp.json()["balance"] == 100
        assert resp.json()["tier_label"] == "Cold"

    def test_owner_cannot_mint(self, client, alice):
        resp = client.post(
            "/api/ledger/mint",
            json={"owner_id": "alice", "amount": 100, "source": "ADMIN_GRANT"},
            headers=alice,
        )
        assert resp.status_code == 403

    def test_stranger_cannot_read_wallet(self, client, admin, mallory):
        _mint(client, admin)
        assert client.get("/api/wallets/alice", headers=mallory).status_code == 403
        assert client.get("/api/wallets/alice/journal", headers=mallory).status_code == 403

    def test_missing_wallet(self, client, admin):
        assert client.get("/api/wallets/nobody", headers=admin).status_code == 404

    def test_invalid_amount_is_400(self, client, admin):
        resp = client.post(
            "/api/ledger/mint",
            json={"owner_id": "alice", "amount": 0, "source": "ADMIN_GRANT"},
            headers=admin,
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "INVALID_AMOUNT"

    def test_insufficient_funds_is_409(self, client, admin, alice):
        _mint(client, admin, amount=10)
        resp = client.post(
            "/api/ledger/burn",
            json={"owner_id": "alice", "amount": 25, "source": "STORE_PURCHASE"},
            headers=alice,
        )
        assert resp.status_code == 409
        detail = resp.json()["detail"]
        assert detail["error"] == "INSUFFICIENT_FUNDS"
        assert detail["shortfall"] == 15
        assert detail["retryable"] is False

    def test_transfer_and_journal(self, client, admin, alice):
        _mint(client, admin)
        resp = client.post(
            "/api/ledger/transfer",
            json={"from_owner": "alice", "to_owner": "bob", "amount": 30},
            headers=alice,
        )
        assert resp.status_code == 200
        assert resp.json()["credit"]["balance_after"] == 30

        journal = client.get("/api/wallets/alice/journal?limit=1", headers=alice).json()
        assert [e["source"] for e in journal] == ["TRANSFER_OUT"]

    def test_cannot_transfer_from_someone_else(self, client, admin, mallory):
        _mint(client, admin)
        resp = client.post(
            "/api/ledger/transfer",
            json={"from_owner": "alice", "to_owner": "mallory", "amount": 30},
            headers=mallory,
        )
        assert resp.status_code == 403

    def test_frozen_ledger_is_423(self, client, admin):
        _mint(client, admin)
        assert client.post("/api/admin/freeze", json={"reason": "drill"}, headers=admin).status_code == 200

        resp = client.post(
            "/api/ledger/mint",
            json={"owner_id": "alice", "amount": 1, "source": "BONUS"},
            headers=admin,
        )
        assert resp.status_code == 423
        assert resp.json()["detail"]["error"] == "LEDGER_FROZEN"

        bad = client.post("/api/admin/unfreeze", json={"resolution_note": ""}, headers=admin)
        assert bad.status_code == 400
        ok = client.post("/api/admin/unfreeze", json={"resolution_note": "drill over"}, headers=admin)
        assert ok.status_code == 200
        assert ok.json()["is_frozen"] is False


# ===========================================================================
# Settlements & burn
# ===========================================================================
class TestSettlementRoutes:
    def test_payer_settles_with_burn(self, client, admin, alice):
        _mint(client, admin)
        resp = client.post(
            "/api/settlements",
            json={"payer_id": "alice", "payee_id": "shop", "gross": 40},
            headers=alice,
        )
        assert resp.status_code == 200
        assert (resp.json()["burn"], resp.json()["net"]) == (10, 30)

        stats = client.get("/api/burn/stats").json()
        assert stats["total_burned"] == 10

    def test_issuance_requires_mint_rights(self, client, alice, system):
        body = {"payer_id": None, "payee_id": "alice", "gross": 40, "category": "ARCADE"}
        assert client.post("/api/settlements", json=body, headers=alice).status_code == 403
        resp = client.post("/api/settlements", json=body, headers=system)
        assert resp.status_code == 200
        assert resp.json()["net"] == 30


# ===========================================================================
# Daily claim
# ===========================================================================
class TestClaimRoute:
    def test_claim_then_too_soon(self, client, alice):
        first = client.post("/api/streak/claim", json={}, headers=alice)
        assert first.status_code == 200
        assert first.json()["streak"] == 1

        again = client.post("/api/streak/claim", json={}, headers=alice)
        assert again.status_code == 429
        assert again.json()["detail"]["error"] == "CLAIM_TOO_SOON"

    def test_cannot_claim_for_someone_else(self, client, mallory):
        resp = client.post("/api/streak/claim", json={"owner_id": "alice"}, headers=mallory)
        assert resp.status_code == 403

    def test_rakeback_is_backend_only(self, client, alice, system):
        client.post("/api/streak/claim", json={}, headers=alice)
        body = {"owner_id": "alice", "fee_source": "SWAP", "fee_amount": 500}

        assert client.post("/api/ledger/rakeback", json=body, headers=alice).status_code == 403
        resp = client.post("/api/ledger/rakeback", json=body, headers=system)
        assert resp.status_code == 200
        assert resp.json()["amount"] == 0
        assert resp.json()["reason"] == "NO_RAKEBACK_TIER"


# ===========================================================================
# Currency swaps
# ===========================================================================
class TestSwapRoutes:
    def test_rates_are_public(self, client):
        resp = client.get("/api/swaps/rates")
        assert resp.status_code == 200
        assert {"XP", "DIAMOND"} <= {r["from_currency"] for r in resp.json()}

    def test_system_swaps_and_owner_reads_history(self, client, alice, mallory, system):
        resp = client.post(
            "/api/swaps",
            json={"owner_id": "alice", "from_currency": "XP", "to_currency": "DIAMOND", "amount": 2_000},
            headers=system,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["output_amount"] == 19

        history = client.get("/api/swaps/history/alice", headers=alice)
        assert history.status_code == 200
        assert [row["swap_id"] for row in history.json()] == [resp.json()["swap_id"]]
        assert client.get("/api/swaps/history/alice", headers=mallory).status_code == 403

    def test_owner_cannot_swap(self, client, alice):
        resp = client.post(
            "/api/swaps",
            json={"owner_id": "alice", "from_currency": "XP", "to_currency": "DIAMOND", "amount": 2_000},
            headers=alice,
        )
        assert resp.status_code == 403

    @pytest.mark.parametrize(
        ("src", "dst", "amount", "code", "error"),
        [
            ("DIAMOND", "XP", 100, 404, "SWAP_PAIR_NOT_FOUND"),
            ("XP", "DIAMOND", 50, 400, "BELOW_MINIMUM"),
            ("XP", "DIAMOND", 500_000, 400, "ABOVE_MAXIMUM"),
        ],
    )
    def test_failures_map_to_status(self, client, admin, src, dst, amount, code, error):
        resp = client.post(
            "/api/swaps",
            json={"owner_id": "alice", "from_currency": src, "to_currency": dst, "amount": amount},
            headers=admin,
        )
        assert resp.status_code == code
        assert resp.json()["detail"]["error"] == error


# ===========================================================================
# Escrow & RNG
# ===========================================================================
class TestEscrowAndRngRoutes:
    def test_full_wager_round(self, client, admin, alice, system):
        _mint(client, admin)
        commit = client.post(
            "/api/rng/commit", json={"session_id": "game-1", "client_seed": "lucky"}, headers=alice,
        )
        assert commit.status_code == 200
        commit_id = commit.json()["commit_id"]

        lock = client.post(
            "/api/escrow/lock",
            json={"owner_id": "alice", "session_id": "game-1", "stake": 40},
            headers=alice,
        )
        assert lock.status_code == 200
        assert lock.json()["potential_payout"] == 40

        early = client.post(f"/api/rng/{commit_id}/reveal", headers=alice)
        assert early.status_code == 409
        assert early.json()["detail"]["error"] == "SESSION_OPEN"

        # Only the game server knows the outcome
        assert client.post("/api/escrow/game-1/release", json={}, headers=alice).status_code == 403
        release = client.post("/api/escrow/game-1/release", json={"payout": 20}, headers=system)
        assert release.status_code == 200
        assert release.json()["amount_credited"] == 60

        again = client.post("/api/escrow/game-1/release", json={}, headers=system)
        assert again.status_code == 409
        assert again.json()["detail"]["error"] == "ALREADY_RESOLVED"

        reveal = client.post(f"/api/rng/{commit_id}/reveal", headers=alice)
        assert reveal.status_code == 200
        assert reveal.json()["verified"] is True

        assert client.get("/api/escrow/game-1", headers=alice).json()["status"] == "RELEASED"

    def test_only_backend_cancels_stake(self, client, admin, alice, mallory, system):
        _mint(client, admin)
        client.post(
            "/api/escrow/lock",
            json={"owner_id": "alice", "session_id": "game-2", "stake": 10},
            headers=alice,
        )
        assert client.post("/api/escrow/game-2/cancel", json={}, headers=mallory).status_code == 403
        assert client.post("/api/escrow/game-2/cancel", json={"reason": "QUIT"}, headers=alice).status_code == 403
        assert client.get("/api/escrow/game-2", headers=alice).json()["status"] == "LOCKED"

        resp = client.post("/api/escrow/game-2/cancel", json={"reason": "SERVER_ABORT"}, headers=system)
        assert resp.status_code == 200
        assert resp.json()["status"] == "CANCELLED"

    def test_unknown_escrow(self, client, admin):
        assert client.get("/api/escrow/nope", headers=admin).status_code == 404

    def test_close_rng_session_requires_resolver(self, client, alice, system):
        commit = client.post("/api/rng/commit", json={"session_id": "solo"}, headers=alice).json()
        assert client.post("/api/rng/sessions/solo/close", headers=alice).status_code == 403
        resp = client.post("/api/rng/sessions/solo/close", headers=system)
        assert resp.json() == {"closed": 1}
        assert client.get(f"/api/rng/{commit['commit_id']}", headers=alice).json()["server_seed"] is None

    def test_unknown_commit(self, client, alice):
        assert client.get("/api/rng/missing", headers=alice).status_code == 404
        assert client.post("/api/rng/missing/reveal", headers=alice).status_code == 404


# ===========================================================================
# Admin operations
# ===========================================================================
class TestAdminRoutes:
    def test_audit_and_history(self, client, admin):
        _mint(client, admin)
        resp = client.post("/api/admin/audit", headers=admin)
        assert resp.status_code == 200
        assert resp.json()["status"] == "BALANCED"

        history = client.get("/api/admin/reconciliations", headers=admin).json()
        assert len(history) == 1

    def test_burn_integrity(self, client, admin):
        resp = client.post("/api/admin/burn-integrity", headers=admin)
        assert resp.status_code == 200
        assert resp.json()["within_tolerance"] is True

    def test_manual_freeze_is_audited(self, client, admin):
        client.post("/api/admin/freeze", json={"reason": "investigating"}, headers=admin)
        trail = client.get("/api/admin/audit-trail?action_type=LEDGER_FREEZE", headers=admin).json()
        assert trail[0]["actor_id"] == "99999"
        assert trail[0]["reason"] == "investigating"

    def test_sweeps_and_analytics(self, client, admin):
        assert client.post("/api/admin/sweeps/escrow", headers=admin).json()["checked"] == 0
        assert client.post("/api/admin/sweeps/streaks", headers=admin).json()["reset"] == 0
        resp = client.post("/api/admin/analytics", json={"period": "weekly"}, headers=admin)
        assert resp.status_code == 200
        assert resp.json()["period"] == "weekly"

    def test_analytics_rejects_unknown_period(self, client, admin):
        resp = client.post("/api/admin/analytics", json={"period": "hourly"}, headers=admin)
        assert resp.status_code == 400
