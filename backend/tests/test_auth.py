"""Tests for bearer-token authentication and the error envelope."""

from datetime import datetime, timedelta, timezone

import pytest
from jose import JWTError, jwt

from debtdesk.auth.jwt import ALGORITHM, create_access_token, decode_access_token
from debtdesk.config import settings


# ── JWT utility tests ─────────────────────────────────────────────────────────

class TestJWTUtils:
    def test_create_and_decode_access_token(self):
        token = create_access_token("E001", "employee", dept="KHCN", branch_code="001")
        claims = decode_access_token(token)
        assert claims["sub"] == "E001"
        assert claims["role"] == "employee"
        assert claims["dept"] == "KHCN"
        assert claims["type"] == "access"

    def test_decode_invalid_token_raises(self):
        with pytest.raises(JWTError):
            decode_access_token("invalid.token.here")

    def test_wrong_token_type_rejected(self):
        token = jwt.encode(
            {"sub": "E001", "type": "refresh", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            settings.secret_key, algorithm=ALGORITHM,
        )
        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_expired_token_rejected(self):
        token = jwt.encode(
            {"sub": "E001", "type": "access", "exp": datetime.now(timezone.utc) - timedelta(minutes=5)},
            settings.secret_key, algorithm=ALGORITHM,
        )
        with pytest.raises(JWTError):
            decode_access_token(token)


# ── Request authentication ───────────────────────────────────────────────────

class TestRequestAuth:
    @pytest.mark.parametrize("auth", [None, "Token abc", "Bearer not-a-jwt"])
    async def test_rejected_with_envelope(self, client, auth):
        request_headers = {"Authorization": auth} if auth else {}
        resp = await client.get("/api/permissions/me", headers=request_headers)
        assert resp.status_code == 401
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "AUTHENTICATION_ERROR"

    async def test_unknown_employee(self, client, headers):
        resp = await client.get("/api/permissions/me", headers=headers("E404"))
        assert resp.status_code == 401

    async def test_disabled_employee(self, client, headers):
        resp = await client.get("/api/permissions/me", headers=headers("E009"))
        assert resp.status_code == 403

    async def test_role_comes_from_directory_not_token(self, client, headers):
        # Token claims administrator; the users mirror says employee.
        resp = await client.get("/api/reports/export-allowlist", headers=headers("E001", "administrator"))
        assert resp.status_code == 403

        me = await client.get("/api/permissions/me", headers=headers("E001", "administrator"))
        assert me.json()["role"] == "employee"

    async def test_request_id_propagated(self, client, headers):
        resp = await client.get(
            "/api/permissions/me", headers={**headers("E001"), "X-Request-ID": "req-123"},
        )
        assert resp.headers["X-Request-ID"] == "req-123"
        assert resp.headers["Cache-Control"] == "no-store"


# ── Unauthenticated endpoints ────────────────────────────────────────────────

class TestOpenEndpoints:
    async def test_metrics(self, client):
        resp = await client.get("/metrics")
        assert resp.status_code == 200
        assert "push_connections_open" in resp.text

    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["components"]["database"]["status"] == "connected"
        assert "notifications" in body["components"]
