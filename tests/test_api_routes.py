"""
tests/test_api_routes.py -- Integration tests for the auth, category and product routes.

These tests exercise the full stack: FastAPI routing -> auth dependency injection
-> AccessEvaluator -> AuthService / CatalogStore -> response model serialization.

Coverage:
  - Registration: group enum, conflicts, 422 envelope, cookies on success
  - Login: enumeration-resistant 401, Cache-Control: no-store
  - Refresh: cookie flow, body flow, single-use secret, logout invalidation
  - Profile and admin user management
  - Category/product access through allow-lists, admin override, 403 vs 404
  - Product create/move rules and unknown-field rejection

Fixtures used (from conftest.py):
  - client: TestClient with a fresh in-memory database per test
  - register: factory returning {"id", "access", "refresh", "headers"}
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from api.limiter import CREDENTIAL_LIMIT, limiter
from auth.models import User
from auth.tokens import ACCESS_COOKIE, REFRESH_COOKIE, TokenIssuer

PASSWORD = "secret123"


def _create_category(client: TestClient, headers: dict, **body) -> dict:
    resp = client.post("/api/v1/categories", json=body, headers=headers)
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()


def _create_product(client: TestClient, headers: dict, **body) -> dict:
    payload = {"name": "Hammer", "quantity": 5, "price": 12.5}
    payload.update(body)
    resp = client.post("/api/v1/products", json=payload, headers=headers)
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


class TestRegistration:
    def test_register_returns_public_user_and_cookies(self, client: TestClient) -> None:
        """POST /auth/register returns 201, the user without a password, and both cookies."""
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "username": "alice",
                "email": "alice@example.com",
                "password": PASSWORD,
                "group": "user",
                "avatarUrl": "https://img/alice.png",
            },
        )
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["username"] == "alice"
        assert data["group"] == "user"
        assert data["avatarUrl"] == "https://img/alice.png"
        assert "password" not in data and "hashed_password" not in data
        assert resp.cookies.get(ACCESS_COOKIE)
        assert resp.cookies.get(REFRESH_COOKIE)
        assert resp.headers["Cache-Control"] == "no-store"

    def test_invalid_group_creates_nothing(self, client: TestClient, register) -> None:
        """A group outside the closed set is a 422 and no record is written."""
        resp = client.post(
            "/api/v1/auth/register",
            json={"username": "mallory", "email": "m@example.com", "password": PASSWORD, "group": "root"},
        )
        assert resp.status_code == 422, f"Expected 422, got {resp.status_code}: {resp.text}"
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert "field `group` should be one of: admin, user, guest" in error["violations"]

        admin = register("root", group="admin")
        users = client.get("/api/v1/auth/users", headers=admin["headers"]).json()["users"]
        assert [u["username"] for u in users] == ["root"]

    def test_missing_field_is_422(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/register", json={"username": "alice", "email": "a@example.com", "group": "user"})
        assert resp.status_code == 422
        assert "field `password` is required" in resp.json()["error"]["violations"]

    def test_malformed_email_is_422(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/register",
            json={"username": "alice", "email": "a..b@example.com", "password": PASSWORD, "group": "user"},
        )
        assert resp.status_code == 422, f"Expected 422, got {resp.status_code}: {resp.text}"
        violations = resp.json()["error"]["violations"]
        assert any(v.startswith("field `email`") for v in violations), violations

    def test_duplicate_username_is_409(self, client: TestClient, register) -> None:
        register("alice")
        resp = client.post(
            "/api/v1/auth/register",
            json={"username": "alice", "email": "other@example.com", "password": PASSWORD, "group": "user"},
        )
        assert resp.status_code == 409, f"Expected 409, got {resp.status_code}: {resp.text}"
        assert resp.json()["error"]["code"] == "conflict"


class TestLogin:
    def test_login_sets_cookies(self, client: TestClient, register) -> None:
        register("alice")
        resp = client.post("/api/v1/auth/login", json={"username": "alice", "password": PASSWORD})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["username"] == "alice"
        assert resp.cookies.get(ACCESS_COOKIE)
        assert resp.headers["Cache-Control"] == "no-store"

    def test_wrong_password_and_unknown_user_look_the_same(self, client: TestClient, register) -> None:
        """Enumeration resistance: identical status and body for both failures."""
        register("alice")
        wrong = client.post("/api/v1/auth/login", json={"username": "alice", "password": "nope-nope"})
        unknown = client.post("/api/v1/auth/login", json={"username": "ghost", "password": PASSWORD})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.headers["WWW-Authenticate"] == "Bearer"


class TestRateLimit:
    @pytest.fixture
    def limited(self, monkeypatch):
        limiter.reset()
        monkeypatch.setattr(limiter, "enabled", True)
        yield
        limiter.reset()

    def test_login_over_limit_is_429(self, client: TestClient, limited) -> None:
        """Credential endpoints answer 429 with the error envelope once the per-IP budget is spent."""
        allowed = int(CREDENTIAL_LIMIT.split("/")[0])
        for _ in range(allowed):
            resp = client.post("/api/v1/auth/login", json={"username": "ghost", "password": PASSWORD})
            assert resp.status_code == 401, f"Expected 401, got {resp.status_code}: {resp.text}"

        resp = client.post("/api/v1/auth/login", json={"username": "ghost", "password": PASSWORD})
        assert resp.status_code == 429, f"Expected 429, got {resp.status_code}: {resp.text}"
        assert resp.json() == {"error": {"code": "rate_limited", "message": "Too many requests.", "violations": []}}
        assert int(resp.headers["Retry-After"]) > 0


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


class TestSessionLifecycle:
    def test_refresh_with_cookies(self, client: TestClient, register) -> None:
        """Browser flow: both tokens travel as cookies and are rotated in place."""
        register("alice")
        client.post("/api/v1/auth/login", json={"username": "alice", "password": PASSWORD})
        old_refresh = client.cookies.get(REFRESH_COOKIE)

        resp = client.post("/api/v1/auth/refresh-token")
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.cookies.get(REFRESH_COOKIE) != old_refresh
        assert resp.headers["Cache-Control"] == "no-store"

    def test_stale_refresh_secret_rejected(self, client: TestClient, register) -> None:
        """Refresh succeeds once; replaying the original secret is a 401."""
        alice = register("alice")
        body = {"refreshToken": alice["refresh"]}

        first = client.post("/api/v1/auth/refresh-token", json=body, headers=alice["headers"])
        assert first.status_code == 200, f"Expected 200, got {first.status_code}: {first.text}"
        client.cookies.clear()

        replay = client.post("/api/v1/auth/refresh-token", json=body, headers=alice["headers"])
        assert replay.status_code == 401, f"Expected 401, got {replay.status_code}: {replay.text}"
        assert replay.json()["error"]["code"] == "unauthorized"

    def test_refresh_without_secret_is_401(self, client: TestClient, register) -> None:
        alice = register("alice")
        resp = client.post("/api/v1/auth/refresh-token", headers=alice["headers"])
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Refresh token is required."

    def test_logout_invalidates_refresh(self, client: TestClient, register) -> None:
        alice = register("alice")
        resp = client.post("/api/v1/auth/logout", headers=alice["headers"])
        assert resp.status_code == 200
        set_cookies = resp.headers.get_list("set-cookie")
        assert any(c.startswith(f"{REFRESH_COOKIE}=") for c in set_cookies)

        replay = client.post(
            "/api/v1/auth/refresh-token",
            json={"refreshToken": alice["refresh"]},
            headers=alice["headers"],
        )
        assert replay.status_code == 401

    def test_logout_without_token_still_succeeds(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Successfully logged out."}

    def test_logout_with_expired_access_token_kills_refresh(self, client: TestClient, register) -> None:
        """Logging out after the access token lapsed still ends the session via the refresh cookie."""
        alice = register("alice")
        an_hour_ago = TokenIssuer(
            secret_key=client.app.state.settings.secret_key,
            clock=lambda: datetime.now(timezone.utc) - timedelta(hours=1),
        )
        expired = an_hour_ago.issue_access_token(
            User(id=alice["id"], username="alice", email="alice@example.com", group="user")
        )
        headers = {"Authorization": f"Bearer {expired}"}

        client.cookies.set(REFRESH_COOKIE, alice["refresh"])
        resp = client.post("/api/v1/auth/logout", headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"message": "Successfully logged out."}
        client.cookies.clear()

        replay = client.post("/api/v1/auth/refresh-token", json={"refreshToken": alice["refresh"]}, headers=headers)
        assert replay.status_code == 401, f"Expected 401, got {replay.status_code}: {replay.text}"


# ---------------------------------------------------------------------------
# Authentication middleware
# ---------------------------------------------------------------------------


class TestRequestAuthentication:
    def test_no_token_is_401(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/profile")
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "No token provided."

    def test_malformed_header_is_401(self, client: TestClient, register) -> None:
        alice = register("alice")
        resp = client.get("/api/v1/auth/profile", headers={"Authorization": f"Token {alice['access']}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid token format. Expected 'Bearer <token>'."

    def test_garbage_token_is_401(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/profile", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid or expired token."

    def test_cookie_token_accepted(self, client: TestClient, register) -> None:
        register("alice")
        client.post("/api/v1/auth/login", json={"username": "alice", "password": PASSWORD})
        resp = client.get("/api/v1/auth/profile")
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["username"] == "alice"


# ---------------------------------------------------------------------------
# Profile and user management
# ---------------------------------------------------------------------------


class TestProfileAndUsers:
    def test_update_profile(self, client: TestClient, register) -> None:
        alice = register("alice")
        resp = client.patch(
            "/api/v1/auth/profile",
            json={"email": "alice@new.example.com", "avatarUrl": "https://img/a.png"},
            headers=alice["headers"],
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["email"] == "alice@new.example.com"
        profile = client.get("/api/v1/auth/profile", headers=alice["headers"]).json()
        assert profile["avatarUrl"] == "https://img/a.png"

    def test_update_profile_email_taken(self, client: TestClient, register) -> None:
        register("bob")
        alice = register("alice")
        resp = client.patch("/api/v1/auth/profile", json={"email": "bob@example.com"}, headers=alice["headers"])
        assert resp.status_code == 409

    def test_list_users_requires_admin(self, client: TestClient, register) -> None:
        alice = register("alice")
        resp = client.get("/api/v1/auth/users", headers=alice["headers"])
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_admin_cannot_demote_self(self, client: TestClient, register) -> None:
        root = register("root", group="admin")
        resp = client.put(f"/api/v1/auth/users/{root['id']}/group", json={"group": "user"}, headers=root["headers"])
        assert resp.status_code == 403

    def test_admin_can_demote_other_admin(self, client: TestClient, register) -> None:
        root = register("root", group="admin")
        other = register("other", group="admin")
        resp = client.put(f"/api/v1/auth/users/{other['id']}/group", json={"group": "user"}, headers=root["headers"])
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["group"] == "user"

    def test_unknown_user_is_404(self, client: TestClient, register) -> None:
        root = register("root", group="admin")
        resp = client.put("/api/v1/auth/users/9999/group", json={"group": "user"}, headers=root["headers"])
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Categories and products
# ---------------------------------------------------------------------------


class TestCatalogAccess:
    def test_allow_list_scenario(self, client: TestClient, register) -> None:
        """user A and admin B share category C1; guest D is locked out of C1 and its product."""
        alice = register("alice", group="user")
        boss = register("boss", group="admin")
        dave = register("dave", group="guest")

        c1 = _create_category(client, boss["headers"], name="C1", allowedGroups=["user"])
        assert sorted(c1["allowedGroups"]) == ["admin", "user"]
        p1 = _create_product(client, boss["headers"], categoryId=c1["id"])

        assert client.get(f"/api/v1/products/{p1['id']}", headers=alice["headers"]).status_code == 200
        assert client.get(f"/api/v1/categories/{c1['id']}", headers=alice["headers"]).status_code == 200
        assert client.get(f"/api/v1/categories/{c1['id']}", headers=dave["headers"]).status_code == 403
        assert client.get(f"/api/v1/products/{p1['id']}", headers=dave["headers"]).status_code == 403

    def test_default_allow_list_is_admin_only(self, client: TestClient, register) -> None:
        boss = register("boss", group="admin")
        alice = register("alice")
        category = _create_category(client, boss["headers"], name="Vault")
        assert category["allowedGroups"] == ["admin"]
        assert client.get(f"/api/v1/categories/{category['id']}", headers=alice["headers"]).status_code == 403
        assert client.get(f"/api/v1/categories/{category['id']}", headers=boss["headers"]).status_code == 200

    def test_missing_category_is_404(self, client: TestClient, register) -> None:
        alice = register("alice")
        assert client.get("/api/v1/categories/9999", headers=alice["headers"]).status_code == 404

    def test_non_admin_cannot_create_category(self, client: TestClient, register) -> None:
        alice = register("alice")
        resp = client.post("/api/v1/categories", json={"name": "Mine"}, headers=alice["headers"])
        assert resp.status_code == 403

    def test_allow_list_change_requires_admin(self, client: TestClient, register) -> None:
        boss = register("boss", group="admin")
        alice = register("alice")
        category = _create_category(client, boss["headers"], name="Shared", allowedGroups=["user"])
        url = f"/api/v1/categories/{category['id']}"

        renamed = client.put(url, json={"name": "Shared tools"}, headers=alice["headers"])
        assert renamed.status_code == 200, f"Expected 200, got {renamed.status_code}: {renamed.text}"
        widened = client.put(url, json={"allowedGroups": ["user", "guest"]}, headers=alice["headers"])
        assert widened.status_code == 403

        by_admin = client.put(url, json={"allowedGroups": ["guest"]}, headers=boss["headers"])
        assert by_admin.status_code == 200
        assert sorted(by_admin.json()["allowedGroups"]) == ["admin", "guest"]

    def test_admin_deletes_category(self, client: TestClient, register) -> None:
        boss = register("boss", group="admin")
        category = _create_category(client, boss["headers"], name="Temp")
        assert client.delete(f"/api/v1/categories/{category['id']}", headers=boss["headers"]).status_code == 204
        assert client.delete(f"/api/v1/categories/{category['id']}", headers=boss["headers"]).status_code == 404

    def test_uncategorized_product_readable_by_any_group(self, client: TestClient, register) -> None:
        boss = register("boss", group="admin")
        dave = register("dave", group="guest")
        product = _create_product(client, boss["headers"])
        assert product["categoryId"] is None
        resp = client.get(f"/api/v1/products/{product['id']}", headers=dave["headers"])
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"

    def test_only_admin_creates_uncategorized_product(self, client: TestClient, register) -> None:
        alice = register("alice")
        resp = client.post("/api/v1/products", json={"name": "Loose", "quantity": 1, "price": 1}, headers=alice["headers"])
        assert resp.status_code == 403

    def test_user_creates_product_in_allowed_category(self, client: TestClient, register) -> None:
        boss = register("boss", group="admin")
        alice = register("alice")
        shared = _create_category(client, boss["headers"], name="Shared", allowedGroups=["user"])
        product = _create_product(client, alice["headers"], categoryId=shared["id"])
        assert product["categoryId"] == shared["id"]

    def test_move_requires_access_to_destination(self, client: TestClient, register) -> None:
        boss = register("boss", group="admin")
        alice = register("alice")
        shared = _create_category(client, boss["headers"], name="Shared", allowedGroups=["user"])
        vault = _create_category(client, boss["headers"], name="Vault")
        product = _create_product(client, alice["headers"], categoryId=shared["id"])

        resp = client.put(f"/api/v1/products/{product['id']}", json={"categoryId": vault["id"]}, headers=alice["headers"])
        assert resp.status_code == 403
        resp = client.put(f"/api/v1/products/{product['id']}", json={"quantity": 9}, headers=alice["headers"])
        assert resp.status_code == 200
        assert resp.json()["quantity"] == 9

    def test_product_update_rejects_unknown_fields(self, client: TestClient, register) -> None:
        boss = register("boss", group="admin")
        product = _create_product(client, boss["headers"])
        resp = client.put(f"/api/v1/products/{product['id']}", json={"colour": "red"}, headers=boss["headers"])
        assert resp.status_code == 422
        assert "field `colour` is not allowed" in resp.json()["error"]["violations"]

    def test_list_products_paginates(self, client: TestClient, register) -> None:
        boss = register("boss", group="admin")
        for i in range(3):
            _create_product(client, boss["headers"], name=f"p{i}")
        resp = client.get("/api/v1/products?limit=2&offset=1", headers=boss["headers"])
        assert resp.status_code == 200
        assert [p["name"] for p in resp.json()["products"]] == ["p1", "p2"]

    def test_list_requires_authentication(self, client: TestClient) -> None:
        assert client.get("/api/v1/products").status_code == 401
        assert client.get("/api/v1/categories").status_code == 401

    def test_admin_deletes_product(self, client: TestClient, register) -> None:
        boss = register("boss", group="admin")
        product = _create_product(client, boss["headers"])
        assert client.delete(f"/api/v1/products/{product['id']}", headers=boss["headers"]).status_code == 204
        assert client.get(f"/api/v1/products/{product['id']}", headers=boss["headers"]).status_code == 404
