"""
tests/test_auth_routes.py -- Integration tests for api/routes/v1/auth.py and users.py.

Covers:
  - Envelope shape (success, message, data, error, timestamp) on success and failure
  - Status mapping: 201 register, 409 duplicate, 401 bad credentials / stale
    refresh token, 400 policy violation and bad code, 422 malformed body
  - Cache-Control: no-store on token-bearing responses
  - Bearer auth on /auth/me, /auth/logout, /auth/change-password
  - Full forgot-password -> reset-password flow over HTTP
  - Passwords and hashes never appear in any response body
  - Emails are whitespace-normalized on every endpoint; passwords never are
  - Storage outages are 503 with Retry-After
  - GET /api/v1/users/{id}
"""

from __future__ import annotations

from api.main import app
from auth.errors import StorageUnavailable

STRONG_PASSWORD = "Sup3r$ecret1234"
NEW_PASSWORD = "Br4nd-New$Pw1"

REGISTER_BODY = {
    "email": "alice@example.com",
    "first_name": "Alice",
    "last_name": "Liddell",
    "password": STRONG_PASSWORD,
}


def _register(client, **overrides) -> dict:
    resp = client.post("/api/v1/auth/register", json={**REGISTER_BODY, **overrides})
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# register
# ---------------------------------------------------------------------------


def test_register_returns_201_envelope(api_client):
    client, _ = api_client
    resp = client.post("/api/v1/auth/register", json=REGISTER_BODY)
    assert resp.status_code == 201
    assert resp.headers["Cache-Control"] == "no-store"

    body = resp.json()
    assert body["success"] is True
    assert body["error"] is None
    assert body["timestamp"].endswith("Z")
    data = body["data"]
    assert data["access_token"] and data["refresh_token"]
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == 900
    assert data["user"]["email"] == "alice@example.com"
    assert set(data["user"]) == {"id", "email", "first_name", "last_name", "created_at", "updated_at"}
    assert STRONG_PASSWORD not in resp.text
    assert "$2b$" not in resp.text


def test_register_duplicate_is_409(api_client):
    client, _ = api_client
    _register(client)
    resp = client.post("/api/v1/auth/register", json=REGISTER_BODY)
    assert resp.status_code == 409
    body = resp.json()
    assert body["success"] is False
    assert body["data"] is None
    assert body["error"]["code"] == "conflict"


def test_register_weak_password_is_400_with_violations(api_client):
    client, _ = api_client
    resp = client.post("/api/v1/auth/register", json={**REGISTER_BODY, "password": "weakpassword"})
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "invalid_input"
    assert isinstance(error["detail"], list) and error["detail"]
    assert "weakpassword" not in resp.text


def test_register_malformed_body_is_422_without_echoing_values(api_client):
    client, _ = api_client
    resp = client.post(
        "/api/v1/auth/register",
        json={**REGISTER_BODY, "email": "not-an-email", "password": "Leak$ed-Pass99"},
    )
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"]["code"] == "validation_error"
    assert any("email" in err["loc"] for err in body["error"]["detail"])
    assert "Leak$ed-Pass99" not in resp.text


# ---------------------------------------------------------------------------
# login / refresh
# ---------------------------------------------------------------------------


def test_login_success_and_failure_shapes(api_client):
    client, _ = api_client
    _register(client)

    ok = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": STRONG_PASSWORD})
    assert ok.status_code == 200
    assert ok.headers["Cache-Control"] == "no-store"
    assert ok.json()["data"]["user"]["email"] == "alice@example.com"

    unknown = client.post("/api/v1/auth/login", json={"email": "bob@example.com", "password": STRONG_PASSWORD})
    wrong = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": "Wr0ng$password"})
    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json()["error"] == wrong.json()["error"]


def test_refresh_rotates_and_rejects_reuse(api_client):
    client, _ = api_client
    old = _register(client)["refresh_token"]

    first = client.post("/api/v1/auth/refresh", json={"refresh_token": old})
    assert first.status_code == 200
    assert first.headers["Cache-Control"] == "no-store"
    new = first.json()["data"]["refresh_token"]
    assert new != old

    replay = client.post("/api/v1/auth/refresh", json={"refresh_token": old})
    assert replay.status_code == 401
    assert replay.json()["error"]["code"] == "invalid_refresh_token"


# ---------------------------------------------------------------------------
# authenticated routes
# ---------------------------------------------------------------------------


def test_me_requires_bearer_access_token(api_client):
    client, _ = api_client
    tokens = _register(client)

    assert client.get("/api/v1/auth/me").status_code == 401
    resp = client.get("/api/v1/auth/me", headers=_bearer(tokens["refresh_token"]))
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"
    assert resp.headers["WWW-Authenticate"] == "Bearer"

    me = client.get("/api/v1/auth/me", headers=_bearer(tokens["access_token"]))
    assert me.status_code == 200
    assert me.json()["data"]["id"] == tokens["user"]["id"]


def test_logout_revokes_refresh_token(api_client):
    client, _ = api_client
    tokens = _register(client)

    resp = client.post("/api/v1/auth/logout", headers=_bearer(tokens["access_token"]))
    assert resp.status_code == 200
    again = client.post("/api/v1/auth/logout", headers=_bearer(tokens["access_token"]))
    assert again.status_code == 200

    refresh = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refresh.status_code == 401


def test_change_password_flow(api_client):
    client, _ = api_client
    tokens = _register(client)
    headers = _bearer(tokens["access_token"])

    wrong = client.post(
        "/api/v1/auth/change-password",
        json={"current_password": "Wr0ng$password", "new_password": NEW_PASSWORD},
        headers=headers,
    )
    assert wrong.status_code == 401

    same = client.post(
        "/api/v1/auth/change-password",
        json={"current_password": STRONG_PASSWORD, "new_password": STRONG_PASSWORD},
        headers=headers,
    )
    assert same.status_code == 400

    ok = client.post(
        "/api/v1/auth/change-password",
        json={"current_password": STRONG_PASSWORD, "new_password": NEW_PASSWORD},
        headers=headers,
    )
    assert ok.status_code == 200
    assert client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401
    login = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": NEW_PASSWORD})
    assert login.status_code == 200


# ---------------------------------------------------------------------------
# forgot / reset
# ---------------------------------------------------------------------------


def test_forgot_password_is_uniform(api_client):
    client, sink = api_client
    _register(client)

    known = client.post("/api/v1/auth/forgot-password", json={"email": "alice@example.com"})
    unknown = client.post("/api/v1/auth/forgot-password", json={"email": "nobody@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json()["message"] == unknown.json()["message"]
    assert known.json()["data"] is None
    assert [email for email, _ in sink.sent] == ["alice@example.com"]


def test_reset_password_flow(api_client):
    client, sink = api_client
    tokens = _register(client)
    client.post("/api/v1/auth/forgot-password", json={"email": "alice@example.com"})
    code = sink.last_code_for("alice@example.com")
    wrong_code = f"{(int(code) + 1) % 1_000_000:06d}"

    bad = client.post(
        "/api/v1/auth/reset-password",
        json={"email": "alice@example.com", "otp_code": wrong_code, "new_password": NEW_PASSWORD},
    )
    assert bad.status_code == 400
    assert bad.json()["error"]["code"] == "invalid_or_expired_code"

    ok = client.post(
        "/api/v1/auth/reset-password",
        json={"email": "alice@example.com", "otp_code": code, "new_password": NEW_PASSWORD},
    )
    assert ok.status_code == 200
    assert ok.json()["success"] is True

    stale = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert stale.status_code == 401


def test_reset_password_rejects_non_numeric_code(api_client):
    client, _ = api_client
    resp = client.post(
        "/api/v1/auth/reset-password",
        json={"email": "alice@example.com", "otp_code": "12ab56", "new_password": NEW_PASSWORD},
    )
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# cross-cutting
# ---------------------------------------------------------------------------


def test_request_id_is_echoed(api_client):
    client, _ = api_client
    resp = client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"


def test_register_password_over_bcrypt_limit_is_400(api_client):
    client, _ = api_client
    resp = client.post("/api/v1/auth/register", json={**REGISTER_BODY, "password": "Aa1!" + "x" * 80})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_input"


def test_email_whitespace_is_ignored_on_every_endpoint(api_client):
    client, sink = api_client
    _register(client, email=" alice@example.com ")

    login = client.post("/api/v1/auth/login", json={"email": " alice@example.com", "password": STRONG_PASSWORD})
    assert login.status_code == 200
    assert login.json()["data"]["user"]["email"] == "alice@example.com"

    client.post("/api/v1/auth/forgot-password", json={"email": "alice@example.com "})
    code = sink.last_code_for("alice@example.com")
    reset = client.post(
        "/api/v1/auth/reset-password",
        json={"email": " alice@example.com", "otp_code": code, "new_password": NEW_PASSWORD},
    )
    assert reset.status_code == 200


def test_password_whitespace_is_kept(api_client):
    client, _ = api_client
    _register(client, password=" " + STRONG_PASSWORD)
    stripped = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": STRONG_PASSWORD})
    assert stripped.status_code == 401
    exact = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": " " + STRONG_PASSWORD})
    assert exact.status_code == 200


def test_forgot_password_survives_failing_delivery(api_client):
    client, sink = api_client
    _register(client)
    sink.fail_with = ConnectionRefusedError("no mail server")
    resp = client.post("/api/v1/auth/forgot-password", json={"email": "alice@example.com"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True


# ---------------------------------------------------------------------------
# storage outages
# ---------------------------------------------------------------------------


def test_storage_outage_is_503_with_retry_after(api_client, monkeypatch):
    client, _ = api_client
    _register(client)

    def unavailable(*args, **kwargs):
        raise StorageUnavailable()

    monkeypatch.setattr(app.state.user_store, "find_by_email", unavailable)
    resp = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": STRONG_PASSWORD})
    assert resp.status_code == 503
    assert resp.headers["Retry-After"] == "5"
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "storage_unavailable"


# ---------------------------------------------------------------------------
# users
# ---------------------------------------------------------------------------


def test_get_user_by_id(api_client):
    client, _ = api_client
    alice = _register(client)
    bob = _register(client, email="bob@example.com", first_name="Bob")

    resp = client.get(f"/api/v1/users/{bob['user']['id']}", headers=_bearer(alice["access_token"]))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["id"] == bob["user"]["id"]
    assert data["email"] == "bob@example.com"
    assert data["first_name"] == "Bob"
    assert set(data) == {"id", "email", "first_name", "last_name", "created_at", "updated_at"}
    assert "$2b$" not in resp.text


def test_get_user_requires_auth_and_404s_unknown(api_client):
    client, _ = api_client
    alice = _register(client)

    assert client.get(f"/api/v1/users/{alice['user']['id']}").status_code == 401
    missing = client.get("/api/v1/users/00000000-0000-0000-0000-000000000000", headers=_bearer(alice["access_token"]))
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"
