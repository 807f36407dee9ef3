"""Rate limiting observed through the full application stack."""

from fastapi.testclient import TestClient

STRONG_PASSWORD = "Str0ng!Pass"


def _client(make_app, **rate_limit) -> TestClient:
    return TestClient(make_app(**rate_limit))


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_sixth_failed_login_is_rejected(make_app) -> None:
    client = _client(make_app)
    credentials = {"email": "ghost@example.com", "password": STRONG_PASSWORD}

    for _ in range(5):
        assert client.post("/auth/login", json=credentials).status_code == 401

    response = client.post("/auth/login", json=credentials)

    assert response.status_code == 429
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Too many requests, please try again later"
    assert 0 < body["retryAfter"] <= 900
    assert response.headers["Retry-After"] == str(body["retryAfter"])
    assert response.headers["RateLimit-Limit"] == "5"
    assert response.headers["RateLimit-Remaining"] == "0"


def test_successful_logins_do_not_consume_auth_quota(make_app, register_user) -> None:
    client = _client(make_app, auth_max_requests=2)
    register_user(client)

    for _ in range(5):
        response = client.post(
            "/auth/login", json={"email": "jane@example.com", "password": STRONG_PASSWORD}
        )
        assert response.status_code == 200


def test_validation_failures_count_against_auth_quota(make_app) -> None:
    client = _client(make_app, auth_max_requests=2)

    assert client.post("/auth/register", json={}).status_code == 422
    assert client.post("/auth/register", json={}).status_code == 422
    assert client.post("/auth/register", json={}).status_code == 429


def test_general_quota_applies_to_every_route(make_app) -> None:
    client = _client(make_app, max_requests=2)

    assert client.get("/users/me").status_code == 401
    assert client.get("/users/me").status_code == 401
    assert client.get("/users/1").status_code == 429


def test_authenticated_users_have_separate_quotas(make_app, register_user) -> None:
    client = _client(make_app, max_requests=3, auth_max_requests=10)
    jane = register_user(client)
    bob = register_user(client, email="bob@example.com", name="Bob Smith")

    for token in (jane["token"], bob["token"]):
        for _ in range(3):
            assert client.get("/users/me", headers=_bearer(token)).status_code == 200

    assert client.get("/users/me", headers=_bearer(jane["token"])).status_code == 429
    # The two registrations used two of the anonymous caller's three requests.
    assert client.get("/users/me").status_code == 401
    assert client.get("/users/me").status_code == 429


def test_health_is_never_limited(make_app) -> None:
    app = make_app(max_requests=1)
    client = TestClient(app)

    for _ in range(10):
        assert client.get("/health").status_code == 200

    assert len(app.state.rate_limit_guard.limiter_for("general")) == 0


def test_allowed_responses_carry_headers(make_app) -> None:
    client = _client(make_app, max_requests=10)

    response = client.get("/users/me")

    assert response.headers["RateLimit-Limit"] == "10"
    assert response.headers["RateLimit-Remaining"] == "9"


def test_disabled_rate_limiting(make_app) -> None:
    client = _client(make_app, enabled=False, max_requests=1)

    for _ in range(5):
        response = client.get("/users/me")
        assert response.status_code == 401
        assert "RateLimit-Limit" not in response.headers
