from datetime import datetime, timedelta, timezone

import jwt
from fastapi.testclient import TestClient

from seatmanager import main
from seatmanager.config import settings
from seatmanager.utils.rate_limit import LoginRateLimiter
from conftest import make_user, login_client


def test_login_status_logout_flow(client):
    make_user("frontdesk", role="staff")
    r = client.get("/auth/status")
    assert r.status_code == 200
    assert r.json() == {"isAuthenticated": False, "user": None}

    r = client.post("/auth/login", json={"username": "frontdesk", "password": "pass123"})
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "Login successful"
    assert body["user"]["role"] == "staff"
    assert settings.SESSION_COOKIE_NAME in r.cookies

    status = client.get("/auth/status").json()
    assert status["isAuthenticated"] is True
    assert status["user"]["username"] == "frontdesk"

    r = client.get("/auth/logout")
    assert r.status_code == 200
    assert r.json()["message"] == "Logout successful"
    client.cookies.clear()
    assert client.get("/auth/status").json()["isAuthenticated"] is False


def test_login_validation_and_bad_credentials(client):
    make_user("frontdesk")
    assert client.post("/auth/login", json={"username": "frontdesk"}).status_code == 400
    assert client.post("/auth/login", json={"username": "", "password": "x"}).status_code == 400
    r = client.post("/auth/login", json={"username": "frontdesk", "password": "wrong"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid credentials"
    assert client.post("/auth/login", json={"username": "ghost", "password": "x"}).status_code == 401


def test_bearer_token_is_accepted():
    make_user("api", role="admin")
    c = TestClient(main.app)
    token = c.post("/auth/login", json={"username": "api", "password": "pass123"}).json()["access_token"]
    fresh = TestClient(main.app)
    assert fresh.get("/users").status_code == 401
    r = fresh.get("/users", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert [u["username"] for u in r.json()] == ["api"]


def test_tampered_session_is_rejected(client):
    headers = {"Cookie": f"{settings.SESSION_COOKIE_NAME}=not-a-jwt"}
    assert client.get("/branches", headers=headers).status_code == 401
    assert client.get("/auth/status", headers=headers).json()["isAuthenticated"] is False


def test_role_checks(admin, staff):
    make_user("reader", role="user")
    reader = login_client("reader")

    # anyone logged in may read branches
    assert reader.get("/branches").status_code == 200
    # admin/staff routes
    assert staff.get("/students").status_code == 200
    r = reader.get("/students")
    assert r.status_code == 403
    assert r.json()["detail"] == "Forbidden: Admin or Staff access required"
    # admin-only routes
    r = staff.post("/branches", json={"name": "North"})
    assert r.status_code == 403
    assert r.json()["detail"] == "Forbidden: Admin access required"
    assert admin.post("/branches", json={"name": "North"}).status_code == 201


def test_permission_check_for_transactions(admin, staff):
    assert admin.get("/transactions").status_code == 200
    assert staff.get("/transactions").status_code == 403
    make_user("cashier", role="staff", permissions=["transactions"])
    cashier = login_client("cashier")
    assert cashier.get("/transactions").status_code == 200


def test_user_management(admin):
    r = admin.post("/users", json={"username": "clerk", "password": "pw", "role": "staff", "permissions": ["transactions"]})
    assert r.status_code == 201
    clerk_id = r.json()["id"]
    assert r.json()["permissions"] == ["transactions"]

    assert admin.post("/users", json={"username": "clerk", "password": "pw"}).status_code == 400
    assert admin.post("/users", json={"username": "boss", "password": "pw", "role": "owner"}).status_code == 400

    r = admin.put(f"/users/{clerk_id}", json={"role": "admin", "password": "newpw"})
    assert r.status_code == 200
    assert r.json()["role"] == "admin"
    login_client("clerk", "newpw")

    me = admin.get("/auth/status").json()["user"]["id"]
    assert admin.delete(f"/users/{me}").status_code == 400
    assert admin.delete(f"/users/{clerk_id}").status_code == 200
    assert admin.delete(f"/users/{clerk_id}").status_code == 404


def test_login_rate_limit(client):
    make_user("frontdesk")
    limit = main._login_limiter.max_attempts
    for _ in range(limit):
        assert client.post("/auth/login", json={"username": "frontdesk", "password": "bad"}).status_code == 401
    r = client.post("/auth/login", json={"username": "frontdesk", "password": "pass123"})
    assert r.status_code == 429
    assert "Retry-After" in r.headers


def test_rate_limiter_reset_and_window():
    limiter = LoginRateLimiter(max_attempts=2, window_seconds=60)
    assert limiter.hit("k") == (True, 0)
    assert limiter.hit("k") == (True, 0)
    allowed, retry = limiter.hit("k")
    assert not allowed and retry >= 1
    limiter.reset("k")
    assert limiter.hit("k")[0] is True
    assert limiter.hit("other")[0] is True


def test_health_and_request_id(client):
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers["X-Request-ID"] == "abc123"


def test_expired_session_is_rejected(client):
    uid = make_user("nightshift", role="admin")
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = jwt.encode({"user_id": uid, "username": "nightshift", "role": "admin", "exp": int(past.timestamp())},
                       settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    headers = {"Cookie": f"{settings.SESSION_COOKIE_NAME}={token}"}
    r = client.get("/branches", headers=headers)
    assert r.status_code == 401
    assert r.json()["detail"] == "session expired"
    assert client.get("/users", headers={"Authorization": f"Bearer {token}"}).status_code == 401
    assert client.get("/auth/status", headers=headers).json()["isAuthenticated"] is False


def test_session_of_deleted_user_is_rejected(admin):
    make_user("temp", role="staff")
    temp = login_client("temp")
    assert temp.get("/branches").status_code == 200
    temp_id = next(u["id"] for u in admin.get("/users").json() if u["username"] == "temp")
    assert admin.delete(f"/users/{temp_id}").status_code == 200
    assert temp.get("/branches").status_code == 401
    assert temp.get("/auth/status").json()["isAuthenticated"] is False
