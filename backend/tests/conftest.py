from datetime import date, timedelta
from pathlib import Path
import os
import tempfile
import pytest

# Point the app at a throwaway SQLite file before anything imports it.
_DB_DIR = Path(tempfile.mkdtemp(prefix="seatmanager-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ.setdefault("LOGIN_RATE_LIMIT_PER_MIN", "5")

from fastapi.testclient import TestClient
from sqlmodel import Session

from seatmanager import main, services
from seatmanager.database import engine, create_db_and_tables, drop_db_and_tables


@pytest.fixture(autouse=True)
def reset_db():
    """Fresh tables and an empty login limiter for every test."""
    drop_db_and_tables()
    create_db_and_tables()
    main._login_limiter.clear()
    yield


def make_user(username, password="pass123", role="staff", permissions=None):
    with Session(engine) as session:
        user = services.AuthService(session).register(username, password, role=role, permissions=permissions)
        return user.id


def login_client(username, password="pass123"):
    client = TestClient(main.app)
    r = client.post("/auth/login", json={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return client


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def admin():
    make_user("admin", role="admin")
    return login_client("admin")


@pytest.fixture
def staff():
    make_user("staff", role="staff")
    return login_client("staff")


@pytest.fixture
def branch(admin):
    r = admin.post("/branches", json={"name": "Main Branch", "address": "1 High St"})
    assert r.status_code == 201, r.text
    return r.json()


@pytest.fixture
def shift(admin, branch):
    r = admin.post("/shifts", json={"title": "Morning", "startTime": "06:00", "endTime": "12:00", "fee": 800, "branchId": branch["id"]})
    assert r.status_code == 201, r.text
    return r.json()


@pytest.fixture
def seats(admin, branch):
    r = admin.post("/seats", json={"seatNumbers": ["1", "2", "10"], "branchId": branch["id"]})
    assert r.status_code == 201, r.text
    return {s["seatNumber"]: s for s in r.json()["created"]}


def student_payload(branch_id=None, **overrides):
    today = date.today()
    payload = {
        "name": "Asha Verma",
        "phone": "9876543210",
        "email": "asha@example.com",
        "registrationNumber": "REG-001",
        "branchId": branch_id,
        "membershipStart": today.isoformat(),
        "membershipEnd": (today + timedelta(days=30)).isoformat(),
        "totalFee": 1000,
        "cash": 400,
        "online": 200,
        "securityMoney": 100,
    }
    payload.update(overrides)
    return payload
