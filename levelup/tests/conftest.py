"""
LevelUp Test Configuration: shared fixtures for store and API tests.
"""
import importlib
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from levelup.db import connect, init_database, new_id, utcnow


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "levelup_test.db"
    init_database(path)
    return path


@pytest.fixture
def make_user(db_path):
    """Factory: insert a user row directly and return its id."""
    def _make(email=None, display_name="Test User", xp=0, coins=0, level=1, **extra):
        user_id = new_id()
        now = utcnow()
        row = {
            "id": user_id,
            "email": email or f"user-{user_id[:8]}@corp.example",
            "display_name": display_name,
            "current_xp": xp,
            "coins_balance": coins,
            "current_level": level,
            "created_at": now,
            "updated_at": now,
            **extra,
        }
        with connect(db_path) as conn:
            conn.execute(
                f"INSERT INTO users ({', '.join(row)}) VALUES ({', '.join('?' for _ in row)})",
                list(row.values()),
            )
        return user_id
    return _make


@pytest.fixture
def make_skill(db_path):
    def _make(name, slug=None):
        skill_id = new_id()
        now = utcnow()
        with connect(db_path) as conn:
            conn.execute(
                "INSERT INTO skills (id, slug, name, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (skill_id, slug or name.lower().replace(" ", "-"), name, now, now),
            )
        return skill_id
    return _make


@pytest.fixture
def make_job(db_path):
    """Factory: published job with optional skill requirements [(skill_id, level, mandatory)]."""
    def _make(title="Backend Engineer", status="published", skills=(), **extra):
        job_id = new_id()
        now = utcnow()
        row = {
            "id": job_id, "code": f"JOB-{job_id[:8]}", "title": title, "status": status,
            "created_at": now, "updated_at": now, **extra,
        }
        with connect(db_path) as conn:
            conn.execute(
                f"INSERT INTO jobs ({', '.join(row)}) VALUES ({', '.join('?' for _ in row)})",
                list(row.values()),
            )
            for skill_id, level, mandatory in skills:
                conn.execute(
                    "INSERT INTO job_skills (job_id, skill_id, required_level, is_mandatory, created_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (job_id, skill_id, level, int(mandatory), now),
                )
        return job_id
    return _make


@pytest.fixture
def make_gig(db_path):
    def _make(title="Dashboard sprint", status="open", skills=(), **extra):
        gig_id = new_id()
        now = utcnow()
        row = {
            "id": gig_id, "code": f"GIG-{gig_id[:8]}", "title": title, "status": status,
            "created_at": now, "updated_at": now, **extra,
        }
        with connect(db_path) as conn:
            conn.execute(
                f"INSERT INTO gigs ({', '.join(row)}) VALUES ({', '.join('?' for _ in row)})",
                list(row.values()),
            )
            for skill_id, level, mandatory in skills:
                conn.execute(
                    "INSERT INTO gig_skills (gig_id, skill_id, required_level, is_mandatory, created_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (gig_id, skill_id, level, int(mandatory), now),
                )
        return gig_id
    return _make


def give_skill(db_path, user_id, skill_id, level):
    now = utcnow()
    with connect(db_path) as conn:
        conn.execute(
            "INSERT INTO user_skills (user_id, skill_id, skill_level, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (user_id, skill_id, level, now, now),
        )


def get_user_row(db_path, user_id):
    with connect(db_path) as conn:
        return dict(conn.execute("SELECT * FROM users WHERE id=?", (user_id,)).fetchone())


@pytest.fixture
def fresh_app(tmp_path, monkeypatch):
    """Fresh API server with isolated database and JWT secret."""
    db_path = tmp_path / "levelup_test.db"
    monkeypatch.setenv("LEVELUP_DB_PATH", str(db_path))
    monkeypatch.setenv("LEVELUP_JWT_SECRET", str(tmp_path / ".jwt_secret"))
    monkeypatch.setenv("LEVELUP_ADMIN_ALLOWLIST", "")

    # Force reimport to pick up the new environment
    for mod_name in list(sys.modules):
        if mod_name.startswith("levelup.") and not mod_name.startswith("levelup.tests"):
            del sys.modules[mod_name]
            pkg = sys.modules.get("levelup")
            if pkg is not None:
                pkg.__dict__.pop(mod_name.split(".", 1)[1], None)

    api_server = importlib.import_module("levelup.api_server")
    client = TestClient(api_server.app)
    return client, api_server, db_path


def register_and_login(client, email="dana@corp.example", password="correct-horse", display_name="Dana"):
    """Helper: register through the API and return auth headers plus the user."""
    resp = client.post("/auth/register", json={
        "email": email, "password": password, "display_name": display_name,
    })
    assert resp.status_code == 201, resp.text
    resp = client.post("/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    return {
        "user": body["user"],
        "token": body["token"],
        "headers": {"Authorization": f"Bearer {body['token']}"},
    }


def make_admin(monkeypatch, user):
    monkeypatch.setenv("LEVELUP_ADMIN_ALLOWLIST", user["email"])


# Export helpers
pytest.give_skill = give_skill
pytest.get_user_row = get_user_row
pytest.register_and_login = register_and_login
pytest.make_admin = make_admin
