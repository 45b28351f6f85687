"""Tests for the YAML demo data loader."""
import pytest

from levelup.auth import UserAuth
from levelup.db import connect
from levelup.errors import ValidationError
from levelup.gamification import cumulative_xp_for_level
from levelup.matching import get_matched_opportunities
from levelup.seed import SEED_PATH, get_seed_user_email, level_rows, load_seed


def _count(db_path, table):
    with connect(db_path) as conn:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def test_level_rows_follow_curve():
    rows = level_rows(6)
    assert [r["min_total_xp"] for r in rows][:3] == [0, 1000, 2200]
    assert [r["min_total_xp"] for r in rows] == [cumulative_xp_for_level(n) for n in range(1, 7)]
    assert rows[0]["title"] == "Novice"
    assert rows[5]["title"] == "Apprentice"


def test_load_bundled_seed(db_path):
    counts = load_seed(db_path)
    assert counts["level_definitions"] == 30
    assert counts["jobs"] == 3
    assert _count(db_path, "job_skills") == 8
    assert _count(db_path, "courses") == 3
    assert _count(db_path, "users") == 3


def test_seed_is_idempotent(db_path):
    load_seed(db_path)
    load_seed(db_path)
    for table, expected in (("skills", 11), ("jobs", 3), ("gigs", 2), ("courses", 3),
                            ("quests", 3), ("users", 3), ("user_roles", 3), ("app_widgets", 5)):
        assert _count(db_path, table) == expected, table


def test_seeded_admin_can_log_in(db_path, tmp_path, monkeypatch):
    monkeypatch.setenv("LEVELUP_ADMIN_ALLOWLIST", "")
    load_seed(db_path)
    auth = UserAuth(db_path=db_path, secret_file=tmp_path / ".jwt_secret")
    result = auth.authenticate(get_seed_user_email(), "change-me-now")
    assert result.success is True
    assert auth.is_admin(result.user) is True


def test_seeded_employee_gets_matches(db_path):
    load_seed(db_path)
    with connect(db_path) as conn:
        uid = conn.execute("SELECT id FROM users WHERE email='dana@levelup.local'").fetchone()["id"]
    jobs = get_matched_opportunities(db_path, uid)["jobs"]
    # the draft job is not offered
    assert len(jobs) == 2
    assert jobs[0].title == "Backend Engineer"
    assert jobs[0].match_score == 100


def test_unknown_skill_reference(db_path, tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text(
        "skills:\n  - {slug: python, name: Python}\n"
        "jobs:\n  - code: JOB-x\n    title: X\n    skills:\n      - {skill: cobol}\n",
        encoding="utf-8",
    )
    with pytest.raises(ValidationError):
        load_seed(db_path, path)


def test_missing_file(db_path, tmp_path):
    assert load_seed(db_path, tmp_path / "nope.yaml") == {}


def test_bundled_seed_exists():
    assert SEED_PATH.exists()
    assert get_seed_user_email(role="employee") == "dana@levelup.local"
