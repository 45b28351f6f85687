"""Tests for first-run profile completion."""
import pytest

from levelup.db import connect
from levelup.errors import NotFoundError
from levelup.onboarding import complete_onboarding, slugify

PROFILE = {
    "display_name": "Dana Levi",
    "headline": "Backend engineer who likes data",
    "skills": [{"name": "Python", "level": 4}, {"name": "Machine Learning", "level": 9},
               {"name": "   ", "level": 3}],
}


def _user_skills(db_path, user_id):
    with connect(db_path) as conn:
        rows = conn.execute(
            """
            SELECT s.slug, us.skill_level FROM user_skills us JOIN skills s ON s.id = us.skill_id
            WHERE us.user_id=? ORDER BY s.slug
            """,
            (user_id,),
        ).fetchall()
    return {r["slug"]: r["skill_level"] for r in rows}


def test_slugify():
    assert slugify("  Machine Learning ") == "machine-learning"
    assert slugify("C++ / C#") == "c-c"
    assert slugify("") == ""


def test_first_onboarding_pays_bonus(db_path, make_user):
    uid = make_user(display_name=None)
    result = complete_onboarding(db_path, uid, PROFILE)
    assert result == {"skills_added": 2, "xp_awarded": 500, "coins_awarded": 100}

    user = pytest.get_user_row(db_path, uid)
    assert user["display_name"] == "Dana Levi"
    assert user["headline"] == "Backend engineer who likes data"
    assert user["onboarded_at"] is not None
    assert user["current_xp"] == 500
    assert user["coins_balance"] == 100
    # levels are clamped to 1..5
    assert _user_skills(db_path, uid) == {"machine-learning": 5, "python": 4}


def test_repeat_onboarding_pays_nothing(db_path, make_user):
    uid = make_user()
    complete_onboarding(db_path, uid, PROFILE)
    result = complete_onboarding(db_path, uid, {"skills": [{"name": "python", "level": 2}]})
    assert result["xp_awarded"] == 0
    assert result["coins_awarded"] == 0
    assert pytest.get_user_row(db_path, uid)["current_xp"] == 500
    assert _user_skills(db_path, uid)["python"] == 2


def test_reuses_existing_skill(db_path, make_user, make_skill):
    make_skill("Python", slug="python")
    uid = make_user()
    complete_onboarding(db_path, uid, {"skills": [{"name": "Python", "level": 3}]})
    with connect(db_path) as conn:
        count = conn.execute("SELECT COUNT(*) FROM skills WHERE slug='python'").fetchone()[0]
    assert count == 1


def test_public_feed_event(db_path, make_user):
    uid = make_user()
    complete_onboarding(db_path, uid, PROFILE)
    with connect(db_path) as conn:
        row = conn.execute(
            "SELECT visibility FROM feed_events WHERE event_type='profile_updated'"
        ).fetchone()
    assert row["visibility"] == "public"


def test_unknown_user(db_path):
    with pytest.raises(NotFoundError):
        complete_onboarding(db_path, "nobody", PROFILE)
