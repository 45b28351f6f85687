"""Tests for job/gig persistence and the talent directory."""
import re

import pytest

from levelup import repository
from levelup.applications import apply_for_gig, apply_for_job
from levelup.db import connect
from levelup.errors import NotFoundError, ValidationError
from levelup.rewards import award


class TestJobCodes:
    def test_format(self):
        code = repository.generate_job_code("Senior Backend Engineer (Payments)")
        assert re.fullmatch(r"JOB-senior-backend-engineer-paymen-[0-9a-z]{1,5}", code)

    def test_base36(self):
        assert repository._base36(0) == "0"
        assert repository._base36(35) == "z"
        assert repository._base36(36) == "10"


class TestJobs:
    def test_create_job_defaults(self, db_path):
        job = repository.create_job(db_path, title="Data Analyst", tags=["Data", " ", "SQL"])
        assert job["status"] == "published"
        assert job["xp_reward"] == 50
        assert job["coin_reward"] == 20
        assert job["internal_xp"] == 50
        assert job["recruiter_email"] == "hr@levelup.local"
        assert job["tags"] == ["Data", "SQL"]
        assert job["is_hot"] is False
        assert job["code"].startswith("JOB-data-analyst-")

    def test_blank_title(self, db_path):
        with pytest.raises(ValidationError):
            repository.create_job(db_path, title="  ")

    def test_defaults_filled_for_sparse_rows(self, db_path, make_job):
        make_job(title="Imported", xp_reward=70, coin_reward=15)
        job = repository.get_jobs(db_path)[0]
        assert job["internal_xp"] == 70
        assert job["referral_coins"] == 15
        assert job["tags"] == []
        assert job["recruiter_email"] == "hr@levelup.local"

    def test_status_filter(self, db_path, make_job):
        make_job(title="Open")
        make_job(title="Draft", status="draft")
        assert [j["title"] for j in repository.get_jobs(db_path, status="published")] == ["Open"]
        assert len(repository.get_jobs(db_path)) == 2

    def test_get_job_includes_skills(self, db_path, make_job, make_skill):
        python = make_skill("Python")
        job_id = make_job(skills=[(python, 3, True)])
        job = repository.get_job(db_path, job_id)
        assert job["skills"][0]["skill_name"] == "Python"
        assert job["skills"][0]["required_level"] == 3

    def test_get_job_missing(self, db_path):
        with pytest.raises(NotFoundError):
            repository.get_job(db_path, "missing")

    def test_update_status(self, db_path, make_job):
        job_id = make_job()
        repository.update_job_status(db_path, job_id, "closed")
        assert repository.get_job(db_path, job_id)["status"] == "closed"
        with pytest.raises(ValidationError):
            repository.update_job_status(db_path, job_id, "paused")
        with pytest.raises(NotFoundError):
            repository.update_job_status(db_path, "missing", "closed")


class TestImportJob:
    def test_creates_and_links_skills(self, db_path, make_skill):
        make_skill("Python", slug="python")
        result = repository.create_job_with_skills(db_path, {
            "title": "ML Engineer",
            "description_summary": "Models in production.",
            "department": "Data",
            "skills": [
                {"name": "python", "level": 4, "is_mandatory": True},
                {"name": "Kubernetes", "level": 9},
                {"name": "  "},
            ],
        })
        assert result["success"] is True
        assert result["skills_created"] == 1
        assert result["skills_linked"] == 2
        assert result["errors"] == ["Skill 3 has no name, skipped"]

        job = repository.get_job(db_path, result["job_id"])
        levels = {s["skill_name"]: s["required_level"] for s in job["skills"]}
        assert levels == {"Python": 4, "Kubernetes": 5}
        assert job["tags"] == ["Data"]
        with connect(db_path) as conn:
            k8s = conn.execute("SELECT category, source FROM skills WHERE slug='kubernetes'").fetchone()
        assert k8s["category"] == "Data"
        assert k8s["source"] == "job_import"

    def test_missing_title(self, db_path):
        result = repository.create_job_with_skills(db_path, {"skills": []})
        assert result["success"] is False
        assert result["job_id"] is None

    def test_bad_level_rolls_back_job(self, db_path):
        with pytest.raises(ValidationError):
            repository.create_job_with_skills(db_path, {
                "title": "Data Analyst",
                "skills": [{"name": "Python", "level": 3}, {"name": "SQL", "level": "expert"}],
            })
        with connect(db_path) as conn:
            assert conn.execute("SELECT COUNT(*) FROM jobs").fetchone()[0] == 0
            assert conn.execute("SELECT COUNT(*) FROM job_skills").fetchone()[0] == 0
            assert conn.execute("SELECT COUNT(*) FROM skills").fetchone()[0] == 0


class TestOpportunities:
    def test_merged_newest_first_with_counts(self, db_path, make_user, make_job, make_gig):
        uid = make_user()
        job_id = make_job(title="Job", created_at="2026-01-01T00:00:00+00:00")
        gig_id = make_gig(title="Gig", created_at="2026-02-01T00:00:00+00:00")
        apply_for_job(db_path, uid, job_id)
        apply_for_gig(db_path, uid, gig_id)

        items = repository.get_all_opportunities(db_path)
        assert [(o["type"], o["title"]) for o in items] == [("gig", "Gig"), ("job", "Job")]
        assert all(o["application_count"] == 1 for o in items)
        assert all(o["is_active"] for o in items)

    def test_delete(self, db_path, make_job, make_gig):
        job_id, gig_id = make_job(), make_gig()
        repository.delete_opportunity(db_path, job_id, "job")
        repository.delete_opportunity(db_path, gig_id, "gig")
        assert repository.get_all_opportunities(db_path) == []
        with pytest.raises(NotFoundError):
            repository.delete_opportunity(db_path, job_id, "job")
        with pytest.raises(ValidationError):
            repository.delete_opportunity(db_path, job_id, "course")

    def test_open_gigs_only(self, db_path, make_gig):
        make_gig(title="Open")
        make_gig(title="Closed", status="closed")
        assert [g["title"] for g in repository.get_gigs(db_path)] == ["Open"]


class TestTalent:
    def test_users_list_sorted(self, db_path, make_user):
        make_user(display_name="Zed")
        make_user(display_name="Amit", is_active=0)
        users = repository.get_users_list(db_path)
        assert [u["display_name"] for u in users] == ["Amit", "Zed"]
        assert users[0]["is_active"] is False

    def test_full_profile(self, db_path, make_user, make_skill, make_job):
        uid = make_user(display_name="Dana")
        for i in range(7):
            sid = make_skill(f"Skill {i}")
            with connect(db_path) as conn:
                conn.execute(
                    "INSERT INTO user_skills (user_id, skill_id, skill_level, skill_xp, created_at, updated_at) "
                    "VALUES (?, ?, 3, ?, '', '')",
                    (uid, sid, i * 100),
                )
        award(db_path, uid, xp=10)
        apply_for_job(db_path, uid, make_job(title="Backend"))

        profile = repository.get_user_full_profile(db_path, uid)
        assert [s["skill_name"] for s in profile["strengths"]] == [f"Skill {i}" for i in (6, 5, 4, 3, 2)]
        assert [s["skill_name"] for s in profile["improvements"]] == [f"Skill {i}" for i in (0, 1, 2, 3, 4)]
        assert len(profile["xp_transactions"]) == 1
        assert profile["job_applications"][0]["job_title"] == "Backend"

    def test_few_skills_no_improvements(self, db_path, make_user, make_skill):
        uid = make_user()
        pytest.give_skill(db_path, uid, make_skill("Python"), 3)
        assert repository.get_user_full_profile(db_path, uid)["improvements"] == []

    def test_profile_missing(self, db_path):
        with pytest.raises(NotFoundError):
            repository.get_user_full_profile(db_path, "nobody")
