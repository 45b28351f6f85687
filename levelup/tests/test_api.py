"""
LevelUp API Routes Tests

End-to-end through FastAPI's TestClient: auth, opportunities, referrals,
learning, feed, admin screens and the audit trail.
"""
import inspect

import pytest


@pytest.fixture
def api(fresh_app):
    client, api_server, db_path = fresh_app
    return client


@pytest.fixture
def employee(api):
    return pytest.register_and_login(api)


@pytest.fixture
def admin(api, monkeypatch):
    user = pytest.register_and_login(api, email="hr@corp.example", display_name="HR")
    pytest.make_admin(monkeypatch, user["user"])
    return user


def _create_job(api, admin, **fields):
    body = {"title": "Backend Engineer", "internal_xp": 120, "referral_coins": 2000, **fields}
    resp = api.post("/admin/jobs", json=body, headers=admin["headers"])
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestPublic:
    def test_health(self, api):
        resp = api.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_root_json(self, api):
        assert api.get("/").json()["admin"] == "/admin/tables"

    def test_root_html(self, api):
        resp = api.get("/", headers={"Accept": "text/html"})
        assert resp.status_code == 200
        assert "LevelUp" in resp.text

    def test_levels(self, api):
        assert api.get("/levels/1600").json()["level"] == 2


class TestAuthRoutes:
    def test_register_login_me(self, api, employee):
        resp = api.get("/me", headers=employee["headers"])
        assert resp.status_code == 200
        body = resp.json()
        assert body["email"] == "dana@corp.example"
        assert body["level"]["level"] == 1
        assert body["is_admin"] is False

    def test_missing_token(self, api):
        assert api.get("/me").status_code == 401

    def test_bad_token(self, api):
        assert api.get("/me", headers={"Authorization": "Bearer nope"}).status_code == 401

    def test_duplicate_registration(self, api, employee):
        resp = api.post("/auth/register", json={"email": "dana@corp.example", "password": "another-pass"})
        assert resp.status_code == 409

    def test_short_password(self, api):
        resp = api.post("/auth/register", json={"email": "x@corp.example", "password": "short"})
        assert resp.status_code == 422

    def test_wrong_password(self, api, employee):
        resp = api.post("/auth/login", json={"email": "dana@corp.example", "password": "wrong-horse"})
        assert resp.status_code == 401

    def test_password_routes_run_in_threadpool(self, fresh_app):
        _, api_server, _ = fresh_app
        assert not inspect.iscoroutinefunction(api_server.register)
        assert not inspect.iscoroutinefunction(api_server.login)

    def test_admin_routes_forbidden(self, api, employee):
        assert api.get("/admin/tables", headers=employee["headers"]).status_code == 403
        assert api.get("/audit", headers=employee["headers"]).status_code == 403


class TestOpportunities:
    def test_apply_awards_xp_once(self, api, admin, employee):
        job = _create_job(api, admin)
        jobs = api.get("/jobs", headers=employee["headers"]).json()
        assert [j["id"] for j in jobs] == [job["id"]]

        first = api.post(f"/jobs/{job['id']}/apply", headers=employee["headers"]).json()
        second = api.post(f"/jobs/{job['id']}/apply", headers=employee["headers"]).json()
        assert first["reward"] == 120
        assert second["already_applied"] is True
        assert api.get("/me/level", headers=employee["headers"]).json()["total_xp"] == 120
        assert len(api.get("/me/applications", headers=employee["headers"]).json()) == 1

    def test_apply_to_unknown_job(self, api, employee):
        assert api.post("/jobs/missing/apply", headers=employee["headers"]).status_code == 404

    def test_import_job_and_match(self, api, admin, employee):
        resp = api.post("/admin/jobs/import", headers=admin["headers"], json={
            "title": "Data Analyst", "department": "Data",
            "skills": [{"name": "SQL", "level": 3, "is_mandatory": True}],
        })
        assert resp.status_code == 201
        assert resp.json()["skills_created"] == 1

        api.post("/onboarding", headers=employee["headers"],
                 json={"skills": [{"name": "SQL", "level": 2}]})
        matches = api.get("/matching", headers=employee["headers"]).json()
        assert matches["jobs"][0]["match_score"] == 50
        assert matches["jobs"][0]["gap_skills"][0]["skill_name"] == "SQL"

    def test_job_status_and_delete(self, api, admin, employee):
        job = _create_job(api, admin)
        resp = api.patch(f"/admin/jobs/{job['id']}/status", json={"status": "closed"},
                         headers=admin["headers"])
        assert resp.status_code == 200
        assert api.get("/jobs", headers=employee["headers"]).json() == []

        resp = api.delete(f"/admin/opportunities/job/{job['id']}", headers=admin["headers"])
        assert resp.status_code == 200
        assert api.get("/admin/tables/jobs", headers=admin["headers"]).json()["count"] == 0
        actions = [e["action"] for e in api.get("/audit", headers=admin["headers"]).json()]
        assert "opportunity_deleted" in actions


class TestReferrals:
    def test_careers_referral_flow(self, api, admin, employee):
        job = _create_job(api, admin)
        link = api.get(f"/jobs/{job['id']}/referral-link", headers=employee["headers"]).json()["url"]
        assert link.endswith(f"/careers/{job['id']}?ref={employee['user']['id']}")

        page = api.get(f"/careers/{job['id']}")
        assert page.status_code == 200
        assert page.json()["title"] == "Backend Engineer"

        resp = api.post(f"/careers/{job['id']}", params={"ref": employee["user"]["id"]},
                        json={"candidate_name": "Noa Katz", "candidate_email": "noa@example.com"})
        assert resp.status_code == 201
        ref_id = resp.json()["id"]

        listed = api.get("/admin/referrals", headers=admin["headers"]).json()
        assert listed[0]["referrer_name"] == "Dana"
        assert listed[0]["bonus_amount"] == 2000

        approved = api.post(f"/admin/referrals/{ref_id}/approve", headers=admin["headers"])
        assert approved.status_code == 200
        again = api.post(f"/admin/referrals/{ref_id}/approve", headers=admin["headers"])
        assert again.status_code == 409

        matured = api.post("/admin/payouts/mature", headers=admin["headers"]).json()
        assert matured["matured"] == 0

    def test_careers_hides_drafts(self, api, admin):
        job = _create_job(api, admin)
        api.patch(f"/admin/jobs/{job['id']}/status", json={"status": "draft"}, headers=admin["headers"])
        assert api.get(f"/careers/{job['id']}").status_code == 404
        resp = api.post(f"/careers/{job['id']}", json={"candidate_name": "Noa Katz"})
        assert resp.status_code == 404

    def test_referral_rate_limit(self, api, admin):
        job = _create_job(api, admin)
        for i in range(5):
            resp = api.post(f"/careers/{job['id']}", json={"candidate_name": f"Candidate {i}"})
            assert resp.status_code == 201
        resp = api.post(f"/careers/{job['id']}", json={"candidate_name": "One too many"})
        assert resp.status_code == 429


class TestLearningAndOnboarding:
    def test_course_completion(self, api, admin, employee):
        resp = api.post("/admin/courses", headers=admin["headers"],
                        json={"title": "SQL 101", "provider": "Academy", "xp_reward": 150})
        assert resp.status_code == 201
        course_id = resp.json()["id"]
        assert len(api.get("/courses", headers=employee["headers"]).json()) == 1

        done = api.post(f"/courses/{course_id}/complete", headers=employee["headers"])
        assert done.json()["xp_awarded"] == 150
        assert api.post(f"/courses/{course_id}/complete", headers=employee["headers"]).status_code == 409

    def test_course_update_and_delete(self, api, admin):
        course_id = api.post("/admin/courses", headers=admin["headers"],
                             json={"title": "Old", "provider": "Academy"}).json()["id"]
        updated = api.patch(f"/admin/courses/{course_id}", json={"title": "New"}, headers=admin["headers"])
        assert updated.json()["title"] == "New"
        assert api.delete(f"/admin/courses/{course_id}", headers=admin["headers"]).status_code == 200
        assert api.delete(f"/admin/courses/{course_id}", headers=admin["headers"]).status_code == 404

    def test_onboarding_bonus(self, api, employee):
        resp = api.post("/onboarding", headers=employee["headers"], json={
            "headline": "Backend engineer", "skills": [{"name": "Python", "level": 4}],
        })
        assert resp.json() == {"skills_added": 1, "xp_awarded": 500, "coins_awarded": 100}
        wallet = api.get("/me/wallet", headers=employee["headers"]).json()
        assert wallet["coins_balance"] == 100


class TestFeed:
    def test_post_comment_like(self, api, employee):
        resp = api.post("/feed", headers=employee["headers"],
                        json={"content": "Try the SQL course", "post_type": "tip"})
        assert resp.status_code == 201
        post_id = resp.json()["id"]
        api.post(f"/feed/{post_id}/comments", headers=employee["headers"], json={"content": "Thanks"})
        likes = api.post(f"/feed/{post_id}/like", headers=employee["headers"]).json()
        assert likes == {"likes_count": 1}
        feed = api.get("/feed", headers=employee["headers"]).json()
        assert feed[0]["comments_count"] == 1

    def test_invalid_post_type(self, api, employee):
        resp = api.post("/feed", headers=employee["headers"], json={"content": "Vote!", "post_type": "poll"})
        assert resp.status_code == 400

    def test_post_rate_limit(self, api, employee):
        for i in range(10):
            assert api.post("/feed", headers=employee["headers"], json={"content": f"Post {i}"}).status_code == 201
        assert api.post("/feed", headers=employee["headers"], json={"content": "More"}).status_code == 429

    def test_admin_delete_post(self, api, admin, employee):
        post_id = api.post("/feed", headers=employee["headers"], json={"content": "Oops"}).json()["id"]
        assert api.delete(f"/admin/posts/{post_id}", headers=admin["headers"]).status_code == 200
        assert api.get("/feed", headers=employee["headers"]).json() == []

    def test_home_and_layout(self, api, admin, employee):
        api.put("/admin/layout", headers=admin["headers"], json={"widgets": [
            {"key": "jobs", "label": "Hot jobs", "order_index": 1},
            {"key": "quests", "is_visible": False, "order_index": 0},
        ]})
        _create_job(api, admin)
        home = api.get("/home", headers=employee["headers"]).json()
        assert [w["key"] for w in home["layout"]] == ["jobs"]
        assert len(home["jobs"]) == 1


class TestAdminTables:
    def test_upsert_fetch_export(self, api, admin):
        resp = api.post("/admin/tables/skills/rows", headers=admin["headers"], json={"rows": [
            {"slug": "python", "name": "Python"}, {"slug": "sql", "name": "SQL"},
        ]})
        assert resp.json()["success"] is True

        data = api.get("/admin/tables/skills", params={"search": "pyth"}, headers=admin["headers"]).json()
        assert data["count"] == 1
        assert data["columns"][0] == "slug"

        csv_resp = api.get("/admin/tables/skills/export.csv", headers=admin["headers"])
        assert csv_resp.headers["content-type"].startswith("text/csv")
        assert csv_resp.text.splitlines()[0].startswith("slug,name,category")

    def test_html_view(self, api, admin):
        resp = api.get("/admin/tables/users/view", headers=admin["headers"])
        assert resp.status_code == 200
        assert "Users" in resp.text
        assert "hr@corp.example" in resp.text

    def test_invalid_table(self, api, admin):
        assert api.get("/admin/tables/sqlite_master", headers=admin["headers"]).status_code == 400

    def test_delete_row_audited(self, api, admin):
        api.post("/admin/tables/app_widgets/rows", headers=admin["headers"], json={"rows": [{"key": "feed"}]})
        resp = api.post("/admin/tables/app_widgets/delete", headers=admin["headers"],
                        json={"key": {"key": "feed"}})
        assert resp.json()["success"] is True
        actions = [e["action"] for e in api.get("/audit", headers=admin["headers"]).json()]
        assert actions[:2] == ["table_delete", "table_upsert"]

    def test_tables_index(self, api, admin):
        tables = api.get("/admin/tables", headers=admin["headers"]).json()
        assert {"name": "xp_transactions", "label": "XP Transactions"} in tables


class TestAdminUsers:
    def test_manual_reward_and_audit(self, api, admin, employee):
        uid = employee["user"]["id"]
        resp = api.post(f"/admin/users/{uid}/reward", headers=admin["headers"],
                        json={"amount": 1500, "kind": "xp", "reason": "Hackathon winner"})
        assert resp.status_code == 200
        assert resp.json()["leveled_up"] is True

        profile = api.get(f"/admin/users/{uid}", headers=admin["headers"]).json()
        assert profile["current_xp"] == 1500
        assert profile["xp_transactions"][0]["source_type"] == "admin_adjustment"

        entries = api.get("/audit", params={"target_id": uid}, headers=admin["headers"]).json()
        assert entries[0]["action"] == "manual_reward_update"
        assert api.get("/audit/verify", headers=admin["headers"]).json() == {"valid": True}

    def test_reward_unknown_user(self, api, admin):
        resp = api.post("/admin/users/nobody/reward", headers=admin["headers"],
                        json={"amount": 5, "kind": "coins"})
        assert resp.status_code == 404

    def test_users_list(self, api, admin, employee):
        names = [u["display_name"] for u in api.get("/admin/users", headers=admin["headers"]).json()]
        assert names == ["Dana", "HR"]

    def test_application_review(self, api, admin, employee):
        job = _create_job(api, admin)
        app_id = api.post(f"/jobs/{job['id']}/apply", headers=employee["headers"]).json()["application_id"]
        resp = api.patch(f"/admin/applications/{app_id}", json={"status": "accepted"}, headers=admin["headers"])
        assert resp.json()["status"] == "accepted"
        bad = api.patch(f"/admin/applications/{app_id}", json={"status": "nope"}, headers=admin["headers"])
        assert bad.status_code == 400
