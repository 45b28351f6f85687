"""Tests for the social feed, widget layout, quests and home bundle."""
import pytest

from levelup import content
from levelup.admin_tables import upsert_rows
from levelup.errors import NotFoundError, ValidationError


class TestFeed:
    def test_create_and_list(self, db_path, make_user):
        uid = make_user(display_name="Dana")
        post = content.create_post(db_path, uid, "  Try the SQL course  ", "tip")
        assert post["content"] == "Try the SQL course"

        posts = content.list_posts(db_path)
        assert posts[0]["author_name"] == "Dana"
        assert posts[0]["comments_count"] == 0

    def test_filter_by_type(self, db_path, make_user):
        uid = make_user()
        content.create_post(db_path, uid, "Tip", "tip")
        content.create_post(db_path, uid, "Anyone know Rust?", "question")
        questions = content.list_posts(db_path, post_type="question")
        assert [p["content"] for p in questions] == ["Anyone know Rust?"]

    def test_invalid_type_and_blank(self, db_path, make_user):
        uid = make_user()
        with pytest.raises(ValidationError):
            content.create_post(db_path, uid, "Hello", "poll")
        with pytest.raises(ValidationError):
            content.create_post(db_path, uid, "   ")

    def test_comments_and_likes(self, db_path, make_user):
        uid = make_user(display_name="Omer")
        post = content.create_post(db_path, uid, "Promoted to lead!", "promotion")
        content.add_comment(db_path, post["id"], uid, "Congrats")
        assert content.like_post(db_path, post["id"]) == 1
        assert content.like_post(db_path, post["id"]) == 2

        listed = content.list_posts(db_path)[0]
        assert listed["comments_count"] == 1
        assert listed["likes_count"] == 2
        comments = content.list_comments(db_path, post["id"])
        assert comments[0]["author_name"] == "Omer"

    def test_missing_post(self, db_path, make_user):
        with pytest.raises(NotFoundError):
            content.add_comment(db_path, "missing", make_user(), "Hi")
        with pytest.raises(NotFoundError):
            content.like_post(db_path, "missing")
        with pytest.raises(NotFoundError):
            content.delete_post(db_path, "missing")

    def test_delete_removes_comments(self, db_path, make_user):
        uid = make_user()
        post = content.create_post(db_path, uid, "Bye")
        content.add_comment(db_path, post["id"], uid, "ok")
        content.delete_post(db_path, post["id"])
        assert content.list_posts(db_path) == []
        assert content.list_comments(db_path, post["id"]) == []


class TestLayout:
    def test_update_layout_upserts_by_key(self, db_path):
        content.update_layout(db_path, [
            {"key": "jobs", "label": "Hot jobs", "is_visible": True, "order_index": 1},
            {"key": "feed", "label": "Feed", "is_visible": True, "order_index": 0},
        ])
        widgets = content.update_layout(db_path, [{"key": "jobs", "is_visible": False, "order_index": 2}])
        assert [w["key"] for w in widgets] == ["feed", "jobs"]
        assert widgets[1]["label"] == "Hot jobs"
        assert widgets[1]["is_visible"] is False
        assert [w["key"] for w in content.get_widgets(db_path, visible_only=True)] == ["feed"]

    def test_widget_key_required(self, db_path):
        with pytest.raises(ValidationError):
            content.update_layout(db_path, [{"label": "nameless"}])


class TestQuests:
    def test_update_limited_fields(self, db_path):
        upsert_rows(db_path, "quests", [{"id": "q1", "title": "Refer a friend", "xp_reward": 0,
                                         "coin_reward": 2000, "is_active": True}])
        quest = content.update_quest(db_path, "q1", {"coin_reward": 2500, "is_active": False,
                                                     "title": "ignored"})
        assert quest["coin_reward"] == 2500
        assert quest["is_active"] is False
        assert quest["title"] == "Refer a friend"

    def test_unknown_quest(self, db_path):
        with pytest.raises(NotFoundError):
            content.update_quest(db_path, "missing", {"xp_reward": 1})


def test_home_data(db_path, make_user, make_job, make_gig):
    uid = make_user()
    for i in range(4):
        make_job(title=f"Job {i}")
    make_job(title="Hidden", status="draft")
    make_gig(title="Gig")
    for i in range(6):
        content.create_post(db_path, uid, f"Post {i}")
    content.update_layout(db_path, [{"key": "hero", "is_visible": True},
                                    {"key": "quests", "is_visible": False}])

    home = content.get_home_data(db_path)
    assert len(home["jobs"]) == 3
    assert all(j["title"] != "Hidden" for j in home["jobs"])
    assert [g["title"] for g in home["gigs"]] == ["Gig"]
    assert len(home["posts"]) == 5
    assert [w["key"] for w in home["layout"]] == ["hero"]
