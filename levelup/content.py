"""
Social feed, home-screen widgets, reward quests and the home page bundle.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .db import connect, new_id, row_to_dict, utcnow
from .errors import NotFoundError, ValidationError
from .models import GigStatus, JobStatus

POST_TYPES = ("tip", "promotion", "question", "announcement")
QUEST_UPDATABLE = ("xp_reward", "coin_reward", "is_active")

HOME_JOBS = 3
HOME_GIGS = 3
HOME_POSTS = 5


# --- Feed ---

_POSTS_SELECT = """
    SELECT p.id, p.user_id, p.content, p.post_type, p.image_url, p.likes_count,
           p.created_at,
           (SELECT COUNT(*) FROM post_comments c WHERE c.post_id = p.id) AS comments_count,
           u.display_name AS author_name, u.avatar_url AS author_avatar
    FROM posts p LEFT JOIN users u ON u.id = p.user_id
"""


def list_posts(db_path: Path, post_type: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    where, params = "", []
    if post_type:
        where, params = " WHERE p.post_type=?", [post_type]
    with connect(db_path) as conn:
        rows = conn.execute(
            f"{_POSTS_SELECT}{where} ORDER BY p.created_at DESC LIMIT ?", [*params, limit]
        ).fetchall()
    return [dict(r) for r in rows]


def create_post(db_path: Path, user_id: str, content: str, post_type: str = "tip",
                image_url: Optional[str] = None) -> Dict[str, Any]:
    content = (content or "").strip()
    if not content:
        raise ValidationError("Post content is required")
    if post_type not in POST_TYPES:
        raise ValidationError(f"Invalid post type: {post_type}")
    post = {
        "id": new_id(), "user_id": user_id, "content": content, "post_type": post_type,
        "image_url": image_url, "likes_count": 0, "comments_count": 0, "created_at": utcnow(),
    }
    with connect(db_path) as conn:
        conn.execute(
            f"INSERT INTO posts ({', '.join(post)}) VALUES ({', '.join('?' for _ in post)})",
            list(post.values()),
        )
    return post


def add_comment(db_path: Path, post_id: str, user_id: str, content: str) -> Dict[str, Any]:
    content = (content or "").strip()
    if not content:
        raise ValidationError("Comment content is required")
    comment = {"id": new_id(), "post_id": post_id, "user_id": user_id,
               "content": content, "created_at": utcnow()}
    with connect(db_path) as conn:
        if not conn.execute("SELECT 1 FROM posts WHERE id=?", (post_id,)).fetchone():
            raise NotFoundError(f"Post not found: {post_id}")
        conn.execute(
            "INSERT INTO post_comments (id, post_id, user_id, content, created_at) VALUES (?, ?, ?, ?, ?)",
            tuple(comment.values()),
        )
        conn.execute(
            "UPDATE posts SET comments_count = comments_count + 1 WHERE id=?", (post_id,)
        )
    return comment


def list_comments(db_path: Path, post_id: str) -> List[Dict[str, Any]]:
    with connect(db_path) as conn:
        rows = conn.execute(
            """
            SELECT c.*, u.display_name AS author_name
            FROM post_comments c LEFT JOIN users u ON u.id = c.user_id
            WHERE c.post_id=? ORDER BY c.created_at ASC
            """,
            (post_id,),
        ).fetchall()
    return [dict(r) for r in rows]


def like_post(db_path: Path, post_id: str) -> int:
    with connect(db_path) as conn:
        cur = conn.execute("UPDATE posts SET likes_count = likes_count + 1 WHERE id=?", (post_id,))
        if cur.rowcount == 0:
            raise NotFoundError(f"Post not found: {post_id}")
        return conn.execute("SELECT likes_count FROM posts WHERE id=?", (post_id,)).fetchone()[0]


def delete_post(db_path: Path, post_id: str) -> None:
    with connect(db_path) as conn:
        cur = conn.execute("DELETE FROM posts WHERE id=?", (post_id,))
        if cur.rowcount == 0:
            raise NotFoundError(f"Post not found: {post_id}")


# --- Widgets ---

def get_widgets(db_path: Path, visible_only: bool = False) -> List[Dict[str, Any]]:
    where = " WHERE is_visible=1" if visible_only else ""
    with connect(db_path) as conn:
        rows = conn.execute(
            f"SELECT key, label, is_visible, order_index FROM app_widgets{where} ORDER BY order_index ASC"
        ).fetchall()
    return [
        {"key": r["key"], "label": r["label"] or r["key"],
         "is_visible": bool(r["is_visible"]), "order_index": r["order_index"] or 0}
        for r in rows
    ]


def update_layout(db_path: Path, widgets: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Bulk upsert widgets by key."""
    with connect(db_path) as conn:
        for w in widgets:
            if not w.get("key"):
                raise ValidationError("Widget key is required")
            conn.execute(
                """
                INSERT INTO app_widgets (key, label, is_visible, order_index) VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    label=COALESCE(excluded.label, app_widgets.label),
                    is_visible=excluded.is_visible,
                    order_index=excluded.order_index
                """,
                (w["key"], w.get("label"), int(bool(w.get("is_visible", True))), int(w.get("order_index") or 0)),
            )
    return get_widgets(db_path)


# --- Quests ---

def list_quests(db_path: Path) -> List[Dict[str, Any]]:
    with connect(db_path) as conn:
        rows = conn.execute(
            "SELECT id, title, description, quest_type, xp_reward, coin_reward, action_link, is_active "
            "FROM quests ORDER BY title"
        ).fetchall()
    return [{**dict(r), "is_active": bool(r["is_active"])} for r in rows]


def update_quest(db_path: Path, quest_id: str, updates: Mapping[str, Any]) -> Dict[str, Any]:
    fields = {k: v for k, v in updates.items() if k in QUEST_UPDATABLE and v is not None}
    if "is_active" in fields:
        fields["is_active"] = int(bool(fields["is_active"]))
    with connect(db_path) as conn:
        if fields:
            cur = conn.execute(
                f"UPDATE quests SET {', '.join(f'{k}=?' for k in fields)} WHERE id=?",
                [*fields.values(), quest_id],
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Quest not found: {quest_id}")
        row = conn.execute("SELECT * FROM quests WHERE id=?", (quest_id,)).fetchone()
    if not row:
        raise NotFoundError(f"Quest not found: {quest_id}")
    return {**dict(row), "is_active": bool(row["is_active"])}


# --- Home ---

def get_home_data(db_path: Path) -> Dict[str, Any]:
    with connect(db_path) as conn:
        jobs = conn.execute(
            "SELECT id, title, location, xp_reward, job_type FROM jobs WHERE status=? "
            "ORDER BY created_at DESC LIMIT ?",
            (JobStatus.PUBLISHED.value, HOME_JOBS),
        ).fetchall()
        gigs = conn.execute(
            "SELECT id, title, department, estimated_hours, xp_reward FROM gigs WHERE status=? "
            "ORDER BY created_at DESC LIMIT ?",
            (GigStatus.OPEN.value, HOME_GIGS),
        ).fetchall()
    return {
        "layout": get_widgets(db_path, visible_only=True),
        "jobs": [row_to_dict(r) for r in jobs],
        "gigs": [row_to_dict(r) for r in gigs],
        "posts": list_posts(db_path, limit=HOME_POSTS),
    }
