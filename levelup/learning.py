"""
Courses catalogue and completions.
"""
from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Mapping

from .config import DEFAULT_COURSE_XP
from .db import connect, insert_feed_event, new_id, row_to_dict, utcnow
from .errors import ConflictError, NotFoundError, ValidationError
from .models import FeedEventType, XpSourceType
from .rewards import award

logger = logging.getLogger(__name__)

COURSE_FIELDS = (
    "title", "provider", "url", "image_url", "duration_hours",
    "skill_id", "min_level_grant", "xp_reward",
)


def list_courses(db_path: Path) -> List[Dict[str, Any]]:
    with connect(db_path) as conn:
        rows = conn.execute("SELECT * FROM courses ORDER BY created_at DESC").fetchall()
    return [row_to_dict(r) for r in rows]


def get_course(db_path: Path, course_id: str) -> Dict[str, Any]:
    with connect(db_path) as conn:
        row = conn.execute("SELECT * FROM courses WHERE id=?", (course_id,)).fetchone()
    if not row:
        raise NotFoundError(f"Course not found: {course_id}")
    return row_to_dict(row)


def create_course(db_path: Path, data: Mapping[str, Any]) -> Dict[str, Any]:
    if not data.get("title") or not data.get("provider"):
        raise ValidationError("Course title and provider are required")
    course = {k: data.get(k) for k in COURSE_FIELDS}
    if course["xp_reward"] is None:
        course["xp_reward"] = DEFAULT_COURSE_XP
    course["id"] = new_id()
    course["created_at"] = utcnow()
    cols = list(course)
    with connect(db_path) as conn:
        conn.execute(
            f"INSERT INTO courses ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
            [course[c] for c in cols],
        )
    return course


def update_course(db_path: Path, course_id: str, updates: Mapping[str, Any]) -> Dict[str, Any]:
    """Apply only the fields that were provided."""
    fields = {k: v for k, v in updates.items() if k in COURSE_FIELDS and v is not None}
    if not fields:
        return get_course(db_path, course_id)
    assignments = ", ".join(f"{k}=?" for k in fields)
    with connect(db_path) as conn:
        cur = conn.execute(
            f"UPDATE courses SET {assignments} WHERE id=?", [*fields.values(), course_id]
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"Course not found: {course_id}")
    return get_course(db_path, course_id)


def delete_course(db_path: Path, course_id: str) -> None:
    with connect(db_path) as conn:
        cur = conn.execute("DELETE FROM courses WHERE id=?", (course_id,))
        if cur.rowcount == 0:
            raise NotFoundError(f"Course not found: {course_id}")


def complete_course(db_path: Path, user_id: str, course_id: str) -> Dict[str, Any]:
    """Record a completion, award the course XP and raise the linked skill.

    A course can be completed once per user. When it grants a skill, the
    user's level in that skill becomes at least `min_level_grant`; an
    existing higher level is kept.
    """
    with connect(db_path) as conn:
        course = conn.execute("SELECT * FROM courses WHERE id=?", (course_id,)).fetchone()
        if not course:
            raise NotFoundError(f"Course not found: {course_id}")
        if not conn.execute("SELECT 1 FROM users WHERE id=?", (user_id,)).fetchone():
            raise NotFoundError(f"User not found: {user_id}")

        xp = int(course["xp_reward"] if course["xp_reward"] is not None else DEFAULT_COURSE_XP)
        now = utcnow()
        try:
            conn.execute(
                """
                INSERT INTO course_completions (id, user_id, course_id, xp_awarded, completed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (new_id(), user_id, course_id, xp, now),
            )
        except sqlite3.IntegrityError:
            raise ConflictError("Course already completed")

        result = award(
            conn, user_id, xp=xp,
            source_type=XpSourceType.LEARNING, source_id=course_id,
            source_label=f"Course: {course['title']}",
        )

        skill_level = None
        if course["skill_id"] and course["min_level_grant"]:
            grant = max(1, min(5, int(course["min_level_grant"])))
            conn.execute(
                """
                INSERT INTO user_skills (user_id, skill_id, skill_level, source, created_at, updated_at)
                VALUES (?, ?, ?, 'course', ?, ?)
                ON CONFLICT(user_id, skill_id) DO UPDATE SET
                    skill_level=MAX(skill_level, excluded.skill_level),
                    updated_at=excluded.updated_at
                """,
                (user_id, course["skill_id"], grant, now, now),
            )
            skill_level = conn.execute(
                "SELECT skill_level FROM user_skills WHERE user_id=? AND skill_id=?",
                (user_id, course["skill_id"]),
            ).fetchone()["skill_level"]

        insert_feed_event(
            conn, FeedEventType.COURSE_COMPLETED,
            actor_user_id=user_id, entity_table="courses", entity_id=course_id,
            payload={"course_title": course["title"], "xp": xp},
        )

    logger.info("user %s completed course %s", user_id, course_id)
    return {
        "success": True,
        "xp_awarded": xp,
        "skill_id": course["skill_id"],
        "skill_level": skill_level,
        "leveled_up": result.leveled_up,
        "new_level": result.new_level,
    }
