"""
First-run profile completion.

Takes an already structured profile (name, headline, skills with levels),
writes it to the taxonomy and the user's skill set, and pays the one-time
onboarding bonus.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, Mapping

from .config import ONBOARDING_COIN_REWARD, ONBOARDING_XP_REWARD
from .db import connect, insert_feed_event, new_id, utcnow
from .errors import NotFoundError
from .models import FeedEventType, XpSourceType
from .rewards import award

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    return _SLUG_RE.sub("-", (text or "").strip().lower()).strip("-")


def _clamp_level(level: Any) -> int:
    try:
        value = int(level)
    except (TypeError, ValueError):
        value = 1
    return max(1, min(5, value))


def upsert_skill(conn, name: str) -> str:
    """Find-or-create a skill by slug and return its id."""
    slug = slugify(name)
    now = utcnow()
    conn.execute(
        """
        INSERT INTO skills (id, slug, name, category, skill_type, status, is_verified, created_at, updated_at)
        VALUES (?, ?, ?, 'General', 'technical', 'active', 0, ?, ?)
        ON CONFLICT(slug) DO NOTHING
        """,
        (new_id(), slug, name.strip(), now, now),
    )
    return conn.execute("SELECT id FROM skills WHERE slug=?", (slug,)).fetchone()["id"]


def complete_onboarding(db_path: Path, user_id: str, profile: Mapping[str, Any]) -> Dict[str, Any]:
    skills = [s for s in profile.get("skills") or [] if slugify(s.get("name", ""))]

    with connect(db_path) as conn:
        user = conn.execute("SELECT id, onboarded_at FROM users WHERE id=?", (user_id,)).fetchone()
        if not user:
            raise NotFoundError(f"User not found: {user_id}")
        now = utcnow()

        for skill in skills:
            skill_id = upsert_skill(conn, skill["name"])
            conn.execute(
                """
                INSERT INTO user_skills (user_id, skill_id, skill_level, source, created_at, updated_at)
                VALUES (?, ?, ?, 'onboarding', ?, ?)
                ON CONFLICT(user_id, skill_id) DO UPDATE SET
                    skill_level=excluded.skill_level, updated_at=excluded.updated_at
                """,
                (user_id, skill_id, _clamp_level(skill.get("level")), now, now),
            )

        updates: Dict[str, Any] = {}
        if profile.get("display_name"):
            updates["display_name"] = profile["display_name"]
        if profile.get("headline"):
            updates["headline"] = str(profile["headline"])[:200]
        if profile.get("bio"):
            updates["bio"] = profile["bio"]
        first_time = user["onboarded_at"] is None
        if first_time:
            updates["onboarded_at"] = now
        if updates:
            updates["updated_at"] = now
            conn.execute(
                f"UPDATE users SET {', '.join(f'{k}=?' for k in updates)} WHERE id=?",
                [*updates.values(), user_id],
            )

        xp = coins = 0
        if first_time:
            award(
                conn, user_id,
                xp=ONBOARDING_XP_REWARD, coins=ONBOARDING_COIN_REWARD,
                source_type=XpSourceType.ONBOARDING,
                source_label="Onboarding - profile completed",
            )
            xp, coins = ONBOARDING_XP_REWARD, ONBOARDING_COIN_REWARD

        insert_feed_event(
            conn, FeedEventType.PROFILE_UPDATED,
            actor_user_id=user_id, entity_table="users", entity_id=user_id,
            payload={"action": "onboarding_complete", "skills_count": len(skills), "xp_earned": xp},
            visibility="public",
        )

    logger.info("onboarding for %s: %d skills, +%d xp", user_id, len(skills), xp)
    return {"skills_added": len(skills), "xp_awarded": xp, "coins_awarded": coins}
