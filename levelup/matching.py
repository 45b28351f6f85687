"""
Skill-fit scoring between a user and open opportunities, plus mentor lookup.

Each required skill scores 100 points when the user meets the level, 50
when they hold the skill below the required level and 0 when they lack it.
The match score is the percentage of the maximum.
"""
from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

from .db import connect
from .models import GigStatus, JobStatus, MatchedOpportunity, MatchedSkill

SCORE_FULL_MATCH = 100
SCORE_PARTIAL_MATCH = 50
OPPORTUNITY_FETCH_LIMIT = 50
MENTOR_MIN_LEVEL = 4


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_opportunity(
    base: Mapping[str, Any],
    requirements: Sequence[Mapping[str, Any]],
    user_skills: Mapping[str, Mapping[str, Any]],
) -> MatchedOpportunity:
    """Score one opportunity.

    `requirements` rows carry skill_id, skill_name, required_level and
    is_mandatory; `user_skills` maps skill_id to {"name", "level"}.
    Every requirement appears in matched_skills with its status; missing
    and partial ones are also listed in missing_skills and gap_skills.
    """
    matched: List[MatchedSkill] = []
    missing: List[MatchedSkill] = []
    gaps: List[MatchedSkill] = []
    total = 0
    max_points = len(requirements) * SCORE_FULL_MATCH

    for req in requirements:
        required_level = int(req.get("required_level") or 1)
        held = user_skills.get(req["skill_id"])
        entry = MatchedSkill(
            skill_id=req["skill_id"],
            skill_name=req.get("skill_name") or "Unknown Skill",
            required_level=required_level,
            user_level=int(held["level"]) if held else None,
            is_mandatory=bool(req.get("is_mandatory")),
            status="missing",
        )
        if not held:
            missing.append(entry)
        elif entry.user_level >= required_level:
            entry.status = "match"
            total += SCORE_FULL_MATCH
        else:
            entry.status = "partial"
            total += SCORE_PARTIAL_MATCH
            gaps.append(entry)
        matched.append(entry)

    score = _round_half_up(total / max_points * 100) if max_points else 100
    return MatchedOpportunity(
        id=base["id"],
        type=base["type"],
        title=base["title"],
        description=base.get("description"),
        location=base.get("location"),
        department=base.get("department"),
        created_at=base.get("created_at") or "",
        match_score=score,
        total_points=total,
        max_points=max_points,
        job_type=base.get("job_type"),
        xp_reward=base.get("xp_reward"),
        coin_reward=base.get("coin_reward"),
        commitment_hours=base.get("commitment_hours"),
        start_date=base.get("start_date"),
        end_date=base.get("end_date"),
        matched_skills=matched,
        missing_skills=missing,
        gap_skills=gaps,
    )


def _requirements(conn, link_table: str, owner_col: str, owner_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        f"""
        SELECT l.skill_id, l.required_level, l.is_mandatory, l.weight, s.name AS skill_name
        FROM {link_table} l LEFT JOIN skills s ON s.id = l.skill_id
        WHERE l.{owner_col}=?
        """,
        (owner_id,),
    ).fetchall()
    return [dict(r) for r in rows]


def get_matched_opportunities(db_path: Path, user_id: str) -> Dict[str, Any]:
    """Published jobs and open gigs scored for a user, best match first."""
    with connect(db_path) as conn:
        user_skills = {
            r["skill_id"]: {"name": r["name"], "level": r["skill_level"]}
            for r in conn.execute(
                """
                SELECT us.skill_id, us.skill_level, s.name
                FROM user_skills us JOIN skills s ON s.id = us.skill_id
                WHERE us.user_id=?
                """,
                (user_id,),
            ).fetchall()
        }

        job_rows = conn.execute(
            """
            SELECT id, title, description, location, department, job_type, xp_reward,
                   coin_reward, created_at
            FROM jobs WHERE status=? ORDER BY created_at DESC LIMIT ?
            """,
            (JobStatus.PUBLISHED.value, OPPORTUNITY_FETCH_LIMIT),
        ).fetchall()
        jobs = [
            score_opportunity(
                {**dict(r), "type": "job"},
                _requirements(conn, "job_skills", "job_id", r["id"]),
                user_skills,
            )
            for r in job_rows
        ]

        gig_rows = conn.execute(
            """
            SELECT id, title, description, location, department, xp_reward, coin_reward,
                   commitment_hours_per_week AS commitment_hours, start_date, end_date, created_at
            FROM gigs WHERE status=? ORDER BY created_at DESC LIMIT ?
            """,
            (GigStatus.OPEN.value, OPPORTUNITY_FETCH_LIMIT),
        ).fetchall()
        gigs = [
            score_opportunity(
                {**dict(r), "type": "gig"},
                _requirements(conn, "gig_skills", "gig_id", r["id"]),
                user_skills,
            )
            for r in gig_rows
        ]

    jobs.sort(key=lambda o: o.match_score, reverse=True)
    gigs.sort(key=lambda o: o.match_score, reverse=True)
    return {"jobs": jobs, "gigs": gigs}


def find_mentors(db_path: Path, skill_id: str, current_user_id: str, limit: int = 3) -> List[Dict[str, Any]]:
    """Colleagues at expert level (4+) in a skill, strongest first."""
    with connect(db_path) as conn:
        rows = conn.execute(
            """
            SELECT u.id, u.display_name, u.avatar_url, u.role_title, u.email, us.skill_level
            FROM user_skills us JOIN users u ON u.id = us.user_id
            WHERE us.skill_id=? AND us.skill_level>=? AND us.user_id!=?
            ORDER BY us.skill_level DESC
            LIMIT ?
            """,
            (skill_id, MENTOR_MIN_LEVEL, current_user_id, limit),
        ).fetchall()
    return [
        {
            "id": r["id"],
            "display_name": r["display_name"] or "Anonymous",
            "avatar_url": r["avatar_url"],
            "role_title": r["role_title"],
            "email": r["email"],
            "skill_level": r["skill_level"],
        }
        for r in rows
    ]
