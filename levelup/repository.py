"""
LevelUp repository layer.

Thin SQLite helpers for opportunities (jobs and gigs) and the talent
directory, keeping api_server routing separate from persistence.
"""
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .config import DEFAULT_RECRUITER_EMAIL
from .db import connect, new_id, row_to_dict, utcnow
from .errors import NotFoundError, ValidationError
from .models import GigStatus, JobStatus, JobType
from .onboarding import slugify

logger = logging.getLogger(__name__)

DEFAULT_JOB_XP = 50
DEFAULT_JOB_COINS = 20


def _base36(n: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = digits[r] + out
    return out or "0"


def generate_job_code(title: str) -> str:
    """`JOB-{slug}-{suffix}`: slug capped at 30 chars, suffix from the clock."""
    suffix = _base36(int(time.time() * 1000))[-5:]
    return f"JOB-{slugify(title)[:30].strip('-')}-{suffix}"


# --- Jobs ---

def _with_job_defaults(job: Dict[str, Any]) -> Dict[str, Any]:
    job["tags"] = job.get("tags") or []
    job["internal_xp"] = job.get("internal_xp") or job.get("xp_reward") or 0
    job["referral_coins"] = job.get("referral_coins") or job.get("coin_reward") or 0
    job["is_hot"] = bool(job.get("is_hot"))
    job["recruiter_email"] = job.get("recruiter_email") or DEFAULT_RECRUITER_EMAIL
    return job


def get_jobs(db_path: Path, status: Optional[str] = None) -> List[Dict[str, Any]]:
    where, params = "", []
    if status:
        where, params = " WHERE status=?", [status]
    with connect(db_path) as conn:
        rows = conn.execute(f"SELECT * FROM jobs{where} ORDER BY created_at DESC", params).fetchall()
    return [_with_job_defaults(row_to_dict(r)) for r in rows]


def get_job(db_path: Path, job_id: str) -> Dict[str, Any]:
    with connect(db_path) as conn:
        row = conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
        if not row:
            raise NotFoundError(f"Job not found: {job_id}")
        skills = conn.execute(
            """
            SELECT js.skill_id, js.required_level, js.is_mandatory, s.name AS skill_name
            FROM job_skills js LEFT JOIN skills s ON s.id = js.skill_id
            WHERE js.job_id=?
            """,
            (job_id,),
        ).fetchall()
    job = _with_job_defaults(row_to_dict(row))
    job["skills"] = [dict(s) for s in skills]
    return job


def create_job(
    db_path: Path,
    *,
    title: str,
    code: Optional[str] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
    department: Optional[str] = None,
    internal_xp: Optional[int] = None,
    referral_coins: Optional[int] = None,
    recruiter_email: Optional[str] = None,
    is_hot: bool = False,
    tags: Optional[List[str]] = None,
    status: str = JobStatus.PUBLISHED.value,
    created_by: Optional[str] = None,
) -> Dict[str, Any]:
    with connect(db_path) as conn:
        job_id = _insert_job(
            conn, title=title, code=code, description=description, location=location,
            department=department, internal_xp=internal_xp, referral_coins=referral_coins,
            recruiter_email=recruiter_email, is_hot=is_hot, tags=tags, status=status,
            created_by=created_by,
        )
    return get_job(db_path, job_id)


def _insert_job(
    conn,
    *,
    title: str,
    code: Optional[str] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
    department: Optional[str] = None,
    internal_xp: Optional[int] = None,
    referral_coins: Optional[int] = None,
    recruiter_email: Optional[str] = None,
    is_hot: bool = False,
    tags: Optional[List[str]] = None,
    status: str = JobStatus.PUBLISHED.value,
    created_by: Optional[str] = None,
) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Job title is required")
    now = utcnow()
    job = {
        "id": new_id(),
        "code": code or generate_job_code(title),
        "title": title,
        "description": description,
        "location": location,
        "department": department,
        "status": status,
        "job_type": JobType.FULL_TIME.value,
        "xp_reward": DEFAULT_JOB_XP,
        "coin_reward": DEFAULT_JOB_COINS,
        "referral_bonus_coins": referral_coins or DEFAULT_JOB_COINS,
        "internal_xp": internal_xp or DEFAULT_JOB_XP,
        "referral_coins": referral_coins or DEFAULT_JOB_COINS,
        "recruiter_email": recruiter_email or DEFAULT_RECRUITER_EMAIL,
        "is_hot": int(bool(is_hot)),
        "tags": json.dumps([t.strip() for t in tags or [] if t and t.strip()]),
        "created_by": created_by,
        "metadata": "{}",
        "created_at": now,
        "updated_at": now,
    }
    conn.execute(
        f"INSERT INTO jobs ({', '.join(job)}) VALUES ({', '.join('?' for _ in job)})",
        list(job.values()),
    )
    logger.info("job %s created (%s)", job["id"], job["code"])
    return job["id"]


def _find_or_create_skill(conn, name: str, category: Optional[str]) -> tuple:
    row = conn.execute(
        "SELECT id FROM skills WHERE name = ? COLLATE NOCASE LIMIT 1", (name,)
    ).fetchone()
    if row:
        return row["id"], False
    slug = slugify(name)
    row = conn.execute("SELECT id FROM skills WHERE slug=?", (slug,)).fetchone()
    if row:
        return row["id"], False
    skill_id = new_id()
    now = utcnow()
    conn.execute(
        """
        INSERT INTO skills (id, slug, name, category, skill_type, status, source, is_verified,
                            created_at, updated_at)
        VALUES (?, ?, ?, ?, 'technical', 'active', 'job_import', 0, ?, ?)
        """,
        (skill_id, slug, name, category or "General", now, now),
    )
    return skill_id, True


def create_job_with_skills(db_path: Path, parsed: Mapping[str, Any]) -> Dict[str, Any]:
    """Create a published job from structured data and link its skills.

    `parsed` holds title, description_summary, department and
    skills: [{name, level, is_mandatory}]. Skills are matched by name
    (case-insensitive) or slug and created when unknown.

    The job and its skill links are written in one transaction, so a bad
    level (not a number) leaves nothing behind. Nameless skills are skipped
    and reported in `errors`.
    """
    title = (parsed.get("title") or "").strip()
    if not title:
        return {"success": False, "job_id": None, "skills_created": 0,
                "skills_linked": 0, "errors": ["Job title is required."]}

    department = parsed.get("department")
    created = linked = 0
    errors: List[str] = []
    with connect(db_path) as conn:
        job_id = _insert_job(
            conn,
            title=title,
            description=(parsed.get("description_summary") or "").strip() or None,
            department=department,
            tags=[department or "General"],
        )
        for position, skill in enumerate(parsed.get("skills") or [], start=1):
            name = (skill.get("name") or "").strip()
            if not slugify(name):
                errors.append(f"Skill {position} has no name, skipped")
                continue
            try:
                level = max(1, min(5, int(skill.get("level") or 1)))
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid level for skill {name}: {skill.get('level')!r}")
            skill_id, was_created = _find_or_create_skill(conn, name, department)
            created += int(was_created)
            conn.execute(
                """
                INSERT INTO job_skills (job_id, skill_id, required_level, weight, is_mandatory, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(job_id, skill_id) DO UPDATE SET
                    required_level=excluded.required_level, weight=excluded.weight,
                    is_mandatory=excluded.is_mandatory
                """,
                (job_id, skill_id, level, float(level), int(bool(skill.get("is_mandatory"))), utcnow()),
            )
            linked += 1

    return {"success": True, "job_id": job_id, "skills_created": created,
            "skills_linked": linked, "errors": errors}


def update_job_status(db_path: Path, job_id: str, status: str) -> None:
    try:
        status = JobStatus(status).value
    except ValueError:
        raise ValidationError(f"Invalid job status: {status}")
    with connect(db_path) as conn:
        cur = conn.execute(
            "UPDATE jobs SET status=?, updated_at=? WHERE id=?", (status, utcnow(), job_id)
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"Job not found: {job_id}")


# --- Gigs ---

def get_gigs(db_path: Path, status: Optional[str] = GigStatus.OPEN.value) -> List[Dict[str, Any]]:
    where, params = "", []
    if status:
        where, params = " WHERE status=?", [status]
    with connect(db_path) as conn:
        rows = conn.execute(f"SELECT * FROM gigs{where} ORDER BY created_at DESC", params).fetchall()
    return [row_to_dict(r) for r in rows]


# --- Opportunities ---

def get_all_opportunities(db_path: Path) -> List[Dict[str, Any]]:
    """Jobs and gigs merged into one admin list, newest first."""
    with connect(db_path) as conn:
        jobs = conn.execute(
            """
            SELECT j.id, j.title, j.location, j.department, j.status, j.created_at, j.xp_reward,
                   (SELECT COUNT(*) FROM job_applications a WHERE a.job_id = j.id) AS application_count
            FROM jobs j
            """
        ).fetchall()
        gigs = conn.execute(
            """
            SELECT g.id, g.title, g.department, g.status, g.created_at, g.xp_reward,
                   (SELECT COUNT(*) FROM gig_participants p WHERE p.gig_id = g.id) AS application_count
            FROM gigs g
            """
        ).fetchall()

    items = [
        {"id": j["id"], "title": j["title"], "type": "job",
         "department": j["department"] or j["location"] or "General",
         "status": j["status"], "is_active": j["status"] == JobStatus.PUBLISHED.value,
         "created_at": j["created_at"], "application_count": j["application_count"],
         "xp_reward": j["xp_reward"] or 0}
        for j in jobs
    ] + [
        {"id": g["id"], "title": g["title"], "type": "gig",
         "department": g["department"] or "General",
         "status": g["status"], "is_active": g["status"] == GigStatus.OPEN.value,
         "created_at": g["created_at"] or "", "application_count": g["application_count"],
         "xp_reward": g["xp_reward"] or 0}
        for g in gigs
    ]
    items.sort(key=lambda o: o["created_at"], reverse=True)
    return items


def delete_opportunity(db_path: Path, opportunity_id: str, kind: str) -> None:
    tables = {"job": "jobs", "gig": "gigs"}
    if kind not in tables:
        raise ValidationError(f"Unknown opportunity type: {kind}")
    with connect(db_path) as conn:
        cur = conn.execute(f"DELETE FROM {tables[kind]} WHERE id=?", (opportunity_id,))
        if cur.rowcount == 0:
            raise NotFoundError(f"{kind.title()} not found: {opportunity_id}")
    logger.info("deleted %s %s", kind, opportunity_id)


# --- Talent ---

USER_LIST_COLUMNS = (
    "id, display_name, email, role_title, department, current_xp, coins_balance, "
    "current_level, is_active, avatar_url"
)

USER_PROFILE_COLUMNS = (
    "id, display_name, email, role_title, location, department, headline, avatar_url, "
    "hire_date, is_active, current_level, current_xp, coins_balance, current_streak, "
    "is_open_to_opportunities, onboarded_at"
)


def get_user(db_path: Path, user_id: str) -> Optional[Dict[str, Any]]:
    with connect(db_path) as conn:
        row = conn.execute(f"SELECT {USER_PROFILE_COLUMNS} FROM users WHERE id=?", (user_id,)).fetchone()
    return dict(row) if row else None


def get_users_list(db_path: Path) -> List[Dict[str, Any]]:
    with connect(db_path) as conn:
        rows = conn.execute(
            f"SELECT {USER_LIST_COLUMNS} FROM users ORDER BY display_name"
        ).fetchall()
    return [{**dict(r), "is_active": bool(r["is_active"])} for r in rows]


def get_user_full_profile(db_path: Path, user_id: str) -> Dict[str, Any]:
    """Admin 360 view: skills split into strengths and improvements, ledger, applications.

    Skills are ranked by skill XP. The five strongest are strengths; the
    five weakest (weakest first) are improvements, listed only when the
    user has more than five skills.
    """
    with connect(db_path) as conn:
        user = conn.execute(f"SELECT {USER_PROFILE_COLUMNS} FROM users WHERE id=?", (user_id,)).fetchone()
        if not user:
            raise NotFoundError(f"User not found: {user_id}")
        skills = [
            {"skill_id": r["skill_id"], "skill_name": r["name"] or "Unknown",
             "skill_category": r["category"] or "", "skill_level": r["skill_level"],
             "skill_xp": r["skill_xp"], "is_verified": bool(r["is_verified"])}
            for r in conn.execute(
                """
                SELECT us.skill_id, us.skill_level, us.skill_xp, us.is_verified, s.name, s.category
                FROM user_skills us LEFT JOIN skills s ON s.id = us.skill_id
                WHERE us.user_id=? ORDER BY us.skill_xp DESC, us.skill_level DESC
                """,
                (user_id,),
            ).fetchall()
        ]
        transactions = conn.execute(
            """
            SELECT id, created_at, source_type, source_label, xp_amount, coin_amount
            FROM xp_transactions WHERE user_id=? ORDER BY created_at DESC LIMIT 50
            """,
            (user_id,),
        ).fetchall()
        applications = conn.execute(
            """
            SELECT a.id, a.created_at, a.status, j.title AS job_title
            FROM job_applications a LEFT JOIN jobs j ON j.id = a.job_id
            WHERE a.user_id=? ORDER BY a.created_at DESC
            """,
            (user_id,),
        ).fetchall()

    profile = dict(user)
    profile["is_active"] = bool(profile["is_active"])
    profile["is_open_to_opportunities"] = bool(profile["is_open_to_opportunities"])
    profile["strengths"] = skills[:5]
    profile["improvements"] = list(reversed(skills[-5:])) if len(skills) > 5 else []
    profile["xp_transactions"] = [dict(t) for t in transactions]
    profile["job_applications"] = [dict(a) for a in applications]
    return profile
