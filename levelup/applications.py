"""
Job applications and gig participation.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from .db import connect, insert_feed_event, new_id, row_to_dict, utcnow
from .errors import ConflictError, NotFoundError, ValidationError
from .models import ApplicationStatus, FeedEventType, GigStatus, JobStatus, XpSourceType
from .rewards import award

logger = logging.getLogger(__name__)


def apply_for_job(db_path: Path, user_id: str, job_id: str) -> Dict[str, Any]:
    """Submit an application. Re-applying is a no-op that awards nothing."""
    with connect(db_path) as conn:
        job = conn.execute(
            "SELECT id, title, status, xp_reward, internal_xp FROM jobs WHERE id=?", (job_id,)
        ).fetchone()
        if not job or job["status"] != JobStatus.PUBLISHED.value:
            raise NotFoundError(f"Job not found: {job_id}")

        existing = conn.execute(
            "SELECT id FROM job_applications WHERE job_id=? AND user_id=?", (job_id, user_id)
        ).fetchone()
        if existing:
            return {"success": True, "already_applied": True, "reward": 0,
                    "application_id": existing["id"]}

        now = utcnow()
        application_id = new_id()
        conn.execute(
            """
            INSERT INTO job_applications (id, job_id, user_id, status, applied_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (application_id, job_id, user_id, ApplicationStatus.SUBMITTED.value, now, now, now),
        )

        reward = job["internal_xp"] if job["internal_xp"] is not None else job["xp_reward"]
        reward = int(reward or 0)
        result = None
        if reward > 0:
            result = award(
                conn, user_id, xp=reward,
                source_type=XpSourceType.JOB_APPLICATION,
                source_id=job_id,
                source_label=f"Applied: {job['title']}",
            )
        insert_feed_event(
            conn, FeedEventType.JOB_APPLIED,
            actor_user_id=user_id, entity_table="jobs", entity_id=job_id,
            payload={"job_title": job["title"], "xp": reward},
        )

    logger.info("user %s applied to job %s (+%d xp)", user_id, job_id, reward)
    return {
        "success": True,
        "already_applied": False,
        "reward": reward,
        "application_id": application_id,
        "leveled_up": bool(result and result.leveled_up),
    }


def apply_for_gig(db_path: Path, user_id: str, gig_id: str) -> Dict[str, Any]:
    with connect(db_path) as conn:
        gig = conn.execute("SELECT id, title, status FROM gigs WHERE id=?", (gig_id,)).fetchone()
        if not gig or gig["status"] != GigStatus.OPEN.value:
            raise NotFoundError(f"Gig not found: {gig_id}")

        existing = conn.execute(
            "SELECT id FROM gig_participants WHERE gig_id=? AND user_id=?", (gig_id, user_id)
        ).fetchone()
        if existing:
            return {"success": True, "already_applied": True, "participant_id": existing["id"]}

        participant_id = new_id()
        conn.execute(
            "INSERT INTO gig_participants (id, gig_id, user_id, status, applied_at) VALUES (?, ?, ?, ?, ?)",
            (participant_id, gig_id, user_id, ApplicationStatus.SUBMITTED.value, utcnow()),
        )
        insert_feed_event(
            conn, FeedEventType.GIG_APPLIED,
            actor_user_id=user_id, entity_table="gigs", entity_id=gig_id,
            payload={"gig_title": gig["title"]},
        )
    return {"success": True, "already_applied": False, "participant_id": participant_id}


def complete_gig(db_path: Path, participant_id: str) -> Dict[str, Any]:
    """Mark a participation completed and pay out the gig's rewards."""
    with connect(db_path) as conn:
        row = conn.execute(
            """
            SELECT p.id, p.user_id, p.gig_id, p.status, g.title, g.xp_reward, g.coin_reward
            FROM gig_participants p JOIN gigs g ON g.id = p.gig_id
            WHERE p.id=?
            """,
            (participant_id,),
        ).fetchone()
        if not row:
            raise NotFoundError(f"Gig participation not found: {participant_id}")
        if row["status"] == ApplicationStatus.COMPLETED.value:
            raise ConflictError("Gig already completed")

        conn.execute(
            "UPDATE gig_participants SET status=?, completed_at=? WHERE id=?",
            (ApplicationStatus.COMPLETED.value, utcnow(), participant_id),
        )
        result = award(
            conn, row["user_id"],
            xp=int(row["xp_reward"] or 0), coins=int(row["coin_reward"] or 0),
            source_type=XpSourceType.GIG, source_id=row["gig_id"],
            source_label=f"Completed: {row['title']}",
        )
        insert_feed_event(
            conn, FeedEventType.GIG_COMPLETED,
            actor_user_id=row["user_id"], entity_table="gigs", entity_id=row["gig_id"],
            payload={"gig_title": row["title"], "xp": result.xp_awarded, "coins": result.coins_awarded},
        )
    return {"success": True, **result.to_dict()}


def list_internal_applications(db_path: Path) -> List[Dict[str, Any]]:
    with connect(db_path) as conn:
        rows = conn.execute(
            """
            SELECT a.id, a.job_id, a.user_id, a.status, a.applied_at, a.notes,
                   j.title AS job_title, j.location AS job_location,
                   u.display_name AS applicant_name, u.email AS applicant_email,
                   u.current_xp AS applicant_xp
            FROM job_applications a
            LEFT JOIN jobs j ON j.id = a.job_id
            LEFT JOIN users u ON u.id = a.user_id
            ORDER BY a.applied_at DESC
            """
        ).fetchall()
    return [dict(r) for r in rows]


def update_application_status(db_path: Path, application_id: str, status: str) -> Dict[str, Any]:
    try:
        status = ApplicationStatus(status).value
    except ValueError:
        raise ValidationError(f"Invalid application status: {status}")
    with connect(db_path) as conn:
        cur = conn.execute(
            "UPDATE job_applications SET status=?, updated_at=? WHERE id=?",
            (status, utcnow(), application_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"Application not found: {application_id}")
    return {"success": True, "id": application_id, "status": status}


def user_applications(db_path: Path, user_id: str) -> List[Dict[str, Any]]:
    with connect(db_path) as conn:
        rows = conn.execute(
            """
            SELECT a.*, j.title AS job_title, j.location AS job_location
            FROM job_applications a LEFT JOIN jobs j ON j.id = a.job_id
            WHERE a.user_id=? ORDER BY a.applied_at DESC
            """,
            (user_id,),
        ).fetchall()
    return [row_to_dict(r) for r in rows]
