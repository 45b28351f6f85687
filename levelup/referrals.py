"""
Refer-a-friend.

Employees share a personal link to the public careers page; candidates
submitted through it become `referrals`. When HR marks one hired, a payout
is created that only matures after REFERRAL_MATURITY_DAYS, at which point
the referrer is credited in coins.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import REFERRAL_MATURITY_DAYS
from .db import connect, new_id, utcnow
from .errors import ConflictError, NotFoundError, ValidationError
from .models import JobStatus, PayoutStatus, ReferralStatus, XpSourceType
from .rewards import award
from .witness import AuditChain

logger = logging.getLogger(__name__)


def build_referral_link(base_url: str, job_id: str, referrer_id: str) -> str:
    return f"{base_url.rstrip('/')}/careers/{job_id}?ref={referrer_id}"


def submit_referral(
    db_path: Path,
    job_id: str,
    referrer_id: Optional[str],
    candidate_name: str,
    candidate_email: Optional[str] = None,
    candidate_phone: Optional[str] = None,
    cv_url: Optional[str] = None,
) -> Dict[str, Any]:
    candidate_name = (candidate_name or "").strip()
    if not candidate_name:
        raise ValidationError("Candidate name is required")

    with connect(db_path) as conn:
        job = conn.execute(
            "SELECT id, status, referral_bonus_coins FROM jobs WHERE id=?", (job_id,)
        ).fetchone()
        if not job or job["status"] != JobStatus.PUBLISHED.value:
            raise NotFoundError(f"Job not found: {job_id}")

        # The careers page is public, so a stale or forged ?ref= is dropped.
        if referrer_id:
            known = conn.execute("SELECT 1 FROM users WHERE id=?", (referrer_id,)).fetchone()
            if not known:
                referrer_id = None

        referral_id = new_id()
        now = utcnow()
        conn.execute(
            """
            INSERT INTO referrals (id, referrer_id, job_id, candidate_name, candidate_phone,
                                   candidate_email, cv_url, status, bonus_amount, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (referral_id, referrer_id, job_id, candidate_name, candidate_phone, candidate_email,
             cv_url, ReferralStatus.NEW.value, int(job["referral_bonus_coins"] or 0), now, now),
        )
    logger.info("referral %s for job %s (referrer=%s)", referral_id, job_id, referrer_id)
    return {"success": True, "id": referral_id, "referrer_id": referrer_id}


def list_referrals(db_path: Path) -> List[Dict[str, Any]]:
    with connect(db_path) as conn:
        rows = conn.execute(
            """
            SELECT r.id, r.referrer_id, r.job_id, r.candidate_name, r.candidate_phone,
                   r.candidate_email, r.cv_url, r.status, r.bonus_amount, r.created_at,
                   j.title AS job_title, j.location AS job_location,
                   u.display_name AS referrer_name
            FROM referrals r
            LEFT JOIN jobs j ON j.id = r.job_id
            LEFT JOIN users u ON u.id = r.referrer_id
            ORDER BY r.created_at DESC
            """
        ).fetchall()
    return [dict(r) for r in rows]


def update_referral_status(db_path: Path, referral_id: str, status: str) -> Dict[str, Any]:
    try:
        status = ReferralStatus(status).value
    except ValueError:
        raise ValidationError(f"Invalid referral status: {status}")
    with connect(db_path) as conn:
        cur = conn.execute(
            "UPDATE referrals SET status=?, updated_at=? WHERE id=?", (status, utcnow(), referral_id)
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"Referral not found: {referral_id}")
    return {"success": True, "id": referral_id, "status": status}


def approve_referral_success(
    db_path: Path,
    referral_id: str,
    admin_id: Optional[str] = None,
    audit: Optional[AuditChain] = None,
) -> Dict[str, Any]:
    """Mark the candidate hired and open a payout awaiting maturity."""
    maturity = datetime.now(timezone.utc) + timedelta(days=REFERRAL_MATURITY_DAYS)
    with connect(db_path) as conn:
        ref = conn.execute(
            "SELECT id, referrer_id, bonus_amount FROM referrals WHERE id=?", (referral_id,)
        ).fetchone()
        if not ref:
            raise NotFoundError(f"Referral not found: {referral_id}")
        if conn.execute(
            "SELECT 1 FROM referral_payouts WHERE referral_id=?", (referral_id,)
        ).fetchone():
            raise ConflictError("Referral already approved")

        now = utcnow()
        conn.execute(
            "UPDATE referrals SET status=?, updated_at=? WHERE id=?",
            (ReferralStatus.HIRED.value, now, referral_id),
        )
        payout_id = new_id()
        conn.execute(
            """
            INSERT INTO referral_payouts (id, referral_id, user_id, amount_coins, status,
                                          created_at, maturity_date, is_eligible)
            VALUES (?, ?, ?, ?, ?, ?, ?, 1)
            """,
            (payout_id, referral_id, ref["referrer_id"], int(ref["bonus_amount"] or 0),
             PayoutStatus.PENDING_MATURITY.value, now, maturity.isoformat()),
        )

    (audit or AuditChain(db_path)).record(
        "referral_approved", admin_id,
        {"payout_id": payout_id, "maturity_date": maturity.isoformat()},
        target_table="referrals", target_id=referral_id,
    )
    return {"success": True, "payout_id": payout_id, "maturity_date": maturity.isoformat()}


def mature_payouts(
    db_path: Path,
    now: Optional[datetime] = None,
    audit: Optional[AuditChain] = None,
) -> Dict[str, Any]:
    """Approve every eligible payout whose maturity date has passed and credit the coins."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    # maturity_date is stored as a UTC ISO string and compared as text
    now = now.astimezone(timezone.utc)
    matured: List[str] = []
    with connect(db_path) as conn:
        rows = conn.execute(
            """
            SELECT id, referral_id, user_id, amount_coins FROM referral_payouts
            WHERE status=? AND is_eligible=1 AND maturity_date<=?
            """,
            (PayoutStatus.PENDING_MATURITY.value, now.isoformat()),
        ).fetchall()
        for row in rows:
            conn.execute(
                "UPDATE referral_payouts SET status=?, processed_at=? WHERE id=?",
                (PayoutStatus.APPROVED.value, now.isoformat(), row["id"]),
            )
            coins = int(row["amount_coins"] or 0)
            if row["user_id"] and coins:
                award(
                    conn, row["user_id"], coins=coins,
                    source_type=XpSourceType.REFERRAL, source_id=row["referral_id"],
                    source_label="Referral bonus",
                )
            matured.append(row["id"])

    if matured:
        (audit or AuditChain(db_path)).record(
            "payouts_matured", None, {"payout_ids": matured}, target_table="referral_payouts",
        )
    logger.info("matured %d referral payouts", len(matured))
    return {"matured": len(matured), "payout_ids": matured}
