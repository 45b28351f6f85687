"""
LevelUp database layer.

SQLite schema plus the connection helper every store module uses. Ids are
UUID4 strings, timestamps are UTC ISO-8601 strings, JSON columns are text.
Natural-key UNIQUE constraints match admin_tables.UPSERT_KEYS so generic
upserts can target them with ON CONFLICT.
"""
from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

JSON_COLUMNS = {"metadata", "avatar_config", "perks", "payload", "tags"}


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def connect(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Connection that commits on success and rolls back on any error."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def row_to_dict(row: Optional[sqlite3.Row], decode_json: bool = True) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    out = dict(row)
    if decode_json:
        for key in JSON_COLUMNS & out.keys():
            value = out[key]
            if isinstance(value, str):
                try:
                    out[key] = json.loads(value)
                except json.JSONDecodeError:
                    pass
    return out


def table_columns(conn: sqlite3.Connection, table: str) -> list:
    return [r["name"] for r in conn.execute(f"PRAGMA table_info({table})").fetchall()]


SCHEMA = [
    # --- Org / RBAC ---
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        employee_id TEXT,
        email TEXT UNIQUE,
        password_hash TEXT,
        display_name TEXT,
        headline TEXT,
        bio TEXT,
        location TEXT,
        department TEXT,
        role_title TEXT,
        avatar_url TEXT,
        hire_date TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        manager_user_id TEXT,
        current_level INTEGER NOT NULL DEFAULT 1,
        current_xp INTEGER NOT NULL DEFAULT 0,
        coins_balance INTEGER NOT NULL DEFAULT 0,
        current_streak INTEGER NOT NULL DEFAULT 0,
        is_open_to_opportunities INTEGER NOT NULL DEFAULT 1,
        onboarded_at TEXT,
        avatar_config TEXT NOT NULL DEFAULT '{}',
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS roles (
        id TEXT PRIMARY KEY,
        code TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        description TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_roles (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        role_id TEXT NOT NULL REFERENCES roles(id) ON DELETE CASCADE,
        assigned_by TEXT,
        assigned_at TEXT NOT NULL,
        UNIQUE(user_id, role_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS org_units (
        id TEXT PRIMARY KEY,
        code TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        unit_type TEXT NOT NULL DEFAULT 'other',
        parent_org_unit_id TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS org_memberships (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        org_unit_id TEXT NOT NULL,
        is_primary INTEGER NOT NULL DEFAULT 0,
        start_date TEXT,
        end_date TEXT,
        title TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(user_id, org_unit_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS level_definitions (
        level INTEGER PRIMARY KEY,
        min_total_xp INTEGER NOT NULL,
        title TEXT NOT NULL,
        perks TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    # --- Skills taxonomy ---
    """
    CREATE TABLE IF NOT EXISTS skills (
        id TEXT PRIMARY KEY,
        slug TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        category TEXT NOT NULL DEFAULT 'General',
        description TEXT,
        skill_type TEXT NOT NULL DEFAULT 'technical',
        status TEXT NOT NULL DEFAULT 'active',
        is_verified INTEGER NOT NULL DEFAULT 0,
        parent_skill_id TEXT,
        source TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS skill_aliases (
        id TEXT PRIMARY KEY,
        skill_id TEXT NOT NULL REFERENCES skills(id) ON DELETE CASCADE,
        alias TEXT NOT NULL UNIQUE,
        source TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS skill_relations (
        id TEXT PRIMARY KEY,
        from_skill_id TEXT NOT NULL REFERENCES skills(id) ON DELETE CASCADE,
        to_skill_id TEXT NOT NULL REFERENCES skills(id) ON DELETE CASCADE,
        relation TEXT NOT NULL DEFAULT 'related',
        weight REAL NOT NULL DEFAULT 0.5,
        notes TEXT,
        created_at TEXT NOT NULL,
        UNIQUE(from_skill_id, to_skill_id, relation)
    )
    """,
    # --- Opportunities ---
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id TEXT PRIMARY KEY,
        code TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        description TEXT,
        org_unit_id TEXT,
        location TEXT,
        department TEXT,
        job_type TEXT NOT NULL DEFAULT 'full_time',
        level_band TEXT,
        status TEXT NOT NULL DEFAULT 'draft',
        xp_reward INTEGER NOT NULL DEFAULT 0,
        coin_reward INTEGER NOT NULL DEFAULT 0,
        internal_xp INTEGER,
        referral_coins INTEGER,
        referral_bonus_coins INTEGER NOT NULL DEFAULT 0,
        tags TEXT NOT NULL DEFAULT '[]',
        recruiter_email TEXT,
        is_hot INTEGER NOT NULL DEFAULT 0,
        media_url TEXT,
        day_in_life TEXT,
        created_by TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_skills (
        job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
        skill_id TEXT NOT NULL REFERENCES skills(id) ON DELETE CASCADE,
        required_level INTEGER NOT NULL DEFAULT 1,
        weight REAL NOT NULL DEFAULT 1.0,
        is_mandatory INTEGER NOT NULL DEFAULT 0,
        notes TEXT,
        created_at TEXT NOT NULL,
        PRIMARY KEY (job_id, skill_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS gigs (
        id TEXT PRIMARY KEY,
        code TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        description TEXT,
        org_unit_id TEXT,
        location TEXT,
        department TEXT,
        status TEXT NOT NULL DEFAULT 'draft',
        start_date TEXT,
        end_date TEXT,
        commitment_hours_per_week REAL,
        estimated_hours REAL,
        owner_user_id TEXT,
        xp_reward INTEGER NOT NULL DEFAULT 0,
        coin_reward INTEGER NOT NULL DEFAULT 0,
        created_by TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS gig_skills (
        gig_id TEXT NOT NULL REFERENCES gigs(id) ON DELETE CASCADE,
        skill_id TEXT NOT NULL REFERENCES skills(id) ON DELETE CASCADE,
        required_level INTEGER NOT NULL DEFAULT 1,
        weight REAL NOT NULL DEFAULT 1.0,
        is_mandatory INTEGER NOT NULL DEFAULT 0,
        notes TEXT,
        created_at TEXT NOT NULL,
        PRIMARY KEY (gig_id, skill_id)
    )
    """,
    # --- People x skills ---
    """
    CREATE TABLE IF NOT EXISTS user_skills (
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        skill_id TEXT NOT NULL REFERENCES skills(id) ON DELETE CASCADE,
        skill_level INTEGER NOT NULL DEFAULT 1 CHECK(skill_level BETWEEN 1 AND 5),
        skill_xp INTEGER NOT NULL DEFAULT 0,
        endorsement_count INTEGER NOT NULL DEFAULT 0,
        last_endorsed_at TEXT,
        is_verified INTEGER NOT NULL DEFAULT 0,
        verified_by TEXT,
        verified_at TEXT,
        source TEXT,
        evidence_url TEXT,
        notes TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (user_id, skill_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS skill_endorsements (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        skill_id TEXT NOT NULL,
        endorser_user_id TEXT NOT NULL,
        message TEXT,
        created_at TEXT NOT NULL,
        UNIQUE(user_id, skill_id, endorser_user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS badges (
        id TEXT PRIMARY KEY,
        slug TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        description TEXT,
        icon TEXT,
        rarity TEXT NOT NULL DEFAULT 'common',
        status TEXT NOT NULL DEFAULT 'active',
        xp_bonus INTEGER NOT NULL DEFAULT 0,
        coin_bonus INTEGER NOT NULL DEFAULT 0,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_badges (
        user_id TEXT NOT NULL,
        badge_id TEXT NOT NULL,
        awarded_at TEXT NOT NULL,
        awarded_by TEXT,
        reason TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        PRIMARY KEY (user_id, badge_id)
    )
    """,
    # --- Participation ---
    """
    CREATE TABLE IF NOT EXISTS gig_participants (
        id TEXT PRIMARY KEY,
        gig_id TEXT NOT NULL REFERENCES gigs(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        status TEXT NOT NULL DEFAULT 'submitted',
        applied_at TEXT NOT NULL,
        accepted_at TEXT,
        started_at TEXT,
        completed_at TEXT,
        notes TEXT,
        UNIQUE(gig_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_applications (
        id TEXT PRIMARY KEY,
        job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        status TEXT NOT NULL DEFAULT 'submitted',
        applied_at TEXT NOT NULL,
        notes TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(job_id, user_id)
    )
    """,
    # --- Feed + ledger ---
    """
    CREATE TABLE IF NOT EXISTS feed_events (
        id TEXT PRIMARY KEY,
        event_type TEXT NOT NULL,
        actor_user_id TEXT,
        subject_user_id TEXT,
        org_unit_id TEXT,
        entity_table TEXT,
        entity_id TEXT,
        visibility TEXT NOT NULL DEFAULT 'org',
        payload TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS xp_transactions (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        source_type TEXT NOT NULL,
        source_id TEXT,
        source_label TEXT,
        xp_amount INTEGER NOT NULL DEFAULT 0,
        coin_amount INTEGER NOT NULL DEFAULT 0,
        created_by TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ai_taxonomy_suggestions (
        id TEXT PRIMARY KEY,
        suggestion_type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        payload TEXT NOT NULL DEFAULT '{}',
        created_by TEXT,
        reviewed_by TEXT,
        reviewed_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    # --- Learning ---
    """
    CREATE TABLE IF NOT EXISTS courses (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        provider TEXT NOT NULL,
        url TEXT,
        image_url TEXT,
        duration_hours REAL,
        skill_id TEXT REFERENCES skills(id) ON DELETE SET NULL,
        min_level_grant INTEGER,
        xp_reward INTEGER NOT NULL DEFAULT 50,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS course_completions (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        course_id TEXT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
        xp_awarded INTEGER NOT NULL DEFAULT 0,
        completed_at TEXT NOT NULL,
        UNIQUE(user_id, course_id)
    )
    """,
    # --- Referrals ---
    """
    CREATE TABLE IF NOT EXISTS referrals (
        id TEXT PRIMARY KEY,
        referrer_id TEXT REFERENCES users(id) ON DELETE SET NULL,
        job_id TEXT REFERENCES jobs(id) ON DELETE SET NULL,
        candidate_name TEXT NOT NULL,
        candidate_phone TEXT,
        candidate_email TEXT,
        cv_url TEXT,
        status TEXT NOT NULL DEFAULT 'new',
        bonus_amount INTEGER,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS referral_payouts (
        id TEXT PRIMARY KEY,
        referral_id TEXT NOT NULL UNIQUE REFERENCES referrals(id) ON DELETE CASCADE,
        user_id TEXT REFERENCES users(id) ON DELETE SET NULL,
        amount_cash REAL,
        amount_coins INTEGER,
        status TEXT NOT NULL DEFAULT 'pending_maturity',
        processed_at TEXT,
        created_at TEXT NOT NULL,
        maturity_date TEXT NOT NULL,
        is_eligible INTEGER NOT NULL DEFAULT 1,
        rejection_reason TEXT
    )
    """,
    # --- Social / layout ---
    """
    CREATE TABLE IF NOT EXISTS posts (
        id TEXT PRIMARY KEY,
        user_id TEXT REFERENCES users(id) ON DELETE SET NULL,
        content TEXT NOT NULL,
        post_type TEXT NOT NULL DEFAULT 'tip',
        image_url TEXT,
        likes_count INTEGER NOT NULL DEFAULT 0,
        comments_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS post_comments (
        id TEXT PRIMARY KEY,
        post_id TEXT NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
        user_id TEXT REFERENCES users(id) ON DELETE SET NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quests (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT,
        xp_reward INTEGER,
        coin_reward INTEGER,
        quest_type TEXT,
        action_link TEXT,
        is_active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app_widgets (
        key TEXT PRIMARY KEY,
        label TEXT,
        is_visible INTEGER NOT NULL DEFAULT 1,
        order_index INTEGER NOT NULL DEFAULT 0
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_gigs_status ON gigs(status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_xp_tx_user ON xp_transactions(user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_feed_created ON feed_events(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_user_skills_skill ON user_skills(skill_id, skill_level)",
    "CREATE INDEX IF NOT EXISTS idx_posts_created ON posts(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_payouts_status ON referral_payouts(status, maturity_date)",
]


def init_database(db_path: Path) -> None:
    """Create every table and index. Safe to call repeatedly."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with connect(db_path) as conn:
        for stmt in SCHEMA:
            conn.execute(stmt)
        for stmt in INDEXES:
            conn.execute(stmt)


def insert_feed_event(
    conn: sqlite3.Connection,
    event_type: str,
    *,
    actor_user_id: Optional[str] = None,
    subject_user_id: Optional[str] = None,
    entity_table: Optional[str] = None,
    entity_id: Optional[str] = None,
    payload: Optional[dict] = None,
    visibility: str = "org",
) -> str:
    event_id = new_id()
    conn.execute(
        """
        INSERT INTO feed_events (id, event_type, actor_user_id, subject_user_id,
                                 entity_table, entity_id, visibility, payload, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (event_id, getattr(event_type, "value", event_type), actor_user_id, subject_user_id or actor_user_id,
         entity_table, entity_id, visibility, json.dumps(payload or {}), utcnow()),
    )
    return event_id
