"""
Generic admin tables.

Every admin CRUD screen is the same view bound to one relation and
parameterised by the static configuration below: which tables are
reachable, which natural key resolves upsert conflicts, which columns to
show and which column the search box filters on.

The operations return result dicts with error lists instead of raising on
database errors, so a bad spreadsheet import reports what failed. An
unknown table name is a programming error and raises InvalidTableError.
"""
from __future__ import annotations

import csv
import io
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .db import connect, new_id, row_to_dict, table_columns, utcnow
from .errors import InvalidTableError

logger = logging.getLogger(__name__)

ADMIN_TABLES = (
    "org_units",
    "org_memberships",
    "level_definitions",
    "users",
    "roles",
    "user_roles",
    "skills",
    "skill_aliases",
    "skill_relations",
    "jobs",
    "job_skills",
    "gigs",
    "gig_skills",
    "user_skills",
    "skill_endorsements",
    "badges",
    "user_badges",
    "gig_participants",
    "job_applications",
    "feed_events",
    "xp_transactions",
    "ai_taxonomy_suggestions",
    "courses",
    "quests",
    "app_widgets",
)

# Natural keys used for ON CONFLICT resolution.
UPSERT_KEYS: Dict[str, List[str]] = {
    "org_units": ["code"],
    "level_definitions": ["level"],
    "skills": ["slug"],
    "jobs": ["code"],
    "gigs": ["code"],
    "badges": ["slug"],
    "roles": ["code"],
    "user_skills": ["user_id", "skill_id"],
    "job_skills": ["job_id", "skill_id"],
    "gig_skills": ["gig_id", "skill_id"],
    "user_badges": ["user_id", "badge_id"],
    "org_memberships": ["user_id", "org_unit_id"],
    "skill_aliases": ["alias"],
    "skill_relations": ["from_skill_id", "to_skill_id", "relation"],
    "skill_endorsements": ["user_id", "skill_id", "endorser_user_id"],
    "gig_participants": ["gig_id", "user_id"],
    "job_applications": ["job_id", "user_id"],
    "user_roles": ["user_id", "role_id"],
    "app_widgets": ["key"],
}

TABLE_DISPLAY_COLUMNS: Dict[str, List[str]] = {
    "org_units": ["code", "name", "unit_type", "status", "created_at"],
    "org_memberships": ["user_id", "org_unit_id", "is_primary", "title", "start_date"],
    "level_definitions": ["level", "min_total_xp", "title"],
    "users": ["display_name", "email", "role_title", "current_level", "current_xp", "is_active"],
    "roles": ["code", "name", "description"],
    "user_roles": ["user_id", "role_id", "assigned_at"],
    "skills": ["slug", "name", "category", "skill_type", "status", "is_verified"],
    "skill_aliases": ["skill_id", "alias", "source"],
    "skill_relations": ["from_skill_id", "to_skill_id", "relation", "weight"],
    "jobs": ["code", "title", "job_type", "status", "xp_reward", "created_at"],
    "job_skills": ["job_id", "skill_id", "required_level", "weight", "is_mandatory"],
    "gigs": ["code", "title", "status", "xp_reward", "coin_reward", "created_at"],
    "gig_skills": ["gig_id", "skill_id", "required_level", "weight", "is_mandatory"],
    "user_skills": ["user_id", "skill_id", "skill_level", "endorsement_count", "is_verified"],
    "skill_endorsements": ["user_id", "skill_id", "endorser_user_id", "created_at"],
    "badges": ["slug", "name", "rarity", "xp_bonus", "coin_bonus", "status"],
    "user_badges": ["user_id", "badge_id", "awarded_at", "reason"],
    "gig_participants": ["gig_id", "user_id", "status", "applied_at", "completed_at"],
    "job_applications": ["job_id", "user_id", "status", "applied_at"],
    "feed_events": ["event_type", "actor_user_id", "visibility", "entity_table", "created_at"],
    "xp_transactions": ["user_id", "source_type", "source_label", "xp_amount", "coin_amount", "created_at"],
    "ai_taxonomy_suggestions": ["suggestion_type", "status", "created_at"],
    "courses": ["title", "provider", "duration_hours", "xp_reward", "created_at"],
    "quests": ["title", "quest_type", "xp_reward", "coin_reward", "is_active"],
    "app_widgets": ["key", "label", "is_visible", "order_index"],
}

TABLE_LABELS: Dict[str, str] = {
    name: name.replace("_", " ").title().replace("Xp ", "XP ").replace("Ai ", "AI ")
    for name in ADMIN_TABLES
}

TABLE_SEARCH_COLUMNS: Dict[str, str] = {
    "org_units": "name",
    "users": "display_name",
    "skills": "name",
    "jobs": "title",
    "gigs": "title",
    "badges": "name",
    "roles": "name",
    "courses": "title",
    "quests": "title",
}

# Wide JSON blobs and secrets, never shown in the grid.
HIDDEN_COLUMNS = {"metadata", "payload", "avatar_config", "perks", "password_hash"}

# Stamped automatically when the table has the column and the row omits it.
AUTO_TIMESTAMP_COLUMNS = ("created_at", "updated_at", "assigned_at", "awarded_at", "applied_at")

EXPORT_ROW_CAP = 5000


def assert_valid_table(table_name: str) -> None:
    if table_name not in ADMIN_TABLES:
        raise InvalidTableError(table_name)


def auto_detect_columns(row: Mapping[str, Any]) -> List[str]:
    """First six keys of a row, skipping the wide JSON columns."""
    return [k for k in row.keys() if k not in HIDDEN_COLUMNS][:6]


def display_columns(table_name: str, rows: Sequence[Mapping[str, Any]]) -> List[str]:
    configured = TABLE_DISPLAY_COLUMNS.get(table_name)
    if configured:
        return list(configured)
    return auto_detect_columns(rows[0]) if rows else []


def _order_clause(columns: List[str]) -> str:
    if "created_at" in columns:
        return " ORDER BY created_at DESC"
    return ""


def _scrub(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if k != "password_hash"}


# --- Fetch ---

def fetch_table(
    db_path: Path,
    table_name: str,
    page: int = 1,
    limit: int = 25,
    search: str = "",
) -> Dict[str, Any]:
    """One page of a table plus the total matching row count.

    Pages are 1-indexed. Search is a case-insensitive substring match on
    the table's configured search column and is ignored when none is set.
    """
    assert_valid_table(table_name)
    page = max(1, int(page))
    limit = max(1, int(limit))
    offset = (page - 1) * limit

    where = ""
    params: List[Any] = []
    search = (search or "").strip()
    search_col = TABLE_SEARCH_COLUMNS.get(table_name)
    if search and search_col:
        where = f" WHERE {search_col} LIKE ? COLLATE NOCASE"
        params.append(f"%{search}%")

    try:
        with connect(db_path) as conn:
            columns = table_columns(conn, table_name)
            count = conn.execute(
                f"SELECT COUNT(*) FROM {table_name}{where}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM {table_name}{where}{_order_clause(columns)} LIMIT ? OFFSET ?",
                [*params, limit, offset],
            ).fetchall()
    except sqlite3.Error as e:
        logger.error("fetch %s failed: %s", table_name, e)
        return {"data": [], "count": 0, "page": page, "limit": limit, "error": str(e)}

    return {
        "data": [_scrub(row_to_dict(r)) for r in rows],
        "count": int(count),
        "page": page,
        "limit": limit,
        "error": None,
    }


# --- Upsert ---

def _clean_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop blank spreadsheet cells and serialise JSON-shaped values."""
    out: Dict[str, Any] = {}
    for key, val in row.items():
        if val is None or val == "":
            continue
        if isinstance(val, (dict, list)):
            val = json.dumps(val)
        elif isinstance(val, bool):
            val = int(val)
        out[key] = val
    return out


def _build_upsert_sql(table_name: str, cols: List[str], conflict_keys: Optional[List[str]]) -> str:
    placeholders = ", ".join("?" for _ in cols)
    sql = f"INSERT INTO {table_name} ({', '.join(cols)}) VALUES ({placeholders})"
    if not conflict_keys:
        return sql
    updatable = [c for c in cols if c not in conflict_keys and c not in ("id", "created_at")]
    target = ", ".join(conflict_keys)
    if not updatable:
        return f"{sql} ON CONFLICT({target}) DO NOTHING"
    assignments = ", ".join(f"{c}=excluded.{c}" for c in updatable)
    return f"{sql} ON CONFLICT({target}) DO UPDATE SET {assignments}"


def upsert_rows(db_path: Path, table_name: str, rows: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    """Bulk insert-or-merge rows into an admin table.

    Tables with a natural key in UPSERT_KEYS merge on that key; others are
    plain inserts. The whole batch is one transaction: any failure rolls it
    back and is reported in `errors`.
    """
    assert_valid_table(table_name)
    if not rows:
        return {"success": True, "inserted": 0, "errors": []}

    conflict_keys = UPSERT_KEYS.get(table_name)
    now = utcnow()
    try:
        with connect(db_path) as conn:
            columns = table_columns(conn, table_name)
            for raw in rows:
                row = _clean_row(raw)
                unknown = set(row) - set(columns)
                if unknown:
                    raise ValueError(f"Unknown column(s) for {table_name}: {', '.join(sorted(unknown))}")
                if "id" in columns and "id" not in row:
                    row["id"] = new_id()
                for col in AUTO_TIMESTAMP_COLUMNS:
                    if col in columns and col not in row:
                        row[col] = now
                cols = list(row.keys())
                conn.execute(_build_upsert_sql(table_name, cols, conflict_keys), [row[c] for c in cols])
    except (sqlite3.Error, ValueError) as e:
        logger.warning("upsert into %s failed: %s", table_name, e)
        return {"success": False, "inserted": 0, "errors": [str(e)]}

    return {"success": True, "inserted": len(rows), "errors": []}


# --- Delete ---

def delete_row(db_path: Path, table_name: str, key: Union[str, int, Mapping[str, Any]]) -> Dict[str, Any]:
    """Delete one row by `id`, or by a dict of composite key columns."""
    assert_valid_table(table_name)
    if isinstance(key, Mapping):
        if not key:
            return {"success": False, "error": "Empty key"}
        clause = " AND ".join(f"{col}=?" for col in key)
        params = list(key.values())
    else:
        clause = "id=?"
        params = [key]

    try:
        with connect(db_path) as conn:
            columns = table_columns(conn, table_name)
            missing = [c for c in (key if isinstance(key, Mapping) else ["id"]) if c not in columns]
            if missing:
                return {"success": False, "error": f"Unknown key column(s): {', '.join(missing)}"}
            cur = conn.execute(f"DELETE FROM {table_name} WHERE {clause}", params)
            deleted = cur.rowcount
    except sqlite3.Error as e:
        logger.warning("delete from %s failed: %s", table_name, e)
        return {"success": False, "error": str(e)}

    if deleted == 0:
        return {"success": False, "error": "Row not found"}
    return {"success": True, "error": None}


# --- Export ---

def export_table(db_path: Path, table_name: str) -> Dict[str, Any]:
    """All rows (capped at EXPORT_ROW_CAP) for spreadsheet download."""
    assert_valid_table(table_name)
    try:
        with connect(db_path) as conn:
            columns = table_columns(conn, table_name)
            rows = conn.execute(
                f"SELECT * FROM {table_name}{_order_clause(columns)} LIMIT ?",
                (EXPORT_ROW_CAP,),
            ).fetchall()
    except sqlite3.Error as e:
        return {"data": [], "error": str(e)}
    return {"data": [_scrub(dict(r)) for r in rows], "error": None}


def export_csv(db_path: Path, table_name: str) -> str:
    """CSV text: configured display columns first, then every other column."""
    result = export_table(db_path, table_name)
    rows = result["data"]
    if not rows:
        return ""
    leading = [c for c in display_columns(table_name, rows) if c in rows[0]]
    header = leading + [c for c in rows[0].keys() if c not in leading]
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=header, extrasaction="ignore")
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue()
