"""
Demo data loader.

Reads fixtures/seed.yaml and writes it through the same bulk upsert the
admin tables screen uses, so running it twice leaves one copy of every
row. Cross references in the YAML use natural keys (skill slug, job/gig
code, role code, user email) and are resolved to ids here.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .admin_tables import upsert_rows
from .auth import hash_password
from .db import connect, init_database
from .errors import ValidationError
from .gamification import cumulative_xp_for_level, get_level_badge

logger = logging.getLogger(__name__)

SEED_PATH = Path(__file__).parent / "fixtures" / "seed.yaml"

# Sections loaded as-is, in foreign-key order.
PLAIN_SECTIONS = ("roles", "org_units", "skills", "badges", "app_widgets")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return {}
    return raw


def level_rows(up_to: int) -> List[Dict[str, Any]]:
    """level_definitions rows matching the XP curve for levels 1..up_to."""
    return [
        {
            "level": level,
            "min_total_xp": cumulative_xp_for_level(level),
            "title": get_level_badge(level).title,
        }
        for level in range(1, max(1, up_to) + 1)
    ]


def _lookup(db_path: Path, table: str, key: str) -> Dict[str, str]:
    with connect(db_path) as conn:
        rows = conn.execute(f"SELECT id, {key} FROM {table}").fetchall()
    return {r[key]: r["id"] for r in rows}


def _resolve(index: Mapping[str, str], ref: Any, kind: str) -> str:
    try:
        return index[ref]
    except KeyError:
        raise ValidationError(f"Seed references unknown {kind}: {ref!r}") from None


def _upsert(db_path: Path, table: str, rows: List[Dict[str, Any]], counts: Dict[str, int]) -> None:
    result = upsert_rows(db_path, table, rows)
    if not result["success"]:
        raise ValidationError(f"Seeding {table} failed: {'; '.join(result['errors'])}")
    counts[table] = counts.get(table, 0) + result["inserted"]


def _skill_links(owner_col: str, owner_id: str, entries: List[Mapping[str, Any]],
                 skills: Mapping[str, str]) -> List[Dict[str, Any]]:
    links = []
    for entry in entries or []:
        links.append({
            owner_col: owner_id,
            "skill_id": _resolve(skills, entry["skill"], "skill"),
            "required_level": entry.get("required_level", 1),
            "weight": entry.get("weight", 1.0),
            "is_mandatory": bool(entry.get("is_mandatory", False)),
        })
    return links


def _seed_opportunities(db_path: Path, table: str, link_table: str, owner_col: str,
                        entries: List[Mapping[str, Any]], skills: Mapping[str, str],
                        counts: Dict[str, int]) -> None:
    bare = [{k: v for k, v in e.items() if k != "skills"} for e in entries]
    _upsert(db_path, table, bare, counts)
    ids = _lookup(db_path, table, "code")
    links: List[Dict[str, Any]] = []
    for entry in entries:
        links.extend(_skill_links(owner_col, ids[entry["code"]], entry.get("skills", []), skills))
    _upsert(db_path, link_table, links, counts)


def _seed_courses(db_path: Path, entries: List[Mapping[str, Any]], skills: Mapping[str, str],
                  counts: Dict[str, int]) -> None:
    # courses has no natural key; titles already present are left alone
    with connect(db_path) as conn:
        existing = {r["title"] for r in conn.execute("SELECT title FROM courses").fetchall()}
    rows = []
    for entry in entries:
        if entry["title"] in existing:
            continue
        row = {k: v for k, v in entry.items() if k != "skill"}
        if entry.get("skill"):
            row["skill_id"] = _resolve(skills, entry["skill"], "skill")
        rows.append(row)
    _upsert(db_path, "courses", rows, counts)


def _seed_quests(db_path: Path, entries: List[Mapping[str, Any]], counts: Dict[str, int]) -> None:
    with connect(db_path) as conn:
        existing = {r["title"] for r in conn.execute("SELECT title FROM quests").fetchall()}
    _upsert(db_path, "quests", [e for e in entries if e["title"] not in existing], counts)


def _seed_users(db_path: Path, entries: List[Mapping[str, Any]], skills: Mapping[str, str],
                counts: Dict[str, int]) -> None:
    existing = _lookup(db_path, "users", "email")
    new_users = []
    for entry in entries:
        email = entry["email"].strip().lower()
        if email in existing:
            continue
        row = {k: v for k, v in entry.items() if k not in ("password", "roles", "skills", "email")}
        row["email"] = email
        if entry.get("password"):
            row["password_hash"] = hash_password(entry["password"])
        new_users.append(row)
    _upsert(db_path, "users", new_users, counts)

    users = _lookup(db_path, "users", "email")
    roles = _lookup(db_path, "roles", "code")
    role_links, user_skills = [], []
    for entry in entries:
        user_id = users[entry["email"].strip().lower()]
        for code in entry.get("roles", []):
            role_links.append({"user_id": user_id, "role_id": _resolve(roles, code, "role")})
        for skill in entry.get("skills", []):
            user_skills.append({
                "user_id": user_id,
                "skill_id": _resolve(skills, skill["skill"], "skill"),
                "skill_level": skill.get("level", 1),
                "source": "seed",
            })
    _upsert(db_path, "user_roles", role_links, counts)
    _upsert(db_path, "user_skills", user_skills, counts)


def load_seed(db_path: Path, path: Path = SEED_PATH) -> Dict[str, int]:
    """Load the demo fixture. Returns rows written per table."""
    init_database(db_path)
    data = _load_yaml(path)
    if not data:
        logger.warning("Seed file %s is missing or empty", path)
        return {}

    counts: Dict[str, int] = {}
    levels = data.get("level_definitions")
    if isinstance(levels, dict):
        _upsert(db_path, "level_definitions", level_rows(int(levels.get("up_to", 30))), counts)
    elif isinstance(levels, list):
        _upsert(db_path, "level_definitions", levels, counts)

    for section in PLAIN_SECTIONS:
        _upsert(db_path, section, data.get(section) or [], counts)
    _seed_quests(db_path, data.get("quests") or [], counts)

    skills = _lookup(db_path, "skills", "slug")
    _seed_opportunities(db_path, "jobs", "job_skills", "job_id", data.get("jobs") or [], skills, counts)
    _seed_opportunities(db_path, "gigs", "gig_skills", "gig_id", data.get("gigs") or [], skills, counts)
    _seed_courses(db_path, data.get("courses") or [], skills, counts)
    _seed_users(db_path, data.get("users") or [], skills, counts)

    logger.info("Seeded %s from %s", ", ".join(f"{t}={n}" for t, n in counts.items()), path)
    return counts


def get_seed_user_email(path: Path = SEED_PATH, role: Optional[str] = "admin") -> Optional[str]:
    """Email of the first seeded user holding `role`."""
    for entry in _load_yaml(path).get("users") or []:
        if role is None or role in entry.get("roles", []):
            return entry.get("email")
    return None
