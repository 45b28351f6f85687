"""
LevelUp Audit Chain

Hash-chained log of administrative mutations: manual balance adjustments,
referral approvals, payout maturation, generic table upserts/deletes and
opportunity removals. Every entry carries the hash of the previous one, so
editing or removing a row breaks `verify_chain`.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import get_db_path
from .db import utcnow

logger = logging.getLogger(__name__)


def _entry_hash(entry: Dict[str, Any]) -> str:
    body = json.dumps(entry, sort_keys=True, separators=(",", ":"), default=str).encode()
    return hashlib.sha256(body).hexdigest()


class AuditChain:
    """Append-only audit log. Every entry references the previous hash."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or get_db_path()
        self._init_db()

    def _init_db(self) -> None:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_chain (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                action TEXT NOT NULL,
                actor_id TEXT,
                target_table TEXT,
                target_id TEXT,
                details TEXT NOT NULL,
                prev_hash TEXT,
                hash TEXT NOT NULL
            )
            """
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_target ON audit_chain(target_table, target_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_chain(action)")
        conn.commit()
        conn.close()

    def record(
        self,
        action: str,
        actor_id: Optional[str],
        details: Dict[str, Any],
        target_table: Optional[str] = None,
        target_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute("SELECT hash FROM audit_chain ORDER BY id DESC LIMIT 1").fetchone()
            entry = {
                "timestamp": utcnow(),
                "action": action,
                "actor_id": actor_id,
                "target_table": target_table,
                "target_id": None if target_id is None else str(target_id),
                "details": details,
                "prev_hash": row[0] if row else None,
            }
            entry["hash"] = _entry_hash(entry)
            conn.execute(
                """
                INSERT INTO audit_chain (timestamp, action, actor_id, target_table, target_id,
                                         details, prev_hash, hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (entry["timestamp"], action, actor_id, target_table, entry["target_id"],
                 json.dumps(details, sort_keys=True, default=str), entry["prev_hash"], entry["hash"]),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("audit %s by %s on %s/%s", action, actor_id, target_table, target_id)
        return entry

    def list_entries(
        self,
        target_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            if target_id is not None:
                rows = conn.execute(
                    "SELECT * FROM audit_chain WHERE target_id = ? ORDER BY id DESC LIMIT ? OFFSET ?",
                    (str(target_id), limit, offset),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM audit_chain ORDER BY id DESC LIMIT ? OFFSET ?",
                    (limit, offset),
                ).fetchall()
        finally:
            conn.close()
        out = []
        for row in rows:
            entry = dict(row)
            entry["details"] = json.loads(entry["details"])
            out.append(entry)
        return out

    def verify_chain(self) -> bool:
        """Recompute every hash in insertion order."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            rows = conn.execute("SELECT * FROM audit_chain ORDER BY id ASC").fetchall()
        finally:
            conn.close()

        prev_hash = None
        for row in rows:
            if row["prev_hash"] != prev_hash:
                return False
            check = {
                "timestamp": row["timestamp"],
                "action": row["action"],
                "actor_id": row["actor_id"],
                "target_table": row["target_table"],
                "target_id": row["target_id"],
                "details": json.loads(row["details"]),
                "prev_hash": row["prev_hash"],
            }
            if _entry_hash(check) != row["hash"]:
                return False
            prev_hash = row["hash"]
        return True
