"""
LevelUp rewards ledger.

Every XP or coin movement is one `xp_transactions` row plus an increment
of the user's running balances. The stored `current_level` is always
recomputed from `current_xp` so it can never drift from the curve.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import get_db_path
from .db import connect, insert_feed_event, new_id, row_to_dict, utcnow
from .errors import NotFoundError, ValidationError
from .gamification import calculate_level, level_summary
from .models import FeedEventType, RewardResult, XpSourceType
from .witness import AuditChain

logger = logging.getLogger(__name__)

ConnOrPath = Union[sqlite3.Connection, Path]


def _value(v):
    return getattr(v, "value", v)


def _award(
    conn: sqlite3.Connection,
    user_id: str,
    xp: int,
    coins: int,
    source_type: str,
    source_id: Optional[str],
    source_label: Optional[str],
    metadata: Optional[dict],
    created_by: Optional[str],
) -> RewardResult:
    user = conn.execute(
        "SELECT current_xp, coins_balance, current_level FROM users WHERE id=?", (user_id,)
    ).fetchone()
    if not user:
        raise NotFoundError(f"User not found: {user_id}")

    old_level = int(user["current_level"] or 1)
    new_xp = int(user["current_xp"] or 0) + int(xp)
    new_coins = int(user["coins_balance"] or 0) + int(coins)
    new_level = calculate_level(new_xp).level
    now = utcnow()

    conn.execute(
        """
        INSERT INTO xp_transactions (id, user_id, source_type, source_id, source_label,
                                     xp_amount, coin_amount, created_by, metadata, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (new_id(), user_id, _value(source_type), source_id, source_label, int(xp), int(coins),
         created_by, _json(metadata), now),
    )
    conn.execute(
        "UPDATE users SET current_xp=?, coins_balance=?, current_level=?, updated_at=? WHERE id=?",
        (new_xp, new_coins, new_level, now, user_id),
    )
    if new_level != old_level:
        insert_feed_event(
            conn, FeedEventType.LEVEL_UP,
            actor_user_id=user_id,
            entity_table="users", entity_id=user_id,
            payload={"old_level": old_level, "new_level": new_level},
        )
        logger.info("user %s leveled %d -> %d", user_id, old_level, new_level)

    return RewardResult(
        user_id=user_id,
        xp_awarded=int(xp),
        coins_awarded=int(coins),
        new_xp=new_xp,
        new_coins=new_coins,
        old_level=old_level,
        new_level=new_level,
    )


def _json(metadata: Optional[dict]) -> str:
    return json.dumps(metadata or {}, default=str)


def award(
    conn_or_path: ConnOrPath,
    user_id: str,
    xp: int = 0,
    coins: int = 0,
    source_type: str = XpSourceType.OTHER,
    source_id: Optional[str] = None,
    source_label: Optional[str] = None,
    metadata: Optional[dict] = None,
    created_by: Optional[str] = None,
) -> RewardResult:
    """Credit (or debit) XP and coins and log the transaction.

    Given an open connection the write joins the caller's transaction;
    given a path it runs in its own.
    """
    args = (user_id, xp, coins, source_type, source_id, source_label, metadata, created_by)
    if isinstance(conn_or_path, sqlite3.Connection):
        return _award(conn_or_path, *args)
    with connect(conn_or_path) as conn:
        return _award(conn, *args)


class RewardLedger:
    """Admin-facing ledger operations. Adjustments are written to the audit chain."""

    KINDS = ("xp", "coins")

    def __init__(self, db_path: Optional[Path] = None, audit: Optional[AuditChain] = None):
        self.db_path = db_path or get_db_path()
        self.audit = audit or AuditChain(self.db_path)

    def manual_reward_update(
        self,
        user_id: str,
        amount: int,
        kind: str,
        reason: str,
        admin_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Add `amount` (may be negative) to a user's XP or coins.

        The resulting balance never goes below zero, so the logged
        transaction carries the delta actually applied.
        """
        if kind not in self.KINDS:
            raise ValidationError(f"Unknown reward kind: {kind}")
        amount = int(amount)

        with connect(self.db_path) as conn:
            user = conn.execute(
                "SELECT current_xp, coins_balance FROM users WHERE id=?", (user_id,)
            ).fetchone()
            if not user:
                raise NotFoundError(f"User not found: {user_id}")

            column = "current_xp" if kind == "xp" else "coins_balance"
            current = int(user[column] or 0)
            applied = max(0, current + amount) - current

            result = _award(
                conn, user_id,
                xp=applied if kind == "xp" else 0,
                coins=applied if kind == "coins" else 0,
                source_type=XpSourceType.ADMIN_ADJUSTMENT,
                source_id=None,
                source_label=reason or "Manual adjustment",
                metadata={"requested": amount, "kind": kind},
                created_by=admin_id,
            )
            insert_feed_event(
                conn, FeedEventType.ADMIN_ADJUSTMENT,
                actor_user_id=admin_id, subject_user_id=user_id,
                entity_table="users", entity_id=user_id,
                payload={"kind": kind, "amount": applied, "reason": reason},
                visibility="private",
            )

        self.audit.record(
            "manual_reward_update", admin_id,
            {"kind": kind, "requested": amount, "applied": applied, "reason": reason},
            target_table="users", target_id=user_id,
        )
        return {"success": True, "applied": applied, **result.to_dict()}

    def list_transactions(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM xp_transactions WHERE user_id=? ORDER BY created_at DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [row_to_dict(r) for r in rows]

    def wallet(self, user_id: str) -> Dict[str, Any]:
        with connect(self.db_path) as conn:
            user = conn.execute(
                "SELECT id, display_name, current_xp, coins_balance FROM users WHERE id=?",
                (user_id,),
            ).fetchone()
        if not user:
            raise NotFoundError(f"User not found: {user_id}")
        return {
            "user_id": user["id"],
            "display_name": user["display_name"],
            "coins_balance": int(user["coins_balance"] or 0),
            "level": level_summary(int(user["current_xp"] or 0)),
            "transactions": self.list_transactions(user_id, limit=20),
        }
