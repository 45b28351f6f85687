"""
LevelUp Rate Limiter: sliding windows over a SQLite event log.

Keys are user ids for authenticated actions and client IPs for the
request middleware and the public careers page.
"""
import time
from pathlib import Path
from typing import Dict, Tuple

from levelup.config import (
    RATE_LIMIT_POSTS_PER_HOUR,
    RATE_LIMIT_REFERRALS_PER_HOUR,
    RATE_LIMIT_REQUESTS_PER_MINUTE,
)
from levelup.db import connect

# event type -> (window seconds, max events in window)
WINDOWS: Dict[str, Tuple[int, int]] = {
    "request": (60, RATE_LIMIT_REQUESTS_PER_MINUTE),
    "post": (3600, RATE_LIMIT_POSTS_PER_HOUR),
    "referral": (3600, RATE_LIMIT_REFERRALS_PER_HOUR),
}
RETENTION_SECONDS = 86400


class RateLimiter:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        with connect(self.db_path) as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS rate_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    ts REAL NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_rate_events_key ON rate_events(key, event_type, ts);
                """
            )

    def check(self, key: str, event_type: str) -> dict:
        window, limit = WINDOWS[event_type]
        with connect(self.db_path) as conn:
            count = conn.execute(
                "SELECT COUNT(*) FROM rate_events WHERE key=? AND event_type=? AND ts>?",
                (key, event_type, time.time() - window),
            ).fetchone()[0]
        allowed = count < limit
        return {"allowed": allowed, "count": count, "limit": limit,
                "retry_after": None if allowed else window}

    def record(self, key: str, event_type: str) -> None:
        now = time.time()
        with connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO rate_events (key, event_type, ts) VALUES (?, ?, ?)",
                (key, event_type, now),
            )
            conn.execute("DELETE FROM rate_events WHERE ts < ?", (now - RETENTION_SECONDS,))

    def check_ip(self, ip: str) -> dict:
        return self.check(ip, "request")

    def check_post(self, user_id: str) -> dict:
        return self.check(user_id, "post")

    def check_referral(self, ip: str) -> dict:
        return self.check(ip, "referral")
