"""
LevelUp Configuration: all environment-driven settings in one place.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import List, Set

# --- Database ---
DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "levelup.db"


def get_db_path() -> Path:
    raw = os.environ.get("LEVELUP_DB_PATH")
    return Path(raw) if raw else DEFAULT_DB_PATH


# --- Admin allowlist ---
def get_admin_allowlist() -> Set[str]:
    """User ids or emails allowed into the admin screens.

    Emails are compared case-insensitively. An empty allowlist falls back to
    the `admin` role in `user_roles`.
    """
    raw = os.environ.get("LEVELUP_ADMIN_ALLOWLIST", "")
    entries = [e.strip() for e in raw.split(",") if e.strip()]
    return {e.lower() if "@" in e else e for e in entries}


# --- Rate limits ---
RATE_LIMIT_REQUESTS_PER_MINUTE = int(os.environ.get("LEVELUP_RATE_REQUESTS_MIN", "120"))
RATE_LIMIT_POSTS_PER_HOUR = int(os.environ.get("LEVELUP_RATE_POSTS_HOUR", "10"))
RATE_LIMIT_REFERRALS_PER_HOUR = int(os.environ.get("LEVELUP_RATE_REFERRALS_HOUR", "5"))

# --- Rewards ---
ONBOARDING_XP_REWARD = int(os.environ.get("LEVELUP_ONBOARDING_XP", "500"))
ONBOARDING_COIN_REWARD = int(os.environ.get("LEVELUP_ONBOARDING_COINS", "100"))
DEFAULT_COURSE_XP = 50
REFERRAL_MATURITY_DAYS = int(os.environ.get("LEVELUP_REFERRAL_MATURITY_DAYS", "90"))
DEFAULT_RECRUITER_EMAIL = os.environ.get("LEVELUP_RECRUITER_EMAIL", "hr@levelup.local")

# --- CORS ---
DEV_CORS_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]


def get_cors_origins() -> List[str]:
    raw = os.environ.get("LEVELUP_CORS_ORIGINS", "")
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or list(DEV_CORS_ORIGINS)


# --- Public links ---
PUBLIC_BASE_URL = os.environ.get("LEVELUP_PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")

# --- Logging ---
LOG_LEVEL = os.environ.get("LEVELUP_LOG_LEVEL", "INFO").upper()

# --- JWT ---
JWT_SECRET_FILE = Path(os.environ.get(
    "LEVELUP_JWT_SECRET",
    str(Path(__file__).parent.parent / "data" / ".jwt_secret"),
))
JWT_TTL_HOURS = int(os.environ.get("LEVELUP_JWT_TTL_HOURS", "12"))

LEVELUP_VERSION = "0.3.0"
