"""
LevelUp Authentication

Employees sign in with email and password. Password hashes are libsodium
argon2id strings (PyNaCl); nothing reversible is stored. A successful
login issues a short-lived HMAC-SHA256 JWT signed with a per-install
secret kept in a 0600 file.

Usage:
    from levelup.auth import UserAuth

    auth = UserAuth(db_path)
    user = auth.register("dana@corp.example", "s3cret-pass", "Dana")
    result = auth.authenticate("dana@corp.example", "s3cret-pass")
    payload = auth.verify_jwt(result.token)
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import nacl.pwhash
from nacl.exceptions import InvalidkeyError

from .config import JWT_SECRET_FILE, JWT_TTL_HOURS, get_admin_allowlist, get_db_path
from .db import connect, init_database, new_id, utcnow
from .errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
ADMIN_ROLE_CODE = "admin"

PUBLIC_USER_COLUMNS = (
    "id, email, display_name, headline, department, role_title, avatar_url, "
    "current_level, current_xp, coins_balance, onboarded_at, is_active"
)


def hash_password(password: str) -> str:
    return nacl.pwhash.argon2id.str(
        password.encode(),
        opslimit=nacl.pwhash.argon2id.OPSLIMIT_INTERACTIVE,
        memlimit=nacl.pwhash.argon2id.MEMLIMIT_INTERACTIVE,
    ).decode()


def verify_password(password_hash: Optional[str], password: str) -> bool:
    if not password_hash:
        return False
    try:
        return nacl.pwhash.verify(password_hash.encode(), password.encode())
    except InvalidkeyError:
        return False


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _unb64url(s: str) -> bytes:
    return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))


@dataclass
class AuthResult:
    """Result of a login attempt."""
    success: bool
    token: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    expires_at: Optional[str] = None


class UserAuth:
    """Password accounts and JWT sessions."""

    def __init__(self, db_path: Optional[Path] = None, secret_file: Optional[Path] = None):
        self.db_path = db_path or get_db_path()
        self.secret_file = secret_file or JWT_SECRET_FILE
        init_database(self.db_path)
        self._jwt_secret = self._load_or_create_jwt_secret()

    def _load_or_create_jwt_secret(self) -> bytes:
        self.secret_file.parent.mkdir(parents=True, exist_ok=True)
        if self.secret_file.exists():
            return self.secret_file.read_bytes()
        secret = secrets.token_bytes(32)
        self.secret_file.write_bytes(secret)
        self.secret_file.chmod(0o600)
        return secret

    # --- Accounts ---

    def register(self, email: str, password: str, display_name: str = "") -> Dict[str, Any]:
        """Create an employee account.

        Raises:
            ValidationError: malformed email or short password
            ConflictError: email already registered
        """
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError("A valid email is required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        user_id = new_id()
        now = utcnow()
        try:
            with connect(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO users (id, email, password_hash, display_name, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (user_id, email, hash_password(password),
                     display_name.strip() or email.split("@")[0], now, now),
                )
        except sqlite3.IntegrityError:
            raise ConflictError(f"Email already registered: {email}")

        logger.info("registered user %s", user_id)
        return self.get_user(user_id)

    def set_password(self, user_id: str, password: str) -> None:
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        with connect(self.db_path) as conn:
            conn.execute(
                "UPDATE users SET password_hash=?, updated_at=? WHERE id=?",
                (hash_password(password), utcnow(), user_id),
            )

    def authenticate(self, email: str, password: str) -> AuthResult:
        email = (email or "").strip().lower()
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT id, password_hash, is_active FROM users WHERE email=?", (email,)
            ).fetchone()
        if not row or not row["is_active"] or not verify_password(row["password_hash"], password):
            logger.warning("failed login for %s", email)
            return AuthResult(success=False, error="Invalid email or password")

        expires_at = datetime.now(timezone.utc) + timedelta(hours=JWT_TTL_HOURS)
        token = self._create_jwt(row["id"], email, expires_at)
        return AuthResult(
            success=True,
            token=token,
            user=self.get_user(row["id"]),
            expires_at=expires_at.isoformat(),
        )

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with connect(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {PUBLIC_USER_COLUMNS} FROM users WHERE id=? AND is_active=1", (user_id,)
            ).fetchone()
        return dict(row) if row else None

    def is_admin(self, user: Dict[str, Any]) -> bool:
        """Allowlisted by id or email; with no allowlist, holders of the admin role."""
        allowlist = get_admin_allowlist()
        if allowlist:
            return user["id"] in allowlist or (user.get("email") or "").lower() in allowlist
        with connect(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT 1 FROM user_roles ur JOIN roles r ON r.id = ur.role_id
                WHERE ur.user_id=? AND r.code=?
                """,
                (user["id"], ADMIN_ROLE_CODE),
            ).fetchone()
        return row is not None

    # --- JWT ---

    def _create_jwt(self, user_id: str, email: str, expires_at: datetime) -> str:
        """Create simple HMAC-signed JWT."""
        header = {"alg": "HS256", "typ": "JWT"}
        payload = {
            "sub": user_id,
            "email": email,
            "exp": int(expires_at.timestamp()),
            "iat": int(time.time()),
        }
        message = f"{_b64url(json.dumps(header).encode())}.{_b64url(json.dumps(payload).encode())}"
        signature = hmac.new(self._jwt_secret, message.encode(), hashlib.sha256).digest()
        return f"{message}.{_b64url(signature)}"

    def verify_jwt(self, token: str) -> Optional[dict]:
        """Verify JWT and return payload if valid."""
        parts = (token or "").split(".")
        if len(parts) != 3:
            return None
        header_b64, payload_b64, signature_b64 = parts
        message = f"{header_b64}.{payload_b64}"
        expected = hmac.new(self._jwt_secret, message.encode(), hashlib.sha256).digest()
        try:
            actual = _unb64url(signature_b64)
            payload = json.loads(_unb64url(payload_b64))
        except (ValueError, TypeError):
            return None
        if not hmac.compare_digest(expected, actual) or not isinstance(payload, dict):
            return None
        if payload.get("exp", 0) < time.time():
            return None
        return payload
