"""
Identity provider and the explicit authentication context.

Every workflow operation takes an ``AuthContext`` argument instead of reading
ambient state. A context exists only between sign-in and sign-out: signing
out revokes the session, and tokens for revoked sessions stop resolving.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import threading
import time
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt

from hr_portal.errors import AuthenticationError
from hr_portal.models import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """Who is calling. Immutable for the lifetime of a session."""

    user_id: str
    role: Role
    email: str = ""
    name: str = ""
    session_id: str = ""

    @property
    def is_reviewer(self) -> bool:
        return self.role is Role.ADMIN

    def identity(self) -> dict[str, str]:
        return {"id": self.user_id, "role": self.role.value}


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    expires_at: datetime
    context: AuthContext
    token_type: str = "bearer"


def _prepare_password(password: str) -> bytes:
    """bcrypt only looks at the first 72 bytes; pre-hash anything longer."""
    encoded = password.encode("utf-8")
    if len(encoded) > 71:
        return hashlib.sha256(encoded).hexdigest().encode("ascii")
    return encoded


def hash_password(password: str, rounds: int = 12) -> bytes:
    return bcrypt.hashpw(_prepare_password(password), bcrypt.gensalt(rounds=rounds))


def verify_password(password: str, hashed: bytes) -> bool:
    if not password or not hashed:
        return False
    return bcrypt.checkpw(_prepare_password(password), hashed)


class IdentityProvider:
    """
    Authenticates credentials and issues sessions.

    Sessions are HS256 JWTs carrying the user id, role and a session id.
    The session id must also be present in the registry for the token to
    resolve, which is what makes sign-out effective before the JWT expires.

    The registry is bounded:
    - sessions idle longer than ``session_ttl_seconds`` are dropped
    - beyond ``max_sessions`` the least recently used session is dropped
    """

    def __init__(
        self,
        profiles: Mapping[str, Mapping[str, Any]],
        *,
        secret_key: str,
        algorithm: str = "HS256",
        token_ttl_minutes: int = 480,
        max_sessions: int = 1000,
        session_ttl_seconds: int = 28800,
        bcrypt_rounds: int = 12,
    ):
        if not secret_key:
            raise ValueError("secret_key cannot be empty")

        self.secret_key = secret_key
        self.algorithm = algorithm
        self.token_ttl = timedelta(minutes=token_ttl_minutes)
        self.max_sessions = max_sessions
        self.session_ttl_seconds = session_ttl_seconds

        self._profiles: dict[str, dict[str, Any]] = {}
        self._password_hashes: dict[str, bytes] = {}
        self._by_email: dict[str, str] = {}
        for user_id, profile in profiles.items():
            self._profiles[user_id] = {k: v for k, v in profile.items() if k != "password"}
            self._password_hashes[user_id] = hash_password(profile["password"], bcrypt_rounds)
            self._by_email[profile["email"].lower()] = user_id

        # sid -> {"ts": last access, "user_id": owner}
        self._sessions: OrderedDict[str, dict[str, Any]] = OrderedDict()
        self._lock = threading.Lock()

        logger.info("IdentityProvider initialized with %d identities", len(self._profiles))

    def sign_in(self, email: str, password: str) -> AuthSession:
        """
        Check credentials and open a session.

        Raises:
            AuthenticationError: Unknown email or wrong password.
        """
        user_id = self._by_email.get((email or "").strip().lower())
        if user_id is None or not verify_password(password, self._password_hashes[user_id]):
            logger.warning("Sign-in rejected for %s", email)
            raise AuthenticationError("Invalid email or password")

        session_id = secrets.token_urlsafe(16)
        now = datetime.now(timezone.utc)
        expires_at = now + self.token_ttl
        profile = self._profiles[user_id]

        token = jwt.encode(
            {
                "sub": user_id,
                "role": profile["role"],
                "sid": session_id,
                "iat": now,
                "exp": expires_at,
            },
            self.secret_key,
            algorithm=self.algorithm,
        )

        with self._lock:
            self._prune_sessions()
            self._sessions[session_id] = {"ts": time.time(), "user_id": user_id}
            while len(self._sessions) > self.max_sessions:
                self._sessions.popitem(last=False)

        logger.info("Session started for %s (role=%s)", user_id, profile["role"])
        return AuthSession(
            access_token=token,
            expires_at=expires_at,
            context=self._context_for(user_id, session_id),
        )

    def resolve(self, token: str | None) -> AuthContext:
        """
        Turn a bearer token into an ``AuthContext``.

        Raises:
            AuthenticationError: Missing, malformed, expired or revoked token.
        """
        if not token:
            raise AuthenticationError("Not signed in")

        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Session expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid session token") from e

        session_id = claims.get("sid")
        user_id = claims.get("sub")
        with self._lock:
            self._prune_sessions()
            session = self._sessions.get(session_id)
            if session is None or session["user_id"] != user_id:
                raise AuthenticationError("Session is no longer active")
            session["ts"] = time.time()
            self._sessions.move_to_end(session_id)

        return self._context_for(user_id, session_id)

    def sign_out(self, context: AuthContext) -> None:
        """End the session behind ``context``. Signing out twice is harmless."""
        with self._lock:
            self._sessions.pop(context.session_id, None)
        logger.info("Session ended for %s", context.user_id)

    def active_session_count(self) -> int:
        with self._lock:
            self._prune_sessions()
            return len(self._sessions)

    def _context_for(self, user_id: str, session_id: str) -> AuthContext:
        profile = self._profiles.get(user_id)
        if profile is None:
            raise AuthenticationError("Unknown identity")
        return AuthContext(
            user_id=user_id,
            role=Role(profile["role"]),
            email=profile["email"],
            name=profile.get("name", ""),
            session_id=session_id,
        )

    def _prune_sessions(self) -> None:
        """Drop idle sessions. Caller holds the lock."""
        now = time.time()
        expired = [
            sid for sid, meta in self._sessions.items() if now - meta["ts"] > self.session_ttl_seconds
        ]
        for sid in expired:
            del self._sessions[sid]
