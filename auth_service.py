"""
auth_service.py
---------------
Credential check against the user accounts collection and an explicit
session context for the HTTP layer.
"""

import logging
import secrets
import time
from typing import Dict, Optional, Tuple

from models import Role, effective_permissions

logger = logging.getLogger(__name__)

# Accepted only for accounts that have no stored password yet
DEFAULT_ROLE_PASSWORDS = {
    Role.ADMIN.value: "admin123",
    Role.SECRETARY.value: "sec123",
    Role.DOCTOR.value: "doc123",
    Role.ASSISTANT.value: "ast123",
}

SESSION_TTL_SECONDS = 12 * 60 * 60
MAX_SESSIONS = 1000


class AuthenticationError(Exception):
    """Unknown email or wrong password."""


def _same_secret(expected, given) -> bool:
    # compare_digest only accepts ASCII str, passwords may carry accents
    return secrets.compare_digest(str(expected).encode("utf-8"), (given or "").encode("utf-8"))


def _password_matches(user: Dict, password: str) -> bool:
    stored = user.get("password")
    if stored:
        return _same_secret(stored, password)
    default = DEFAULT_ROLE_PASSWORDS.get(user.get("role"))
    return bool(default) and _same_secret(default, password)


def with_effective_permissions(user: Dict) -> Dict:
    """Copy of the account with its permission list resolved (admins get everything)."""
    resolved = dict(user)
    resolved["permissions"] = sorted(p.value for p in effective_permissions(user))
    resolved["name"] = user.get("name") or "Utilisateur"
    return resolved


def without_password(user: Dict) -> Dict:
    return {k: v for k, v in user.items() if k != "password"}


async def login(data_service, email: str, password: str) -> Dict:
    """
    Checks credentials against the users collection.

    Returns:
        dict: The account with effective permissions applied.

    Raises:
        AuthenticationError: Unknown email or wrong password.
    """
    wanted = (email or "").strip().lower()
    users = await data_service.users.list()
    user = next((u for u in users if (u.get("email") or "").strip().lower() == wanted), None)

    if user is None or not _password_matches(user, password):
        logger.info(f"Failed login attempt for {wanted or '<empty>'}")
        raise AuthenticationError("Email ou mot de passe incorrect")

    logger.info(f"User {user.get('id')} logged in")
    return with_effective_permissions(user)


class SessionContext:
    """
    Holds the logged-in accounts by opaque token. Owned by the HTTP layer.

    Tokens expire after ttl_seconds; when max_sessions is reached the oldest
    session is dropped to make room for a new login.
    """

    def __init__(self, ttl_seconds: float = SESSION_TTL_SECONDS, max_sessions: int = MAX_SESSIONS,
                 clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: Dict[str, Tuple[Dict, float]] = {}

    def _prune(self) -> None:
        now = self._clock()
        for token in [t for t, (_, expires_at) in self._sessions.items() if expires_at <= now]:
            del self._sessions[token]
        while self._sessions and len(self._sessions) >= self.max_sessions:
            oldest = next(iter(self._sessions))
            logger.info("Session limit reached, dropping the oldest session")
            del self._sessions[oldest]

    async def login(self, data_service, email: str, password: str):
        user = await login(data_service, email, password)
        self._prune()
        token = secrets.token_urlsafe(32)
        self._sessions[token] = (user, self._clock() + self.ttl_seconds)
        return token, user

    def logout(self, token: Optional[str]) -> None:
        self._sessions.pop(token, None)

    def current_user(self, token: Optional[str]) -> Optional[Dict]:
        if not token:
            return None
        entry = self._sessions.get(token)
        if entry is None:
            return None
        user, expires_at = entry
        if expires_at <= self._clock():
            del self._sessions[token]
            return None
        return with_effective_permissions(user)

    def __len__(self):
        return len(self._sessions)
