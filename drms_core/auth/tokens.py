# =============================================================================
# drms_core/auth/tokens.py
# Bearer Token Store
# =============================================================================
"""
In-memory bearer token store for the REST API.

Tokens are opaque random strings mapped to the Principal that logged in,
with a fixed time-to-live.
"""

from __future__ import annotations
import secrets
import threading
import time
from typing import Dict, Optional, Tuple

from drms_core.auth.principal import Principal
from drms_core.errors import AuthenticationError
from drms_core.logging import get_logger

logger = get_logger(__name__)


class TokenStore:
    """Issues, validates and revokes bearer tokens."""

    def __init__(self, ttl_seconds: int = 8 * 3600):
        self.ttl_seconds = ttl_seconds
        self._tokens: Dict[str, Tuple[Principal, float]] = {}
        self._lock = threading.Lock()

    def issue(self, principal: Principal) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._tokens[token] = (principal, time.time() + self.ttl_seconds)
        logger.info(f"Issued token for user {principal.username}")
        return token

    def resolve(self, token: Optional[str]) -> Principal:
        """
        Return the Principal for a token.

        Raises:
            AuthenticationError: unknown or expired token
        """
        if not token:
            raise AuthenticationError("Missing bearer token")

        with self._lock:
            entry = self._tokens.get(token)
            if entry is None:
                raise AuthenticationError("Invalid token")
            principal, expires_at = entry
            if time.time() > expires_at:
                del self._tokens[token]
                raise AuthenticationError("Token expired")
        return principal

    def revoke(self, token: str) -> bool:
        with self._lock:
            return self._tokens.pop(token, None) is not None

    def purge_expired(self) -> int:
        now = time.time()
        with self._lock:
            expired = [t for t, (_, exp) in self._tokens.items() if exp < now]
            for token in expired:
                del self._tokens[token]
        return len(expired)
