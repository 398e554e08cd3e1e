"""Access token resolution and per-user rate limiting."""

from __future__ import annotations

import hmac
import time
from collections import defaultdict

from sparkcloud.config import AuthConfig
from sparkcloud.utils.logging import get_logger

log = get_logger(__name__)


class AuthManager:
    def __init__(self, config: AuthConfig) -> None:
        self._config = config
        # Rate limiting: user_id -> list of timestamps
        self._rate_log: dict[str, list[float]] = defaultdict(list)
        self._rate_limit = config.rate_limit_per_minute

    def authenticate(self, token: str) -> str | None:
        """Return the user owning ``token``, or None."""
        if not token:
            return None
        for known, user_id in self._config.access_tokens.items():
            if hmac.compare_digest(known, token):
                return user_id
        return None

    def check_rate_limit(self, user_id: str) -> bool:
        """Check if user is within rate limit. Returns True if allowed."""
        now = time.time()
        window_start = now - 60.0

        # Prune old entries
        self._rate_log[user_id] = [t for t in self._rate_log[user_id] if t > window_start]

        if len(self._rate_log[user_id]) >= self._rate_limit:
            log.warning("rate_limit_exceeded", user_id=user_id)
            return False

        self._rate_log[user_id].append(now)
        return True
