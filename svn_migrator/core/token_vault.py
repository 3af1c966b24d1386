"""
Short-lived Redis storage for per-request GitLab tokens.

Task messages carry only an opaque reference; the worker resolves it when it
builds the job context. Entries expire on their own and are dropped once a run
finishes without a scheduled retry.
"""

from __future__ import annotations
import logging
import uuid
from typing import Optional
import redis
from svn_migrator.core.config import settings

log = logging.getLogger(__name__)

KEY_PREFIX = "gitlab_token:"


class TokenVault:
    def __init__(self, client: "redis.Redis | None" = None, ttl_seconds: int | None = None):
        self.client = client or redis.Redis.from_url(settings.redis_url, socket_timeout=2, socket_connect_timeout=2)
        self.ttl_seconds = ttl_seconds or settings.gitlab_token_ttl

    def stash(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        ref = uuid.uuid4().hex
        self.client.setex(KEY_PREFIX + ref, self.ttl_seconds, token)
        return ref

    def resolve(self, ref: Optional[str]) -> Optional[str]:
        if not ref:
            return None
        value = self.client.get(KEY_PREFIX + ref)
        if value is None:
            log.warning(f"GitLab token reference {ref[:8]} is unknown or expired")
            return None
        return value.decode() if isinstance(value, bytes) else value

    def discard(self, ref: Optional[str]) -> None:
        if ref:
            self.client.delete(KEY_PREFIX + ref)
