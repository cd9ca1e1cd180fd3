"""
Expiry-aware in-memory token cache.

Tokens are keyed by ``(client_id, tenant_id, audience)`` so a cached token
can never be handed to a different identity or a different API. Entries
that are expired, or will expire within ``skew_seconds``, are evicted on
read instead of being returned.

The cache is opt-in. Without it, every logical operation fetches a fresh
token from the identity provider.

Example:
    cache = TokenCache(skew_seconds=120)
    provider = ClientSecretCredentialProvider(config, resolver, cache=cache)
    provider.get_token(GRAPH_DEFAULT_SCOPE)   # network round trip
    provider.get_token(GRAPH_DEFAULT_SCOPE)   # served from cache
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, NamedTuple

from fabric_notify.auth.scopes import audience_of

if TYPE_CHECKING:
    from fabric_notify.auth.tokens import AccessToken


class CacheKey(NamedTuple):
    client_id: str
    tenant_id: str
    audience: str

    @classmethod
    def for_scope(cls, client_id: str, tenant_id: str, scope: str) -> CacheKey:
        return cls(client_id.lower(), tenant_id.lower(), audience_of(scope))


class TokenCache:
    """Thread-safe token cache with expiry-aware invalidation.

    Attributes:
        skew_seconds: Tokens expiring within this window count as expired.
        max_size: Oldest entry is dropped once this many keys are held.
    """

    def __init__(self, *, skew_seconds: int = 60, max_size: int = 64):
        self._store: dict[CacheKey, AccessToken] = {}
        self._lock = threading.Lock()
        self.skew_seconds = skew_seconds
        self.max_size = max_size

    @staticmethod
    def key_for(client_id: str, tenant_id: str, scope: str) -> CacheKey:
        return CacheKey.for_scope(client_id, tenant_id, scope)

    def get(self, key: CacheKey) -> AccessToken | None:
        """Return a still-valid token for ``key`` or ``None``."""
        with self._lock:
            token = self._store.get(key)
            if token is None:
                return None
            if token.is_expired(skew_seconds=self.skew_seconds):
                del self._store[key]
                return None
            return token

    def put(self, key: CacheKey, token: AccessToken) -> None:
        """Store ``token`` under ``key``, replacing any previous entry."""
        with self._lock:
            if key not in self._store and len(self._store) >= self.max_size:
                # dicts keep insertion order; first key is the oldest
                oldest = next(iter(self._store))
                del self._store[oldest]
            self._store[key] = token

    def invalidate(self, key: CacheKey) -> None:
        """Drop ``key``. No-op when absent."""
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._store)
