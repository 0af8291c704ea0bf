"""Storage for the current public key set of a key source.

Implementations:
- InMemoryKeyStore: per-process storage (default)
- RedisKeyStore: shared storage via Redis, so a fleet of processes can reuse
  one fetched set

Both replace the stored set wholesale; nothing is mutated in place.
"""

from __future__ import annotations

import json
import math
import time
from typing import TYPE_CHECKING, Any

from .errors import AuthErrorCode, RuntimeFailure

if TYPE_CHECKING:
    from .key_providers.google_certs import PublicKeySet
    from .protocols import Clock


class InMemoryKeyStore:
    """In-process storage for one key set.

    Rebinding a single attribute is atomic, so readers always see either the
    old or the new set.
    """

    def __init__(self) -> None:
        self._key_set: PublicKeySet | None = None

    def get(self) -> PublicKeySet | None:
        return self._key_set

    def set(self, key_set: PublicKeySet) -> None:
        self._key_set = key_set


class RedisKeyStore:
    """Redis-backed storage for one key set.

    The set is stored as JSON (certificates, expiry and refresh instant)
    under ``key`` with a Redis TTL matching its remaining lifetime.

    Example:
        ```python
        import redis

        client = redis.Redis(host="localhost", port=6379)
        keys = KeyManagers(
            store_factory=lambda url: RedisKeyStore(client, key=f"certs:{url}")
        )
        ```

    Attributes:
        _client: Redis client; must support ``get()`` and ``setex()``.
        _key: Redis key the set is stored under.
    """

    def __init__(self, redis_client: Any, key: str, *, clock: Clock = time.time) -> None:
        """Initialize the store.

        Args:
            redis_client: Any redis-py compatible client (redis, fakeredis, ...).
            key: Redis key to store the set under.
            clock: Current time in seconds, used to compute the TTL.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key cannot be empty")
        self._client = redis_client
        self._key = key
        self._clock = clock

    def get(self) -> PublicKeySet | None:
        """Load the stored set.

        Raises:
            RuntimeFailure: If the stored data cannot be deserialized.
        """
        from .key_providers.google_certs import PublicKeySet

        data = self._client.get(self._key)
        if data is None:
            return None

        try:
            obj = json.loads(data)
            expires_at = float(obj["expires_at"])
            return PublicKeySet.from_certificates(
                obj["certificates"],
                expires_at=expires_at,
                refresh_at=float(obj.get("refresh_at", expires_at)),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise RuntimeFailure(
                AuthErrorCode.INTERNAL_ERROR, "Failed to deserialize cached key set"
            ) from e

    def set(self, key_set: PublicKeySet) -> None:
        ttl = max(1, math.ceil(key_set.expires_at - self._clock()))
        payload = {
            "certificates": dict(key_set.certificates),
            "expires_at": key_set.expires_at,
            "refresh_at": key_set.refresh_at,
        }
        self._client.setex(self._key, ttl, json.dumps(payload))
