"""
Public key source backed by an X.509 certificate endpoint.

The identity backend publishes its token-signing keys as a JSON object
mapping key id to a PEM certificate, and rotates them regularly. The HTTP
caching headers of that response say how long the set may be used.

Refresh Strategy
----------------
Each fetched set records when it expires and when it should be refreshed.
By default the two coincide: a set is replaced only after it expires. With
a ``refresh_skew`` the refresh instant moves that many seconds earlier, but
never before halfway through the set's lifetime, so a short-lived set is
still served from cache for most of its window.

For each `get_keys()` call:

1) Fresh set (fast path)
    - Stored set has not reached its refresh instant -> return it, no I/O.

2) Stale but still valid (only with a refresh skew)
    - Past the refresh instant the caller refreshes, unless another
      thread is already doing so, in which case the stored set is returned.

3) Nothing valid stored
    - Callers queue on the refresh lock; the first one fetches, the others
      see the new set when they get the lock.

4) Failed fetch
    - The previous set stays authoritative until it expires.
    - With nothing valid left, a RuntimeFailure propagates.

Notes
-----
- The lock is per process. `RedisKeyStore` shares fetched sets between
  processes, but each process may still fetch on its own.
- Key sets are replaced wholesale, never mutated.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final

import httpx
from cryptography import x509

from ..cache_stores import InMemoryKeyStore
from ..config import DEFAULT_HTTP_TIMEOUT_SECONDS
from ..errors import AuthErrorCode, ErrorCode, HttpResponseInfo, RuntimeFailure

if TYPE_CHECKING:
    from ..protocols import Clock, KeyStore

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SKEW_SECONDS: Final[float] = 0.0
"""Sets are refreshed once expired unless an early-refresh skew is given."""


def refresh_instant(fetched_at: float, expires_at: float, refresh_skew: float) -> float:
    """When a set fetched at ``fetched_at`` should be refreshed.

    ``refresh_skew`` before expiry, capped at half the set's lifetime.
    """
    lifetime = max(0.0, expires_at - fetched_at)
    return expires_at - min(refresh_skew, lifetime / 2)


@dataclass(frozen=True, slots=True)
class PublicKeySet:
    """Immutable set of public keys with the instant it stops being valid.

    Attributes:
        certificates: Key id -> PEM certificate, as published.
        keys: Key id -> public key extracted from the certificate.
        expires_at: Unix timestamp after which the set must not be used.
        refresh_at: Unix timestamp from which a refresh is attempted.
            Never later than ``expires_at``.
    """

    certificates: Mapping[str, str]
    keys: Mapping[str, Any] = field(repr=False)
    expires_at: float
    refresh_at: float

    @classmethod
    def from_certificates(
        cls,
        certificates: Mapping[str, str],
        *,
        expires_at: float,
        refresh_at: float | None = None,
    ) -> PublicKeySet:
        """Parse a key id -> PEM certificate mapping.

        Args:
            certificates: Key id -> PEM certificate.
            expires_at: Unix timestamp after which the set must not be used.
            refresh_at: Unix timestamp from which to refresh; defaults to
                ``expires_at`` and is clamped to it.

        Raises:
            ValueError: If an entry is not a string or not a PEM certificate.
        """
        keys: dict[str, Any] = {}
        for kid, pem in certificates.items():
            if not isinstance(kid, str) or not isinstance(pem, str):
                raise ValueError(f"Invalid certificate entry for key id {kid!r}")
            cert = x509.load_pem_x509_certificate(pem.encode("utf-8"))
            keys[kid] = cert.public_key()
        return cls(
            certificates=MappingProxyType(dict(certificates)),
            keys=MappingProxyType(keys),
            expires_at=expires_at,
            refresh_at=expires_at if refresh_at is None else min(refresh_at, expires_at),
        )

    def is_fresh(self, now: float) -> bool:
        return now < self.refresh_at

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def items(self) -> Iterator[tuple[str, Any]]:
        return iter(self.keys.items())

    def __len__(self) -> int:
        return len(self.keys)


def cache_lifetime(headers: Mapping[str, str], now: float) -> float:
    """Seconds a response may be cached, from its caching headers.

    ``Cache-Control: max-age`` (less ``Age``) wins over ``Expires``.
    ``no-store``/``no-cache`` or missing headers mean 0.
    """
    directives: dict[str, str] = {}
    for part in headers.get("cache-control", "").split(","):
        name, _, value = part.strip().partition("=")
        if name:
            directives[name.lower()] = value.strip().strip('"')

    if "no-store" in directives or "no-cache" in directives:
        return 0.0

    if "max-age" in directives:
        try:
            max_age = int(directives["max-age"])
        except ValueError:
            return 0.0
        try:
            age = int(headers.get("age", "0"))
        except ValueError:
            age = 0
        return float(max(0, max_age - age))

    expires = headers.get("expires")
    if not expires:
        return 0.0
    try:
        expires_at = parsedate_to_datetime(expires).timestamp()
    except (TypeError, ValueError):
        return 0.0
    reference = now
    date = headers.get("date")
    if date:
        try:
            reference = parsedate_to_datetime(date).timestamp()
        except (TypeError, ValueError):
            pass
    return max(0.0, expires_at - reference)


class PublicKeyCache:
    """Fetches and caches the public key set published at ``cert_url``.

    Parameters
    ----------
    cert_url : str
        Endpoint returning a JSON object of key id -> PEM certificate.

    client : httpx.Client
        Client used for the fetch. Its timeout bounds refresh latency.

    store : KeyStore | None
        Where the current set lives. Defaults to an in-process store.

    clock : Clock
        Current time in seconds. Injected for tests.

    refresh_skew : float
        Refresh this many seconds before the set's advertised expiry, but
        not before half of its lifetime has passed.

    Example
    -------
    cache = PublicKeyCache(ID_TOKEN_CERT_URL, client=httpx.Client(timeout=10))
    for kid, key in cache.get_keys().items():
        ...
    """

    def __init__(
        self,
        cert_url: str,
        client: httpx.Client,
        *,
        store: KeyStore | None = None,
        clock: Clock = time.time,
        refresh_skew: float = DEFAULT_REFRESH_SKEW_SECONDS,
    ) -> None:
        if not cert_url:
            raise ValueError("cert_url cannot be empty")
        if refresh_skew < 0:
            raise ValueError(f"refresh_skew must not be negative, got {refresh_skew}")
        self._url = cert_url
        self._client = client
        self._store = store or InMemoryKeyStore()
        self._clock = clock
        self._refresh_skew = refresh_skew
        self._lock = threading.Lock()

    @property
    def cert_url(self) -> str:
        return self._url

    def get_keys(self) -> PublicKeySet:
        """Return the current key set, refreshing it when stale.

        May block on one HTTP GET. While one thread refreshes a set that is
        stale but unexpired, other callers get that set without waiting.
        With nothing valid stored they wait for the refresh instead.

        Returns:
            The newest valid ``PublicKeySet``.

        Raises:
            RuntimeFailure: If the fetch fails and no valid set is stored.
        """
        now = self._clock()
        current = self._store.get()
        if current is not None and current.is_fresh(now):
            return current

        if current is not None and not current.is_expired(now):
            if not self._lock.acquire(blocking=False):
                # Another thread is refreshing; the stored set is still valid.
                return current
        else:
            self._lock.acquire()

        try:
            now = self._clock()
            current = self._store.get()
            if current is not None and current.is_fresh(now):
                return current

            try:
                fetched = self._fetch(now)
            except RuntimeFailure as e:
                if current is not None and not current.is_expired(now):
                    logger.warning(
                        "Key refresh from %s failed, keeping previous set: %s",
                        self._url,
                        e.message,
                    )
                    return current
                raise

            self._store.set(fetched)
            logger.info(
                "Refreshed %d public keys from %s (valid for %.0fs)",
                len(fetched),
                self._url,
                fetched.expires_at - now,
            )
            return fetched
        finally:
            self._lock.release()

    def _fetch(self, now: float) -> PublicKeySet:
        logger.debug("Fetching public key certificates from %s", self._url)
        try:
            response = self._client.get(self._url)
        except httpx.HTTPError as e:
            raise self._failure(str(e)) from e

        if response.is_error:
            raise self._failure(
                f"HTTP {response.status_code}",
                HttpResponseInfo(status=response.status_code, body=response.text),
            )

        try:
            certificates = response.json()
            if not isinstance(certificates, dict):
                raise ValueError("expected a JSON object of key id to certificate")
            expires_at = now + cache_lifetime(response.headers, now)
            return PublicKeySet.from_certificates(
                certificates,
                expires_at=expires_at,
                refresh_at=refresh_instant(now, expires_at, self._refresh_skew),
            )
        except ValueError as e:
            raise self._failure(str(e)) from e

    @staticmethod
    def _failure(
        reason: str, http_response: HttpResponseInfo | None = None
    ) -> RuntimeFailure:
        return RuntimeFailure(
            AuthErrorCode.CERTIFICATE_FETCH_FAILED,
            f"Error while fetching public key certificates: {reason}",
            platform_code=ErrorCode.UNKNOWN,
            http_response=http_response,
        )


class KeyManagers:
    """Registry of ``PublicKeyCache`` instances, one per certificate URL.

    Constructed explicitly at application startup and passed to verifiers;
    ``close()`` at shutdown releases the HTTP client it owns.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        store_factory: Callable[[str], KeyStore] | None = None,
        clock: Clock = time.time,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        refresh_skew: float = DEFAULT_REFRESH_SKEW_SECONDS,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._store_factory = store_factory
        self._clock = clock
        self._refresh_skew = refresh_skew
        self._caches: dict[str, PublicKeyCache] = {}
        self._lock = threading.Lock()

    def get(self, cert_url: str) -> PublicKeyCache:
        """Return the cache for ``cert_url``, creating it on first use.

        Args:
            cert_url: Certificate endpoint the cache fetches from.

        Returns:
            The single ``PublicKeyCache`` for that URL. When a
            ``store_factory`` was given, it is called once for the URL.
        """
        with self._lock:
            cache = self._caches.get(cert_url)
            if cache is None:
                store = self._store_factory(cert_url) if self._store_factory else None
                cache = PublicKeyCache(
                    cert_url,
                    self._client,
                    store=store,
                    clock=self._clock,
                    refresh_skew=self._refresh_skew,
                )
                self._caches[cert_url] = cache
            return cache

    def close(self) -> None:
        """Close the HTTP client if this registry created it.

        A client passed to the constructor is left open for its owner.
        Caches obtained earlier must not be used after closing.
        """
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> KeyManagers:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
