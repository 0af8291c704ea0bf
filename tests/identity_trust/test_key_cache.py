"""
Tests for PublicKeyCache refresh behaviour and cache header parsing.
"""

import threading
from collections.abc import Callable
from typing import Any

import httpx
import pytest

import identity_trust as m

CERT_URL = "https://certs.example.test/keys"


class CertEndpoint:
    """Handler for httpx.MockTransport serving a certificate set."""

    def __init__(self, certificates: dict[str, str], headers: dict[str, str] | None = None):
        self.certificates = certificates
        self.headers = {"Cache-Control": "public, max-age=3600"} if headers is None else headers
        self.status = 200
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.status != 200:
            return httpx.Response(self.status, text="backend down")
        return httpx.Response(200, json=self.certificates, headers=self.headers)


@pytest.fixture
def endpoint(certificates: dict[str, str]) -> CertEndpoint:
    return CertEndpoint(certificates)


@pytest.fixture
def cache(
    endpoint: CertEndpoint, make_client: Callable[..., httpx.Client], clock: Any
) -> m.PublicKeyCache:
    return m.PublicKeyCache(CERT_URL, make_client(endpoint), clock=clock)


@pytest.fixture
def early_cache(
    endpoint: CertEndpoint, make_client: Callable[..., httpx.Client], clock: Any
) -> m.PublicKeyCache:
    """Cache that refreshes 300 seconds before expiry."""
    return m.PublicKeyCache(CERT_URL, make_client(endpoint), clock=clock, refresh_skew=300)


def test_first_call_fetches_and_parses_keys(cache: m.PublicKeyCache, endpoint: CertEndpoint, clock: Any):
    key_set = cache.get_keys()
    assert endpoint.calls == 1
    assert len(key_set) == 2
    assert dict(key_set.certificates) == endpoint.certificates
    assert key_set.expires_at == clock.now + 3600
    assert key_set.refresh_at == key_set.expires_at


def test_set_is_replaced_only_after_expiry(cache: m.PublicKeyCache, endpoint: CertEndpoint, clock: Any):
    first = cache.get_keys()
    clock.advance(3599)
    assert cache.get_keys() is first
    assert endpoint.calls == 1

    clock.advance(1)
    assert cache.get_keys() is not first
    assert endpoint.calls == 2


def test_short_lived_set_is_fetched_once_per_window(
    certificates: dict[str, str], make_client: Callable[..., httpx.Client], clock: Any
):
    endpoint = CertEndpoint(certificates, headers={"Cache-Control": "public, max-age=120"})
    cache = m.PublicKeyCache(CERT_URL, make_client(endpoint), clock=clock)

    first = cache.get_keys()
    clock.advance(1)
    assert cache.get_keys() is first
    clock.advance(118)
    assert cache.get_keys() is first
    assert endpoint.calls == 1


def test_refreshes_inside_skew_window(
    early_cache: m.PublicKeyCache, endpoint: CertEndpoint, clock: Any
):
    first = early_cache.get_keys()
    assert first.refresh_at == clock.now + 3600 - 300

    clock.advance(3600 - 300 - 1)
    assert early_cache.get_keys() is first
    clock.advance(2)
    second = early_cache.get_keys()
    assert endpoint.calls == 2
    assert second is not first


def test_early_refresh_is_capped_at_half_lifetime(
    certificates: dict[str, str], make_client: Callable[..., httpx.Client], clock: Any
):
    endpoint = CertEndpoint(certificates, headers={"Cache-Control": "public, max-age=120"})
    cache = m.PublicKeyCache(CERT_URL, make_client(endpoint), clock=clock, refresh_skew=300)

    first = cache.get_keys()
    clock.advance(1)
    assert cache.get_keys() is first
    clock.advance(58)
    assert cache.get_keys() is first
    assert endpoint.calls == 1

    clock.advance(1)
    assert cache.get_keys() is not first
    assert endpoint.calls == 2


def test_failed_refresh_keeps_previous_set(
    early_cache: m.PublicKeyCache, endpoint: CertEndpoint, clock: Any
):
    first = early_cache.get_keys()
    endpoint.status = 500
    clock.advance(3500)

    assert early_cache.get_keys() is first
    assert endpoint.calls == 2


def test_failed_refresh_after_expiry_raises(cache: m.PublicKeyCache, endpoint: CertEndpoint, clock: Any):
    cache.get_keys()
    endpoint.status = 500
    clock.advance(3601)

    with pytest.raises(m.RuntimeFailure) as ei:
        cache.get_keys()
    assert ei.value.code == m.AuthErrorCode.CERTIFICATE_FETCH_FAILED
    assert ei.value.message.startswith("Error while fetching public key certificates")
    assert ei.value.http_response == m.HttpResponseInfo(status=500, body="backend down")


def test_without_cache_headers_every_call_fetches(
    certificates: dict[str, str], make_client: Callable[..., httpx.Client], clock: Any
):
    endpoint = CertEndpoint(certificates, headers={})
    cache = m.PublicKeyCache(CERT_URL, make_client(endpoint), clock=clock)
    cache.get_keys()
    cache.get_keys()
    assert endpoint.calls == 2


def test_connection_error_is_runtime_failure(make_client: Callable[..., httpx.Client], clock: Any):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    cache = m.PublicKeyCache(CERT_URL, make_client(handler), clock=clock)
    with pytest.raises(m.RuntimeFailure):
        cache.get_keys()


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="not json"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"k1": "not a certificate"}),
    ],
)
def test_malformed_response_is_runtime_failure(
    response: httpx.Response, make_client: Callable[..., httpx.Client], clock: Any
):
    cache = m.PublicKeyCache(CERT_URL, make_client(lambda request: response), clock=clock)
    with pytest.raises(m.RuntimeFailure):
        cache.get_keys()


def test_cache_uses_injected_store(
    endpoint: CertEndpoint, make_client: Callable[..., httpx.Client], clock: Any
):
    store = m.InMemoryKeyStore()
    cache = m.PublicKeyCache(CERT_URL, make_client(endpoint), store=store, clock=clock)
    key_set = cache.get_keys()
    assert store.get() is key_set


class GatedCertEndpoint(CertEndpoint):
    """CertEndpoint whose responses wait for ``release`` once ``gated`` is set."""

    def __init__(self, certificates: dict[str, str]):
        super().__init__(certificates)
        self.gated = False
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        response = super().__call__(request)
        if self.gated:
            self.entered.set()
            self.release.wait(timeout=5)
        return response


def _start(cache: m.PublicKeyCache, results: list[Any]) -> threading.Thread:
    def run() -> None:
        try:
            results.append(cache.get_keys())
        except m.AuthError as e:
            results.append(e)

    thread = threading.Thread(target=run)
    thread.start()
    return thread


class TestConcurrentRefresh:
    @pytest.fixture
    def gated(self, certificates: dict[str, str]) -> GatedCertEndpoint:
        return GatedCertEndpoint(certificates)

    @pytest.fixture
    def gated_cache(
        self, gated: GatedCertEndpoint, make_client: Callable[..., httpx.Client], clock: Any
    ) -> m.PublicKeyCache:
        return m.PublicKeyCache(CERT_URL, make_client(gated), clock=clock, refresh_skew=300)

    def test_empty_cache_fetches_once_for_many_callers(
        self, gated_cache: m.PublicKeyCache, gated: GatedCertEndpoint
    ):
        gated.gated = True
        results: list[Any] = []
        threads = [_start(gated_cache, results) for _ in range(8)]

        assert gated.entered.wait(timeout=5)
        gated.release.set()
        for thread in threads:
            thread.join(timeout=5)

        assert gated.calls == 1
        assert len(results) == 8
        assert all(result is results[0] for result in results)
        assert isinstance(results[0], m.PublicKeySet)

    def test_stale_set_is_served_while_refresh_is_in_flight(
        self, gated_cache: m.PublicKeyCache, gated: GatedCertEndpoint, clock: Any
    ):
        first = gated_cache.get_keys()
        clock.advance(3600 - 300 + 1)
        gated.gated = True

        refreshed: list[Any] = []
        refresher = _start(gated_cache, refreshed)
        assert gated.entered.wait(timeout=5)

        # The refresh is blocked inside the fetch; other callers do not wait.
        assert gated_cache.get_keys() is first
        assert gated_cache.get_keys() is first
        assert gated.calls == 2

        gated.release.set()
        refresher.join(timeout=5)

        assert refreshed[0] is not first
        assert gated_cache.get_keys() is refreshed[0]
        assert gated.calls == 2


class TestCacheLifetime:
    def test_max_age(self):
        assert m.cache_lifetime({"cache-control": "public, max-age=19302"}, 0) == 19302.0

    def test_max_age_minus_age(self):
        headers = {"cache-control": "public, max-age=100", "age": "30"}
        assert m.cache_lifetime(headers, 0) == 70.0

    def test_age_beyond_max_age_is_zero(self):
        headers = {"cache-control": "max-age=100", "age": "300"}
        assert m.cache_lifetime(headers, 0) == 0.0

    def test_no_cache_is_zero(self):
        assert m.cache_lifetime({"cache-control": "no-cache, max-age=100"}, 0) == 0.0

    def test_expires_relative_to_date(self):
        headers = {
            "expires": "Wed, 21 Oct 2015 07:28:00 GMT",
            "date": "Wed, 21 Oct 2015 07:18:00 GMT",
        }
        assert m.cache_lifetime(headers, 0) == 600.0

    def test_missing_headers_is_zero(self):
        assert m.cache_lifetime({}, 0) == 0.0

    def test_unparsable_max_age_is_zero(self):
        assert m.cache_lifetime({"cache-control": "max-age=soon"}, 0) == 0.0


class TestKeyManagers:
    def test_same_url_returns_same_cache(self, make_client: Callable[..., httpx.Client]):
        managers = m.KeyManagers(make_client(lambda request: httpx.Response(200, json={})))
        assert managers.get(CERT_URL) is managers.get(CERT_URL)
        assert managers.get(CERT_URL) is not managers.get(m.ID_TOKEN_CERT_URL)

    def test_store_factory_is_called_per_url(
        self, endpoint: CertEndpoint, make_client: Callable[..., httpx.Client], clock: Any
    ):
        stores: dict[str, m.InMemoryKeyStore] = {}

        def factory(url: str) -> m.InMemoryKeyStore:
            stores[url] = m.InMemoryKeyStore()
            return stores[url]

        managers = m.KeyManagers(make_client(endpoint), store_factory=factory, clock=clock)
        key_set = managers.get(CERT_URL).get_keys()
        assert stores[CERT_URL].get() is key_set

    def test_close_leaves_borrowed_client_open(self, make_client: Callable[..., httpx.Client]):
        client = make_client(lambda request: httpx.Response(200, json={}))
        with m.KeyManagers(client):
            pass
        assert not client.is_closed


class TestRefreshInstant:
    def test_skew_before_expiry(self):
        assert m.refresh_instant(0, 3600, 300) == 3300

    def test_capped_at_half_lifetime(self):
        assert m.refresh_instant(0, 120, 300) == 60

    def test_zero_lifetime(self):
        assert m.refresh_instant(100, 100, 300) == 100
