import json
from typing import Any

import pytest

import identity_trust as m

NOW = 1_700_000_000.0


@pytest.fixture
def key_set(certificates: dict[str, str]) -> m.PublicKeySet:
    return m.PublicKeySet.from_certificates(certificates, expires_at=NOW + 600)


def test_inmemory_store_set_get(key_set: m.PublicKeySet):
    store = m.InMemoryKeyStore()
    assert store.get() is None

    store.set(key_set)
    assert store.get() is key_set


def test_redis_store_roundtrip(fake_redis: Any, key_set: m.PublicKeySet):
    store = m.RedisKeyStore(fake_redis, "certs:id-token", clock=lambda: NOW)

    store.set(key_set)
    loaded = store.get()

    assert loaded is not None
    assert dict(loaded.certificates) == dict(key_set.certificates)
    assert loaded.expires_at == key_set.expires_at
    assert loaded.refresh_at == key_set.refresh_at
    assert sorted(kid for kid, _ in loaded.items()) == ["key-1", "key-2"]


def test_redis_store_ttl_matches_remaining_lifetime(fake_redis: Any, key_set: m.PublicKeySet):
    store = m.RedisKeyStore(fake_redis, "certs", clock=lambda: NOW + 0.5)
    store.set(key_set)
    assert fake_redis.ttls["certs"] == 600


def test_redis_store_ttl_is_at_least_one_second(fake_redis: Any, certificates: dict[str, str]):
    store = m.RedisKeyStore(fake_redis, "certs", clock=lambda: NOW)
    store.set(m.PublicKeySet.from_certificates(certificates, expires_at=NOW))
    assert fake_redis.ttls["certs"] == 1


def test_redis_store_missing_key_returns_none(fake_redis: Any):
    assert m.RedisKeyStore(fake_redis, "absent").get() is None


def test_redis_store_invalid_json_raises(fake_redis: Any):
    store = m.RedisKeyStore(fake_redis, "bad")

    fake_redis.setex("bad", 60, "not-json")
    with pytest.raises(m.RuntimeFailure) as ei:
        store.get()
    assert ei.value.code == m.AuthErrorCode.INTERNAL_ERROR


def test_redis_store_requires_key(fake_redis: Any):
    with pytest.raises(ValueError):
        m.RedisKeyStore(fake_redis, "")


def test_redis_store_keeps_refresh_instant(fake_redis: Any, certificates: dict[str, str]):
    store = m.RedisKeyStore(fake_redis, "certs", clock=lambda: NOW)
    store.set(
        m.PublicKeySet.from_certificates(certificates, expires_at=NOW + 120, refresh_at=NOW + 60)
    )

    loaded = store.get()
    assert loaded is not None
    assert loaded.refresh_at == NOW + 60
    assert loaded.is_fresh(NOW + 59)
    assert not loaded.is_fresh(NOW + 60)


def test_redis_store_entry_without_refresh_instant(fake_redis: Any, certificates: dict[str, str]):
    fake_redis.setex(
        "certs", 60, json.dumps({"certificates": certificates, "expires_at": NOW + 60})
    )

    loaded = m.RedisKeyStore(fake_redis, "certs").get()
    assert loaded is not None
    assert loaded.refresh_at == NOW + 60
