import datetime
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

import httpx
import jwt
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from flask import Flask

import identity_trust as m

PROJECT_ID = "proj-123"
NOW = 1_700_000_000.0
ID_TOKEN_ISSUER = "https://securetoken.google.com/" + PROJECT_ID
SESSION_COOKIE_ISSUER = "https://session.firebase.google.com/" + PROJECT_ID


@dataclass(frozen=True)
class RsaKey:
    kid: str
    private_key: rsa.RSAPrivateKey
    cert_pem: str

    @property
    def private_pem(self) -> str:
        return self.private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode("ascii")


def _self_signed_cert(key: rsa.RSAPrivateKey) -> str:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "securetoken")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture(scope="session")
def rsa_keys() -> list[RsaKey]:
    """Two signing keys, as published during a key rotation."""
    keys = []
    for kid in ("key-1", "key-2"):
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        keys.append(RsaKey(kid, private_key, _self_signed_cert(private_key)))
    return keys


@pytest.fixture(scope="session")
def certificates(rsa_keys: list[RsaKey]) -> dict[str, str]:
    return {k.kid: k.cert_pem for k in rsa_keys}


class FakeClock:
    """Settable clock; call it to read the current time."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class StaticKeySource:
    """Duck-typed KeySource serving a fixed set and counting calls."""

    def __init__(self, key_set: m.PublicKeySet):
        self.key_set = key_set
        self.calls = 0

    def get_keys(self) -> m.PublicKeySet:
        self.calls += 1
        return self.key_set


@pytest.fixture
def make_key_source(
    certificates: dict[str, str],
) -> Callable[..., StaticKeySource]:
    """
    Factory fixture for key sources.

    Usage in tests:
        source = make_key_source()               # both keys
        source = make_key_source(kids=["key-1"])  # only the first key
    """

    def _make(*, kids: list[str] | None = None) -> StaticKeySource:
        selected = {
            kid: pem
            for kid, pem in certificates.items()
            if kids is None or kid in kids
        }
        return StaticKeySource(
            m.PublicKeySet.from_certificates(selected, expires_at=float("inf"))
        )

    return _make


@pytest.fixture
def make_token(
    rsa_keys: list[RsaKey], clock: FakeClock
) -> Callable[..., str]:
    """
    Factory fixture that returns a function minting RS256 tokens.

    Usage in tests:
        token = make_token()                       # valid ID token
        token = make_token(sub="x" * 129)          # override a claim
        token = make_token(drop=("sub",))          # remove a claim
        token = make_token(with_kid=False)         # no "kid" header
        token = make_token(key_index=1)            # signed by the second key
    """

    def _make(
        *,
        key_index: int = 0,
        kid: str | None = None,
        with_kid: bool = True,
        drop: tuple[str, ...] = (),
        **claims: Any,
    ) -> str:
        key = rsa_keys[key_index]
        payload: dict[str, Any] = {
            "iss": ID_TOKEN_ISSUER,
            "aud": PROJECT_ID,
            "sub": "user-1",
            "iat": int(clock.now) - 60,
            "exp": int(clock.now) + 3600,
            "auth_time": int(clock.now) - 60,
        }
        payload.update(claims)
        for name in drop:
            payload.pop(name, None)
        headers = {"kid": kid or key.kid} if with_kid else None
        return jwt.encode(payload, key.private_key, algorithm="RS256", headers=headers)

    return _make


@pytest.fixture
def make_client() -> Iterator[Callable[[Callable[[httpx.Request], httpx.Response]], httpx.Client]]:
    """
    Factory fixture for httpx clients backed by a handler function.

    Usage in tests:
        client = make_client(lambda request: httpx.Response(200, json={}))
    """
    clients: list[httpx.Client] = []

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()


@pytest.fixture
def service_account_info(rsa_keys: list[RsaKey]) -> dict[str, str]:
    key = rsa_keys[0]
    return {
        "type": "service_account",
        "project_id": PROJECT_ID,
        "private_key_id": key.kid,
        "private_key": key.private_pem,
        "client_email": f"signer@{PROJECT_ID}.iam.gserviceaccount.com",
        "client_id": "1234567890",
        "token_uri": "https://oauth2.googleapis.com/token",
    }


@pytest.fixture()
def app():
    app = Flask(__name__)
    app.config["TESTING"] = True
    return app


class FakeRedis:
    """
    Minimal redis stub for RedisKeyStore tests.
    Stores bytes under keys and supports setex.
    """

    def __init__(self):
        self._store: dict[str, tuple[bytes, int]] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key: str):
        item = self._store.get(key)
        if item is None:
            return None
        data, expires_at = item
        if int(time.time()) >= expires_at:
            self._store.pop(key, None)
            return None
        return data

    def setex(self, key: str, ttl_seconds: int, value: str | bytes):
        expires_at = int(time.time()) + int(ttl_seconds)
        if isinstance(value, str):
            value = value.encode("utf-8")
        self._store[key] = (value, expires_at)
        self.ttls[key] = int(ttl_seconds)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
