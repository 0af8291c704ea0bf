"""Settings for the identity trust core.

Settings are a single immutable value, validated at construction. They can be
built directly or read from the environment (and a ``.env`` file) with
``AuthSettings.from_env()``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

from dotenv import load_dotenv

ID_TOKEN_CERT_URL: Final[str] = (
    "https://www.googleapis.com/robot/v1/metadata/x509/"
    "securetoken@system.gserviceaccount.com"
)
SESSION_COOKIE_CERT_URL: Final[str] = (
    "https://www.googleapis.com/identitytoolkit/v3/relyingparty/publicKeys"
)
DEFAULT_METADATA_HOST: Final[str] = "metadata.google.internal"
DEFAULT_CLOCK_SKEW_SECONDS: Final[int] = 300
DEFAULT_HTTP_TIMEOUT_SECONDS: Final[float] = 10.0


@dataclass(frozen=True, slots=True)
class SignBlobProtocol:
    """Wire shape of a remote "sign blob" endpoint.

    Attributes:
        url_template: Endpoint URL with an ``{account}`` placeholder.
        request_field: JSON field carrying the base64 payload.
        response_field: JSON field carrying the base64 signature.
    """

    url_template: str
    request_field: str
    response_field: str

    def url_for(self, account: str) -> str:
        return self.url_template.format(account=account)


SIGN_BLOB_V1: Final[SignBlobProtocol] = SignBlobProtocol(
    url_template=(
        "https://iamcredentials.googleapis.com/v1/projects/-/serviceAccounts/"
        "{account}:signBlob"
    ),
    request_field="payload",
    response_field="signedBlob",
)

SIGN_BLOB_LEGACY: Final[SignBlobProtocol] = SignBlobProtocol(
    url_template="https://iam.googleapis.com/v1/projects/-/serviceAccounts/{account}:signBlob",
    request_field="bytesToSign",
    response_field="signature",
)

SIGN_BLOB_PROTOCOLS: Final[Mapping[str, SignBlobProtocol]] = {
    "v1": SIGN_BLOB_V1,
    "legacy": SIGN_BLOB_LEGACY,
}


@dataclass(frozen=True, slots=True)
class AuthSettings:
    """Startup configuration.

    Attributes:
        project_id: Expected token audience. Falls back to the credential's
            project when None.
        service_account_id: Service-account email to sign custom tokens as
            through the remote signing service.
        tenant_id: When set, verified tokens must belong to this tenant.
        clock_skew_seconds: Tolerance applied to ``iat``/``exp`` checks.
        http_timeout_seconds: Timeout for every outbound HTTP call.
        sign_blob_protocol: ``"v1"`` or ``"legacy"``.
        metadata_host: Host of the local metadata service.
        id_token_cert_url: Certificate endpoint for ID tokens.
        session_cookie_cert_url: Certificate endpoint for session cookies.
        emulator_host: ``host:port`` of a local Auth emulator. When set,
            custom tokens are unsigned and token signatures are not checked.
    """

    project_id: str | None = None
    service_account_id: str | None = None
    tenant_id: str | None = None
    clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    sign_blob_protocol: str = "v1"
    metadata_host: str = DEFAULT_METADATA_HOST
    id_token_cert_url: str = ID_TOKEN_CERT_URL
    session_cookie_cert_url: str = SESSION_COOKIE_CERT_URL
    emulator_host: str | None = None

    def __post_init__(self) -> None:
        if self.clock_skew_seconds < 0:
            raise ValueError(
                f"clock_skew_seconds must not be negative, got {self.clock_skew_seconds}"
            )
        if self.http_timeout_seconds <= 0:
            raise ValueError(
                f"http_timeout_seconds must be positive, got {self.http_timeout_seconds}"
            )
        if self.sign_blob_protocol not in SIGN_BLOB_PROTOCOLS:
            raise ValueError(
                f"sign_blob_protocol must be one of {sorted(SIGN_BLOB_PROTOCOLS)}, "
                f"got {self.sign_blob_protocol!r}"
            )
        if not self.metadata_host:
            raise ValueError("metadata_host cannot be empty")
        if self.emulator_host is not None and (
            not self.emulator_host or "//" in self.emulator_host
        ):
            raise ValueError(
                f"emulator_host must be host:port without a scheme, got {self.emulator_host!r}"
            )

    @property
    def sign_blob(self) -> SignBlobProtocol:
        return SIGN_BLOB_PROTOCOLS[self.sign_blob_protocol]

    @property
    def emulator(self) -> bool:
        return self.emulator_host is not None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AuthSettings:
        """Build settings from environment variables.

        When ``environ`` is None, a ``.env`` file is loaded first and
        ``os.environ`` is read. Unset variables keep their defaults.

        Raises:
            ValueError: If a numeric variable does not parse or a value is
                out of range.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        def _get(*names: str) -> str | None:
            for name in names:
                value = environ.get(name, "").strip()
                if value:
                    return value
            return None

        skew = _get("IDENTITY_CLOCK_SKEW_SECONDS")
        timeout = _get("IDENTITY_HTTP_TIMEOUT_SECONDS")
        return cls(
            project_id=_get("IDENTITY_PROJECT_ID", "GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT"),
            service_account_id=_get("IDENTITY_SERVICE_ACCOUNT_ID"),
            tenant_id=_get("IDENTITY_TENANT_ID"),
            clock_skew_seconds=int(skew) if skew else DEFAULT_CLOCK_SKEW_SECONDS,
            http_timeout_seconds=float(timeout) if timeout else DEFAULT_HTTP_TIMEOUT_SECONDS,
            sign_blob_protocol=_get("IDENTITY_SIGN_BLOB_PROTOCOL") or "v1",
            metadata_host=_get("GCE_METADATA_HOST") or DEFAULT_METADATA_HOST,
            id_token_cert_url=_get("IDENTITY_ID_TOKEN_CERT_URL") or ID_TOKEN_CERT_URL,
            session_cookie_cert_url=(
                _get("IDENTITY_SESSION_COOKIE_CERT_URL") or SESSION_COOKIE_CERT_URL
            ),
            emulator_host=_get("IDENTITY_AUTH_EMULATOR_HOST", "FIREBASE_AUTH_EMULATOR_HOST"),
        )
