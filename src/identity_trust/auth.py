"""Application-facing entry point.

``IdentityAuth`` is built once at startup from ``AuthSettings`` and the
ambient credential. It owns the HTTP clients, the ``KeyManagers`` registry
and the ``SignerResolver``, and exposes token creation and verification.

With an Auth emulator configured, custom tokens are unsigned and verifiers
skip the signature check; no public keys are fetched.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import google.auth
import google.auth.credentials

from .errors import AuthErrorCode, ConfigurationFailure
from .key_providers import KeyManagers
from .signer_resolver import SignerResolver
from .token_factory import create_custom_token
from .transport import authorized_client, plain_client
from .verifier import DecodedToken, JWTVerifier, id_token_config, session_cookie_config

if TYPE_CHECKING:
    from .config import AuthSettings
    from .protocols import Clock, CredentialSigner, KeySource

logger = logging.getLogger(__name__)


class IdentityAuth:
    """Signs custom tokens and verifies ID tokens and session cookies.

    Example:
        ```python
        settings = AuthSettings.from_env()
        with IdentityAuth(settings) as auth:
            token = auth.create_custom_token("some-uid", {"premium": True})
            decoded = auth.verify_id_token(id_token_from_client)
        ```

    Args:
        settings: Startup configuration.
        credentials: Ambient credential; ``google.auth.default()`` when None.
        key_managers: Public key registry; one is created (and closed with
            this object) when None.
        clock: Current time in seconds.
    """

    def __init__(
        self,
        settings: AuthSettings,
        credentials: google.auth.credentials.Credentials | None = None,
        *,
        key_managers: KeyManagers | None = None,
        clock: Clock = time.time,
    ) -> None:
        default_project: str | None = None
        if credentials is None:
            credentials, default_project = google.auth.default()

        self._settings = settings
        self._clock = clock
        self._project_id = (
            settings.project_id
            or getattr(credentials, "project_id", None)
            or default_project
        )

        self._owns_key_managers = key_managers is None
        self._key_managers = key_managers or KeyManagers(
            clock=clock, timeout=settings.http_timeout_seconds
        )
        self._signing_client = authorized_client(credentials, settings.http_timeout_seconds)
        self._metadata_client = plain_client(settings.http_timeout_seconds)
        self._resolver = SignerResolver(
            credentials,
            http_client=self._signing_client,
            metadata_client=self._metadata_client,
            service_account_id=settings.service_account_id,
            sign_blob_protocol=settings.sign_blob,
            metadata_host=settings.metadata_host,
            emulator=settings.emulator,
        )
        if settings.emulator:
            logger.warning(
                "Using the Auth emulator at %s: custom tokens are unsigned and token "
                "signatures are not verified",
                settings.emulator_host,
            )

        self._lock = threading.Lock()
        self._id_token_verifier: JWTVerifier | None = None
        self._session_cookie_verifier: JWTVerifier | None = None

    @property
    def project_id(self) -> str | None:
        return self._project_id

    def signer(self) -> CredentialSigner:
        """Return the signer, resolving it on first use.

        Raises:
            ConfigurationFailure: If no signing identity can be discovered.
        """
        return self._resolver.resolve()

    def create_custom_token(
        self, uid: str, developer_claims: Mapping[str, Any] | None = None
    ) -> str:
        """Mint a custom token for ``uid`` with the resolved signer.

        The configured tenant, if any, is written into the token.

        Args:
            uid: User id, 1 to 128 characters.
            developer_claims: Extra claims for the client's ID token.

        Returns:
            The compact JWT string.

        Raises:
            ValueError: If ``uid`` or ``developer_claims`` is invalid.
            ConfigurationFailure: If no signing identity can be discovered.
            TransportFailure: If signing fails.
        """
        return create_custom_token(
            self.signer(),
            uid,
            developer_claims,
            tenant_id=self._settings.tenant_id,
            clock=self._clock,
        )

    def verify_id_token(self, id_token: str) -> DecodedToken:
        """Verify an ID token sent by a client.

        Raises:
            ConfigurationFailure: If no project id is known.
            ExpiredToken: If the token has expired.
            InvalidCredential: If any other check fails.
            RuntimeFailure: If public keys cannot be fetched.
        """
        return self._id_tokens().verify_decoded(id_token)

    def verify_session_cookie(self, session_cookie: str) -> DecodedToken:
        """Verify a session cookie. Raises as ``verify_id_token()`` does."""
        return self._session_cookies().verify_decoded(session_cookie)

    def id_token_verifier(self) -> JWTVerifier:
        return self._id_tokens()

    def session_cookie_verifier(self) -> JWTVerifier:
        return self._session_cookies()

    def _require_project_id(self, method: str) -> str:
        if not self._project_id:
            raise ConfigurationFailure(
                f"Must initialize with a project ID to call {method}",
                code=AuthErrorCode.PROJECT_NOT_FOUND,
            )
        return self._project_id

    def _key_source(self, cert_url: str) -> KeySource | None:
        if self._settings.emulator:
            return None
        return self._key_managers.get(cert_url)

    def _id_tokens(self) -> JWTVerifier:
        with self._lock:
            if self._id_token_verifier is None:
                project_id = self._require_project_id("verify_id_token()")
                self._id_token_verifier = JWTVerifier(
                    id_token_config(
                        project_id,
                        self._key_source(self._settings.id_token_cert_url),
                        clock=self._clock,
                        clock_skew=self._settings.clock_skew_seconds,
                        tenant_id=self._settings.tenant_id,
                        emulator=self._settings.emulator,
                    )
                )
            return self._id_token_verifier

    def _session_cookies(self) -> JWTVerifier:
        with self._lock:
            if self._session_cookie_verifier is None:
                project_id = self._require_project_id("verify_session_cookie()")
                self._session_cookie_verifier = JWTVerifier(
                    session_cookie_config(
                        project_id,
                        self._key_source(self._settings.session_cookie_cert_url),
                        clock=self._clock,
                        clock_skew=self._settings.clock_skew_seconds,
                        tenant_id=self._settings.tenant_id,
                        emulator=self._settings.emulator,
                    )
                )
            return self._session_cookie_verifier

    def close(self) -> None:
        self._signing_client.close()
        self._metadata_client.close()
        if self._owns_key_managers:
            self._key_managers.close()

    def __enter__(self) -> IdentityAuth:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
