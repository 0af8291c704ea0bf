"""Credential signers.

Implementations of the CredentialSigner protocol:

- LocalKeySigner: signs in-process with a service-account private key
- CredentialsSigner: signs through a credential's own ``sign_bytes`` (a
  platform-managed or impersonated identity)
- RemoteSigner: delegates to the IAM "sign blob" service over HTTP
- EmulatorSigner: produces empty signatures for the local Auth emulator

All are immutable after construction and safe to share across threads.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Final

import google.auth.credentials
import google.auth.crypt
import google.auth.exceptions
import httpx

from .config import SIGN_BLOB_V1, SignBlobProtocol
from .error_translator import translate_http_response, translate_transport_error
from .errors import AuthErrorCode, ErrorCode, TransportFailure

if TYPE_CHECKING:
    from google.oauth2 import service_account

logger = logging.getLogger(__name__)

EMULATOR_ACCOUNT: Final[str] = "firebase-auth-emulator@example.com"


class LocalKeySigner:
    """Signs with a ``google.auth.crypt.Signer`` held in memory.

    No network I/O: the wrapped signer's native primitive does the work.
    """

    def __init__(self, signer: google.auth.crypt.Signer, account: str) -> None:
        if not account:
            raise ValueError("account cannot be empty")
        self._signer = signer
        self._account = account

    @classmethod
    def from_credentials(cls, credentials: service_account.Credentials) -> LocalKeySigner:
        """Wrap a service-account key credential.

        Args:
            credentials: A ``google.oauth2.service_account.Credentials``
                whose ``signer`` holds the private key.

        Returns:
            A signer using the credential's key and signer email.
        """
        return cls(credentials.signer, credentials.signer_email)

    @classmethod
    def from_service_account_info(cls, info: Mapping[str, Any]) -> LocalKeySigner:
        """Build from a parsed service-account JSON key file.

        Raises:
            ValueError: If ``private_key`` or ``client_email`` is missing or
                the key cannot be loaded.
        """
        try:
            private_key = info["private_key"]
            account = info["client_email"]
        except KeyError as e:
            raise ValueError(f"Service account info is missing {e.args[0]!r}") from e
        signer = google.auth.crypt.RSASigner.from_string(private_key, info.get("private_key_id"))
        return cls(signer, account)

    def sign(self, payload: bytes) -> bytes:
        """Sign ``payload`` with RSA-SHA256 using the in-memory key.

        Args:
            payload: Bytes to sign, typically a JWT signing input.

        Returns:
            The raw signature bytes.
        """
        return self._signer.sign(payload)

    def account(self) -> str:
        return self._account

    def __repr__(self) -> str:
        return f"LocalKeySigner(account={self._account!r})"


class CredentialsSigner:
    """Signs through the ``google.auth.credentials.Signing`` interface.

    Used for credentials that can sign without exposing a key, such as
    ``google.auth.impersonated_credentials.Credentials``. Whether signing
    does network I/O is up to the credential.
    """

    def __init__(self, credentials: google.auth.credentials.Signing) -> None:
        account = credentials.signer_email
        if not account:
            raise ValueError("credentials have no signer email")
        self._credentials = credentials
        self._account = account

    def sign(self, payload: bytes) -> bytes:
        """Sign ``payload`` with the credential's ``sign_bytes``.

        Args:
            payload: Bytes to sign, typically a JWT signing input.

        Returns:
            The raw signature bytes.

        Raises:
            TransportFailure: If the credential fails to sign.
        """
        try:
            return self._credentials.sign_bytes(payload)
        except google.auth.exceptions.GoogleAuthError as e:
            logger.debug("Credential signing for %s failed: %s", self._account, e)
            raise TransportFailure(
                AuthErrorCode.INTERNAL_ERROR,
                f"Failed to sign with the credential for {self._account}: {e}",
                platform_code=ErrorCode.UNKNOWN,
            ) from e

    def account(self) -> str:
        return self._account

    def __repr__(self) -> str:
        return f"CredentialsSigner(account={self._account!r})"


class RemoteSigner:
    """Signs by calling the IAM "sign blob" endpoint for ``account``.

    Request and response field names, and the URL, come from a
    ``SignBlobProtocol`` so the current and legacy wire formats are both
    configuration, not code paths.

    Any failure raises ``TransportFailure``; there is no local fallback.
    """

    def __init__(
        self,
        account: str,
        client: httpx.Client,
        protocol: SignBlobProtocol = SIGN_BLOB_V1,
    ) -> None:
        if not account:
            raise ValueError("account cannot be empty")
        self._account = account
        self._client = client
        self._protocol = protocol

    def sign(self, payload: bytes) -> bytes:
        """Sign ``payload`` as ``account`` with one POST to the signing service.

        Args:
            payload: Bytes to sign; sent base64-encoded.

        Returns:
            The decoded signature from the response.

        Raises:
            TransportFailure: If the request cannot be sent, the service
                answers with an error, or the response has no valid
                signature field. Service errors carry the translated
                platform code and the raw HTTP response.
        """
        url = self._protocol.url_for(self._account)
        body = {self._protocol.request_field: base64.b64encode(payload).decode("ascii")}
        try:
            response = self._client.post(url, json=body)
        except httpx.HTTPError as e:
            logger.debug("Remote signing for %s failed: %s", self._account, e)
            raise translate_transport_error(e) from e
        except google.auth.exceptions.GoogleAuthError as e:
            raise TransportFailure(
                AuthErrorCode.INTERNAL_ERROR,
                f"Failed to obtain an access token for remote signing: {e}",
                platform_code=ErrorCode.UNAUTHENTICATED,
            ) from e

        if response.is_error:
            logger.debug(
                "Remote signing for %s returned HTTP %s", self._account, response.status_code
            )
            raise translate_http_response(response)

        try:
            encoded = response.json()[self._protocol.response_field]
            return base64.b64decode(encoded, validate=True)
        except (ValueError, KeyError, TypeError) as e:
            raise TransportFailure(
                AuthErrorCode.INTERNAL_ERROR,
                f"Remote signing response did not contain a valid "
                f"{self._protocol.response_field!r} field",
                platform_code=ErrorCode.INTERNAL,
            ) from e

    def account(self) -> str:
        return self._account

    def __repr__(self) -> str:
        return f"RemoteSigner(account={self._account!r})"


class EmulatorSigner:
    """Signer for tokens consumed by the local Auth emulator.

    The emulator accepts unsigned tokens, so ``sign`` returns no bytes and
    ``create_custom_token`` marks the header ``"alg": "none"``.

    Security Note:
        Only selected when an emulator host is configured. Tokens it
        produces are rejected by the real backend.
    """

    def sign(self, payload: bytes) -> bytes:
        return b""

    def account(self) -> str:
        return EMULATOR_ACCOUNT

    def __repr__(self) -> str:
        return "EmulatorSigner()"
