"""One-time selection of the signer used to mint custom tokens.

Precedence, given the ambient ``google.auth`` credential:

0. With the Auth emulator configured, tokens are left unsigned.
1. A service-account key credential signs locally with its private key.
2. An explicitly configured service-account id signs remotely as that id.
3. A credential that can sign without a local key (platform-managed or
   impersonated identity) signs through its own ``sign_bytes``.
4. Otherwise the default service account is discovered from the local
   metadata service and used for remote signing.

The selected signer is cached for the resolver's lifetime. A failed
discovery raises immediately and is not cached.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Final

import google.auth.credentials
import httpx
from google.oauth2 import service_account

from .config import DEFAULT_METADATA_HOST, SIGN_BLOB_V1, SignBlobProtocol
from .errors import ConfigurationFailure
from .signers import CredentialsSigner, EmulatorSigner, LocalKeySigner, RemoteSigner

if TYPE_CHECKING:
    from .protocols import CredentialSigner

logger = logging.getLogger(__name__)

METADATA_EMAIL_PATH: Final[str] = (
    "/computeMetadata/v1/instance/service-accounts/default/email"
)
METADATA_HEADERS: Final[dict[str, str]] = {"Metadata-Flavor": "Google"}

_SIGNER_HELP: Final[str] = (
    "Make sure to initialize the SDK with service account credentials or "
    "specify a service account ID with iam.serviceAccounts.signBlob permission."
)


def discover_service_account(client: httpx.Client, metadata_host: str) -> str:
    """Ask the local metadata service for the default service-account email.

    Raises:
        ConfigurationFailure: If the service is unreachable, answers with an
            error, or returns an empty body.
    """
    url = f"http://{metadata_host}{METADATA_EMAIL_PATH}"
    logger.debug("Discovering service account from %s", url)
    try:
        response = client.get(url, headers=METADATA_HEADERS)
    except httpx.HTTPError as e:
        raise ConfigurationFailure(
            f"Failed to reach the metadata service at {metadata_host}: {e}. {_SIGNER_HELP}"
        ) from e

    if response.is_error:
        raise ConfigurationFailure(
            f"Metadata service returned HTTP {response.status_code} while discovering "
            f"the service account. {_SIGNER_HELP}"
        )

    account = response.text.strip()
    if not account:
        raise ConfigurationFailure(
            f"Metadata service returned no service account email. {_SIGNER_HELP}"
        )
    return account


class SignerResolver:
    """Resolves, once, the CredentialSigner for the ambient credential.

    Args:
        credentials: The library's ambient credential.
        http_client: Authorized client a RemoteSigner sends requests with.
        metadata_client: Plain client for identity discovery.
        service_account_id: Explicit identity to sign as remotely.
        sign_blob_protocol: Wire format of the remote signing endpoint.
        metadata_host: Host of the local metadata service.
        emulator: Leave custom tokens unsigned for the Auth emulator.
    """

    def __init__(
        self,
        credentials: google.auth.credentials.Credentials,
        *,
        http_client: httpx.Client,
        metadata_client: httpx.Client,
        service_account_id: str | None = None,
        sign_blob_protocol: SignBlobProtocol = SIGN_BLOB_V1,
        metadata_host: str = DEFAULT_METADATA_HOST,
        emulator: bool = False,
    ) -> None:
        self._credentials = credentials
        self._http_client = http_client
        self._metadata_client = metadata_client
        self._service_account_id = service_account_id
        self._protocol = sign_blob_protocol
        self._metadata_host = metadata_host
        self._emulator = emulator
        self._signer: CredentialSigner | None = None
        self._lock = threading.Lock()

    def resolve(self) -> CredentialSigner:
        """Return the signer, selecting it on the first call.

        Returns:
            The same signer instance on every call once one was selected.

        Raises:
            ConfigurationFailure: If no signing identity can be discovered.
        """
        with self._lock:
            if self._signer is None:
                self._signer = self._select()
                logger.info("Using %r to sign custom tokens", self._signer)
            return self._signer

    def _select(self) -> CredentialSigner:
        credentials = self._credentials
        if self._emulator:
            return EmulatorSigner()

        if isinstance(credentials, service_account.Credentials):
            return LocalKeySigner.from_credentials(credentials)

        if self._service_account_id:
            return RemoteSigner(self._service_account_id, self._http_client, self._protocol)

        if isinstance(credentials, google.auth.credentials.Signing):
            return CredentialsSigner(credentials)

        account = discover_service_account(self._metadata_client, self._metadata_host)
        return RemoteSigner(account, self._http_client, self._protocol)
