"""Protocol definitions for the identity trust core.

Structural interfaces (PEP 544) for:
- Credential signing
- Public key sources and their storage
- Token verification
- Token extraction from HTTP requests

Any class that implements the required methods satisfies the protocol, which
keeps the seams easy to fake in tests.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias

if TYPE_CHECKING:
    from .key_providers.google_certs import PublicKeySet

# ============================================================================
# Type Aliases
# ============================================================================

Claims: TypeAlias = Mapping[str, Any]
"""Decoded JWT payload as an immutable mapping."""

Clock: TypeAlias = Callable[[], float]
"""Returns the current time in seconds since the epoch."""

ViewFunc: TypeAlias = Callable[..., Any]
"""Flask view function."""


# ============================================================================
# Core Protocols
# ============================================================================


class CredentialSigner(Protocol):
    """Signs bytes on behalf of a service account.

    Implementations are stateless after construction and safe to share across
    threads. Callers must not special-case on the concrete type.
    """

    def sign(self, payload: bytes) -> bytes:
        """Sign ``payload`` and return the raw signature bytes.

        Raises:
            TransportFailure: If a remote signing call fails.
        """
        ...

    def account(self) -> str:
        """Return the service-account email this signer signs as."""
        ...


class KeySource(Protocol):
    """Supplies the currently valid set of token-signing public keys."""

    def get_keys(self) -> PublicKeySet:
        """Return the current key set, refreshing it if it has gone stale.

        Raises:
            RuntimeFailure: If no valid key set is available.
        """
        ...


class KeyStore(Protocol):
    """Holds the current ``PublicKeySet`` of one key source.

    ``set`` replaces the stored set wholesale; stored sets are never mutated.
    """

    def get(self) -> PublicKeySet | None:
        """Return the stored key set, or None if nothing is stored."""
        ...

    def set(self, key_set: PublicKeySet) -> None:
        """Replace the stored key set."""
        ...


class TokenVerifier(Protocol):
    """Verifies a compact JWT and returns its claims."""

    def verify(self, token: str) -> Claims:
        """Verify ``token`` and return its decoded claims.

        Raises:
            InvalidCredential: Token is malformed or a check failed.
            ExpiredToken: Token has expired.
            RuntimeFailure: Keys could not be fetched or checked.
        """
        ...


class Extractor(Protocol):
    """Pulls a raw token out of the current Flask request."""

    def extract(self) -> str:
        """Return the raw token.

        Raises:
            MissingToken: Token not present or improperly formatted.
        """
        ...
