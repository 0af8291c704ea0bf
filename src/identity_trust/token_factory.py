"""Custom token creation.

A custom token is an RS256 JWT signed by the service account, which a client
exchanges with the identity backend to complete sign-in. The claim set is
fixed; developer claims ride along under ``claims``.

Tokens for the local Auth emulator are left unsigned (``"alg": "none"``).
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Final

from jwt.utils import base64url_encode

from .signers import EmulatorSigner

if TYPE_CHECKING:
    from .protocols import Clock, CredentialSigner

CUSTOM_TOKEN_AUDIENCE: Final[str] = (
    "https://identitytoolkit.googleapis.com/google.identity.identitytoolkit.v1.IdentityToolkit"
)
TOKEN_DURATION_SECONDS: Final[int] = 3600
MAX_UID_LENGTH: Final[int] = 128

RESERVED_CLAIMS: Final[frozenset[str]] = frozenset(
    {
        "acr", "amr", "at_hash", "aud", "auth_time", "azp", "cnf", "c_hash",
        "exp", "iat", "iss", "jti", "nbf", "nonce", "sub", "firebase",
    }
)


def _encode_segment(obj: Mapping[str, Any]) -> bytes:
    return base64url_encode(json.dumps(obj, separators=(",", ":")).encode("utf-8"))


def create_custom_token(
    signer: CredentialSigner,
    uid: str,
    developer_claims: Mapping[str, Any] | None = None,
    *,
    tenant_id: str | None = None,
    clock: Clock = time.time,
) -> str:
    """Mint a custom token for ``uid``, signed by ``signer``.

    Args:
        signer: Resolved credential signer; its account is the issuer.
        uid: User id, 1 to 128 characters.
        developer_claims: Extra claims; must be JSON serializable and must
            not use a reserved claim name.
        tenant_id: Tenant the user belongs to, if any.
        clock: Current time in seconds.

    Returns:
        The compact JWT string. Its signature segment is empty for an
        ``EmulatorSigner``.

    Raises:
        ValueError: If ``uid`` or ``developer_claims`` is invalid.
        TypeError: If ``developer_claims`` is not JSON serializable.
        TransportFailure: If remote signing fails.
    """
    if not isinstance(uid, str) or not uid:
        raise ValueError("uid must be a non-empty string")
    if len(uid) > MAX_UID_LENGTH:
        raise ValueError(f"uid must not be longer than {MAX_UID_LENGTH} characters")

    if developer_claims is not None:
        if not isinstance(developer_claims, Mapping):
            raise ValueError("developer_claims must be a mapping")
        reserved = sorted(RESERVED_CLAIMS.intersection(developer_claims))
        if reserved:
            raise ValueError(
                f"developer_claims can not contain a reserved key: {', '.join(reserved)}"
            )

    account = signer.account()
    issued_at = int(clock())
    algorithm = "none" if isinstance(signer, EmulatorSigner) else "RS256"
    header = {"alg": algorithm, "typ": "JWT"}
    payload: dict[str, Any] = {
        "iss": account,
        "sub": account,
        "aud": CUSTOM_TOKEN_AUDIENCE,
        "iat": issued_at,
        "exp": issued_at + TOKEN_DURATION_SECONDS,
        "uid": uid,
    }
    if developer_claims:
        payload["claims"] = dict(developer_claims)
    if tenant_id:
        payload["tenant_id"] = tenant_id

    signing_input = _encode_segment(header) + b"." + _encode_segment(payload)
    signature = signer.sign(signing_input)
    return (signing_input + b"." + base64url_encode(signature)).decode("ascii")
