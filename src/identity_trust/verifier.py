"""ID token and session cookie verification.

A ``VerifierConfig`` fixes everything that distinguishes one kind of token
from another (expected issuer, key source, wording of messages, error
codes). ``verify_token()`` runs the same ordered waterfall for all of them:

1. Key id present (with targeted messages for custom tokens)
2. Algorithm is RS256
3. Audience is the project id
4. Issuer is the configured prefix + project id
5. Subject is a non-empty string of at most 128 characters
6. Current time lies within ``[iat - skew, exp + skew]``
7. Signature verifies against one of the current public keys
8. Tenant matches, when the config names one

With ``emulator`` set (a local Auth emulator issues the tokens), steps 1,
2 and 7 are skipped: emulator tokens are unsigned.

The first failing check determines the error; nothing is aggregated.
Claim failures and a bad signature are ``InvalidCredential`` (the caller's
fault). Failing to fetch keys or to run the crypto check is a
``RuntimeFailure`` (the verifier's environment).
"""

from __future__ import annotations

import math
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from jwt.algorithms import RSAAlgorithm
from jwt.utils import base64url_decode

from .config import DEFAULT_CLOCK_SKEW_SECONDS
from .errors import (
    AuthErrorCode,
    ErrorCode,
    ExpiredToken,
    InvalidCredential,
    RuntimeFailure,
)
from .token_factory import CUSTOM_TOKEN_AUDIENCE

if TYPE_CHECKING:
    from .protocols import Claims, Clock, KeySource

RS256: Final[str] = "RS256"
MAX_SUBJECT_LENGTH: Final[int] = 128

ID_TOKEN_ISSUER_PREFIX: Final[str] = "https://securetoken.google.com/"
SESSION_COOKIE_ISSUER_PREFIX: Final[str] = "https://session.firebase.google.com/"

_RS256_ALGORITHM: Final = RSAAlgorithm(RSAAlgorithm.SHA256)

_PARSE_OPTIONS: Final[dict[str, bool]] = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
}


@dataclass(frozen=True, slots=True)
class VerifierConfig:
    """Immutable configuration of one kind of verifiable token.

    Attributes:
        project_id: Expected ``aud`` claim.
        issuer_prefix: Expected ``iss`` is this prefix + project_id.
        short_name: Name used in messages, e.g. "ID token".
        method_name: User-facing method named in messages.
        doc_url: Where to read about obtaining this kind of token.
        key_source: Supplies the current public keys. None only in
            emulator mode.
        invalid_code: Error code for invalid tokens.
        expired_code: Error code for expired tokens.
        clock: Current time in seconds.
        clock_skew: Tolerance for ``iat``/``exp`` checks, in seconds.
        tenant_id: When set, tokens must belong to this tenant.
        emulator: Accept unsigned tokens from the local Auth emulator.
    """

    project_id: str
    issuer_prefix: str
    short_name: str
    method_name: str
    doc_url: str
    key_source: KeySource | None = field(repr=False)
    invalid_code: AuthErrorCode
    expired_code: AuthErrorCode
    clock: Clock = field(default=time.time, repr=False)
    clock_skew: int = DEFAULT_CLOCK_SKEW_SECONDS
    tenant_id: str | None = None
    emulator: bool = False

    def __post_init__(self) -> None:
        for name in ("project_id", "issuer_prefix", "short_name", "method_name", "doc_url"):
            if not getattr(self, name):
                raise ValueError(f"{name} must be specified")
        if self.clock_skew < 0:
            raise ValueError(f"clock_skew must not be negative, got {self.clock_skew}")
        if self.key_source is None and not self.emulator:
            raise ValueError("key_source must be specified unless emulator is set")

    @property
    def expected_issuer(self) -> str:
        return self.issuer_prefix + self.project_id

    @property
    def articled_short_name(self) -> str:
        article = "an" if self.short_name[0] in "aeiouAEIOU" else "a"
        return f"{article} {self.short_name}"

    @property
    def title(self) -> str:
        return self.short_name[0].upper() + self.short_name[1:]


def id_token_config(
    project_id: str,
    key_source: KeySource | None,
    *,
    clock: Clock = time.time,
    clock_skew: int = DEFAULT_CLOCK_SKEW_SECONDS,
    tenant_id: str | None = None,
    emulator: bool = False,
) -> VerifierConfig:
    """Build the configuration for verifying ID tokens.

    ID tokens are issued to signed-in clients and carry the issuer
    ``https://securetoken.google.com/<project_id>``.

    Args:
        project_id: Project the tokens must be issued for (``aud``).
        key_source: Source of the ID token signing keys, normally
            ``KeyManagers.get(ID_TOKEN_CERT_URL)``. May be None when
            ``emulator`` is set.
        clock: Current time in seconds.
        clock_skew: Seconds of tolerance on ``iat``/``exp``.
        tenant_id: When set, only tokens of this tenant are accepted.
        emulator: Accept unsigned tokens from the local Auth emulator.

    Returns:
        A ``VerifierConfig`` reporting failures as ``INVALID_ID_TOKEN``
        and ``ID_TOKEN_EXPIRED``.

    Raises:
        ValueError: If ``project_id`` is empty, ``clock_skew`` is negative
            or ``key_source`` is missing outside emulator mode.
    """
    return VerifierConfig(
        project_id=project_id,
        issuer_prefix=ID_TOKEN_ISSUER_PREFIX,
        short_name="ID token",
        method_name="verify_id_token()",
        doc_url="https://firebase.google.com/docs/auth/admin/verify-id-tokens",
        key_source=key_source,
        invalid_code=AuthErrorCode.INVALID_ID_TOKEN,
        expired_code=AuthErrorCode.ID_TOKEN_EXPIRED,
        clock=clock,
        clock_skew=clock_skew,
        tenant_id=tenant_id,
        emulator=emulator,
    )


def session_cookie_config(
    project_id: str,
    key_source: KeySource | None,
    *,
    clock: Clock = time.time,
    clock_skew: int = DEFAULT_CLOCK_SKEW_SECONDS,
    tenant_id: str | None = None,
    emulator: bool = False,
) -> VerifierConfig:
    """Build the configuration for verifying session cookies.

    Session cookies are minted server side from an ID token and carry the
    issuer ``https://session.firebase.google.com/<project_id>``. They are
    signed with a different key set than ID tokens.

    Args:
        project_id: Project the cookies must be issued for (``aud``).
        key_source: Source of the session cookie signing keys, normally
            ``KeyManagers.get(SESSION_COOKIE_CERT_URL)``. May be None when
            ``emulator`` is set.
        clock: Current time in seconds.
        clock_skew: Seconds of tolerance on ``iat``/``exp``.
        tenant_id: When set, only cookies of this tenant are accepted.
        emulator: Accept unsigned cookies from the local Auth emulator.

    Returns:
        A ``VerifierConfig`` reporting failures as ``INVALID_SESSION_COOKIE``
        and ``SESSION_COOKIE_EXPIRED``.

    Raises:
        ValueError: If ``project_id`` is empty, ``clock_skew`` is negative
            or ``key_source`` is missing outside emulator mode.
    """
    return VerifierConfig(
        project_id=project_id,
        issuer_prefix=SESSION_COOKIE_ISSUER_PREFIX,
        short_name="session cookie",
        method_name="verify_session_cookie()",
        doc_url="https://firebase.google.com/docs/auth/admin/manage-cookies",
        key_source=key_source,
        invalid_code=AuthErrorCode.INVALID_SESSION_COOKIE,
        expired_code=AuthErrorCode.SESSION_COOKIE_EXPIRED,
        clock=clock,
        clock_skew=clock_skew,
        tenant_id=tenant_id,
        emulator=emulator,
    )


@dataclass(frozen=True, slots=True)
class Token:
    """A structurally parsed, not yet trusted, compact JWT."""

    header: Mapping[str, Any]
    payload: Mapping[str, Any]
    signature: bytes = field(repr=False)
    signing_input: bytes = field(repr=False)

    @classmethod
    def parse(cls, token: str) -> Token:
        """Split and decode ``token`` without checking anything.

        Raises:
            jwt.InvalidTokenError: If the token is not a well-formed JWS with
                a JSON object payload.
        """
        decoded = jwt.api_jwt.decode_complete(token, options=dict(_PARSE_OPTIONS))
        signing_input, _, signature = token.rpartition(".")
        return cls(
            header=decoded["header"],
            payload=decoded["payload"],
            signature=base64url_decode(signature.encode("ascii")),
            signing_input=signing_input.encode("ascii"),
        )

    @property
    def key_id(self) -> str | None:
        return self.header.get("kid")

    @property
    def algorithm(self) -> str | None:
        return self.header.get("alg")


@dataclass(frozen=True, slots=True)
class DecodedToken:
    """Claims of a token that passed verification."""

    claims: Mapping[str, Any]

    @property
    def uid(self) -> str:
        return self.claims["sub"]

    @property
    def issuer(self) -> str:
        return self.claims["iss"]

    @property
    def tenant_id(self) -> str | None:
        firebase = self.claims.get("firebase")
        if isinstance(firebase, Mapping):
            return firebase.get("tenant")
        return None


def verify_token(token: str, config: VerifierConfig) -> DecodedToken:
    """Verify ``token`` against ``config``.

    May block on a network fetch of public keys when the cached set is stale.
    In emulator mode only the claims and the tenant are checked.

    Args:
        token: Compact JWT as received from the client.
        config: Which kind of token to expect and how to check it.

    Returns:
        The verified claims.

    Raises:
        ValueError: If ``token`` is not a non-empty string.
        InvalidCredential: If parsing, a claim check, the signature check or
            the tenant check fails.
        ExpiredToken: If the token has expired.
        RuntimeFailure: If keys cannot be fetched or the crypto check errors.
    """
    if not isinstance(token, str) or not token:
        raise ValueError(f"{config.short_name} must be a non-empty string")

    parsed = _parse(token, config)
    if config.key_source is not None and not config.emulator:
        _check_header(parsed, config)
        _check_claims(parsed, config)
        _check_signature(parsed, config, config.key_source)
    else:
        _check_claims(parsed, config)
    decoded = DecodedToken(claims=parsed.payload)
    _check_tenant(decoded, config)
    return decoded


def _verify_hint(config: VerifierConfig) -> str:
    return (
        f"See {config.doc_url} for details on how to retrieve "
        f"{config.articled_short_name}."
    )


def _project_hint(config: VerifierConfig) -> str:
    return (
        f"Make sure the {config.short_name} comes from the same project as the "
        "service account used to authenticate this SDK."
    )


def _parse(token: str, config: VerifierConfig) -> Token:
    try:
        return Token.parse(token)
    except (jwt.InvalidTokenError, ValueError, UnicodeError) as e:
        raise InvalidCredential(
            config.invalid_code,
            f"Failed to parse {config.short_name}. Make sure you passed a string that "
            f"represents a complete and valid JWT. {_verify_hint(config)}",
        ) from e


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, int | float)
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _is_legacy_custom_token(token: Token) -> bool:
    version = token.payload.get("v")
    data = token.payload.get("d")
    return (
        token.algorithm == "HS256"
        and _is_number(version)
        and version == 0
        and isinstance(data, Mapping)
        and data.get("uid") is not None
    )


def _missing_kid_message(token: Token, config: VerifierConfig) -> str:
    if token.payload.get("aud") == CUSTOM_TOKEN_AUDIENCE:
        return (
            f"{config.method_name} expects {config.articled_short_name}, "
            "but was given a custom token."
        )
    if _is_legacy_custom_token(token):
        return (
            f"{config.method_name} expects {config.articled_short_name}, "
            "but was given a legacy custom token."
        )
    return f'{config.title} has no "kid" claim.'


def _audiences(payload: Mapping[str, Any]) -> list[str]:
    aud = payload.get("aud")
    if isinstance(aud, str):
        return [aud]
    if isinstance(aud, list):
        return [str(a) for a in aud]
    return []


def _check_header(token: Token, config: VerifierConfig) -> None:
    message: str | None = None
    if not token.key_id:
        message = _missing_kid_message(token, config)
    elif token.algorithm != RS256:
        message = (
            f'{config.title} has incorrect algorithm. Expected "{RS256}" but got '
            f'"{token.algorithm}".'
        )

    if message is not None:
        raise InvalidCredential(config.invalid_code, f"{message} {_verify_hint(config)}")


def _check_claims(token: Token, config: VerifierConfig) -> None:
    payload = token.payload
    now = config.clock()
    skew = config.clock_skew
    audiences = _audiences(payload)
    subject = payload.get("sub")
    issued_at = payload.get("iat")
    expires_at = payload.get("exp")

    error: type[InvalidCredential] = InvalidCredential
    code = config.invalid_code
    message: str | None = None

    if not audiences or any(a != config.project_id for a in audiences):
        message = (
            f'{config.title} has incorrect "aud" (audience) claim. Expected '
            f'"{config.project_id}" but got "{",".join(audiences)}". '
            f"{_project_hint(config)}"
        )
    elif payload.get("iss") != config.expected_issuer:
        message = (
            f'{config.title} has incorrect "iss" (issuer) claim. Expected '
            f'"{config.expected_issuer}" but got "{payload.get("iss")}". '
            f"{_project_hint(config)}"
        )
    elif not isinstance(subject, str):
        message = f'{config.title} has no "sub" (subject) claim.'
    elif not subject:
        message = f'{config.title} has an empty string "sub" (subject) claim.'
    elif len(subject) > MAX_SUBJECT_LENGTH:
        message = (
            f'{config.title} has "sub" (subject) claim longer than '
            f"{MAX_SUBJECT_LENGTH} characters."
        )
    elif not _is_number(expires_at):
        message = f'{config.title} has no valid "exp" (expiration time) claim.'
    elif not _is_number(issued_at):
        message = f'{config.title} has no valid "iat" (issued at) claim.'
    elif now > expires_at + skew:
        message = (
            f"{config.title} has expired. Get a fresh {config.short_name} and try again."
        )
        error = ExpiredToken
        code = config.expired_code
    elif now < issued_at - skew:
        message = f"{config.title} is not yet valid."

    if message is not None:
        raise error(code, f"{message} {_verify_hint(config)}")


def _check_signature(token: Token, config: VerifierConfig, key_source: KeySource) -> None:
    # Every key is tried: during rotation either the old or the new key may
    # be the only one that signed this token.
    key_set = key_source.get_keys()
    for kid, key in key_set.items():
        try:
            if _RS256_ALGORITHM.verify(token.signing_input, key, token.signature):
                return
        except (TypeError, ValueError, UnsupportedAlgorithm) as e:
            raise RuntimeFailure(
                AuthErrorCode.INTERNAL_ERROR,
                f"Unexpected error while verifying {config.short_name} with key "
                f"{kid!r}: {e}",
                platform_code=ErrorCode.UNKNOWN,
            ) from e

    raise InvalidCredential(
        config.invalid_code,
        f"Failed to verify the signature of {config.short_name}. {_verify_hint(config)}",
    )


def _check_tenant(decoded: DecodedToken, config: VerifierConfig) -> None:
    if config.tenant_id is None or decoded.tenant_id == config.tenant_id:
        return
    raise InvalidCredential(
        AuthErrorCode.TENANT_ID_MISMATCH,
        f"The tenant ID ('{decoded.tenant_id or ''}') of the token did not match "
        f"the expected value ('{config.tenant_id}')",
    )


class JWTVerifier:
    """Verifier bound to one ``VerifierConfig``.

    Holds no mutable state beyond the shared key source, so one instance may
    be used by any number of threads.

    Example:
        ```python
        keys = KeyManagers()
        verifier = JWTVerifier(
            id_token_config("my-project", keys.get(ID_TOKEN_CERT_URL))
        )
        try:
            claims = verifier.verify(raw_token)
        except ExpiredToken:
            ...  # ask the client for a fresh token
        except InvalidCredential:
            ...  # reject the request
        ```
    """

    def __init__(self, config: VerifierConfig) -> None:
        self._config = config

    @property
    def config(self) -> VerifierConfig:
        return self._config

    def verify(self, token: str) -> Claims:
        """Verify ``token`` and return its claims.

        Implements the ``TokenVerifier`` protocol used by ``AuthExtension``.

        Args:
            token: Compact JWT as received from the client.

        Returns:
            The verified claims, e.g. ``claims["sub"]`` is the user id.

        Raises:
            ValueError: If ``token`` is not a non-empty string.
            ExpiredToken: If the token expired beyond the clock skew.
            InvalidCredential: If any other check fails.
            RuntimeFailure: If public keys cannot be fetched.

        Security Notes:
            - Claims are returned only after every check passed.
        """
        return verify_token(token, self._config).claims

    def verify_decoded(self, token: str) -> DecodedToken:
        """Like ``verify()``, but return a ``DecodedToken``.

        Raises:
            ValueError, ExpiredToken, InvalidCredential, RuntimeFailure: As
                for ``verify()``.
        """
        return verify_token(token, self._config)
