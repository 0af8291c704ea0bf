"""Error taxonomy for token signing and verification.

Every failure raised by this package is an ``AuthError`` carrying:

- ``code``: a machine-checkable ``AuthErrorCode`` (e.g. ``id-token-expired``)
- ``platform_code``: the coarse ``ErrorCode`` category
- ``message``: a human-readable, documentation-linked explanation

Subclasses say *whose* fault a failure is:

- ``InvalidCredential``: the caller presented a bad token (never retry)
- ``RuntimeFailure``: the verifying environment failed (caller may retry)
- ``TransportFailure``: a remote signing/backend call failed
- ``ConfigurationFailure``: no usable signing identity could be resolved
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    """Platform-wide error categories."""

    INVALID_ARGUMENT = "invalid-argument"
    FAILED_PRECONDITION = "failed-precondition"
    OUT_OF_RANGE = "out-of-range"
    UNAUTHENTICATED = "unauthenticated"
    PERMISSION_DENIED = "permission-denied"
    NOT_FOUND = "not-found"
    CONFLICT = "conflict"
    ABORTED = "aborted"
    ALREADY_EXISTS = "already-exists"
    RESOURCE_EXHAUSTED = "resource-exhausted"
    CANCELLED = "cancelled"
    DATA_LOSS = "data-loss"
    UNKNOWN = "unknown"
    INTERNAL = "internal"
    UNAVAILABLE = "unavailable"
    DEADLINE_EXCEEDED = "deadline-exceeded"


class AuthErrorCode(str, Enum):
    """Library-specific error codes."""

    # Verification
    INVALID_ID_TOKEN = "invalid-id-token"
    ID_TOKEN_EXPIRED = "id-token-expired"
    INVALID_SESSION_COOKIE = "invalid-session-cookie"
    SESSION_COOKIE_EXPIRED = "session-cookie-expired"
    CERTIFICATE_FETCH_FAILED = "certificate-fetch-failed"
    MISSING_TOKEN = "missing-token"

    # Signing
    SIGNER_UNAVAILABLE = "signer-unavailable"

    # Backend
    CLAIMS_TOO_LARGE = "claims-too-large"
    CONFIGURATION_NOT_FOUND = "configuration-not-found"
    EMAIL_ALREADY_EXISTS = "email-already-exists"
    UID_ALREADY_EXISTS = "uid-already-exists"
    INSUFFICIENT_PERMISSION = "insufficient-permission"
    INVALID_DYNAMIC_LINK_DOMAIN = "invalid-dynamic-link-domain"
    PHONE_NUMBER_ALREADY_EXISTS = "phone-number-already-exists"
    PROJECT_NOT_FOUND = "project-not-found"
    TENANT_ID_MISMATCH = "tenant-id-mismatch"
    TENANT_NOT_FOUND = "tenant-not-found"
    UNAUTHORIZED_CONTINUE_URI = "unauthorized-continue-uri"
    USER_NOT_FOUND = "user-not-found"
    INVALID_PASSWORD = "invalid-password"

    INTERNAL_ERROR = "internal-error"


@dataclass(frozen=True, slots=True)
class HttpResponseInfo:
    """Raw status and body of the HTTP response behind a failure."""

    status: int
    body: str


class AuthError(Exception):
    """Base exception for all signing and verification failures.

    Application code can catch this single type to handle any failure
    generically, and branch on ``code`` when it needs to.

    Attributes:
        status_code: HTTP status the Flask integration answers with.
        code: Library error code.
        platform_code: Coarse platform category.
        message: Human-readable explanation.
        http_response: Raw response for failures caused by an HTTP call.
    """

    status_code: int = 401

    def __init__(
        self,
        code: AuthErrorCode,
        message: str,
        *,
        platform_code: ErrorCode = ErrorCode.UNKNOWN,
        http_response: HttpResponseInfo | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.platform_code = platform_code
        self.message = message
        self.http_response = http_response

    @property
    def description(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value!r}, {self.message!r})"


class InvalidCredential(AuthError):  # noqa: N818
    """Raised when a presented token fails a claim or signature check.

    Always attributable to the caller: malformed JWT, custom token where an
    ID token was expected, wrong algorithm, audience, issuer or subject,
    bad signature, or a tenant mismatch.
    """

    def __init__(
        self,
        code: AuthErrorCode,
        message: str,
        *,
        platform_code: ErrorCode = ErrorCode.INVALID_ARGUMENT,
        http_response: HttpResponseInfo | None = None,
    ) -> None:
        super().__init__(
            code, message, platform_code=platform_code, http_response=http_response
        )


class ExpiredToken(InvalidCredential):  # noqa: N818
    """Raised when a token's ``exp`` claim (plus clock skew) has passed.

    Treat identically to ``InvalidCredential`` from a security perspective;
    the distinction tells clients to fetch a fresh token.
    """


class MissingToken(AuthError):  # noqa: N818
    """Raised when no token could be extracted from a request."""

    def __init__(self, message: str) -> None:
        super().__init__(
            AuthErrorCode.MISSING_TOKEN,
            message,
            platform_code=ErrorCode.UNAUTHENTICATED,
        )


class RuntimeFailure(AuthError):  # noqa: N818
    """Raised when the verifying environment fails (key fetch, crypto backend).

    Not the caller's fault; the operation may succeed if retried.
    """

    status_code = 503


class TransportFailure(AuthError):  # noqa: N818
    """Raised when a call to a remote service fails or returns an error.

    ``http_status`` and ``http_body`` preserve the raw response, if any.
    """

    status_code = 502

    @property
    def http_status(self) -> int | None:
        return self.http_response.status if self.http_response else None

    @property
    def http_body(self) -> str | None:
        return self.http_response.body if self.http_response else None


class ConfigurationFailure(AuthError):  # noqa: N818
    """Raised when the library cannot be set up to perform an operation.

    Typical causes: no project id for verification, or no discoverable
    service-account identity for signing.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: AuthErrorCode = AuthErrorCode.SIGNER_UNAVAILABLE,
    ) -> None:
        super().__init__(code, message, platform_code=ErrorCode.FAILED_PRECONDITION)
