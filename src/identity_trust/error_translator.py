"""Translate HTTP failures into library errors.

Backend error responses use a nested envelope::

    {"error": {"message": "EMAIL_EXISTS: optional details", "status": "..."}}

The part of ``message`` before the first colon is the backend code; it is
looked up in a closed table. Anything unrecognised becomes a generic
``internal-error`` that keeps the raw status and body.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

import httpx

from .errors import AuthErrorCode, ErrorCode, HttpResponseInfo, TransportFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ErrorEnvelope:
    """Parsed ``error`` object of a backend response."""

    code: str
    detail: str | None = None
    status: str | None = None


@dataclass(frozen=True, slots=True)
class _BackendError:
    platform_code: ErrorCode
    description: str
    code: AuthErrorCode


BACKEND_ERROR_CODES: Final[Mapping[str, _BackendError]] = {
    "CLAIMS_TOO_LARGE": _BackendError(
        ErrorCode.INVALID_ARGUMENT,
        "Claims payload is too large",
        AuthErrorCode.CLAIMS_TOO_LARGE,
    ),
    "CONFIGURATION_NOT_FOUND": _BackendError(
        ErrorCode.NOT_FOUND,
        "No IdP configuration found corresponding to the provided identifier",
        AuthErrorCode.CONFIGURATION_NOT_FOUND,
    ),
    "DUPLICATE_EMAIL": _BackendError(
        ErrorCode.ALREADY_EXISTS,
        "The user with the provided email already exists",
        AuthErrorCode.EMAIL_ALREADY_EXISTS,
    ),
    "DUPLICATE_LOCAL_ID": _BackendError(
        ErrorCode.ALREADY_EXISTS,
        "The user with the provided uid already exists",
        AuthErrorCode.UID_ALREADY_EXISTS,
    ),
    "EMAIL_EXISTS": _BackendError(
        ErrorCode.ALREADY_EXISTS,
        "The user with the provided email already exists",
        AuthErrorCode.EMAIL_ALREADY_EXISTS,
    ),
    "INSUFFICIENT_PERMISSION": _BackendError(
        ErrorCode.PERMISSION_DENIED,
        "The credential used to initialize the SDK has insufficient permissions",
        AuthErrorCode.INSUFFICIENT_PERMISSION,
    ),
    "INVALID_DYNAMIC_LINK_DOMAIN": _BackendError(
        ErrorCode.INVALID_ARGUMENT,
        "The provided dynamic link domain is not configured or authorized "
        "for the current project",
        AuthErrorCode.INVALID_DYNAMIC_LINK_DOMAIN,
    ),
    "PHONE_NUMBER_EXISTS": _BackendError(
        ErrorCode.ALREADY_EXISTS,
        "The user with the provided phone number already exists",
        AuthErrorCode.PHONE_NUMBER_ALREADY_EXISTS,
    ),
    "PROJECT_NOT_FOUND": _BackendError(
        ErrorCode.NOT_FOUND,
        "No project found for the given identifier",
        AuthErrorCode.PROJECT_NOT_FOUND,
    ),
    "TENANT_ID_MISMATCH": _BackendError(
        ErrorCode.INVALID_ARGUMENT,
        "Tenant ID mismatch",
        AuthErrorCode.TENANT_ID_MISMATCH,
    ),
    "TENANT_NOT_FOUND": _BackendError(
        ErrorCode.NOT_FOUND,
        "No tenant found for the given identifier",
        AuthErrorCode.TENANT_NOT_FOUND,
    ),
    "UNAUTHORIZED_DOMAIN": _BackendError(
        ErrorCode.INVALID_ARGUMENT,
        "The domain of the continue URL is not whitelisted",
        AuthErrorCode.UNAUTHORIZED_CONTINUE_URI,
    ),
    "USER_NOT_FOUND": _BackendError(
        ErrorCode.NOT_FOUND,
        "No user record found for the given identifier",
        AuthErrorCode.USER_NOT_FOUND,
    ),
    "WEAK_PASSWORD": _BackendError(
        ErrorCode.INVALID_ARGUMENT,
        "The password is invalid or too weak",
        AuthErrorCode.INVALID_PASSWORD,
    ),
}

_STATUS_CODES: Final[Mapping[int, ErrorCode]] = {
    400: ErrorCode.INVALID_ARGUMENT,
    401: ErrorCode.UNAUTHENTICATED,
    403: ErrorCode.PERMISSION_DENIED,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
    412: ErrorCode.FAILED_PRECONDITION,
    429: ErrorCode.RESOURCE_EXHAUSTED,
    500: ErrorCode.INTERNAL,
    503: ErrorCode.UNAVAILABLE,
}


def parse_error_envelope(body: str | bytes | None) -> ErrorEnvelope | None:
    """Parse the ``error`` object out of a backend response body.

    Returns:
        The parsed envelope, or None if the body is empty, not JSON, or not
        shaped like ``{"error": {"message": "<CODE>[: <details>]"}}``.
    """
    if not body:
        return None
    try:
        data = json.loads(body)
    except ValueError:
        return None

    error = data.get("error") if isinstance(data, dict) else None
    if not isinstance(error, dict):
        return None

    status = error.get("status")
    status = status if isinstance(status, str) else None
    message = error.get("message")
    if not isinstance(message, str) or not message.strip():
        return None

    code, sep, detail = message.partition(":")
    detail = detail.strip() if sep else ""
    return ErrorEnvelope(code=code.strip(), detail=detail or None, status=status)


def platform_code_for(status: int, envelope: ErrorEnvelope | None = None) -> ErrorCode:
    """Map an HTTP status (or a recognised ``error.status``) to an ErrorCode."""
    if envelope is not None and envelope.status:
        try:
            return ErrorCode[envelope.status]
        except KeyError:
            pass
    return _STATUS_CODES.get(status, ErrorCode.UNKNOWN)


def translate_response(status: int, body: str | bytes | None) -> TransportFailure:
    """Translate a non-2xx response into a ``TransportFailure``.

    Known backend codes map onto their library code with a message of the
    form ``"<description> (<CODE>): <details>"``. Unknown codes and
    unparsable bodies fall back to ``internal-error``.
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else (body or "")
    raw = HttpResponseInfo(status=status, body=text)
    envelope = parse_error_envelope(text)

    known = BACKEND_ERROR_CODES.get(envelope.code) if envelope else None
    if envelope is not None and known is not None:
        message = f"{known.description} ({envelope.code})"
        message += f": {envelope.detail}" if envelope.detail else "."
        return TransportFailure(
            known.code,
            message,
            platform_code=known.platform_code,
            http_response=raw,
        )

    logger.debug("Unrecognised error response (status=%s)", status)
    return TransportFailure(
        AuthErrorCode.INTERNAL_ERROR,
        f"Unexpected HTTP response with status: {status}\n{text}",
        platform_code=platform_code_for(status, envelope),
        http_response=raw,
    )


def translate_http_response(response: httpx.Response) -> TransportFailure:
    """Translate a non-2xx ``httpx.Response``."""
    return translate_response(response.status_code, response.text)


def translate_transport_error(exc: httpx.HTTPError) -> TransportFailure:
    """Translate a connection-level failure (no usable response).

    The caller chains ``exc`` with ``raise ... from exc``.
    """
    if isinstance(exc, httpx.TimeoutException):
        platform_code = ErrorCode.DEADLINE_EXCEEDED
        message = f"Timed out while making an API call: {exc}"
    elif isinstance(exc, httpx.NetworkError):
        platform_code = ErrorCode.UNAVAILABLE
        message = f"Failed to establish a connection: {exc}"
    else:
        platform_code = ErrorCode.UNKNOWN
        message = f"Unknown error while making a remote service call: {exc}"

    return TransportFailure(AuthErrorCode.INTERNAL_ERROR, message, platform_code=platform_code)
