"""Token extraction from the current Flask request.

- BearerExtractor: ``Authorization: Bearer <ID token>``
- CookieExtractor: a session cookie set by the application
"""

from __future__ import annotations

from flask import request

from .errors import MissingToken


class BearerExtractor:
    """Reads an ID token from the ``Authorization: Bearer`` header."""

    def extract(self) -> str:
        """Return the token without its ``Bearer`` prefix.

        Raises:
            MissingToken: If the header is absent, uses another scheme, or
                carries an empty token.
        """
        scheme, _, credential = request.headers.get("Authorization", "").strip().partition(" ")
        if not scheme:
            raise MissingToken("No ID token: the Authorization header is absent")
        if scheme.lower() != "bearer":
            raise MissingToken(f"No ID token: unsupported authorization scheme {scheme!r}")

        id_token = credential.strip()
        if not id_token:
            raise MissingToken("No ID token: the bearer credential is empty")
        return id_token


class CookieExtractor:
    """Reads a session cookie.

    The cookie should be HttpOnly and Secure, and the application must
    protect cookie-authenticated routes against CSRF.
    """

    def __init__(self, cookie_name: str = "session") -> None:
        if not cookie_name or not cookie_name.strip():
            raise ValueError("cookie_name must be a non-blank string")
        self._name = cookie_name

    @property
    def cookie_name(self) -> str:
        return self._name

    def extract(self) -> str:
        token = request.cookies.get(self._name)
        if not token:
            raise MissingToken(f"No session cookie named {self._name!r} in the request")
        return token
