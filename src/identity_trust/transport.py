"""HTTP clients used for remote signing and identity discovery."""

from __future__ import annotations

import threading
from collections.abc import Generator
from typing import Final

import google.auth.credentials
import google.auth.transport.requests
import httpx

from .config import DEFAULT_HTTP_TIMEOUT_SECONDS

USER_AGENT: Final[str] = "identity-trust/0.1"


class CredentialsAuth(httpx.Auth):
    """Attaches an OAuth2 bearer token from a ``google.auth`` credential.

    The credential is refreshed when it is missing a token or the token has
    expired; refreshes are serialized so concurrent requests trigger one.
    """

    def __init__(self, credentials: google.auth.credentials.Credentials) -> None:
        self._credentials = credentials
        self._refresh_request = google.auth.transport.requests.Request()
        self._lock = threading.Lock()

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        with self._lock:
            if not self._credentials.valid:
                self._credentials.refresh(self._refresh_request)
            headers: dict[str, str] = {}
            self._credentials.apply(headers)
        request.headers.update(headers)
        yield request


def authorized_client(
    credentials: google.auth.credentials.Credentials,
    timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
) -> httpx.Client:
    """Client for calls that act as ``credentials`` (remote signing)."""
    return httpx.Client(
        auth=CredentialsAuth(credentials),
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
    )


def plain_client(timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS) -> httpx.Client:
    """Unauthenticated client (metadata service, public certificates)."""
    return httpx.Client(timeout=timeout, headers={"User-Agent": USER_AGENT})
