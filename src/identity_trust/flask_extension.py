"""Flask integration for ID token and session cookie verification.

Request flow:
1. Extract the token (bearer header or session cookie)
2. Verify it with the configured verifier
3. Store the verified claims in ``flask.g.claims``
4. Convert failures to HTTP responses:
   - ``MissingToken`` / ``InvalidCredential`` -> 401
   - ``RuntimeFailure`` -> 503 (key fetch or crypto backend failed)
   - ``ConfigurationFailure`` -> 500
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Final, NoReturn

from flask import Flask, abort, g

from .errors import AuthError, InvalidCredential, MissingToken, RuntimeFailure
from .extractors import BearerExtractor, CookieExtractor

if TYPE_CHECKING:
    from collections.abc import Callable

    from .protocols import Claims, Extractor, TokenVerifier, ViewFunc

logger = logging.getLogger(__name__)

_EXT_KEY: Final[str] = "identity_trust"
"""Flask extensions registry key for AuthExtension."""


def _abort_for(error: AuthError) -> NoReturn:
    if isinstance(error, (MissingToken, InvalidCredential)):
        abort(401, description=error.description)
    if isinstance(error, RuntimeFailure):
        logger.warning("Token verification unavailable: %s", error.message)
    abort(error.status_code, description=error.description)


class AuthExtension:
    """
    Route decorator glue for token verification.

    Pattern:
        auth = AuthExtension(auth_core.id_token_verifier())
        auth.init_app(app)

        @app.get("/me")
        @auth.require()
        def me():
            return {"uid": g.claims["sub"]}
    """

    def __init__(
        self,
        verifier: TokenVerifier,
        extractor: Extractor | None = None,
    ) -> None:
        self._verifier = verifier
        self._extractor: Extractor = extractor or BearerExtractor()

    def init_app(
        self,
        app: Flask,
        *,
        verifier: TokenVerifier | None = None,
        extractor: Extractor | None = None,
    ) -> None:
        if verifier is not None:
            self._verifier = verifier
        if extractor is not None:
            self._extractor = extractor
        app.extensions[_EXT_KEY] = self

    def require(self) -> Callable[[ViewFunc], ViewFunc]:
        """Decorator that only calls the view for a verified token.

        Side Effects:
            - Writes verified claims to ``flask.g.claims``.
            - May end the request early via ``flask.abort``.
        """

        def decorator(view: ViewFunc) -> ViewFunc:
            @wraps(view)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                try:
                    token = self._extractor.extract()
                    g.claims = self._verifier.verify(token)
                except AuthError as e:
                    _abort_for(e)
                return view(*args, **kwargs)

            return wrapper

        return decorator


def get_verified_session_claims(
    verifier: TokenVerifier,
    *,
    cookie_name: str = "session",
) -> Claims:
    """Verify the session cookie of the current request and return its claims.

    Aborts with 401 when the cookie is missing or invalid, and with 503 when
    verification could not run.
    """
    try:
        return verifier.verify(CookieExtractor(cookie_name).extract())
    except AuthError as e:
        _abort_for(e)
