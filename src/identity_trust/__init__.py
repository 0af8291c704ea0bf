"""
Custom token signing and ID token / session cookie verification.

High-level flow
---------------
Signing:
1. `SignerResolver` picks, once, how the ambient credential signs:
   a local private key, a platform signer, or the remote IAM signing service.
2. `create_custom_token(...)` builds the RS256 JWT and has the signer sign it.

Verification (per token):
1. `JWTVerifier.verify(token)` parses the JWT without trusting it.
2. Header and claims are checked in a fixed order (kid, alg, aud, iss, sub,
   exp/iat); the first failure wins.
3. The signature is checked against every key in the current
   `PublicKeySet`, served by a `PublicKeyCache` that honours the
   certificate endpoint's HTTP caching headers.
4. On success the claims are returned (or stored in `flask.g.claims` by
   `AuthExtension.require()`).

Security notes
--------------
- Never trust claims until signature verification succeeds.
- Only RS256 is accepted (avoid algorithm confusion).
- `aud` and `iss` pin tokens to *your* project.
- A failed key refresh keeps the previous set until it actually expires.

Example usage
-------------

.. code-block:: python

    from identity_trust import AuthExtension, AuthSettings, IdentityAuth

    auth_core = IdentityAuth(AuthSettings.from_env())
    token = auth_core.create_custom_token("some-uid", {"premium": True})

    auth = AuthExtension(auth_core.id_token_verifier())
    auth.init_app(app)

    @app.route("/protected")
    @auth.require()
    def protected_route():
        return {"uid": g.claims["sub"]}
"""

# Facade
from .auth import IdentityAuth

# Cache stores
from .cache_stores import InMemoryKeyStore, RedisKeyStore

# Configuration
from .config import (
    ID_TOKEN_CERT_URL,
    SESSION_COOKIE_CERT_URL,
    SIGN_BLOB_LEGACY,
    SIGN_BLOB_V1,
    AuthSettings,
    SignBlobProtocol,
)

# Error translation
from .error_translator import (
    parse_error_envelope,
    translate_http_response,
    translate_response,
    translate_transport_error,
)

# Errors
from .errors import (
    AuthError,
    AuthErrorCode,
    ConfigurationFailure,
    ErrorCode,
    ExpiredToken,
    HttpResponseInfo,
    InvalidCredential,
    MissingToken,
    RuntimeFailure,
    TransportFailure,
)

# Extractors
from .extractors import BearerExtractor, CookieExtractor

# Flask extension
from .flask_extension import AuthExtension, get_verified_session_claims

# Key providers
from .key_providers import (
    KeyManagers,
    PublicKeyCache,
    PublicKeySet,
    cache_lifetime,
    refresh_instant,
)

# Protocols
from .protocols import (
    Claims,
    Clock,
    CredentialSigner,
    Extractor,
    KeySource,
    KeyStore,
    TokenVerifier,
    ViewFunc,
)

# Signers
from .signer_resolver import SignerResolver, discover_service_account
from .signers import CredentialsSigner, EmulatorSigner, LocalKeySigner, RemoteSigner

# Custom tokens
from .token_factory import create_custom_token

# Verifier
from .verifier import (
    DecodedToken,
    JWTVerifier,
    VerifierConfig,
    id_token_config,
    session_cookie_config,
    verify_token,
)

__all__ = [
    # Errors
    "AuthError",
    "AuthErrorCode",
    "ConfigurationFailure",
    "ErrorCode",
    "ExpiredToken",
    "HttpResponseInfo",
    "InvalidCredential",
    "MissingToken",
    "RuntimeFailure",
    "TransportFailure",
    # Protocols
    "Claims",
    "Clock",
    "CredentialSigner",
    "Extractor",
    "KeySource",
    "KeyStore",
    "TokenVerifier",
    "ViewFunc",
    # Configuration
    "AuthSettings",
    "ID_TOKEN_CERT_URL",
    "SESSION_COOKIE_CERT_URL",
    "SIGN_BLOB_LEGACY",
    "SIGN_BLOB_V1",
    "SignBlobProtocol",
    # Error translation
    "parse_error_envelope",
    "translate_http_response",
    "translate_response",
    "translate_transport_error",
    # Signers
    "CredentialsSigner",
    "EmulatorSigner",
    "LocalKeySigner",
    "RemoteSigner",
    "SignerResolver",
    "discover_service_account",
    # Custom tokens
    "create_custom_token",
    # Verifier
    "DecodedToken",
    "JWTVerifier",
    "VerifierConfig",
    "id_token_config",
    "session_cookie_config",
    "verify_token",
    # Key providers
    "KeyManagers",
    "PublicKeyCache",
    "PublicKeySet",
    "cache_lifetime",
    "refresh_instant",
    # Cache stores
    "InMemoryKeyStore",
    "RedisKeyStore",
    # Extractors
    "BearerExtractor",
    "CookieExtractor",
    # Flask extension
    "AuthExtension",
    "get_verified_session_claims",
    # Facade
    "IdentityAuth",
]
