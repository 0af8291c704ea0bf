"""
Public key sources for token signature verification.

This package contains implementations of the KeySource protocol.
"""

from .google_certs import (
    KeyManagers,
    PublicKeyCache,
    PublicKeySet,
    cache_lifetime,
    refresh_instant,
)

__all__ = ["KeyManagers", "PublicKeyCache", "PublicKeySet", "cache_lifetime", "refresh_instant"]
