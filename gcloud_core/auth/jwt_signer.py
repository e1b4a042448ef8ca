"""
Self-signed service-account JWT assertions for the jwt-bearer grant.
"""

import time
from typing import Any, Dict, Optional, Sequence

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from gcloud_core.errors import InvalidPrivateKeyError, TokenRequestFailedError
from gcloud_core.models import ServiceAccountCredentials

ASSERTION_LIFETIME = 3600


def load_rsa_private_key(pem: str) -> rsa.RSAPrivateKey:
    """Parse a PKCS#8 or PKCS#1 PEM private key, accepting only RSA keys."""
    # Key files sometimes arrive with literal "\n" sequences instead of newlines.
    normalized = pem.replace("\\n", "\n").strip()
    try:
        key = serialization.load_pem_private_key(normalized.encode("utf-8"), password=None)
    except (ValueError, TypeError) as e:
        raise InvalidPrivateKeyError(f"Failed to parse RSA private key: {e}") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise InvalidPrivateKeyError(
            "Service account key is not an RSA key",
            details={"key_type": type(key).__name__}
        )
    return key


class JWTSigner:
    """Builds and RS256-signs token-exchange assertions for one service account."""

    def __init__(self, credentials: ServiceAccountCredentials, scopes: Sequence[str]):
        self.credentials = credentials
        self.scopes = list(scopes)
        self._private_key: Optional[rsa.RSAPrivateKey] = None

    @property
    def private_key(self) -> rsa.RSAPrivateKey:
        if self._private_key is None:
            self._private_key = load_rsa_private_key(self.credentials.private_key)
        return self._private_key

    def build_header(self) -> Dict[str, Any]:
        return {"alg": "RS256", "typ": "JWT", "kid": self.credentials.private_key_id}

    def build_claims(self, now: Optional[int] = None) -> Dict[str, Any]:
        issued_at = int(time.time()) if now is None else now
        return {
            "iss": self.credentials.client_email,
            "scope": " ".join(self.scopes),
            "aud": self.credentials.token_uri,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME,
        }

    def sign(self, now: Optional[int] = None) -> str:
        """Return the compact ``header.claims.signature`` assertion."""
        header = self.build_header()
        try:
            return jwt.encode(
                self.build_claims(now),
                self.private_key,
                algorithm="RS256",
                headers={"kid": header["kid"], "typ": header["typ"]},
            )
        except jwt.PyJWTError as e:
            raise TokenRequestFailedError(f"Failed to sign JWT assertion: {e}") from e
