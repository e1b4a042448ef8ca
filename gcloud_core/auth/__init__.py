"""
Service-account authentication for Google Cloud APIs.
"""

from gcloud_core.auth.client import (
    AuthClient,
    COMPUTE_SCOPES,
    DEFAULT_SCOPES,
    JWT_BEARER_GRANT,
    STORAGE_SCOPES,
)
from gcloud_core.auth.jwt_signer import JWTSigner, load_rsa_private_key
from gcloud_core.auth.token_cache import AccessTokenCache

__all__ = [
    "AccessTokenCache",
    "AuthClient",
    "COMPUTE_SCOPES",
    "DEFAULT_SCOPES",
    "JWTSigner",
    "JWT_BEARER_GRANT",
    "STORAGE_SCOPES",
    "load_rsa_private_key",
]
