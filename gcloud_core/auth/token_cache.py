"""
Single-slot cache for the current OAuth2 access token.
"""

from typing import Optional

from gcloud_core.models import AccessToken


class AccessTokenCache:
    """Holds one bearer token, replaced wholesale on every refresh.

    Readers only ever see the previous token or the fully refreshed one: the
    slot is swapped with a single attribute assignment and ``AccessToken`` is
    immutable.
    """

    def __init__(self):
        self._token: Optional[AccessToken] = None

    def get_valid(self) -> Optional[AccessToken]:
        """Return the cached token unless missing or inside the expiry skew."""
        token = self._token
        if token is None or token.is_expired:
            return None
        return token

    def store(self, token: AccessToken) -> None:
        self._token = token

    def invalidate(self) -> None:
        self._token = None

    @property
    def current(self) -> Optional[AccessToken]:
        return self._token
