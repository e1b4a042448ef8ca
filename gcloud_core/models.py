"""
Data model shared by the auth, HTTP and caching layers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Generic, List, Optional, Tuple, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gcloud_core.errors import InvalidCredentialsError

T = TypeVar("T")

# Tokens are treated as expired this many seconds before their real expiry.
TOKEN_EXPIRY_SKEW = 60.0


class ServiceAccountCredentials(BaseModel):
    """A service-account JSON key file."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str
    project_id: str
    private_key_id: str
    private_key: str
    client_email: str
    client_id: str
    auth_uri: str
    token_uri: str
    auth_provider_x509_cert_url: str
    client_x509_cert_url: str
    universe_domain: Optional[str] = None

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ServiceAccountCredentials":
        """Load credentials from a JSON key file on disk."""
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            raise InvalidCredentialsError(
                f"Unable to read credentials file: {e}",
                details={"path": str(path)}
            ) from e
        return cls.from_bytes(data)

    @classmethod
    def from_bytes(cls, data: bytes) -> "ServiceAccountCredentials":
        """Load credentials from raw JSON bytes."""
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise InvalidCredentialsError(
                "Credentials JSON is malformed or incomplete",
                details={"errors": [err["loc"] for err in e.errors()]}
            ) from e

    @classmethod
    def from_json(cls, json_string: str) -> "ServiceAccountCredentials":
        """Load credentials from a JSON string."""
        try:
            data = json_string.encode("utf-8")
        except UnicodeEncodeError as e:
            raise InvalidCredentialsError("Invalid JSON string encoding") from e
        return cls.from_bytes(data)


@dataclass(frozen=True)
class AccessToken:
    """An OAuth2 bearer token issued by the token endpoint."""

    token: str
    token_type: str
    expires_at: float

    @property
    def is_expired(self) -> bool:
        """True once the token is within the refresh skew of its expiry."""
        return time.time() + TOKEN_EXPIRY_SKEW >= self.expires_at

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.token}"


class TokenResponse(BaseModel):
    """Token endpoint response body."""

    access_token: str
    token_type: str
    expires_in: int


class GoogleErrorItem(BaseModel):
    domain: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None


class GoogleErrorDetails(BaseModel):
    code: int
    message: str
    status: Optional[str] = None
    errors: Optional[List[GoogleErrorItem]] = None


class GoogleErrorResponse(BaseModel):
    """Standard Google Cloud error envelope returned on non-2xx responses."""

    error: GoogleErrorDetails

    @classmethod
    def parse_body(cls, body: bytes) -> Optional["GoogleErrorResponse"]:
        """Best-effort parse; returns None when the body is not an error envelope."""
        if not body:
            return None
        try:
            return cls.model_validate_json(body)
        except ValidationError:
            return None


class EmptyResponse(BaseModel):
    """Sentinel returned for empty bodies the caller explicitly allowed."""


@dataclass(frozen=True)
class APIResponse(Generic[T]):
    """Decoded API response plus transport metadata."""

    data: T
    status_code: int
    headers: List[Tuple[str, str]] = field(default_factory=list)

    def header(self, name: str) -> Optional[str]:
        """Return the first header value matching ``name`` case-insensitively."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None


class ListResponse(BaseModel):
    """Generic paginated list response."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    items: Optional[List[Any]] = None
    next_page_token: Optional[str] = Field(default=None, alias="nextPageToken")
    self_link: Optional[str] = Field(default=None, alias="selfLink")

    @property
    def has_more_pages(self) -> bool:
        return bool(self.next_page_token)

    @property
    def items_or_empty(self) -> List[Any]:
        return self.items or []

