"""
Unit tests for the service-account AuthClient.
"""

import asyncio
import json
import time
from urllib.parse import parse_qs

import httpx
import jwt
import pytest

from gcloud_core.auth.client import JWT_BEARER_GRANT, AuthClient
from gcloud_core.auth.token_cache import AccessTokenCache
from gcloud_core.errors import (
    AuthHTTPError,
    AuthNetworkError,
    InvalidCredentialsError,
    InvalidPrivateKeyError,
    TokenParsingFailedError,
    TokenRequestFailedError,
)
from gcloud_core.models import AccessToken, ServiceAccountCredentials
from gcloud_core.test_helpers import (
    TEST_PROJECT_ID,
    TEST_TOKEN_URI,
    create_credentials,
    create_service_account_info,
    create_token_response,
)


class TestAccessTokenCache:
    """Test cases for the single-slot token cache."""

    def test_empty_cache_has_no_token(self):
        assert AccessTokenCache().get_valid() is None

    def test_returns_token_outside_skew(self):
        cache = AccessTokenCache()
        token = AccessToken("t", "Bearer", time.time() + 120)
        cache.store(token)
        assert cache.get_valid() is token

    def test_token_inside_skew_is_stale(self):
        cache = AccessTokenCache()
        cache.store(AccessToken("t", "Bearer", time.time() + 30))
        assert cache.get_valid() is None
        assert cache.current is not None

    def test_invalidate(self):
        cache = AccessTokenCache()
        cache.store(AccessToken("t", "Bearer", time.time() + 3600))
        cache.invalidate()
        assert cache.current is None


class TestServiceAccountCredentials:
    """Test cases for credential loading."""

    def test_from_json(self):
        creds = ServiceAccountCredentials.from_json(json.dumps(create_service_account_info()))
        assert creds.project_id == TEST_PROJECT_ID

    def test_from_file(self, tmp_path):
        path = tmp_path / "key.json"
        path.write_text(json.dumps(create_service_account_info()))

        client = AuthClient.from_file(path)
        assert client.project_id == TEST_PROJECT_ID

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidCredentialsError):
            ServiceAccountCredentials.from_file(tmp_path / "missing.json")

    def test_missing_field(self):
        info = create_service_account_info()
        del info["token_uri"]

        with pytest.raises(InvalidCredentialsError) as exc_info:
            ServiceAccountCredentials.from_bytes(json.dumps(info).encode())
        assert exc_info.value.code == "INVALID_CREDENTIALS"

    def test_malformed_json(self):
        with pytest.raises(InvalidCredentialsError):
            ServiceAccountCredentials.from_json("{not json")


class TestAuthClient:
    """Test cases for AuthClient token exchange."""

    @pytest.mark.asyncio
    async def test_exchanges_signed_assertion(self, auth_client, mock_api):
        token = await auth_client.get_access_token()

        assert token.token == "ya29.token-1"
        assert token.authorization_header == "Bearer ya29.token-1"
        assert len(mock_api.token_requests) == 1

        request = mock_api.token_requests[0]
        assert request.method == "POST"
        assert str(request.url) == TEST_TOKEN_URI
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"

        form = parse_qs(request.content.decode())
        assert form["grant_type"] == [JWT_BEARER_GRANT]
        claims = jwt.decode(form["assertion"][0], options={"verify_signature": False})
        assert claims["aud"] == TEST_TOKEN_URI

    @pytest.mark.asyncio
    async def test_expires_at_from_expires_in(self, auth_client, mock_api):
        mock_api.queue_token((200, create_token_response("abc", expires_in=1800)))

        before = time.time()
        token = await auth_client.get_access_token()

        assert before + 1800 <= token.expires_at <= time.time() + 1800

    @pytest.mark.asyncio
    async def test_cached_token_reused_without_network(self, auth_client, mock_api):
        auth_client.token_cache.store(AccessToken("cached", "Bearer", time.time() + 120))

        token = await auth_client.get_access_token()

        assert token.token == "cached"
        assert mock_api.token_requests == []

    @pytest.mark.asyncio
    async def test_token_near_expiry_triggers_refresh(self, auth_client, mock_api):
        auth_client.token_cache.store(AccessToken("stale", "Bearer", time.time() + 30))

        token = await auth_client.get_access_token()

        assert token.token == "ya29.token-1"
        assert len(mock_api.token_requests) == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_exchange(self, auth_client, mock_api):
        tokens = await asyncio.gather(*(auth_client.get_access_token() for _ in range(10)))

        assert {t.token for t in tokens} == {"ya29.token-1"}
        assert len(mock_api.token_requests) == 1

    @pytest.mark.asyncio
    async def test_refresh_token_forces_exchange(self, auth_client, mock_api):
        first = await auth_client.get_access_token()
        second = await auth_client.refresh_token()

        assert first.token != second.token
        assert auth_client.token_cache.current is second
        assert len(mock_api.token_requests) == 2

    @pytest.mark.asyncio
    async def test_non_200_raises_auth_http_error(self, auth_client, mock_api):
        mock_api.queue_token((400, {"error": "invalid_grant"}))

        with pytest.raises(AuthHTTPError) as exc_info:
            await auth_client.get_access_token()

        assert exc_info.value.status_code == 400
        assert "invalid_grant" in exc_info.value.body
        assert auth_client.token_cache.current is None

    @pytest.mark.asyncio
    async def test_bad_token_payload(self, auth_client, mock_api):
        mock_api.queue_token((200, {"token_type": "Bearer"}))

        with pytest.raises(TokenParsingFailedError):
            await auth_client.get_access_token()

    @pytest.mark.asyncio
    async def test_transport_failure(self, auth_client, mock_api):
        mock_api.queue_token(httpx.ConnectError("connection refused"))

        with pytest.raises(AuthNetworkError):
            await auth_client.get_access_token()

    @pytest.mark.asyncio
    async def test_undecodable_token_response(self, auth_client, mock_api):
        mock_api.queue_token(
            httpx.Response(200, headers={"Content-Encoding": "gzip"}, stream=httpx.ByteStream(b"not-gzip"))
        )

        with pytest.raises(AuthNetworkError) as exc_info:
            await auth_client.get_access_token()
        assert isinstance(exc_info.value.__cause__, httpx.DecodingError)
        assert auth_client.token_cache.current is None

    @pytest.mark.asyncio
    async def test_oversized_token_response(self, auth_client, mock_api):
        mock_api.queue_token((200, b"x" * (1024 * 1024 + 1)))

        with pytest.raises(TokenRequestFailedError):
            await auth_client.get_access_token()

    @pytest.mark.asyncio
    async def test_invalid_private_key_is_fatal(self, mock_api):
        client = AuthClient(create_credentials(private_key="nope"), http_client=mock_api.client())

        with pytest.raises(InvalidPrivateKeyError):
            await client.get_access_token()
        assert mock_api.token_requests == []

    @pytest.mark.asyncio
    async def test_refresh_metrics(self, auth_client, mock_api, metrics):
        await auth_client.get_access_token()
        mock_api.queue_token((500, "boom"))
        with pytest.raises(AuthHTTPError):
            await auth_client.refresh_token()

        assert metrics.sample("gcloud_token_refresh_total", {"status": "success"}) == 1.0
        assert metrics.sample("gcloud_token_refresh_total", {"status": "failure"}) == 1.0

    def test_accessors(self, auth_client):
        assert auth_client.project_id == TEST_PROJECT_ID
        assert auth_client.service_account_email.endswith("iam.gserviceaccount.com")
