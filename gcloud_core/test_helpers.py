"""
Test helper functions and factory methods for gcloud_core.
"""

import functools
import json
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Tuple, Union

import httpx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from gcloud_core.models import ServiceAccountCredentials

TEST_TOKEN_URI = "https://oauth2.googleapis.com/token"
TEST_BASE_URL = "https://compute.googleapis.com/compute/v1"
TEST_PROJECT_ID = "test-project"
TEST_CLIENT_EMAIL = "svc@test-project.iam.gserviceaccount.com"
TEST_PRIVATE_KEY_ID = "key-0123456789"


@functools.lru_cache(maxsize=1)
def generate_private_key() -> rsa.RSAPrivateKey:
    """Generate (once per process) an RSA key for signing test assertions."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def private_key_pem() -> str:
    return generate_private_key().private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def public_key_pem() -> str:
    return generate_private_key().public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def create_service_account_info(**overrides: Any) -> Dict[str, Any]:
    """Create the dict form of a service-account key file."""
    info = {
        "type": "service_account",
        "project_id": TEST_PROJECT_ID,
        "private_key_id": TEST_PRIVATE_KEY_ID,
        "private_key": private_key_pem(),
        "client_email": TEST_CLIENT_EMAIL,
        "client_id": "123456789012345678901",
        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
        "token_uri": TEST_TOKEN_URI,
        "auth_provider_x509_cert_url": "https://www.googleapis.com/oauth2/v1/certs",
        "client_x509_cert_url": f"https://www.googleapis.com/robot/v1/metadata/x509/{TEST_CLIENT_EMAIL}",
    }
    info.update(overrides)
    return info


def create_credentials(**overrides: Any) -> ServiceAccountCredentials:
    return ServiceAccountCredentials.model_validate(create_service_account_info(**overrides))


def create_token_response(access_token: str = "ya29.test-token",
                          expires_in: int = 3600,
                          token_type: str = "Bearer") -> Dict[str, Any]:
    return {"access_token": access_token, "expires_in": expires_in, "token_type": token_type}


def create_google_error(code: int, message: str, status: Optional[str] = None) -> Dict[str, Any]:
    """Create a standard Google Cloud error envelope."""
    error: Dict[str, Any] = {"code": code, "message": message}
    if status:
        error["status"] = status
    return {"error": error}


CannedResponse = Union[httpx.Response, Tuple[int, Any], Exception]


class MockGoogleAPI:
    """In-process stand-in for the token endpoint and one REST API.

    Responses are queued per ``(method, path)``; when a queue runs dry the
    last response is repeated. Use ``transport`` to build an
    ``httpx.AsyncClient`` shared by the auth client and the HTTP client.
    """

    def __init__(self, token_uri: str = TEST_TOKEN_URI):
        self.token_uri = token_uri
        self.requests: List[httpx.Request] = []
        self.token_requests: List[httpx.Request] = []
        self._token_responses: Deque[CannedResponse] = deque()
        self._routes: Dict[Tuple[str, str], Deque[CannedResponse]] = defaultdict(deque)
        self._last: Dict[Tuple[str, str], CannedResponse] = {}
        self._token_counter = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    def queue_token(self, *responses: CannedResponse) -> None:
        self._token_responses.extend(responses)

    def queue(self, method: str, path: str, *responses: CannedResponse) -> None:
        self._routes[(method.upper(), path)].extend(responses)

    def calls_to(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == self.token_uri:
            self.token_requests.append(request)
            if self._token_responses:
                return self._build(self._token_responses.popleft())
            self._token_counter += 1
            return httpx.Response(200, json=create_token_response(f"ya29.token-{self._token_counter}"))

        self.requests.append(request)
        key = (request.method, request.url.path)
        queue = self._routes.get(key)
        if queue:
            canned = queue.popleft()
            self._last[key] = canned
        elif key in self._last:
            canned = self._last[key]
        else:
            canned = (404, create_google_error(404, f"No route for {request.method} {request.url.path}", "NOT_FOUND"))
        return self._build(canned)

    @staticmethod
    def _build(canned: CannedResponse) -> httpx.Response:
        if isinstance(canned, Exception):
            raise canned
        if isinstance(canned, httpx.Response):
            return canned
        status_code, body = canned
        if body is None:
            return httpx.Response(status_code)
        if isinstance(body, (bytes, str)):
            return httpx.Response(status_code, content=body)
        return httpx.Response(status_code, content=json.dumps(body).encode("utf-8"),
                              headers={"Content-Type": "application/json"})
