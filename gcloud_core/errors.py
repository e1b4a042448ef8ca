"""
Error taxonomy for gcloud_core.

Every error carries a machine-readable ``code``, a human message and a
``details`` mapping holding the structured context (status code, service
name, remaining open time, attempt count) so callers can log or display it
without parsing the message.
"""

from typing import Dict, Any, Optional, TYPE_CHECKING

from opentelemetry import trace
from pydantic import BaseModel

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from gcloud_core.models import GoogleErrorResponse


RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class ErrorResponse(BaseModel):
    """Standard error payload for logging or surfacing to callers."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class GoogleCloudError(Exception):
    """Base exception for all gcloud_core errors."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthError(GoogleCloudError):
    """Failures while obtaining an access token."""


class InvalidCredentialsError(AuthError):

    def __init__(self, message: str = "Invalid credentials", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_CREDENTIALS", f"Invalid credentials: {message}", details)


class InvalidPrivateKeyError(AuthError):

    def __init__(self, message: str = "Unable to parse private key", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_PRIVATE_KEY", f"Invalid private key: {message}", details)


class TokenRequestFailedError(AuthError):

    def __init__(self, message: str = "Token request failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("TOKEN_REQUEST_FAILED", f"Token request failed: {message}", details)


class TokenParsingFailedError(AuthError):

    def __init__(self, message: str = "Unable to parse token response", details: Optional[Dict[str, Any]] = None):
        super().__init__("TOKEN_PARSING_FAILED", f"Token parsing failed: {message}", details)


class AuthHTTPError(AuthError):
    """Token endpoint answered with a non-200 status."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(
            "AUTH_HTTP_ERROR",
            f"HTTP error {status_code}: {body}",
            {"status_code": status_code, "body": body}
        )


class AuthNetworkError(AuthError):

    def __init__(self, message: str = "Network error", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTH_NETWORK_ERROR", f"Network error: {message}", details)


# ---------------------------------------------------------------------------
# API requests
# ---------------------------------------------------------------------------


class APIError(GoogleCloudError):
    """Failures while calling a Google Cloud REST API."""

    @property
    def is_retryable(self) -> bool:
        return False


class RequestFailedError(APIError):

    def __init__(self, message: str = "Request failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("REQUEST_FAILED", f"Request failed: {message}", details)


class InvalidResponseError(APIError):

    def __init__(self, message: str = "Invalid response", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_RESPONSE", f"Invalid response: {message}", details)


class HTTPStatusError(APIError):
    """Non-2xx response, with the parsed GCP error envelope when available."""

    def __init__(self, status_code: int, error: Optional["GoogleErrorResponse"] = None, url: Optional[str] = None):
        self.status_code = status_code
        self.error = error
        message = f"HTTP error {status_code}"
        if error is not None:
            message = f"{message}: {error.error.message}"
        details: Dict[str, Any] = {"status_code": status_code}
        if url:
            details["url"] = url
        if error is not None:
            details["error"] = error.model_dump(exclude_none=True)
        super().__init__("HTTP_ERROR", message, details)

    @property
    def is_retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES

    @property
    def failure_reason(self) -> Optional[str]:
        if self.status_code == 401:
            return "Authentication failed or token expired"
        if self.status_code == 403:
            return "Permission denied"
        if self.status_code == 404:
            return "Resource not found"
        if self.status_code == 429:
            return "Rate limit exceeded"
        if self.status_code >= 500:
            return "Google Cloud service error"
        return None

    @property
    def recovery_suggestion(self) -> Optional[str]:
        if self.status_code == 401:
            return "Check your credentials or refresh the auth token"
        if self.status_code == 403:
            return "Verify the service account has the required permissions"
        if self.status_code == 404:
            return "Verify the resource exists and the name is correct"
        if self.status_code == 429:
            return "Wait and retry the request, or reduce request frequency"
        if self.status_code >= 500:
            return "Retry the request after a short delay"
        return None


class DecodingError(APIError):

    def __init__(self, message: str = "Unable to decode response", details: Optional[Dict[str, Any]] = None):
        super().__init__("DECODING_ERROR", f"Decoding error: {message}", details)

    @property
    def recovery_suggestion(self) -> str:
        return "This may indicate an API change; check for library updates"


class EncodingError(APIError):

    def __init__(self, message: str = "Unable to encode request body", details: Optional[Dict[str, Any]] = None):
        super().__init__("ENCODING_ERROR", f"Encoding error: {message}", details)


class NetworkError(APIError):

    def __init__(self, message: str = "Network error", details: Optional[Dict[str, Any]] = None):
        super().__init__("NETWORK_ERROR", f"Network error: {message}", details)

    @property
    def is_retryable(self) -> bool:
        return True


class RequestTimeoutError(APIError):
    """The request did not complete within its per-request timeout."""

    def __init__(self, timeout: float, details: Optional[Dict[str, Any]] = None):
        self.timeout = timeout
        super().__init__(
            "TIMEOUT",
            f"Operation timed out after {timeout} seconds",
            {"timeout": timeout, **(details or {})}
        )

    @property
    def is_retryable(self) -> bool:
        return True


class RequestCancelledError(APIError):

    def __init__(self, message: str = "Operation was cancelled", details: Optional[Dict[str, Any]] = None):
        super().__init__("CANCELLED", message, details)


class MaxRetriesExceededError(APIError):
    """The retry budget ran out; ``last_error`` is the final underlying cause."""

    def __init__(self, last_error: Exception, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            "MAX_RETRIES_EXCEEDED",
            f"Max retries exceeded after {attempts} attempts, last error: {last_error}",
            {"attempts": attempts, "last_error": str(last_error), "last_error_type": type(last_error).__name__}
        )


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------


class CircuitBreakerError(GoogleCloudError):
    """Failures raised by the circuit breaker itself."""


class CircuitOpenError(CircuitBreakerError):
    """Raised when the circuit is open and the call is rejected."""

    def __init__(self, service: str, remaining_time: float):
        self.service = service
        self.remaining_time = remaining_time
        super().__init__(
            "CIRCUIT_OPEN",
            f"Circuit breaker for '{service}' is open. Retry in {remaining_time:.1f} seconds.",
            {"service": service, "remaining_time": remaining_time}
        )


class OperationTimeoutError(CircuitBreakerError):

    def __init__(self, service: str, timeout: float):
        self.service = service
        self.timeout = timeout
        super().__init__(
            "OPERATION_TIMEOUT",
            f"Operation on '{service}' timed out after {timeout} seconds.",
            {"service": service, "timeout": timeout}
        )
