"""
Shared error handling for the Federated Login service.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class LoginError(Exception):
    """Base exception for login failures.

    Every login failure that is answered directly (rather than through a
    redirect fragment or a completion page) is reported with HTTP 401.
    """

    status_code = 401

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return self.message

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


class BadInputError(LoginError):
    """Malformed client request (missing token, unexpected body shape)."""

    def __init__(self, message: str = "Bad input", details: Optional[Dict[str, Any]] = None):
        super().__init__("BAD_INPUT", message, details)


class UnsupportedProviderError(LoginError):
    """The named provider is not known to the service."""

    def __init__(self, provider: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "UNSUPPORTED_PROVIDER",
            f"Authentication with '{provider}' is not supported.",
            details,
        )


class MethodNotAllowedError(LoginError):
    """The verb or flow is not supported for the requested provider."""

    def __init__(self, message: str = "Method not allowed", details: Optional[Dict[str, Any]] = None):
        super().__init__("METHOD_NOT_ALLOWED", message, details)


class ConfigurationError(LoginError):
    """Provider disabled, or required credentials are missing."""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class StateMismatchError(LoginError):
    """OAuth state echoed by the provider does not match the state cookie."""

    def __init__(self, message: str = "OAuth state mismatch", details: Optional[Dict[str, Any]] = None):
        super().__init__("STATE_MISMATCH", message, details)


class NonceMismatchError(LoginError):
    """Nonce claim in a provider token does not match the nonce cookie."""

    def __init__(self, message: str = "Nonce mismatch", details: Optional[Dict[str, Any]] = None):
        super().__init__("NONCE_MISMATCH", message, details)


class ProviderError(LoginError):
    """Non-2xx or malformed response from a provider network call."""

    def __init__(self, provider: str, message: str = "Provider error", details: Optional[Dict[str, Any]] = None):
        self.provider = provider
        super().__init__("PROVIDER_ERROR", message, details)


class TokenValidationError(LoginError):
    """Signature, expiry, issuer or audience failure on a token."""

    def __init__(
        self,
        message: str = "Token validation failed",
        details: Optional[Dict[str, Any]] = None,
        *,
        key_not_found: bool = False,
    ):
        self.key_not_found = key_not_found
        super().__init__("TOKEN_VALIDATION_ERROR", message, details)


class OriginNotWhitelistedError(LoginError):
    """Completion origin is not in the CORS whitelist."""

    def __init__(self, origin: str, details: Optional[Dict[str, Any]] = None):
        self.origin = origin
        super().__init__("ORIGIN_NOT_WHITELISTED", f"Not a whitelisted origin: {origin}", details)
