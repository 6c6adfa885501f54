"""
Request, response and per-request context for the login flow.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shared.errors import LoginError
from shared.metrics import MetricsCollector
from .cookies import CookieJar, encode_value


@dataclass
class LoginRequest:
    """Transport-independent view of an inbound login request."""
    method: str
    provider: Optional[str]
    host: str
    query: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    cookies: CookieJar = field(default_factory=CookieJar)


@dataclass
class LoginResponse:
    status_code: int
    body: Optional[Dict[str, Any]] = None
    html: Optional[str] = None
    location: Optional[str] = None
    set_cookies: List[str] = field(default_factory=list)


class LoginContext:
    """Everything one orchestration pass needs; discarded with the response.

    All responses leave through the emitters below so that the reserved
    cookies are reconciled on every path.
    """

    def __init__(self, request: LoginRequest, logger, metrics: Optional[MetricsCollector] = None):
        self.request = request
        self.logger = logger
        self.metrics = metrics
        self.provider = None
        self.provider_name: Optional[str] = request.provider

    @property
    def cookies(self) -> CookieJar:
        return self.request.cookies

    def respond_success(self, body: Optional[Dict[str, Any]] = None) -> LoginResponse:
        return LoginResponse(status_code=200, body=body, set_cookies=self.cookies.set_cookie_headers())

    def redirect(self, location: str) -> LoginResponse:
        return LoginResponse(status_code=302, location=location, set_cookies=self.cookies.set_cookie_headers())

    def redirect_with_token(self, final_uri: str, body: Dict[str, Any]) -> LoginResponse:
        encoded = encode_value(json.dumps(body, separators=(",", ":")))
        return self.redirect(f"{final_uri}#token={encoded}")

    def redirect_with_error(self, final_uri: str, error: Exception) -> LoginResponse:
        self.record_error(error)
        self.logger.info("Error being returned via a redirect URL", error=str(error))
        return self.redirect(f"{final_uri}#error={encode_value(str(error))}")

    def respond_error(self, error: LoginError) -> LoginResponse:
        self.record_error(error)
        self.logger.warning("Login failed", code=error.code, error=error.message)
        return LoginResponse(
            status_code=error.status_code,
            body=error.to_response().model_dump(),
            set_cookies=self.cookies.set_cookie_headers(),
        )

    def render(self, html: str) -> LoginResponse:
        return LoginResponse(status_code=200, html=html, set_cookies=self.cookies.set_cookie_headers())

    def record_error(self, error: Exception) -> None:
        # Provider-scoped series only once the provider name is known to be valid
        if self.metrics is not None and self.provider is not None:
            self.metrics.record_login_error(self.provider_name)
