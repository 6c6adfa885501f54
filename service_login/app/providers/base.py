"""
Provider adapter contract and helpers shared by the adapters.
"""

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, runtime_checkable
from urllib.parse import quote, urlencode

import httpx

from shared.config import ProviderCredentials
from shared.errors import ConfigurationError, ProviderError

if TYPE_CHECKING:
    from ..login.context import LoginRequest


@dataclass
class AuthorizationDetails:
    """Provider-agnostic result of federating one identity.

    ``claims`` are non-secret and user-facing; ``secrets`` (provider access
    tokens and the like) must be encrypted wherever they are persisted.
    ``id`` is filled in by the identity store when it is enabled.
    """
    provider_id: str
    claims: Dict[str, Any] = field(default_factory=dict)
    secrets: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass
class FlowOptions:
    users_enabled: bool = False


@dataclass
class ProviderRedirect:
    """Where to send the browser, plus any cookies the provider needs on return."""
    location: str
    cookies: Dict[str, str] = field(default_factory=dict)


@runtime_checkable
class ProviderAdapter(Protocol):
    """Capabilities every identity provider integration supplies.

    ``supports_oauth_state`` is False for providers that do not echo an
    opaque ``state`` parameter. AAD compensates with a nonce carried inside
    its id_token; Twitter's OAuth 1.0a redirect has no replay protection
    beyond its single-use request token.
    """

    name: str
    key: str
    supports_oauth_state: bool

    def is_new_flow(self, request: "LoginRequest") -> bool:
        ...

    async def redirect_headers(
        self, request: "LoginRequest", return_uri: str, options: FlowOptions
    ) -> ProviderRedirect:
        ...

    async def extract_client_token(self, request: "LoginRequest") -> Any:
        ...

    async def exchange_server_code(self, request: "LoginRequest", return_uri: str) -> Any:
        ...

    async def to_authorization_details(
        self, request: "LoginRequest", provider_token: Any, options: FlowOptions
    ) -> AuthorizationDetails:
        ...


def ensure_enabled(
    key: str, credentials: Optional[ProviderCredentials], require_secret: bool = True
) -> ProviderCredentials:
    """Raise ConfigurationError unless the provider is enabled and its credentials are set."""
    if credentials is None or not credentials.enabled:
        raise ConfigurationError(f"Logging in with {key} is not enabled.")
    if not credentials.client_id or (require_secret and not credentials.client_secret):
        raise ConfigurationError(f"Credentials for {key} are not configured.")
    return credentials


def query_error(request: "LoginRequest", provider: str) -> Optional[ProviderError]:
    """Error reported by the provider on the redirect back, if any."""
    error = request.query.get("error")
    if not error:
        return None
    description = request.query.get("error_description")
    message = f"{error}: {description}" if description else error
    return ProviderError(provider, message)


def normalize_scope(scope: str, separator: str) -> str:
    """Split a comma/space separated scope list and rejoin it with ``separator``."""
    parts = [part for part in re.split(r"[, ]", scope.strip()) if part]
    return separator.join(parts)


def build_url(base: str, params: Dict[str, Optional[str]]) -> str:
    query = urlencode({k: v for k, v in params.items() if v is not None}, quote_via=quote)
    return f"{base}?{query}"


def parse_json(response: httpx.Response, provider: str, operation: str) -> Any:
    """Decode a provider JSON response, mapping non-2xx and bad bodies to ProviderError."""
    if response.status_code != 200:
        raise ProviderError(
            provider,
            f"{operation} failed with HTTP status code {response.status_code}",
            details={"status_code": response.status_code},
        )
    try:
        return response.json()
    except ValueError as e:
        raise ProviderError(provider, f"{operation} returned a malformed response.") from e


async def send(http_client: httpx.AsyncClient, provider: str, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
    """Issue an outbound provider call; transport failures and timeouts become ProviderError."""
    try:
        return await http_client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        raise ProviderError(provider, f"{operation} failed: {e.__class__.__name__}") from e
