"""
Facebook identity provider (OAuth 2.0 + Graph API).
"""

from typing import Any, Dict

import httpx

from shared.config import ProviderCredentials
from shared.errors import BadInputError, ProviderError
from shared.logging import get_logger
from .base import (
    AuthorizationDetails,
    FlowOptions,
    ProviderRedirect,
    build_url,
    ensure_enabled,
    normalize_scope,
    parse_json,
    query_error,
    send,
)

HOSTS = {
    "prod": {"dialog": "https://www.facebook.com/dialog/oauth", "graph": "https://graph.facebook.com"},
    "beta": {"dialog": "https://www.beta.facebook.com/dialog/oauth", "graph": "https://graph.beta.facebook.com"},
}
PROFILE_CLAIMS = ("id", "username", "email", "name", "gender", "first_name", "last_name", "link", "locale")


class FacebookProvider:
    """Facebook login; every token is exchanged for a long-lived one."""

    name = "Facebook"
    key = "facebook"
    supports_oauth_state = True

    def __init__(self, credentials: ProviderCredentials, http_client: httpx.AsyncClient):
        self.credentials = credentials
        self.http_client = http_client
        self.logger = get_logger("login.providers.facebook")

    def is_new_flow(self, request) -> bool:
        return not (request.query.get("error") or request.query.get("code"))

    async def redirect_headers(self, request, return_uri: str, options: FlowOptions) -> ProviderRedirect:
        credentials = ensure_enabled(self.key, self.credentials)
        display = request.query.get("display") or credentials.display or "touch"
        scope = request.query.get("scope") or normalize_scope(credentials.scope or "", ",")

        location = build_url(self._host(request, "dialog"), {
            "client_id": credentials.client_id,
            "redirect_uri": return_uri,
            "display": display,
            "scope": scope or None,
        })
        return ProviderRedirect(location=location)

    async def extract_client_token(self, request) -> str:
        body = request.body
        if not isinstance(body, dict) or not isinstance(body.get("access_token"), str):
            raise BadInputError(
                "The POST Facebook login request must specify the access token in the body of the request."
            )

        credentials = ensure_enabled(self.key, self.credentials)
        return await self._access_token(
            request,
            "The Facebook Graph API access token authorization request",
            {
                "grant_type": "fb_exchange_token",
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
                "fb_exchange_token": body["access_token"],
            },
        )

    async def exchange_server_code(self, request, return_uri: str) -> str:
        error = query_error(request, self.name)
        if error:
            raise error

        credentials = ensure_enabled(self.key, self.credentials)
        return await self._access_token(
            request,
            "The Facebook Graph API request",
            {
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
                "code": request.query.get("code", ""),
                "redirect_uri": return_uri,
            },
        )

    async def to_authorization_details(self, request, provider_token: str, options: FlowOptions) -> AuthorizationDetails:
        operation = "The Facebook Graph API request"
        response = await send(
            self.http_client, self.name, operation, "GET", self._host(request, "graph") + "/me",
            params={"access_token": provider_token},
        )
        me = parse_json(response, self.name, operation)

        if not isinstance(me, dict) or not isinstance(me.get("id"), str):
            raise ProviderError(self.name, "Unexpected content in the response from the Facebook Graph API")

        details = AuthorizationDetails(provider_id=me["id"], secrets={"accessToken": provider_token})
        if options.users_enabled:
            details.claims.update({k: me[k] for k in PROFILE_CLAIMS if k in me})
        return details

    async def _access_token(self, request, operation: str, params: Dict[str, Any]) -> str:
        response = await send(
            self.http_client, self.name, operation, "GET",
            self._host(request, "graph") + "/oauth/access_token",
            params=params,
        )
        payload = parse_json(response, self.name, operation)

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise ProviderError(self.name, f"{operation} failed to return an access token.")
        return token

    def _host(self, request, kind: str) -> str:
        mode = "beta" if request.query.get("useBeta") else "prod"
        return HOSTS[mode][kind]
