"""
Google identity provider (OpenID Connect).
"""

from typing import Any, Dict, Optional

import httpx

from shared.config import ProviderCredentials
from shared.errors import BadInputError, ProviderError
from shared.logging import get_logger
from ..certs.cache import GoogleCertCache
from ..validation.token_validator import TokenValidator
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

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URL = "https://accounts.google.com/o/oauth2/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
DEFAULT_SCOPE = "https://www.googleapis.com/auth/userinfo.profile"
ISSUERS = ("accounts.google.com", "https://accounts.google.com")
PROFILE_CLAIMS = ("email", "family_name", "given_name", "locale", "name", "picture", "sub")


class GoogleProvider:
    """Google login; id_tokens are verified against Google's published certificates."""

    name = "Google"
    key = "google"
    supports_oauth_state = True

    def __init__(
        self,
        credentials: ProviderCredentials,
        http_client: httpx.AsyncClient,
        cert_cache: GoogleCertCache,
    ):
        self.credentials = credentials
        self.http_client = http_client
        self.validator = TokenValidator(cert_cache)
        self.logger = get_logger("login.providers.google")

    def is_new_flow(self, request) -> bool:
        return not (request.query.get("error") or request.query.get("code"))

    async def redirect_headers(self, request, return_uri: str, options: FlowOptions) -> ProviderRedirect:
        credentials = ensure_enabled(self.key, self.credentials)
        scope = request.query.get("scope") or normalize_scope(credentials.scope or DEFAULT_SCOPE, " ")
        access_type = request.query.get("access_type") or credentials.access_type or "online"

        location = build_url(AUTHORIZE_URL, {
            "response_type": "code",
            "client_id": credentials.client_id,
            "redirect_uri": return_uri,
            "scope": scope,
            "access_type": access_type,
            "approval_prompt": "auto",
        })
        return ProviderRedirect(location=location)

    async def extract_client_token(self, request) -> Dict[str, Any]:
        body = request.body
        if not isinstance(body, dict) or not isinstance(body.get("id_token"), str):
            raise BadInputError(
                "The POST Google login request must contain an id_token in the body of the request."
            )

        ensure_enabled(self.key, self.credentials, require_secret=False)
        claims = await self._validate_id_token(body["id_token"])
        return {"id_token": claims}

    async def exchange_server_code(self, request, return_uri: str) -> Dict[str, Any]:
        error = query_error(request, self.name)
        if error:
            raise error

        credentials = ensure_enabled(self.key, self.credentials)
        response = await send(
            self.http_client, self.name, "The Google API request", "POST", TOKEN_URL,
            data={
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
                "code": request.query.get("code", ""),
                "grant_type": "authorization_code",
                "redirect_uri": return_uri,
            },
        )
        payload = parse_json(response, self.name, "The Google API request")

        id_token = payload.get("id_token") if isinstance(payload, dict) else None
        if not isinstance(id_token, str):
            raise ProviderError(self.name, "The Google API request failed to return an id_token.")

        claims = await self._validate_id_token(id_token)
        return {"id_token": claims, "access_token": payload.get("access_token")}

    async def to_authorization_details(self, request, provider_token: Dict[str, Any], options: FlowOptions) -> AuthorizationDetails:
        provider_id = provider_token["id_token"]["sub"]
        details = AuthorizationDetails(provider_id=provider_id)

        access_token = provider_token.get("access_token")
        if access_token:
            details.secrets["accessToken"] = access_token

        if access_token and options.users_enabled:
            profile = await self._fetch_profile(access_token)
            if profile is not None:
                details.claims["id"] = provider_id
                details.claims.update({k: profile[k] for k in PROFILE_CLAIMS if k in profile})

        return details

    async def _validate_id_token(self, id_token: str) -> Dict[str, Any]:
        return await self.validator.validate(
            id_token,
            audience=self.credentials.client_id,
            issuers=ISSUERS,
        )

    async def _fetch_profile(self, access_token: str) -> Optional[Dict[str, Any]]:
        try:
            response = await send(
                self.http_client, self.name, "The Google userinfo request", "GET", USERINFO_URL,
                params={"access_token": access_token},
            )
            profile = parse_json(response, self.name, "The Google userinfo request")
        except ProviderError as e:
            self.logger.warning("Failed to retrieve Google user info", error=str(e))
            return None

        if not isinstance(profile, dict):
            self.logger.warning("Unexpected Google user info payload")
            return None
        return profile
