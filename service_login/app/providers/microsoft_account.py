"""
Microsoft Account identity provider (Live Connect).
"""

from typing import Any, Dict, Optional

import httpx
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from shared.config import ProviderCredentials
from shared.encryption import derive_signing_key
from shared.errors import BadInputError, ProviderError, TokenValidationError
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

AUTHORIZE_URL = "https://login.live.com/oauth20_authorize.srf"
TOKEN_URL = "https://login.live.com/oauth20_token.srf"
PROFILE_URL = "https://apis.live.net/v5.0/me"
SIGNING_SUFFIX = "JWTSig"
PROFILE_CLAIMS = ("id", "name", "first_name", "last_name", "link", "gender", "locale", "emails")


class MicrosoftAccountProvider:
    """Microsoft Account login.

    Live issues an HS256 authentication token signed with a key derived from
    the application's client secret, so no certificate cache is needed.
    """

    name = "MicrosoftAccount"
    key = "microsoftaccount"
    supports_oauth_state = True

    def __init__(self, credentials: ProviderCredentials, http_client: httpx.AsyncClient):
        self.credentials = credentials
        self.http_client = http_client
        self.logger = get_logger("login.providers.microsoftaccount")

    def is_new_flow(self, request) -> bool:
        return not (request.query.get("error") or request.query.get("code"))

    async def redirect_headers(self, request, return_uri: str, options: FlowOptions) -> ProviderRedirect:
        credentials = ensure_enabled(self.key, self.credentials)
        default_scope = "wl.basic wl.signin" if options.users_enabled else "wl.basic"
        scope = request.query.get("scope") or normalize_scope(credentials.scope or default_scope, " ")
        display = request.query.get("display") or credentials.display or "touch"

        location = build_url(AUTHORIZE_URL, {
            "client_id": credentials.client_id,
            "display": display,
            "response_type": "code",
            "scope": scope,
            "redirect_uri": return_uri,
        })
        return ProviderRedirect(location=location)

    async def extract_client_token(self, request) -> Dict[str, Any]:
        body = request.body
        if not isinstance(body, dict) or not isinstance(body.get("authenticationToken"), str):
            raise BadInputError(
                "The POST Microsoft Account login request must specify the authentication token "
                "in the body of the request."
            )
        return dict(body)

    async def exchange_server_code(self, request, return_uri: str) -> Dict[str, Any]:
        error = query_error(request, self.name)
        if error:
            raise error

        credentials = ensure_enabled(self.key, self.credentials)
        operation = "The Microsoft Account authentication request"
        response = await send(
            self.http_client, self.name, operation, "POST", TOKEN_URL,
            data={
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
                "code": request.query.get("code", ""),
                "redirect_uri": return_uri,
                "grant_type": "authorization_code",
            },
        )
        payload = parse_json(response, self.name, operation)

        if not payload:
            raise ProviderError(self.name, f"{operation} failed to return an access token.")
        if not isinstance(payload, dict) or not isinstance(payload.get("access_token"), str):
            raise ProviderError(self.name, f"{operation} returned an invalid access token.")

        payload["authenticationToken"] = payload.get("authentication_token")
        return payload

    async def to_authorization_details(self, request, provider_token: Dict[str, Any], options: FlowOptions) -> AuthorizationDetails:
        credentials = ensure_enabled(self.key, self.credentials)
        claims = self._parse_authentication_token(provider_token.get("authenticationToken"), credentials.client_secret)

        details = AuthorizationDetails(provider_id=claims["uid"])
        access_token = provider_token.get("access_token")
        if access_token:
            details.secrets["accessToken"] = access_token

        if access_token and options.users_enabled:
            profile = await self._fetch_profile(access_token)
            if profile is not None:
                details.claims.update({k: profile[k] for k in PROFILE_CLAIMS if k in profile})

        return details

    def _parse_authentication_token(self, token: Optional[str], client_secret: str) -> Dict[str, Any]:
        if not isinstance(token, str) or not token:
            raise TokenValidationError("Invalid token format. Token must not be empty.")

        signing_key = derive_signing_key(client_secret, SIGNING_SUFFIX)
        try:
            claims = jwt.decode(
                token,
                signing_key,
                algorithms=["HS256"],
                options={"verify_aud": False, "require_exp": True, "leeway": 5 * 60},
            )
        except ExpiredSignatureError as e:
            raise TokenValidationError("The authentication token has expired.") from e
        except JWTError as e:
            raise TokenValidationError(f"The authentication token is invalid. {e}") from e

        if not claims.get("uid"):
            raise TokenValidationError("The authentication token does not contain a uid claim.")
        return claims

    async def _fetch_profile(self, access_token: str) -> Optional[Dict[str, Any]]:
        try:
            response = await send(
                self.http_client, self.name, "The Microsoft Account profile request", "GET", PROFILE_URL,
                params={"access_token": access_token},
            )
            profile = parse_json(response, self.name, "The Microsoft Account profile request")
        except ProviderError as e:
            self.logger.warning("Failed to retrieve Microsoft Account profile", error=str(e))
            return None

        if not isinstance(profile, dict):
            self.logger.warning("Unexpected Microsoft Account profile payload")
            return None
        return profile
