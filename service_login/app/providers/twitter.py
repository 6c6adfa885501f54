"""
Twitter identity provider (OAuth 1.0a, HMAC-SHA1).
"""

import json
from typing import Any, Dict, Optional

import httpx
from authlib.common.urls import url_decode
from authlib.oauth1 import ClientAuth

from shared.config import ProviderCredentials
from shared.encryption import DecryptionError, Encryptor
from shared.errors import BadInputError, MethodNotAllowedError, ProviderError
from shared.logging import get_logger
from ..login.cookies import REQUEST_TOKEN_COOKIE
from .base import AuthorizationDetails, FlowOptions, ProviderRedirect, build_url, ensure_enabled, send

REQUEST_TOKEN_URL = "https://api.twitter.com/oauth/request_token"
ACCESS_TOKEN_URL = "https://api.twitter.com/oauth/access_token"
AUTHENTICATE_URL = "https://api.twitter.com/oauth/authenticate"


class TwitterProvider:
    """Twitter login.

    Twitter does not echo an OAuth state parameter. The request token and
    its secret travel between the two legs in a cookie encrypted with the
    consumer secret.
    """

    name = "Twitter"
    key = "twitter"
    supports_oauth_state = False

    def __init__(self, credentials: ProviderCredentials, http_client: httpx.AsyncClient):
        self.credentials = credentials
        self.http_client = http_client
        self.logger = get_logger("login.providers.twitter")

    def is_new_flow(self, request) -> bool:
        return not request.query.get("oauth_verifier")

    async def redirect_headers(self, request, return_uri: str, options: FlowOptions) -> ProviderRedirect:
        credentials = ensure_enabled(self.key, self.credentials)
        auth = ClientAuth(
            credentials.client_id,
            client_secret=credentials.client_secret,
            redirect_uri=return_uri,
        )

        try:
            results = await self._signed_post(auth, REQUEST_TOKEN_URL)
        except ProviderError as e:
            raise ProviderError(self.name, "Unable to obtain OAuth request token from Twitter.") from e

        request_token = results.get("oauth_token")
        request_token_secret = results.get("oauth_token_secret")
        if not request_token or not request_token_secret:
            raise ProviderError(self.name, "Unable to obtain OAuth request token from Twitter.")

        payload = json.dumps({"rt": request_token, "rts": request_token_secret})
        encrypted = Encryptor(credentials.client_secret).encrypt(payload)

        return ProviderRedirect(
            location=build_url(AUTHENTICATE_URL, {"oauth_token": request_token}),
            cookies={REQUEST_TOKEN_COOKIE: encrypted},
        )

    async def extract_client_token(self, request) -> Any:
        raise MethodNotAllowedError("POST of Twitter token is not supported.")

    async def exchange_server_code(self, request, return_uri: str) -> Dict[str, Any]:
        credentials = ensure_enabled(self.key, self.credentials)
        request_token = self._request_token_from_cookie(request, credentials.client_secret)

        auth = ClientAuth(
            credentials.client_id,
            client_secret=credentials.client_secret,
            token=request_token["rt"],
            token_secret=request_token["rts"],
            verifier=request.query.get("oauth_verifier"),
        )

        try:
            results = await self._signed_post(auth, ACCESS_TOKEN_URL)
        except ProviderError as e:
            raise ProviderError(self.name, "Unable to obtain OAuth access token from Twitter.") from e

        return {
            "accessToken": results.get("oauth_token"),
            "accessTokenSecret": results.get("oauth_token_secret"),
            "results": results,
        }

    async def to_authorization_details(self, request, provider_token: Dict[str, Any], options: FlowOptions) -> AuthorizationDetails:
        results = provider_token.get("results")
        if not isinstance(results, dict) or not isinstance(results.get("user_id"), str):
            raise ProviderError(
                self.name,
                "Unable to extract Twitter user name from OAuth access token response from Twitter.",
            )

        provider_id = results["user_id"]
        details = AuthorizationDetails(
            provider_id=provider_id,
            secrets={
                "accessToken": provider_token.get("accessToken"),
                "accessTokenSecret": provider_token.get("accessTokenSecret"),
            },
        )

        if options.users_enabled:
            details.claims["id"] = provider_id
            if "screen_name" in results:
                details.claims["screen_name"] = results["screen_name"]

        return details

    async def _signed_post(self, auth: ClientAuth, url: str) -> Dict[str, str]:
        uri, headers, body = auth.sign("POST", url, {}, b"")
        response = await send(self.http_client, self.name, "The Twitter OAuth request", "POST", uri, headers=headers, content=body)
        if response.status_code != 200:
            raise ProviderError(
                self.name,
                f"The Twitter OAuth request failed with HTTP status code {response.status_code}",
            )
        try:
            return dict(url_decode(response.text))
        except ValueError as e:
            raise ProviderError(self.name, "The Twitter OAuth request returned a malformed response.") from e

    def _request_token_from_cookie(self, request, consumer_secret: str) -> Dict[str, str]:
        cookie_value: Optional[str] = request.cookies.get(REQUEST_TOKEN_COOKIE)
        if not cookie_value:
            raise BadInputError("OAuth request token is not present in the HTTP cookies of the request.")

        try:
            request_token = json.loads(Encryptor(consumer_secret).decrypt(cookie_value))
        except (DecryptionError, ValueError) as e:
            raise BadInputError("Invalid OAuth request token in the HTTP cookies of the request.") from e

        if (
            not isinstance(request_token, dict)
            or not isinstance(request_token.get("rt"), str)
            or not isinstance(request_token.get("rts"), str)
        ):
            raise BadInputError("Invalid OAuth request token in the HTTP cookies of the request.")
        return request_token
