"""
Login orchestration.

A request is classified into one of four flows:

- completion sentinel (``GET /login/done``): answered immediately so a
  browser can poll a stable return URL;
- client flow (POST): the caller already holds a provider token;
- new server flow (GET without a continuation marker): redirect to the
  provider's consent page;
- continued server flow (GET back from the provider): validate state,
  exchange the code, issue the service token and deliver it by redirect
  fragment or popup completion page.

Failures detected before any provider call are answered directly with no
cookie writes beyond expiring the reserved cookies the request carried.
"""

import secrets
from typing import Any, Dict, Mapping, Optional
from urllib.parse import unquote

from shared.config import ProviderCredentials
from shared.encryption import Encryptor
from shared.errors import (
    BadInputError,
    ConfigurationError,
    LoginError,
    MethodNotAllowedError,
    OriginNotWhitelistedError,
    StateMismatchError,
    UnsupportedProviderError,
)
from shared.logging import get_logger, set_provider_context
from shared.metrics import MetricsCollector
from ..providers.base import AuthorizationDetails, FlowOptions, ProviderAdapter
from ..tokens.issuer import TokenIssuer
from ..users.service import NullUserService, UserService, get_provider_key_by_name
from .completion import CompletionRenderer
from .context import LoginContext, LoginRequest, LoginResponse
from .cookies import (
    COMPLETION_ACTION_COOKIE,
    COMPLETION_TYPES,
    SINGLE_SIGN_ON_COOKIE,
    STATE_COOKIE,
    create_flow_token,
    decode_completion_action,
    decrypt_value,
    encode_completion_action,
    encode_value,
)
from .cors import CorsWhitelist

REDIRECT_SCHEME = "https"
COMPLETED_FLOW_PROVIDER = "done"
LEGACY_PROVIDER = "microsoftaccount"


class LoginOrchestrator:
    """Drives one login request to exactly one response."""

    def __init__(
        self,
        providers: Mapping[str, ProviderAdapter],
        credentials: Mapping[str, ProviderCredentials],
        issuer: TokenIssuer,
        whitelist: CorsWhitelist,
        master_key: str,
        user_service: Optional[UserService] = None,
        renderer: Optional[CompletionRenderer] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.providers = providers
        self.credentials = credentials
        self.issuer = issuer
        self.whitelist = whitelist
        self.encryptor = Encryptor(master_key)
        self.user_service = user_service or NullUserService()
        self.renderer = renderer or CompletionRenderer()
        self.metrics = metrics
        self.logger = get_logger("login.orchestrator")

    async def handle(self, request: LoginRequest) -> LoginResponse:
        self._normalize(request)
        context = LoginContext(request, self.logger.bind(provider=request.provider), self.metrics)

        try:
            return await self._dispatch(context)
        except LoginError as e:
            return context.respond_error(e)

    def _normalize(self, request: LoginRequest) -> None:
        """Legacy ``POST /login`` means Microsoft Account; provider names are case-insensitive."""
        request.method = request.method.upper()
        if request.method == "POST" and not request.provider:
            request.provider = LEGACY_PROVIDER
        else:
            request.provider = (request.provider or "").lower()

    async def _dispatch(self, context: LoginContext) -> LoginResponse:
        request = context.request

        if request.method == "GET" and request.provider == COMPLETED_FLOW_PROVIDER:
            return context.respond_success(None)

        provider = self.providers.get(request.provider)
        if provider is None:
            raise UnsupportedProviderError(request.provider)

        context.provider = provider
        context.provider_name = request.provider
        set_provider_context(request.provider)

        if request.method == "POST":
            return await self._handle_client_flow(context)
        if request.method == "GET":
            return await self._handle_server_flow(context)

        raise MethodNotAllowedError(f"{request.method} requests are not supported.")

    async def _handle_client_flow(self, context: LoginContext) -> LoginResponse:
        provider = context.provider
        request = context.request
        self._record_attempt(context, "client")
        self._ensure_enabled(context)

        context.logger.debug("Getting the provider token from the client flow request")
        provider_token = await provider.extract_client_token(request)

        options = await self._flow_options()
        details = await provider.to_authorization_details(request, provider_token, options)
        body = await self._create_login_response(context, details, options)
        return context.respond_success(body)

    async def _handle_server_flow(self, context: LoginContext) -> LoginResponse:
        request = context.request
        self._record_attempt(context, "server")
        self._ensure_enabled(context)

        return_uri = f"{REDIRECT_SCHEME}://{request.host}/login/{request.provider}"
        if context.provider.is_new_flow(request):
            return await self._handle_new_server_flow(context, return_uri)
        return await self._handle_continued_server_flow(context, return_uri)

    async def _handle_new_server_flow(self, context: LoginContext, return_uri: str) -> LoginResponse:
        provider = context.provider
        request = context.request
        cookies = context.cookies

        # Validate everything the client controls before contacting the provider
        sso_target = self._single_sign_on_target(context)
        if sso_target:
            self._validate_single_sign_on_target(sso_target)

        completion_action = self._completion_action_from_query(request.query)
        if completion_action:
            self._validate_completion_action(completion_action)

        context.logger.info("Initializing a new server authentication flow")
        options = await self._flow_options()
        try:
            redirect = await provider.redirect_headers(request, return_uri, options)
        except LoginError as e:
            return context.redirect_with_error(self._final_redirect_uri(context), e)

        location = redirect.location
        for name, value in redirect.cookies.items():
            cookies.set(name, value)

        if provider.supports_oauth_state:
            state = create_flow_token()
            cookies.set(STATE_COOKIE, state)
            location += "&state=" + encode_value(state)

        if sso_target:
            cookies.set(SINGLE_SIGN_ON_COOKIE, self.encryptor.encrypt(sso_target))

        if completion_action:
            cookies.set(
                COMPLETION_ACTION_COOKIE,
                encode_completion_action(completion_action["type"], completion_action["origin"]),
            )

        return context.redirect(location)

    async def _handle_continued_server_flow(self, context: LoginContext, return_uri: str) -> LoginResponse:
        provider = context.provider
        request = context.request
        completion_action = decode_completion_action(context.cookies.get(COMPLETION_ACTION_COOKIE))

        context.logger.info("Continuing a server authentication flow")
        try:
            if provider.supports_oauth_state:
                self._check_oauth_state(context)

            provider_token = await provider.exchange_server_code(request, return_uri)
            options = await self._flow_options()
            details = await provider.to_authorization_details(request, provider_token, options)
        except LoginError as e:
            return self._failed_server_flow(context, completion_action, e)

        body = await self._create_login_response(context, details, options)
        return self._completed_server_flow(context, completion_action, body)

    def _completed_server_flow(
        self,
        context: LoginContext,
        completion_action: Optional[Dict[str, str]],
        body: Dict[str, Any],
    ) -> LoginResponse:
        if completion_action is None:
            return context.redirect_with_token(self._final_redirect_uri(context), body)
        return self._render_completion(context, completion_action, oauth=body, error=None)

    def _failed_server_flow(
        self,
        context: LoginContext,
        completion_action: Optional[Dict[str, str]],
        error: LoginError,
    ) -> LoginResponse:
        if completion_action is None:
            return context.redirect_with_error(self._final_redirect_uri(context), error)

        response = self._render_completion(context, completion_action, oauth=None, error=str(error))
        context.logger.info("Login failed, delivering error to completion page", code=error.code)
        context.record_error(error)
        return response

    def _render_completion(
        self,
        context: LoginContext,
        completion_action: Dict[str, str],
        oauth: Optional[Dict[str, Any]],
        error: Optional[str],
    ) -> LoginResponse:
        # The stored origin is re-validated here; the cookie alone is never trusted
        origin = completion_action["origin"]
        if not self.whitelist.is_allowed_origin(origin):
            raise OriginNotWhitelistedError(origin)

        html = self.renderer.render(completion_action["type"], origin, oauth=oauth, error=error)
        return context.render(html)

    async def _create_login_response(
        self,
        context: LoginContext,
        details: AuthorizationDetails,
        options: FlowOptions,
    ) -> Dict[str, Any]:
        provider = context.provider

        if options.users_enabled:
            user = await self.user_service.add_user_identity(
                get_provider_key_by_name(provider.name),
                details.provider_id,
                {"claims": details.claims, "secrets": details.secrets},
            )
            details.id = user["id"]

        token = self.issuer.issue(details, provider.name)
        body: Dict[str, Any] = {
            "user": {"userId": f"{provider.name}:{details.provider_id}"},
            "authenticationToken": token,
        }
        if details.id is not None:
            body["user"]["id"] = details.id

        context.logger.info("Login succeeded", user_id=body["user"]["userId"])
        return body

    async def _flow_options(self) -> FlowOptions:
        return FlowOptions(users_enabled=await self.user_service.is_enabled())

    def _ensure_enabled(self, context: LoginContext) -> None:
        credentials = self.credentials.get(context.provider_name)
        if credentials is None or not credentials.enabled:
            raise ConfigurationError(f"Logging in with {context.provider_name} is not enabled.")

    def _check_oauth_state(self, context: LoginContext) -> None:
        provider_name = context.provider_name
        cookie_state = context.cookies.get(STATE_COOKIE)
        query_state = context.request.query.get("state")

        if query_state and not cookie_state:
            raise StateMismatchError(
                f"Redirect from {provider_name} does not contain the required {STATE_COOKIE} cookie."
            )
        if not query_state:
            raise StateMismatchError(
                f"Redirect from {provider_name} does not contain the required state parameter."
            )
        if not secrets.compare_digest(cookie_state.encode("utf-8"), query_state.encode("utf-8")):
            raise StateMismatchError(
                f"Redirect from {provider_name} does not contain a valid state parameter."
            )

    def _single_sign_on_target(self, context: LoginContext) -> Optional[str]:
        """SSO target from the query (first leg) or the encrypted cookie (second leg)."""
        target = context.request.query.get("sso_end_uri")
        if not target:
            target = decrypt_value(self.encryptor, context.cookies.get(SINGLE_SIGN_ON_COOKIE))
        if not target:
            return None

        # Clients may quote the value the way cookies are quoted
        target = unquote(target)
        if len(target) >= 2 and target[0] == '"' and target[-1] == '"':
            target = target[1:-1]
        return target or None

    def _validate_single_sign_on_target(self, target: str) -> None:
        microsoft = self.credentials.get("microsoftaccount")
        package_sid = microsoft.package_sid if microsoft else None

        if not package_sid:
            self.logger.error("Single sign-on requested but no package SID is configured")
            raise ConfigurationError("The package SID required for single sign-on is not configured.")
        if target != package_sid + "/":
            raise BadInputError("The single sign-on redirect URI does not match the configured package SID.")

    def _completion_action_from_query(self, query: Mapping[str, str]) -> Optional[Dict[str, str]]:
        completion_type = query.get("completion_type")
        completion_origin = query.get("completion_origin")
        if completion_type and completion_origin:
            return {"type": completion_type, "origin": completion_origin}
        return None

    def _validate_completion_action(self, completion_action: Dict[str, str]) -> None:
        if not self.whitelist.is_allowed_origin(completion_action["origin"]):
            raise OriginNotWhitelistedError(completion_action["origin"])
        if completion_action["type"] not in COMPLETION_TYPES:
            raise BadInputError(f"Unknown completion type: {completion_action['type']}")

    def _final_redirect_uri(self, context: LoginContext) -> str:
        sso_target = self._single_sign_on_target(context)
        if sso_target:
            return sso_target
        return f"{REDIRECT_SCHEME}://{context.request.host}/login/done"

    def _record_attempt(self, context: LoginContext, flow: str) -> None:
        if self.metrics is not None:
            self.metrics.record_login_attempt(context.provider_name, flow)
