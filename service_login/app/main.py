"""
Login service for the Federated Login service.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
from fastapi import Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig
from .login.context import LoginRequest, LoginResponse
from .login.cookies import CookieJar
from .login.cors import CorsWhitelist
from .login.orchestrator import LoginOrchestrator
from .providers.registry import build_providers
from .tokens.issuer import TokenIssuer
from .users.service import InMemoryUserService, NullUserService, UserService


class LoginService(BaseService):
    """Login service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        user_service: Optional[UserService] = None,
    ):
        super().__init__("login", 8020, config=config)
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(self.config.http_timeout))

        if user_service is None:
            user_service = InMemoryUserService() if self.config.users_enabled else NullUserService()

        self.providers = build_providers(self.config, self.http_client, self.metrics)
        self.orchestrator = LoginOrchestrator(
            providers=self.providers,
            credentials=self.config.provider_credentials(),
            issuer=TokenIssuer(self.config.master_key),
            whitelist=CorsWhitelist(self.config.cors_whitelist),
            master_key=self.config.master_key,
            user_service=user_service,
            metrics=self.metrics,
        )

        self.app.router.lifespan_context = self._lifespan
        self._setup_login_routes()

    @asynccontextmanager
    async def _lifespan(self, app):
        await self._startup()
        try:
            yield
        finally:
            await self._shutdown()

    async def _startup(self):
        """Resolve AAD tenant issuers before serving traffic."""
        aad = self.providers["aad"]
        if self.config.aad.enabled:
            await aad.initialize()
        self.logger.info("Login service started", providers=sorted(self.providers))

    async def _shutdown(self):
        if self._owns_http_client:
            await self.http_client.aclose()
        self.logger.info("Login service stopped")

    def _setup_login_routes(self):
        """Set up login routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "login",
                "message": "Federated Login - Login Service",
                "version": "1.0.0"
            }

        @self.app.api_route("/login", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
        async def legacy_login(request: Request):
            """Legacy Microsoft Account client flow."""
            return await self._handle(request, None)

        @self.app.api_route("/login/{provider}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
        async def login(request: Request, provider: str):
            """Client flow (POST), server flow (GET) and the ``done`` completion sentinel."""
            return await self._handle(request, provider)

    async def _handle(self, request: Request, provider: Optional[str]) -> Response:
        login_request = LoginRequest(
            method=request.method,
            provider=provider,
            host=request.headers.get("host", request.url.netloc),
            query=dict(request.query_params),
            body=await self._read_body(request),
            cookies=CookieJar(request.cookies),
        )
        login_response = await self.orchestrator.handle(login_request)
        return self._to_response(login_response)

    async def _read_body(self, request: Request) -> Any:
        if request.method != "POST":
            return None
        raw = await request.body()
        if not raw:
            return None
        try:
            return await request.json()
        except ValueError:
            self.logger.warning("Login request body is not valid JSON")
            return None

    def _to_response(self, login_response: LoginResponse) -> Response:
        if login_response.location is not None:
            response: Response = RedirectResponse(login_response.location, status_code=login_response.status_code)
        elif login_response.html is not None:
            response = HTMLResponse(login_response.html, status_code=login_response.status_code)
        elif login_response.body is not None:
            response = JSONResponse(login_response.body, status_code=login_response.status_code)
        else:
            response = Response(status_code=login_response.status_code)

        for cookie in login_response.set_cookies:
            response.headers.append("set-cookie", cookie)
        return response

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report which providers are enabled."""
        return {
            name: "enabled" if credentials.enabled else "disabled"
            for name, credentials in self.config.provider_credentials().items()
        }


def create_app():
    """Create FastAPI application."""
    service = LoginService()
    return service.app


if __name__ == "__main__":
    service = LoginService()
    service.run()
