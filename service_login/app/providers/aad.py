"""
Azure Active Directory identity provider (OpenID Connect id_token flow).
"""

import asyncio
import xml.etree.ElementTree as ElementTree
from typing import Any, Dict, List, Optional

import httpx

from shared.config import ProviderCredentials
from shared.errors import ConfigurationError, MethodNotAllowedError, NonceMismatchError
from shared.logging import get_logger
from ..certs.cache import AadCertCache
from ..login.cookies import NONCE_COOKIE, create_flow_token
from ..validation.token_validator import TokenValidator
from .base import AuthorizationDetails, FlowOptions, ProviderRedirect, build_url, ensure_enabled, query_error

GLOBAL_LOGIN_ENDPOINT = "login.windows.net"
CHINA_LOGIN_ENDPOINT = "login.chinacloudapi.cn"


def get_login_endpoint(domain_suffix: Optional[str]) -> str:
    """Sovereign-cloud login host for a service domain suffix."""
    if domain_suffix and domain_suffix.lower().endswith(".cn"):
        return CHINA_LOGIN_ENDPOINT
    return GLOBAL_LOGIN_ENDPOINT


class AadProvider:
    """AAD login.

    AAD does not echo OAuth state; a nonce is stored in a cookie on the
    first leg and must come back inside the id_token on the second.
    """

    name = "Aad"
    key = "aad"
    supports_oauth_state = False

    def __init__(
        self,
        credentials: ProviderCredentials,
        http_client: httpx.AsyncClient,
        cert_cache: AadCertCache,
        login_endpoint: str = GLOBAL_LOGIN_ENDPOINT,
    ):
        self.credentials = credentials
        self.http_client = http_client
        self.login_endpoint = login_endpoint
        self.validator = TokenValidator(cert_cache)
        self.valid_issuers: Optional[List[str]] = None
        self.logger = get_logger("login.providers.aad")

    async def initialize(self) -> None:
        """Resolve the issuer of every configured tenant from its federation metadata."""
        tenants = self.credentials.tenants
        if not tenants:
            return

        issuers = await asyncio.gather(*(self._issuer_for_tenant(tenant) for tenant in tenants))
        self.valid_issuers = list(issuers)
        self.logger.info("AAD tenant issuers resolved", tenants=len(self.valid_issuers))

    def is_new_flow(self, request) -> bool:
        return not (request.query.get("error") or request.query.get("id_token"))

    async def redirect_headers(self, request, return_uri: str, options: FlowOptions) -> ProviderRedirect:
        credentials = ensure_enabled(self.key, self.credentials, require_secret=False)
        nonce = create_flow_token()

        location = build_url(f"https://{self.login_endpoint}/common/oauth2/authorize", {
            "response_type": "id_token",
            "response_mode": "query",
            "client_id": credentials.client_id,
            "redirect_uri": return_uri,
            "nonce": nonce,
        })
        return ProviderRedirect(location=location, cookies={NONCE_COOKIE: nonce})

    async def extract_client_token(self, request) -> Any:
        raise MethodNotAllowedError("POST of AAD token is not supported.")

    async def exchange_server_code(self, request, return_uri: str) -> Dict[str, Any]:
        error = query_error(request, self.name)
        if error:
            raise error

        credentials = ensure_enabled(self.key, self.credentials, require_secret=False)
        claims = await self.validator.validate(
            request.query.get("id_token", ""),
            audience=credentials.client_id,
            issuers=self.valid_issuers,
        )
        self._check_nonce(request, claims)
        return claims

    async def to_authorization_details(self, request, provider_token: Dict[str, Any], options: FlowOptions) -> AuthorizationDetails:
        # sub is the only identifier present for every kind of AAD user;
        # oid is needed for later calls into the directory
        return AuthorizationDetails(
            provider_id=provider_token["sub"],
            claims={"tenantId": provider_token.get("tid")},
            secrets={"oid": provider_token.get("oid")},
        )

    def _check_nonce(self, request, claims: Dict[str, Any]) -> None:
        cookie_nonce = request.cookies.get(NONCE_COOKIE)
        claims_nonce = claims.get("nonce")

        if claims_nonce and not cookie_nonce:
            raise NonceMismatchError("Redirect from AAD does not contain the required nonce cookie.")
        if not claims_nonce:
            raise NonceMismatchError("Redirect from AAD does not contain the required nonce claim.")
        if cookie_nonce != claims_nonce:
            raise NonceMismatchError("Redirect from AAD does not contain a valid nonce claim.")

    async def _issuer_for_tenant(self, tenant: str) -> str:
        url = f"https://{self.login_endpoint}/{tenant}/federationmetadata/2007-06/federationmetadata.xml"
        try:
            response = await self.http_client.get(url)
        except httpx.HTTPError as e:
            raise ConfigurationError(self._tenant_error(tenant, str(e))) from e

        if response.status_code != 200:
            raise ConfigurationError(self._tenant_error(tenant, response.text or "An unspecified error occurred."))

        try:
            root = ElementTree.fromstring(response.text.strip())
        except ElementTree.ParseError as e:
            raise ConfigurationError(self._tenant_error(tenant, str(e))) from e

        entity_id = root.attrib.get("entityID")
        if not entity_id:
            raise ConfigurationError(self._tenant_error(tenant, "Metadata has no entityID."))
        return entity_id.rstrip("/")

    @staticmethod
    def _tenant_error(tenant: str, reason: str) -> str:
        return (
            f"Error attempting to query tenant metadata for tenant '{tenant}'. Please verify that each "
            f"of the tenants specified is a valid tenant domain (e.g., abc.onmicrosoft.com). {reason}"
        )
