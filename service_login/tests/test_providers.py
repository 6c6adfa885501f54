"""
Unit tests for the identity provider adapters.
"""

import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.encryption import Encryptor
from shared.errors import (
    BadInputError,
    ConfigurationError,
    MethodNotAllowedError,
    NonceMismatchError,
    ProviderError,
    TokenValidationError,
)
from shared.test_helpers import (
    ProviderTokenFactory,
    RecordingTransport,
    TestEnvironment,
    aad_keys_payload,
    create_signing_key,
    google_certs_payload,
    live_authentication_token,
)
from service_login.app.certs.cache import GOOGLE_CERTS_URL, AadCertCache, GoogleCertCache
from service_login.app.login.context import LoginRequest
from service_login.app.login.cookies import NONCE_COOKIE, REQUEST_TOKEN_COOKIE, CookieJar
from service_login.app.providers import google, microsoft_account, twitter
from service_login.app.providers.aad import CHINA_LOGIN_ENDPOINT, GLOBAL_LOGIN_ENDPOINT, AadProvider, get_login_endpoint
from service_login.app.providers.base import FlowOptions, ProviderAdapter, build_url, normalize_scope
from service_login.app.providers.facebook import FacebookProvider
from service_login.app.providers.google import GoogleProvider
from service_login.app.providers.microsoft_account import MicrosoftAccountProvider
from service_login.app.providers.registry import build_providers
from service_login.app.providers.twitter import TwitterProvider

RETURN_URI = "https://login.example.test/login/provider"


def make_request(method="GET", query=None, body=None, cookies=None) -> LoginRequest:
    return LoginRequest(
        method=method,
        provider=None,
        host="login.example.test",
        query=query or {},
        body=body,
        cookies=CookieJar(cookies or {}),
    )


def query_of(location: str):
    return {k: v[0] for k, v in parse_qs(urlsplit(location).query).items()}


class TestHelpers:
    """Test cases for shared adapter helpers."""

    def test_normalize_scope(self):
        """Comma or space separated scopes are rejoined."""
        assert normalize_scope("email, profile openid", " ") == "email profile openid"
        assert normalize_scope("email profile", ",") == "email,profile"

    def test_build_url_drops_missing_values(self):
        """None values are omitted and spaces percent-encoded."""
        assert build_url("https://x.test/a", {"a": "1 2", "b": None}) == "https://x.test/a?a=1%202"

    def test_registry_builds_every_provider(self):
        """Every supported provider is registered and satisfies the adapter contract."""
        providers = build_providers(TestEnvironment.get_mock_config(), httpx.AsyncClient())

        assert sorted(providers) == ["aad", "facebook", "google", "microsoftaccount", "twitter"]
        assert all(isinstance(adapter, ProviderAdapter) for adapter in providers.values())


class TestGoogleProvider:
    """Test cases for GoogleProvider."""

    @pytest.fixture
    def signing_key(self):
        return create_signing_key("google-key")

    @pytest.fixture
    def transport(self, signing_key):
        transport = RecordingTransport()
        transport.add_json("GET", GOOGLE_CERTS_URL, google_certs_payload(signing_key))
        return transport

    @pytest.fixture
    def provider(self, transport):
        client = transport.client()
        return GoogleProvider(TestEnvironment.provider_credentials(), client, GoogleCertCache(client))

    @pytest.mark.asyncio
    async def test_redirect_headers(self, provider):
        """The consent URL carries client id, return URI and default scope."""
        redirect = await provider.redirect_headers(make_request(), RETURN_URI, FlowOptions())

        assert redirect.location.startswith(google.AUTHORIZE_URL + "?")
        params = query_of(redirect.location)
        assert params["client_id"] == TestEnvironment.CLIENT_ID
        assert params["redirect_uri"] == RETURN_URI
        assert params["scope"] == google.DEFAULT_SCOPE
        assert params["access_type"] == "online"
        assert redirect.cookies == {}

    @pytest.mark.asyncio
    async def test_redirect_headers_query_overrides(self, provider):
        """Scope and access type may be overridden per request."""
        request = make_request(query={"scope": "openid email", "access_type": "offline"})
        redirect = await provider.redirect_headers(request, RETURN_URI, FlowOptions())

        params = query_of(redirect.location)
        assert params["scope"] == "openid email"
        assert params["access_type"] == "offline"

    @pytest.mark.asyncio
    async def test_client_flow(self, provider, signing_key):
        """A posted id_token is validated and yields the subject."""
        token = ProviderTokenFactory(signing_key).id_token(sub="g-1")
        request = make_request("POST", body={"id_token": token})

        provider_token = await provider.extract_client_token(request)
        details = await provider.to_authorization_details(request, provider_token, FlowOptions())

        assert details.provider_id == "g-1"
        assert details.secrets == {}

    @pytest.mark.asyncio
    async def test_client_flow_requires_id_token(self, provider):
        """A body without id_token is bad input."""
        with pytest.raises(BadInputError):
            await provider.extract_client_token(make_request("POST", body={"access_token": "x"}))

    @pytest.mark.asyncio
    async def test_client_flow_rejects_foreign_audience(self, provider, signing_key):
        """Tokens minted for another client are rejected."""
        token = ProviderTokenFactory(signing_key).id_token(audience="other-app")
        with pytest.raises(TokenValidationError):
            await provider.extract_client_token(make_request("POST", body={"id_token": token}))

    @pytest.mark.asyncio
    async def test_server_flow(self, provider, transport, signing_key):
        """The code is exchanged and the returned id_token validated."""
        token = ProviderTokenFactory(signing_key).id_token(sub="g-2")
        transport.add_json("POST", google.TOKEN_URL, {"id_token": token, "access_token": "g-access"})
        request = make_request(query={"code": "abc"})

        provider_token = await provider.exchange_server_code(request, RETURN_URI)
        details = await provider.to_authorization_details(request, provider_token, FlowOptions())

        assert details.provider_id == "g-2"
        assert details.secrets == {"accessToken": "g-access"}
        exchange = transport.calls_to(google.TOKEN_URL)[0]
        form = parse_qs(exchange.content.decode())
        assert form["code"] == ["abc"]
        assert form["redirect_uri"] == [RETURN_URI]
        assert form["grant_type"] == ["authorization_code"]

    @pytest.mark.asyncio
    async def test_server_flow_profile_with_identity_store(self, provider, transport, signing_key):
        """With the identity store on, profile claims are fetched."""
        token = ProviderTokenFactory(signing_key).id_token(sub="g-3")
        transport.add_json("POST", google.TOKEN_URL, {"id_token": token, "access_token": "g-access"})
        transport.add_json("GET", google.USERINFO_URL, {"sub": "g-3", "name": "Ada", "extra": "ignored"})
        request = make_request(query={"code": "abc"})

        provider_token = await provider.exchange_server_code(request, RETURN_URI)
        details = await provider.to_authorization_details(request, provider_token, FlowOptions(users_enabled=True))

        assert details.claims == {"id": "g-3", "sub": "g-3", "name": "Ada"}

    @pytest.mark.asyncio
    async def test_profile_failure_is_not_fatal(self, provider, transport, signing_key):
        """A failing profile call leaves the claims empty."""
        token = ProviderTokenFactory(signing_key).id_token(sub="g-4")
        transport.add_json("POST", google.TOKEN_URL, {"id_token": token, "access_token": "g-access"})
        transport.add_json("GET", google.USERINFO_URL, {}, status_code=500)
        request = make_request(query={"code": "abc"})

        provider_token = await provider.exchange_server_code(request, RETURN_URI)
        details = await provider.to_authorization_details(request, provider_token, FlowOptions(users_enabled=True))

        assert details.provider_id == "g-4"
        assert details.claims == {}

    @pytest.mark.asyncio
    async def test_server_flow_exchange_failure(self, provider, transport):
        """A 500 from the token endpoint is a provider error."""
        transport.add_json("POST", google.TOKEN_URL, {"error": "boom"}, status_code=500)

        with pytest.raises(ProviderError) as exc_info:
            await provider.exchange_server_code(make_request(query={"code": "abc"}), RETURN_URI)
        assert exc_info.value.details == {"status_code": 500}

    @pytest.mark.asyncio
    async def test_server_flow_provider_reported_error(self, provider, transport):
        """An error on the redirect back is surfaced without any exchange."""
        request = make_request(query={"error": "access_denied", "error_description": "User declined"})

        with pytest.raises(ProviderError, match="access_denied: User declined"):
            await provider.exchange_server_code(request, RETURN_URI)
        assert transport.requests == []

    def test_is_new_flow(self, provider):
        """A code or error marks the continuation."""
        assert provider.is_new_flow(make_request())
        assert not provider.is_new_flow(make_request(query={"code": "x"}))
        assert not provider.is_new_flow(make_request(query={"error": "x"}))


class TestFacebookProvider:
    """Test cases for FacebookProvider."""

    @pytest.fixture
    def transport(self):
        transport = RecordingTransport()
        transport.add_json("GET", "https://graph.facebook.com/oauth/access_token", {"access_token": "long-lived"})
        transport.add_json("GET", "https://graph.facebook.com/me", {"id": "fb-1", "name": "Ada", "email": "a@x.test"})
        return transport

    @pytest.fixture
    def provider(self, transport):
        credentials = TestEnvironment.provider_credentials(scope="email, public_profile")
        return FacebookProvider(credentials, transport.client())

    @pytest.mark.asyncio
    async def test_redirect_headers(self, provider):
        """Scope is comma-joined and display defaults to touch."""
        redirect = await provider.redirect_headers(make_request(), RETURN_URI, FlowOptions())

        assert redirect.location.startswith("https://www.facebook.com/dialog/oauth?")
        params = query_of(redirect.location)
        assert params["scope"] == "email,public_profile"
        assert params["display"] == "touch"

    @pytest.mark.asyncio
    async def test_redirect_headers_beta(self, provider):
        """useBeta switches to the beta dialog host."""
        redirect = await provider.redirect_headers(make_request(query={"useBeta": "1"}), RETURN_URI, FlowOptions())
        assert redirect.location.startswith("https://www.beta.facebook.com/dialog/oauth?")

    @pytest.mark.asyncio
    async def test_client_flow_exchanges_token(self, provider, transport):
        """Client tokens are exchanged for long-lived ones before /me."""
        request = make_request("POST", body={"access_token": "short-lived"})

        provider_token = await provider.extract_client_token(request)
        details = await provider.to_authorization_details(request, provider_token, FlowOptions())

        assert provider_token == "long-lived"
        assert details.provider_id == "fb-1"
        assert details.secrets == {"accessToken": "long-lived"}
        assert details.claims == {}
        exchange = transport.calls_to("https://graph.facebook.com/oauth/access_token")[0]
        assert exchange.url.params["grant_type"] == "fb_exchange_token"
        assert exchange.url.params["fb_exchange_token"] == "short-lived"

    @pytest.mark.asyncio
    async def test_profile_claims_with_identity_store(self, provider):
        """Profile fields become claims when the identity store is on."""
        details = await provider.to_authorization_details(make_request(), "token", FlowOptions(users_enabled=True))
        assert details.claims == {"id": "fb-1", "name": "Ada", "email": "a@x.test"}

    @pytest.mark.asyncio
    async def test_me_without_id(self, transport):
        """A /me response without an id is a provider error."""
        transport.add_json("GET", "https://graph.facebook.com/me", {"name": "nobody"})
        provider = FacebookProvider(TestEnvironment.provider_credentials(), transport.client())

        with pytest.raises(ProviderError):
            await provider.to_authorization_details(make_request(), "token", FlowOptions())

    @pytest.mark.asyncio
    async def test_exchange_without_token(self, transport):
        """An exchange response without access_token is a provider error."""
        transport.add_json("GET", "https://graph.facebook.com/oauth/access_token", {})
        provider = FacebookProvider(TestEnvironment.provider_credentials(), transport.client())

        with pytest.raises(ProviderError, match="failed to return an access token"):
            await provider.exchange_server_code(make_request(query={"code": "c"}), RETURN_URI)

    @pytest.mark.asyncio
    async def test_timeout_is_provider_error(self):
        """Transport timeouts surface as provider errors."""
        def timeout(request):
            raise httpx.ReadTimeout("timed out", request=request)

        transport = RecordingTransport()
        transport.add("GET", "https://graph.facebook.com", timeout)
        provider = FacebookProvider(TestEnvironment.provider_credentials(), transport.client())

        with pytest.raises(ProviderError, match="ReadTimeout"):
            await provider.exchange_server_code(make_request(query={"code": "c"}), RETURN_URI)

    @pytest.mark.asyncio
    async def test_missing_secret_is_configuration_error(self, transport):
        """Enabled without a secret is a configuration error."""
        credentials = TestEnvironment.provider_credentials(client_secret=None)
        provider = FacebookProvider(credentials, transport.client())

        with pytest.raises(ConfigurationError):
            await provider.redirect_headers(make_request(), RETURN_URI, FlowOptions())


class TestMicrosoftAccountProvider:
    """Test cases for MicrosoftAccountProvider."""

    @pytest.fixture
    def transport(self):
        return RecordingTransport()

    @pytest.fixture
    def provider(self, transport):
        return MicrosoftAccountProvider(TestEnvironment.provider_credentials(), transport.client())

    @pytest.mark.asyncio
    async def test_redirect_scope_follows_identity_store(self, provider):
        """wl.signin is requested only when the identity store is on."""
        plain = await provider.redirect_headers(make_request(), RETURN_URI, FlowOptions())
        with_users = await provider.redirect_headers(make_request(), RETURN_URI, FlowOptions(users_enabled=True))

        assert query_of(plain.location)["scope"] == "wl.basic"
        assert query_of(with_users.location)["scope"] == "wl.basic wl.signin"

    @pytest.mark.asyncio
    async def test_client_flow(self, provider):
        """The posted authentication token is verified with the derived key."""
        token = live_authentication_token(TestEnvironment.CLIENT_SECRET, uid="live-7")
        request = make_request("POST", body={"authenticationToken": token})

        provider_token = await provider.extract_client_token(request)
        details = await provider.to_authorization_details(request, provider_token, FlowOptions())

        assert details.provider_id == "live-7"

    @pytest.mark.asyncio
    async def test_client_flow_requires_token(self, provider):
        """A body without authenticationToken is bad input."""
        with pytest.raises(BadInputError):
            await provider.extract_client_token(make_request("POST", body={}))

    @pytest.mark.asyncio
    async def test_token_signed_with_other_secret(self, provider):
        """Tokens signed for another application are rejected."""
        token = live_authentication_token("someone-elses-secret")
        with pytest.raises(TokenValidationError):
            await provider.to_authorization_details(make_request(), {"authenticationToken": token}, FlowOptions())

    @pytest.mark.asyncio
    async def test_server_flow(self, provider, transport):
        """The code exchange returns the access and authentication tokens."""
        token = live_authentication_token(TestEnvironment.CLIENT_SECRET, uid="live-8")
        transport.add_json(
            "POST", microsoft_account.TOKEN_URL,
            {"access_token": "live-access", "authentication_token": token},
        )
        request = make_request(query={"code": "c"})

        provider_token = await provider.exchange_server_code(request, RETURN_URI)
        details = await provider.to_authorization_details(request, provider_token, FlowOptions())

        assert details.provider_id == "live-8"
        assert details.secrets == {"accessToken": "live-access"}

    @pytest.mark.asyncio
    async def test_server_flow_without_access_token(self, provider, transport):
        """An exchange response without access_token is a provider error."""
        transport.add_json("POST", microsoft_account.TOKEN_URL, {"token_type": "bearer"})

        with pytest.raises(ProviderError, match="invalid access token"):
            await provider.exchange_server_code(make_request(query={"code": "c"}), RETURN_URI)


class TestTwitterProvider:
    """Test cases for TwitterProvider."""

    @pytest.fixture
    def transport(self):
        transport = RecordingTransport()
        transport.add(
            "POST", twitter.REQUEST_TOKEN_URL,
            lambda request: httpx.Response(200, text="oauth_token=req-token&oauth_token_secret=req-secret&oauth_callback_confirmed=true"),
        )
        transport.add(
            "POST", twitter.ACCESS_TOKEN_URL,
            lambda request: httpx.Response(200, text="oauth_token=acc-token&oauth_token_secret=acc-secret&user_id=99&screen_name=ada"),
        )
        return transport

    @pytest.fixture
    def provider(self, transport):
        return TwitterProvider(TestEnvironment.provider_credentials(), transport.client())

    def request_token_cookie(self, rt="req-token", rts="req-secret"):
        return Encryptor(TestEnvironment.CLIENT_SECRET).encrypt(json.dumps({"rt": rt, "rts": rts}))

    @pytest.mark.asyncio
    async def test_redirect_headers(self, provider, transport):
        """A signed request token call precedes the redirect."""
        redirect = await provider.redirect_headers(make_request(), RETURN_URI, FlowOptions())

        assert redirect.location == twitter.AUTHENTICATE_URL + "?oauth_token=req-token"
        stored = json.loads(Encryptor(TestEnvironment.CLIENT_SECRET).decrypt(redirect.cookies[REQUEST_TOKEN_COOKIE]))
        assert stored == {"rt": "req-token", "rts": "req-secret"}

        authorization = transport.requests[0].headers["authorization"]
        assert authorization.startswith("OAuth ")
        assert 'oauth_signature_method="HMAC-SHA1"' in authorization
        assert "oauth_callback=" in authorization

    @pytest.mark.asyncio
    async def test_redirect_headers_request_token_failure(self, transport):
        """A failing request token call is a provider error."""
        transport.add("POST", twitter.REQUEST_TOKEN_URL, lambda request: httpx.Response(401, text="nope"))
        provider = TwitterProvider(TestEnvironment.provider_credentials(), transport.client())

        with pytest.raises(ProviderError, match="request token"):
            await provider.redirect_headers(make_request(), RETURN_URI, FlowOptions())

    @pytest.mark.asyncio
    async def test_redirect_headers_malformed_request_token(self, transport):
        """A 200 body that is not form encoded is a provider error."""
        transport.add_json("POST", twitter.REQUEST_TOKEN_URL, {"errors": [{"code": 89}]})
        provider = TwitterProvider(TestEnvironment.provider_credentials(), transport.client())

        with pytest.raises(ProviderError, match="request token") as excinfo:
            await provider.redirect_headers(make_request(), RETURN_URI, FlowOptions())
        assert "malformed response" in str(excinfo.value.__cause__)

    @pytest.mark.asyncio
    async def test_server_flow_malformed_access_token(self, transport):
        """Twitter's JSON error payload on the access token call is a provider error."""
        transport.add_json("POST", twitter.ACCESS_TOKEN_URL, {"errors": [{"code": 89}]})
        provider = TwitterProvider(TestEnvironment.provider_credentials(), transport.client())
        request = make_request(
            query={"oauth_token": "req-token", "oauth_verifier": "verifier"},
            cookies={REQUEST_TOKEN_COOKIE: self.request_token_cookie()},
        )

        with pytest.raises(ProviderError, match="access token") as excinfo:
            await provider.exchange_server_code(request, RETURN_URI)
        assert "malformed response" in str(excinfo.value.__cause__)

    @pytest.mark.asyncio
    async def test_server_flow(self, provider, transport):
        """The verifier and request token are exchanged for an access token."""
        request = make_request(
            query={"oauth_token": "req-token", "oauth_verifier": "verifier"},
            cookies={REQUEST_TOKEN_COOKIE: self.request_token_cookie()},
        )

        provider_token = await provider.exchange_server_code(request, RETURN_URI)
        details = await provider.to_authorization_details(request, provider_token, FlowOptions(users_enabled=True))

        assert details.provider_id == "99"
        assert details.secrets == {"accessToken": "acc-token", "accessTokenSecret": "acc-secret"}
        assert details.claims == {"id": "99", "screen_name": "ada"}

        authorization = transport.calls_to(twitter.ACCESS_TOKEN_URL)[0].headers["authorization"]
        assert 'oauth_verifier="verifier"' in authorization
        assert 'oauth_token="req-token"' in authorization

    @pytest.mark.asyncio
    async def test_server_flow_without_cookie(self, provider, transport):
        """A missing request token cookie is bad input and nothing is sent."""
        request = make_request(query={"oauth_verifier": "verifier"})

        with pytest.raises(BadInputError, match="not present"):
            await provider.exchange_server_code(request, RETURN_URI)
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_server_flow_with_tampered_cookie(self, provider):
        """A cookie encrypted under another key is bad input."""
        tampered = Encryptor("other-secret").encrypt(json.dumps({"rt": "a", "rts": "b"}))
        request = make_request(query={"oauth_verifier": "v"}, cookies={REQUEST_TOKEN_COOKIE: tampered})

        with pytest.raises(BadInputError, match="Invalid OAuth request token"):
            await provider.exchange_server_code(request, RETURN_URI)

    @pytest.mark.asyncio
    async def test_client_flow_not_supported(self, provider):
        """Twitter has no client flow."""
        with pytest.raises(MethodNotAllowedError):
            await provider.extract_client_token(make_request("POST", body={}))

    def test_is_new_flow(self, provider):
        """The verifier marks the continuation."""
        assert provider.is_new_flow(make_request(query={"oauth_token": "x"}))
        assert not provider.is_new_flow(make_request(query={"oauth_verifier": "x"}))


class TestAadProvider:
    """Test cases for AadProvider."""

    TENANT_ISSUER = "https://sts.windows.net/tenant-guid"

    @pytest.fixture
    def signing_key(self):
        return create_signing_key("aad-key")

    @pytest.fixture
    def transport(self, signing_key):
        transport = RecordingTransport()
        transport.add_json(
            "GET", f"https://{GLOBAL_LOGIN_ENDPOINT}/common/discovery/keys", aad_keys_payload(signing_key)
        )
        transport.add(
            "GET", f"https://{GLOBAL_LOGIN_ENDPOINT}/contoso.onmicrosoft.com/federationmetadata",
            lambda request: httpx.Response(
                200,
                text=(
                    '<?xml version="1.0" encoding="utf-8"?>'
                    '<EntityDescriptor xmlns="urn:oasis:names:tc:SAML:2.0:metadata" '
                    f'entityID="{self.TENANT_ISSUER}/"></EntityDescriptor>'
                ),
            ),
        )
        return transport

    @pytest.fixture
    def provider(self, transport):
        client = transport.client()
        credentials = TestEnvironment.provider_credentials(tenants=["contoso.onmicrosoft.com"])
        return AadProvider(credentials, client, AadCertCache(client, GLOBAL_LOGIN_ENDPOINT))

    def id_token(self, signing_key, **claims):
        factory = ProviderTokenFactory(signing_key, key_id_header="x5t")
        return factory.id_token(sub="aad-sub", issuer=self.TENANT_ISSUER + "/", tid="tenant-guid", oid="object-id", **claims)

    def test_login_endpoint(self):
        """The China cloud is selected by domain suffix."""
        assert get_login_endpoint(None) == GLOBAL_LOGIN_ENDPOINT
        assert get_login_endpoint("azurewebsites.net") == GLOBAL_LOGIN_ENDPOINT
        assert get_login_endpoint("chinacloudsites.CN") == CHINA_LOGIN_ENDPOINT

    @pytest.mark.asyncio
    async def test_initialize_resolves_issuers(self, provider):
        """Tenant issuers come from federation metadata."""
        await provider.initialize()
        assert provider.valid_issuers == [self.TENANT_ISSUER]

    @pytest.mark.asyncio
    async def test_initialize_failure_is_configuration_error(self, transport):
        """Unreachable tenant metadata fails startup."""
        transport.add(
            "GET", f"https://{GLOBAL_LOGIN_ENDPOINT}/contoso.onmicrosoft.com/federationmetadata",
            lambda request: httpx.Response(404, text="tenant not found"),
        )
        client = transport.client()
        credentials = TestEnvironment.provider_credentials(tenants=["contoso.onmicrosoft.com"])
        provider = AadProvider(credentials, client, AadCertCache(client, GLOBAL_LOGIN_ENDPOINT))

        with pytest.raises(ConfigurationError, match="contoso.onmicrosoft.com"):
            await provider.initialize()

    @pytest.mark.asyncio
    async def test_redirect_sets_nonce_cookie(self, provider):
        """The nonce in the URL is the nonce in the cookie."""
        redirect = await provider.redirect_headers(make_request(), RETURN_URI, FlowOptions())

        params = query_of(redirect.location)
        assert params["response_type"] == "id_token"
        assert params["nonce"] == redirect.cookies[NONCE_COOKIE]

    @pytest.mark.asyncio
    async def test_server_flow(self, provider, signing_key):
        """A matching nonce yields sub, tenant and object id."""
        await provider.initialize()
        request = make_request(
            query={"id_token": self.id_token(signing_key, nonce="n-1")},
            cookies={NONCE_COOKIE: "n-1"},
        )

        provider_token = await provider.exchange_server_code(request, RETURN_URI)
        details = await provider.to_authorization_details(request, provider_token, FlowOptions())

        assert details.provider_id == "aad-sub"
        assert details.claims == {"tenantId": "tenant-guid"}
        assert details.secrets == {"oid": "object-id"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cookie_nonce, claim_nonce, message", [
        (None, "n-1", "nonce cookie"),
        ("n-1", None, "nonce claim"),
        ("n-1", "n-2", "valid nonce"),
    ])
    async def test_nonce_mismatch(self, provider, signing_key, cookie_nonce, claim_nonce, message):
        """Each nonce failure is reported distinctly."""
        claims = {"nonce": claim_nonce} if claim_nonce else {}
        cookies = {NONCE_COOKIE: cookie_nonce} if cookie_nonce else {}
        request = make_request(query={"id_token": self.id_token(signing_key, **claims)}, cookies=cookies)

        with pytest.raises(NonceMismatchError, match=message):
            await provider.exchange_server_code(request, RETURN_URI)

    @pytest.mark.asyncio
    async def test_unknown_tenant_issuer(self, provider, signing_key):
        """Tokens from tenants outside the configured list are rejected."""
        await provider.initialize()
        token = ProviderTokenFactory(signing_key, key_id_header="x5t").id_token(
            issuer="https://sts.windows.net/other-tenant/", nonce="n-1"
        )
        request = make_request(query={"id_token": token}, cookies={NONCE_COOKIE: "n-1"})

        with pytest.raises(TokenValidationError, match="issuer"):
            await provider.exchange_server_code(request, RETURN_URI)

    @pytest.mark.asyncio
    async def test_client_flow_not_supported(self, provider):
        """AAD has no client flow."""
        with pytest.raises(MethodNotAllowedError):
            await provider.extract_client_token(make_request("POST"))
