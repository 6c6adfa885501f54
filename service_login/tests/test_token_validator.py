"""
Unit tests for TokenValidator.
"""

from dataclasses import replace

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import TokenValidationError
from shared.test_helpers import (
    ProviderTokenFactory,
    RecordingTransport,
    aad_keys_payload,
    create_signing_key,
    google_certs_payload,
)
from service_login.app.certs.cache import GOOGLE_CERTS_URL, AadCertCache, GoogleCertCache
from service_login.app.validation.token_validator import TokenValidator

AUDIENCE = "test-client-id"
ISSUERS = ("accounts.google.com", "https://accounts.google.com")


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTokenValidator:
    """Test cases for TokenValidator."""

    @pytest.fixture
    def known_key(self):
        return create_signing_key("known")

    @pytest.fixture
    def rotated_key(self):
        return create_signing_key("rotated")

    @pytest.fixture
    def transport(self, known_key):
        transport = RecordingTransport()
        transport.add_json("GET", GOOGLE_CERTS_URL, google_certs_payload(known_key))
        return transport

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def validator(self, transport, clock):
        return TokenValidator(GoogleCertCache(transport.client(), clock=clock))

    @pytest.mark.asyncio
    async def test_valid_token(self, validator, known_key):
        """A token signed by a published key validates."""
        token = ProviderTokenFactory(known_key).id_token(sub="abc")

        claims = await validator.validate(token, audience=AUDIENCE, issuers=ISSUERS)

        assert claims["sub"] == "abc"

    @pytest.mark.asyncio
    async def test_issuer_trailing_slash_ignored(self, validator, known_key):
        """Issuer comparison ignores a trailing slash."""
        token = ProviderTokenFactory(known_key).id_token(issuer="https://accounts.google.com/")
        claims = await validator.validate(token, audience=AUDIENCE, issuers=ISSUERS)
        assert claims["iss"] == "https://accounts.google.com/"

    @pytest.mark.asyncio
    async def test_wrong_issuer(self, validator, known_key):
        """Unknown issuers are rejected."""
        token = ProviderTokenFactory(known_key).id_token(issuer="https://evil.test")
        with pytest.raises(TokenValidationError, match="issuer"):
            await validator.validate(token, audience=AUDIENCE, issuers=ISSUERS)

    @pytest.mark.asyncio
    async def test_wrong_audience(self, validator, known_key):
        """Tokens for another client are rejected."""
        token = ProviderTokenFactory(known_key).id_token(audience="someone-else")
        with pytest.raises(TokenValidationError):
            await validator.validate(token, audience=AUDIENCE, issuers=ISSUERS)

    @pytest.mark.asyncio
    async def test_expired_beyond_skew(self, validator, known_key):
        """Expiry older than the tolerated skew is rejected."""
        token = ProviderTokenFactory(known_key).id_token(expires_in=-600)
        with pytest.raises(TokenValidationError, match="expired"):
            await validator.validate(token, audience=AUDIENCE, issuers=ISSUERS)

    @pytest.mark.asyncio
    async def test_expired_within_skew(self, validator, known_key):
        """Expiry inside the five minute skew is tolerated."""
        token = ProviderTokenFactory(known_key).id_token(expires_in=-60)
        claims = await validator.validate(token, audience=AUDIENCE, issuers=ISSUERS)
        assert claims["sub"] == "user-123"

    @pytest.mark.asyncio
    async def test_malformed_token(self, validator):
        """Garbage is a validation error."""
        with pytest.raises(TokenValidationError, match="Invalid token format"):
            await validator.validate("not-a-jwt", audience=AUDIENCE)

    @pytest.mark.asyncio
    async def test_bad_signature(self, validator, known_key, rotated_key):
        """A token whose kid names a cached key but is signed by another key fails."""
        forged = ProviderTokenFactory(replace(rotated_key, key_id=known_key.key_id))
        with pytest.raises(TokenValidationError, match="signature"):
            await validator.validate(forged.id_token(), audience=AUDIENCE)

    @pytest.mark.asyncio
    async def test_unknown_key_refreshes_once_and_retries(self, transport, clock, known_key, rotated_key):
        """A missing kid causes exactly one refresh and one retry."""
        validator = TokenValidator(GoogleCertCache(transport.client(), clock=clock))
        await validator.cache.get()

        transport.add_json("GET", GOOGLE_CERTS_URL, google_certs_payload(known_key, rotated_key))
        clock.now += 5 * 60 + 1

        token = ProviderTokenFactory(rotated_key).id_token()
        claims = await validator.validate(token, audience=AUDIENCE, issuers=ISSUERS)

        assert claims["sub"] == "user-123"
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_unknown_key_after_refresh_fails(self, transport, clock, rotated_key):
        """A key still missing after the refresh is final."""
        validator = TokenValidator(GoogleCertCache(transport.client(), clock=clock))
        await validator.cache.get()
        clock.now += 5 * 60 + 1

        token = ProviderTokenFactory(rotated_key).id_token()
        with pytest.raises(TokenValidationError, match="not found") as exc_info:
            await validator.validate(token, audience=AUDIENCE)

        assert exc_info.value.key_not_found
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_unknown_key_inside_floor_does_not_fetch(self, transport, clock, rotated_key):
        """The refresh floor still applies to validation-driven refreshes."""
        validator = TokenValidator(GoogleCertCache(transport.client(), clock=clock))
        await validator.cache.get()

        token = ProviderTokenFactory(rotated_key).id_token()
        with pytest.raises(TokenValidationError):
            await validator.validate(token, audience=AUDIENCE)

        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_aad_x5t_header(self):
        """AAD tokens name their key through x5t."""
        signing_key = create_signing_key("aad-x5t")
        transport = RecordingTransport()
        transport.add_json(
            "GET", "https://login.windows.net/common/discovery/keys", aad_keys_payload(signing_key)
        )
        validator = TokenValidator(AadCertCache(transport.client(), "login.windows.net"))

        token = ProviderTokenFactory(signing_key, key_id_header="x5t").id_token(
            issuer="https://sts.windows.net/tenant-id/"
        )
        claims = await validator.validate(token, audience=AUDIENCE, issuers=["https://sts.windows.net/tenant-id"])

        assert claims["iss"] == "https://sts.windows.net/tenant-id/"
