"""
Service token issuance.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt

from shared.encryption import Encryptor, derive_signing_key
from shared.logging import get_logger
from ..providers.base import AuthorizationDetails

ISSUER = "urn:federated-login:service"
CREDENTIALS_CLAIM = "urn:federated-login:credentials"
SIGNING_SUFFIX = "JWTSig"
TOKEN_VERSION = 2
TOKEN_LIFETIME = timedelta(days=30)


class TokenIssuer:
    """Builds and signs the service's own identity token."""

    def __init__(self, master_key: str):
        self._signing_key = derive_signing_key(master_key, SIGNING_SUFFIX)
        self._encryptor = Encryptor(master_key)
        self.logger = get_logger("login.issuer")

    def build_claims(
        self,
        details: AuthorizationDetails,
        provider_name: str,
        issued_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Claim set for a token, with the credentials claim still in plain form."""
        issued_at = issued_at or datetime.now(timezone.utc)

        claims: Dict[str, Any] = {
            "exp": int((issued_at + TOKEN_LIFETIME).timestamp()),
            "iss": ISSUER,
            "ver": TOKEN_VERSION,
            "aud": provider_name,
            "uid": f"{provider_name}:{details.provider_id}",
        }

        if details.id is not None:
            claims["id"] = details.id
        else:
            credentials = dict(details.claims)
            credentials.update(details.secrets)
            claims[CREDENTIALS_CLAIM] = credentials

        return claims

    def issue(
        self,
        details: AuthorizationDetails,
        provider_name: str,
        issued_at: Optional[datetime] = None,
    ) -> str:
        """Issue a signed service token.

        When ``details`` carries no identity store id, the user's claims and
        secrets are embedded in the token, encrypted with the master key.
        """
        claims = self.build_claims(details, provider_name, issued_at)

        if CREDENTIALS_CLAIM in claims:
            plaintext = json.dumps(claims[CREDENTIALS_CLAIM], sort_keys=True)
            claims[CREDENTIALS_CLAIM] = self._encryptor.encrypt(plaintext)

        token = jwt.encode(claims, self._signing_key, algorithm="HS256", headers={"kid": "0"})
        self.logger.info("Service token issued", provider=provider_name, uid=claims["uid"])
        return token

    def decode(self, token: str) -> Dict[str, Any]:
        """Verify a service token and return its claims with credentials decrypted."""
        claims = jwt.decode(
            token,
            self._signing_key,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
        encrypted = claims.get(CREDENTIALS_CLAIM)
        if isinstance(encrypted, str):
            claims[CREDENTIALS_CLAIM] = json.loads(self._encryptor.decrypt(encrypted))
        return claims
