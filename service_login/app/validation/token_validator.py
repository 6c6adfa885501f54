"""
Provider token validation against a certificate cache.
"""

from typing import Any, Dict, Iterable, List, Optional

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from shared.errors import TokenValidationError
from shared.logging import get_logger
from ..certs.cache import CertCache, CertKey

# Clock skew tolerated on exp/nbf/iat, in seconds
CLOCK_SKEW = 5 * 60


class TokenValidator:
    """Validates RS256 provider JWTs.

    If the token names a key the cache does not hold, the cache is
    refreshed once (subject to its own refresh floor) and validation is
    retried once. Any other failure, or a second miss, is final.
    """

    def __init__(self, cache: CertCache):
        self.cache = cache
        self.logger = get_logger(f"login.validator.{cache.provider}")

    async def validate(
        self,
        raw_token: str,
        audience: Optional[str] = None,
        issuers: Optional[Iterable[str]] = None,
    ) -> Dict[str, Any]:
        """Validate a token and return its claims.

        Args:
            raw_token: Compact-serialized JWT
            audience: Required ``aud`` value, or ``None`` to skip the check
            issuers: Accepted ``iss`` values (trailing slashes ignored), or
                ``None`` to skip the check

        Raises:
            TokenValidationError: if the token is malformed, unsigned by a
                cached key, expired, or fails the audience/issuer checks
            ProviderError: if the certificates cannot be fetched
        """
        retried = False
        for _ in range(2):
            keys = await self.cache.get(force_refresh=retried)
            try:
                claims = self._verify(raw_token, keys, audience)
            except TokenValidationError as e:
                if e.key_not_found and not retried:
                    self.logger.info("Signing key not cached, refreshing", key_id=e.details.get("key_id"))
                    retried = True
                    continue
                raise
            break

        if issuers is not None:
            self._check_issuer(claims, issuers)

        return claims

    def _verify(self, raw_token: str, keys: List[CertKey], audience: Optional[str]) -> Dict[str, Any]:
        try:
            header = jwt.get_unverified_header(raw_token)
        except JWTError as e:
            raise TokenValidationError(f"Invalid token format. {e}") from e

        if header.get("alg") != "RS256":
            raise TokenValidationError("The authentication token alg is not supported.")

        key_id = self._key_id(header)
        if not key_id:
            raise TokenValidationError("The authentication token does not name a signing key.")

        key = self.cache.find(keys, key_id)
        if key is None:
            raise TokenValidationError(
                "The key specified by the token was not found.",
                details={"key_id": key_id},
                key_not_found=True,
            )

        options = {
            "verify_aud": audience is not None,
            "verify_at_hash": False,
            "require_exp": True,
            "leeway": CLOCK_SKEW,
        }
        for certificate in key.certificates:
            try:
                return jwt.decode(
                    raw_token,
                    certificate,
                    algorithms=["RS256"],
                    audience=audience,
                    options=options,
                )
            except ExpiredSignatureError as e:
                raise TokenValidationError("The authentication token has expired.") from e
            except JWTClaimsError as e:
                raise TokenValidationError(f"The authentication token claims are invalid. {e}") from e
            except JWTError:
                continue

        raise TokenValidationError("The authentication token has an invalid signature.")

    def _key_id(self, header: Dict[str, Any]) -> Optional[str]:
        for name in self.cache.key_id_headers:
            if header.get(name):
                return header[name]
        return None

    def _check_issuer(self, claims: Dict[str, Any], issuers: Iterable[str]) -> None:
        accepted = {issuer.rstrip("/") for issuer in issuers}
        issuer = claims.get("iss")
        if not isinstance(issuer, str) or issuer.rstrip("/") not in accepted:
            raise TokenValidationError("The authentication token issuer is invalid.")
