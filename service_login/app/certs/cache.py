"""
Provider public certificate caches.
"""

import base64
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

import httpx

from shared.errors import ProviderError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

GOOGLE_CERTS_URL = "https://www.googleapis.com/oauth2/v1/certs"


@dataclass
class CertKey:
    """One signing key: its identifier and the PEM certificates published for it."""
    key_id: str
    certificates: List[str] = field(default_factory=list)


@dataclass
class CertCacheEntry:
    keys: List[CertKey]
    last_refresh: float


class CertCache:
    """Caches a provider's public signing certificates.

    ``get`` serves from memory unless the cache is empty, or a refresh is
    forced and at least ``min_refresh_interval_minutes`` have passed since
    the last successful fetch. A failed fetch leaves the previous entry in
    place and raises :class:`ProviderError`. Concurrent refreshes are not
    serialized; the last successful fetch wins.
    """

    provider = "unknown"
    # JWT header fields that name the signing key, in lookup order
    key_id_headers: Tuple[str, ...] = ("kid",)

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        min_refresh_interval_minutes: int = 5,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.http_client = http_client
        self.min_refresh_interval_minutes = min_refresh_interval_minutes
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger(f"login.certs.{self.provider}")
        self._entry: Optional[CertCacheEntry] = None

    @property
    def url(self) -> str:
        raise NotImplementedError

    @property
    def entry(self) -> Optional[CertCacheEntry]:
        return self._entry

    async def get(self, force_refresh: bool = False) -> List[CertKey]:
        """Return cached keys, fetching when empty or on an allowed forced refresh."""
        if self._entry is not None and not (force_refresh and self._refresh_interval_elapsed()):
            return self._entry.keys

        keys = await self._fetch()
        self._entry = CertCacheEntry(keys=keys, last_refresh=self.clock())
        return keys

    def _refresh_interval_elapsed(self) -> bool:
        floor = self._entry.last_refresh + self.min_refresh_interval_minutes * 60
        return self.clock() > floor

    async def _fetch(self) -> List[CertKey]:
        start_time = time.time()
        try:
            response = await self.http_client.get(self.url)
            if response.status_code != 200:
                raise ProviderError(
                    self.provider,
                    f"Error retrieving {self.provider} public certificates. "
                    f"Bad HTTP status code {response.status_code}",
                )
            keys = self.parse_keys(response.json())
        except ProviderError:
            self._record("error", start_time)
            raise
        except httpx.HTTPError as e:
            self._record("error", start_time)
            self.logger.error("Certificate fetch failed", error=str(e))
            raise ProviderError(
                self.provider,
                f"Error retrieving {self.provider} public certificates. {e}",
            ) from e
        except (ValueError, KeyError, TypeError) as e:
            self._record("error", start_time)
            self.logger.error("Certificate payload could not be parsed", error=str(e))
            raise ProviderError(
                self.provider,
                f"Error retrieving {self.provider} public certificates. Cert schema has changed. {e}",
            ) from e

        self._record("ok", start_time)
        self.logger.info("Certificates refreshed", keys_count=len(keys))
        return keys

    def _record(self, status: str, start_time: float) -> None:
        if self.metrics is not None:
            self.metrics.record_cert_refresh(self.provider, status, time.time() - start_time)

    def parse_keys(self, payload: Any) -> List[CertKey]:
        raise NotImplementedError

    def find(self, keys: List[CertKey], key_id: str) -> Optional[CertKey]:
        for key in keys:
            if key.key_id == key_id:
                return key
        return None


class GoogleCertCache(CertCache):
    """Google publishes ``{kid: PEM certificate}``."""

    provider = "google"
    key_id_headers = ("kid",)

    @property
    def url(self) -> str:
        return GOOGLE_CERTS_URL

    def parse_keys(self, payload: Any) -> List[CertKey]:
        if not isinstance(payload, dict):
            raise ValueError("Expected a JSON object of certificates")
        return [CertKey(key_id=kid, certificates=[pem]) for kid, pem in payload.items()]


class AadCertCache(CertCache):
    """AAD publishes ``{keys: [{x5t, x5c: [base64 DER]}]}``."""

    provider = "aad"
    key_id_headers = ("x5t", "kid")

    def __init__(self, http_client: httpx.AsyncClient, login_endpoint: str, **kwargs):
        self.login_endpoint = login_endpoint
        super().__init__(http_client, **kwargs)

    @property
    def url(self) -> str:
        return f"https://{self.login_endpoint}/common/discovery/keys"

    def parse_keys(self, payload: Any) -> List[CertKey]:
        return [
            CertKey(key_id=key["x5t"], certificates=[der_to_pem(cert) for cert in key["x5c"]])
            for key in payload["keys"]
        ]


def der_to_pem(cert: str) -> str:
    """Wrap a base64 DER certificate in PEM armor with 64-character lines."""
    # Reject anything that is not base64 before it reaches the verifier
    base64.b64decode(cert, validate=True)
    lines = [cert[i:i + 64] for i in range(0, len(cert), 64)]
    return "-----BEGIN CERTIFICATE-----\n" + "\n".join(lines) + "\n-----END CERTIFICATE-----\n"
