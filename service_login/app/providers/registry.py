"""
Provider registry: adapters keyed by lower-case provider name.
"""

from typing import Dict, Optional

import httpx

from shared.config import BaseConfig
from shared.metrics import MetricsCollector
from ..certs.cache import AadCertCache, GoogleCertCache
from .aad import AadProvider, get_login_endpoint
from .base import ProviderAdapter
from .facebook import FacebookProvider
from .google import GoogleProvider
from .microsoft_account import MicrosoftAccountProvider
from .twitter import TwitterProvider


def build_providers(
    config: BaseConfig,
    http_client: httpx.AsyncClient,
    metrics: Optional[MetricsCollector] = None,
) -> Dict[str, ProviderAdapter]:
    """Create one adapter per supported provider, sharing the HTTP client."""
    refresh_floor = config.min_refresh_interval_minutes
    login_endpoint = get_login_endpoint(config.domain_suffix)

    google_certs = GoogleCertCache(
        http_client,
        min_refresh_interval_minutes=refresh_floor,
        metrics=metrics,
    )
    aad_certs = AadCertCache(
        http_client,
        login_endpoint,
        min_refresh_interval_minutes=refresh_floor,
        metrics=metrics,
    )

    return {
        "google": GoogleProvider(config.google, http_client, google_certs),
        "facebook": FacebookProvider(config.facebook, http_client),
        "twitter": TwitterProvider(config.twitter, http_client),
        "microsoftaccount": MicrosoftAccountProvider(config.microsoftaccount, http_client),
        "aad": AadProvider(config.aad, http_client, aad_certs, login_endpoint),
    }
