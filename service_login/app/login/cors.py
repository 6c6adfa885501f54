"""
CORS origin whitelist.

Completion origins (the window a popup posts its result to) must match one
of the configured host patterns. Patterns are host names where ``*``
matches any run of host characters; the literal entry ``null`` admits the
``null`` origin browsers send for local files.
"""

import re
from typing import Iterable, List
from urllib.parse import urlsplit

ALLOWED_PROTOCOLS = ("http", "https", "ms-appx-web")


def _host_pattern(host: str) -> "re.Pattern[str]":
    escaped = re.escape(host).replace(r"\*", r"[a-z0-9\-\.]*")
    return re.compile(f"^{escaped}$", re.IGNORECASE)


class CorsWhitelist:
    """Decides whether an origin is acceptable for completion delivery."""

    def __init__(self, hosts: Iterable[str]):
        self.null_allowed = False
        self._patterns: List["re.Pattern[str]"] = []

        for host in hosts:
            if not host:
                continue
            if host == "null":
                self.null_allowed = True
                continue
            self._patterns.append(_host_pattern(host))

    def is_allowed_origin(self, origin: str) -> bool:
        if not origin:
            return False

        if origin == "null":
            return self.null_allowed

        try:
            parsed = urlsplit(origin)
            hostname = parsed.hostname
        except ValueError:
            return False

        if parsed.scheme.lower() not in ALLOWED_PROTOCOLS:
            return False

        # A trailing slash is tolerated, nothing else
        if parsed.path not in ("", "/") or parsed.query or parsed.fragment:
            return False

        if not hostname:
            return False

        return any(pattern.match(hostname) for pattern in self._patterns)
