"""
Flow-state cookie codec.

Every cookie the login flow writes carries the reserved ``fedlogin_`` prefix.
A :class:`CookieJar` remembers which reserved cookies arrived with the
request so that, when the response headers are rendered, each of them is
either re-set with a live value or explicitly expired.
"""

import json
import secrets
from typing import Dict, List, Mapping, Optional
from urllib.parse import quote, unquote

from shared.encryption import DecryptionError, Encryptor
from shared.logging import get_logger

RESERVED_PREFIX = "fedlogin_"

STATE_COOKIE = RESERVED_PREFIX + "state"
NONCE_COOKIE = RESERVED_PREFIX + "nonce"
SINGLE_SIGN_ON_COOKIE = RESERVED_PREFIX + "sso"
COMPLETION_ACTION_COOKIE = RESERVED_PREFIX + "completion"
REQUEST_TOKEN_COOKIE = RESERVED_PREFIX + "rt"

COMPLETION_TYPES = ("postMessage", "iframe")

_DELETED = "deleted; expires=Thu, 01 Jan 1970 00:00:00 GMT"
_ATTRIBUTES = "Path=/; HttpOnly; Secure"

# Same unreserved set as encodeURIComponent
_SAFE = "-_.!~*'()"

logger = get_logger("login.cookies")


def create_flow_token() -> str:
    """Random 128-bit value for OAuth state and nonce cookies."""
    return secrets.token_urlsafe(16)


def encode_value(value: str) -> str:
    return quote(value, safe=_SAFE)


def decode_value(value: str) -> str:
    return unquote(value)


def format_set_cookie(name: str, value: Optional[str]) -> str:
    """Render a ``Set-Cookie`` header value; ``None`` renders the expired form."""
    if value is None:
        return f"{name}={_DELETED}; {_ATTRIBUTES}"
    return f"{name}={encode_value(value)}; {_ATTRIBUTES}"


class CookieJar:
    """Request cookies in, reconciled ``Set-Cookie`` headers out."""

    def __init__(self, request_cookies: Optional[Mapping[str, str]] = None):
        self._incoming: Dict[str, str] = dict(request_cookies or {})
        self._outgoing: Dict[str, Optional[str]] = {}

    def get(self, name: str) -> Optional[str]:
        """Decoded value of a request cookie, or ``None``."""
        value = self._incoming.get(name)
        if not value:
            return None
        return decode_value(value)

    def set(self, name: str, value: str) -> None:
        self._outgoing[name] = value

    def expire(self, name: str) -> None:
        self._outgoing[name] = None

    def is_set(self, name: str) -> bool:
        return self._outgoing.get(name) is not None

    def reserved_on_request(self) -> List[str]:
        return [name for name in self._incoming if name.startswith(RESERVED_PREFIX)]

    def set_cookie_headers(self) -> List[str]:
        """Render outgoing cookies, expiring every reserved request cookie not re-set."""
        outgoing = dict(self._outgoing)
        for name in self.reserved_on_request():
            if outgoing.get(name) is None:
                outgoing[name] = None

        return [format_set_cookie(name, value) for name, value in outgoing.items()]


def encode_completion_action(completion_type: str, origin: str) -> str:
    return json.dumps({"type": completion_type, "origin": origin}, separators=(",", ":"))


def decode_completion_action(value: Optional[str]) -> Optional[Dict[str, str]]:
    """Parse the completion action cookie; anything unparseable reads as absent."""
    if not value:
        return None
    try:
        action = json.loads(value)
    except ValueError:
        logger.warning("Ignoring unparseable completion action cookie")
        return None

    if not isinstance(action, dict):
        return None
    if not isinstance(action.get("type"), str) or not isinstance(action.get("origin"), str):
        return None
    return action


def decrypt_value(encryptor: Encryptor, value: Optional[str]) -> Optional[str]:
    """Decrypt a cookie value; tampered or foreign values read as absent."""
    if not value:
        return None
    try:
        return encryptor.decrypt(value)
    except DecryptionError:
        logger.warning("Ignoring undecryptable cookie value")
        return None
