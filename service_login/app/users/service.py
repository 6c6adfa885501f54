"""
Identity store interface.

The login service only needs two operations from the store: whether it is
enabled, and recording an identity for a provider user. Real deployments
plug in their own persistence; the in-memory store serves local runs and
tests.
"""

import uuid
from typing import Any, Dict, Protocol, Tuple

from shared.logging import get_logger


def get_provider_key_by_name(name: str) -> str:
    """Short provider key used by the identity store."""
    key = name.lower()
    if key == "microsoftaccount":
        key = "microsoft"
    return key


class UserService(Protocol):
    async def is_enabled(self) -> bool:
        ...

    async def add_user_identity(self, provider_key: str, provider_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        ...


class NullUserService:
    """Identity store that is always disabled."""

    async def is_enabled(self) -> bool:
        return False

    async def add_user_identity(self, provider_key: str, provider_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        raise RuntimeError("The identity store is not enabled")


class InMemoryUserService:
    """Process-local identity store."""

    def __init__(self):
        self.logger = get_logger("login.users")
        self._users: Dict[Tuple[str, str], Dict[str, Any]] = {}

    async def is_enabled(self) -> bool:
        return True

    async def add_user_identity(self, provider_key: str, provider_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        user = self._users.get((provider_key, provider_id))
        if user is None:
            user = {"id": str(uuid.uuid4()), f"{provider_key}Id": provider_id}
            self._users[(provider_key, provider_id)] = user
            self.logger.info("User created", provider=provider_key, user_id=user["id"])

        user[f"{provider_key}Properties"] = properties
        return user
