"""Dashboard users for interactive (non-OAuth) sign-in.

The user table lives in the platform database; this module only defines the
lookup call contract and the password check.

Security contract:
- Password hashes are compared with hmac.compare_digest()
- An unknown user costs the same hash-and-compare as a wrong password
- The password hash never leaves this module in a response or a token
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


@dataclass(frozen=True)
class DashboardUser:
    id: int
    email: str
    name: str = ""
    shop_domain: str = ""
    instagram: str = ""
    password_hashes: tuple[str, ...] = field(default=(), repr=False)

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "shopDomain": self.shop_domain,
        }


@dataclass(frozen=True)
class DashboardIdentity:
    """Claims carried by a sign-in session token."""

    user_id: int
    email: str
    shop_domain: str
    name: str = ""
    expires_at: datetime | None = None

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "shop": self.shop_domain,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "user": {"id": self.user_id, "name": self.name, "email": self.email},
        }


class UserDirectory(Protocol):
    async def find_user(self, username_or_email: str) -> DashboardUser | None: ...


def hash_password(password: str, pepper: str) -> str:
    return hashlib.sha256((password + pepper).encode("utf-8")).hexdigest()


_DUMMY_HASH = "0" * 64


def check_password(user: DashboardUser | None, password: str, pepper: str) -> bool:
    """Constant-time password check against every stored hash of the user."""
    computed = hash_password(password, pepper).encode("utf-8")
    hashes = user.password_hashes if user is not None and user.password_hashes else (_DUMMY_HASH,)
    matched = False
    for stored in hashes:
        if hmac.compare_digest(computed, stored.encode("utf-8")):
            matched = True
    return matched and user is not None


class InMemoryUserDirectory:
    """Dict-backed UserDirectory.

    Lookup by email first, then by Instagram handle; a leading ``@`` is
    ignored for both.
    """

    def __init__(self, users: list[DashboardUser] | None = None) -> None:
        self._users: list[DashboardUser] = list(users or [])

    def add(self, user: DashboardUser) -> None:
        self._users.append(user)

    async def find_user(self, username_or_email: str) -> DashboardUser | None:
        wanted = username_or_email.strip().lstrip("@").lower()
        if not wanted:
            return None
        for user in self._users:
            if user.email.lower() == wanted:
                return user
        for user in self._users:
            if user.instagram and user.instagram.lstrip("@").lower() == wanted:
                return user
        return None
