"""Merchant session model.

Security contract:
- The access token never appears in logs, repr() or public API payloads
- A session is immutable; re-authentication produces a new one
- The only place the token travels is inside a signed session token
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable


@dataclass(frozen=True)
class AssociatedUser:
    """Shopify staff member bound to an online-access session."""

    id: int
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    account_owner: bool = False

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "account_owner": self.account_owner,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AssociatedUser:
        return cls(
            id=int(data["id"]),
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            email=data.get("email") or "",
            account_owner=bool(data.get("account_owner", False)),
        )


def parse_scope(raw: str | Iterable[str] | None) -> frozenset[str]:
    """Split Shopify's comma-separated scope string into a set."""
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        parts = raw.split(",")
    else:
        parts = list(raw)
    return frozenset(p.strip() for p in parts if p and p.strip())


def format_scope(scope: Iterable[str]) -> str:
    return ",".join(sorted(scope))


@dataclass(frozen=True)
class Session:
    """An authenticated merchant connection."""

    shop: str
    access_token: str = field(repr=False)
    scope: frozenset[str] = frozenset()
    expires_at: datetime | None = None
    associated_user: AssociatedUser | None = None

    @property
    def is_online(self) -> bool:
        return self.associated_user is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def to_public_dict(self) -> dict[str, Any]:
        """Fields safe to return to the browser."""
        data: dict[str, Any] = {
            "shop": self.shop,
            "scope": format_scope(self.scope),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }
        if self.associated_user is not None:
            data["user"] = {
                "id": self.associated_user.id,
                "name": self.associated_user.name,
                "email": self.associated_user.email,
                "accountOwner": self.associated_user.account_owner,
            }
        return data
