"""Identity, session and profile models."""

import time
from dataclasses import dataclass, field
from typing import Literal

Role = Literal["admin", "user"]


def normalize_role(raw) -> Role:
    """Map a stored role onto 'admin' or 'user'.

    Anything that is not exactly 'admin' after trimming and lowercasing is
    treated as 'user'.
    """
    value = str(raw if raw is not None else "user").strip().lower()
    return "admin" if value == "admin" else "user"


def fallback_name(email: str) -> str:
    """Derive a display name from the local part of an email address."""
    local = email.split("@")[0] if email else ""
    return local or "User"


@dataclass
class AuthUser:
    """The raw identity issued by the auth provider."""

    id: str
    email: str
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"id": self.id, "email": self.email, "metadata": dict(self.metadata)}

    @classmethod
    def from_dict(cls, data: dict) -> "AuthUser":
        return cls(
            id=str(data.get("id") or ""),
            email=data.get("email") or "",
            metadata=dict(data.get("metadata") or data.get("user_metadata") or {}),
        )


@dataclass
class Session:
    """An authenticated session handle."""

    access_token: str
    refresh_token: str
    expires_at: float
    user: AuthUser

    def is_expired(self, now: float | None = None, leeway: float = 10.0) -> bool:
        now = time.time() if now is None else now
        return self.expires_at - leeway <= now

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "user": self.user.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session | None":
        if not data or not data.get("access_token"):
            return None
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or "",
            expires_at=float(data.get("expires_at") or 0),
            user=AuthUser.from_dict(data.get("user") or {}),
        )


@dataclass
class Profile:
    """Application-level user record."""

    id: str
    name: str
    role: Role = "user"

    @classmethod
    def from_dict(cls, data: dict) -> "Profile":
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            role=normalize_role(data.get("role")),
        )


@dataclass
class AppUser:
    """The signed-in user as the application sees them."""

    name: str
    email: str
    role: Role
    identity: AuthUser

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
