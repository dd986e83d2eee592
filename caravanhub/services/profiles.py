"""Resolve an authenticated identity to an application user."""

import logging

from caravanhub.backend.base import BaseBackend, Query
from caravanhub.errors import BackendError
from caravanhub.models.user import AppUser, AuthUser, Profile, fallback_name

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"


class ProfileResolver:
    """Fetch, or lazily create, the profile behind an identity.

    Backend failures are logged rather than raised so that signing in is
    never blocked by a missing or unreadable profile.
    """

    def __init__(self, backend: BaseBackend):
        self.backend = backend

    async def _read(self, user_id: str, token: str | None) -> Profile | None:
        try:
            row = await self.backend.maybe_single(
                Query(PROFILES_TABLE, columns="id, name, role").eq("id", user_id), token=token
            )
        except BackendError as e:
            logger.warning(f"profiles fetch error for {user_id}: {e}")
            return None
        return Profile.from_dict(row) if row else None

    async def ensure_profile(self, user: AuthUser, name: str, token: str | None = None) -> bool:
        """Create or update the profile row for user with role 'user'.

        Returns:
            True if the write succeeded
        """
        try:
            await self.backend.upsert(
                PROFILES_TABLE,
                {"id": user.id, "name": name, "role": "user"},
                on_conflict="id",
                token=token,
            )
        except BackendError as e:
            logger.warning(f"profiles upsert error for {user.id}: {e}")
            return False
        return True

    async def resolve(self, user: AuthUser, token: str | None = None) -> AppUser:
        """Return the AppUser for user, creating a default profile if absent.

        Args:
            user: The authenticated identity
            token: Access token of the user's session

        Returns:
            An AppUser; falls back to the email local part and role 'user'
            when the profile cannot be read or written.
        """
        default_name = user.metadata.get("name") or fallback_name(user.email)

        profile = await self._read(user.id, token)
        if profile is None:
            if await self.ensure_profile(user, default_name, token):
                profile = await self._read(user.id, token)

        name = (profile.name if profile else "") or default_name
        role = profile.role if profile else "user"
        logger.info(f"Resolved profile for {user.email or user.id}: role={role}")
        return AppUser(name=name, email=user.email, role=role, identity=user)
