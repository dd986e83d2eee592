"""Handle sign-in, registration and add-listing form submissions."""

import logging
from dataclasses import dataclass, field

from caravanhub.backend.base import BaseBackend
from caravanhub.errors import BackendError, UploadError, ValidationError
from caravanhub.models.listing import Listing, ListingDraft
from caravanhub.models.user import AppUser, Session
from caravanhub.services.mutations import ImageUpload, ListingMutations
from caravanhub.services.profiles import ProfileResolver

logger = logging.getLogger(__name__)

SIGN_IN_REQUIRED = "Please enter your email and password."
REGISTER_REQUIRED = "Please fill name, email, and password."
CONFIRM_EMAIL = "Check your inbox to confirm your email."


@dataclass
class FormResult:
    """Outcome of a form submission, ready to render."""

    ok: bool
    errors: list[str] = field(default_factory=list)
    message: str | None = None
    session: Session | None = None
    user: AppUser | None = None
    listing: Listing | None = None


class FormHandler:
    """Validate submitted forms and delegate to the backend and mutations."""

    def __init__(self, backend: BaseBackend, resolver: ProfileResolver, mutations: ListingMutations):
        """Initialize the form handler.

        Args:
            backend: Backend client used for auth calls
            resolver: Resolves a signed-in identity to an AppUser
            mutations: Listing write operations
        """
        self.backend = backend
        self.resolver = resolver
        self.mutations = mutations

    async def sign_in(self, email: str, password: str) -> FormResult:
        """Sign in with email and password.

        Returns:
            FormResult carrying the new session and AppUser on success
        """
        email = email.strip()
        if not email or not password:
            return FormResult(ok=False, errors=[SIGN_IN_REQUIRED])

        try:
            session = await self.backend.sign_in_with_password(email, password)
        except BackendError as e:
            logger.info(f"Sign in failed for {email}: {e}")
            return FormResult(ok=False, errors=[str(e) or "Sign in failed"])

        user = await self.resolver.resolve(session.user, token=session.access_token)
        return FormResult(ok=True, session=session, user=user)

    async def register(self, name: str, email: str, password: str) -> FormResult:
        """Create an account and its profile.

        A profile write failure is only logged; the profile is created again
        on first sign-in.
        """
        name, email = name.strip(), email.strip()
        if not email or not password or not name:
            return FormResult(ok=False, errors=[REGISTER_REQUIRED])

        try:
            result = await self.backend.sign_up(email, password, {"name": name})
        except BackendError as e:
            logger.info(f"Registration failed for {email}: {e}")
            return FormResult(ok=False, errors=[str(e) or "Registration failed"])

        token = result.session.access_token if result.session else None
        if result.user:
            await self.resolver.ensure_profile(result.user, name, token=token)

        if result.session is None:
            return FormResult(ok=True, message=CONFIRM_EMAIL)

        user = await self.resolver.resolve(result.session.user, token=token)
        return FormResult(ok=True, session=result.session, user=user, message=CONFIRM_EMAIL)

    async def add_listing(
        self, session: Session, draft: ListingDraft, uploads: list[ImageUpload]
    ) -> FormResult:
        """Create a listing from the add-listing form."""
        try:
            listing = await self.mutations.create(session, draft, uploads)
        except ValidationError as e:
            return FormResult(ok=False, errors=e.errors)
        except UploadError as e:
            logger.error(f"Image upload failed: {e}")
            return FormResult(ok=False, errors=[f"Image upload failed: {e}"])
        except BackendError as e:
            logger.error(f"Failed to save listing: {e}")
            return FormResult(ok=False, errors=[str(e) or "Failed to save listing"])
        return FormResult(ok=True, listing=listing)

    async def sign_out(self, session: Session | None):
        if session is None:
            return
        try:
            await self.backend.sign_out(session)
        except BackendError as e:
            logger.warning(f"Sign out call failed: {e}")
