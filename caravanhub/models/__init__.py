"""Data models."""

from caravanhub.models.listing import (
    ALL_STANDARDS,
    STANDARDS,
    Listing,
    ListingDraft,
    ListingFilter,
)
from caravanhub.models.user import AppUser, AuthUser, Profile, Session

__all__ = [
    "ALL_STANDARDS",
    "STANDARDS",
    "Listing",
    "ListingDraft",
    "ListingFilter",
    "AppUser",
    "AuthUser",
    "Profile",
    "Session",
]
