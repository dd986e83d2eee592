"""Profile resolution, the listing store and listing mutations."""

from caravanhub.services.mutations import ImageUpload, ListingMutations
from caravanhub.services.profiles import ProfileResolver
from caravanhub.services.store import ListingStore

__all__ = ["ImageUpload", "ListingMutations", "ProfileResolver", "ListingStore"]
