"""Listing data model."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from caravanhub.config.settings import DEFAULT_PLACEHOLDER

STANDARDS: tuple[str, ...] = ("Bronze", "Silver", "Gold")
ALL_STANDARDS = "All"
STANDARD_FILTERS: tuple[str, ...] = (ALL_STANDARDS,) + STANDARDS

LISTING_COLUMNS = (
    "id, title, standard, location, contact_name, contact_email, contact_phone, "
    "images, created_at, owner_email, owner_id, is_featured"
)


def parse_timestamp(value) -> datetime:
    """Parse a backend timestamp (ISO string, possibly with a trailing Z)."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Listing:
    """A caravan listing as stored by the backend."""

    id: str
    title: str
    standard: str
    location: str
    contact_name: str
    contact_email: str
    contact_phone: str | None = None
    images: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    owner_email: str = ""
    owner_id: str | None = None
    is_featured: bool = False

    def gallery_images(self, placeholder: str = DEFAULT_PLACEHOLDER) -> list[str]:
        """Images to show in a gallery; a single placeholder when there are none."""
        return list(self.images) if self.images else [placeholder]

    @property
    def cover_image(self) -> str | None:
        return self.images[0] if self.images else None

    def to_dict(self) -> dict:
        """Convert to a row dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "standard": self.standard,
            "location": self.location,
            "contact_name": self.contact_name,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "images": list(self.images),
            "created_at": self.created_at.isoformat(),
            "owner_email": self.owner_email,
            "owner_id": self.owner_id,
            "is_featured": self.is_featured,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Listing":
        """Create a Listing from a backend row."""
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            standard=data.get("standard") or "Bronze",
            location=data.get("location") or "",
            contact_name=data.get("contact_name") or "",
            contact_email=data.get("contact_email") or "",
            contact_phone=data.get("contact_phone") or None,
            images=list(data.get("images") or []),
            created_at=parse_timestamp(data.get("created_at")),
            owner_email=data.get("owner_email") or "",
            owner_id=data.get("owner_id"),
            is_featured=bool(data.get("is_featured")),
        )


@dataclass
class ListingDraft:
    """User-entered fields for a listing that does not exist yet."""

    title: str = ""
    standard: str = "Bronze"
    location: str = ""
    contact_name: str = ""
    contact_email: str = ""
    contact_phone: str | None = None

    def validate(self) -> list[str]:
        """Validate the draft and return a list of errors."""
        errors = []
        if not self.title.strip():
            errors.append("Title is required")
        if not self.location.strip():
            errors.append("Location is required")
        if not self.contact_name.strip():
            errors.append("Contact name is required")
        if not self.contact_email.strip():
            errors.append("Contact email is required")
        if self.standard not in STANDARDS:
            errors.append(f"Standard must be one of {', '.join(STANDARDS)}")
        return errors

    def to_row(self, owner_id: str, owner_email: str, images: list[str]) -> dict:
        """Build the insert payload, stamped with the owner's identity."""
        return {
            "title": self.title.strip(),
            "standard": self.standard,
            "location": self.location.strip(),
            "contact_name": self.contact_name.strip(),
            "contact_email": self.contact_email.strip(),
            "contact_phone": (self.contact_phone or "").strip() or None,
            "images": list(images),
            "owner_email": owner_email,
            "owner_id": owner_id,
        }


@dataclass(frozen=True)
class ListingFilter:
    """Search text and standard tab currently applied to the listing grid."""

    query: str = ""
    standard: str = ALL_STANDARDS

    @classmethod
    def create(cls, query: str | None = None, standard: str | None = None) -> "ListingFilter":
        """Build a filter from raw request values, falling back to 'All'."""
        standard = standard if standard in STANDARD_FILTERS else ALL_STANDARDS
        return cls(query=query or "", standard=standard)

    def matches(self, listing: Listing) -> bool:
        if self.standard != ALL_STANDARDS and listing.standard != self.standard:
            return False
        q = self.query.strip().lower()
        if not q:
            return True
        haystack = (listing.title, listing.location, listing.contact_name, listing.contact_email)
        return any(q in value.lower() for value in haystack)
