"""Create, delete and feature listings, refreshing the store after each."""

import logging
import uuid
from dataclasses import dataclass
from urllib.parse import unquote

from caravanhub.backend.base import BaseBackend, Query
from caravanhub.errors import BackendError, ValidationError
from caravanhub.models.listing import LISTING_COLUMNS, Listing, ListingDraft
from caravanhub.models.user import Session
from caravanhub.services.store import LISTINGS_TABLE, ListingStore

logger = logging.getLogger(__name__)

PUBLIC_SEGMENT = "/object/public/"


@dataclass
class ImageUpload:
    """An image file submitted with a new listing."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def extension(self) -> str:
        if "." not in self.filename:
            return "jpg"
        return self.filename.rsplit(".", 1)[-1].lower() or "jpg"


def storage_keys(urls: list[str], bucket: str) -> list[str]:
    """Map public image URLs back to object keys within bucket.

    URLs that are not public storage URLs, or that point at another bucket,
    are skipped.
    """
    keys = []
    prefix = f"{bucket}/"
    for url in urls:
        idx = url.find(PUBLIC_SEGMENT)
        if idx == -1:
            continue
        key = unquote(url[idx + len(PUBLIC_SEGMENT):].split("?", 1)[0])
        if key.startswith(prefix):
            keys.append(key[len(prefix):])
    return keys


class ListingMutations:
    """Write operations on listings.

    Each operation takes the caller's Session explicitly and finishes with a
    full store refresh.
    """

    def __init__(
        self,
        backend: BaseBackend,
        store: ListingStore,
        bucket: str = "listing-images",
        max_images: int = 10,
        cache_control: str = "3600",
    ):
        self.backend = backend
        self.store = store
        self.bucket = bucket
        self.max_images = max_images
        self.cache_control = cache_control

    async def upload_images(self, session: Session, uploads: list[ImageUpload]) -> list[str]:
        """Upload images one at a time under the owner's folder.

        Returns:
            Public URLs in the same order as uploads

        Raises:
            UploadError: on the first failed upload; later files are not sent
        """
        urls = []
        for upload in uploads:
            path = f"{session.user.id}/{uuid.uuid4()}.{upload.extension}"
            await self.backend.upload(
                self.bucket,
                path,
                upload.content,
                content_type=upload.content_type,
                cache_control=self.cache_control,
                overwrite=True,
                token=session.access_token,
            )
            urls.append(self.backend.public_url(self.bucket, path))
        return urls

    async def create(
        self, session: Session, draft: ListingDraft, uploads: list[ImageUpload] | None = None
    ) -> Listing:
        """Validate, upload images, insert the row and refresh.

        Raises:
            ValidationError: if required fields are missing (nothing is sent)
            UploadError: if any image upload fails (no row is inserted)
            BackendError: if the insert fails
        """
        errors = draft.validate()
        if errors:
            raise ValidationError(errors)

        uploads = list(uploads or [])
        if len(uploads) > self.max_images:
            logger.info(f"Keeping the first {self.max_images} of {len(uploads)} images")
            uploads = uploads[: self.max_images]

        image_urls = await self.upload_images(session, uploads) if uploads else []

        row = draft.to_row(session.user.id, session.user.email, image_urls)
        created = await self.backend.insert(LISTINGS_TABLE, row, token=session.access_token)
        listing = Listing.from_dict(created)
        logger.info(f"Created listing {listing.id} '{listing.title}' with {len(image_urls)} image(s)")

        await self.store.refresh()
        return listing

    async def _find(self, listing_id: str) -> Listing | None:
        listing = self.store.get(listing_id)
        if listing is not None:
            return listing
        row = await self.backend.maybe_single(
            Query(LISTINGS_TABLE, columns=LISTING_COLUMNS).eq("id", listing_id)
        )
        return Listing.from_dict(row) if row else None

    async def delete(self, session: Session, listing_id: str) -> bool:
        """Remove a listing's stored images (best effort), then the row.

        Returns:
            True if a row was deleted
        """
        target = await self._find(listing_id)
        keys = storage_keys(target.images, self.bucket) if target else []
        if keys:
            try:
                removed = await self.backend.remove(self.bucket, keys, token=session.access_token)
                logger.info(f"Removed {len(removed)} of {len(keys)} image(s) for listing {listing_id}")
            except BackendError as e:
                logger.warning(f"Image cleanup failed for listing {listing_id}: {e}")

        deleted = await self.backend.delete(LISTINGS_TABLE, {"id": listing_id}, token=session.access_token)
        if self.store.featured_id == listing_id:
            self.store.clear_featured()
        logger.info(f"Deleted listing {listing_id}")

        await self.store.refresh()
        return bool(deleted)

    async def set_featured(self, session: Session, listing_id: str):
        """Make listing_id the single featured listing."""
        await self.backend.set_featured(LISTINGS_TABLE, listing_id, token=session.access_token)
        self.store.set_featured_pointer(listing_id)
        logger.info(f"Featured listing {listing_id}")
        await self.store.refresh()
