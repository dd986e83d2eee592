"""Client-side listing collection kept in step with the backend."""

import inspect
import logging
from typing import Awaitable, Callable

from caravanhub.backend.base import BaseBackend, Query
from caravanhub.backend.changes import ChangeEvent, Subscription
from caravanhub.errors import BackendError
from caravanhub.models.listing import ALL_STANDARDS, LISTING_COLUMNS, Listing, ListingFilter

logger = logging.getLogger(__name__)

LISTINGS_TABLE = "listings"

RefreshListener = Callable[[tuple[Listing, ...]], Awaitable[None] | None]


class ListingStore:
    """In-memory, newest-first listing collection plus the featured pointer.

    The store is the only writer of its collection and replaces it whole on
    each refresh, so readers always see either the previous list or the new
    one. Change events from the backend trigger a full refetch rather than
    being applied individually.
    """

    def __init__(self, backend: BaseBackend):
        self.backend = backend
        self._listings: tuple[Listing, ...] = ()
        self._featured_id: str | None = None
        self._subscription: Subscription | None = None
        self._listeners: list[RefreshListener] = []
        self.refresh_count = 0

    @property
    def listings(self) -> tuple[Listing, ...]:
        return self._listings

    @property
    def featured_id(self) -> str | None:
        return self._featured_id

    @property
    def featured(self) -> Listing | None:
        """The listing the featured pointer refers to, if it is loaded."""
        if self._featured_id is None:
            return None
        return self.get(self._featured_id)

    def get(self, listing_id: str) -> Listing | None:
        for listing in self._listings:
            if listing.id == listing_id:
                return listing
        return None

    def filtered(self, query: str = "", standard: str = ALL_STANDARDS) -> list[Listing]:
        """Listings matching the search text and standard tab, newest first."""
        listing_filter = ListingFilter.create(query, standard)
        return [listing for listing in self._listings if listing_filter.matches(listing)]

    def add_listener(self, callback: RefreshListener):
        """Call callback with the new collection after every successful refresh."""
        self._listeners.append(callback)

    async def refresh(self) -> bool:
        """Refetch every listing and replace the collection.

        Returns:
            False if the fetch failed; the previous collection is kept.
        """
        query = Query(LISTINGS_TABLE, columns=LISTING_COLUMNS).order("created_at", descending=True)
        try:
            rows = await self.backend.select(query)
        except BackendError as e:
            logger.error(f"Error refreshing listings: {e}")
            return False

        self._listings = tuple(Listing.from_dict(row) for row in rows)
        self.refresh_count += 1
        logger.debug(f"Loaded {len(self._listings)} listings")

        for callback in list(self._listeners):
            try:
                result = callback(self._listings)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Refresh listener failed")
        return True

    async def load_featured(self) -> str | None:
        """Load the id of the featured listing; no featured row is not an error."""
        query = Query(LISTINGS_TABLE, columns="id").eq("is_featured", True)
        try:
            row = await self.backend.maybe_single(query)
        except BackendError as e:
            logger.error(f"Error loading featured listing: {e}")
            return self._featured_id
        self._featured_id = str(row["id"]) if row else None
        return self._featured_id

    def set_featured_pointer(self, listing_id: str | None):
        self._featured_id = listing_id

    def clear_featured(self):
        self._featured_id = None

    async def _on_change(self, event: ChangeEvent):
        logger.info(f"Listings changed ({event.type} {event.record_id}); refreshing")
        await self.refresh()
        await self.load_featured()

    def attach(self):
        """Subscribe to listing change events; repeated calls keep one subscription."""
        if self._subscription is not None and self._subscription.active:
            return
        self._subscription = self.backend.subscribe(LISTINGS_TABLE, self._on_change)

    def detach(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    @property
    def attached(self) -> bool:
        return self._subscription is not None and self._subscription.active
