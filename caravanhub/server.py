"""Main server - wires the backend, listing store and forms into the web app."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, HTMLResponse, RedirectResponse
from starlette.middleware.sessions import SessionMiddleware

from caravanhub.backend.base import AUTH_KEY, BaseBackend
from caravanhub.backend.changes import AuthEvent, Subscription, TableWatcher
from caravanhub.backend.local import LocalBackend
from caravanhub.backend.supabase import SupabaseBackend
from caravanhub.config.settings import Settings
from caravanhub.errors import BackendError
from caravanhub.gallery.carousel import Carousel
from caravanhub.gallery.lightbox import Lightbox
from caravanhub.handlers.forms import FormHandler
from caravanhub.models.listing import ALL_STANDARDS, Listing, ListingDraft, ListingFilter
from caravanhub.models.user import AppUser, Session
from caravanhub.services.mutations import ImageUpload, ListingMutations
from caravanhub.services.profiles import ProfileResolver
from caravanhub.services.store import LISTINGS_TABLE, ListingStore
from caravanhub.views import pages

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

FLASH_KEY = "flash"


class CaravanHubServer:
    """Main server class that owns the backend client and listing state."""

    def __init__(self, settings: Settings | None = None, backend: BaseBackend | None = None):
        self.settings = settings or Settings.load()
        self.backend = backend or self._create_backend()
        site = self.settings.site
        self.store = ListingStore(self.backend)
        self.resolver = ProfileResolver(self.backend)
        self.mutations = ListingMutations(
            self.backend,
            self.store,
            bucket=site.image_bucket,
            max_images=site.max_images,
            cache_control=site.cache_control,
        )
        self.forms = FormHandler(self.backend, self.resolver, self.mutations)
        self.watcher: TableWatcher | None = None
        self._auth_subscription: Subscription | None = None
        self._users: dict[str, AppUser] = {}
        self._last_refresh: datetime | None = None

    def _create_backend(self) -> BaseBackend:
        """Create the backend client selected by settings."""
        if self.settings.backend == "supabase":
            return SupabaseBackend(
                self.settings.supabase_url,
                self.settings.supabase_anon_key,
                featured_rpc=self.settings.featured_rpc,
            )
        return LocalBackend(
            self.settings.db_path,
            storage_dir=self.settings.storage_dir,
            public_url=self.settings.public_url,
        )

    def _on_refresh(self, listings: tuple[Listing, ...]):
        self._last_refresh = datetime.now()
        logger.debug(f"Store refreshed with {len(listings)} listings")

    def _on_auth_event(self, event: AuthEvent):
        # Any auth change for an identity re-resolves its profile on next use
        if event.user_id and self._users.pop(event.user_id, None) is not None:
            logger.info(f"Dropped cached user {event.user_id} after {event.type}")

    async def startup(self):
        """Initialize server components."""
        # Validate settings
        errors = self.settings.validate()
        if errors:
            for error in errors:
                logger.warning(f"Config warning: {error}")

        await self.backend.connect()

        await self.store.refresh()
        await self.store.load_featured()
        self.store.add_listener(self._on_refresh)
        self.store.attach()
        self._auth_subscription = self.backend.on_auth_state_change(self._on_auth_event)

        if self.settings.realtime_poll_seconds > 0:
            self.watcher = TableWatcher(
                self.backend, LISTINGS_TABLE, interval=self.settings.realtime_poll_seconds
            )
            await self.watcher.poll()
            self.watcher.start()

        logger.info(
            f"Started with {self.settings.backend} backend, {len(self.store.listings)} listings loaded"
        )

    async def shutdown(self):
        """Clean up server components."""
        if self.watcher:
            await self.watcher.stop()
            self.watcher = None
        if self._auth_subscription:
            self._auth_subscription.unsubscribe()
            self._auth_subscription = None
        self.store.detach()
        await self.backend.close()

    async def current_session(self, request: Request) -> Session | None:
        """Session from the signed cookie, refreshed if it expired.

        A session that can no longer be refreshed is dropped from the cookie.
        """
        stored = Session.from_dict(request.session.get(AUTH_KEY) or {})
        if stored is None:
            return None
        session = await self.backend.get_session(stored)
        if session is None:
            request.session.pop(AUTH_KEY, None)
        elif session is not stored:
            request.session[AUTH_KEY] = session.to_dict()
        return session

    async def current_user(self, session: Session | None, fresh: bool = False) -> AppUser | None:
        """AppUser for session, from the cache unless fresh is set."""
        if session is None:
            return None
        user = None if fresh else self._users.get(session.user.id)
        if user is None:
            user = await self.resolver.resolve(session.user, token=session.access_token)
            self._users[user.id] = user
        return user

    def remember(self, request: Request, session: Session, user: AppUser | None):
        request.session[AUTH_KEY] = session.to_dict()
        if user:
            self._users[user.id] = user

    def health(self) -> dict:
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "backend": self.settings.backend,
            "listings": len(self.store.listings),
            "last_refresh": self._last_refresh.isoformat() if self._last_refresh else None,
        }


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=303)


def _flash(request: Request, message: str):
    request.session[FLASH_KEY] = message


def create_app(settings: Settings | None = None, backend: BaseBackend | None = None) -> FastAPI:
    """Build the FastAPI application around a CaravanHubServer."""
    settings = settings or Settings.load()
    server = CaravanHubServer(settings, backend=backend)
    site = settings.site

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """FastAPI lifespan handler."""
        await server.startup()
        yield
        await server.shutdown()

    app = FastAPI(title=site.name, lifespan=lifespan)
    app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)
    app.state.server = server

    async def require_admin(request: Request) -> Session:
        session = await server.current_session(request)
        user = await server.current_user(session, fresh=True)
        if user is None or not user.is_admin:
            raise HTTPException(status_code=403, detail="Admin access required")
        return session

    @app.get("/", response_class=HTMLResponse)
    async def home(request: Request, q: str = "", standard: str = ALL_STANDARDS, image: int = 0):
        session = await server.current_session(request)
        user = await server.current_user(session)
        listing_filter = ListingFilter.create(q, standard)
        return pages.render_home(
            site,
            server.store.filtered(listing_filter.query, listing_filter.standard),
            server.store.featured,
            user=user,
            query=listing_filter.query,
            standard=listing_filter.standard,
            hero_index=image,
            message=request.session.pop(FLASH_KEY, None),
        )

    @app.get("/login", response_class=HTMLResponse)
    async def login_page(request: Request):
        return pages.render_sign_in(site)

    @app.post("/login")
    async def login(request: Request, email: str = Form(""), password: str = Form("")):
        result = await server.forms.sign_in(email, password)
        if not result.ok:
            return HTMLResponse(pages.render_sign_in(site, email=email, errors=result.errors), status_code=400)
        server.remember(request, result.session, result.user)
        return _redirect("/")

    @app.get("/register", response_class=HTMLResponse)
    async def register_page(request: Request):
        return pages.render_register(site)

    @app.post("/register")
    async def register(
        request: Request, name: str = Form(""), email: str = Form(""), password: str = Form("")
    ):
        result = await server.forms.register(name, email, password)
        if not result.ok:
            return HTMLResponse(
                pages.render_register(site, name=name, email=email, errors=result.errors), status_code=400
            )
        if result.session is None:
            return HTMLResponse(pages.render_register(site, message=result.message))
        server.remember(request, result.session, result.user)
        _flash(request, result.message)
        return _redirect("/")

    @app.post("/logout")
    async def logout(request: Request):
        session = Session.from_dict(request.session.get(AUTH_KEY) or {})
        await server.forms.sign_out(session)
        request.session.pop(AUTH_KEY, None)
        return _redirect("/")

    @app.get("/listings/new", response_class=HTMLResponse)
    async def new_listing(request: Request):
        session = await server.current_session(request)
        user = await server.current_user(session)
        if user is None:
            return _redirect("/login")
        return pages.render_add_listing(site, user)

    @app.post("/listings")
    async def create_listing(
        request: Request,
        title: str = Form(""),
        standard: str = Form("Bronze"),
        location: str = Form(""),
        contact_name: str = Form(""),
        contact_email: str = Form(""),
        contact_phone: str = Form(""),
        images: list[UploadFile] | None = File(None),
    ):
        session = await server.current_session(request)
        user = await server.current_user(session)
        if user is None:
            return _redirect("/login")

        draft = ListingDraft(
            title=title,
            standard=standard,
            location=location,
            contact_name=contact_name,
            contact_email=contact_email,
            contact_phone=contact_phone or None,
        )
        uploads = []
        for image in images or []:
            # Browsers send an empty part when no file was chosen
            if not image.filename:
                continue
            uploads.append(
                ImageUpload(
                    filename=image.filename,
                    content=await image.read(),
                    content_type=image.content_type or "application/octet-stream",
                )
            )

        result = await server.forms.add_listing(session, draft, uploads)
        if not result.ok:
            return HTMLResponse(
                pages.render_add_listing(site, user, draft=draft, errors=result.errors), status_code=400
            )
        _flash(request, f"Listing '{result.listing.title}' created")
        return _redirect("/")

    @app.get("/listings/{listing_id}", response_class=HTMLResponse)
    async def listing_detail(request: Request, listing_id: str, image: int = 0):
        listing = server.store.get(listing_id)
        if listing is None:
            raise HTTPException(status_code=404, detail="Listing not found")
        session = await server.current_session(request)
        user = await server.current_user(session)
        carousel = Carousel(listing.gallery_images(site.placeholder_image), placeholder=site.placeholder_image)
        carousel.scroll_to(image)
        return pages.render_listing_detail(site, listing, carousel, user=user)

    @app.get("/listings/{listing_id}/gallery", response_class=HTMLResponse)
    async def listing_gallery(listing_id: str, index: int = 0):
        listing = server.store.get(listing_id)
        if listing is None:
            raise HTTPException(status_code=404, detail="Listing not found")
        lightbox = Lightbox(placeholder=site.placeholder_image)
        lightbox.open(listing.images, index)
        return pages.render_lightbox(site, listing, lightbox)

    @app.post("/listings/{listing_id}/feature")
    async def feature_listing(request: Request, listing_id: str):
        session = await require_admin(request)
        try:
            await server.mutations.set_featured(session, listing_id)
        except BackendError as e:
            logger.error(f"Failed to feature listing {listing_id}: {e}")
            _flash(request, f"Failed to feature listing: {e}")
        return _redirect("/")

    @app.post("/listings/{listing_id}/delete")
    async def delete_listing(request: Request, listing_id: str):
        session = await require_admin(request)
        try:
            await server.mutations.delete(session, listing_id)
        except BackendError as e:
            logger.error(f"Failed to delete listing {listing_id}: {e}")
            _flash(request, f"Failed to delete listing: {e}")
        return _redirect("/")

    @app.get("/api/listings")
    async def api_listings(q: str = "", standard: str = ALL_STANDARDS):
        listing_filter = ListingFilter.create(q, standard)
        listings = server.store.filtered(listing_filter.query, listing_filter.standard)
        return {"count": len(listings), "listings": [listing.to_dict() for listing in listings]}

    @app.get("/api/featured")
    async def api_featured():
        featured = server.store.featured
        return {"featured": featured.to_dict() if featured else None}

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return server.health()

    @app.get("/storage/v1/object/public/{bucket}/{key:path}")
    async def storage_object(bucket: str, key: str):
        """Serve stored images when running on the local backend."""
        if not isinstance(server.backend, LocalBackend):
            raise HTTPException(status_code=404, detail="Not found")
        try:
            path = server.backend.object_path(bucket, key)
        except BackendError:
            raise HTTPException(status_code=404, detail="Not found")
        if not path.is_file():
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(path, headers={"Cache-Control": f"max-age={site.cache_control}"})

    return app


app = create_app()


def main():
    """Entry point for running the server."""
    import uvicorn

    settings = Settings.load()
    uvicorn.run(
        "caravanhub.server:app",
        host=settings.host,
        port=settings.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
