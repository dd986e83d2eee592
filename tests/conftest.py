"""Shared pytest fixtures.

Everything runs against an in-memory LocalBackend with a temporary storage
directory, so no hosted project is needed.
"""

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from caravanhub.backend.local import LocalBackend
from caravanhub.config.settings import Settings, SiteConfig
from caravanhub.handlers.forms import FormHandler
from caravanhub.models.listing import ListingDraft
from caravanhub.services.mutations import ListingMutations
from caravanhub.services.profiles import PROFILES_TABLE, ProfileResolver
from caravanhub.services.store import ListingStore

PLACEHOLDER = "https://example.com/placeholder.jpg"


def make_draft(**overrides) -> ListingDraft:
    fields = {
        "title": "Sea View",
        "standard": "Gold",
        "location": "Scarborough",
        "contact_name": "Ann",
        "contact_email": "ann@example.com",
        "contact_phone": "",
    }
    fields.update(overrides)
    return ListingDraft(**fields)


@pytest.fixture
def site() -> SiteConfig:
    return SiteConfig(placeholder_image=PLACEHOLDER, admin_contact="admin@example.com")


@pytest.fixture
def settings(tmp_path, site) -> Settings:
    return Settings(
        backend="local",
        supabase_url="",
        supabase_anon_key="",
        featured_rpc="set_featured_listing",
        db_path=":memory:",
        storage_dir=str(tmp_path / "storage"),
        public_url="http://testserver",
        session_secret="test-secret",
        realtime_poll_seconds=0,
        host="127.0.0.1",
        port=8000,
        site=site,
    )


@pytest_asyncio.fixture
async def backend(tmp_path):
    backend = LocalBackend(":memory:", storage_dir=str(tmp_path / "storage"), public_url="http://testserver")
    await backend.connect()
    yield backend
    await backend.close()


@pytest.fixture
def store(backend) -> ListingStore:
    return ListingStore(backend)


@pytest.fixture
def resolver(backend) -> ProfileResolver:
    return ProfileResolver(backend)


@pytest.fixture
def mutations(backend, store) -> ListingMutations:
    return ListingMutations(backend, store)


@pytest.fixture
def forms(backend, resolver, mutations) -> FormHandler:
    return FormHandler(backend, resolver, mutations)


@pytest_asyncio.fixture
async def user_session(backend):
    result = await backend.sign_up("ann@example.com", "secret-pass", {"name": "Ann"})
    return result.session


@pytest_asyncio.fixture
async def admin_session(backend):
    result = await backend.sign_up("corey@example.com", "admin-pass", {"name": "Corey"})
    await backend.upsert(PROFILES_TABLE, {"id": result.user.id, "name": "Corey", "role": "admin"})
    return result.session


@pytest.fixture
def client(settings):
    from caravanhub.server import create_app

    with TestClient(create_app(settings)) as client:
        yield client
