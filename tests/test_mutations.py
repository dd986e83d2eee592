"""Tests for listing create, delete and feature operations."""

from pathlib import Path

import pytest

from caravanhub.backend.base import Query
from caravanhub.errors import UploadError, ValidationError
from caravanhub.services.mutations import ImageUpload, storage_keys
from caravanhub.services.store import LISTINGS_TABLE
from tests.conftest import PLACEHOLDER, make_draft


def _uploads(count: int) -> list[ImageUpload]:
    return [ImageUpload(f"photo{i}.PNG", f"image-{i}".encode(), "image/png") for i in range(count)]


async def _featured_ids(backend) -> list[str]:
    rows = await backend.select(Query(LISTINGS_TABLE, columns="id").eq("is_featured", True))
    return [row["id"] for row in rows]


class TestImageUpload:
    def test_extension(self):
        assert ImageUpload("a.JPEG", b"").extension == "jpeg"
        assert ImageUpload("noext", b"").extension == "jpg"
        assert ImageUpload("trailing.", b"").extension == "jpg"


class TestStorageKeys:
    def test_keeps_only_keys_in_bucket(self):
        urls = [
            "https://x.supabase.co/storage/v1/object/public/listing-images/u1/a.jpg",
            "https://x.supabase.co/storage/v1/object/public/other/u1/b.jpg",
            "https://images.unsplash.com/photo.jpg",
            "http://testserver/storage/v1/object/public/listing-images/u1/c%20d.png?t=1",
        ]
        assert storage_keys(urls, "listing-images") == ["u1/a.jpg", "u1/c d.png"]


class TestCreate:
    @pytest.mark.asyncio
    async def test_sea_view_without_images(self, store, mutations, user_session):
        listing = await mutations.create(user_session, make_draft(), [])

        assert listing.owner_id == user_session.user.id
        assert listing.owner_email == "ann@example.com"
        matches = store.filtered("sea", "All")
        assert [l.id for l in matches] == [listing.id]
        assert matches[0].gallery_images(PLACEHOLDER) == [PLACEHOLDER]

    @pytest.mark.asyncio
    async def test_validation_happens_before_any_backend_call(self, backend, mutations, user_session, monkeypatch):
        calls = []

        async def recording(*args, **kwargs):
            calls.append(args)

        monkeypatch.setattr(backend, "upload", recording)
        monkeypatch.setattr(backend, "insert", recording)

        with pytest.raises(ValidationError) as exc_info:
            await mutations.create(user_session, make_draft(title="", location=""), _uploads(1))

        assert "Title is required" in exc_info.value.errors
        assert calls == []

    @pytest.mark.asyncio
    async def test_images_are_stored_in_order(self, backend, mutations, user_session):
        listing = await mutations.create(user_session, make_draft(), _uploads(3))

        assert len(listing.images) == 3
        for i, url in enumerate(listing.images):
            assert url.startswith(f"http://testserver/storage/v1/object/public/listing-images/{user_session.user.id}/")
            assert url.endswith(".png")
            key = storage_keys([url], "listing-images")[0]
            assert backend.object_path("listing-images", key).read_bytes() == f"image-{i}".encode()

    @pytest.mark.asyncio
    async def test_at_most_max_images_are_uploaded(self, mutations, user_session):
        mutations.max_images = 2
        listing = await mutations.create(user_session, make_draft(), _uploads(5))
        assert len(listing.images) == 2

    @pytest.mark.asyncio
    async def test_upload_failure_inserts_no_row(self, backend, store, mutations, user_session, monkeypatch):
        original = backend.upload
        sent = []

        async def flaky(bucket, path, data, **kwargs):
            if len(sent) == 1:
                raise UploadError("Payload too large", status=413)
            sent.append(path)
            return await original(bucket, path, data, **kwargs)

        monkeypatch.setattr(backend, "upload", flaky)

        with pytest.raises(UploadError):
            await mutations.create(user_session, make_draft(), _uploads(3))

        assert len(sent) == 1
        assert await backend.select(Query(LISTINGS_TABLE)) == []
        assert store.listings == ()


class TestSetFeatured:
    @pytest.mark.asyncio
    async def test_feature_a_then_b(self, backend, store, mutations, admin_session):
        a = await mutations.create(admin_session, make_draft(title="A"))
        b = await mutations.create(admin_session, make_draft(title="B"))

        await mutations.set_featured(admin_session, a.id)
        await mutations.set_featured(admin_session, b.id)

        assert await _featured_ids(backend) == [b.id]
        assert store.featured_id == b.id
        assert [l.id for l in store.listings if l.is_featured] == [b.id]

    @pytest.mark.asyncio
    async def test_two_step_fallback_keeps_single_featured(self, backend, mutations, admin_session, monkeypatch):
        async def not_atomic(*args, **kwargs):
            return False

        monkeypatch.setattr(backend, "_set_featured_atomic", not_atomic)
        ids = [(await mutations.create(admin_session, make_draft(title=t))).id for t in "ABC"]

        for listing_id in ids + [ids[0]]:
            await mutations.set_featured(admin_session, listing_id)
            assert await _featured_ids(backend) == [listing_id]


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_featured_clears_pointer_and_images(self, backend, store, mutations, admin_session):
        listing = await mutations.create(admin_session, make_draft(), _uploads(2))
        await mutations.set_featured(admin_session, listing.id)
        files = [backend.object_path("listing-images", k) for k in storage_keys(listing.images, "listing-images")]
        assert all(Path(f).exists() for f in files)

        assert await mutations.delete(admin_session, listing.id)

        assert store.featured_id is None
        assert store.listings == ()
        assert not any(Path(f).exists() for f in files)

    @pytest.mark.asyncio
    async def test_pointer_cleared_before_refresh(self, backend, store, mutations, admin_session):
        listing = await mutations.create(admin_session, make_draft())
        await mutations.set_featured(admin_session, listing.id)
        pointers = []
        store.add_listener(lambda listings: pointers.append(store.featured_id))

        await mutations.delete(admin_session, listing.id)

        assert pointers == [None]

    @pytest.mark.asyncio
    async def test_cleanup_failure_still_deletes_row(self, backend, store, mutations, admin_session, monkeypatch):
        listing = await mutations.create(admin_session, make_draft(), _uploads(1))

        async def failing(*args, **kwargs):
            raise UploadError("storage unavailable")

        monkeypatch.setattr(backend, "remove", failing)

        assert await mutations.delete(admin_session, listing.id)
        assert store.get(listing.id) is None

    @pytest.mark.asyncio
    async def test_missing_listing(self, mutations, admin_session):
        assert await mutations.delete(admin_session, "nope") is False
