"""Tests for the Supabase REST mapping, using httpx.MockTransport."""

import json

import httpx
import pytest

from caravanhub.backend.base import Query
from caravanhub.backend.supabase import SupabaseBackend
from caravanhub.errors import BackendError, UploadError
from caravanhub.models.user import AuthUser, Session

URL = "https://demo.supabase.co"


class Recorder:
    """Mock transport handler that records requests and replays canned responses."""

    def __init__(self, responses=None):
        self.requests: list[httpx.Request] = []
        self.responses = list(responses or [])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json=[])

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def _backend(recorder: Recorder, **kwargs) -> SupabaseBackend:
    return SupabaseBackend(URL, "anon-key", transport=httpx.MockTransport(recorder), **kwargs)


def _session(token="user-token") -> Session:
    return Session(token, "refresh", 9e9, AuthUser("u1", "ann@example.com"))


class TestRows:
    @pytest.mark.asyncio
    async def test_select_builds_postgrest_params(self):
        recorder = Recorder([httpx.Response(200, json=[{"id": "1"}])])
        backend = _backend(recorder)

        query = Query("listings", columns="id, title").eq("is_featured", True).order("created_at", descending=True).limit(5)
        rows = await backend.select(query, token="user-token")

        request = recorder.last
        assert rows == [{"id": "1"}]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/listings"
        assert request.url.params["select"] == "id,title"
        assert request.url.params["is_featured"] == "eq.true"
        assert request.url.params["order"] == "created_at.desc"
        assert request.url.params["limit"] == "5"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["Authorization"] == "Bearer user-token"
        await backend.close()

    @pytest.mark.asyncio
    async def test_anon_key_used_without_token(self):
        recorder = Recorder()
        backend = _backend(recorder)
        await backend.select(Query("listings").eq("owner_id", None))
        assert recorder.last.headers["Authorization"] == "Bearer anon-key"
        assert recorder.last.url.params["owner_id"] == "is.null"

    @pytest.mark.asyncio
    async def test_insert_returns_representation_and_publishes(self):
        recorder = Recorder([httpx.Response(201, json=[{"id": "new", "title": "A"}])])
        backend = _backend(recorder)
        events = []
        backend.subscribe("listings", events.append)

        created = await backend.insert("listings", {"title": "A"}, token="t")

        assert created == {"id": "new", "title": "A"}
        assert recorder.last.method == "POST"
        assert recorder.last.headers["Prefer"] == "return=representation"
        assert json.loads(recorder.last.content) == {"title": "A"}
        assert [(e.type, e.record_id) for e in events] == [("INSERT", "new")]

    @pytest.mark.asyncio
    async def test_upsert_merges_duplicates(self):
        recorder = Recorder([httpx.Response(201, json=[{"id": "u1", "name": "Ann", "role": "user"}])])
        backend = _backend(recorder)

        await backend.upsert("profiles", {"id": "u1", "name": "Ann", "role": "user"})

        assert "resolution=merge-duplicates" in recorder.last.headers["Prefer"]
        assert recorder.last.url.params["on_conflict"] == "id"

    @pytest.mark.asyncio
    async def test_delete_filters_by_id(self):
        recorder = Recorder([httpx.Response(200, json=[{"id": "x"}])])
        backend = _backend(recorder)

        rows = await backend.delete("listings", {"id": "x"}, token="t")

        assert rows == [{"id": "x"}]
        assert recorder.last.method == "DELETE"
        assert recorder.last.url.params["id"] == "eq.x"

    @pytest.mark.asyncio
    async def test_no_rows_error_is_none_for_maybe_single(self):
        recorder = Recorder([httpx.Response(406, json={"code": "PGRST116", "message": "JSON object requested, multiple (or no) rows returned"})])
        backend = _backend(recorder)

        assert await backend.maybe_single(Query("profiles").eq("id", "u1")) is None

    @pytest.mark.asyncio
    async def test_error_response_raises(self):
        recorder = Recorder([httpx.Response(401, json={"code": "42501", "message": "permission denied"})])
        backend = _backend(recorder)

        with pytest.raises(BackendError) as exc_info:
            await backend.select(Query("listings"))

        assert exc_info.value.status == 401
        assert exc_info.value.code == "42501"
        assert str(exc_info.value) == "permission denied"


class TestSetFeatured:
    @pytest.mark.asyncio
    async def test_uses_rpc(self):
        recorder = Recorder([httpx.Response(204)])
        backend = _backend(recorder)

        await backend.set_featured("listings", "abc", token="t")

        assert len(recorder.requests) == 1
        assert recorder.last.url.path == "/rest/v1/rpc/set_featured_listing"
        assert json.loads(recorder.last.content) == {"target_id": "abc"}

    @pytest.mark.asyncio
    async def test_two_step_without_rpc(self):
        recorder = Recorder([httpx.Response(200, json=[{"id": "old"}]), httpx.Response(200, json=[{"id": "abc"}])])
        backend = _backend(recorder, featured_rpc="")

        await backend.set_featured("listings", "abc", token="t")

        clear, assign = recorder.requests
        assert clear.method == assign.method == "PATCH"
        assert clear.url.params["is_featured"] == "eq.true"
        assert json.loads(clear.content) == {"is_featured": False}
        assert assign.url.params["id"] == "eq.abc"
        assert json.loads(assign.content) == {"is_featured": True}


class TestStorage:
    @pytest.mark.asyncio
    async def test_upload_headers(self):
        recorder = Recorder([httpx.Response(200, json={"Key": "listing-images/u1/a.jpg"})])
        backend = _backend(recorder)

        path = await backend.upload(
            "listing-images", "u1/a.jpg", b"data", content_type="image/jpeg", cache_control="3600", overwrite=True, token="t"
        )

        request = recorder.last
        assert path == "u1/a.jpg"
        assert request.url.path == "/storage/v1/object/listing-images/u1/a.jpg"
        assert request.headers["content-type"] == "image/jpeg"
        assert request.headers["cache-control"] == "max-age=3600"
        assert request.headers["x-upsert"] == "true"
        assert request.content == b"data"

    @pytest.mark.asyncio
    async def test_upload_failure_raises_upload_error(self):
        recorder = Recorder([httpx.Response(400, json={"error": "Bucket not found"})])
        backend = _backend(recorder)

        with pytest.raises(UploadError, match="Bucket not found"):
            await backend.upload("missing", "a.jpg", b"x")

    def test_public_url(self):
        backend = _backend(Recorder())
        assert backend.public_url("listing-images", "u1/a.jpg") == (
            f"{URL}/storage/v1/object/public/listing-images/u1/a.jpg"
        )

    @pytest.mark.asyncio
    async def test_remove_sends_prefixes(self):
        recorder = Recorder([httpx.Response(200, json=[{"name": "u1/a.jpg"}])])
        backend = _backend(recorder)

        removed = await backend.remove("listing-images", ["u1/a.jpg"], token="t")

        assert removed == ["u1/a.jpg"]
        assert recorder.last.method == "DELETE"
        assert recorder.last.url.path == "/storage/v1/object/listing-images"
        assert json.loads(recorder.last.content) == {"prefixes": ["u1/a.jpg"]}

    @pytest.mark.asyncio
    async def test_remove_nothing_sends_no_request(self):
        recorder = Recorder()
        assert await _backend(recorder).remove("listing-images", []) == []
        assert recorder.requests == []


class TestAuth:
    TOKEN_PAYLOAD = {
        "access_token": "at",
        "refresh_token": "rt",
        "expires_in": 3600,
        "user": {"id": "u1", "email": "ann@example.com", "user_metadata": {"name": "Ann"}},
    }

    @pytest.mark.asyncio
    async def test_password_grant(self):
        recorder = Recorder([httpx.Response(200, json=self.TOKEN_PAYLOAD)])
        backend = _backend(recorder)

        session = await backend.sign_in_with_password("ann@example.com", "pw")

        assert recorder.last.url.path == "/auth/v1/token"
        assert recorder.last.url.params["grant_type"] == "password"
        assert session.access_token == "at"
        assert session.user.metadata == {"name": "Ann"}
        assert not session.is_expired()

    @pytest.mark.asyncio
    async def test_invalid_credentials(self):
        recorder = Recorder([httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"})])
        with pytest.raises(BackendError, match="Invalid login credentials"):
            await _backend(recorder).sign_in_with_password("ann@example.com", "bad")

    @pytest.mark.asyncio
    async def test_sign_up_pending_confirmation(self):
        recorder = Recorder([httpx.Response(200, json={"id": "u2", "email": "new@example.com", "user_metadata": {"name": "Neo"}})])
        backend = _backend(recorder)

        result = await backend.sign_up("new@example.com", "pw", {"name": "Neo"})

        assert json.loads(recorder.last.content)["data"] == {"name": "Neo"}
        assert result.session is None
        assert result.user.id == "u2"

    @pytest.mark.asyncio
    async def test_sign_up_with_session(self):
        recorder = Recorder([httpx.Response(200, json=self.TOKEN_PAYLOAD)])
        result = await _backend(recorder).sign_up("ann@example.com", "pw", {"name": "Ann"})
        assert result.session.access_token == "at"
        assert result.user.id == "u1"

    @pytest.mark.asyncio
    async def test_expired_session_is_refreshed(self):
        recorder = Recorder([httpx.Response(200, json=self.TOKEN_PAYLOAD)])
        backend = _backend(recorder)
        expired = Session("old", "rt-old", 0, AuthUser("u1", "ann@example.com"))

        session = await backend.get_session(expired)

        assert session.access_token == "at"
        assert recorder.last.url.params["grant_type"] == "refresh_token"
        assert json.loads(recorder.last.content) == {"refresh_token": "rt-old"}

    @pytest.mark.asyncio
    async def test_failed_refresh_signs_out(self):
        recorder = Recorder([httpx.Response(400, json={"error_description": "Invalid Refresh Token"})])
        backend = _backend(recorder)
        events = []
        backend.on_auth_state_change(events.append)

        assert await backend.get_session(Session("old", "rt", 0, AuthUser("u1", "a@b.c"))) is None
        assert [(e.type, e.user_id) for e in events] == [("SIGNED_OUT", "u1")]

    @pytest.mark.asyncio
    async def test_sign_out_uses_session_token(self):
        recorder = Recorder([httpx.Response(204)])
        await _backend(recorder).sign_out(_session())
        assert recorder.last.url.path == "/auth/v1/logout"
        assert recorder.last.headers["Authorization"] == "Bearer user-token"

    @pytest.mark.asyncio
    async def test_live_session_is_checked_with_auth_server(self):
        recorder = Recorder([httpx.Response(200, json={"id": "u1", "email": "ann@example.com"})])
        session = _session()

        assert await _backend(recorder).get_session(session) is session
        assert recorder.last.url.path == "/auth/v1/user"
        assert recorder.last.headers["Authorization"] == "Bearer user-token"

    @pytest.mark.asyncio
    async def test_revoked_session_signs_out(self):
        recorder = Recorder([httpx.Response(403, json={"code": "session_not_found", "msg": "Session not found"})])
        backend = _backend(recorder)
        events = []
        backend.on_auth_state_change(events.append)

        assert await backend.get_session(_session()) is None
        assert [(e.type, e.user_id) for e in events] == [("SIGNED_OUT", "u1")]
