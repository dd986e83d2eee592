"""Supabase client over its REST APIs (PostgREST, Storage, GoTrue)."""

import logging
import time
from urllib.parse import quote

import httpx

from caravanhub.backend.base import BaseBackend, Query, SignUpResult
from caravanhub.errors import BackendError, UploadError
from caravanhub.models.user import AuthUser, Session

logger = logging.getLogger(__name__)


def _encode_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _filter_params(filters) -> list[tuple[str, str]]:
    """Translate equality filters into PostgREST query parameters."""
    items = filters.items() if isinstance(filters, dict) else filters
    params = []
    for column, value in items:
        if value is None:
            params.append((column, "is.null"))
        else:
            params.append((column, f"eq.{_encode_value(value)}"))
    return params


def _error_from_response(response: httpx.Response, error_cls=BackendError) -> BackendError:
    try:
        data = response.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}
    message = (
        data.get("message")
        or data.get("msg")
        or data.get("error_description")
        or data.get("error")
        or response.text
        or f"HTTP {response.status_code}"
    )
    code = data.get("code") or data.get("error_code")
    return error_cls(str(message), status=response.status_code, code=str(code) if code else None)


def _user_from_payload(data: dict) -> AuthUser:
    return AuthUser(
        id=str(data.get("id") or ""),
        email=data.get("email") or "",
        metadata=dict(data.get("user_metadata") or {}),
    )


def _session_from_payload(data: dict) -> Session:
    expires_at = data.get("expires_at") or time.time() + float(data.get("expires_in") or 3600)
    return Session(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token") or "",
        expires_at=float(expires_at),
        user=_user_from_payload(data.get("user") or {}),
    )


class SupabaseBackend(BaseBackend):
    """Backend client for a hosted Supabase project."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        featured_rpc: str = "set_featured_listing",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__()
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.featured_rpc = featured_rpc
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.url,
                headers={"apikey": self.anon_key},
                timeout=30.0,
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        token: str | None = None,
        headers: dict | None = None,
        error_cls=BackendError,
        **kwargs,
    ) -> httpx.Response:
        client = await self._get_client()
        request_headers = {"Authorization": f"Bearer {token or self.anon_key}"}
        if headers:
            request_headers.update(headers)
        try:
            response = await client.request(method, path, headers=request_headers, **kwargs)
        except httpx.HTTPError as e:
            raise error_cls(f"Connection error: {e}") from e
        if not response.is_success:
            logger.error(f"Supabase error: {method} {path} -> {response.status_code} - {response.text}")
            raise _error_from_response(response, error_cls)
        return response

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # -- Rows -----------------------------------------------------------

    async def select(self, query: Query, token: str | None = None) -> list[dict]:
        params = [("select", query.columns.replace(" ", ""))]
        params.extend(_filter_params(query.filters))
        if query.ordering:
            column, descending = query.ordering
            params.append(("order", f"{column}.{'desc' if descending else 'asc'}"))
        if query.row_limit is not None:
            params.append(("limit", str(query.row_limit)))
        response = await self._request("GET", f"/rest/v1/{query.table}", token=token, params=params)
        return response.json()

    async def _insert(self, table: str, row: dict, token: str | None) -> dict:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            token=token,
            headers={"Prefer": "return=representation"},
            json=row,
        )
        return response.json()[0]

    async def _upsert(self, table: str, row: dict, on_conflict: str, token: str | None) -> dict:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            token=token,
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
            params={"on_conflict": on_conflict},
            json=row,
        )
        return response.json()[0]

    async def _update(self, table: str, values: dict, filters: dict, token: str | None) -> list[dict]:
        response = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            token=token,
            headers={"Prefer": "return=representation"},
            params=_filter_params(filters),
            json=values,
        )
        return response.json()

    async def _delete(self, table: str, filters: dict, token: str | None) -> list[dict]:
        response = await self._request(
            "DELETE",
            f"/rest/v1/{table}",
            token=token,
            headers={"Prefer": "return=representation"},
            params=_filter_params(filters),
        )
        return response.json()

    async def _set_featured_atomic(self, table: str, record_id: str, token: str | None) -> bool:
        # The RPC clears the previous holder and sets the target in one transaction
        if not self.featured_rpc:
            return False
        await self._request(
            "POST",
            f"/rest/v1/rpc/{self.featured_rpc}",
            token=token,
            json={"target_id": record_id},
        )
        return True

    # -- Storage --------------------------------------------------------

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        cache_control: str = "3600",
        overwrite: bool = False,
        token: str | None = None,
    ) -> str:
        await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{quote(path)}",
            token=token,
            headers={
                "Content-Type": content_type,
                "cache-control": f"max-age={cache_control}",
                "x-upsert": "true" if overwrite else "false",
            },
            content=data,
            error_cls=UploadError,
        )
        logger.info(f"Uploaded {len(data)} bytes to {bucket}/{path}")
        return path

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{quote(path)}"

    async def remove(self, bucket: str, paths: list[str], token: str | None = None) -> list[str]:
        if not paths:
            return []
        response = await self._request(
            "DELETE",
            f"/storage/v1/object/{bucket}",
            token=token,
            json={"prefixes": paths},
        )
        return [item.get("name", "") for item in response.json()]

    # -- Auth -----------------------------------------------------------

    async def _password_grant(self, email: str, password: str) -> Session:
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return _session_from_payload(response.json())

    async def _refresh_grant(self, refresh_token: str) -> Session:
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return _session_from_payload(response.json())

    async def _sign_up(self, email: str, password: str, metadata: dict) -> SignUpResult:
        response = await self._request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": metadata},
        )
        data = response.json()
        if data.get("access_token"):
            session = _session_from_payload(data)
            return SignUpResult(user=session.user, session=session)
        # Email confirmation pending: the user object is returned on its own
        user_data = data.get("user") or data
        user = _user_from_payload(user_data) if user_data.get("id") else None
        return SignUpResult(user=user, session=None)

    async def _verify_access_token(self, session: Session) -> bool:
        try:
            await self._request("GET", "/auth/v1/user", token=session.access_token)
        except BackendError as e:
            if e.status in (401, 403):
                logger.info(f"Access token for {session.user.id} was revoked")
                return False
            raise
        return True

    async def _sign_out(self, session: Session):
        await self._request("POST", "/auth/v1/logout", token=session.access_token)
