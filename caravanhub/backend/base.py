"""Base backend interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace

from caravanhub.backend.changes import (
    DELETE,
    INSERT,
    UPDATE,
    AuthEvent,
    ChangeEvent,
    EventHub,
    Listener,
    Subscription,
)
from caravanhub.errors import BackendError
from caravanhub.models.user import AuthUser, Session

AUTH_KEY = "auth"

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"


@dataclass
class Query:
    """A row read: projection, equality filters, ordering and limit."""

    table: str
    columns: str = "*"
    filters: list[tuple[str, object]] = field(default_factory=list)
    ordering: tuple[str, bool] | None = None
    row_limit: int | None = None

    def eq(self, column: str, value) -> "Query":
        return replace(self, filters=[*self.filters, (column, value)])

    def order(self, column: str, descending: bool = False) -> "Query":
        return replace(self, ordering=(column, descending))

    def limit(self, count: int) -> "Query":
        return replace(self, row_limit=count)


@dataclass
class SignUpResult:
    """Outcome of a sign-up; session is None while email confirmation is pending."""

    user: AuthUser | None
    session: Session | None


class BaseBackend(ABC):
    """Abstract client for the hosted backend (rows, storage, auth, change feed).

    Every call that needs the caller's identity takes the access token of an
    explicit `Session`; there is no ambient signed-in user.
    """

    def __init__(self):
        self.changes = EventHub()
        self.auth_events = EventHub()

    async def connect(self):
        """Open any connections the backend needs."""

    async def close(self):
        """Release connections."""

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # -- Rows -----------------------------------------------------------

    @abstractmethod
    async def select(self, query: Query, token: str | None = None) -> list[dict]:
        """Return the rows matching query."""

    async def maybe_single(self, query: Query, token: str | None = None) -> dict | None:
        """Return the first matching row, or None when there is none."""
        try:
            rows = await self.select(query.limit(1), token=token)
        except BackendError as e:
            if e.is_no_rows:
                return None
            raise
        return rows[0] if rows else None

    async def insert(self, table: str, row: dict, token: str | None = None) -> dict:
        created = await self._insert(table, row, token)
        await self.changes.publish(table, ChangeEvent(table, INSERT, str(created.get("id")), created))
        return created

    async def upsert(
        self, table: str, row: dict, on_conflict: str = "id", token: str | None = None
    ) -> dict:
        saved = await self._upsert(table, row, on_conflict, token)
        await self.changes.publish(table, ChangeEvent(table, UPDATE, str(saved.get("id")), saved))
        return saved

    async def update(
        self, table: str, values: dict, filters: dict, token: str | None = None
    ) -> list[dict]:
        rows = await self._update(table, values, filters, token)
        for row in rows:
            await self.changes.publish(table, ChangeEvent(table, UPDATE, str(row.get("id")), row))
        return rows

    async def delete(self, table: str, filters: dict, token: str | None = None) -> list[dict]:
        rows = await self._delete(table, filters, token)
        for row in rows:
            await self.changes.publish(table, ChangeEvent(table, DELETE, str(row.get("id")), row))
        return rows

    async def set_featured(self, table: str, record_id: str, token: str | None = None):
        """Make record_id the only row of table with is_featured set.

        Backends that can do this atomically override `_set_featured_atomic`.
        Otherwise the current holder is cleared first and the target set
        second; a concurrent caller between those two writes can briefly
        leave zero or two featured rows.
        """
        if await self._set_featured_atomic(table, record_id, token):
            await self.changes.publish(table, ChangeEvent(table, UPDATE, record_id))
            return
        await self.update(table, {"is_featured": False}, {"is_featured": True}, token=token)
        await self.update(table, {"is_featured": True}, {"id": record_id}, token=token)

    async def _set_featured_atomic(self, table: str, record_id: str, token: str | None) -> bool:
        return False

    @abstractmethod
    async def _insert(self, table: str, row: dict, token: str | None) -> dict:
        ...

    @abstractmethod
    async def _upsert(self, table: str, row: dict, on_conflict: str, token: str | None) -> dict:
        ...

    @abstractmethod
    async def _update(self, table: str, values: dict, filters: dict, token: str | None) -> list[dict]:
        ...

    @abstractmethod
    async def _delete(self, table: str, filters: dict, token: str | None) -> list[dict]:
        ...

    # -- Storage --------------------------------------------------------

    @abstractmethod
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
        """Store data at bucket/path and return the stored path.

        Raises:
            UploadError: if the object could not be stored
        """

    @abstractmethod
    def public_url(self, bucket: str, path: str) -> str:
        """Return the public URL for an object."""

    @abstractmethod
    async def remove(self, bucket: str, paths: list[str], token: str | None = None) -> list[str]:
        """Remove objects and return the paths that were removed."""

    # -- Auth -----------------------------------------------------------

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        session = await self._password_grant(email, password)
        await self.auth_events.publish(AUTH_KEY, AuthEvent(SIGNED_IN, session, session.user.id))
        return session

    async def sign_up(self, email: str, password: str, metadata: dict | None = None) -> SignUpResult:
        result = await self._sign_up(email, password, metadata or {})
        if result.session:
            await self.auth_events.publish(AUTH_KEY, AuthEvent(SIGNED_IN, result.session, result.session.user.id))
        return result

    async def sign_out(self, session: Session):
        try:
            await self._sign_out(session)
        finally:
            await self.auth_events.publish(AUTH_KEY, AuthEvent(SIGNED_OUT, None, session.user.id))

    async def refresh_session(self, session: Session) -> Session:
        refreshed = await self._refresh_grant(session.refresh_token)
        await self.auth_events.publish(AUTH_KEY, AuthEvent(TOKEN_REFRESHED, refreshed, refreshed.user.id))
        return refreshed

    async def get_session(self, session: Session | None) -> Session | None:
        """Return a usable session: the same one, a refreshed one, or None if it lapsed.

        A session the backend no longer recognises (for example one that was
        signed out) is treated as lapsed.
        """
        if session is None:
            return None
        if not session.is_expired():
            if await self._verify_access_token(session):
                return session
            await self.auth_events.publish(AUTH_KEY, AuthEvent(SIGNED_OUT, None, session.user.id))
            return None
        try:
            return await self.refresh_session(session)
        except BackendError:
            await self.auth_events.publish(AUTH_KEY, AuthEvent(SIGNED_OUT, None, session.user.id))
            return None

    async def _verify_access_token(self, session: Session) -> bool:
        """Whether the backend still honours session's access token.

        The default trusts any unexpired token.
        """
        return True

    def on_auth_state_change(self, callback: Listener) -> Subscription:
        return self.auth_events.subscribe(AUTH_KEY, callback)

    @abstractmethod
    async def _password_grant(self, email: str, password: str) -> Session:
        ...

    @abstractmethod
    async def _refresh_grant(self, refresh_token: str) -> Session:
        ...

    @abstractmethod
    async def _sign_up(self, email: str, password: str, metadata: dict) -> SignUpResult:
        ...

    @abstractmethod
    async def _sign_out(self, session: Session):
        ...

    # -- Change feed ----------------------------------------------------

    def subscribe(self, table: str, callback: Listener) -> Subscription:
        """Receive a ChangeEvent for every insert, update or delete on table."""
        return self.changes.subscribe(table, callback)
