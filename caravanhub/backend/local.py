"""Self-contained backend: SQLite rows via aiosqlite, files on local disk.

Serves the same client surface as Supabase so the site can run without a
hosted project (development, tests). Row-level security is not modelled.
"""

import hashlib
import json
import logging
import secrets
import sqlite3
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from caravanhub.backend.base import BaseBackend, Query, SignUpResult
from caravanhub.errors import BackendError, UploadError
from caravanhub.models.user import AuthUser, Session

logger = logging.getLogger(__name__)

SESSION_TTL = 3600

TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "listings": (
        "id",
        "title",
        "standard",
        "location",
        "contact_name",
        "contact_email",
        "contact_phone",
        "images",
        "created_at",
        "owner_email",
        "owner_id",
        "is_featured",
    ),
    "profiles": ("id", "name", "role"),
}
JSON_COLUMNS = {"images"}
BOOL_COLUMNS = {"is_featured"}


def _hash_password(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), 100_000).hex()


class LocalBackend(BaseBackend):
    """Backend stored in a SQLite file (or ":memory:") plus a storage directory."""

    def __init__(
        self,
        db_path: str = "caravanhub.db",
        storage_dir: str = "storage",
        public_url: str = "http://localhost:8000",
    ):
        super().__init__()
        self.db_path = db_path
        self.storage_dir = Path(storage_dir)
        self.base_url = public_url.rstrip("/")
        self._connection: aiosqlite.Connection | None = None

    async def connect(self):
        """Open database connection and create tables if needed."""
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._create_tables()

    async def close(self):
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _create_tables(self):
        """Create database tables if they don't exist."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS listings (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                standard TEXT NOT NULL,
                location TEXT NOT NULL,
                contact_name TEXT NOT NULL,
                contact_email TEXT NOT NULL,
                contact_phone TEXT,
                images TEXT,
                created_at TEXT NOT NULL,
                owner_email TEXT NOT NULL,
                owner_id TEXT,
                is_featured INTEGER DEFAULT 0
            )
        """)
        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_listings_created ON listings(created_at)
        """)
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS profiles (
                id TEXT PRIMARY KEY,
                name TEXT,
                role TEXT DEFAULT 'user'
            )
        """)
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                salt TEXT NOT NULL,
                metadata TEXT,
                created_at TEXT NOT NULL
            )
        """)
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                access_token TEXT PRIMARY KEY,
                refresh_token TEXT UNIQUE NOT NULL,
                user_id TEXT NOT NULL,
                expires_at REAL NOT NULL
            )
        """)
        await self._connection.commit()

    # -- SQL helpers ----------------------------------------------------

    def _columns(self, table: str, spec: str = "*") -> list[str]:
        if table not in TABLE_COLUMNS:
            raise BackendError(f"Unknown table '{table}'", status=404, code="42P01")
        allowed = TABLE_COLUMNS[table]
        if spec.strip() == "*":
            return list(allowed)
        columns = [c.strip() for c in spec.split(",") if c.strip()]
        for column in columns:
            if column not in allowed:
                raise BackendError(f"Unknown column '{column}' on {table}", status=400, code="42703")
        return columns

    @staticmethod
    def _encode(column: str, value):
        if column in JSON_COLUMNS:
            return json.dumps(list(value or []))
        if column in BOOL_COLUMNS:
            return 1 if value else 0
        return value

    @staticmethod
    def _decode(row: aiosqlite.Row) -> dict:
        data = dict(row)
        for column in JSON_COLUMNS & data.keys():
            data[column] = json.loads(data[column]) if data[column] else []
        for column in BOOL_COLUMNS & data.keys():
            data[column] = bool(data[column])
        return data

    def _where(self, table: str, filters) -> tuple[str, list]:
        items = list(filters.items() if isinstance(filters, dict) else filters)
        if not items:
            return "", []
        clauses, params = [], []
        for column, value in items:
            self._columns(table, column)
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(self._encode(column, value))
        return " WHERE " + " AND ".join(clauses), params

    async def _fetch(self, sql: str, params: list) -> list[dict]:
        cursor = await self._connection.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._decode(row) for row in rows]

    async def _fetch_by_ids(self, table: str, ids: list[str]) -> list[dict]:
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        return await self._fetch(f"SELECT * FROM {table} WHERE id IN ({placeholders})", ids)

    # -- Rows -----------------------------------------------------------

    async def select(self, query: Query, token: str | None = None) -> list[dict]:
        columns = self._columns(query.table, query.columns)
        where, params = self._where(query.table, query.filters)
        sql = f"SELECT {', '.join(columns)} FROM {query.table}{where}"
        if query.ordering:
            column, descending = query.ordering
            self._columns(query.table, column)
            sql += f" ORDER BY {column} {'DESC' if descending else 'ASC'}"
        if query.row_limit is not None:
            sql += " LIMIT ?"
            params.append(query.row_limit)
        return await self._fetch(sql, params)

    def _with_defaults(self, table: str, row: dict) -> dict:
        data = dict(row)
        data.setdefault("id", uuid.uuid4().hex)
        if table == "listings":
            data.setdefault("created_at", datetime.now(timezone.utc).isoformat(timespec="microseconds"))
            data.setdefault("is_featured", False)
            data.setdefault("images", [])
        return data

    async def _insert(self, table: str, row: dict, token: str | None) -> dict:
        data = self._with_defaults(table, row)
        columns = self._columns(table, ", ".join(data))
        placeholders = ", ".join("?" * len(columns))
        try:
            await self._connection.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                [self._encode(c, data[c]) for c in columns],
            )
        except sqlite3.IntegrityError as e:
            raise BackendError(str(e), status=409, code="23505") from e
        await self._connection.commit()
        return (await self._fetch_by_ids(table, [data["id"]]))[0]

    async def _upsert(self, table: str, row: dict, on_conflict: str, token: str | None) -> dict:
        data = self._with_defaults(table, row)
        columns = self._columns(table, ", ".join(data))
        self._columns(table, on_conflict)
        placeholders = ", ".join("?" * len(columns))
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != on_conflict)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        sql += f" ON CONFLICT({on_conflict}) DO UPDATE SET {updates}" if updates else f" ON CONFLICT({on_conflict}) DO NOTHING"
        await self._connection.execute(sql, [self._encode(c, data[c]) for c in columns])
        await self._connection.commit()
        rows = await self._fetch(f"SELECT * FROM {table} WHERE {on_conflict} = ?", [data[on_conflict]])
        return rows[0]

    async def _update(self, table: str, values: dict, filters: dict, token: str | None) -> list[dict]:
        where, params = self._where(table, filters)
        matched = await self._fetch(f"SELECT id FROM {table}{where}", params)
        ids = [row["id"] for row in matched]
        if not ids or not values:
            return await self._fetch_by_ids(table, ids)
        columns = self._columns(table, ", ".join(values))
        assignments = ", ".join(f"{c} = ?" for c in columns)
        placeholders = ",".join("?" * len(ids))
        await self._connection.execute(
            f"UPDATE {table} SET {assignments} WHERE id IN ({placeholders})",
            [self._encode(c, values[c]) for c in columns] + ids,
        )
        await self._connection.commit()
        return await self._fetch_by_ids(table, ids)

    async def _delete(self, table: str, filters: dict, token: str | None) -> list[dict]:
        where, params = self._where(table, filters)
        rows = await self._fetch(f"SELECT * FROM {table}{where}", params)
        if rows:
            await self._connection.execute(f"DELETE FROM {table}{where}", params)
            await self._connection.commit()
        return rows

    async def _set_featured_atomic(self, table: str, record_id: str, token: str | None) -> bool:
        self._columns(table, "is_featured")
        await self._connection.execute(
            f"UPDATE {table} SET is_featured = CASE WHEN id = ? THEN 1 ELSE 0 END "
            f"WHERE is_featured = 1 OR id = ?",
            (record_id, record_id),
        )
        await self._connection.commit()
        return True

    # -- Storage --------------------------------------------------------

    def object_path(self, bucket: str, path: str) -> Path:
        """Resolve bucket/path on disk, refusing paths that escape the bucket."""
        root = (self.storage_dir / bucket).resolve()
        target = (root / path).resolve()
        if root not in target.parents:
            raise BackendError(f"Invalid object path '{path}'", status=400)
        return target

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
        try:
            target = self.object_path(bucket, path)
        except BackendError as e:
            raise UploadError(e.message, status=e.status) from e
        if target.exists() and not overwrite:
            raise UploadError("The resource already exists", status=409, code="Duplicate")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise UploadError(f"Failed to store {bucket}/{path}: {e}") from e
        logger.info(f"Stored {len(data)} bytes at {bucket}/{path}")
        return path

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{path}"

    async def remove(self, bucket: str, paths: list[str], token: str | None = None) -> list[str]:
        removed = []
        for path in paths:
            target = self.object_path(bucket, path)
            if target.exists():
                target.unlink()
                removed.append(path)
        return removed

    # -- Auth -----------------------------------------------------------

    async def _issue_session(self, user: AuthUser) -> Session:
        session = Session(
            access_token=secrets.token_urlsafe(32),
            refresh_token=secrets.token_urlsafe(32),
            expires_at=time.time() + SESSION_TTL,
            user=user,
        )
        await self._connection.execute(
            "INSERT INTO sessions (access_token, refresh_token, user_id, expires_at) VALUES (?, ?, ?, ?)",
            (session.access_token, session.refresh_token, user.id, session.expires_at),
        )
        await self._connection.commit()
        return session

    async def _load_user(self, user_id: str) -> AuthUser | None:
        cursor = await self._connection.execute(
            "SELECT id, email, metadata FROM users WHERE id = ?", (user_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return AuthUser(id=row["id"], email=row["email"], metadata=json.loads(row["metadata"] or "{}"))

    async def _password_grant(self, email: str, password: str) -> Session:
        cursor = await self._connection.execute(
            "SELECT id, password_hash, salt FROM users WHERE email = ?", (email.strip().lower(),)
        )
        row = await cursor.fetchone()
        if row is None or not secrets.compare_digest(row["password_hash"], _hash_password(password, row["salt"])):
            raise BackendError("Invalid login credentials", status=400, code="invalid_credentials")
        return await self._issue_session(await self._load_user(row["id"]))

    async def _refresh_grant(self, refresh_token: str) -> Session:
        cursor = await self._connection.execute(
            "SELECT access_token, user_id FROM sessions WHERE refresh_token = ?", (refresh_token,)
        )
        row = await cursor.fetchone()
        user = await self._load_user(row["user_id"]) if row else None
        if user is None:
            raise BackendError("Invalid Refresh Token", status=400, code="refresh_token_not_found")
        await self._connection.execute("DELETE FROM sessions WHERE access_token = ?", (row["access_token"],))
        return await self._issue_session(user)

    async def _sign_up(self, email: str, password: str, metadata: dict) -> SignUpResult:
        salt = secrets.token_hex(16)
        user = AuthUser(id=str(uuid.uuid4()), email=email.strip().lower(), metadata=dict(metadata))
        try:
            await self._connection.execute(
                "INSERT INTO users (id, email, password_hash, salt, metadata, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    user.id,
                    user.email,
                    _hash_password(password, salt),
                    salt,
                    json.dumps(user.metadata),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
        except sqlite3.IntegrityError as e:
            raise BackendError("User already registered", status=422, code="user_already_exists") from e
        await self._connection.commit()
        # Local accounts need no email confirmation
        return SignUpResult(user=user, session=await self._issue_session(user))

    async def _verify_access_token(self, session: Session) -> bool:
        cursor = await self._connection.execute(
            "SELECT user_id, expires_at FROM sessions WHERE access_token = ?", (session.access_token,)
        )
        row = await cursor.fetchone()
        if row is None or row["user_id"] != session.user.id or row["expires_at"] <= time.time():
            logger.info(f"Rejected unknown or expired session for {session.user.id}")
            return False
        return True

    async def _sign_out(self, session: Session):
        await self._connection.execute("DELETE FROM sessions WHERE access_token = ?", (session.access_token,))
        await self._connection.commit()
