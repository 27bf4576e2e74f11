"""
agent-nightlies: SQLite tag cache.

Purpose
- Persist known nightly records and the last complete fetch time between runs.

What is included in this file
- Schema version table and checksummed, idempotent migration runner.
- Short-lived connections with WAL journal and busy timeout.
- Replace-all ``save`` inside one transaction.
- Corruption detection mapped to :class:`TagCacheCorruptionError`.
"""

from __future__ import annotations

import hashlib
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Final, NoReturn, Protocol

from agent_nightlies.constants import TAG_CACHE_SCHEMA_VERSION
from agent_nightlies.domain.models import UTC, NightlyRecord, isoformat_z

SQLValue = str | int | float | bytes | None

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
_FETCHED_AT_KEY: Final[str] = "fetched_at"

_SCHEMA_VERSIONS_TABLE_SQL: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_MIGRATION_0001_STATEMENTS: Final[tuple[str, ...]] = (
    _SCHEMA_VERSIONS_TABLE_SQL,
    """
    CREATE TABLE IF NOT EXISTS tags (
        tag_name TEXT PRIMARY KEY,
        branch TEXT NOT NULL,
        short_sha TEXT,
        suffix TEXT NOT NULL,
        last_pushed TEXT NOT NULL,
        digest TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_state (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tags_last_pushed ON tags(last_pushed DESC)",
    "CREATE INDEX IF NOT EXISTS idx_tags_short_sha ON tags(short_sha)",
)


@dataclass(frozen=True, slots=True)
class _Migration:
    version: int
    name: str
    statements: tuple[str, ...]
    checksum: str


def _migration_checksum(version: int, name: str, statements: Sequence[str]) -> str:
    digest = hashlib.sha256()
    digest.update(f"{version}:{name}\n".encode())
    for statement in statements:
        normalized = "\n".join(line.rstrip() for line in statement.strip().splitlines())
        digest.update(normalized.encode("utf-8"))
        digest.update(b"\n--\n")
    return digest.hexdigest()


_MIGRATIONS: Final[tuple[_Migration, ...]] = (
    _Migration(
        version=1,
        name="initial_tag_cache",
        statements=_MIGRATION_0001_STATEMENTS,
        checksum=_migration_checksum(1, "initial_tag_cache", _MIGRATION_0001_STATEMENTS),
    ),
)

_SQLITE_CORRUPTION_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_CORRUPT", None),
        getattr(sqlite3, "SQLITE_NOTADB", None),
    )
    if isinstance(code, int)
)

_CORRUPTION_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database disk image is malformed",
    "malformed database",
    "file is not a database",
)


class TagCacheError(RuntimeError):
    """Base class for tag cache failures."""


class TagCacheMigrationError(TagCacheError):
    """Raised when migrations cannot be applied safely."""


class TagCacheCorruptionError(TagCacheError):
    """Raised when the cache file is not a readable SQLite database."""


@dataclass(frozen=True, slots=True)
class CachedTags:
    records: tuple[NightlyRecord, ...] = ()
    fetched_at: datetime | None = None


class TagCache(Protocol):
    """Storage capability used by the Fetch Coordinator and CLI."""

    def load(self) -> CachedTags: ...

    def save(self, records: Iterable[NightlyRecord], fetched_at: datetime | None) -> None: ...

    def last_fetch_time(self) -> datetime | None: ...


class SqliteTagCache:
    """SQLite-backed :class:`TagCache` with deterministic migrations."""

    def __init__(self, path: str | Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._migrated = False

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> CachedTags:
        if not self._path.exists():
            return CachedTags()
        self.migrate()
        with self.connection() as conn:
            rows = self._execute(
                conn,
                """
                SELECT tag_name, branch, short_sha, suffix, last_pushed, digest
                FROM tags
                ORDER BY last_pushed DESC, tag_name ASC
                """,
                (),
                operation="load tags",
            ).fetchall()
            fetched_at = self._read_fetched_at(conn)
        return CachedTags(records=tuple(_row_to_record(row) for row in rows), fetched_at=fetched_at)

    def save(self, records: Iterable[NightlyRecord], fetched_at: datetime | None) -> None:
        """Replace the cached record set atomically."""

        params = [
            (
                record.tag_name,
                record.branch,
                record.short_sha,
                record.suffix,
                isoformat_z(record.last_pushed),
                record.digest,
            )
            for record in records
        ]
        self.migrate()
        with self.transaction() as tx:
            self._execute(tx, "DELETE FROM tags", (), operation="clear tags")
            try:
                tx.executemany(
                    """
                    INSERT INTO tags (tag_name, branch, short_sha, suffix, last_pushed, digest)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    params,
                )
            except sqlite3.Error as exc:
                self._raise_actionable_error(exc, operation="insert tags")
            if fetched_at is None:
                self._execute(
                    tx,
                    "DELETE FROM sync_state WHERE key = ?",
                    (_FETCHED_AT_KEY,),
                    operation="clear fetched_at",
                )
            else:
                self._execute(
                    tx,
                    """
                    INSERT INTO sync_state (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value
                    """,
                    (_FETCHED_AT_KEY, isoformat_z(fetched_at)),
                    operation="record fetched_at",
                )

    def last_fetch_time(self) -> datetime | None:
        if not self._path.exists():
            return None
        self.migrate()
        with self.connection() as conn:
            return self._read_fetched_at(conn)

    def migrate(self) -> int:
        """Apply migrations idempotently and return the current schema version."""

        if self._migrated:
            return TAG_CACHE_SCHEMA_VERSION
        with self.connection() as conn:
            self._execute(conn, _SCHEMA_VERSIONS_TABLE_SQL, (), operation="create schema_versions")
            applied = {
                int(row["version"]): str(row["checksum"])
                for row in self._execute(
                    conn,
                    "SELECT version, checksum FROM schema_versions ORDER BY version ASC",
                    (),
                    operation="load schema_versions",
                ).fetchall()
            }
            current = max(applied, default=0)
            if current > TAG_CACHE_SCHEMA_VERSION:
                raise TagCacheMigrationError(
                    "tag cache schema is newer than supported "
                    f"(db={current}, code={TAG_CACHE_SCHEMA_VERSION})"
                )
            for migration in _MIGRATIONS:
                if migration.version > TAG_CACHE_SCHEMA_VERSION:
                    continue
                known = applied.get(migration.version)
                if known is not None:
                    if known != migration.checksum:
                        raise TagCacheMigrationError(
                            f"migration checksum mismatch for version {migration.version}: "
                            f"db={known} code={migration.checksum}"
                        )
                    continue
                with self.transaction(conn=conn) as tx:
                    for statement in migration.statements:
                        self._execute(
                            tx, statement, (), operation=f"apply migration {migration.version}"
                        )
                    self._execute(
                        tx,
                        """
                        INSERT INTO schema_versions (version, name, checksum, applied_at)
                        VALUES (?, ?, ?, ?)
                        """,
                        (
                            migration.version,
                            migration.name,
                            migration.checksum,
                            isoformat_z(datetime.now(tz=UTC)),
                        ),
                        operation=f"record migration {migration.version}",
                    )
        self._migrated = True
        return TAG_CACHE_SCHEMA_VERSION

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self, *, conn: sqlite3.Connection | None = None
    ) -> Iterator[sqlite3.Connection]:
        if conn is None:
            with self.connection() as owned_conn, self.transaction(conn=owned_conn) as txn_conn:
                yield txn_conn
            return

        self._execute(conn, "BEGIN IMMEDIATE", (), operation="begin transaction")
        try:
            yield conn
        except Exception:
            self._execute(conn, "ROLLBACK", (), operation="rollback transaction")
            raise
        else:
            self._execute(conn, "COMMIT", (), operation="commit transaction")

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(
                self._path,
                timeout=self._busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
        except sqlite3.Error as exc:
            self._raise_actionable_error(exc, operation="open cache")
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            conn.execute("PRAGMA journal_mode=WAL").fetchone()
        except sqlite3.Error as exc:
            conn.close()
            self._raise_actionable_error(exc, operation="configure cache connection")
        return conn

    def _read_fetched_at(self, conn: sqlite3.Connection) -> datetime | None:
        row = self._execute(
            conn,
            "SELECT value FROM sync_state WHERE key = ?",
            (_FETCHED_AT_KEY,),
            operation="load fetched_at",
        ).fetchone()
        if row is None:
            return None
        return _parse_timestamp(row["value"], column="sync_state.value")

    def _execute(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: Sequence[SQLValue],
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        try:
            return conn.execute(sql, tuple(params))
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            self._raise_actionable_error(exc, operation=operation)

    def _is_corruption_error(self, exc: sqlite3.Error) -> bool:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_CORRUPTION_CODES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in _CORRUPTION_SUBSTRINGS)

    def _raise_actionable_error(self, exc: sqlite3.Error, *, operation: str) -> NoReturn:
        if self._is_corruption_error(exc):
            raise TagCacheCorruptionError(
                f"{operation} failed for {self._path}: {exc}. "
                "Delete the cache file or run with --force-fetch to rebuild it."
            ) from exc
        raise TagCacheError(f"{operation} failed for {self._path}: {exc}") from exc


def _parse_timestamp(value: object, *, column: str) -> datetime:
    if not isinstance(value, str):
        raise TagCacheCorruptionError(f"{column} must be text")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise TagCacheCorruptionError(f"{column} is not an ISO-8601 timestamp: {value!r}") from exc


def _row_to_record(row: sqlite3.Row) -> NightlyRecord:
    tag_name = row["tag_name"]
    branch = row["branch"]
    suffix = row["suffix"]
    if not isinstance(tag_name, str) or not isinstance(branch, str) or not isinstance(suffix, str):
        raise TagCacheCorruptionError("tags row has non-text identity columns")
    short_sha = row["short_sha"]
    digest = row["digest"]
    return NightlyRecord(
        tag_name=tag_name,
        branch=branch,
        short_sha=short_sha if isinstance(short_sha, str) else None,
        suffix=suffix,
        last_pushed=_parse_timestamp(row["last_pushed"], column="tags.last_pushed"),
        digest=digest if isinstance(digest, str) else None,
    )


__all__ = [
    "DEFAULT_BUSY_TIMEOUT_MS",
    "CachedTags",
    "SqliteTagCache",
    "TagCache",
    "TagCacheCorruptionError",
    "TagCacheError",
    "TagCacheMigrationError",
]
