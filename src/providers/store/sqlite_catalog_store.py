"""SQLite-backed catalog store.

Holds the four entity tables (labels, artists, masters, releases), the
genre table and the relationship tables that link them.  Each entity row
carries the ``content_hash`` the change classifier compares against.

Uses sync ``sqlite3`` with one connection per worker thread, WAL mode and
foreign keys enabled.  Nested collections that have no table of their
own (images, urls, aliases, tracklist, formats, ...) are stored as JSON
text columns.

Batch transactions are bounded by a timeout enforced through SQLite's
progress handler: once the deadline passes the handler aborts the running
statement, the batch is rolled back and :class:`BatchTimeoutError` is
raised.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any

import structlog

from src.interfaces.catalog_store import ICatalogStore
from src.models.catalog import (
    ArtistRecord,
    CatalogRecord,
    FileType,
    GenreRecord,
    LabelRecord,
    MasterRecord,
    NaturalKey,
    ReleaseRecord,
)
from src.utils.errors import BatchTimeoutError, BatchWriteError, StoreUnavailableError
from src.utils.logging import get_logger

_DEFAULT_DB_PATH = Path("data/catalog.db")

# Progress handler granularity, in SQLite VM instructions.
_PROGRESS_STEPS = 1000
# Stay below SQLITE_MAX_VARIABLE_NUMBER on old builds.
_IN_CHUNK = 500

# Stored in place of the content hash when a row lost a relationship; it
# never equals a real digest.
INCOMPLETE_HASH = ""

_TIMESTAMP = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

_CREATE_TABLES_SQL = [
    f"""\
CREATE TABLE IF NOT EXISTS labels (
    id                INTEGER PRIMARY KEY,
    name              TEXT    NOT NULL,
    contact_info      TEXT    NOT NULL DEFAULT '',
    profile           TEXT    NOT NULL DEFAULT '',
    data_quality      TEXT    NOT NULL DEFAULT '',
    parent_label_id   INTEGER,
    parent_label_name TEXT,
    urls              TEXT    NOT NULL DEFAULT '[]',
    sublabels         TEXT    NOT NULL DEFAULT '[]',
    images            TEXT    NOT NULL DEFAULT '[]',
    content_hash      TEXT    NOT NULL,
    created_at        TEXT    NOT NULL DEFAULT ({_TIMESTAMP}),
    updated_at        TEXT    NOT NULL DEFAULT ({_TIMESTAMP})
);
""",
    f"""\
CREATE TABLE IF NOT EXISTS artists (
    id              INTEGER PRIMARY KEY,
    name            TEXT    NOT NULL,
    real_name       TEXT    NOT NULL DEFAULT '',
    profile         TEXT    NOT NULL DEFAULT '',
    data_quality    TEXT    NOT NULL DEFAULT '',
    urls            TEXT    NOT NULL DEFAULT '[]',
    name_variations TEXT    NOT NULL DEFAULT '[]',
    aliases         TEXT    NOT NULL DEFAULT '[]',
    members         TEXT    NOT NULL DEFAULT '[]',
    groups_json     TEXT    NOT NULL DEFAULT '[]',
    images          TEXT    NOT NULL DEFAULT '[]',
    content_hash    TEXT    NOT NULL,
    created_at      TEXT    NOT NULL DEFAULT ({_TIMESTAMP}),
    updated_at      TEXT    NOT NULL DEFAULT ({_TIMESTAMP})
);
""",
    f"""\
CREATE TABLE IF NOT EXISTS masters (
    id           INTEGER PRIMARY KEY,
    title        TEXT    NOT NULL,
    main_release INTEGER,
    year         INTEGER,
    notes        TEXT    NOT NULL DEFAULT '',
    data_quality TEXT    NOT NULL DEFAULT '',
    videos       TEXT    NOT NULL DEFAULT '[]',
    images       TEXT    NOT NULL DEFAULT '[]',
    content_hash TEXT    NOT NULL,
    created_at   TEXT    NOT NULL DEFAULT ({_TIMESTAMP}),
    updated_at   TEXT    NOT NULL DEFAULT ({_TIMESTAMP})
);
""",
    f"""\
CREATE TABLE IF NOT EXISTS releases (
    id           INTEGER PRIMARY KEY,
    title        TEXT    NOT NULL,
    status       TEXT    NOT NULL DEFAULT '',
    country      TEXT    NOT NULL DEFAULT '',
    released     TEXT    NOT NULL DEFAULT '',
    notes        TEXT    NOT NULL DEFAULT '',
    data_quality TEXT    NOT NULL DEFAULT '',
    master_id    INTEGER REFERENCES masters(id),
    formats      TEXT    NOT NULL DEFAULT '[]',
    tracklist    TEXT    NOT NULL DEFAULT '[]',
    images       TEXT    NOT NULL DEFAULT '[]',
    content_hash TEXT    NOT NULL,
    created_at   TEXT    NOT NULL DEFAULT ({_TIMESTAMP}),
    updated_at   TEXT    NOT NULL DEFAULT ({_TIMESTAMP})
);
""",
    f"""\
CREATE TABLE IF NOT EXISTS genres (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    name         TEXT    NOT NULL UNIQUE,
    content_hash TEXT    NOT NULL,
    created_at   TEXT    NOT NULL DEFAULT ({_TIMESTAMP}),
    updated_at   TEXT    NOT NULL DEFAULT ({_TIMESTAMP})
);
""",
    """\
CREATE TABLE IF NOT EXISTS master_artists (
    master_id   INTEGER NOT NULL REFERENCES masters(id) ON DELETE CASCADE,
    artist_id   INTEGER NOT NULL REFERENCES artists(id),
    position    INTEGER NOT NULL,
    anv         TEXT    NOT NULL DEFAULT '',
    join_phrase TEXT    NOT NULL DEFAULT '',
    PRIMARY KEY (master_id, position)
);
""",
    """\
CREATE TABLE IF NOT EXISTS release_artists (
    release_id  INTEGER NOT NULL REFERENCES releases(id) ON DELETE CASCADE,
    artist_id   INTEGER NOT NULL REFERENCES artists(id),
    position    INTEGER NOT NULL,
    anv         TEXT    NOT NULL DEFAULT '',
    join_phrase TEXT    NOT NULL DEFAULT '',
    PRIMARY KEY (release_id, position)
);
""",
    """\
CREATE TABLE IF NOT EXISTS release_labels (
    release_id INTEGER NOT NULL REFERENCES releases(id) ON DELETE CASCADE,
    label_id   INTEGER NOT NULL REFERENCES labels(id),
    position   INTEGER NOT NULL,
    catno      TEXT    NOT NULL DEFAULT '',
    PRIMARY KEY (release_id, position)
);
""",
    """\
CREATE TABLE IF NOT EXISTS master_genres (
    master_id INTEGER NOT NULL REFERENCES masters(id) ON DELETE CASCADE,
    genre_id  INTEGER NOT NULL REFERENCES genres(id),
    PRIMARY KEY (master_id, genre_id)
);
""",
    """\
CREATE TABLE IF NOT EXISTS release_genres (
    release_id INTEGER NOT NULL REFERENCES releases(id) ON DELETE CASCADE,
    genre_id   INTEGER NOT NULL REFERENCES genres(id),
    PRIMARY KEY (release_id, genre_id)
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_releases_master ON releases(master_id);",
    "CREATE INDEX IF NOT EXISTS idx_release_artists_artist ON release_artists(artist_id);",
    "CREATE INDEX IF NOT EXISTS idx_release_labels_label ON release_labels(label_id);",
    "CREATE INDEX IF NOT EXISTS idx_master_artists_artist ON master_artists(artist_id);",
]

_UPSERT_LABEL_SQL = f"""\
INSERT INTO labels (id, name, contact_info, profile, data_quality, parent_label_id,
                    parent_label_name, urls, sublabels, images, content_hash)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id)
DO UPDATE SET name              = excluded.name,
              contact_info      = excluded.contact_info,
              profile           = excluded.profile,
              data_quality      = excluded.data_quality,
              parent_label_id   = excluded.parent_label_id,
              parent_label_name = excluded.parent_label_name,
              urls              = excluded.urls,
              sublabels         = excluded.sublabels,
              images            = excluded.images,
              content_hash      = excluded.content_hash,
              updated_at        = {_TIMESTAMP};
"""

_UPSERT_ARTIST_SQL = f"""\
INSERT INTO artists (id, name, real_name, profile, data_quality, urls, name_variations,
                     aliases, members, groups_json, images, content_hash)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id)
DO UPDATE SET name            = excluded.name,
              real_name       = excluded.real_name,
              profile         = excluded.profile,
              data_quality    = excluded.data_quality,
              urls            = excluded.urls,
              name_variations = excluded.name_variations,
              aliases         = excluded.aliases,
              members         = excluded.members,
              groups_json     = excluded.groups_json,
              images          = excluded.images,
              content_hash    = excluded.content_hash,
              updated_at      = {_TIMESTAMP};
"""

_UPSERT_MASTER_SQL = f"""\
INSERT INTO masters (id, title, main_release, year, notes, data_quality, videos, images,
                     content_hash)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id)
DO UPDATE SET title        = excluded.title,
              main_release = excluded.main_release,
              year         = excluded.year,
              notes        = excluded.notes,
              data_quality = excluded.data_quality,
              videos       = excluded.videos,
              images       = excluded.images,
              content_hash = excluded.content_hash,
              updated_at   = {_TIMESTAMP};
"""

_UPSERT_RELEASE_SQL = f"""\
INSERT INTO releases (id, title, status, country, released, notes, data_quality, master_id,
                      formats, tracklist, images, content_hash)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id)
DO UPDATE SET title        = excluded.title,
              status       = excluded.status,
              country      = excluded.country,
              released     = excluded.released,
              notes        = excluded.notes,
              data_quality = excluded.data_quality,
              master_id    = excluded.master_id,
              formats      = excluded.formats,
              tracklist    = excluded.tracklist,
              images       = excluded.images,
              content_hash = excluded.content_hash,
              updated_at   = {_TIMESTAMP};
"""

_UPSERT_GENRE_SQL = f"""\
INSERT INTO genres (name, content_hash)
VALUES (?, ?)
ON CONFLICT(name)
DO UPDATE SET content_hash = excluded.content_hash,
              updated_at   = {_TIMESTAMP};
"""

_TABLES: dict[FileType, str] = {
    FileType.LABELS: "labels",
    FileType.ARTISTS: "artists",
    FileType.MASTERS: "masters",
    FileType.RELEASES: "releases",
}

# Messages of sqlite3 errors after which the store cannot be used further.
_UNAVAILABLE_MARKERS = (
    "closed database",
    "unable to open",
    "disk i/o error",
    "malformed",
    "file is not a database",
    "database or disk is full",
)


def _json(items: Iterable[Any]) -> str:
    return json.dumps(
        [i.model_dump() if hasattr(i, "model_dump") else i for i in items],
        ensure_ascii=False,
    )


def _chunks(values: list[Any], size: int = _IN_CHUNK) -> Iterable[list[Any]]:
    for i in range(0, len(values), size):
        yield values[i : i + size]


class SQLiteCatalogStore(ICatalogStore):
    """Catalog persistence in a single SQLite file.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file; parent directories are created
        on :meth:`initialize`.
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connection()
        try:
            for statement in _CREATE_TABLES_SQL:
                conn.execute(statement)
            for statement in _CREATE_INDICES_SQL:
                conn.execute(statement)
            conn.commit()
        except sqlite3.Error as exc:
            raise self._translate(exc, "initialize") from exc
        self._logger.info("catalog_store_initialized", db_path=str(self._db_path))

    def close(self) -> None:
        with self._lock:
            self._closed = True
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
        self._logger.info("catalog_store_closed", db_path=str(self._db_path))

    def get_provider_name(self) -> str:
        return f"sqlite_catalog_store:{self._db_path.name}"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load_hash_index(self, file_type: FileType) -> dict[NaturalKey, str]:
        table = _TABLES[file_type]
        try:
            rows = self._connection().execute(f"SELECT id, content_hash FROM {table};")
            return {row[0]: row[1] for row in rows}
        except sqlite3.Error as exc:
            raise self._translate(exc, f"load {table} hashes") from exc

    def load_genre_index(self) -> dict[str, str]:
        try:
            rows = self._connection().execute("SELECT name, content_hash FROM genres;")
            return {row[0]: row[1] for row in rows}
        except sqlite3.Error as exc:
            raise self._translate(exc, "load genre hashes") from exc

    def count(self, file_type: FileType) -> int:
        table = _TABLES[file_type]
        try:
            row = self._connection().execute(f"SELECT COUNT(*) FROM {table};").fetchone()
        except sqlite3.Error as exc:
            raise self._translate(exc, f"count {table}") from exc
        return row[0] if row else 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_batch(
        self,
        file_type: FileType,
        records: Sequence[CatalogRecord],
        timeout_seconds: float | None = None,
    ) -> int:
        writers: dict[FileType, Callable[[sqlite3.Connection, Sequence[Any]], int]] = {
            FileType.LABELS: self._write_labels,
            FileType.ARTISTS: self._write_artists,
            FileType.MASTERS: self._write_masters,
            FileType.RELEASES: self._write_releases,
        }
        if not records:
            return 0
        return self._in_transaction(
            lambda conn: writers[file_type](conn, records),
            timeout_seconds,
            f"upsert {len(records)} {file_type.value}",
        )

    def upsert_genres(
        self,
        records: Sequence[GenreRecord],
        timeout_seconds: float | None = None,
    ) -> None:
        if not records:
            return

        def _write(conn: sqlite3.Connection) -> int:
            conn.executemany(
                _UPSERT_GENRE_SQL, [(g.name, g.content_hash) for g in records]
            )
            return 0

        self._in_transaction(_write, timeout_seconds, f"upsert {len(records)} genres")

    # ------------------------------------------------------------------
    # Per-type projections
    # ------------------------------------------------------------------

    @staticmethod
    def _write_labels(conn: sqlite3.Connection, records: Sequence[LabelRecord]) -> int:
        conn.executemany(
            _UPSERT_LABEL_SQL,
            [
                (
                    r.discogs_id,
                    r.name,
                    r.contact_info,
                    r.profile,
                    r.data_quality,
                    r.parent_label.id if r.parent_label else None,
                    r.parent_label.name if r.parent_label else None,
                    _json(r.urls),
                    _json(r.sublabels),
                    _json(r.images),
                    r.content_hash,
                )
                for r in records
            ],
        )
        return 0

    @staticmethod
    def _write_artists(conn: sqlite3.Connection, records: Sequence[ArtistRecord]) -> int:
        conn.executemany(
            _UPSERT_ARTIST_SQL,
            [
                (
                    r.discogs_id,
                    r.name,
                    r.real_name,
                    r.profile,
                    r.data_quality,
                    _json(r.urls),
                    _json(r.name_variations),
                    _json(r.aliases),
                    _json(r.members),
                    _json(r.groups),
                    _json(r.images),
                    r.content_hash,
                )
                for r in records
            ],
        )
        return 0

    def _write_masters(self, conn: sqlite3.Connection, records: Sequence[MasterRecord]) -> int:
        conn.executemany(
            _UPSERT_MASTER_SQL,
            [
                (
                    r.discogs_id,
                    r.title,
                    r.main_release,
                    r.year,
                    r.notes,
                    r.data_quality,
                    _json(r.videos),
                    _json(r.images),
                    r.content_hash,
                )
                for r in records
            ],
        )
        ids = [r.discogs_id for r in records]
        self._delete_children(conn, ("master_artists", "master_genres"), "master_id", ids)

        artist_ids = self._existing_ids(
            conn, "artists", [a.id for r in records for a in r.artists if a.id is not None]
        )
        genre_ids = self._genre_ids(conn, [g.name for r in records for g in r.genre_records()])

        dangling = 0
        incomplete: list[int] = []
        artist_rows = []
        genre_rows = []
        for r in records:
            before = dangling
            for position, credit in enumerate(r.artists):
                if credit.id in artist_ids:
                    artist_rows.append((r.discogs_id, credit.id, position, credit.anv, credit.join))
                else:
                    dangling += 1
            for genre in r.genre_records():
                if genre.name in genre_ids:
                    genre_rows.append((r.discogs_id, genre_ids[genre.name]))
                else:
                    dangling += 1
            if dangling > before:
                incomplete.append(r.discogs_id)

        conn.executemany(
            "INSERT OR REPLACE INTO master_artists "
            "(master_id, artist_id, position, anv, join_phrase) "
            "VALUES (?, ?, ?, ?, ?);",
            artist_rows,
        )
        conn.executemany(
            "INSERT OR IGNORE INTO master_genres (master_id, genre_id) VALUES (?, ?);",
            genre_rows,
        )
        self._mark_incomplete(conn, "masters", incomplete)
        return dangling

    def _write_releases(self, conn: sqlite3.Connection, records: Sequence[ReleaseRecord]) -> int:
        master_ids = self._existing_ids(
            conn, "masters", [r.master_id for r in records if r.master_id is not None]
        )
        missing_master = {
            r.discogs_id
            for r in records
            if r.master_id is not None and r.master_id not in master_ids
        }
        dangling = len(missing_master)
        conn.executemany(
            _UPSERT_RELEASE_SQL,
            [
                (
                    r.discogs_id,
                    r.title,
                    r.status,
                    r.country,
                    r.released,
                    r.notes,
                    r.data_quality,
                    r.master_id if r.master_id in master_ids else None,
                    _json(r.formats),
                    _json(r.tracklist),
                    _json(r.images),
                    r.content_hash,
                )
                for r in records
            ],
        )
        ids = [r.discogs_id for r in records]
        self._delete_children(
            conn, ("release_artists", "release_labels", "release_genres"), "release_id", ids
        )

        artist_ids = self._existing_ids(
            conn, "artists", [a.id for r in records for a in r.artists if a.id is not None]
        )
        label_ids = self._existing_ids(
            conn, "labels", [lbl.id for r in records for lbl in r.labels if lbl.id is not None]
        )
        genre_ids = self._genre_ids(conn, [g.name for r in records for g in r.genre_records()])

        artist_rows = []
        incomplete = [r.discogs_id for r in records if r.discogs_id in missing_master]
        label_rows = []
        genre_rows = []
        for r in records:
            before = dangling
            for position, credit in enumerate(r.artists):
                if credit.id in artist_ids:
                    artist_rows.append((r.discogs_id, credit.id, position, credit.anv, credit.join))
                else:
                    dangling += 1
            for position, label in enumerate(r.labels):
                if label.id in label_ids:
                    label_rows.append((r.discogs_id, label.id, position, label.catno))
                else:
                    dangling += 1
            for genre in r.genre_records():
                if genre.name in genre_ids:
                    genre_rows.append((r.discogs_id, genre_ids[genre.name]))
                else:
                    dangling += 1
            if dangling > before and r.discogs_id not in missing_master:
                incomplete.append(r.discogs_id)

        conn.executemany(
            "INSERT OR REPLACE INTO release_artists "
            "(release_id, artist_id, position, anv, join_phrase) "
            "VALUES (?, ?, ?, ?, ?);",
            artist_rows,
        )
        conn.executemany(
            "INSERT OR REPLACE INTO release_labels (release_id, label_id, position, catno) "
            "VALUES (?, ?, ?, ?);",
            label_rows,
        )
        conn.executemany(
            "INSERT OR IGNORE INTO release_genres (release_id, genre_id) VALUES (?, ?);",
            genre_rows,
        )
        self._mark_incomplete(conn, "releases", incomplete)
        return dangling

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _connection(self) -> sqlite3.Connection:
        """Return this thread's connection, opening it on first use."""
        if self._closed:
            raise StoreUnavailableError(f"Catalog store {self._db_path} is closed")
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            return conn
        try:
            # close() may run on another thread than the one that opened it.
            conn = sqlite3.connect(str(self._db_path), timeout=30.0, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error as exc:
            raise StoreUnavailableError(
                f"Cannot open catalog store {self._db_path}: {exc}"
            ) from exc
        with self._lock:
            self._connections.append(conn)
        self._local.conn = conn
        return conn

    def _in_transaction(
        self,
        work: Callable[[sqlite3.Connection], int],
        timeout_seconds: float | None,
        description: str,
    ) -> int:
        """Run ``work`` in one transaction, bounded by ``timeout_seconds``."""
        conn = self._connection()
        timed_out = False
        if timeout_seconds is not None:
            deadline = time.monotonic() + timeout_seconds

            def _check_deadline() -> int:
                nonlocal timed_out
                if time.monotonic() > deadline:
                    timed_out = True
                    return 1
                return 0

            conn.set_progress_handler(_check_deadline, _PROGRESS_STEPS)
        try:
            result = work(conn)
            conn.commit()
            return result
        except sqlite3.Error as exc:
            self._rollback(conn)
            if timed_out:
                raise BatchTimeoutError(
                    f"{description} exceeded {timeout_seconds}s and was rolled back"
                ) from exc
            raise self._translate(exc, description) from exc
        finally:
            if timeout_seconds is not None:
                self._clear_progress_handler(conn)

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        try:
            conn.rollback()
        except sqlite3.ProgrammingError:
            # Connection already closed; nothing to undo.
            pass

    @staticmethod
    def _clear_progress_handler(conn: sqlite3.Connection) -> None:
        try:
            conn.set_progress_handler(None, 0)
        except sqlite3.ProgrammingError:
            pass

    def _translate(self, exc: sqlite3.Error, description: str) -> Exception:
        message = str(exc).lower()
        if isinstance(exc, sqlite3.ProgrammingError) or any(
            marker in message for marker in _UNAVAILABLE_MARKERS
        ):
            self._logger.error("catalog_store_unavailable", operation=description, error=str(exc))
            return StoreUnavailableError(f"{description}: {exc}")
        return BatchWriteError(f"{description}: {exc}")

    @staticmethod
    def _existing_ids(conn: sqlite3.Connection, table: str, ids: list[int]) -> set[int]:
        found: set[int] = set()
        for chunk in _chunks(sorted(set(ids))):
            placeholders = ",".join("?" * len(chunk))
            rows = conn.execute(f"SELECT id FROM {table} WHERE id IN ({placeholders});", chunk)
            found.update(row[0] for row in rows)
        return found

    @staticmethod
    def _genre_ids(conn: sqlite3.Connection, names: list[str]) -> dict[str, int]:
        found: dict[str, int] = {}
        for chunk in _chunks(sorted(set(names))):
            placeholders = ",".join("?" * len(chunk))
            rows = conn.execute(
                f"SELECT name, id FROM genres WHERE name IN ({placeholders});", chunk
            )
            found.update((row[0], row[1]) for row in rows)
        return found

    @staticmethod
    def _delete_children(
        conn: sqlite3.Connection, tables: tuple[str, ...], column: str, ids: list[int]
    ) -> None:
        for chunk in _chunks(ids):
            placeholders = ",".join("?" * len(chunk))
            for table in tables:
                conn.execute(f"DELETE FROM {table} WHERE {column} IN ({placeholders});", chunk)

    @staticmethod
    def _mark_incomplete(conn: sqlite3.Connection, table: str, ids: list[int]) -> None:
        """Blank the stored hash of rows whose links were dropped.

        The next run then classifies them as updates and rewrites their
        relationships once the missing targets exist.
        """
        for chunk in _chunks(ids):
            placeholders = ",".join("?" * len(chunk))
            conn.execute(
                f"UPDATE {table} SET content_hash = ? WHERE id IN ({placeholders});",
                [INCOMPLETE_HASH, *chunk],
            )
