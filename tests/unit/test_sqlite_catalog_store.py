"""Unit tests for SQLiteCatalogStore."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

from src.models.catalog import (
    ArtistRecord,
    CreditArtist,
    FileType,
    GenreRecord,
    LabelRecord,
    MasterRecord,
    NamedRef,
    ReleaseLabelRef,
    ReleaseRecord,
    Track,
)
from src.providers.store.sqlite_catalog_store import INCOMPLETE_HASH, SQLiteCatalogStore
from src.services.content_hash import with_content_hash
from src.utils.errors import BatchWriteError, StoreUnavailableError


def _rows(db_path: Path, sql: str) -> list[tuple]:
    conn = sqlite3.connect(str(db_path))
    try:
        return conn.execute(sql).fetchall()
    finally:
        conn.close()


def _seed_entities(store: SQLiteCatalogStore) -> None:
    store.upsert_batch(
        FileType.ARTISTS, [with_content_hash(ArtistRecord(discogs_id=1, name="Jeff Mills"))]
    )
    record = with_content_hash(LabelRecord(discogs_id=10, name="Axis"))
    store.upsert_batch(FileType.LABELS, [record])
    store.upsert_genres(
        [with_content_hash(GenreRecord(name=n)) for n in ("Electronic", "Techno")]
    )


# ======================================================================
# Schema and hash index
# ======================================================================


class TestSchema:
    def test_initialize_creates_tables(self, store: SQLiteCatalogStore, db_path: Path) -> None:
        tables = _rows(db_path, "SELECT name FROM sqlite_master WHERE type='table'")
        names = {row[0] for row in tables}
        assert {
            "labels",
            "artists",
            "masters",
            "releases",
            "genres",
            "master_artists",
            "release_artists",
            "release_labels",
            "master_genres",
            "release_genres",
        } <= names

    def test_initialize_is_idempotent(self, store: SQLiteCatalogStore) -> None:
        store.initialize()
        assert store.count(FileType.ARTISTS) == 0

    def test_provider_name(self, store: SQLiteCatalogStore) -> None:
        assert store.get_provider_name() == "sqlite_catalog_store:catalog.db"


class TestHashIndex:
    def test_load_hash_index_returns_stored_hashes(self, store: SQLiteCatalogStore) -> None:
        records = [with_content_hash(ArtistRecord(discogs_id=i, name=f"A{i}")) for i in (1, 2)]
        store.upsert_batch(FileType.ARTISTS, records)

        index = store.load_hash_index(FileType.ARTISTS)

        assert index == {1: records[0].content_hash, 2: records[1].content_hash}

    def test_upsert_replaces_hash(self, store: SQLiteCatalogStore) -> None:
        first = with_content_hash(ArtistRecord(discogs_id=1, name="Before"))
        second = with_content_hash(ArtistRecord(discogs_id=1, name="After"))
        store.upsert_batch(FileType.ARTISTS, [first])
        store.upsert_batch(FileType.ARTISTS, [second])

        assert store.count(FileType.ARTISTS) == 1
        assert store.load_hash_index(FileType.ARTISTS)[1] == second.content_hash

    def test_genre_index_keyed_by_name(self, store: SQLiteCatalogStore) -> None:
        _seed_entities(store)
        assert set(store.load_genre_index()) == {"Electronic", "Techno"}


# ======================================================================
# Projections
# ======================================================================


class TestProjections:
    def test_label_nested_collections_stored_as_json(
        self, store: SQLiteCatalogStore, db_path: Path
    ) -> None:
        label = with_content_hash(
            LabelRecord(
                discogs_id=10,
                name="Axis",
                parent_label=NamedRef(id=1, name="Root"),
                sublabels=[NamedRef(id=11, name="Purpose Maker")],
            )
        )
        store.upsert_batch(FileType.LABELS, [label])

        (row,) = _rows(db_path, "SELECT parent_label_id, sublabels FROM labels WHERE id = 10")
        assert row[0] == 1
        assert json.loads(row[1]) == [{"id": 11, "name": "Purpose Maker"}]

    def test_master_links_artists_and_genres(
        self, store: SQLiteCatalogStore, db_path: Path
    ) -> None:
        _seed_entities(store)
        master = with_content_hash(
            MasterRecord(
                discogs_id=500,
                title="Waveform",
                artists=[CreditArtist(id=1, name="Jeff Mills")],
                genres=["Electronic"],
                styles=["Techno"],
            )
        )
        dangling = store.upsert_batch(FileType.MASTERS, [master])

        assert dangling == 0
        assert _rows(db_path, "SELECT master_id, artist_id FROM master_artists") == [(500, 1)]
        assert len(_rows(db_path, "SELECT * FROM master_genres")) == 2

    def test_release_links_and_dangling_references(
        self, store: SQLiteCatalogStore, db_path: Path
    ) -> None:
        _seed_entities(store)
        release = with_content_hash(
            ReleaseRecord(
                discogs_id=9000,
                title="Cycle 30",
                master_id=777,
                artists=[CreditArtist(id=1), CreditArtist(id=404)],
                labels=[ReleaseLabelRef(id=10, catno="AX-001")],
                genres=["Electronic"],
                tracklist=[Track(position="A1", title="Cycle 30")],
            )
        )

        dangling = store.upsert_batch(FileType.RELEASES, [release])

        # Missing master 777 and artist 404.
        assert dangling == 2
        (row,) = _rows(db_path, "SELECT master_id, tracklist FROM releases WHERE id = 9000")
        assert row[0] is None
        assert json.loads(row[1])[0]["title"] == "Cycle 30"
        assert _rows(db_path, "SELECT label_id, catno FROM release_labels") == [(10, "AX-001")]
        assert _rows(db_path, "SELECT artist_id FROM release_artists") == [(1,)]

    def test_rows_with_dropped_links_are_stored_without_hash(
        self, store: SQLiteCatalogStore
    ) -> None:
        _seed_entities(store)
        complete = with_content_hash(
            MasterRecord(discogs_id=500, title="Complete", artists=[CreditArtist(id=1)])
        )
        partial = with_content_hash(
            MasterRecord(discogs_id=501, title="Partial", artists=[CreditArtist(id=404)])
        )
        orphan = with_content_hash(ReleaseRecord(discogs_id=9001, title="Orphan", master_id=777))

        store.upsert_batch(FileType.MASTERS, [complete, partial])
        store.upsert_batch(FileType.RELEASES, [orphan])

        masters = store.load_hash_index(FileType.MASTERS)
        assert masters[500] == complete.content_hash
        assert masters[501] == INCOMPLETE_HASH
        assert store.load_hash_index(FileType.RELEASES)[9001] == INCOMPLETE_HASH

    def test_update_rewrites_relationship_rows(
        self, store: SQLiteCatalogStore, db_path: Path
    ) -> None:
        _seed_entities(store)
        store.upsert_batch(
            FileType.ARTISTS, [with_content_hash(ArtistRecord(discogs_id=2, name="Robert Hood"))]
        )
        before = with_content_hash(
            MasterRecord(discogs_id=500, title="M", artists=[CreditArtist(id=1)])
        )
        after = with_content_hash(
            MasterRecord(discogs_id=500, title="M", artists=[CreditArtist(id=2)])
        )
        store.upsert_batch(FileType.MASTERS, [before])
        store.upsert_batch(FileType.MASTERS, [after])

        assert _rows(db_path, "SELECT artist_id FROM master_artists") == [(2,)]


# ======================================================================
# Errors
# ======================================================================


class TestErrors:
    def test_constraint_violation_is_batch_write_error(self, store: SQLiteCatalogStore) -> None:
        # content_hash is NOT NULL.
        unhashed = LabelRecord(discogs_id=1, name="No hash")
        with pytest.raises(BatchWriteError):
            store.upsert_batch(FileType.LABELS, [unhashed])
        assert store.count(FileType.LABELS) == 0

    def test_failed_batch_rolls_back_whole_transaction(self, store: SQLiteCatalogStore) -> None:
        good = with_content_hash(LabelRecord(discogs_id=1, name="Good"))
        bad = LabelRecord(discogs_id=2, name="Bad")
        with pytest.raises(BatchWriteError):
            store.upsert_batch(FileType.LABELS, [good, bad])
        assert store.count(FileType.LABELS) == 0

    def test_closed_store_raises_unavailable(self, store: SQLiteCatalogStore) -> None:
        store.close()
        with pytest.raises(StoreUnavailableError):
            store.load_hash_index(FileType.LABELS)

    def test_empty_batch_is_noop(self, store: SQLiteCatalogStore) -> None:
        assert store.upsert_batch(FileType.RELEASES, []) == 0
