"""Unit tests for the streaming DumpDecoder."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.models.catalog import ArtistRecord, FileType, LabelRecord, MasterRecord, ReleaseRecord
from src.services.dump_decoder import DumpDecoder
from src.utils.errors import DumpReadError
from tests.dump_builders import (
    artist_xml,
    dump_bytes,
    label_xml,
    master_xml,
    release_xml,
    write_dump,
)


def _decode(path: Path, file_type: FileType, **kwargs) -> tuple[DumpDecoder, list]:
    decoder = DumpDecoder(path, file_type, **kwargs)
    return decoder, list(decoder.records())


# ======================================================================
# Record mapping
# ======================================================================


class TestRecordMapping:
    def test_artist_fields(self, tmp_path: Path) -> None:
        path = write_dump(
            tmp_path / "artists.xml.gz",
            FileType.ARTISTS,
            [artist_xml(1, "Jeff Mills", profile="Detroit techno", realname="Jeffrey Mills")],
        )
        decoder, records = _decode(path, FileType.ARTISTS)

        assert decoder.decoded == 1
        artist = records[0]
        assert isinstance(artist, ArtistRecord)
        assert artist.discogs_id == 1
        assert artist.name == "Jeff Mills"
        assert artist.real_name == "Jeffrey Mills"
        assert artist.profile == "Detroit techno"
        assert artist.urls == ["https://example.com/1"]
        assert artist.name_variations == ["JEFF MILLS"]
        assert artist.aliases[0].id == 100001

    def test_label_with_nested_sublabels_is_one_record(self, tmp_path: Path) -> None:
        path = write_dump(
            tmp_path / "labels.xml.gz",
            FileType.LABELS,
            [
                label_xml(10, "Axis", sublabels=[(11, "Purpose Maker"), (12, "6277")]),
                label_xml(11, "Purpose Maker", parent=(10, "Axis")),
            ],
        )
        decoder, records = _decode(path, FileType.LABELS)

        assert decoder.total_seen == 2
        assert decoder.malformed == 0
        axis, purpose = records
        assert isinstance(axis, LabelRecord)
        assert [s.id for s in axis.sublabels] == [11, 12]
        assert purpose.parent_label is not None
        assert purpose.parent_label.id == 10

    def test_master_fields(self, tmp_path: Path) -> None:
        path = write_dump(
            tmp_path / "masters.xml.gz",
            FileType.MASTERS,
            [master_xml(500, "Waveform Transmission", artist_ids=[1, 2], styles=["Techno"])],
        )
        _, records = _decode(path, FileType.MASTERS)

        master = records[0]
        assert isinstance(master, MasterRecord)
        assert master.discogs_id == 500
        assert master.main_release == 5000
        assert master.year == 1995
        assert [a.id for a in master.artists] == [1, 2]
        assert master.genres == ["Electronic"]
        assert master.styles == ["Techno"]

    def test_release_fields(self, tmp_path: Path) -> None:
        path = write_dump(
            tmp_path / "releases.xml.gz",
            FileType.RELEASES,
            [
                release_xml(
                    9000,
                    "Cycle 30",
                    master_id=500,
                    artist_ids=[1],
                    label_ids=[10],
                    tracks=[("A1", "Cycle 30", "5:12"), ("B1", "Medium", "6:01")],
                )
            ],
        )
        _, records = _decode(path, FileType.RELEASES)

        release = records[0]
        assert isinstance(release, ReleaseRecord)
        assert release.discogs_id == 9000
        assert release.status == "Accepted"
        assert release.master_id == 500
        assert release.country == "Germany"
        assert release.released == "1995-03-01"
        assert [lbl.catno for lbl in release.labels] == ["CAT10"]
        assert release.formats[0].name == "Vinyl"
        assert release.formats[0].descriptions == ['12"']
        assert [t.position for t in release.tracklist] == ["A1", "B1"]

    def test_plain_xml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "artists.xml"
        path.write_bytes(dump_bytes(FileType.ARTISTS, [artist_xml(1, "A"), artist_xml(2, "B")]))
        decoder, records = _decode(path, FileType.ARTISTS)
        assert [r.discogs_id for r in records] == [1, 2]


# ======================================================================
# Streaming behaviour
# ======================================================================


class TestStreaming:
    def test_tiny_reads_give_same_result(self, tmp_path: Path) -> None:
        elements = [label_xml(i, f"Label {i}", sublabels=[(i + 100, "Sub")]) for i in range(1, 30)]
        path = write_dump(tmp_path / "labels.xml.gz", FileType.LABELS, elements)

        _, big = _decode(path, FileType.LABELS)
        small_decoder, small = _decode(path, FileType.LABELS, read_size=7)

        assert [r.discogs_id for r in small] == [r.discogs_id for r in big]
        assert small_decoder.malformed == 0

    def test_records_can_only_be_iterated_once(self, tmp_path: Path) -> None:
        path = write_dump(tmp_path / "artists.xml.gz", FileType.ARTISTS, [artist_xml(1, "A")])
        decoder = DumpDecoder(path, FileType.ARTISTS)
        list(decoder.records())
        with pytest.raises(RuntimeError):
            decoder.records()

    def test_records_is_lazy(self, tmp_path: Path) -> None:
        decoder = DumpDecoder(tmp_path / "missing.xml.gz", FileType.ARTISTS)
        iterator = decoder.records()
        with pytest.raises(DumpReadError):
            next(iterator)


# ======================================================================
# max_records
# ======================================================================


class TestMaxRecords:
    def test_cap_counts_remaining_as_unprocessed(self, tmp_path: Path) -> None:
        elements = [artist_xml(i, f"Artist {i}") for i in range(1, 6)]
        path = write_dump(tmp_path / "artists.xml.gz", FileType.ARTISTS, elements)

        decoder, records = _decode(path, FileType.ARTISTS, max_records=2)

        assert [r.discogs_id for r in records] == [1, 2]
        assert decoder.decoded == 2
        assert decoder.unprocessed == 3
        assert decoder.total_seen == 5
        assert decoder.limit_reached

    def test_cap_without_counting_stops_early(self, tmp_path: Path) -> None:
        elements = [artist_xml(i, f"Artist {i}") for i in range(1, 6)]
        path = write_dump(tmp_path / "artists.xml.gz", FileType.ARTISTS, elements)

        decoder, records = _decode(
            path, FileType.ARTISTS, max_records=2, count_unprocessed=False
        )

        assert len(records) == 2
        assert decoder.unprocessed == 0
        assert decoder.total_seen == 2

    def test_zero_means_unlimited(self, tmp_path: Path) -> None:
        elements = [artist_xml(i, f"Artist {i}") for i in range(1, 4)]
        path = write_dump(tmp_path / "artists.xml.gz", FileType.ARTISTS, elements)
        decoder, records = _decode(path, FileType.ARTISTS, max_records=0)
        assert len(records) == 3
        assert decoder.unprocessed == 0


# ======================================================================
# Malformed input
# ======================================================================


class TestMalformedRecords:
    def test_bad_element_does_not_stop_decoding(self, tmp_path: Path) -> None:
        elements = [
            artist_xml(1, "Good One"),
            "<artist><id>2</id><name>Broken & unescaped</name></artist>",
            "<artist><id>not-a-number</id><name>No Id</name></artist>",
            artist_xml(4, "Good Two"),
        ]
        path = write_dump(tmp_path / "artists.xml.gz", FileType.ARTISTS, elements)

        decoder, records = _decode(path, FileType.ARTISTS)

        assert [r.discogs_id for r in records] == [1, 4]
        assert decoder.malformed == 2
        assert decoder.total_seen == 4
        assert len(decoder.errors) == 2
        assert "record #2" in decoder.errors[0]

    def test_truncated_element_is_malformed(self, tmp_path: Path) -> None:
        elements = [
            "<artist><id>1</id><name>Cut off",
            artist_xml(2, "Complete"),
        ]
        path = write_dump(tmp_path / "artists.xml.gz", FileType.ARTISTS, elements)

        decoder, records = _decode(path, FileType.ARTISTS)

        assert [r.discogs_id for r in records] == [2]
        assert decoder.malformed == 1
        assert "Unterminated" in decoder.errors[0]

    def test_unterminated_last_element(self, tmp_path: Path) -> None:
        path = tmp_path / "artists.xml"
        path.write_bytes(b"<artists>" + artist_xml(1, "A").encode() + b"<artist><id>2</id>")
        decoder, records = _decode(path, FileType.ARTISTS)
        assert len(records) == 1
        assert decoder.malformed == 1

    def test_error_messages_capped_but_count_exact(self, tmp_path: Path) -> None:
        elements = [f"<artist><id>x{i}</id></artist>" for i in range(10)]
        path = write_dump(tmp_path / "artists.xml.gz", FileType.ARTISTS, elements)

        decoder, records = _decode(path, FileType.ARTISTS, max_errors=3)

        assert records == []
        assert decoder.malformed == 10
        assert len(decoder.errors) == 3


# ======================================================================
# Unreadable files
# ======================================================================


class TestUnreadableFiles:
    def test_missing_file(self, tmp_path: Path) -> None:
        decoder = DumpDecoder(tmp_path / "nope.xml.gz", FileType.LABELS)
        with pytest.raises(DumpReadError, match="not found"):
            list(decoder.records())

    def test_corrupt_gzip(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.xml.gz"
        path.write_bytes(b"this is not gzip data at all")
        decoder = DumpDecoder(path, FileType.LABELS)
        with pytest.raises(DumpReadError):
            list(decoder.records())
