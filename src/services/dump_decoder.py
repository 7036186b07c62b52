# =============================================================================
# src/services/dump_decoder.py: Streaming Decoder for Discogs XML Dumps
# =============================================================================
#
# Turns one gzip-compressed monthly dump (labels, artists, masters or
# releases) into a lazy stream of typed catalog records.  The releases dump
# exceeds 90 GB uncompressed, so the file is never loaded whole: it is read
# in fixed-size chunks and only one top-level element is materialized at a
# time.
#
# Design decisions:
#   - A bytes regex over the record element's start/end tags finds element
#     boundaries.  ElementTree.iterparse is not used because one malformed
#     element aborts it for the rest of the file; here each element is
#     parsed independently with ET.fromstring, so a bad element is counted
#     and decoding resumes at the next sibling.
#   - Nested elements with the record's own tag name (<label> inside a
#     label's <sublabels>) are tracked by depth so they never split a
#     record.  A new top-level start tag while the previous record is
#     still open outside such a container means the previous element was
#     truncated: it is counted as malformed and scanning resyncs.
#   - max_records stops yielding once N records decoded; the remaining
#     elements are counted (not parsed) as unprocessed.
#
# Data flow:
#   .xml.gz → 1 MiB chunks → tag scanner → element bytes → ET.fromstring
#           → _to_<type>() → CatalogRecord
# =============================================================================

from __future__ import annotations

import gzip
import re
import time
import xml.etree.ElementTree as ET
import zlib
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import IO

import structlog

from src.models.catalog import (
    ArtistRecord,
    CatalogRecord,
    CreditArtist,
    FileType,
    Format,
    ImageRef,
    LabelRecord,
    MasterRecord,
    NamedRef,
    ReleaseLabelRef,
    ReleaseRecord,
    Track,
    Video,
)
from src.utils.errors import DumpReadError, MalformedRecordError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_READ_SIZE = 1024 * 1024
DEFAULT_MAX_ERRORS = 100
_PROGRESS_EVERY = 10000

# Elements that may legitimately contain a nested element with the record's
# own tag name.
_NESTING_CONTAINERS: dict[FileType, tuple[str, ...]] = {
    FileType.LABELS: ("sublabels",),
}


def _tag_pattern(file_type: FileType) -> re.Pattern[bytes]:
    names = [file_type.element_name, *_NESTING_CONTAINERS.get(file_type, ())]
    alternation = "|".join(re.escape(n) for n in names)
    return re.compile(rb"<(/?)(" + alternation.encode("ascii") + rb")\b[^>]*?(/?)>")


# ─── ELEMENT → RECORD CONVERSION ─────────────────────────────────────────────

def _text(elem: ET.Element, path: str) -> str:
    child = elem.find(path)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def _int(value: str | None) -> int | None:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _texts(elem: ET.Element, path: str) -> list[str]:
    return [c.text.strip() for c in elem.findall(path) if c.text and c.text.strip()]


def _named_refs(elem: ET.Element, path: str) -> list[NamedRef]:
    return [
        NamedRef(id=_int(n.get("id")), name=(n.text or "").strip())
        for n in elem.findall(path)
    ]


def _images(elem: ET.Element) -> list[ImageRef]:
    return [
        ImageRef(
            type=img.get("type", ""),
            uri=img.get("uri", ""),
            uri150=img.get("uri150", ""),
            width=_int(img.get("width")),
            height=_int(img.get("height")),
        )
        for img in elem.findall("images/image")
    ]


def _credits(elem: ET.Element) -> list[CreditArtist]:
    return [
        CreditArtist(
            id=_int(_text(a, "id")),
            name=_text(a, "name"),
            anv=_text(a, "anv"),
            join=_text(a, "join"),
        )
        for a in elem.findall("artists/artist")
    ]


def _required_id(value: str | None, element_name: str) -> int:
    discogs_id = _int(value)
    if discogs_id is None:
        raise MalformedRecordError(f"<{element_name}> has no valid id")
    return discogs_id


def _to_artist(elem: ET.Element) -> ArtistRecord:
    return ArtistRecord(
        discogs_id=_required_id(_text(elem, "id"), "artist"),
        name=_text(elem, "name"),
        real_name=_text(elem, "realname"),
        profile=_text(elem, "profile"),
        data_quality=_text(elem, "data_quality"),
        urls=_texts(elem, "urls/url"),
        name_variations=_texts(elem, "namevariations/name"),
        aliases=_named_refs(elem, "aliases/name"),
        members=_named_refs(elem, "members/name"),
        groups=_named_refs(elem, "groups/name"),
        images=_images(elem),
    )


def _to_label(elem: ET.Element) -> LabelRecord:
    parent = elem.find("parentLabel")
    return LabelRecord(
        discogs_id=_required_id(_text(elem, "id"), "label"),
        name=_text(elem, "name"),
        contact_info=_text(elem, "contactinfo"),
        profile=_text(elem, "profile"),
        data_quality=_text(elem, "data_quality"),
        parent_label=(
            NamedRef(id=_int(parent.get("id")), name=(parent.text or "").strip())
            if parent is not None
            else None
        ),
        sublabels=_named_refs(elem, "sublabels/label"),
        urls=_texts(elem, "urls/url"),
        images=_images(elem),
    )


def _to_master(elem: ET.Element) -> MasterRecord:
    return MasterRecord(
        discogs_id=_required_id(elem.get("id"), "master"),
        title=_text(elem, "title"),
        main_release=_int(_text(elem, "main_release")),
        year=_int(_text(elem, "year")),
        notes=_text(elem, "notes"),
        data_quality=_text(elem, "data_quality"),
        artists=_credits(elem),
        genres=_texts(elem, "genres/genre"),
        styles=_texts(elem, "styles/style"),
        videos=[
            Video(
                src=v.get("src", ""),
                title=_text(v, "title"),
                description=_text(v, "description"),
                duration=_int(v.get("duration")),
                embed=v.get("embed", "").lower() == "true",
            )
            for v in elem.findall("videos/video")
        ],
        images=_images(elem),
    )


def _to_release(elem: ET.Element) -> ReleaseRecord:
    return ReleaseRecord(
        discogs_id=_required_id(elem.get("id"), "release"),
        title=_text(elem, "title"),
        status=elem.get("status", ""),
        country=_text(elem, "country"),
        released=_text(elem, "released"),
        notes=_text(elem, "notes"),
        data_quality=_text(elem, "data_quality"),
        master_id=_int(_text(elem, "master_id")),
        artists=_credits(elem),
        labels=[
            ReleaseLabelRef(
                id=_int(lbl.get("id")),
                name=lbl.get("name", ""),
                catno=lbl.get("catno", ""),
            )
            for lbl in elem.findall("labels/label")
        ],
        formats=[
            Format(
                name=f.get("name", ""),
                qty=f.get("qty", ""),
                text=f.get("text", ""),
                descriptions=_texts(f, "descriptions/description"),
            )
            for f in elem.findall("formats/format")
        ],
        genres=_texts(elem, "genres/genre"),
        styles=_texts(elem, "styles/style"),
        tracklist=[
            Track(
                position=_text(t, "position"),
                title=_text(t, "title"),
                duration=_text(t, "duration"),
            )
            for t in elem.findall("tracklist/track")
        ],
        images=_images(elem),
    )


_CONVERTERS: dict[FileType, Callable[[ET.Element], CatalogRecord]] = {
    FileType.ARTISTS: _to_artist,
    FileType.LABELS: _to_label,
    FileType.MASTERS: _to_master,
    FileType.RELEASES: _to_release,
}


# ─── STREAMING DECODER ───────────────────────────────────────────────────────

class DumpDecoder:
    """Lazy record stream over one dump file.

    Parameters
    ----------
    path:
        ``.xml.gz`` (decompressed on the fly) or plain ``.xml`` file.
    file_type:
        Which entity file this is; selects the record element and mapping.
    max_records:
        Stop yielding after this many decoded records (``None`` or ``0`` =
        unlimited).
    count_unprocessed:
        When the cap is hit, keep scanning (without parsing) to count the
        remaining elements into :attr:`unprocessed`.
    read_size:
        Bytes read from the decompressed stream per chunk.
    max_errors:
        Cap on retained error messages; the ``malformed`` counter is exact.
    """

    def __init__(
        self,
        path: str | Path,
        file_type: FileType,
        max_records: int | None = None,
        count_unprocessed: bool = True,
        read_size: int = DEFAULT_READ_SIZE,
        max_errors: int = DEFAULT_MAX_ERRORS,
    ) -> None:
        self._path = Path(path)
        self._file_type = file_type
        self._max_records = max_records or None
        self._count_unprocessed = count_unprocessed
        self._read_size = read_size
        self._max_errors = max_errors
        self._element = file_type.element_name.encode("ascii")
        self._pattern = _tag_pattern(file_type)
        self._convert = _CONVERTERS[file_type]
        self._started = False

        self.total_seen = 0
        self.decoded = 0
        self.malformed = 0
        self.unprocessed = 0
        self.errors: list[str] = []

    @property
    def file_type(self) -> FileType:
        return self._file_type

    @property
    def path(self) -> Path:
        return self._path

    @property
    def limit_reached(self) -> bool:
        return self._max_records is not None and self.decoded >= self._max_records

    def records(self) -> Iterator[CatalogRecord]:
        """Yield decoded records in file order.  May be consumed only once."""
        if self._started:
            raise RuntimeError("DumpDecoder.records() can only be iterated once")
        self._started = True
        return self._iterate()

    # ------------------------------------------------------------------
    # File I/O helpers
    # ------------------------------------------------------------------

    def _open(self) -> IO[bytes]:
        if not self._path.exists():
            raise DumpReadError(
                f"Dump file not found: {self._path}", file_type=self._file_type.value
            )
        try:
            if self._path.suffix == ".gz":
                return gzip.open(self._path, "rb")
            return open(self._path, "rb")  # noqa: SIM115
        except OSError as exc:
            raise DumpReadError(
                f"Cannot open dump file {self._path}: {exc}", file_type=self._file_type.value
            ) from exc

    def _read(self, fh: IO[bytes]) -> bytes:
        try:
            return fh.read(self._read_size)
        except (OSError, EOFError, zlib.error) as exc:
            # gzip.BadGzipFile is an OSError; EOFError is a truncated stream.
            raise DumpReadError(
                f"Failed to decompress {self._path.name}: {exc}",
                file_type=self._file_type.value,
            ) from exc

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _iterate(self) -> Iterator[CatalogRecord]:
        start = time.monotonic()
        logger.info("decode_start", path=str(self._path), file_type=self._file_type.value)

        buf = b""
        pos = 0
        record_start: int | None = None
        depth = 0
        container_depth = 0
        eof = False
        stop = False

        with self._open() as fh:
            while not stop:
                for match in self._pattern.finditer(buf, pos):
                    pos = match.end()
                    is_end = match.group(1) == b"/"
                    name = match.group(2)
                    self_closing = match.group(3) == b"/"

                    if name != self._element:
                        # Nesting container; only meaningful inside a record.
                        if record_start is not None and not self_closing:
                            container_depth += -1 if is_end else 1
                            container_depth = max(container_depth, 0)
                        continue

                    if is_end:
                        if record_start is None:
                            continue
                        depth -= 1
                        if depth > 0:
                            continue
                        element = buf[record_start:match.end()]
                        record_start, container_depth = None, 0
                        record = self._handle_element(element)
                    elif record_start is not None and container_depth > 0:
                        if not self_closing:
                            depth += 1
                        continue
                    elif record_start is not None:
                        # New top-level start while the previous one is open.
                        self._note_truncated()
                        record_start, container_depth = None, 0
                        if self.limit_reached and not self._count_unprocessed:
                            stop = True
                            break
                        record_start, depth = match.start(), 1
                        if self_closing:
                            record_start = None
                            record = self._handle_element(match.group(0))
                        else:
                            continue
                    elif self_closing:
                        record = self._handle_element(match.group(0))
                    else:
                        record_start, depth = match.start(), 1
                        continue

                    if record is not None:
                        yield record
                    if self.limit_reached and not self._count_unprocessed:
                        stop = True
                        break

                if stop or eof:
                    break

                cut = record_start if record_start is not None else buf.rfind(b"<", pos)
                if cut == -1:
                    cut = len(buf)
                buf = buf[cut:]
                pos = max(pos - cut, 0)
                if record_start is not None:
                    record_start -= cut

                chunk = self._read(fh)
                if chunk:
                    buf += chunk
                else:
                    eof = True

        if record_start is not None and not stop:
            self._note_truncated()

        logger.info(
            "decode_complete",
            file_type=self._file_type.value,
            total_seen=self.total_seen,
            decoded=self.decoded,
            malformed=self.malformed,
            unprocessed=self.unprocessed,
            elapsed_s=round(time.monotonic() - start, 1),
        )

    def _handle_element(self, element: bytes) -> CatalogRecord | None:
        self.total_seen += 1
        if self.limit_reached:
            self.unprocessed += 1
            return None
        try:
            record = self._convert(ET.fromstring(element))
        except ET.ParseError as exc:
            self._note_malformed(f"XML parse error: {exc}")
            return None
        except MalformedRecordError as exc:
            self._note_malformed(exc.message)
            return None
        except ValueError as exc:
            # pydantic.ValidationError is a ValueError.
            self._note_malformed(f"Invalid field value: {exc}")
            return None

        self.decoded += 1
        if self.decoded % _PROGRESS_EVERY == 0:
            logger.info(
                "decode_progress",
                file_type=self._file_type.value,
                decoded=self.decoded,
                malformed=self.malformed,
            )
        return record

    def _note_truncated(self) -> None:
        self.total_seen += 1
        if self.limit_reached:
            self.unprocessed += 1
            return
        self._note_malformed(f"Unterminated <{self._file_type.element_name}> element")

    def _note_malformed(self, message: str) -> None:
        self.malformed += 1
        entry = f"record #{self.total_seen}: {message}"
        if len(self.errors) < self._max_errors:
            self.errors.append(entry)
        logger.warning(
            "malformed_record",
            file_type=self._file_type.value,
            position=self.total_seen,
            error=message,
        )
