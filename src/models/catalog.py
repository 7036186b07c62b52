"""Catalog record models decoded from the Discogs monthly XML dumps.

Defines the :class:`FileType` enum (one per dump file), the fixed
dependency order in which the files must be written, and one frozen
Pydantic v2 model per record variant.  Records exist only transiently
during a run: the decoder produces them, the hash engine tags them and
the batch writer projects them into the store's tables.

Every variant exposes the same small contract instead of relying on
runtime reflection:

    natural_key()      -> the stable external identifier (Discogs ID or name)
    hashable_fields()  -> the canonical content fields, and only those
    with_hash(digest)  -> a copy tagged with its content hash

``hashable_fields`` deliberately leaves out ``content_hash`` itself and the
nested relationship collections (aliases, members, images, credits, ...).
Those change independently of the parent and would otherwise mark an
untouched artist as updated.  The release tracklist is the exception: a
track has no identity of its own, so it is part of the release's content.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar, Union

from pydantic import BaseModel, ConfigDict, Field


class FileType(str, Enum):  # noqa: UP042
    """The four entity files published in every monthly dump."""

    LABELS = "labels"
    ARTISTS = "artists"
    MASTERS = "masters"
    RELEASES = "releases"

    @property
    def element_name(self) -> str:
        """Tag of one top-level record element (``<artist>`` for artists)."""
        return self.value[:-1]

    @property
    def dump_filename(self) -> str:
        """Filename of the artifact under the period directory."""
        return f"{self.value}.xml.gz"


# Releases reference labels, artists and masters by foreign key; masters
# reference artists.  Writes must follow this order.
PROCESSING_ORDER: tuple[FileType, ...] = (
    FileType.LABELS,
    FileType.ARTISTS,
    FileType.MASTERS,
    FileType.RELEASES,
)

DEPENDENCIES: dict[FileType, frozenset[FileType]] = {
    FileType.LABELS: frozenset(),
    FileType.ARTISTS: frozenset(),
    FileType.MASTERS: frozenset({FileType.ARTISTS}),
    FileType.RELEASES: frozenset({FileType.LABELS, FileType.ARTISTS, FileType.MASTERS}),
}


def parse_file_type(value: str | FileType) -> FileType:
    """Coerce user input (``"Artists "``) to a FileType; raises ValueError."""
    if isinstance(value, FileType):
        return value
    return FileType(value.strip().lower())


def order_file_types(file_types: list[FileType] | tuple[FileType, ...]) -> list[FileType]:
    """Return the requested types deduplicated and sorted into dependency order."""
    requested = set(file_types)
    return [ft for ft in PROCESSING_ORDER if ft in requested]


# ---------------------------------------------------------------------------
# Nested sub-entities (relationship collections, never hashed on the parent)
# ---------------------------------------------------------------------------

class NamedRef(BaseModel):
    """A reference by ID and display name: alias, member, group, sublabel."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str = ""


class ImageRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = ""
    uri: str = ""
    uri150: str = ""
    width: int | None = None
    height: int | None = None


class CreditArtist(BaseModel):
    """An artist credit on a master or release (``<artists><artist>``)."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str = ""
    # Artist name variation used on this credit.
    anv: str = ""
    join: str = ""


class ReleaseLabelRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str = ""
    catno: str = ""


class Format(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    qty: str = ""
    text: str = ""
    descriptions: list[str] = Field(default_factory=list)


class Video(BaseModel):
    model_config = ConfigDict(frozen=True)

    src: str = ""
    title: str = ""
    description: str = ""
    duration: int | None = None
    embed: bool = False


class Track(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: str = ""
    title: str = ""
    duration: str = ""


# ---------------------------------------------------------------------------
# Record variants
# ---------------------------------------------------------------------------

class _CatalogRecordBase(BaseModel):
    """Shared behaviour for every record variant."""

    model_config = ConfigDict(frozen=True)

    file_type: ClassVar[FileType | None] = None

    content_hash: str | None = None

    def natural_key(self) -> int | str:
        raise NotImplementedError

    def hashable_fields(self) -> dict[str, Any]:
        raise NotImplementedError

    def with_hash(self, digest: str) -> _CatalogRecordBase:
        return self.model_copy(update={"content_hash": digest})


class ArtistRecord(_CatalogRecordBase):
    """Artist record from ``discogs_*_artists.xml``."""

    file_type: ClassVar[FileType | None] = FileType.ARTISTS

    discogs_id: int
    name: str
    real_name: str = ""
    profile: str = ""
    data_quality: str = ""
    urls: list[str] = Field(default_factory=list)
    name_variations: list[str] = Field(default_factory=list)
    aliases: list[NamedRef] = Field(default_factory=list)
    members: list[NamedRef] = Field(default_factory=list)
    groups: list[NamedRef] = Field(default_factory=list)
    images: list[ImageRef] = Field(default_factory=list)

    def natural_key(self) -> int:
        return self.discogs_id

    def hashable_fields(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "real_name": self.real_name,
            "profile": self.profile,
            "data_quality": self.data_quality,
            "urls": self.urls,
            "name_variations": self.name_variations,
        }


class LabelRecord(_CatalogRecordBase):
    """Label record from ``discogs_*_labels.xml``."""

    file_type: ClassVar[FileType | None] = FileType.LABELS

    discogs_id: int
    name: str
    contact_info: str = ""
    profile: str = ""
    data_quality: str = ""
    parent_label: NamedRef | None = None
    sublabels: list[NamedRef] = Field(default_factory=list)
    urls: list[str] = Field(default_factory=list)
    images: list[ImageRef] = Field(default_factory=list)

    def natural_key(self) -> int:
        return self.discogs_id

    def hashable_fields(self) -> dict[str, Any]:
        # The parent label is flattened to scalars: it is the label's own
        # placement in the hierarchy, not a nested collection.
        return {
            "name": self.name,
            "contact_info": self.contact_info,
            "profile": self.profile,
            "data_quality": self.data_quality,
            "parent_label_id": self.parent_label.id if self.parent_label else None,
            "parent_label_name": self.parent_label.name if self.parent_label else None,
            "urls": self.urls,
        }


class GenreRecord(_CatalogRecordBase):
    """A genre or style name collected from masters and releases.

    Has no numeric ID upstream, so the name itself is the natural key.
    """

    name: str

    def natural_key(self) -> str:
        return self.name

    def hashable_fields(self) -> dict[str, Any]:
        return {"name": self.name}


class MasterRecord(_CatalogRecordBase):
    """Master release record from ``discogs_*_masters.xml``."""

    file_type: ClassVar[FileType | None] = FileType.MASTERS

    discogs_id: int
    title: str
    main_release: int | None = None
    year: int | None = None
    notes: str = ""
    data_quality: str = ""
    artists: list[CreditArtist] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    styles: list[str] = Field(default_factory=list)
    videos: list[Video] = Field(default_factory=list)
    images: list[ImageRef] = Field(default_factory=list)

    def natural_key(self) -> int:
        return self.discogs_id

    def hashable_fields(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "main_release": self.main_release,
            "year": self.year,
            "notes": self.notes,
            "data_quality": self.data_quality,
            "genres": self.genres,
            "styles": self.styles,
        }

    def genre_records(self) -> list[GenreRecord]:
        return _genre_records(self.genres, self.styles)


class ReleaseRecord(_CatalogRecordBase):
    """Release record from ``discogs_*_releases.xml``."""

    file_type: ClassVar[FileType | None] = FileType.RELEASES

    discogs_id: int
    title: str
    status: str = ""
    country: str = ""
    released: str = ""
    notes: str = ""
    data_quality: str = ""
    master_id: int | None = None
    artists: list[CreditArtist] = Field(default_factory=list)
    labels: list[ReleaseLabelRef] = Field(default_factory=list)
    formats: list[Format] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    styles: list[str] = Field(default_factory=list)
    tracklist: list[Track] = Field(default_factory=list)
    images: list[ImageRef] = Field(default_factory=list)

    def natural_key(self) -> int:
        return self.discogs_id

    def hashable_fields(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "status": self.status,
            "country": self.country,
            "released": self.released,
            "notes": self.notes,
            "data_quality": self.data_quality,
            "master_id": self.master_id,
            "genres": self.genres,
            "styles": self.styles,
            "tracklist": [
                {"position": t.position, "title": t.title, "duration": t.duration}
                for t in self.tracklist
            ],
        }

    def genre_records(self) -> list[GenreRecord]:
        return _genre_records(self.genres, self.styles)


CatalogRecord = Union[ArtistRecord, LabelRecord, MasterRecord, ReleaseRecord, GenreRecord]

NaturalKey = Union[int, str]

RECORD_TYPES: dict[FileType, type[_CatalogRecordBase]] = {
    FileType.LABELS: LabelRecord,
    FileType.ARTISTS: ArtistRecord,
    FileType.MASTERS: MasterRecord,
    FileType.RELEASES: ReleaseRecord,
}


def _genre_records(genres: list[str], styles: list[str]) -> list[GenreRecord]:
    seen: dict[str, GenreRecord] = {}
    for name in [*genres, *styles]:
        if name and name not in seen:
            seen[name] = GenreRecord(name=name)
    return list(seen.values())
