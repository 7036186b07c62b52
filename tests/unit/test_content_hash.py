"""Unit tests for src.services.content_hash."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from src.models.catalog import (
    ArtistRecord,
    ImageRef,
    LabelRecord,
    NamedRef,
    ReleaseRecord,
    Track,
)
from src.services.content_hash import (
    content_hash,
    hash_fields,
    is_valid_hash,
    with_content_hash,
)

_scalars = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-(10**9), max_value=10**9),
    st.text(max_size=20),
)
_field_maps = st.dictionaries(st.text(min_size=1, max_size=10), _scalars, max_size=8)


# ======================================================================
# hash_fields
# ======================================================================


class TestHashFields:
    @given(_field_maps)
    def test_deterministic(self, fields: dict) -> None:
        assert hash_fields(fields) == hash_fields(dict(fields))

    @given(_field_maps)
    def test_independent_of_key_order(self, fields: dict) -> None:
        reversed_fields = dict(reversed(list(fields.items())))
        assert hash_fields(fields) == hash_fields(reversed_fields)

    @given(_field_maps)
    def test_digest_is_lowercase_sha256_hex(self, fields: dict) -> None:
        assert is_valid_hash(hash_fields(fields))

    def test_tuple_and_list_hash_equally(self) -> None:
        assert hash_fields({"urls": ("a", "b")}) == hash_fields({"urls": ["a", "b"]})

    def test_integral_float_hashes_like_int(self) -> None:
        assert hash_fields({"year": 1995.0}) == hash_fields({"year": 1995})

    def test_list_order_matters(self) -> None:
        assert hash_fields({"urls": ["a", "b"]}) != hash_fields({"urls": ["b", "a"]})

    def test_none_differs_from_empty_string(self) -> None:
        assert hash_fields({"profile": None}) != hash_fields({"profile": ""})

    def test_nested_mapping_keys_sorted(self) -> None:
        assert hash_fields({"x": {"b": 1, "a": 2}}) == hash_fields({"x": {"a": 2, "b": 1}})


# ======================================================================
# Record hashing
# ======================================================================


class TestContentHash:
    def test_equal_records_hash_equally(self) -> None:
        a = ArtistRecord(discogs_id=1, name="Jeff Mills", profile="Detroit")
        b = ArtistRecord(discogs_id=1, name="Jeff Mills", profile="Detroit")
        assert content_hash(a) == content_hash(b)

    def test_changed_field_changes_hash(self) -> None:
        a = ArtistRecord(discogs_id=1, name="Jeff Mills", profile="Detroit")
        b = ArtistRecord(discogs_id=1, name="Jeff Mills", profile="Detroit, Michigan")
        assert content_hash(a) != content_hash(b)

    def test_nested_collections_not_hashed(self) -> None:
        plain = ArtistRecord(discogs_id=1, name="Jeff Mills")
        decorated = ArtistRecord(
            discogs_id=1,
            name="Jeff Mills",
            aliases=[NamedRef(id=2, name="The Wizard")],
            images=[ImageRef(type="primary", uri="https://img/1.jpg")],
        )
        assert content_hash(plain) == content_hash(decorated)

    def test_existing_hash_ignored(self) -> None:
        record = LabelRecord(discogs_id=5, name="Axis")
        tagged = record.with_hash("0" * 64)
        assert content_hash(tagged) == content_hash(record)

    def test_parent_label_is_hashed(self) -> None:
        orphan = LabelRecord(discogs_id=5, name="Axis")
        child = LabelRecord(discogs_id=5, name="Axis", parent_label=NamedRef(id=1, name="Root"))
        assert content_hash(orphan) != content_hash(child)

    def test_release_tracklist_is_hashed(self) -> None:
        a = ReleaseRecord(discogs_id=9, title="Waveform", tracklist=[Track(position="A1")])
        b = ReleaseRecord(
            discogs_id=9, title="Waveform", tracklist=[Track(position="A1", title="Changed")]
        )
        assert content_hash(a) != content_hash(b)

    def test_with_content_hash_tags_copy(self) -> None:
        record = ArtistRecord(discogs_id=1, name="Jeff Mills")
        tagged = with_content_hash(record)
        assert record.content_hash is None
        assert tagged.content_hash == content_hash(record)
        assert tagged.natural_key() == record.natural_key()


class TestIsValidHash:
    def test_rejects_uppercase_and_short(self) -> None:
        assert not is_valid_hash("A" * 64)
        assert not is_valid_hash("a" * 63)
        assert not is_valid_hash(None)

    def test_accepts_sha256_hex(self) -> None:
        assert is_valid_hash("0123456789abcdef" * 4)
