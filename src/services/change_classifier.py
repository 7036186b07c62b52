"""Split a batch of decoded records into insert / update / skip sets.

The baseline is the ``ExistingHashIndex`` loaded once per file type per
run: ``{natural_key: content_hash}`` as stored before the run started.

Rules:
    * key absent from the index            → insert
    * key present, stored hash differs     → update
    * key present, stored hash is equal    → skip

When the same natural key occurs several times in one batch, its last
occurrence decides the set and every occurrence lands in that set.  The
three sets therefore partition the input and no key ever appears in two
of them; the writer's upsert order keeps the last occurrence.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from src.models.catalog import CatalogRecord, NaturalKey
from src.models.ingestion import ClassifiedBatch
from src.services.content_hash import with_content_hash

_INSERT = "insert"
_UPDATE = "update"
_SKIP = "skip"


def _decide(record: CatalogRecord, existing: Mapping[NaturalKey, str]) -> str:
    stored = existing.get(record.natural_key())
    if stored is None:
        return _INSERT
    if stored != record.content_hash:
        return _UPDATE
    return _SKIP


def classify(
    incoming: Sequence[CatalogRecord],
    existing: Mapping[NaturalKey, str],
) -> ClassifiedBatch:
    """Classify ``incoming`` against ``existing`` hashes.

    Records without a ``content_hash`` are hashed on the fly.  The input
    order is preserved within each output set.
    """
    hashed = [r if r.content_hash else with_content_hash(r) for r in incoming]

    decision_by_key: dict[NaturalKey, str] = {}
    for record in hashed:
        decision_by_key[record.natural_key()] = _decide(record, existing)

    batch = ClassifiedBatch()
    targets = {_INSERT: batch.insert, _UPDATE: batch.update, _SKIP: batch.skip}
    for record in hashed:
        targets[decision_by_key[record.natural_key()]].append(record)
    return batch
