"""Command-line tools for the Discogs catalog ingestion worker.

- ``python -m src.cli.ingest_dump`` downloads monthly dumps, ingests them
  into the catalog store and manages each month's processing state.
"""
