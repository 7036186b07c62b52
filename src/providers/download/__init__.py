"""Dump download providers.

DiscogsDumpDownloader streams a period's CHECKSUM.txt and ``.xml.gz``
files over httpx and verifies each artifact's SHA-256 digest.
"""

from src.providers.download.discogs_dump_downloader import DiscogsDumpDownloader

__all__ = ["DiscogsDumpDownloader"]
