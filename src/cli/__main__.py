"""Allow ``python -m src.cli`` as a shortcut for ``python -m src.cli.ingest_dump``."""

from src.cli.ingest_dump import main

main()
