"""Ingest service entrypoint.

Subscribes to device reading channels on Redis, persists readings and
raises alerts for values outside their thresholds.

Usage: python -m vitals.ingest
"""

from vitals.ingest.service import run
from vitals.lib.service import run_service


def main() -> None:
    """Start the ingest service."""
    run_service(run, name="ingest")


if __name__ == "__main__":
    main()
