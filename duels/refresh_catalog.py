#!/usr/bin/env python3
"""
Codeforces Duels — Problemset Snapshot
========================================
Fetches the full Codeforces problemset (``problemset.problems``) and writes it
as a JSON snapshot the server can load at startup with ``--catalog``, so the
selector does not need to hit the API on the first duel.

Usage:
    python -m duels.refresh_catalog [--output catalog.json]

Example:
    python -m duels.refresh_catalog --output data/catalog.json
    python app.py --catalog data/catalog.json
"""

import argparse
import sys
from pathlib import Path

from duels.catalog import ProblemCatalog
from duels.codeforces import CodeforcesClient
from duels.config import Settings
from duels.errors import UpstreamError
from duels.log import configure_logging


def main():
    parser = argparse.ArgumentParser(
        description="Fetch the Codeforces problemset into a JSON snapshot"
    )
    parser.add_argument(
        "--output", type=str, default=None,
        help="Output JSON path (default: $DUELS_CATALOG_PATH or catalog.json)",
    )
    args = parser.parse_args()

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    output_path = args.output or settings.catalog_path or "catalog.json"

    catalog = ProblemCatalog()
    try:
        summary = catalog.refresh(CodeforcesClient(settings))
    except UpstreamError as exc:
        print(f"❌ Failed to fetch the problemset: {exc}", file=sys.stderr)
        sys.exit(1)

    catalog.save(output_path)

    rated = sum(1 for p in catalog.all() if p.rating is not None)
    print(f"\n✅ Exported {summary['totalProblems']} problems ({rated} rated)")
    print(f"📁 Saved to: {Path(output_path).resolve()}")


if __name__ == "__main__":
    main()
