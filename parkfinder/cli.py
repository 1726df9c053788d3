"""parkfinder-ingest: run the ingestion pipeline from the command line.

    parkfinder-ingest --sources sf_meters,osm --strategy exact --dry-run
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from parkfinder.config import Settings
from parkfinder.dedup import make_deduplicator
from parkfinder.ingestion import IngestionOrchestrator, build_default_sources
from parkfinder.logging_config import setup_logging
from parkfinder.storage import MemorySpotStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="parkfinder-ingest", description="Ingest and merge parking data sources")
    ap.add_argument("--sources", default=None, help="comma-separated source names (default: all)")
    ap.add_argument("--strategy", choices=["grid", "exact"], default=None, help="dedup strategy")
    ap.add_argument("--file", default=None, help="also load spots from this CSV/GeoJSON/JSON file")
    ap.add_argument("--dry-run", action="store_true", help="fetch and merge, but do not persist")
    ap.add_argument("--out", default=None, help="write the merged spots to this JSON file")
    ap.add_argument("--log-level", default=None)
    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    overrides = {}
    if args.file:
        overrides["local_file_path"] = args.file
    settings = Settings(**overrides)
    # stdout carries the JSON summary
    setup_logging(args.log_level or settings.log_level, stream=sys.stderr)

    selected = [s.strip() for s in args.sources.split(",") if s.strip()] if args.sources else None
    store = MemorySpotStore()
    try:
        orchestrator = IngestionOrchestrator(
            build_default_sources(settings),
            store=store,
            deduplicator=make_deduplicator(args.strategy, settings),
            settings=settings,
        )
        report = orchestrator.ingest(selected, persist=not args.dry_run)
    except ValueError as e:
        print(f"parkfinder-ingest: error: {e}", file=sys.stderr)
        return 2

    if args.out:
        spots = [s.model_dump(mode="json") for s in report.final_spots]
        Path(args.out).write_text(json.dumps(spots, indent=2) + "\n", encoding="utf-8")
        logger.info("Wrote %d spots to %s", len(spots), args.out)

    summary = {
        **report.model_dump(mode="json", exclude={"final_spots"}),
        "final_spot_count": report.final_spot_count,
        "dry_run": args.dry_run,
    }
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
