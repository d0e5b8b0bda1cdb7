"""Command-line entry point: `lexsync ingest|upload|sync|cleanup|serve`."""

import argparse
import logging
import mimetypes
import os
import sys
from typing import Optional, Sequence

from dotenv import load_dotenv

from lexsync.config.settings import get_settings
from lexsync.core.errors import CatalogError, ConfigurationError

logger = logging.getLogger("lexsync.cli")

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lexsync", description="Legal document ingestion and store reconciliation")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Search the catalog and ingest the results")
    ingest.add_argument("--query", "-q", help="Free-text query")
    ingest.add_argument("--court", help="Court id, e.g. scotus")
    ingest.add_argument("--after", help="Filed on or after YYYY-MM-DD")
    ingest.add_argument("--before", help="Filed on or before YYYY-MM-DD")
    ingest.add_argument("--recent-days", type=int, help="Shortcut for --after N days ago")
    ingest.add_argument("--max-results", type=int, default=100)

    upload = sub.add_parser("upload", help="Ingest local files")
    upload.add_argument("paths", nargs="+")
    upload.add_argument("--title", help="Title for a single uploaded file")

    sync = sub.add_parser("sync", help="Run one reconciliation pass")
    sync.add_argument("--dry-run", action="store_true", help="Report drift without repairing it")
    sync.add_argument("--status", action="store_true", help="Only print store counts and drift")

    cleanup = sub.add_parser("cleanup", help="Analyze or purge legacy placeholder artifacts")
    cleanup.add_argument("--purge", action="store_true", help="Delete blobs carrying the placeholder marker")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser

def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    args = _build_parser().parse_args(argv)

    if args.command == "serve":
        import uvicorn
        uvicorn.run("lexsync.api.main:app", host=args.host, port=args.port)
        return 0

    from lexsync.api.main import configure_logging
    from lexsync.core.container import build_services
    from lexsync.models.catalog import CatalogFilters

    settings = get_settings()
    configure_logging(settings.log_level)

    try:
        services = build_services(settings)

        if args.command == "ingest":
            if args.recent_days:
                filters = services.catalog.recent_filters(args.recent_days, max_results=args.max_results)
                filters.query, filters.court = args.query, args.court
            else:
                filters = CatalogFilters(
                    query=args.query,
                    court=args.court,
                    date_filed_after=args.after,
                    date_filed_before=args.before,
                    max_results=args.max_results
                )
            services.catalog.ensure_configured()
            items = services.catalog.search(filters)
            result = services.pipeline.ingest_catalog(items)

        elif args.command == "upload":
            jobs = []
            for path in args.paths:
                with open(path, "rb") as f:
                    data = f.read()
                content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
                title = args.title if len(args.paths) == 1 else None
                jobs.append(services.pipeline.ingest_upload(data, os.path.basename(path), content_type, title=title))
            for job in jobs:
                print(job.model_dump_json(indent=2))
            return 1 if any(j.stage.value == "failed" for j in jobs) else 0

        elif args.command == "sync":
            if args.status:
                result = services.reconciliation.status()
            else:
                result = services.reconciliation.reconcile(dry_run=args.dry_run)

        else:
            result = services.cleanup.purge() if args.purge else services.cleanup.analyze()

    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except CatalogError as e:
        print(f"Catalog error: {e}", file=sys.stderr)
        return 1

    print(result.model_dump_json(indent=2))
    return 0

if __name__ == "__main__":
    sys.exit(main())
