#!/usr/bin/env python3
"""
File Import Script
Imports a CSV or XLSX file into the database through the import pipeline.

Usage:
    python -m pricesync.scripts.import_file data/prices.csv --client-id 1 --batch-size 500

Detection can be overridden:
    python -m pricesync.scripts.import_file data/prices.csv --delimiter ";" --encoding cp1251
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from pricesync.db.models import Base
from pricesync.db.session import SessionLocal, engine
from pricesync.ingestion.format_detector import FormatDetector
from pricesync.tasks.runner import create_import_operation, run_import
from pricesync.tracking.progress import ProgressTracker

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_params(args: argparse.Namespace) -> dict:
    """Submission parameters from the command line, string-keyed like an upload form."""
    params = {
        "entityType": args.entity_type,
        "batchSize": str(args.batch_size),
        "duplicateHandling": args.duplicates,
        "cancellationCheck": args.cancellation_check,
    }
    optional = {
        "strategyId": args.strategy,
        "templateId": args.template_id,
        "encoding": args.encoding,
        "delimiter": args.delimiter,
        "quoteChar": args.quote_char,
        "dataSource": args.data_source,
    }
    params.update({key: str(value) for key, value in optional.items() if value is not None})
    if args.no_header:
        params["hasHeader"] = "false"
    return params


def main():
    """Main function to run a file import."""
    parser = argparse.ArgumentParser(description="Import product data from a CSV or XLSX file")
    parser.add_argument("file_path", type=str, help="Path to the file to import")
    parser.add_argument("--client-id", type=int, default=None, help="Owning client id")
    parser.add_argument("--entity-type", type=str, default="product", help="Entity type (default: product)")
    parser.add_argument("--strategy", type=str, default=None, help="Import strategy id (default: auto)")
    parser.add_argument("--template-id", type=int, default=None, help="Mapping template id")
    parser.add_argument(
        "--batch-size", type=int, default=500, help="Rows per committed batch (default: 500)"
    )
    parser.add_argument(
        "--duplicates",
        choices=["override", "skip", "ignore"],
        default="override",
        help="Handling of products already stored (default: override)",
    )
    parser.add_argument(
        "--cancellation-check",
        choices=["batch", "row"],
        default="batch",
        help="Where cancellation is polled (default: batch)",
    )
    parser.add_argument("--encoding", type=str, default=None, help="Force the file encoding")
    parser.add_argument("--delimiter", type=str, default=None, help="Force the column delimiter")
    parser.add_argument("--quote-char", type=str, default=None, help="Force the quote character")
    parser.add_argument("--no-header", action="store_true", help="The file has no header row")
    parser.add_argument("--data-source", type=str, default=None, help="Data source label for products")
    parser.add_argument(
        "--create-tables", action="store_true", help="Create missing database tables first"
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Detect the format and mapping only, without database writes"
    )

    args = parser.parse_args()

    # Validate file exists
    file_path = Path(args.file_path)
    if not file_path.exists():
        logger.error(f"File not found: {file_path}")
        sys.exit(1)

    params = build_params(args)
    logger.info(f"Starting import of {file_path}")
    logger.info(f"Parameters: {params}")

    try:
        if args.dry_run:
            logger.info("Running in DRY RUN mode - no database writes")
            from pricesync.ingestion.field_mapping import FieldMappingEngine

            detected = FormatDetector().detect_file(
                file_path,
                encoding=args.encoding,
                delimiter=args.delimiter,
                quote_char=args.quote_char,
                has_header=False if args.no_header else None,
            )
            logger.info(
                f"Detected: type={detected.file_type}, encoding={detected.encoding}, "
                f"delimiter={detected.delimiter!r}, header={detected.has_header}"
            )
            suggestion = FieldMappingEngine(args.entity_type).suggest_mapping(detected.sample_headers)
            for header, field_id in suggestion.items():
                logger.info(f"  {header} -> {field_id}")
            unmatched = [h for h in detected.sample_headers if h not in suggestion]
            if unmatched:
                logger.warning(f"Unmatched columns: {unmatched}")
            return

        if args.create_tables:
            Base.metadata.create_all(bind=engine)

        operation_id = create_import_operation(str(file_path), params, args.client_id)
        tracker = ProgressTracker(SessionLocal)
        tracker.notifier.subscribe(
            "import-progress",
            lambda event: logger.info(
                f"Progress: {event['processed']}/{event['total']} ({event['progress']}%)"
            ),
        )
        stats = run_import(operation_id, str(file_path), params, tracker=tracker)

        # Display results
        logger.info("=" * 60)
        logger.info(f"IMPORT {stats['status'].upper()}")
        logger.info("=" * 60)
        logger.info(f"Operation id: {operation_id}")
        logger.info(f"Rows read: {stats['rows_read']}")
        logger.info(f"Processed rows: {stats['processed']}")
        logger.info(f"Persisted entities: {stats['persisted']}")
        logger.info(f"Failed rows: {stats['failed_rows']}")
        logger.info(f"Processing time: {stats.get('duration_seconds', 0):.2f} seconds")

        if stats.get("errors"):
            logger.warning(f"Errors encountered: {len(stats['errors'])}")
            for error in stats["errors"][:5]:  # Show first 5 errors
                logger.warning(f"  - {error}")

    except Exception as e:
        logger.error(f"Import failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
