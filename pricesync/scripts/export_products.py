#!/usr/bin/env python3
"""
Product Export Script
Exports stored products (with region and competitor data) to CSV or XLSX.

Usage:
    python -m pricesync.scripts.export_products --format xlsx --client-id 1
    python -m pricesync.scripts.export_products --strategy filtered --param numericField=productPrice --param minValue=10
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from pricesync.db.session import SessionLocal
from pricesync.export.service import ExportService
from pricesync.tracking.progress import ProgressTracker

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def parse_extra_params(values):
    """KEY=VALUE pairs into a dict."""
    params = {}
    for item in values or []:
        if "=" not in item:
            raise ValueError(f"Expected KEY=VALUE, got {item!r}")
        key, value = item.split("=", 1)
        params[key.strip()] = value
    return params


def main():
    """Main function to run an export."""
    parser = argparse.ArgumentParser(description="Export stored products to CSV or XLSX")
    parser.add_argument("--format", type=str, default="csv", help="csv or xlsx (default: csv)")
    parser.add_argument("--client-id", type=int, default=None, help="Restrict to one client")
    parser.add_argument("--entity-type", type=str, default="product", help="Entity type (default: product)")
    parser.add_argument(
        "--strategy", type=str, default="simple", help="Processing strategy: simple or filtered"
    )
    parser.add_argument("--fields", type=str, default=None, help="Comma-separated field ids to export")
    parser.add_argument("--no-composite", action="store_true", help="Skip region and competitor data")
    parser.add_argument("--output-dir", type=str, default=None, help="Directory for the artifact")
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        help="Extra export parameter KEY=VALUE (filters, delimiter, header_<field>)",
    )

    args = parser.parse_args()

    try:
        params = {
            "format": args.format,
            "entityType": args.entity_type,
            "strategyId": args.strategy,
        }
        if args.fields:
            params["fields"] = args.fields
        if args.no_composite:
            params["composite"] = "false"
        params.update(parse_extra_params(args.param))

        service = ExportService(SessionLocal, ProgressTracker(SessionLocal), export_directory=args.output_dir)
        result = service.export(params, client_id=args.client_id)

        logger.info("=" * 60)
        logger.info("EXPORT COMPLETE")
        logger.info("=" * 60)
        logger.info(f"Operation id: {result['operation_id']}")
        logger.info(f"Rows: {result['rows']}")
        logger.info(f"File: {result['file_path']} ({result['size_bytes']} bytes)")

    except Exception as e:
        logger.error(f"Export failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
