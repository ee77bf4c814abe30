#!/usr/bin/env python3
"""
Invoice Reconciler - Main Entry Point.

Command-line access to the invoice lifecycle: submit a supplier document,
extract its line items, reconcile them against the vendor's catalog, post
the invoice and feed operator corrections back to vendor learning.

Usage:
    Command Line:
        python main.py submit --vendor "Little Valley Distribution" --file inv-1042.pdf
        python main.py extract 7
        python main.py reconcile 7 --export
        python main.py post 7
        python main.py correct --vendor-id 3 --field category \\
            --original "Byron Chai Tea 500g" --corrected Groceries
        python main.py history --item 12

    Python:
        from invoice_reconciler.pipeline import InvoicePipeline
        with InvoicePipeline.from_config() as pipeline:
            summary = pipeline.run_extraction(7)

Author: ML Engineering Team
Version: 1.0.0
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from config import ConfigurationManager
from invoice_reconciler.utils.exceptions import InvoiceReconcilerError
from invoice_reconciler.utils.logger import get_logger, setup_logger_from_config


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        description="Vendor invoice extraction and catalog reconciliation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    Full run for one document:
        python main.py submit --vendor "Trumps Pty Ltd" --file invoice.pdf --extract --reconcile

    Review before posting:
        python main.py export 7 --output review_7.xlsx
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to custom configuration file"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # submit
    submit = subparsers.add_parser("submit", help="Store a new invoice document")
    submit.add_argument("--vendor", "-v", required=True, help="Vendor name (created if new)")
    submit.add_argument("--file", "-f", required=True, help="PDF or image file")
    submit.add_argument("--extract", action="store_true", help="Run extraction right away")
    submit.add_argument("--reconcile", action="store_true", help="Reconcile after extraction")

    # extract / reconcile / post / export
    extract = subparsers.add_parser("extract", help="Recognize line items of an invoice")
    extract.add_argument("invoice_id", type=int)

    reconcile = subparsers.add_parser("reconcile", help="Match, price and update the catalog")
    reconcile.add_argument("invoice_id", type=int)
    reconcile.add_argument("--export", action="store_true", help="Write the review workbook afterwards")

    post = subparsers.add_parser("post", help="Finalize a reconciled invoice")
    post.add_argument("invoice_id", type=int)

    export = subparsers.add_parser("export", help="Write the review workbook")
    export.add_argument("invoice_id", type=int)
    export.add_argument("--output", "-o", default=None, help="Workbook filename")

    # learning
    correct = subparsers.add_parser("correct", help="Record a correction in vendor learning")
    correct.add_argument("--vendor-id", type=int, required=True)
    correct.add_argument("--field", required=True,
                         choices=["quantity", "unitCost", "category", "itemDescription"])
    correct.add_argument("--original", required=True, help="Extracted value (or item description)")
    correct.add_argument("--corrected", required=True, help="Corrected value")
    correct.add_argument("--confidence", type=float, default=None)

    # price history
    history = subparsers.add_parser("history", help="Show catalog price history")
    history.add_argument("--item", type=int, default=None, help="Catalog item id")
    history.add_argument("--invoice", type=int, default=None, help="Source invoice id")

    return parser.parse_args(argv)


def initialize_system(args: argparse.Namespace) -> ConfigurationManager:
    """
    Initialize configuration and logging.

    Returns:
        Initialized configuration manager.
    """
    config = ConfigurationManager(args.config)
    logger = setup_logger_from_config(level=args.log_level)

    logger.info("=" * 60)
    logger.info("INVOICE RECONCILER")
    logger.info("=" * 60)
    logger.info(f"Version: {config.get('project.version', '1.0.0')}")
    logger.info(f"Command: {args.command}")

    return config


def run_command(args: argparse.Namespace) -> int:
    """
    Execute one CLI command against a freshly wired pipeline.

    Returns:
        Exit code.
    """
    from invoice_reconciler.pipeline import InvoicePipeline

    logger = get_logger(__name__)

    with InvoicePipeline.from_config() as pipeline:
        if args.command == "submit":
            file_path = Path(args.file)
            if not file_path.exists():
                raise FileNotFoundError(f"Input file not found: {file_path}")

            vendor = pipeline.ensure_vendor(args.vendor)
            invoice_id = pipeline.submit_invoice(vendor.id, file_path.read_bytes(), file_path.name)
            print(f"Invoice {invoice_id} submitted for vendor {vendor.id} ({vendor.name})")

            if args.extract or args.reconcile:
                summary = pipeline.run_extraction(invoice_id)
                print(json.dumps(summary.to_dict(), indent=2, default=str))
                if args.reconcile and summary.item_count:
                    lines = pipeline.reconcile(invoice_id)
                    print(f"Reconciled {len(lines)} line(s)")

        elif args.command == "extract":
            summary = pipeline.run_extraction(args.invoice_id)
            print(json.dumps(summary.to_dict(), indent=2, default=str))

        elif args.command == "reconcile":
            lines = pipeline.reconcile(args.invoice_id)
            for line in lines:
                print(
                    f"{line.position + 1:>3}  {line.name[:40]:<40}  "
                    f"cost {line.effective_unit_cost_ex_gst}  sell {line.sell_inc_gst}  "
                    f"{line.notes or ''}"
                )
            if args.export:
                print(f"Review workbook: {pipeline.export_review(args.invoice_id)}")

        elif args.command == "post":
            invoice = pipeline.post_invoice(args.invoice_id)
            print(f"Invoice {invoice.id} posted, total inc GST {invoice.total_inc_gst}")

        elif args.command == "export":
            print(f"Review workbook: {pipeline.export_review(args.invoice_id, filename=args.output)}")

        elif args.command == "correct":
            result = pipeline.record_correction(
                args.vendor_id, args.field, args.original, args.corrected, args.confidence)
            if not result:
                logger.error(f"Correction not recorded: {result.error}")
                return 1
            print(f"Recorded {args.field} correction for vendor {args.vendor_id}")

        elif args.command == "history":
            entries = pipeline.get_price_history(catalog_item_id=args.item, invoice_id=args.invoice)
            for entry in entries:
                print(
                    f"item {entry.catalog_item_id}  cost {entry.cost_ex_gst}  markup {entry.markup}  "
                    f"sell inc {entry.sell_inc_gst}  invoice {entry.source_invoice_id}  {entry.changed_at}"
                )
            if not entries:
                print("No price history")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function - entry point for command-line execution.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    try:
        args = parse_arguments(argv)
        initialize_system(args)
        return run_command(args)

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except (InvoiceReconcilerError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 130

    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        if "--log-level" in sys.argv and "DEBUG" in sys.argv:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
