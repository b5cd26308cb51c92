"""receiptsync CLI interface."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from receiptsync import __version__
from receiptsync.core.config import get_settings
from receiptsync.core.dependencies import Components, build_components
from receiptsync.core.logging_config import LoggingConfig, setup_logging
from receiptsync.models import RawDocument
from receiptsync.services.orchestrator import IngestError, SyncError
from receiptsync.services.repository import PersistenceError

if TYPE_CHECKING:
    from receiptsync.models import ReceiptRecord
    from receiptsync.services.reconciliation import ReconciliationReport

logger = logging.getLogger(__name__)

MAX_DISPLAY_ITEMS = 5
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB

# Extensions accepted by ingest
SUPPORTED_FORMATS = {".pdf", ".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp"}


class CLIError(Exception):
    """Base exception for CLI errors."""


class FileValidationError(CLIError):
    """Raised when an input file cannot be ingested."""


def record_to_dict(record: ReceiptRecord) -> dict[str, Any]:
    """JSON-friendly view of a record."""
    return record.model_dump(
        mode="json", exclude={"raw_document", "last_sent_subtotal"}
    )


class ReceiptSyncCLI:
    """Command handlers sharing one set of pipeline components."""

    def __init__(self, components: Components | None = None) -> None:
        """Initialize the CLI application.

        Args:
            components: Prebuilt components; built from settings when omitted
        """
        self.settings = components.settings if components else get_settings()
        self._components = components

    @property
    def components(self) -> Components:
        """Lazily wired pipeline."""
        if self._components is None:
            self._components = build_components(self.settings)
        return self._components

    async def cleanup(self) -> None:
        """Finish pending uploads and close the HTTP client."""
        if self._components is not None:
            await self._components.orchestrator.close()

    def validate_file(self, file_path: Path) -> None:
        """Check that a receipt file exists and is a supported size and type."""
        if not file_path.exists():
            raise FileValidationError(f"File not found: {file_path}")

        if not file_path.is_file():
            raise FileValidationError(f"Not a file: {file_path}")

        suffix = file_path.suffix.lower()
        if suffix not in SUPPORTED_FORMATS:
            supported = ", ".join(sorted(SUPPORTED_FORMATS))
            raise FileValidationError(
                f"Unsupported file format '{suffix}'. Supported: {supported}"
            )

        file_size = file_path.stat().st_size
        if file_size == 0:
            raise FileValidationError(f"File is empty: {file_path}")
        if file_size > MAX_FILE_SIZE:
            size_mb = file_size / (1024 * 1024)
            raise FileValidationError(f"File too large ({size_mb:.1f}MB). Max: 10MB")

    def format_receipt(self, record: ReceiptRecord) -> str:
        """Human-readable block for one receipt."""
        date = (
            record.transaction_date.strftime("%m/%d/%Y")
            if record.transaction_date
            else "Unknown"
        )
        lines = [
            "\n=== Receipt ===",
            f"Receipt #: {record.receipt_number or '(not synced)'}",
            f"Vendor: {record.vendor_name}",
            f"Date: {date}",
            f"Subtotal: ${record.subtotal:.2f}",
            f"Tax: ${record.tax:.2f}",
            f"Total: ${record.total:.2f}",
            f"Status: {record.status.value}",
        ]
        if record.store_location:
            lines.append(f"Location: {record.store_location}")
        if record.notes:
            lines.append(f"Notes: {record.notes}")
        if record.line_items:
            lines.append(f"Items ({len(record.line_items)}):")
            lines.extend(
                f"  - {item.name}: ${item.unit_price:.2f}"
                for item in record.line_items[:MAX_DISPLAY_ITEMS]
            )
            hidden = len(record.line_items) - MAX_DISPLAY_ITEMS
            if hidden > 0:
                lines.append(f"  ... and {hidden} more")
        return "\n".join(lines)

    def format_report(self, report: ReconciliationReport) -> str:
        """Human-readable reconciliation summary."""
        lines = [
            "\n=== Sync Result ===",
            f"Inserted: {len(report.inserted)}",
            f"Updated: {len(report.updated)}",
            f"Kept local changes: {len(report.kept_local)}",
            f"Failed: {len(report.failed)}",
        ]
        lines.extend(f"  ! {key}: {error}" for key, error in report.failed.items())
        return "\n".join(lines)

    async def ingest_command(self, args: argparse.Namespace) -> None:
        """Handle the ingest command."""
        file_path = Path(args.receipt)
        try:
            self.validate_file(file_path)
            document = RawDocument.from_path(file_path)
            record = await self.components.orchestrator.ingest(
                document, wait_for_upload=True
            )
            if args.output == "json":
                print(json.dumps(record_to_dict(record), indent=2))  # noqa: T201
            else:
                print(self.format_receipt(record))  # noqa: T201
        except FileValidationError as e:
            print(f"\nError: {e}", file=sys.stderr)  # noqa: T201
            sys.exit(2)
        except IngestError as e:
            print(f"\nError: {e}", file=sys.stderr)  # noqa: T201
            sys.exit(1)

    async def pull_command(self, args: argparse.Namespace) -> None:
        """Handle the pull command."""
        try:
            report = await self.components.orchestrator.pull()
            if args.output == "json":
                print(report.model_dump_json(indent=2))  # noqa: T201
            else:
                print(self.format_report(report))  # noqa: T201
            if report.failed:
                sys.exit(1)
        except SyncError as e:
            print(f"\nError: {e}", file=sys.stderr)  # noqa: T201
            sys.exit(3)

    async def list_command(self, args: argparse.Namespace) -> None:
        """Handle the list command."""
        records = self.components.repository.list(args.filter)
        if args.output == "json":
            print(  # noqa: T201
                json.dumps([record_to_dict(r) for r in records], indent=2)
            )
            return

        if not records:
            print("No receipts found.")  # noqa: T201
            return
        for record in records:
            date = (
                record.transaction_date.strftime("%Y-%m-%d")
                if record.transaction_date
                else "----------"
            )
            number = record.receipt_number or "(draft)"
            print(  # noqa: T201
                f"{date}  {number:<24} {record.vendor_name:<24} ${record.total:>9.2f}"
            )

    async def delete_command(self, args: argparse.Namespace) -> None:
        """Handle the delete command."""
        repository = self.components.repository
        record = repository.find_by_key(args.receipt_number) or repository.get(
            args.receipt_number
        )
        if record is None:
            print(  # noqa: T201
                f"\nError: Receipt {args.receipt_number} not found", file=sys.stderr
            )
            sys.exit(1)

        try:
            remote_deleted = await self.components.orchestrator.delete(record)
        except PersistenceError as e:
            print(f"\nError: {e}", file=sys.stderr)  # noqa: T201
            sys.exit(1)

        print(f"Deleted {args.receipt_number}")  # noqa: T201
        if not remote_deleted:
            print(  # noqa: T201
                "Warning: remote delete failed; it may reappear on the next pull",
                file=sys.stderr,
            )

    async def clear_command(self, args: argparse.Namespace) -> None:
        """Handle the clear command (local store only)."""
        if not args.yes:
            print(  # noqa: T201
                "Refusing to clear the local store without --yes", file=sys.stderr
            )
            sys.exit(2)
        removed = self.components.orchestrator.delete_all_local()
        print(f"Removed {removed} local receipts")  # noqa: T201

    async def analytics_command(self, args: argparse.Namespace) -> None:
        """Handle the analytics command."""
        summary = self.components.analytics.summary()
        if args.output == "json":
            print(summary.model_dump_json(indent=2))  # noqa: T201
            return

        lines = [
            "\n=== Spending ===",
            f"Receipts: {summary.receipt_count}",
            f"Total: ${summary.total_spending:.2f}",
            "\nBy month:",
            *(f"  {month}: ${amount:.2f}" for month, amount in summary.by_month.items()),
            "\nBy category:",
            *(
                f"  {category}: ${amount:.2f}"
                for category, amount in summary.by_category.items()
            ),
        ]
        print("\n".join(lines))  # noqa: T201


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        description="receiptsync - ingest receipts and keep them in sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  receiptsync ingest costco.pdf
  receiptsync pull
  receiptsync list --filter costco
  receiptsync delete 21134300501862307241523

Supported formats: PDF, PNG, JPEG, TIFF, BMP
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"receiptsync {__version__}",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug output to the console",
    )

    output_parent = argparse.ArgumentParser(add_help=False)
    output_parent.add_argument(
        "--output",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ingest_parser = subparsers.add_parser(
        "ingest",
        parents=[output_parent],
        help="Read a receipt and upload it",
        description="Extract a receipt locally, store it, then upload it",
    )
    ingest_parser.add_argument("receipt", type=str, help="Path to a PDF or image")

    subparsers.add_parser(
        "pull",
        parents=[output_parent],
        help="Fetch remote receipts",
        description="Download the remote receipt list and reconcile it locally",
    )

    list_parser = subparsers.add_parser(
        "list", parents=[output_parent], help="List local receipts"
    )
    list_parser.add_argument(
        "--filter",
        default=None,
        help="Match vendor, receipt number, notes, location or item names",
    )

    delete_parser = subparsers.add_parser(
        "delete", help="Delete a receipt locally and on the server"
    )
    delete_parser.add_argument(
        "receipt_number", help="Receipt number (or local id for drafts)"
    )

    clear_parser = subparsers.add_parser(
        "clear", help="Delete every local receipt (server untouched)"
    )
    clear_parser.add_argument("--yes", action="store_true", help="Confirm")

    subparsers.add_parser(
        "analytics", parents=[output_parent], help="Show spending totals"
    )

    return parser


async def async_main(argv: list[str] | None = None) -> None:
    """Async main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(
        LoggingConfig(
            log_level="DEBUG" if args.verbose else settings.log_level,
            log_format="text",
            log_path=Path(settings.log_dir),
            enable_console_output=args.verbose,
        )
    )

    cli = ReceiptSyncCLI()
    commands = {
        "ingest": cli.ingest_command,
        "pull": cli.pull_command,
        "list": cli.list_command,
        "delete": cli.delete_command,
        "clear": cli.clear_command,
        "analytics": cli.analytics_command,
    }
    command = commands.get(args.command)
    if command is None:
        parser.error(f"Unknown command: {args.command}")
    try:
        await command(args)
    finally:
        await cli.cleanup()


def main() -> None:
    """Main entry point for the CLI."""
    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user", file=sys.stderr)  # noqa: T201
        sys.exit(130)
    except Exception as e:
        logger.exception("Fatal error in main")
        print(f"\nFatal error: {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)


if __name__ == "__main__":
    main()
