"""
Command line entry points

Usage:
    # Collect reports from a mailbox folder, extract them and build the CSV
    mtasts-report C:\\Reports\\tlsrpt

    # Rebuild the CSV from JSON files already in the folder
    mtasts-report C:\\Reports\\tlsrpt --report-only --reportfile C:\\Reports\\tls.csv

    # Keep the .gz and .json files after the run
    mtasts-report C:\\Reports\\tlsrpt --no-cleanup

    # Stamp hybrid proxy addresses on remote mailboxes
    repair-recipients remote-mailbox --hybrid-domain contoso.mail.onmicrosoft.com
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from mtasts_harvester.config import LOG_LEVELS, Settings, get_settings
from mtasts_harvester.errors import HarvesterError, WorkingFolderNotWritableError
from mtasts_harvester.ingest.collector import AttachmentCollector
from mtasts_harvester.ingest.imap_client import IMAPClient
from mtasts_harvester.ingest.outlook_client import OutlookMailStore
from mtasts_harvester.logging_config import setup_logging
from mtasts_harvester.services.pipeline import PipelineOptions, PipelineStatus, ReportPipeline
from mtasts_harvester.services.recipients import (
    ExchangeDirectory,
    RecipientKind,
    RecipientRepairService,
    RepairStatus,
)

logger = logging.getLogger(__name__)


def build_mail_store(settings: Settings):
    """Mail store for the configured mail source"""
    if settings.mail_source == "imap":
        return IMAPClient(
            host=settings.email_host,
            port=settings.email_port,
            user=settings.email_user,
            password=settings.email_password,
            use_ssl=settings.email_use_ssl,
        )
    return OutlookMailStore()


def _configure_logging(settings: Settings, log_level: Optional[str]):
    setup_logging(
        log_level=log_level or settings.log_level,
        log_dir=settings.log_dir or None,
        enable_json=settings.log_json,
    )


def report_main(argv: Optional[List[str]] = None) -> int:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="mtasts-report",
        description="Harvest TLS-RPT reports from a mailbox folder into a CSV report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument(
        'working_dir',
        help='Folder where attachments are saved and extracted (must be writable)'
    )
    parser.add_argument(
        '--reportfile',
        default=settings.report_file,
        help=f'CSV report file (default: {settings.report_file})'
    )
    parser.add_argument(
        '--report-only',
        action='store_true',
        help='Skip collection and extraction; report on JSON files already in the folder'
    )
    parser.add_argument(
        '--no-cleanup',
        action='store_true',
        help='Keep compressed and JSON files after they are consumed'
    )
    parser.add_argument(
        '--mail-source',
        choices=['outlook', 'imap'],
        default=settings.mail_source,
        help=f'Where to collect attachments from (default: {settings.mail_source})'
    )
    parser.add_argument(
        '--log-level',
        type=str.upper,
        choices=LOG_LEVELS,
        help='Logging level (default: from settings)'
    )

    args = parser.parse_args(argv)
    _configure_logging(settings, args.log_level)

    if args.mail_source != settings.mail_source:
        settings = settings.model_copy(update={"mail_source": args.mail_source})

    collector = None
    if not args.report_only:
        collector = AttachmentCollector(build_mail_store(settings))

    pipeline = ReportPipeline(settings, collector)
    options = PipelineOptions(
        working_dir=Path(args.working_dir),
        report_file=Path(args.reportfile),
        report_only=args.report_only,
        no_cleanup=args.no_cleanup,
    )

    try:
        result = pipeline.run(options)
    except WorkingFolderNotWritableError as e:
        print(f"ERROR: {e.message}", file=sys.stderr)
        return 1
    except HarvesterError as e:
        logger.error(e.message)
        print(f"ERROR: {e.message}", file=sys.stderr)
        return 1

    if result.status == PipelineStatus.WRITE_FAILED:
        print(f"ERROR: {result.error}", file=sys.stderr)
        print("Rerun with --report-only to avoid collecting attachments again.", file=sys.stderr)
        return 1

    if result.status == PipelineStatus.CANCELLED:
        print("No folder selected. Nothing was collected.")
        return 0

    if result.status == PipelineStatus.NO_INPUT:
        print(f"WARNING: No JSON report files found in {options.working_dir}")
        return 0

    print(f"Reports parsed:   {result.reports_parsed}")
    print(f"Reports skipped:  {result.parse_failures}")
    print(f"Rows written:     {result.rows_written}")
    print(f"Report file:      {result.report_file}")
    return 0


def repair_main(argv: Optional[List[str]] = None) -> int:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="repair-recipients",
        description="Re-stamp hybrid proxy addresses on recipients that do not inherit the email address policy"
    )
    parser.add_argument(
        'kind',
        choices=[kind.value for kind in RecipientKind],
        help='Recipient type to repair'
    )
    parser.add_argument(
        '--hybrid-domain',
        default=settings.hybrid_domain,
        help='Routing domain, e.g. contoso.mail.onmicrosoft.com (default: from settings)'
    )
    parser.add_argument('--dry-run', action='store_true', help='List recipients without changing them')
    parser.add_argument(
        '--log-level',
        type=str.upper,
        choices=LOG_LEVELS,
        help='Logging level (default: from settings)'
    )

    args = parser.parse_args(argv)
    _configure_logging(settings, args.log_level)

    if not args.hybrid_domain:
        logger.warning("No hybrid domain configured; every policy-disabled recipient will be repaired")

    directory = ExchangeDirectory(
        shell=settings.powershell_executable,
        timeout=settings.command_timeout,
        preamble=settings.exchange_preamble,
    )
    service = RecipientRepairService(directory, args.hybrid_domain)

    try:
        results = service.repair_all(RecipientKind(args.kind), dry_run=args.dry_run)
    except HarvesterError as e:
        print(f"ERROR: {e.message}", file=sys.stderr)
        return 1

    counts = {status: 0 for status in RepairStatus}
    for result in results:
        counts[result.status] += 1
        if result.status == RepairStatus.FAILED:
            print(f"! {result.identity}: {result.message}")

    print(f"Repaired:      {counts[RepairStatus.REPAIRED]}")
    print(f"Would repair:  {counts[RepairStatus.WOULD_REPAIR]}")
    print(f"Skipped:       {counts[RepairStatus.SKIPPED]}")
    print(f"Failed:        {counts[RepairStatus.FAILED]}")

    return 1 if counts[RepairStatus.FAILED] else 0


if __name__ == "__main__":
    sys.exit(report_main())
