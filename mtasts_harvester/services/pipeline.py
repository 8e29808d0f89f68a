"""
TLS-RPT report pipeline

validate folder -> collect attachments -> extract archives -> aggregate
JSON reports into CSV, deleting consumed intermediate files unless told not to.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence

from mtasts_harvester.config import Settings
from mtasts_harvester.errors import ReportWriteError, WorkingFolderNotWritableError
from mtasts_harvester.ingest.collector import AttachmentCollector
from mtasts_harvester.services.aggregation import ReportAggregator, find_json_reports, write_report
from mtasts_harvester.services.extraction import (
    ArchiveExtractor,
    ExtractionBackend,
    GzipLibraryBackend,
    SevenZipBackend,
    find_compressed_reports,
)
from mtasts_harvester.services.path_validator import is_path_writable

logger = logging.getLogger(__name__)


class PipelineStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_INPUT = "no_input"
    WRITE_FAILED = "write_failed"


@dataclass
class PipelineOptions:
    working_dir: Path
    report_file: Path = Path("./mtastsreport.csv")
    report_only: bool = False
    no_cleanup: bool = False


@dataclass
class PipelineResult:
    status: PipelineStatus
    report_file: Optional[Path] = None
    collected: int = 0
    extracted: int = 0
    extraction_failures: int = 0
    reports_parsed: int = 0
    parse_failures: int = 0
    rows_written: int = 0
    deleted: List[Path] = field(default_factory=list)
    error: Optional[str] = None


def default_backends(settings: Settings) -> List[ExtractionBackend]:
    """Extraction backends in priority order"""
    return [
        SevenZipBackend(settings.seven_zip_path or None, timeout=settings.command_timeout),
        GzipLibraryBackend(),
    ]


class ReportPipeline:
    """Single-pass harvest of TLS-RPT reports into a CSV file"""

    def __init__(
        self,
        settings: Settings,
        collector: Optional[AttachmentCollector] = None,
        backends: Optional[Sequence[ExtractionBackend]] = None,
    ):
        self.settings = settings
        self.collector = collector
        self.extractor = ArchiveExtractor(
            backends if backends is not None else default_backends(settings),
            settings.compressed_suffixes,
        )
        self.aggregator = ReportAggregator(settings.policy_string_separator)

    def run(self, options: PipelineOptions) -> PipelineResult:
        """
        Run the pipeline once

        Raises:
            WorkingFolderNotWritableError: before any side effect, if the
                working folder cannot be written to
        """
        working_dir = Path(options.working_dir)

        if not is_path_writable(working_dir):
            raise WorkingFolderNotWritableError(working_dir)

        result = PipelineResult(status=PipelineStatus.COMPLETED)

        if not options.report_only:
            if self.collector is None:
                raise ValueError("An attachment collector is required unless running report-only")

            saved = self.collector.collect(working_dir)
            if saved is None:
                logger.warning("Folder selection cancelled; nothing to do")
                result.status = PipelineStatus.CANCELLED
                return result
            result.collected = len(saved)

            self._extract(working_dir, options, result)
        else:
            logger.info("Report-only mode: skipping attachment collection and extraction")

        json_files = find_json_reports(working_dir)
        if not json_files:
            logger.warning(f"No JSON report files found in {working_dir}")
            result.status = PipelineStatus.NO_INPUT
            return result

        aggregation = self.aggregator.aggregate(json_files)
        result.reports_parsed = len(aggregation.consumed)
        result.parse_failures = len(aggregation.failed)

        try:
            result.report_file = write_report(aggregation.rows, options.report_file)
        except ReportWriteError as e:
            logger.error(e.message)
            logger.error(
                "JSON report files were left in place. Rerun with --report-only "
                "to build the report without collecting attachments again."
            )
            result.status = PipelineStatus.WRITE_FAILED
            result.error = e.message
            return result

        result.rows_written = len(aggregation.rows)

        if not options.no_cleanup:
            result.deleted.extend(self._delete(aggregation.consumed))

        return result

    def _extract(self, working_dir: Path, options: PipelineOptions, result: PipelineResult):
        archives = find_compressed_reports(working_dir, self.settings.compressed_suffixes)
        if not archives:
            logger.warning(f"No compressed report files found in {working_dir}")
            return

        extraction = self.extractor.extract_all(working_dir, archives)
        result.extracted = len(extraction.extracted)
        result.extraction_failures = len(extraction.failed)

        if not options.no_cleanup:
            result.deleted.extend(self._delete([archive for archive, _ in extraction.extracted]))

    def _delete(self, paths: List[Path]) -> List[Path]:
        deleted = []
        for path in paths:
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Could not delete {path.name}: {e}", extra={"file_name": path.name})
                continue
            deleted.append(path)

        if deleted:
            logger.info(f"Deleted {len(deleted)} consumed files")
        return deleted
