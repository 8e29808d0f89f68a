"""
TLS-RPT report aggregation

Parses the JSON reports in a working folder and flattens them into one CSV
row per evaluated policy.
"""
import csv
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple, Union

from pydantic import ValidationError

from mtasts_harvester.errors import ReportParseError, ReportWriteError
from mtasts_harvester.schemas import REPORT_COLUMNS, ReportRow, TlsReportDocument

logger = logging.getLogger(__name__)

POLICY_STRING_SEPARATOR = " , "


def find_json_reports(directory: Union[str, Path]) -> List[Path]:
    """Find JSON report files directly inside a directory"""
    return sorted(
        p for p in Path(directory).iterdir()
        if p.is_file() and p.suffix.lower() == ".json"
    )


def load_report(path: Union[str, Path]) -> TlsReportDocument:
    """
    Load and validate a TLS-RPT JSON report

    Raises:
        ReportParseError: if the file is not valid JSON or misses required fields
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8-sig') as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ReportParseError(path, f"invalid JSON: {e}")
    except OSError as e:
        raise ReportParseError(path, f"cannot read file: {e}")

    if not isinstance(data, dict):
        raise ReportParseError(path, "top-level JSON value is not an object")

    try:
        return TlsReportDocument.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise ReportParseError(path, problems)


def flatten_report(
    document: TlsReportDocument,
    separator: str = POLICY_STRING_SEPARATOR,
) -> List[ReportRow]:
    """
    Flatten a report into one row per policy record

    Document-level fields are repeated on every row. A report without
    policies yields no rows.
    """
    rows = []
    for record in document.policies:
        rows.append(ReportRow(
            organization_name=document.organization_name,
            start_datetime=document.date_range.start_datetime,
            end_datetime=document.date_range.end_datetime,
            contact_info=document.contact_info or "",
            report_id=document.report_id,
            policy_type=record.policy.policy_type.value,
            policy_string=separator.join(record.policy.policy_string),
            policy_domain=record.policy.policy_domain,
            total_successful_session_count=record.summary.total_successful_session_count,
            total_failure_session_count=record.summary.total_failure_session_count,
        ))
    return rows


@dataclass
class AggregationResult:
    rows: List[ReportRow] = field(default_factory=list)
    consumed: List[Path] = field(default_factory=list)
    failed: List[Tuple[Path, str]] = field(default_factory=list)


class ReportAggregator:
    """Combine the JSON reports of a working folder into CSV rows"""

    def __init__(self, separator: str = POLICY_STRING_SEPARATOR):
        self.separator = separator

    def aggregate(self, json_files: List[Path]) -> AggregationResult:
        """
        Parse and flatten JSON reports

        Files that fail to parse are logged and skipped; the remaining
        reports still contribute rows.
        """
        result = AggregationResult()

        for path in json_files:
            try:
                document = load_report(path)
            except ReportParseError as e:
                logger.warning(f"Skipping {path.name}: {e.message}", extra={"file_name": path.name, "stage": "aggregate"})
                result.failed.append((path, e.message))
                continue

            rows = flatten_report(document, self.separator)
            if not rows:
                logger.warning(
                    f"Report {document.report_id} in {path.name} contains no policies; no rows added",
                    extra={"file_name": path.name, "stage": "aggregate"}
                )

            result.rows.extend(rows)
            result.consumed.append(path)

        logger.info(
            f"Aggregated {len(result.rows)} rows from {len(result.consumed)} reports "
            f"({len(result.failed)} skipped)"
        )
        return result


def write_report(rows: List[ReportRow], report_path: Union[str, Path]) -> Path:
    """
    Write rows to a UTF-8 CSV file with a header row

    Raises:
        ReportWriteError: if the file cannot be written
    """
    report_path = Path(report_path)

    try:
        with open(report_path, 'w', encoding='utf-8', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=REPORT_COLUMNS)
            writer.writeheader()
            for row in rows:
                writer.writerow(row.to_csv_dict())
    except OSError as e:
        raise ReportWriteError(report_path, str(e))

    logger.info(f"Wrote {len(rows)} rows to {report_path}")
    return report_path
