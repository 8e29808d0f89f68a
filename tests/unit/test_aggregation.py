"""Unit tests for TLS-RPT parsing, flattening and CSV output"""
import csv
import json

import pytest

from mtasts_harvester.errors import ReportParseError, ReportWriteError
from mtasts_harvester.schemas import REPORT_COLUMNS, PolicyType, TlsReportDocument
from mtasts_harvester.services.aggregation import (
    ReportAggregator,
    find_json_reports,
    flatten_report,
    load_report,
    write_report,
)


def _read_csv(path):
    with open(path, newline='', encoding='utf-8') as f:
        return list(csv.reader(f))


@pytest.mark.unit
class TestLoadReport:
    """Test loading and validating JSON reports"""

    def test_load_valid_report(self, make_report, write_json_report):
        path = write_json_report(make_report())

        document = load_report(path)

        assert isinstance(document, TlsReportDocument)
        assert document.organization_name == "Example Corp"
        assert document.report_id == "rpt-2024-001"
        assert document.contact_info == "mailto:tls-reports@example.com"
        assert document.date_range.start_datetime == "2024-01-15T00:00:00Z"
        assert len(document.policies) == 1
        assert document.policies[0].policy.policy_type == PolicyType.STS

    def test_contact_info_is_optional(self, make_report, write_json_report):
        path = write_json_report(make_report(contact=None))

        assert load_report(path).contact_info is None

    def test_invalid_json_raises_parse_error(self, working_dir):
        path = working_dir / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ReportParseError, match="invalid JSON"):
            load_report(path)

    def test_non_object_raises_parse_error(self, working_dir):
        path = working_dir / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(ReportParseError, match="not an object"):
            load_report(path)

    def test_missing_required_field(self, make_report, write_json_report):
        report = make_report()
        del report["report-id"]
        path = write_json_report(report)

        with pytest.raises(ReportParseError, match="report-id") as exc_info:
            load_report(path)

        assert exc_info.value.path == path

    def test_missing_policy_summary(self, make_report, write_json_report):
        report = make_report()
        del report["policies"][0]["summary"]
        path = write_json_report(report)

        with pytest.raises(ReportParseError, match="summary"):
            load_report(path)

    def test_negative_session_count_rejected(self, make_report, make_policy, write_json_report):
        path = write_json_report(make_report(policies=[make_policy(success=-1)]))

        with pytest.raises(ReportParseError):
            load_report(path)

    def test_unknown_policy_type_rejected(self, make_report, make_policy, write_json_report):
        path = write_json_report(make_report(policies=[make_policy(policy_type="bogus")]))

        with pytest.raises(ReportParseError, match="policy-type"):
            load_report(path)

    def test_utf8_bom_accepted(self, make_report, working_dir):
        path = working_dir / "bom.json"
        path.write_bytes(b"\xef\xbb\xbf" + json.dumps(make_report()).encode("utf-8"))

        assert load_report(path).report_id == "rpt-2024-001"


@pytest.mark.unit
class TestFlattenReport:
    """Test one-row-per-policy flattening"""

    def test_one_row_per_policy(self, make_report, make_policy):
        document = TlsReportDocument.model_validate(make_report(policies=[
            make_policy(domain="a.com", success=5, failure=0),
            make_policy(domain="b.com", success=2, failure=1),
            make_policy(domain="c.com", policy_type="no-policy-found", policy_string=[]),
        ]))

        rows = flatten_report(document)

        assert len(rows) == 3
        assert [r.policy_domain for r in rows] == ["a.com", "b.com", "c.com"]
        assert {r.report_id for r in rows} == {"rpt-2024-001"}
        assert {r.organization_name for r in rows} == {"Example Corp"}
        assert {r.start_datetime for r in rows} == {"2024-01-15T00:00:00Z"}
        assert (rows[0].total_successful_session_count, rows[0].total_failure_session_count) == (5, 0)
        assert (rows[1].total_successful_session_count, rows[1].total_failure_session_count) == (2, 1)
        assert rows[2].policy_type == "no-policy-found"

    def test_policy_string_joined(self, make_report, make_policy):
        document = TlsReportDocument.model_validate(make_report(policies=[
            make_policy(policy_string=["v=TLSRPTv1", "rua=mailto:x@y"]),
        ]))

        rows = flatten_report(document)

        assert rows[0].policy_string == "v=TLSRPTv1 , rua=mailto:x@y"

    def test_empty_policy_string(self, make_report, make_policy):
        document = TlsReportDocument.model_validate(make_report(policies=[make_policy(policy_string=[])]))

        assert flatten_report(document)[0].policy_string == ""

    def test_custom_separator(self, make_report, make_policy):
        document = TlsReportDocument.model_validate(make_report(policies=[
            make_policy(policy_string=["a", "b"]),
        ]))

        assert flatten_report(document, separator="|")[0].policy_string == "a|b"

    def test_no_policies_yields_no_rows(self, make_report):
        document = TlsReportDocument.model_validate(make_report(policies=[]))

        assert flatten_report(document) == []

    def test_missing_contact_becomes_empty_string(self, make_report):
        document = TlsReportDocument.model_validate(make_report(contact=None))

        assert flatten_report(document)[0].contact_info == ""


@pytest.mark.unit
class TestReportAggregator:
    """Test aggregation across files"""

    def test_find_json_reports_filters_by_extension(self, working_dir):
        (working_dir / "a.json").write_text("{}")
        (working_dir / "B.JSON").write_text("{}")
        (working_dir / "c.json.gz").write_bytes(b"")
        (working_dir / "notes.txt").write_text("")
        (working_dir / "sub.json").mkdir()

        names = [p.name for p in find_json_reports(working_dir)]

        assert names == ["B.JSON", "a.json"]

    def test_rows_follow_file_then_record_order(self, make_report, make_policy, write_json_report):
        first = write_json_report(make_report(report_id="R1", policies=[
            make_policy(domain="a.com"), make_policy(domain="b.com"),
        ]), name="1.json")
        second = write_json_report(make_report(report_id="R2", policies=[
            make_policy(domain="c.com"),
        ]), name="2.json")

        result = ReportAggregator().aggregate([first, second])

        assert [(r.report_id, r.policy_domain) for r in result.rows] == [
            ("R1", "a.com"), ("R1", "b.com"), ("R2", "c.com"),
        ]
        assert result.consumed == [first, second]
        assert result.failed == []

    def test_malformed_file_is_skipped(self, make_report, write_json_report, working_dir):
        broken = working_dir / "broken.json"
        broken.write_text("{", encoding="utf-8")
        good = write_json_report(make_report(report_id="R1"), name="good.json")

        result = ReportAggregator().aggregate([broken, good])

        assert [r.report_id for r in result.rows] == ["R1"]
        assert result.consumed == [good]
        assert len(result.failed) == 1
        assert result.failed[0][0] == broken

    def test_report_without_policies_is_consumed(self, make_report, write_json_report):
        path = write_json_report(make_report(policies=[]))

        result = ReportAggregator().aggregate([path])

        assert result.rows == []
        assert result.consumed == [path]


@pytest.mark.unit
class TestWriteReport:
    """Test CSV output"""

    def test_header_and_rows(self, make_report, make_policy, working_dir):
        document = TlsReportDocument.model_validate(make_report(policies=[
            make_policy(domain="a.com", policy_string=["v=TLSRPTv1", "rua=mailto:x@y"], success=5, failure=0),
        ]))
        output = working_dir / "out.csv"

        write_report(flatten_report(document), output)

        rows = _read_csv(output)
        assert rows[0] == [
            "organization-name", "start-datetime", "end-datetime", "contact-info", "report-id",
            "policy-type", "policy-string", "policy-domain",
            "total-successful-session-count", "total-failure-session-count",
        ]
        assert rows[0] == REPORT_COLUMNS
        assert rows[1] == [
            "Example Corp", "2024-01-15T00:00:00Z", "2024-01-15T23:59:59Z",
            "mailto:tls-reports@example.com", "rpt-2024-001", "sts",
            "v=TLSRPTv1 , rua=mailto:x@y", "a.com", "5", "0",
        ]

    def test_empty_rows_writes_header_only(self, working_dir):
        output = working_dir / "out.csv"

        write_report([], output)

        assert _read_csv(output) == [REPORT_COLUMNS]

    def test_non_ascii_written_as_utf8(self, make_report, working_dir):
        document = TlsReportDocument.model_validate(make_report(org_name="Société Générale"))
        output = working_dir / "out.csv"

        write_report(flatten_report(document), output)

        assert "Société Générale" in output.read_text(encoding="utf-8")

    def test_unwritable_path_raises(self, working_dir):
        with pytest.raises(ReportWriteError) as exc_info:
            write_report([], working_dir / "missing" / "out.csv")

        assert exc_info.value.error_code == "WRITE_ERROR"
