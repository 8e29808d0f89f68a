"""
Test Configuration and Fixtures

Every test that touches the filesystem gets its own temporary working folder.
External tools (7-Zip, PowerShell, Outlook, IMAP) are always mocked.
"""

import gzip
import json
import shutil
import tempfile
from pathlib import Path

import pytest

from mtasts_harvester.config import Settings, get_settings


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached per process; reset them around every test"""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture(scope="function")
def working_dir():
    """Create temporary working folder"""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


def _policy(
    domain="example.com",
    policy_type="sts",
    policy_string=None,
    success=1000,
    failure=5,
):
    if policy_string is None:
        policy_string = ["version: STSv1", "mode: enforce", "mx: mx.example.com", "max_age: 86400"]
    return {
        "policy": {
            "policy-type": policy_type,
            "policy-string": policy_string,
            "policy-domain": domain,
            "mx-host": [f"mx.{domain}"],
        },
        "summary": {
            "total-successful-session-count": success,
            "total-failure-session-count": failure,
        },
        "failure-details": [
            {
                "result-type": "certificate-expired",
                "sending-mta-ip": "203.0.113.1",
                "receiving-mx-hostname": f"mx.{domain}",
                "failed-session-count": failure,
            }
        ] if failure else [],
    }


@pytest.fixture
def make_policy():
    """Build one RFC 8460 policy entry"""
    return _policy


@pytest.fixture
def make_report():
    """Build an RFC 8460 TLS-RPT report dict"""

    def _make(
        org_name="Example Corp",
        report_id="rpt-2024-001",
        contact="mailto:tls-reports@example.com",
        start_datetime="2024-01-15T00:00:00Z",
        end_datetime="2024-01-15T23:59:59Z",
        policies=None,
    ):
        report = {
            "organization-name": org_name,
            "date-range": {
                "start-datetime": start_datetime,
                "end-datetime": end_datetime,
            },
            "report-id": report_id,
            "policies": [_policy()] if policies is None else policies,
        }
        if contact is not None:
            report["contact-info"] = contact
        return report

    return _make


@pytest.fixture
def write_json_report(working_dir):
    """Write a report dict as <name> in the working folder"""

    def _write(report, name="report.json"):
        path = working_dir / name
        path.write_text(json.dumps(report), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_gz_report(working_dir):
    """Write a report dict gzipped as <name> in the working folder"""

    def _write(report, name="report.json.gz"):
        path = working_dir / name
        path.write_bytes(gzip.compress(json.dumps(report).encode("utf-8")))
        return path

    return _write
