"""
TLS-RPT report schema (RFC 8460)

Report format: JSON, usually delivered gzipped as an email attachment.
DNS record: _smtp._tls.domain TXT "v=TLSRPTv1; rua=mailto:reports@domain"
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class PolicyType(str, Enum):
    """TLS policy types"""
    TLSA = "tlsa"
    STS = "sts"
    NO_POLICY = "no-policy-found"


class DateRange(BaseModel):
    start_datetime: str = Field(alias="start-datetime", min_length=1)
    end_datetime: str = Field(alias="end-datetime", min_length=1)

    class Config:
        populate_by_name = True


class PolicyDetails(BaseModel):
    policy_type: PolicyType = Field(alias="policy-type")
    policy_string: List[str] = Field(default_factory=list, alias="policy-string")
    policy_domain: str = Field(alias="policy-domain")
    mx_host: Optional[List[str] | str] = Field(default=None, alias="mx-host")

    class Config:
        populate_by_name = True


class PolicySummary(BaseModel):
    total_successful_session_count: int = Field(alias="total-successful-session-count", ge=0)
    total_failure_session_count: int = Field(alias="total-failure-session-count", ge=0)

    class Config:
        populate_by_name = True


class FailureDetail(BaseModel):
    """Failure detail from report, parsed but not part of the flat output"""
    result_type: str = Field(alias="result-type")
    sending_mta_ip: Optional[str] = Field(default=None, alias="sending-mta-ip")
    receiving_mx_hostname: Optional[str] = Field(default=None, alias="receiving-mx-hostname")
    receiving_ip: Optional[str] = Field(default=None, alias="receiving-ip")
    failed_session_count: int = Field(default=0, alias="failed-session-count", ge=0)
    additional_information: Optional[str] = Field(default=None, alias="additional-information")
    failure_reason_code: Optional[str] = Field(default=None, alias="failure-reason-code")

    class Config:
        populate_by_name = True


class PolicyRecord(BaseModel):
    """One evaluated policy within a report"""
    policy: PolicyDetails
    summary: PolicySummary
    failure_details: List[FailureDetail] = Field(default_factory=list, alias="failure-details")

    class Config:
        populate_by_name = True


class TlsReportDocument(BaseModel):
    """A parsed TLS-RPT JSON report"""
    organization_name: str = Field(alias="organization-name")
    date_range: DateRange = Field(alias="date-range")
    contact_info: Optional[str] = Field(default=None, alias="contact-info")
    report_id: str = Field(alias="report-id", min_length=1)
    policies: List[PolicyRecord] = Field(default_factory=list)

    class Config:
        populate_by_name = True


class ReportRow(BaseModel):
    """
    One flattened CSV row: the document-level fields of a report joined
    with exactly one of its policy records.

    Field order is the column order of the CSV report.
    """
    organization_name: str = Field(alias="organization-name")
    start_datetime: str = Field(alias="start-datetime")
    end_datetime: str = Field(alias="end-datetime")
    contact_info: str = Field(alias="contact-info")
    report_id: str = Field(alias="report-id")
    policy_type: str = Field(alias="policy-type")
    policy_string: str = Field(alias="policy-string")
    policy_domain: str = Field(alias="policy-domain")
    total_successful_session_count: int = Field(alias="total-successful-session-count")
    total_failure_session_count: int = Field(alias="total-failure-session-count")

    class Config:
        populate_by_name = True

    def to_csv_dict(self) -> dict:
        return self.model_dump(by_alias=True)


REPORT_COLUMNS: List[str] = [
    field.alias for field in ReportRow.model_fields.values()
]
