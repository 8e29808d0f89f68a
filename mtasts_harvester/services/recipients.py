"""
Exchange recipient repair

Recipients whose email address policy inheritance is disabled never receive
the hybrid proxy address (user@<tenant>.mail.onmicrosoft.com) needed for
cross-premises mail routing. Repair turns inheritance on so the policy
stamps the address, then puts the original primary SMTP address back and
turns inheritance off again.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from mtasts_harvester.errors import PowerShellError
from mtasts_harvester.services.powershell import quote, run_powershell, run_powershell_json

logger = logging.getLogger(__name__)


class RecipientKind(str, Enum):
    """Recipient types and their cmdlet noun"""
    MAILBOX = "mailbox"
    REMOTE_MAILBOX = "remote-mailbox"

    @property
    def noun(self) -> str:
        return {
            RecipientKind.MAILBOX: "Mailbox",
            RecipientKind.REMOTE_MAILBOX: "RemoteMailbox",
        }[self]


class Recipient(BaseModel):
    identity: str = Field(alias="Identity")
    primary_smtp_address: str = Field(alias="PrimarySmtpAddress")
    email_address_policy_enabled: bool = Field(alias="EmailAddressPolicyEnabled")
    email_addresses: List[str] = Field(default_factory=list, alias="EmailAddresses")

    class Config:
        populate_by_name = True

    @field_validator('email_addresses', mode='before')
    @classmethod
    def ensure_list(cls, v):
        # ConvertTo-Json collapses one-element arrays to a scalar
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    def has_proxy_in(self, domain: str) -> bool:
        """True if any SMTP proxy address belongs to domain"""
        suffix = f"@{domain.lower()}"
        for address in self.email_addresses:
            _, _, smtp = address.rpartition(":")
            if smtp.lower().endswith(suffix):
                return True
        return False


_SELECT = (
    "Select-Object "
    "@{Name='Identity';Expression={$_.Identity.ToString()}},"
    "@{Name='PrimarySmtpAddress';Expression={$_.PrimarySmtpAddress.ToString()}},"
    "EmailAddressPolicyEnabled,"
    "@{Name='EmailAddresses';Expression={@($_.EmailAddresses | ForEach-Object { $_.ToString() })}}"
)


class ExchangeDirectory:
    """Exchange Management Shell access to recipient objects"""

    def __init__(self, shell: str = "powershell", timeout: Optional[int] = None, preamble: str = ""):
        self.shell = shell
        self.timeout = timeout
        self.preamble = preamble

    def _json(self, command: str):
        return run_powershell_json(command, shell=self.shell, timeout=self.timeout, preamble=self.preamble)

    def _run(self, command: str) -> str:
        return run_powershell(command, shell=self.shell, timeout=self.timeout, preamble=self.preamble)

    def _parse(self, data) -> List[Recipient]:
        if data is None:
            return []
        if isinstance(data, dict):
            data = [data]
        try:
            return [Recipient.model_validate(item) for item in data]
        except ValidationError as e:
            raise PowerShellError(f"Unexpected recipient data: {e}")

    def find_policy_disabled(self, kind: RecipientKind) -> List[Recipient]:
        """Recipients of a kind with email address policy inheritance disabled"""
        command = (
            f"ConvertTo-Json -Depth 3 -InputObject @(Get-{kind.noun} -ResultSize Unlimited "
            f"-Filter \"EmailAddressPolicyEnabled -eq '$false'\" | {_SELECT})"
        )
        return self._parse(self._json(command))

    def get_recipient(self, kind: RecipientKind, identity: str) -> Recipient:
        command = f"ConvertTo-Json -Depth 3 -InputObject @(Get-{kind.noun} -Identity {quote(identity)} | {_SELECT})"
        recipients = self._parse(self._json(command))
        if len(recipients) != 1:
            raise PowerShellError(f"Expected one recipient for {identity}, got {len(recipients)}")
        return recipients[0]

    def set_policy_inheritance(self, kind: RecipientKind, identity: str, enabled: bool):
        flag = "$true" if enabled else "$false"
        self._run(f"Set-{kind.noun} -Identity {quote(identity)} -EmailAddressPolicyEnabled {flag}")

    def set_primary_address(self, kind: RecipientKind, identity: str, address: str):
        """Restore a primary SMTP address, which requires inheritance to be disabled"""
        self._run(
            f"Set-{kind.noun} -Identity {quote(identity)} "
            f"-EmailAddressPolicyEnabled $false -PrimarySmtpAddress {quote(address)}"
        )


class RepairStatus(str, Enum):
    REPAIRED = "repaired"
    SKIPPED = "skipped"
    WOULD_REPAIR = "would_repair"
    FAILED = "failed"


@dataclass
class RepairResult:
    identity: str
    status: RepairStatus
    message: str = ""


class RecipientRepairService:
    """Stamp the hybrid proxy address on recipients that do not inherit the address policy"""

    def __init__(self, directory: ExchangeDirectory, hybrid_domain: str = ""):
        self.directory = directory
        self.hybrid_domain = hybrid_domain

    def needs_repair(self, recipient: Recipient) -> bool:
        if not self.hybrid_domain:
            return True
        return not recipient.has_proxy_in(self.hybrid_domain)

    def repair(self, kind: RecipientKind, recipient: Recipient) -> RepairResult:
        identity = recipient.identity
        original_primary = recipient.primary_smtp_address

        self.directory.set_policy_inheritance(kind, identity, True)
        self.directory.set_primary_address(kind, identity, original_primary)

        if not self.hybrid_domain:
            return RepairResult(identity, RepairStatus.REPAIRED)

        updated = self.directory.get_recipient(kind, identity)
        if not updated.has_proxy_in(self.hybrid_domain):
            return RepairResult(
                identity,
                RepairStatus.FAILED,
                f"no @{self.hybrid_domain} proxy address after re-enabling the policy",
            )
        if updated.primary_smtp_address.lower() != original_primary.lower():
            return RepairResult(
                identity,
                RepairStatus.FAILED,
                f"primary address is {updated.primary_smtp_address}, expected {original_primary}",
            )

        return RepairResult(identity, RepairStatus.REPAIRED)

    def repair_all(self, kind: RecipientKind, dry_run: bool = False) -> List[RepairResult]:
        """
        Repair every policy-disabled recipient of a kind

        Failures on one recipient are logged and do not stop the others.
        """
        recipients = self.directory.find_policy_disabled(kind)
        logger.info(f"Found {len(recipients)} {kind.value} recipients with address policy disabled")

        results = []
        for recipient in recipients:
            identity = recipient.identity

            if not self.needs_repair(recipient):
                results.append(RepairResult(identity, RepairStatus.SKIPPED, "hybrid proxy address present"))
                continue

            if dry_run:
                logger.info(f"Would repair {identity}", extra={"identity": identity})
                results.append(RepairResult(identity, RepairStatus.WOULD_REPAIR))
                continue

            try:
                result = self.repair(kind, recipient)
            except PowerShellError as e:
                result = RepairResult(identity, RepairStatus.FAILED, e.message)

            if result.status == RepairStatus.FAILED:
                logger.error(f"Repair failed for {identity}: {result.message}", extra={"identity": identity})
            else:
                logger.info(f"Repaired {identity}", extra={"identity": identity})
            results.append(result)

        return results
