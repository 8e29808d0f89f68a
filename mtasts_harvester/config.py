from typing import Annotated

from pydantic_settings import BaseSettings, NoDecode
from pydantic import field_validator
from functools import lru_cache

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

class Settings(BaseSettings):
    # Report output
    report_file: str = "./mtastsreport.csv"
    policy_string_separator: str = " , "

    # Working folder contents
    compressed_suffixes: Annotated[list[str], NoDecode] = [".gz", ".gzip"]

    # Mail store ("outlook" or "imap")
    mail_source: str = "outlook"

    # Email (IMAP)
    email_host: str = ""
    email_port: int = 993
    email_user: str = ""
    email_password: str = ""
    email_use_ssl: bool = True

    # Extraction
    seven_zip_path: str = ""  # Explicit 7z executable, skips registry/PATH probing
    command_timeout: int = 120  # Seconds allowed for 7z / PowerShell calls

    # Recipient repair
    powershell_executable: str = "powershell"
    exchange_preamble: str = ""  # e.g. Add-PSSnapin Microsoft.Exchange.Management.PowerShell.SnapIn
    hybrid_domain: str = ""  # e.g. contoso.mail.onmicrosoft.com

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # Empty disables file logging
    log_json: bool = False

    @field_validator('compressed_suffixes', mode='before')
    @classmethod
    def parse_suffixes(cls, v):
        """Parse comma-separated suffixes from environment variable"""
        if isinstance(v, str):
            v = [s.strip() for s in v.split(',') if s.strip()]
        return [s.lower() if s.startswith('.') else f".{s.lower()}" for s in (v or [])]

    @field_validator('mail_source')
    @classmethod
    def validate_mail_source(cls, v):
        v = v.lower()
        if v not in ("outlook", "imap"):
            raise ValueError("mail_source must be 'outlook' or 'imap'")
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        v = v.upper()
        if v not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return v

    class Config:
        env_file = ".env"
        env_prefix = "MTASTS_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
