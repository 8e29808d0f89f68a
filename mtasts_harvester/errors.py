"""
Exception classes for the harvester and recipient repair tools

Every error carries a human-readable message and a short error code that
the command line layer prints to the operator.
"""
from pathlib import Path
from typing import Optional, Union


class HarvesterError(Exception):
    """Base class for harvester exceptions"""

    def __init__(self, message: str, error_code: str = "INTERNAL_ERROR"):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class WorkingFolderNotWritableError(HarvesterError):
    """Working directory is missing or cannot be written to"""

    def __init__(self, path: Union[str, Path]):
        super().__init__(
            message=f"Working folder is not reachable or not writable: {path}",
            error_code="FOLDER_NOT_WRITABLE"
        )
        self.path = Path(path)


class ExtractionError(HarvesterError):
    """A compressed report could not be decompressed"""

    def __init__(self, path: Union[str, Path], reason: str):
        super().__init__(
            message=f"Failed to extract {Path(path).name}: {reason}",
            error_code="EXTRACTION_ERROR"
        )
        self.path = Path(path)


class ReportParseError(HarvesterError):
    """A JSON report does not match the TLS-RPT schema"""

    def __init__(self, path: Union[str, Path], reason: str):
        super().__init__(
            message=f"Failed to parse TLS-RPT report {Path(path).name}: {reason}",
            error_code="PARSE_ERROR"
        )
        self.path = Path(path)


class ReportWriteError(HarvesterError):
    """The CSV report could not be written"""

    def __init__(self, path: Union[str, Path], reason: str):
        super().__init__(
            message=f"Failed to write report file {path}: {reason}",
            error_code="WRITE_ERROR"
        )
        self.path = Path(path)


class MailStoreError(HarvesterError):
    """Mail store could not be opened or read"""

    def __init__(self, message: str = "Mail store unavailable"):
        super().__init__(message=message, error_code="MAIL_STORE_ERROR")


class PowerShellError(HarvesterError):
    """An Exchange Management Shell command failed"""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message=message, error_code="POWERSHELL_ERROR")
        self.returncode = returncode
