"""MTA-STS / TLS-RPT report harvesting and Exchange recipient repair tools."""

__version__ = "1.0.0"
