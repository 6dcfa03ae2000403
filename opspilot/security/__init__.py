"""Static analysis of user-supplied skill scripts."""

from opspilot.security.scanner import (
    SCAN_LINE_RULES,
    ScanFinding,
    ScanRule,
    ScanSeverity,
    ScanSummary,
    scan_script,
)

__all__ = [
    "SCAN_LINE_RULES",
    "ScanFinding",
    "ScanRule",
    "ScanSeverity",
    "ScanSummary",
    "scan_script",
]
