"""Static scanner for user-supplied skill scripts.

Runs an ordered list of line-level regex rules over a script. Each rule
reports at most one finding, the first line it matches. The scanner only
reports; whether a script is accepted is decided by the caller.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field

from opspilot.utils import get_logger

logger = get_logger(__name__)

EVIDENCE_MAX_LENGTH = 120


class ScanSeverity(str, Enum):
    INFO = "info"
    WARN = "warn"
    CRITICAL = "critical"


class ScanFinding(BaseModel):
    """A single rule hit."""

    rule_id: str
    severity: ScanSeverity
    message: str
    evidence: str
    line: int


class ScanSummary(BaseModel):
    """Per-severity counts plus the findings themselves."""

    critical: int = 0
    warn: int = 0
    info: int = 0
    findings: list[ScanFinding] = Field(default_factory=list)

    @property
    def has_critical(self) -> bool:
        return self.critical > 0

    @classmethod
    def from_findings(cls, findings: list[ScanFinding]) -> "ScanSummary":
        return cls(
            critical=sum(1 for f in findings if f.severity == ScanSeverity.CRITICAL),
            warn=sum(1 for f in findings if f.severity == ScanSeverity.WARN),
            info=sum(1 for f in findings if f.severity == ScanSeverity.INFO),
            findings=findings,
        )


@dataclass(frozen=True)
class ScanRule:
    rule_id: str
    severity: ScanSeverity
    message: str
    pattern: re.Pattern
    # Rule only applies when the whole script also matches this
    requires_context: re.Pattern | None = None


SCAN_LINE_RULES: tuple[ScanRule, ...] = (
    ScanRule(
        rule_id="dangerous-exec",
        severity=ScanSeverity.CRITICAL,
        message="Shell command execution detected",
        pattern=re.compile(
            r"\b(system|popen|run|call|check_call|check_output|Popen|"
            r"exec\w*|spawn\w*|posix_spawnp?|fork|forkpty)\s*\("
        ),
        requires_context=re.compile(
            r"\bsubprocess\b|\bos\.(system|popen|exec\w*|spawn\w*|posix_spawnp?|fork\w*)\b|"
            r"\bfrom\s+os\s+import\b|\bpty\b|child_process"
        ),
    ),
    ScanRule(
        rule_id="dynamic-code-execution",
        severity=ScanSeverity.CRITICAL,
        message="Dynamic code execution detected",
        pattern=re.compile(r"\b(eval|exec|compile|__import__)\s*\(|new\s+Function\s*\("),
    ),
    ScanRule(
        rule_id="crypto-mining",
        severity=ScanSeverity.CRITICAL,
        message="Possible crypto-mining code detected",
        pattern=re.compile(r"stratum\+tcp|stratum\+ssl|coinhive|cryptonight|xmrig", re.IGNORECASE),
    ),
    ScanRule(
        rule_id="suspicious-network",
        severity=ScanSeverity.WARN,
        message="WebSocket connection to a non-standard port",
        pattern=re.compile(r"""["']wss?://[^"'/\s]*:(?!(?:80|443)\b)\d+"""),
    ),
    ScanRule(
        rule_id="env-access",
        severity=ScanSeverity.WARN,
        message="Environment variable access",
        pattern=re.compile(r"\bos\.environ\b|\bos\.getenv\b|process\.env"),
    ),
    ScanRule(
        rule_id="fs-access",
        severity=ScanSeverity.WARN,
        message="Filesystem access detected",
        pattern=re.compile(
            r"\bopen\s*\(|\bshutil\.|\bos\.(remove|unlink|rmdir|makedirs)\b|"
            r"\.(write_text|write_bytes|read_text|read_bytes|unlink)\s*\(|"
            r"readFileSync|writeFileSync|readFile|writeFile|unlinkSync|rmSync"
        ),
    ),
    ScanRule(
        rule_id="obfuscated-code",
        severity=ScanSeverity.WARN,
        message="Hex-encoded string detected (possible obfuscation)",
        pattern=re.compile(r"(\\x[0-9a-fA-F]{2}){6,}"),
    ),
    ScanRule(
        rule_id="network-access",
        severity=ScanSeverity.INFO,
        message="Outbound network access",
        pattern=re.compile(r"\b(requests|httpx|urllib|aiohttp|socket)\b"),
    ),
)


def scan_script(script: str, rules: tuple[ScanRule, ...] = SCAN_LINE_RULES) -> ScanSummary:
    """Scan a custom skill script.

    Args:
        script: Script source text
        rules: Ordered rule set

    Returns:
        ScanSummary with per-severity counts and findings in rule order
    """
    findings: list[ScanFinding] = []
    lines = script.split("\n")

    for rule in rules:
        if rule.requires_context is not None and not rule.requires_context.search(script):
            continue

        for index, line in enumerate(lines):
            if rule.pattern.search(line):
                findings.append(
                    ScanFinding(
                        rule_id=rule.rule_id,
                        severity=rule.severity,
                        message=rule.message,
                        evidence=line.strip()[:EVIDENCE_MAX_LENGTH],
                        line=index + 1,
                    )
                )
                break

    summary = ScanSummary.from_findings(findings)

    if findings:
        logger.info(
            "Script scan complete",
            extra={
                "critical": summary.critical,
                "warn": summary.warn,
                "info": summary.info,
                "rules": [f.rule_id for f in findings],
            },
        )

    return summary
