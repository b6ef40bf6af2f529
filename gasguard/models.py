from pydantic import BaseModel, Field
from typing import Any, Optional, Dict, List, Tuple
from datetime import datetime, timezone
from enum import Enum


# ─── Request Envelope ────────────────────────────────────────────────

class MCPRequest(BaseModel):
    request_id: str
    action: str
    payload: Dict[str, Any]
    context: Optional[Dict[str, Any]] = None


class AnalyzeRequest(BaseModel):
    code: str
    source: str = "remote-analysis"
    language: Optional[str] = None


# ─── Violations ──────────────────────────────────────────────────────

class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]

    def at_least(self, other: "Severity") -> bool:
        return self.rank >= other.rank


SEVERITY_RANK: Dict[Severity, int] = {
    Severity.ERROR: 3,
    Severity.WARNING: 2,
    Severity.INFO: 1,
}


class RuleViolation(BaseModel):
    rule_name: str
    description: str
    severity: Severity
    line_number: int
    column_number: int = 1
    variable_name: str = ""
    suggestion: str = ""

    def identity(self) -> Tuple[str, int, str]:
        """Two violations with the same rule, line and variable are the same finding."""
        return (self.rule_name, self.line_number, self.variable_name)


def dedupe_violations(violations: List[RuleViolation]) -> List[RuleViolation]:
    """Drop repeated identities, keeping the first occurrence and the order."""
    seen = set()
    unique = []
    for v in violations:
        key = v.identity()
        if key in seen:
            continue
        seen.add(key)
        unique.append(v)
    return unique


# ─── Scan Results ────────────────────────────────────────────────────

class ScanResult(BaseModel):
    source: str
    violations: List[RuleViolation] = Field(default_factory=list)
    scan_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def has_violations(self) -> bool:
        return len(self.violations) > 0

    def violations_by_severity(self, severity: Severity) -> List[RuleViolation]:
        return [v for v in self.violations if v.severity == severity]

    def summary(self) -> str:
        if not self.violations:
            return "No violations found! Your contract is optimized."
        errors = len(self.violations_by_severity(Severity.ERROR))
        warnings = len(self.violations_by_severity(Severity.WARNING))
        info = len(self.violations_by_severity(Severity.INFO))
        return (
            f"Scan Summary: {len(self.violations)} total violations "
            f"({errors} errors, {warnings} warnings, {info} info)"
        )

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)


class ScanFailure(BaseModel):
    source: str
    error: str


class DirectoryScanReport(BaseModel):
    results: List[ScanResult] = Field(default_factory=list)
    failures: List[ScanFailure] = Field(default_factory=list)
    files_scanned: int = 0


class AnalysisReport(BaseModel):
    source: str
    analysis_time: str
    violations: List[RuleViolation] = Field(default_factory=list)
    summary: str


class RuleInfo(BaseModel):
    id: str
    name: str
    severity: Severity
    enabled: bool
    description: str = ""
