"""
Contract Scanner

Front door for analysis: picks the language of a source, hands it to the
analyzer registered for that language and wraps the violations in a
ScanResult. Only the Soroban engine is registered by default.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union

from gasguard.models import DirectoryScanReport, RuleViolation, ScanFailure, ScanResult
from gasguard.services.language_detector import Language
from gasguard.services.rule_config import build_rules, load_rule_config
from gasguard.services.rule_engine import SorobanRuleEngine
from gasguard.utils.errors import SorobanParseError, UnsupportedLanguageError

logger = logging.getLogger("gasguard.scanner")

SCANNED_EXTENSIONS = {".rs", ".vy"}


class Analyzer(Protocol):
    def analyze(self, source: str, file_path: str) -> List[RuleViolation]:
        ...


class ContractScanner:
    def __init__(
        self,
        analyzers: Optional[Dict[Language, Analyzer]] = None,
        default_language: Optional[Language] = None,
    ) -> None:
        if analyzers is None:
            analyzers = {Language.SOROBAN: SorobanRuleEngine(build_rules(load_rule_config()))}
        self.analyzers: Dict[Language, Analyzer] = dict(analyzers)
        self.default_language = default_language

    def resolve_language(self, content: str, language: Optional[Language] = None) -> Optional[Language]:
        """Explicit tag, then content markers, then the configured default."""
        if language is not None:
            return language
        detected = Language.from_content(content)
        if detected is None and "soroban_sdk" in content:
            detected = Language.SOROBAN
        return detected or self.default_language

    def scan_content(self, content: str, source: str, language: Optional[Language] = None) -> ScanResult:
        """
        Analyze one in-memory source.

        Raises:
            SorobanParseError: the source could not be parsed
            UnsupportedLanguageError: no analyzer for the resolved language
        """
        resolved = self.resolve_language(content, language)
        analyzer = self.analyzers.get(resolved) if resolved else None
        if analyzer is None:
            name = resolved.value if resolved else "unknown"
            raise UnsupportedLanguageError(f"No analyzer registered for {name} source: {source}")

        violations = analyzer.analyze(content, source)
        return ScanResult(source=source, violations=violations)

    def scan_soroban_content(self, content: str, source: str) -> ScanResult:
        return self.scan_content(content, source, Language.SOROBAN)

    def scan_file(self, file_path: Union[str, Path]) -> ScanResult:
        path = Path(file_path)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SorobanParseError.io_error(f"Failed to read file {path}: {e}") from e

        language = Language.from_content(content) or Language.from_extension(path.suffix)
        return self.scan_content(content, str(path), language)

    def scan_directory(self, dir_path: Union[str, Path]) -> DirectoryScanReport:
        """
        Scan every .rs / .vy file below dir_path.

        A file that fails is recorded in `failures` and the walk continues.
        Only results with at least one violation are kept.
        """
        report = DirectoryScanReport()
        for path in sorted(Path(dir_path).rglob("*")):
            if not path.is_file() or path.suffix not in SCANNED_EXTENSIONS:
                continue
            report.files_scanned += 1
            try:
                result = self.scan_file(path)
            except (SorobanParseError, UnsupportedLanguageError) as e:
                logger.warning(f"Skipping {path}: {e}")
                report.failures.append(ScanFailure(source=str(path), error=str(e)))
                continue
            if result.has_violations():
                report.results.append(result)

        logger.info(
            f"Scanned {report.files_scanned} file(s) in {dir_path}: "
            f"{len(report.results)} with violations, {len(report.failures)} failed"
        )
        return report
