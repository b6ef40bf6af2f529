"""
Tests for language detection and the contract scanner
"""

from datetime import timezone

import pytest

from gasguard.models import RuleViolation, Severity
from gasguard.services.language_detector import Language, LanguageDetector
from gasguard.services.scanner import ContractScanner
from gasguard.utils.errors import SorobanIoError, SorobanParseError, UnsupportedLanguageError


SOROBAN_SNIPPET = """
use soroban_sdk::{contract, contractimpl};

#[contract]
pub struct Counter;
"""

VYPER_SNIPPET = """
# @version 0.3.7

total: public(uint256)
"""

RUST_SNIPPET = """
fn main() {
    println!("hello");
}
"""

ORPHAN_IMPL = """
use soroban_sdk::contractimpl;

#[contractimpl]
impl Orphan {
    pub fn f() {}
}
"""


def test_language_detection():
    assert LanguageDetector.detect(SOROBAN_SNIPPET) == Language.SOROBAN
    assert LanguageDetector.detect(VYPER_SNIPPET) == Language.VYPER
    assert LanguageDetector.detect(RUST_SNIPPET) == Language.RUST
    assert LanguageDetector.detect("just some notes") is None


def test_soroban_wins_over_rust_markers():
    content = "use soroban_sdk::contracttype;\n#[derive(Clone)]\n#[contracttype]\npub struct A { pub x: u64 }\nfn main() {}\n"
    assert Language.from_content(content) == Language.SOROBAN


@pytest.mark.parametrize("ext, expected", [
    ("rs", Language.RUST),
    (".rs", Language.RUST),
    ("RS", Language.RUST),
    ("vy", Language.VYPER),
    ("py", None),
])
def test_language_from_extension(ext, expected):
    assert Language.from_extension(ext) == expected


def test_scan_content(bad_contract):
    scanner = ContractScanner()

    result = scanner.scan_content(bad_contract, "bad.rs")

    assert result.source == "bad.rs"
    assert result.has_violations()
    assert len(result.violations) == 5
    assert result.scan_time.tzinfo == timezone.utc
    assert len(result.violations_by_severity(Severity.WARNING)) == 1
    assert result.summary() == "Scan Summary: 5 total violations (0 errors, 1 warnings, 4 info)"


def test_clean_scan_summary(clean_contract):
    result = ContractScanner().scan_content(clean_contract, "clean.rs")

    assert not result.has_violations()
    assert result.summary() == "No violations found! Your contract is optimized."


def test_scan_result_json(bad_contract):
    payload = ContractScanner().scan_content(bad_contract, "bad.rs").to_json()

    assert '"rule_name": "soroban-unused-state-variables"' in payload
    assert '"line_number"' in payload
    assert '"severity": "warning"' in payload


def test_unsupported_language_is_rejected():
    scanner = ContractScanner()

    with pytest.raises(UnsupportedLanguageError):
        scanner.scan_content(VYPER_SNIPPET, "token.vy")

    with pytest.raises(UnsupportedLanguageError):
        scanner.scan_content("#[contracttype]\npub struct X { pub a: u64 }\n", "unknown.rs")


def test_default_language_fallback():
    scanner = ContractScanner(default_language=Language.SOROBAN)

    result = scanner.scan_content("#[contracttype]\npub struct X {\n    pub a: u64,\n}\n", "bare.rs")

    assert [v.variable_name for v in result.violations] == ["a"]


def test_scan_soroban_content_forces_language():
    """Content that sniffs as plain Rust is still analyzed as Soroban on request"""
    content = "#[derive(Clone)]\n#[contracttype]\npub struct X {\n    pub a: u64,\n}\n"
    scanner = ContractScanner()

    with pytest.raises(UnsupportedLanguageError):
        scanner.scan_content(content, "x.rs")

    result = scanner.scan_soroban_content(content, "x.rs")
    assert len(result.violations) == 1


def test_injected_analyzer():
    class StubVyperAnalyzer:
        def analyze(self, source, file_path):
            return [RuleViolation(rule_name="vyper-test", description="d", severity=Severity.INFO, line_number=1)]

    scanner = ContractScanner(analyzers={Language.VYPER: StubVyperAnalyzer()})

    result = scanner.scan_content(VYPER_SNIPPET, "token.vy")

    assert [v.rule_name for v in result.violations] == ["vyper-test"]


def test_parse_error_surfaces_from_scan_content():
    with pytest.raises(SorobanParseError):
        ContractScanner().scan_content(ORPHAN_IMPL, "orphan.rs")


def test_scan_file(tmp_path, bad_contract):
    path = tmp_path / "bad_contract.rs"
    path.write_text(bad_contract)

    result = ContractScanner().scan_file(path)

    assert result.source == str(path)
    assert len(result.violations) == 5


def test_scan_missing_file():
    with pytest.raises(SorobanIoError) as exc_info:
        ContractScanner().scan_file("/nonexistent/contract.rs")

    assert str(exc_info.value).startswith("IO error:")
    assert exc_info.value.kind == "io_error"


def test_scan_directory_skips_failures(tmp_path, bad_contract, clean_contract):
    """Unreadable, unparsable and unsupported files are recorded and the walk continues"""
    (tmp_path / "good.rs").write_text(bad_contract)
    (tmp_path / "clean.rs").write_text(clean_contract)
    (tmp_path / "broken.rs").write_text(ORPHAN_IMPL)
    (tmp_path / "main.rs").write_text(RUST_SNIPPET)
    (tmp_path / "notes.txt").write_text(bad_contract)
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "deep.rs").write_text(bad_contract)

    report = ContractScanner().scan_directory(tmp_path)

    assert report.files_scanned == 5
    assert [r.source for r in report.results] == [
        str(tmp_path / "good.rs"),
        str(tmp_path / "sub" / "deep.rs"),
    ]
    assert [f.source for f in report.failures] == [
        str(tmp_path / "broken.rs"),
        str(tmp_path / "main.rs"),
    ]
    assert "Missing required Soroban macro" in report.failures[0].error
