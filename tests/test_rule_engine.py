"""
Tests for the rule engine: registration, ordering and isolation of rules
"""

import logging

import pytest

from gasguard.models import RuleViolation, Severity
from gasguard.services.rule_engine import SorobanRuleEngine
from gasguard.services.soroban_rules import (
    InefficientIntegersRule,
    SorobanRule,
    UnusedStateVariablesRule,
    default_rules,
)
from gasguard.utils.errors import InvalidStructureError, MissingMacroError


class ExplodingRule(SorobanRule):
    id = "test-exploding"
    name = "Exploding"

    def apply(self, contract):
        raise RuntimeError("boom")


class EchoRule(SorobanRule):
    """Reports the same finding twice"""

    id = "test-echo"
    name = "Echo"

    def apply(self, contract):
        finding = self._violation(contract, "echo", 1, "x")
        return [finding, finding.model_copy()]


def test_engine_is_idempotent(bad_contract):
    engine = SorobanRuleEngine.with_default_rules()

    first = engine.analyze(bad_contract, "bad.rs")
    second = engine.analyze(bad_contract, "bad.rs")

    assert first == second
    assert len(first) == 5


def test_output_follows_registration_order(bad_contract):
    forward = SorobanRuleEngine([UnusedStateVariablesRule(), InefficientIntegersRule()])
    backward = SorobanRuleEngine([InefficientIntegersRule(), UnusedStateVariablesRule()])

    assert [v.rule_name for v in forward.analyze(bad_contract, "bad.rs")] == [
        "soroban-unused-state-variables",
        "soroban-inefficient-integers",
    ]
    assert [v.rule_name for v in backward.analyze(bad_contract, "bad.rs")] == [
        "soroban-inefficient-integers",
        "soroban-unused-state-variables",
    ]


def test_duplicate_rule_ids_are_rejected():
    with pytest.raises(ValueError, match="Duplicate rule id"):
        SorobanRuleEngine([UnusedStateVariablesRule(), UnusedStateVariablesRule(severity=Severity.ERROR)])


def test_default_catalog_order():
    engine = SorobanRuleEngine.with_default_rules()

    assert [r.id for r in engine.rules] == [
        "soroban-unused-state-variables",
        "soroban-inefficient-integers",
        "soroban-string-over-symbol",
        "soroban-repeated-storage-access",
        "soroban-unbounded-loop",
        "soroban-expensive-strings",
        "soroban-vec-without-capacity",
    ]


def test_disabled_rule_is_skipped(bad_contract):
    rules = default_rules()
    rules[1] = InefficientIntegersRule(enabled=False)
    engine = SorobanRuleEngine(rules)

    violations = engine.analyze(bad_contract, "bad.rs")

    assert "soroban-inefficient-integers" not in {v.rule_name for v in violations}
    assert len(engine.enabled_rules()) == 6
    assert len(engine.rules) == 7


def test_severity_override(bad_contract):
    engine = SorobanRuleEngine([UnusedStateVariablesRule(severity=Severity.ERROR)])

    violations = engine.analyze(bad_contract, "bad.rs")

    assert violations[0].severity == Severity.ERROR


def test_failing_rule_is_isolated(bad_contract, caplog):
    """A rule that raises contributes nothing; the others still report"""
    engine = SorobanRuleEngine([ExplodingRule(), UnusedStateVariablesRule()])

    with caplog.at_level(logging.ERROR, logger="gasguard.rule_engine"):
        violations = engine.analyze(bad_contract, "bad.rs")

    assert [v.rule_name for v in violations] == ["soroban-unused-state-variables"]
    assert "test-exploding" in caplog.text


def test_duplicate_findings_are_collapsed(bad_contract):
    engine = SorobanRuleEngine([EchoRule()])

    violations = engine.analyze(bad_contract, "bad.rs")

    assert len(violations) == 1
    assert isinstance(violations[0], RuleViolation)


def test_parse_errors_propagate():
    engine = SorobanRuleEngine.with_default_rules()

    with pytest.raises(MissingMacroError):
        engine.analyze("struct Test {\n    field: u64,\n}\n", "invalid.rs")

    with pytest.raises(InvalidStructureError):
        engine.analyze("#[contracttype]\npub struct Broken {\n    pub a: u64,\n", "broken.rs")


def test_empty_rule_list_reports_nothing(bad_contract):
    assert SorobanRuleEngine([]).analyze(bad_contract, "bad.rs") == []
