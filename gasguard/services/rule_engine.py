import logging
from typing import List, Optional, Sequence

from gasguard.models import RuleViolation, dedupe_violations
from gasguard.services.soroban_rules import SorobanRule, default_rules
from gasguard.utils.soroban_ast import SorobanContract, SorobanParser

logger = logging.getLogger("gasguard.rule_engine")


class SorobanRuleEngine:
    """
    Runs an ordered list of Soroban rules over parsed contracts.

    The rule list is supplied by the caller and fixed at construction; the
    engine keeps no other state, so one instance can serve concurrent
    callers. Output order is rule registration order, then each rule's
    own order.
    """

    def __init__(self, rules: Sequence[SorobanRule], parser: Optional[SorobanParser] = None):
        seen = set()
        for rule in rules:
            if rule.id in seen:
                raise ValueError(f"Duplicate rule id: {rule.id}")
            seen.add(rule.id)
        self._rules = tuple(rules)
        self.parser = parser or SorobanParser()

    @classmethod
    def with_default_rules(cls) -> "SorobanRuleEngine":
        return cls(default_rules())

    @property
    def rules(self) -> List[SorobanRule]:
        return list(self._rules)

    def enabled_rules(self) -> List[SorobanRule]:
        return [r for r in self._rules if r.enabled]

    def analyze(self, source: str, file_path: str) -> List[RuleViolation]:
        """
        Parse and analyze one source.

        Raises:
            SorobanParseError: unchanged from the parser; nothing is analyzed
        """
        contract = self.parser.parse_contract(source, file_path)
        return self.analyze_contract(contract)

    def analyze_contract(self, contract: SorobanContract) -> List[RuleViolation]:
        violations: List[RuleViolation] = []
        for rule in self.enabled_rules():
            try:
                found = rule.apply(contract)
            except Exception as e:
                logger.error(f"Rule {rule.id} failed on {contract.file_path}: {e}")
                continue
            if found:
                logger.debug(f"{rule.id}: {len(found)} violation(s) in {contract.file_path}")
            violations.extend(found)

        unique = dedupe_violations(violations)
        logger.info(f"Analyzed {contract.file_path} ({contract.name}): {len(unique)} violation(s)")
        return unique
