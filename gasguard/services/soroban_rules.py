"""
Soroban Gas Rules

Each rule inspects a parsed SorobanContract for one storage or gas
inefficiency and returns RuleViolations. Rules are independent: they share
no state, never look at each other's output and return an empty list for
contracts they cannot make sense of.

Detection is textual. Rules match identifiers and call shapes in function
bodies rather than resolving symbols, which keeps them usable without a
compiler front end at the cost of occasional false positives.
"""

import re
from typing import Dict, List, Optional, Tuple

from gasguard.models import RuleViolation, Severity
from gasguard.utils.soroban_ast import (
    SorobanContract,
    SorobanFunction,
    SorobanParam,
    extract_between_parentheses,
    mask_source,
    skip_generics,
    split_preserving_parentheses,
)

# Receivers that mark a field access, as in `self.balance`.
INSTANCE_TOKENS = ("self", "state", "contract")

OVERSIZED_INTEGER = re.compile(r"\b(?:u128|i128|u256|i256|U256|I256)\b")
OWNED_STRING = re.compile(r"(?<![\w:])(?:soroban_sdk::|std::string::)?String\b")
UNBOUNDED_COLLECTION = re.compile(r"\b(?:Vec|Map|Bytes|BytesN|HashMap|BTreeMap|HashSet|BTreeSet)\b|^&?\s*(?:mut\s+)?\[")


# ── Shared helpers ────────────────────────────────────────────────────────────

def _code(function: SorobanFunction) -> str:
    """Function text with comments and literal contents blanked out."""
    return "\n".join(mask_source(function.raw_definition.splitlines()))


def _line_at(function: SorobanFunction, offset: int, text: str) -> int:
    return function.line_number + text[:offset].count("\n")


def _column_of(contract: SorobanContract, line_number: int, token: str = "") -> int:
    """1-based column of token on the line, else of the first non-blank character."""
    lines = contract.source.splitlines()
    if not 1 <= line_number <= len(lines):
        return 1
    text = lines[line_number - 1]
    if token:
        m = re.search(rf"\b{re.escape(token)}\b", text)
        if m:
            return m.start() + 1
    return len(text) - len(text.lstrip()) + 1


def _param_line(function: SorobanFunction, param: SorobanParam) -> int:
    m = re.search(rf"\b{re.escape(param.name)}\s*:", _code(function))
    if not m:
        return function.line_number
    return _line_at(function, m.start(), function.raw_definition)


def _balanced_block(text: str, open_pos: int) -> Optional[str]:
    """Contents of the {...} block whose '{' is at open_pos."""
    depth = 0
    for i in range(open_pos, len(text)):
        if text[i] == "{":
            depth += 1
        elif text[i] == "}":
            depth -= 1
            if depth == 0:
                return text[open_pos + 1:i]
    return None


class SorobanRule:
    """Base class for Soroban gas rules"""

    id: str = "base"
    name: str = "Base Rule"
    default_severity: Severity = Severity.INFO
    description: str = ""

    def __init__(self, severity: Optional[Severity] = None, enabled: bool = True):
        self.severity = Severity(severity) if severity else self.default_severity
        self.enabled = enabled

    def apply(self, contract: SorobanContract) -> List[RuleViolation]:
        """
        Inspect the contract.

        Returns:
            Violations in source order, empty if the pattern is absent
        """
        raise NotImplementedError

    def _violation(
        self,
        contract: SorobanContract,
        description: str,
        line_number: int,
        variable_name: str = "",
        suggestion: str = "",
    ) -> RuleViolation:
        return RuleViolation(
            rule_name=self.id,
            description=description,
            severity=self.severity,
            line_number=line_number,
            column_number=_column_of(contract, line_number, variable_name),
            variable_name=variable_name,
            suggestion=suggestion,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(severity={self.severity.value}, enabled={self.enabled})"


class UnusedStateVariablesRule(SorobanRule):
    """
    Detects contract fields that no function ever touches.

    A field counts as used when some function of some #[contractimpl] block
    accesses it through an instance token (`self.field`) or names it as a
    shorthand key in a struct literal (`Self { owner }`). An explicit
    initializer (`field: value`) alone is not a use.
    """

    id = "soroban-unused-state-variables"
    name = "Unused State Variables"
    default_severity = Severity.WARNING
    description = "State variables that are never read or written waste storage and ledger rent."

    def apply(self, contract: SorobanContract) -> List[RuleViolation]:
        bodies = [_code(f) for f in contract.all_functions()]
        violations = []
        for struct in contract.contract_types:
            literal_names = {"Self", struct.name}
            for fld in struct.fields:
                if any(self._is_used(body, fld.name, literal_names) for body in bodies):
                    continue
                violations.append(self._violation(
                    contract,
                    f"State variable '{fld.name}' of '{struct.name}' is never used by any contract function",
                    fld.line_number,
                    fld.name,
                    f"Remove '{fld.name}' to reduce storage footprint and ledger rent",
                ))
        return violations

    @staticmethod
    def _is_used(body: str, field_name: str, literal_names: set) -> bool:
        tokens = "|".join(INSTANCE_TOKENS)
        if re.search(rf"\b(?:{tokens})\s*\.\s*{re.escape(field_name)}\b", body):
            return True
        names = "|".join(re.escape(n) for n in literal_names)
        for m in re.finditer(rf"\b(?:{names})\s*\{{", body):
            if body[:m.start()].rstrip().endswith("->"):
                continue  # `-> Self {` opens the function body
            inner = _balanced_block(body, m.end() - 1)
            if inner is None:
                continue
            if any(entry == field_name for entry in split_preserving_parentheses(inner, ",")):
                return True
        return False


class _TypePatternRule(SorobanRule):
    """Flags fields and parameters whose declared type text matches `pattern`."""

    pattern: re.Pattern = re.compile(r"(?!)")
    subject: str = ""
    suggestion: str = ""

    def apply(self, contract: SorobanContract) -> List[RuleViolation]:
        violations = []
        for struct in contract.contract_types:
            for fld in struct.fields:
                if self.pattern.search(fld.type_name):
                    violations.append(self._violation(
                        contract,
                        f"Field '{fld.name}' of '{struct.name}' is declared as {fld.type_name}: {self.subject}",
                        fld.line_number,
                        fld.name,
                        self.suggestion,
                    ))
        for function in contract.all_functions():
            for param in function.params:
                if self.pattern.search(param.type_name):
                    violations.append(self._violation(
                        contract,
                        f"Parameter '{param.name}' of '{function.name}' is declared as {param.type_name}: {self.subject}",
                        _param_line(function, param),
                        param.name,
                        self.suggestion,
                    ))
        return violations


class InefficientIntegersRule(_TypePatternRule):
    id = "soroban-inefficient-integers"
    name = "Inefficient Integer Types"
    default_severity = Severity.INFO
    description = "128/256-bit integers cost more storage and host-function work than narrower types."
    pattern = OVERSIZED_INTEGER
    subject = "128/256-bit integers are more expensive to store and process"
    suggestion = "Use u64 or u32 when the value range allows it"


class StringOverSymbolRule(_TypePatternRule):
    id = "soroban-string-over-symbol"
    name = "String Instead Of Symbol"
    default_severity = Severity.INFO
    description = "Owned String values are heap-allocated; short identifiers fit in a Symbol."
    pattern = OWNED_STRING
    subject = "a growable String where a short Symbol would do"
    suggestion = "Use soroban_sdk::Symbol (symbol_short!) for short, fixed identifiers"


class RepeatedStorageAccessRule(SorobanRule):
    """
    Detects the same storage lookup evaluated more than once in one function.

    Lookups are `<env>.storage().<tier>().get(..)` (optionally with a
    `::<..>` turbofish) and `self.<map>.get(..)`, compared with whitespace
    removed. When the first read is bound by `let`, later reads are taken to
    reuse that local and nothing is reported; otherwise the second read is.
    """

    id = "soroban-repeated-storage-access"
    name = "Repeated Storage Access"
    default_severity = Severity.WARNING
    description = "Each storage read is metered; read once and reuse the local value."

    LOOKUPS = [
        re.compile(r"\b\w+\s*\.\s*storage\s*\(\s*\)\s*\.\s*(?:instance|persistent|temporary)\s*\(\s*\)\s*\.\s*get\b"),
        re.compile(r"\bself\s*\.\s*(\w+)\s*\.\s*get\b"),
    ]
    TURBOFISH = re.compile(r"\s*::\s*<")
    CALL = re.compile(r"\s*\(")
    LET_BINDING = re.compile(r"\blet\s+(?:mut\s+)?\w+\s*(?::[^=]+)?=\s*$")

    def apply(self, contract: SorobanContract) -> List[RuleViolation]:
        violations = []
        for function in contract.all_functions():
            code = _code(function)
            occurrences: Dict[str, List[Tuple[int, bool, str]]] = {}
            for pattern in self.LOOKUPS:
                for m in pattern.finditer(code):
                    open_pos = self._call_paren(code, m.end())
                    if open_pos is None:
                        continue
                    args = extract_between_parentheses(code[open_pos:])
                    if args is None:
                        continue
                    expr = re.sub(r"\s+", "", code[m.start():open_pos] + "(" + args + ")")
                    line_start = code.rfind("\n", 0, m.start()) + 1
                    cached = bool(self.LET_BINDING.search(code[line_start:m.start()]))
                    label = m.group(1) if m.groups() else args.strip().lstrip("&").strip()
                    occurrences.setdefault(expr, []).append((m.start(), cached, label))

            for expr, hits in occurrences.items():
                hits.sort()
                if len(hits) < 2 or hits[0][1]:
                    continue
                offset, _, label = hits[1]
                violations.append(self._violation(
                    contract,
                    f"Storage lookup `{expr}` is evaluated {len(hits)} times in '{function.name}'",
                    _line_at(function, offset, code),
                    label,
                    "Read the value once into a local binding and reuse it",
                ))
        violations.sort(key=lambda v: v.line_number)
        return violations

    def _call_paren(self, code: str, pos: int) -> Optional[int]:
        """Offset of the call's '(' after `get`, skipping a turbofish."""
        turbofish = self.TURBOFISH.match(code, pos)
        if turbofish:
            pos = skip_generics(code, turbofish.end() - 1)
            if pos is None:
                return None
        call = self.CALL.match(code, pos)
        return call.end() - 1 if call else None


class UnboundedLoopRule(SorobanRule):
    """
    Detects iteration over a caller-supplied collection with no length cap.

    VIOLATION: `for x in items`, `for i in 0..items.len()` or
    `items.iter().for_each(..)` where `items` is a Vec/Map/Bytes/slice
    parameter and no comparison on `items.len()` appears before the loop.
    """

    id = "soroban-unbounded-loop"
    name = "Unbounded Loop"
    default_severity = Severity.WARNING
    description = "Loops over caller-controlled collections can exhaust the instruction budget."

    FOR_LOOP = re.compile(r"\bfor\s+[^{;]+?\s+in\s+([^{;]+)\{")
    ITER_CALL = re.compile(r"\b(\w+)\s*\.\s*(?:iter|into_iter)\s*\(\s*\)\s*\.\s*(?:for_each|fold|try_for_each)\s*\(")
    RANGE_END = re.compile(r"\.\.=?\s*&?\s*(\w+)\s*\.\s*len\s*\(\s*\)")

    def apply(self, contract: SorobanContract) -> List[RuleViolation]:
        violations = []
        for function in contract.all_functions():
            unbounded = {p.name for p in function.params if UNBOUNDED_COLLECTION.search(p.type_name)}
            if not unbounded:
                continue
            code = _code(function)
            loops = []
            for m in self.FOR_LOOP.finditer(code):
                source = m.group(1)
                ident = self.RANGE_END.search(source) or re.match(r"\s*&?\s*(?:mut\s+)?(\w+)", source)
                if ident and ".take(" not in source.replace(" ", ""):
                    loops.append((m.start(), ident.group(1)))
            for m in self.ITER_CALL.finditer(code):
                loops.append((m.start(), m.group(1)))

            for offset, name in sorted(loops):
                if name not in unbounded or self._is_capped(code[:offset], name):
                    continue
                violations.append(self._violation(
                    contract,
                    f"Loop in '{function.name}' iterates over caller-supplied '{name}' without a length limit",
                    _line_at(function, offset, code),
                    name,
                    f"Check `{name}.len()` against a maximum before iterating, or paginate the input",
                ))
        return violations

    @staticmethod
    def _is_capped(prefix: str, name: str) -> bool:
        length = rf"\b{re.escape(name)}\s*\.\s*len\s*\(\s*\)"
        return bool(
            re.search(rf"{length}\s*(?:<=|>=|<|>|==)", prefix)
            or re.search(rf"(?:<=|>=|<|>|==)\s*{length}", prefix)
        )


class ExpensiveStringOperationsRule(SorobanRule):
    """Flags lines that build heap-allocated strings by conversion, formatting or concatenation."""

    id = "soroban-expensive-strings"
    name = "Expensive String Operations"
    default_severity = Severity.INFO
    description = "std String building allocates on the heap and inflates instruction cost."

    OPERATIONS = [
        (re.compile(r"\.\s*to_string\s*\(\s*\)"), ".to_string()"),
        (re.compile(r"\bString\s*::\s*from\s*\("), "String::from"),
        (re.compile(r"\bformat!\s*\("), "format!"),
        (re.compile(r"\.\s*push_str\s*\("), "push_str"),
        (re.compile(r"\+\s*&\s*\w+"), "string concatenation"),
    ]

    def apply(self, contract: SorobanContract) -> List[RuleViolation]:
        violations = []
        for function in contract.all_functions():
            for offset, line in enumerate(_code(function).splitlines()):
                ops = [label for pattern, label in self.OPERATIONS if pattern.search(line)]
                if not ops:
                    continue
                violations.append(self._violation(
                    contract,
                    f"Heap-allocating string operation ({', '.join(ops)}) in '{function.name}'",
                    function.line_number + offset,
                    function.name,
                    "Use Symbol / symbol_short! or soroban_sdk::String::from_str(&env, ..) instead of std String building",
                ))
        return violations


class VecWithoutCapacityRule(SorobanRule):
    id = "soroban-vec-without-capacity"
    name = "Vec Without Capacity"
    default_severity = Severity.INFO
    description = "Growing a std Vec from empty reallocates as it grows."

    EMPTY_VEC = re.compile(r"\bVec\s*::\s*new\s*\(\s*\)|\bvec!\s*\[\s*\]")
    BINDING = re.compile(r"\blet\s+(?:mut\s+)?(\w+)\s*(?::[^=]+)?=\s*$")

    def apply(self, contract: SorobanContract) -> List[RuleViolation]:
        violations = []
        for function in contract.all_functions():
            code = _code(function)
            for m in self.EMPTY_VEC.finditer(code):
                if not re.search(r"\.\s*push(?:_back)?\s*\(", code[m.end():]):
                    continue
                line_start = code.rfind("\n", 0, m.start()) + 1
                binding = self.BINDING.search(code[line_start:m.start()])
                violations.append(self._violation(
                    contract,
                    f"Empty std Vec in '{function.name}' is grown with push()",
                    _line_at(function, m.start(), code),
                    binding.group(1) if binding else "",
                    "Use Vec::with_capacity(n) or soroban_sdk::Vec::new(&env)",
                ))
        return violations


RULE_CLASSES = (
    UnusedStateVariablesRule,
    InefficientIntegersRule,
    StringOverSymbolRule,
    RepeatedStorageAccessRule,
    UnboundedLoopRule,
    ExpensiveStringOperationsRule,
    VecWithoutCapacityRule,
)


def default_rules() -> List[SorobanRule]:
    """Fresh instances of the default catalog, in evaluation order."""
    return [rule_cls() for rule_cls in RULE_CLASSES]
