"""
Soroban Structural Parser

Recovers the shape of a Soroban contract (#[contracttype] / #[contract]
structs, #[contractimpl] blocks, their functions and parameters) from raw
source text so that gas rules can inspect it.

NOTE: This is a tolerant, grammar-free scanner. It tracks bracket depth across
lines and skips whatever it does not recognise. Names and types are never
resolved; rules built on top of it match text, not symbols.
"""

from typing import List, Optional, Tuple
from dataclasses import dataclass, field
from enum import Enum
import logging
import re

from gasguard.utils.errors import InvalidStructureError, MissingMacroError

logger = logging.getLogger("gasguard.parser")

TYPE_MARKERS = ("contracttype", "contract")
IMPL_MARKER = "contractimpl"
CONSTRUCTOR_NAMES = {"new", "__constructor", "init", "initialize"}

_OPENERS = {"(": ")", "[": "]", "{": "}", "<": ">"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}

_CHAR_LITERAL = re.compile(r"'(?:\\(?:x[0-9a-fA-F]{2}|u\{[0-9a-fA-F]+\}|.)|[^\\'\n])'")
_VISIBILITY = re.compile(r"^pub(?:\s*\([^)]*\))?\s+")
_IDENT = re.compile(r"^(?:r#)?[A-Za-z_][A-Za-z0-9_]*$")
_STRUCT_HEADER = re.compile(r"^(?:pub(?:\s*\([^)]*\))?\s+)?struct\s+([A-Za-z_]\w*)")
_IMPL_HEADER = re.compile(r"^(?:unsafe\s+)?impl\b")
_FN_HEADER = re.compile(
    r"^(?P<vis>pub(?:\s*\([^)]*\))?\s+)?"
    r"(?:(?:const|async|unsafe|extern(?:\s+\"[^\"]*\")?)\s+)*"
    r"fn\s+(?P<name>(?:r#)?[A-Za-z_]\w*)"
)
_RECEIVER = re.compile(r"^(?:&\s*(?:'\w+\s+)?)?(?:mut\s+)?self\b")
# A marker attribute (other attributes may follow) directly before a struct header.
_MARKED_TYPE = re.compile(
    r"#\[\s*(?:soroban_sdk\s*::\s*)?(?:contracttype|contract)\b[^\]]*\]"
    r"(?:\s*#!?\[[^\]]*\])*\s*(?:pub(?:\s*\([^)]*\))?\s+)?struct\b"
)


class FieldVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class FunctionVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class SorobanParam:
    """A function parameter; the type is kept as written."""
    name: str
    type_name: str


@dataclass(frozen=True)
class SorobanField:
    """A field of a #[contracttype] struct"""
    name: str
    type_name: str
    visibility: FieldVisibility
    line_number: int


@dataclass(frozen=True)
class SorobanStruct:
    name: str
    fields: List[SorobanField] = field(default_factory=list)
    line_number: int = 0
    raw_definition: str = ""


@dataclass(frozen=True)
class SorobanFunction:
    """A function inside a #[contractimpl] block. raw_definition holds signature and body."""
    name: str
    params: List[SorobanParam] = field(default_factory=list)
    return_type: Optional[str] = None
    visibility: FunctionVisibility = FunctionVisibility.PRIVATE
    is_constructor: bool = False
    line_number: int = 0
    raw_definition: str = ""


@dataclass(frozen=True)
class SorobanImpl:
    target: str
    functions: List[SorobanFunction] = field(default_factory=list)
    line_number: int = 0
    raw_definition: str = ""


@dataclass(frozen=True)
class SorobanContract:
    """Structured view of one Soroban source file."""
    name: str
    contract_types: List[SorobanStruct] = field(default_factory=list)
    implementations: List[SorobanImpl] = field(default_factory=list)
    source: str = ""
    file_path: str = ""

    def all_functions(self) -> List[SorobanFunction]:
        return [f for impl in self.implementations for f in impl.functions]

    def all_fields(self) -> List[SorobanField]:
        return [f for s in self.contract_types for f in s.fields]


# ── Bracket helpers ──────────────────────────────────────────────────────────

class _Unbalanced(Exception):
    pass


def _walk(text: str, strict: bool = True):
    """
    Yield (index, char, depth_before, depth_after) over text.

    A `<` opens a group only when it follows an identifier, `::` or the start
    of text and is not part of `<=` / `<<`; comparisons are plain characters.
    A `<` left open when a different closer arrives is dropped, and `->` /
    `=>` never close anything. In strict mode a mismatched closer raises
    _Unbalanced, otherwise it is ignored.
    """
    stack: List[str] = []
    for i, ch in enumerate(text):
        before = len(stack)
        if ch == "<":
            prev = text[i - 1] if i else ""
            if (not prev or prev.isalnum() or prev in "_:") and text[i + 1:i + 2] not in ("=", "<"):
                stack.append(ch)
        elif ch in _OPENERS:
            stack.append(ch)
        elif ch == ">":
            if i > 0 and text[i - 1] in "-=":
                pass
            elif stack and stack[-1] == "<":
                stack.pop()
        elif ch in _CLOSERS:
            while stack and stack[-1] == "<":
                stack.pop()
            if stack and stack[-1] == _CLOSERS[ch]:
                stack.pop()
            elif strict:
                raise _Unbalanced(f"unexpected '{ch}' at offset {i}")
        yield i, ch, before, len(stack)


def _group_span(text: str) -> Optional[Tuple[int, int]]:
    """
    Offsets of the first top-level '(' and its balanced ')'.
    None when no group is complete yet; raises _Unbalanced on a wrong closer.
    """
    start = None
    for i, ch, before, after in _walk(text):
        if ch == "(" and before == 0 and start is None:
            start = i
        elif ch == ")" and start is not None and after == 0:
            return start, i
    return None


def extract_between_parentheses(text: str) -> Optional[str]:
    """
    Return the text inside the first top-level parenthesis group.

    Nested (), [], {} and <> are honoured, so `fn f(a: Vec<(u32, u32)>)`
    yields `a: Vec<(u32, u32)>`. Returns None if there is no '(' or the
    brackets never balance.
    """
    try:
        span = _group_span(text)
    except _Unbalanced:
        return None
    if span is None:
        return None
    return text[span[0] + 1:span[1]]


def skip_generics(text: str, pos: int) -> Optional[int]:
    """Offset just past the `<...>` group opening at text[pos]; None if it never closes."""
    for i, ch, _before, after in _walk(text[pos:], strict=False):
        if ch == ">" and after == 0:
            return pos + i + 1
    return None


def _body_opener(text: str, start: int) -> Optional[int]:
    """First `{` or `;` at bracket depth zero from start, so `-> [u8; 32]` is skipped."""
    for i, ch, before, _after in _walk(text[start:], strict=False):
        if ch in "{;" and before == 0:
            return start + i
    return None


def split_preserving_parentheses(text: str, delimiter: str = ",") -> List[str]:
    """Split on delimiter at bracket depth zero only. Pieces are trimmed; empty ones dropped."""
    parts = []
    current = []
    for _, ch, before, _after in _walk(text, strict=False):
        if ch == delimiter and before == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def _split_spans(text: str, delimiter: str = ",") -> List[Tuple[int, int]]:
    """Same split as split_preserving_parentheses, returning (start, end) offsets."""
    spans = []
    start = 0
    for i, ch, before, _after in _walk(text, strict=False):
        if ch == delimiter and before == 0:
            spans.append((start, i))
            start = i + 1
    spans.append((start, len(text)))
    return spans


def mask_source(lines: List[str]) -> List[str]:
    """
    Blank out comments and the contents of string/char literals, keeping
    every column in place. Bracket counting only ever looks at this copy.
    """
    masked = []
    state = None  # None | "block" | "string"
    for line in lines:
        out = []
        i, n = 0, len(line)
        while i < n:
            if state == "block":
                if line.startswith("*/", i):
                    state = None
                    out.append("  ")
                    i += 2
                else:
                    out.append(" ")
                    i += 1
                continue
            if state == "string":
                ch = line[i]
                if ch == "\\":
                    out.append(" " * len(line[i:i + 2]))
                    i += 2
                elif ch == '"':
                    state = None
                    out.append('"')
                    i += 1
                else:
                    out.append(" ")
                    i += 1
                continue
            if line.startswith("//", i):
                out.append(" " * (n - i))
                break
            if line.startswith("/*", i):
                state = "block"
                out.append("  ")
                i += 2
                continue
            ch = line[i]
            if ch == '"':
                state = "string"
                out.append('"')
                i += 1
                continue
            if ch == "'":
                m = _CHAR_LITERAL.match(line, i)
                if m:
                    out.append("'" + " " * (m.end() - i - 2) + "'")
                    i = m.end()
                    continue
            out.append(ch)
            i += 1
        masked.append("".join(out))
    return masked


def _strip_attributes(code: str) -> Tuple[List[str], str, bool]:
    """
    Peel leading #[...] attributes off a stripped line.
    Returns (attribute names, remainder, complete); complete is False when
    the last attribute is still open at end of line.
    """
    names = []
    rest = code
    while True:
        m = re.match(r"#!?\[", rest)
        if not m:
            break
        depth = 0
        end = None
        for i in range(m.end() - 1, len(rest)):
            if rest[i] == "[":
                depth += 1
            elif rest[i] == "]":
                depth -= 1
                if depth == 0:
                    end = i
                    break
        name_m = re.match(r"\s*([\w:]+)", rest[m.end():])
        if name_m:
            names.append(name_m.group(1).split("::")[-1])
        if end is None:
            return names, "", False
        rest = rest[end + 1:].lstrip()
    return names, rest, True


def _impl_target(header: str) -> str:
    """`impl<T> Trait for path::Type<T> where ..` -> `Type`"""
    text = header.strip()
    text = re.sub(r"^(?:unsafe\s+)?impl", "", text).strip()
    if text.startswith("<"):
        for i, ch, _before, after in _walk(text, strict=False):
            if ch == ">" and after == 0:
                text = text[i + 1:].strip()
                break
    text = re.split(r"\bwhere\b", text)[0]
    m = re.search(r"\bfor\s+(\S.*)$", text, re.DOTALL)
    if m:
        text = m.group(1)
    text = text.strip().lstrip("&").split("<", 1)[0].strip()
    return text.split("::")[-1].strip()


def _is_constructor(name: str, return_type: Optional[str], target: str) -> bool:
    if name in CONSTRUCTOR_NAMES:
        return True
    if not return_type:
        return False
    words = ["Self"] + ([target] if target else [])
    return any(re.search(rf"\b{re.escape(w)}\b", return_type) for w in words)


class SorobanParser:
    """
    Single forward scan over the lines of a Soroban source file.

    A struct or impl header is recognised only when the marker attribute
    precedes it (blank lines, comments and other attributes in between are
    allowed). Everything else is skipped.
    """

    extract_between_parentheses = staticmethod(extract_between_parentheses)
    split_preserving_parentheses = staticmethod(split_preserving_parentheses)

    def parse_contract(self, source: str, file_path: str) -> SorobanContract:
        """
        Raises:
            MissingMacroError: no marked struct anywhere in the source; this
                wins over any structural problem
            InvalidStructureError: a marked source never balances
        """
        lines = source.splitlines()
        masked = mask_source(lines)
        try:
            structs, impls = self._scan(lines, masked, file_path)
        except InvalidStructureError:
            if _MARKED_TYPE.search("\n".join(masked)):
                raise
            structs, impls = [], []
        if not structs:
            raise MissingMacroError(
                f"could not determine contract name: no #[contracttype] or #[contract] struct in {file_path}"
            )

        logger.debug(f"Parsed {file_path}: {len(structs)} types, {len(impls)} impl blocks")
        return SorobanContract(
            name=structs[0].name,
            contract_types=structs,
            implementations=impls,
            source=source,
            file_path=file_path,
        )

    def _scan(self, lines, masked, file_path: str) -> Tuple[List[SorobanStruct], List[SorobanImpl]]:
        structs: List[SorobanStruct] = []
        impls: List[SorobanImpl] = []

        pending: List[str] = []
        depth = 0
        i = 0
        while i < len(lines):
            code = masked[i].strip()
            if not code:
                i += 1
                continue

            names, rest, complete = _strip_attributes(code)
            while not complete:
                i += 1
                if i >= len(lines):
                    raise InvalidStructureError("attribute opened but never closed before end of input")
                code = code + " " + masked[i].strip()
                names, rest, complete = _strip_attributes(code)
            pending.extend(names)
            if not rest:
                i += 1
                continue

            col = max(len(masked[i].rstrip()) - len(rest), 0)
            struct_m = _STRUCT_HEADER.match(rest)
            if struct_m and any(marker in pending for marker in TYPE_MARKERS):
                struct, end = self._parse_struct(lines, masked, i, col + struct_m.end(), struct_m.group(1))
                structs.append(struct)
                pending = []
                i = end + 1
                continue
            if _IMPL_HEADER.match(rest) and IMPL_MARKER in pending:
                impl, end = self._parse_impl(lines, masked, i, col)
                impls.append(impl)
                pending = []
                i = end + 1
                continue

            pending = []
            depth += rest.count("{") - rest.count("}")
            if depth < 0:
                logger.debug(f"Stray closing brace at line {i + 1} in {file_path}")
                depth = 0
            i += 1

        if depth > 0:
            raise InvalidStructureError(f"{depth} unclosed brace(s) at end of input in {file_path}")
        return structs, impls

    def parse_field(self, line: str, line_number: int) -> Optional[SorobanField]:
        """
        Parse `pub name: Type,` style text. Lines that do not have that shape
        return None; a missing `pub` means private.
        """
        text = line.split("//", 1)[0].strip()
        _, text, _ = _strip_attributes(text)
        text = text.strip().rstrip(",;").strip()
        if not text:
            return None

        visibility = FieldVisibility.PRIVATE
        m = _VISIBILITY.match(text)
        if m:
            visibility = FieldVisibility.PUBLIC
            text = text[m.end():]

        name, sep, type_name = text.partition(":")
        if not sep or type_name.startswith(":"):
            return None
        name = name.strip()
        type_name = " ".join(type_name.split())
        if not _IDENT.match(name) or not type_name:
            return None
        return SorobanField(name=name, type_name=type_name, visibility=visibility, line_number=line_number)

    def parse_function(self, lines: List[str], index: int, target: str = "") -> Optional[SorobanFunction]:
        """Parse the function whose `fn` header sits on lines[index]; None if there is none."""
        masked = mask_source(lines)
        _, rest, _ = _strip_attributes(masked[index].strip())
        if not _FN_HEADER.match(rest):
            return None
        col = max(len(masked[index].rstrip()) - len(rest), 0)
        function, _ = self._parse_function_at(lines, masked, index, col, target, len(lines) - 1)
        return function

    # ── Internals ────────────────────────────────────────────────────────────

    @staticmethod
    def _find_first(masked: List[str], line: int, col: int, chars: str, limit: int) -> Tuple[int, int, str]:
        """First of `chars` at angle-bracket depth zero, scanning forward from (line, col)."""
        angle = 0
        for k in range(line, limit + 1):
            text = masked[k]
            for c in range(col if k == line else 0, len(text)):
                ch = text[c]
                if ch == "<":
                    angle += 1
                elif ch == ">" and angle and not (c > 0 and text[c - 1] in "-="):
                    angle -= 1
                elif ch in chars and angle == 0:
                    return k, c, ch
        raise InvalidStructureError(f"expected one of '{chars}' after line {line + 1} before end of input")

    @staticmethod
    def _match_brace(masked: List[str], line: int, col: int, limit: int) -> Tuple[int, int]:
        """(line, col) of the '}' closing the '{' at masked[line][col]."""
        depth = 0
        for k in range(line, limit + 1):
            text = masked[k]
            for c in range(col if k == line else 0, len(text)):
                if text[c] == "{":
                    depth += 1
                elif text[c] == "}":
                    depth -= 1
                    if depth == 0:
                        return k, c
        raise InvalidStructureError(f"block opened at line {line + 1} is never closed")

    def _parse_struct(self, lines, masked, idx: int, col: int, name: str) -> Tuple[SorobanStruct, int]:
        limit = len(lines) - 1
        open_line, open_col, ch = self._find_first(masked, idx, col, "{;(", limit)
        fields: List[SorobanField] = []

        if ch == "{":
            end_line, end_col = self._match_brace(masked, open_line, open_col, limit)
            segments = []
            for k in range(open_line, end_line + 1):
                start = open_col + 1 if k == open_line else 0
                stop = end_col if k == end_line else len(masked[k])
                segments.append(masked[k][start:stop])
            body = "\n".join(segments)
            for start, stop in _split_spans(body, ","):
                piece = body[start:stop]
                if not piece.strip():
                    continue
                lead = len(piece) - len(piece.lstrip())
                line_number = open_line + body[:start + lead].count("\n") + 1
                parsed = self.parse_field(piece, line_number)
                if parsed:
                    fields.append(parsed)
                else:
                    logger.debug(f"Skipping unrecognised member of {name} at line {line_number}")
        elif ch == "(":
            end_line, _, _ = self._find_first(masked, open_line, open_col, ";", limit)
        else:
            end_line = open_line

        return SorobanStruct(
            name=name,
            fields=fields,
            line_number=idx + 1,
            raw_definition="\n".join(lines[idx:end_line + 1]),
        ), end_line

    def _parse_impl(self, lines, masked, idx: int, col: int) -> Tuple[SorobanImpl, int]:
        limit = len(lines) - 1
        open_line, open_col, ch = self._find_first(masked, idx, col, "{;", limit)
        if ch != "{":
            raise InvalidStructureError(f"#[contractimpl] at line {idx + 1} has no body")
        end_line, _ = self._match_brace(masked, open_line, open_col, limit)

        if open_line == idx:
            header = masked[idx][col:open_col]
        else:
            header = "\n".join([masked[idx][col:]] + masked[idx + 1:open_line] + [masked[open_line][:open_col]])
        target = _impl_target(header)

        functions: List[SorobanFunction] = []
        depth = 0
        k = open_line + 1
        while k < end_line:
            _, rest, _ = _strip_attributes(masked[k].strip())
            if depth == 0 and rest and _FN_HEADER.match(rest):
                fn_col = max(len(masked[k].rstrip()) - len(rest), 0)
                function, last = self._parse_function_at(lines, masked, k, fn_col, target, end_line)
                functions.append(function)
                k = last + 1
                continue
            depth = max(depth + masked[k].count("{") - masked[k].count("}"), 0)
            k += 1

        return SorobanImpl(
            target=target,
            functions=functions,
            line_number=idx + 1,
            raw_definition="\n".join(lines[idx:end_line + 1]),
        ), end_line

    def _parse_function_at(self, lines, masked, idx: int, col: int, target: str, limit: int) -> Tuple[SorobanFunction, int]:
        header = masked[idx][col:]
        m = _FN_HEADER.match(header)
        name = m.group("name")
        visibility = FunctionVisibility.PUBLIC if m.group("vis") else FunctionVisibility.PRIVATE

        # Grow the signature line by line until the parameter list balances.
        parts = [header]
        k = idx
        while True:
            text = "\n".join(parts)
            try:
                span = _group_span(text[m.end():])
            except _Unbalanced as e:
                raise InvalidStructureError(f"unbalanced parameter list for fn {name} at line {idx + 1}: {e}")
            if span:
                open_pos, close_pos = span[0] + m.end(), span[1] + m.end()
                break
            k += 1
            if k > limit:
                raise InvalidStructureError(f"parameter list for fn {name} at line {idx + 1} is never closed")
            parts.append(masked[k])

        # Then until the body opens (or the declaration ends).
        while True:
            text = "\n".join(parts)
            body_pos = _body_opener(text, close_pos + 1)
            if body_pos is not None:
                break
            k += 1
            if k > limit:
                raise InvalidStructureError(f"fn {name} at line {idx + 1} has no body before end of input")
            parts.append(masked[k])

        params = []
        for entry in split_preserving_parentheses(text[open_pos + 1:close_pos], ","):
            entry = " ".join(entry.split())
            if _RECEIVER.match(entry):
                continue
            param_name, sep, type_name = entry.partition(":")
            if not sep:
                continue
            param_name = re.sub(r"^mut\s+", "", param_name.strip())
            params.append(SorobanParam(name=param_name, type_name=type_name.strip()))

        return_type = None
        tail = text[close_pos + 1:body_pos]
        ret_m = re.match(r"\s*->\s*(.*)$", tail, re.DOTALL)
        if ret_m:
            return_type = " ".join(re.split(r"\bwhere\b", ret_m.group(1))[0].split()) or None

        body_line = idx + text[:body_pos].count("\n")
        if text[body_pos] == "{":
            body_col = body_pos - (text.rfind("\n", 0, body_pos) + 1)
            if body_line == idx:
                body_col += col
            end_line, _ = self._match_brace(masked, body_line, body_col, limit)
        else:
            end_line = body_line

        return SorobanFunction(
            name=name,
            params=params,
            return_type=return_type,
            visibility=visibility,
            is_constructor=_is_constructor(name, return_type, target),
            line_number=idx + 1,
            raw_definition="\n".join(lines[idx:end_line + 1]),
        ), end_line


def parse_contract(source: str, file_path: str) -> SorobanContract:
    """Module-level entry point; parsers hold no state between calls."""
    return SorobanParser().parse_contract(source, file_path)
