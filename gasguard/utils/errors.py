from typing import Any, Dict


class SorobanParseError(Exception):
    """Base class for failures that abort the analysis of one source."""

    kind = "parse_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @classmethod
    def missing_macro(cls, context: str) -> "MissingMacroError":
        return MissingMacroError(context)

    @classmethod
    def invalid_structure(cls, reason: str) -> "InvalidStructureError":
        return InvalidStructureError(reason)

    @classmethod
    def io_error(cls, reason: str) -> "SorobanIoError":
        return SorobanIoError(reason)


class MissingMacroError(SorobanParseError):
    """No #[contracttype] / #[contract] struct, so the contract has no name."""

    kind = "missing_macro"

    def __str__(self) -> str:
        return f"Missing required Soroban macro: {self.message}"


class InvalidStructureError(SorobanParseError):
    """A brace, paren or bracket run never balances before end of input."""

    kind = "invalid_structure"

    def __str__(self) -> str:
        return f"Invalid contract structure: {self.message}"


class SorobanIoError(SorobanParseError):
    """Raised by the file-reading scanner, never by the parser itself."""

    kind = "io_error"

    def __str__(self) -> str:
        return f"IO error: {self.message}"


class UnsupportedLanguageError(Exception):
    """The detected language has no analyzer registered with the scanner."""


def error_response(request_id: str, code: str, message: str) -> Dict[str, Any]:
    return {
        "request_id": request_id,
        "type": "error",
        "data": None, # Explicitly null for error responses
        "error": {
            "code": code,
            "message": message
        }
    }
