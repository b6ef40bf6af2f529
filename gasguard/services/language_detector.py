import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger("gasguard.language_detector")


class Language(str, Enum):
    RUST = "rust"
    VYPER = "vyper"
    SOROBAN = "soroban"

    @classmethod
    def from_extension(cls, ext: str) -> Optional["Language"]:
        return EXTENSIONS.get(ext.lower().lstrip("."))

    @classmethod
    def from_content(cls, content: str) -> Optional["Language"]:
        return LanguageDetector.detect(content)


EXTENSIONS = {
    "rs": Language.RUST,
    "vy": Language.VYPER,
}


class LanguageDetector:
    """
    Content-based language detection.

    Checks run most specific first: a Soroban file is also valid Rust, so
    the SDK import plus a contract marker must win over generic Rust idioms.
    """

    SOROBAN_IMPORT = "soroban_sdk"
    SOROBAN_MARKERS = ["#[contract]", "#[contractimpl]", "#[contracttype]"]
    VYPER_MARKERS = ["# @version", "interface "]
    RUST_MARKERS = ["fn main(", "#[derive("]

    @staticmethod
    def detect(content: str) -> Optional[Language]:
        if LanguageDetector.SOROBAN_IMPORT in content and any(
            m in content for m in LanguageDetector.SOROBAN_MARKERS
        ):
            return Language.SOROBAN
        if any(m in content for m in LanguageDetector.VYPER_MARKERS):
            return Language.VYPER
        if any(m in content for m in LanguageDetector.RUST_MARKERS):
            return Language.RUST
        logger.debug("No language markers found in content")
        return None
