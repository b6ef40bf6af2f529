"""
Analyzer Controller: turns routed requests into scanner calls.

Handles: analyze, detect_language, list_rules
"""

import logging
from typing import Any, Dict, Optional

from gasguard.models import MCPRequest, RuleInfo
from gasguard.services.language_detector import Language
from gasguard.services.scanner import ContractScanner
from gasguard.utils.errors import SorobanParseError, UnsupportedLanguageError, error_response

logger = logging.getLogger("gasguard.analyzer")

DEFAULT_SOURCE = "remote-analysis"


class AnalyzerController:
    """Validates payloads and shapes scanner output into response envelopes."""

    def __init__(self, scanner: Optional[ContractScanner] = None) -> None:
        self.scanner = scanner or ContractScanner()

    async def analyze(self, req: MCPRequest) -> Dict[str, Any]:
        code = req.payload.get("code", "")
        if not code or not code.strip():
            return error_response(req.request_id, "MISSING_CODE", "payload.code is required")

        source = req.payload.get("source") or DEFAULT_SOURCE
        language = req.payload.get("language")
        try:
            lang = Language(language) if language else None
        except ValueError:
            return error_response(req.request_id, "UNSUPPORTED_LANGUAGE", f"Unknown language: {language}")

        try:
            result = self.scanner.scan_content(code, source, lang)
        except SorobanParseError as e:
            logger.warning(f"Parse failed for {source}: {e}")
            return error_response(req.request_id, "PARSE_ERROR", str(e))
        except UnsupportedLanguageError as e:
            return error_response(req.request_id, "UNSUPPORTED_LANGUAGE", str(e))

        data = result.model_dump(mode="json")
        data["summary"] = result.summary()
        return {
            "request_id": req.request_id,
            "type": "success",
            "data": data,
        }

    async def detect_language(self, req: MCPRequest) -> Dict[str, Any]:
        code = req.payload.get("code", "")
        detected = Language.from_content(code)
        return {
            "request_id": req.request_id,
            "type": "success",
            "data": {"language": detected.value if detected else None},
        }

    async def list_rules(self, req: MCPRequest) -> Dict[str, Any]:
        return {
            "request_id": req.request_id,
            "type": "success",
            "data": {"rules": [info.model_dump(mode="json") for info in self.rule_infos()]},
        }

    def rule_infos(self) -> list:
        engine = self.scanner.analyzers.get(Language.SOROBAN)
        rules = getattr(engine, "rules", [])
        return [
            RuleInfo(id=r.id, name=r.name, severity=r.severity, enabled=r.enabled, description=r.description)
            for r in rules
        ]


_controller_instance: AnalyzerController | None = None


def get_analyzer_controller() -> AnalyzerController:
    global _controller_instance
    if _controller_instance is None:
        _controller_instance = AnalyzerController()
    return _controller_instance
