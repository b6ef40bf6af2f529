"""
Rule configuration loaded from YAML.

    rules:
      soroban-expensive-strings:
        enabled: false
      soroban-unused-state-variables:
        severity: error

The file is optional. Path comes from the argument or $GASGUARD_CONFIG.
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from gasguard.models import Severity
from gasguard.services.soroban_rules import RULE_CLASSES, SorobanRule

logger = logging.getLogger("gasguard.rule_config")

CONFIG_ENV = "GASGUARD_CONFIG"


def load_rule_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Read the YAML config; a missing or unreadable file yields {}."""
    path = path or os.getenv(CONFIG_ENV)
    if not path:
        return {}
    config_file = Path(path)
    if not config_file.exists():
        logger.warning(f"Rule config not found: {config_file}")
        return {}
    try:
        with open(config_file, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load rule config {config_file}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.error(f"Rule config {config_file} must be a mapping, got {type(data).__name__}")
        return {}
    logger.info(f"Loaded rule config from {config_file}")
    return data


def build_rules(config: Optional[Dict[str, Any]] = None) -> List[SorobanRule]:
    """Default catalog with per-rule `enabled` / `severity` overrides applied."""
    overrides = (config or {}).get("rules") or {}
    known = {cls.id for cls in RULE_CLASSES}
    for rule_id in overrides:
        if rule_id not in known:
            logger.warning(f"Ignoring config for unknown rule: {rule_id}")

    rules = []
    for rule_cls in RULE_CLASSES:
        settings = overrides.get(rule_cls.id) or {}
        severity = settings.get("severity")
        if severity is not None:
            try:
                severity = Severity(str(severity).lower())
            except ValueError:
                logger.warning(f"Invalid severity '{severity}' for {rule_cls.id}, using default")
                severity = None
        rules.append(rule_cls(severity=severity, enabled=bool(settings.get("enabled", True))))
    return rules
