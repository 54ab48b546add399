"""Global configuration for billguard."""

from __future__ import annotations

import copy
import json
import os
from typing import Dict, Any


DEFAULT_SETTINGS: Dict[str, Any] = {
    "approaching_threshold_pct": 80,
    "upgrade_prompt_pct": 80,
    "checkout_period_days": 30,
    "default_price_id": "price_pro_monthly",
    "webhook_log_size": 100,
}

_settings: Dict[str, Any] = copy.deepcopy(DEFAULT_SETTINGS)


def _parse_json_env(var_name: str) -> Dict[str, Any] | None:
    value = os.getenv(var_name)
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _validate(overrides: Dict[str, Any]) -> None:
    for key, value in overrides.items():
        if key not in DEFAULT_SETTINGS:
            raise ValueError(f"unknown setting: {key}")
        expected = type(DEFAULT_SETTINGS[key])
        if expected is int and (isinstance(value, bool) or not isinstance(value, (int, float))):
            raise ValueError(f"setting {key} must be a number")
        if expected is str and not isinstance(value, str):
            raise ValueError(f"setting {key} must be a string")


def get_settings() -> Dict[str, Any]:
    """Return settings, with optional env override."""
    parsed = _parse_json_env("BILLGUARD_SETTINGS_JSON")
    if parsed:
        merged = copy.deepcopy(_settings)
        merged.update({k: v for k, v in parsed.items() if k in DEFAULT_SETTINGS})
        return merged
    return copy.deepcopy(_settings)


def get_setting(key: str) -> Any:
    return get_settings()[key]


def set_settings(**overrides: Any) -> None:
    """Set settings at runtime."""
    _validate(overrides)
    global _settings
    updated = copy.deepcopy(_settings)
    updated.update(overrides)
    _settings = updated


def reset_settings() -> None:
    """Restore the built-in defaults."""
    global _settings
    _settings = copy.deepcopy(DEFAULT_SETTINGS)
