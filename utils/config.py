# CREATE FILE: utils/config.py

import copy
import json
import os
from typing import Dict, Any

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), '../config/defaults.json')

# Fallback defaults if config file not found
FALLBACK_CONFIG: Dict[str, Any] = {
    "pricing": {
        "currency": "USD",
        "rounding_places": 2
    },
    "routing": {
        "mode": "in_process",
        "default_priority": 999,
        "audit_log_enabled": True,
        "request_timeout_seconds": 10
    },
    "cart": {
        "line_ttl_hours": 24,
        "routing_timeout_seconds": 10
    }
}


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: str = None) -> Dict[str, Any]:
    """
    Load service configuration from JSON.

    Resolution order: explicit path, PORTAL_CONFIG_PATH, config/defaults.json.
    Keys missing from the file keep their built-in fallback values.
    """
    if config_path is None:
        config_path = os.getenv("PORTAL_CONFIG_PATH", DEFAULT_CONFIG_PATH)

    try:
        with open(config_path, 'r') as f:
            return _merge(FALLBACK_CONFIG, json.load(f))
    except FileNotFoundError:
        return copy.deepcopy(FALLBACK_CONFIG)
