"""
logging_setup.py
Central logging configuration. Call setup_logging() once at start-up.
"""

from __future__ import annotations

import copy
import logging.config
from typing import Any, Dict, Optional


def merge_dicts(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge *overrides* into *base* and return *base*."""
    for key, value in overrides.items():
        if isinstance(base.get(key), dict) and isinstance(value, dict):
            merge_dicts(base[key], value)
        else:
            base[key] = value
    return base


DEFAULT_LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {"format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
}


def setup_logging(config_overrides: Optional[Dict[str, Any]] = None) -> None:
    config = copy.deepcopy(DEFAULT_LOGGING_CONFIG)
    if config_overrides:
        merge_dicts(config, config_overrides)
    logging.config.dictConfig(config)
