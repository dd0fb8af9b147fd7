"""Core utilities shared across :mod:`plugscan` modules.

The core namespace provides configuration loading and logging setup so the
resolver and plugin modules stay focused on discovery.

Example:
    >>> from plugscan.core import get_logger
    >>> logger = get_logger(__name__)
    >>> isinstance(logger, object)
    True
"""

from __future__ import annotations

from .config import AppConfig, ResolverSettings, load_app_config, load_config
from .logging import configure_logging, get_logger, scan_context

__all__ = [
    "AppConfig",
    "ResolverSettings",
    "configure_logging",
    "get_logger",
    "load_app_config",
    "load_config",
    "scan_context",
]
