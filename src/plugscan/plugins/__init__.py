"""Plugin declaration and registry built on the package resolver."""

from __future__ import annotations

from .metadata import PluginMetadata, get_plugin_metadata, is_plugin, plugin
from .registry import PluginManager, PluginRegistry, PluginType

__all__ = [
    "PluginManager",
    "PluginMetadata",
    "PluginRegistry",
    "PluginType",
    "get_plugin_metadata",
    "is_plugin",
    "plugin",
]
