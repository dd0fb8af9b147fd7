"""Declared plugin metadata attached to classes by :func:`plugin`."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, TypeVar

__all__ = [
    "METADATA_ATTRIBUTE",
    "PluginMetadata",
    "get_plugin_metadata",
    "is_plugin",
    "plugin",
]

METADATA_ATTRIBUTE = "__plugin__"

C = TypeVar("C", bound=type)


@dataclass(frozen=True, slots=True)
class PluginMetadata:
    """Name and category a plugin class is registered under.

    Args:
        name: Name used to reference the plugin from configuration.
        category: Plugin family, e.g. ``core`` or ``converter``.
        element_type: Configuration element the plugin represents; defaults
            to the plugin name.
        print_object: Whether the configured instance is worth printing.
        defer_children: Whether child elements are configured by the plugin.
        aliases: Alternative names resolving to the same plugin.
    """

    name: str
    category: str = "core"
    element_type: str | None = None
    print_object: bool = False
    defer_children: bool = False
    aliases: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        name = self.name.strip()
        if not name:
            raise ValueError("Plugin name must not be empty.")
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "category", self.category.strip() or "core")
        element = (self.element_type or "").strip()
        object.__setattr__(self, "element_type", element or None)
        object.__setattr__(
            self,
            "aliases",
            tuple(
                dict.fromkeys(
                    alias.strip() for alias in self.aliases if alias.strip()
                )
            ),
        )

    @property
    def element_name(self) -> str:
        return self.element_type or self.name


def plugin(
    name: str,
    *,
    category: str = "core",
    element_type: str | None = None,
    print_object: bool = False,
    defer_children: bool = False,
    aliases: tuple[str, ...] = (),
) -> Callable[[C], C]:
    """Class decorator declaring plugin metadata.

    Metadata is stored on the decorated class only; subclasses must declare
    their own to be discovered.

    Example:
        >>> @plugin("RollingFile", element_type="appender", print_object=True)
        ... class RollingFileAppender:
        ...     pass
        >>> get_plugin_metadata(RollingFileAppender).element_name
        'appender'
    """

    metadata = PluginMetadata(
        name=name,
        category=category,
        element_type=element_type,
        print_object=print_object,
        defer_children=defer_children,
        aliases=tuple(aliases),
    )

    def _decorate(cls: C) -> C:
        setattr(cls, METADATA_ATTRIBUTE, metadata)
        return cls

    return _decorate


def get_plugin_metadata(cls: type) -> PluginMetadata | None:
    """Return metadata declared directly on ``cls``, if any."""

    value = vars(cls).get(METADATA_ATTRIBUTE)
    if isinstance(value, PluginMetadata):
        return value
    return None


def is_plugin(cls: type) -> bool:
    """Capability test matching classes decorated with :func:`plugin`."""

    return get_plugin_metadata(cls) is not None
