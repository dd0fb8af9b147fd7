"""Index discovered plugin classes by category and name."""

from __future__ import annotations

from dataclasses import dataclass
import threading
from typing import Iterable, Iterator, Mapping, Sequence

from plugscan.core.logging import get_logger
from plugscan.resolver import PackageResolver

from .metadata import PluginMetadata, get_plugin_metadata, is_plugin

__all__ = ["PluginManager", "PluginRegistry", "PluginType"]


@dataclass(frozen=True, slots=True)
class PluginType:
    """A discovered plugin class together with its declared metadata."""

    plugin_class: type
    metadata: PluginMetadata

    @property
    def key(self) -> str:
        return self.metadata.name.lower()

    @property
    def category(self) -> str:
        return self.metadata.category.lower()

    @property
    def element_name(self) -> str:
        return self.metadata.element_name

    @property
    def qualified_name(self) -> str:
        cls = self.plugin_class
        return f"{cls.__module__}:{cls.__qualname__}"

    def keys(self) -> tuple[str, ...]:
        """Return the lookup keys: the name followed by any aliases."""

        aliases = tuple(alias.lower() for alias in self.metadata.aliases)
        return tuple(dict.fromkeys((self.key, *aliases)))


class PluginRegistry:
    """Scan packages for ``@plugin`` classes and cache the index per package.

    Example:
        >>> from plugscan.resolver import SysPathLoaderContext
        >>> registry = PluginRegistry(
        ...     PackageResolver(loader=SysPathLoaderContext(search_path=[]))
        ... )
        >>> registry.load_from_package("acme.plugins")
        {}
    """

    def __init__(self, resolver: PackageResolver | None = None) -> None:
        self._resolver = resolver or PackageResolver()
        self._lock = threading.Lock()
        self._by_package: dict[str, dict[str, list[PluginType]]] = {}

    @property
    def resolver(self) -> PackageResolver:
        return self._resolver

    def index(
        self,
        types: Iterable[type],
    ) -> dict[str, list[PluginType]]:
        """Group ``types`` carrying plugin metadata by lower-cased category."""

        grouped: dict[str, list[PluginType]] = {}
        for cls in types:
            metadata = get_plugin_metadata(cls)
            if metadata is None:
                get_logger(__name__, type=cls.__qualname__).debug(
                    "plugin-metadata-missing"
                )
                continue
            plugin_type = PluginType(plugin_class=cls, metadata=metadata)
            grouped.setdefault(plugin_type.category, []).append(plugin_type)
        for entries in grouped.values():
            entries.sort(key=lambda entry: (entry.key, entry.qualified_name))
        return grouped

    def load_from_package(
        self,
        package: str,
        *,
        recursive: bool | None = None,
    ) -> dict[str, list[PluginType]]:
        """Return the plugin index for ``package``, scanning on first use."""

        with self._lock:
            cached = self._by_package.get(package)
        if cached is not None:
            return _copy_index(cached)

        report = self._resolver.find_in_package(
            is_plugin,
            package,
            recursive=recursive,
        )
        indexed = self.index(report.discovered)
        get_logger(__name__, package=package).info(
            "plugins-indexed",
            categories=sorted(indexed),
            plugins=sum(len(entries) for entries in indexed.values()),
            warnings=len(report.warnings),
        )
        with self._lock:
            self._by_package.setdefault(package, indexed)
            return _copy_index(self._by_package[package])

    def clear(self) -> None:
        with self._lock:
            self._by_package.clear()


def _copy_index(
    index: Mapping[str, list[PluginType]],
) -> dict[str, list[PluginType]]:
    return {category: list(entries) for category, entries in index.items()}


class PluginManager:
    """Resolve plugins of one category by (case-insensitive) name.

    This is the lookup consumers such as appender configuration use to turn
    a configured element name into an implementation class.
    """

    def __init__(
        self,
        category: str,
        *,
        registry: PluginRegistry | None = None,
        packages: Sequence[str] = (),
    ) -> None:
        self.category = category.strip().lower()
        self._registry = registry or PluginRegistry()
        self._packages: list[str] = []
        self._plugins: dict[str, PluginType] = {}
        self.add_packages(packages)

    @property
    def packages(self) -> tuple[str, ...]:
        return tuple(self._packages)

    @property
    def plugins(self) -> Mapping[str, PluginType]:
        return dict(self._plugins)

    def add_package(self, package: str) -> None:
        package = package.strip()
        if package and package not in self._packages:
            self._packages.append(package)

    def add_packages(self, packages: Iterable[str]) -> None:
        for package in packages:
            self.add_package(package)

    def collect_plugins(self, packages: Sequence[str] | None = None) -> None:
        """Scan ``packages`` (or the registered ones) and index this category.

        The first plugin claiming a name wins; later claimants are logged.
        """

        targets = list(packages) if packages is not None else self.packages
        collected: dict[str, PluginType] = {}
        for package in targets:
            index = self._registry.load_from_package(package)
            for plugin_type in index.get(self.category, ()):
                for key in plugin_type.keys():
                    existing = collected.get(key)
                    if existing is None:
                        collected[key] = plugin_type
                        continue
                    if existing.plugin_class is plugin_type.plugin_class:
                        continue
                    get_logger(__name__, category=self.category).warning(
                        "plugin-duplicate",
                        key=key,
                        kept=existing.qualified_name,
                        ignored=plugin_type.qualified_name,
                    )
        self._plugins = collected

    def get_plugin_type(self, name: str) -> PluginType | None:
        return self._plugins.get(name.strip().lower())

    def __iter__(self) -> Iterator[PluginType]:
        seen: set[type] = set()
        for plugin_type in self._plugins.values():
            if plugin_type.plugin_class in seen:
                continue
            seen.add(plugin_type.plugin_class)
            yield plugin_type
