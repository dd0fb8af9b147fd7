"""Loader contexts: where packages live and how names are imported.

A loader context is the only piece of the resolver that touches the
interpreter's import machinery. Swapping it lets the resolver run against a
restricted or synthetic view of the search path, which is how tests and
embedding hosts drive discovery.
"""

from __future__ import annotations

import importlib
from pathlib import Path
import sys
import threading
from types import ModuleType
from typing import Callable, Iterable, Iterator, Protocol, Sequence, runtime_checkable
import zipfile

from plugscan.core.logging import get_logger

__all__ = [
    "LoaderContext",
    "ResourceLister",
    "SingleLocationLoaderContext",
    "SysPathLoaderContext",
    "get_default_loader_context",
    "load_type",
    "set_default_loader_context",
]

Importer = Callable[[str], ModuleType]


@runtime_checkable
class LoaderContext(Protocol):
    """Capability enumerating package locations and importing modules."""

    def find_resources(self, logical_path: str) -> Iterable[str]:
        """Yield identifiers for every provider exposing ``logical_path``."""

    def resolve(self, name: str) -> ModuleType:
        """Import and return the module called ``name``."""


@runtime_checkable
class ResourceLister(Protocol):
    """Optional capability listing entries of bundle-style locations.

    Names are returned relative to the provider root, e.g.
    ``acme/plugins/rolling.py``.
    """

    def list_resources(
        self,
        logical_path: str,
        *,
        recursive: bool,
    ) -> Iterable[str]:
        """Return entry names found below ``logical_path``."""


class SysPathLoaderContext:
    """Default context backed by ``sys.path`` and :mod:`importlib`.

    Directories and zip archives on the search path are probed for the
    logical path; archives are reported with a ``zip:`` archive-member
    identifier so :mod:`zipimport` entries are walked like any other archive.

    Example:
        >>> context = SysPathLoaderContext(search_path=[])
        >>> list(context.find_resources("acme"))
        []
    """

    def __init__(
        self,
        *,
        search_path: Sequence[str | Path] | None = None,
        importer: Importer = importlib.import_module,
    ) -> None:
        self._search_path = (
            tuple(str(entry) for entry in search_path)
            if search_path is not None
            else None
        )
        self._importer = importer

    @property
    def search_path(self) -> tuple[str, ...]:
        """Return the entries probed, falling back to a live ``sys.path``."""

        if self._search_path is not None:
            return self._search_path
        return tuple(sys.path)

    def find_resources(self, logical_path: str) -> Iterator[str]:
        logical_path = logical_path.strip("/")
        seen: set[str] = set()
        for entry in self.search_path:
            root = Path(entry or ".")
            try:
                identifier = self._probe(root, logical_path)
            except (OSError, zipfile.BadZipFile) as exc:
                get_logger(__name__, entry=entry).warning(
                    "search-path-unreadable",
                    logical_path=logical_path,
                    error=str(exc),
                )
                continue
            if identifier is None or identifier in seen:
                continue
            seen.add(identifier)
            yield identifier

    def resolve(self, name: str) -> ModuleType:
        return self._importer(name)

    @staticmethod
    def _probe(root: Path, logical_path: str) -> str | None:
        if root.is_dir():
            target = root / logical_path
            if target.is_dir():
                return target.resolve().as_uri() + "/"
            return None
        if root.is_file() and zipfile.is_zipfile(root):
            prefix = f"{logical_path}/"
            with zipfile.ZipFile(root) as archive:
                if not any(name.startswith(prefix) for name in archive.namelist()):
                    return None
            return f"zip:{root.resolve().as_uri()}!/{prefix}"
        return None


class SingleLocationLoaderContext:
    """Context reporting one fixed identifier for every logical path.

    Mirrors a host that can only describe a single deployment location,
    such as one virtual-filesystem URL handed over by an application server.
    Imports are delegated to ``importer``.

    Example:
        >>> context = SingleLocationLoaderContext("vfs:/content/app.war/acme/")
        >>> list(context.find_resources("acme"))
        ['vfs:/content/app.war/acme/']
    """

    def __init__(
        self,
        identifier: str,
        *,
        importer: Importer = importlib.import_module,
    ) -> None:
        self.identifier = identifier
        self._importer = importer

    def find_resources(self, logical_path: str) -> list[str]:
        del logical_path
        return [self.identifier]

    def resolve(self, name: str) -> ModuleType:
        return self._importer(name)


_default_lock = threading.Lock()
_default_context: LoaderContext | None = None


def get_default_loader_context() -> LoaderContext:
    """Return the process-wide loader context, creating it on first use."""

    global _default_context
    with _default_lock:
        if _default_context is None:
            _default_context = SysPathLoaderContext()
        return _default_context


def set_default_loader_context(context: LoaderContext | None) -> None:
    """Replace the process-wide loader context.

    Passing ``None`` restores a fresh :class:`SysPathLoaderContext` on the
    next :func:`get_default_loader_context` call.
    """

    global _default_context
    if context is not None and not isinstance(context, LoaderContext):
        raise TypeError(f"Not a loader context: {context!r}")
    with _default_lock:
        _default_context = context


def load_type(context: LoaderContext, reference: str) -> type:
    """Resolve ``module:Class`` (or ``module.Class``) through ``context``.

    Raises:
        ImportError: If the module cannot be imported.
        AttributeError: If the module does not define the attribute.
        TypeError: If the attribute is not a class.
    """

    reference = reference.strip()
    if ":" in reference:
        module_name, _, attribute = reference.partition(":")
    else:
        module_name, _, attribute = reference.rpartition(".")
    if not module_name or not attribute:
        raise ImportError(f"Invalid type reference: {reference!r}")
    target: object = context.resolve(module_name)
    for part in attribute.split("."):
        target = getattr(target, part)
    if not isinstance(target, type):
        raise TypeError(f"{reference!r} does not name a class")
    return target
