"""Data files shipped inside :mod:`plugscan`.

``plugscan.defaults.toml`` seeds the configuration stack; see
:mod:`plugscan.core.config`.
"""

from __future__ import annotations

from importlib import resources
from importlib.resources.abc import Traversable


def get_resource(relative_path: str) -> Traversable:
    """Return a handle to the packaged file at ``relative_path``.

    Raises:
        FileNotFoundError: If no such file ships with the package.
            Directories do not count.

    Example:
        >>> get_resource("plugscan.defaults.toml").name
        'plugscan.defaults.toml'
    """

    handle = resources.files(__name__)
    for part in relative_path.strip("/").split("/"):
        handle = handle.joinpath(part)
    if not handle.is_file():
        raise FileNotFoundError(f"Packaged resource not found: {relative_path}")
    return handle


def read_resource_text(relative_path: str, *, encoding: str = "utf-8") -> str:
    """Return the decoded contents of a packaged file."""

    return get_resource(relative_path).read_text(encoding=encoding)


__all__ = ["get_resource", "read_resource_text"]
