"""Discover plugin classes across directories, archives and virtual filesystems.

Example:
    >>> from plugscan import __version__
    >>> isinstance(__version__, str)
    True
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("plugscan")
except PackageNotFoundError:  # pragma: no cover - running from a source tree
    __version__ = "0.0.0"

__all__ = ["__version__"]
