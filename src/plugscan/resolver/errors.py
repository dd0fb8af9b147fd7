"""Domain-specific exceptions for package resolution."""

from __future__ import annotations


class ResolverError(RuntimeError):
    """Base error for package resolution failures."""


class MalformedIdentifierError(ResolverError, ValueError):
    """Raised when a resource identifier cannot be split into scheme and path."""


class InvalidPackageNameError(ResolverError, ValueError):
    """Raised when a dotted package name is not a valid import path."""


class ResourceUnavailableError(ResolverError):
    """Raised when a directory or archive backing a location cannot be read."""


class LoaderContextBusyError(ResolverError):
    """Raised when the loader context is swapped while a scan is running."""


__all__ = [
    "ResolverError",
    "MalformedIdentifierError",
    "InvalidPackageNameError",
    "ResourceUnavailableError",
    "LoaderContextBusyError",
]
