"""Candidate verification and the stock capability predicates."""

from __future__ import annotations

from dataclasses import dataclass
import inspect
from types import ModuleType
from typing import Callable, Iterator

from plugscan.core.logging import get_logger

from .context import LoaderContext
from .walker import Candidate

__all__ = [
    "PluginTest",
    "ResourceTest",
    "Verification",
    "all_of",
    "defined_classes",
    "name_endswith",
    "subclass_of",
    "verify",
]

PluginTest = Callable[[type], bool]
ResourceTest = Callable[[str], bool]


@dataclass(frozen=True, slots=True)
class Verification:
    """Outcome of resolving one candidate and testing its classes."""

    candidate: Candidate
    matches: tuple[type, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def defined_classes(module: ModuleType) -> Iterator[type]:
    """Yield classes defined by ``module`` itself, skipping re-exports."""

    for _, value in inspect.getmembers(module, inspect.isclass):
        if getattr(value, "__module__", None) == module.__name__:
            yield value


def verify(
    candidate: Candidate,
    loader: LoaderContext,
    predicate: PluginTest,
) -> Verification:
    """Import ``candidate`` through ``loader`` and keep classes passing ``predicate``.

    Import failures (missing dependencies, syntax errors, modules raising at
    import time) and predicate errors are reported on the returned value and
    logged as warnings. They never propagate.
    """

    logger = get_logger(__name__, candidate=candidate.name)
    try:
        module = loader.resolve(candidate.name)
        matches = tuple(cls for cls in defined_classes(module) if predicate(cls))
    except Exception as exc:
        logger.warning(
            "candidate-unresolvable",
            source=candidate.source,
            error=f"{type(exc).__name__}: {exc}",
        )
        return Verification(
            candidate=candidate,
            error=f"{type(exc).__name__}: {exc}",
        )

    logger.debug("candidate-verified", matches=len(matches))
    return Verification(candidate=candidate, matches=matches)


def subclass_of(*bases: type) -> PluginTest:
    """Return a test matching strict subclasses of any of ``bases``.

    Example:
        >>> test = subclass_of(Exception)
        >>> test(ValueError), test(Exception), test(int)
        (True, False, False)
    """

    def _test(cls: type) -> bool:
        return any(cls is not base and issubclass(cls, base) for base in bases)

    _test.__qualname__ = "subclass_of(" + ", ".join(b.__name__ for b in bases) + ")"
    return _test


def all_of(*tests: PluginTest) -> PluginTest:
    """Return a test passing only when every test in ``tests`` passes."""

    def _test(cls: type) -> bool:
        return all(test(cls) for test in tests)

    return _test


def name_endswith(*suffixes: str) -> ResourceTest:
    """Return a resource test matching entry names by suffix.

    Example:
        >>> name_endswith(".json")("acme/plugins/defaults.json")
        True
    """

    lowered = tuple(suffix.lower() for suffix in suffixes)

    def _test(name: str) -> bool:
        return name.lower().endswith(lowered)

    return _test
