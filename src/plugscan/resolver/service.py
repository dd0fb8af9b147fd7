"""Package resolver orchestrating location, walking, and verification."""

from __future__ import annotations

import concurrent.futures
import contextvars
from contextlib import contextmanager
from dataclasses import dataclass, field
import threading
from typing import Callable, Iterator, Sequence

from plugscan.core.config import ResolverSettings
from plugscan.core.logging import get_logger, scan_context

from .aggregator import ResultAggregator
from .context import LoaderContext, get_default_loader_context
from .errors import LoaderContextBusyError, MalformedIdentifierError
from .filters import PluginTest, ResourceTest, Verification, verify
from .locations import ResourceLocation, package_to_path
from .walker import ContainerKind, LocationResult, ResourceWalker

__all__ = ["LocationScan", "PackageResolver", "ScanReport"]


@dataclass(frozen=True, slots=True)
class LocationScan:
    """Walk result for one location plus the verification of its candidates."""

    result: LocationResult
    verifications: tuple[Verification, ...] = ()

    @property
    def warnings(self) -> tuple[str, ...]:
        messages: list[str] = []
        if self.result.error is not None:
            messages.append(
                f"{self.result.location.raw_identifier}: {self.result.error}"
            )
        for verification in self.verifications:
            if verification.error is not None:
                messages.append(
                    f"{verification.candidate.name}: {verification.error}"
                )
        return tuple(messages)


@dataclass(frozen=True, slots=True)
class ScanReport:
    """Summary of a single package scan."""

    package: str
    discovered: frozenset[type] = frozenset()
    locations: tuple[LocationResult, ...] = ()
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def candidate_count(self) -> int:
        return sum(len(result.candidates) for result in self.locations)


class PackageResolver:
    """Find classes satisfying a predicate across every package location.

    Provider-level and candidate-level failures are absorbed into the report's
    warnings and the log; only invalid package names reach the caller.

    Example:
        >>> from plugscan.resolver.context import SysPathLoaderContext
        >>> resolver = PackageResolver(loader=SysPathLoaderContext(search_path=[]))
        >>> report = resolver.find_in_package(lambda cls: True, "acme")
        >>> report.discovered
        frozenset()
    """

    def __init__(
        self,
        *,
        loader: LoaderContext | None = None,
        settings: ResolverSettings | None = None,
    ) -> None:
        self._loader = loader
        self._settings = settings or ResolverSettings()
        self._classes: ResultAggregator[type] = ResultAggregator()
        self._resources: ResultAggregator[str] = ResultAggregator()
        self._state_lock = threading.Lock()
        self._active_scans = 0

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    @property
    def loader(self) -> LoaderContext:
        """Return the injected loader context or the process default."""

        return self._loader or get_default_loader_context()

    @loader.setter
    def loader(self, context: LoaderContext | None) -> None:
        with self._state_lock:
            if self._active_scans:
                raise LoaderContextBusyError(
                    "Cannot replace the loader context while a scan is running."
                )
            self._loader = context

    @property
    def settings(self) -> ResolverSettings:
        return self._settings

    @property
    def classes(self) -> frozenset[type]:
        """Return every class matched since construction or :meth:`reset`."""

        return self._classes.snapshot()

    @property
    def resources(self) -> frozenset[str]:
        """Return every resource identifier matched so far."""

        return self._resources.snapshot()

    def reset(self) -> None:
        self._classes.clear()
        self._resources.clear()

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------
    def locate(self, package: str) -> tuple[ResourceLocation, ...]:
        """Return the parsed locations exposing ``package``."""

        return self._locate(self.loader, package_to_path(package))[0]

    def find_in_package(
        self,
        predicate: PluginTest,
        package: str,
        *,
        recursive: bool | None = None,
        aggregator: ResultAggregator[type] | None = None,
    ) -> ScanReport:
        """Scan ``package`` for classes for which ``predicate`` is true.

        Args:
            predicate: Capability test applied to each resolved class.
            package: Dotted package name.
            recursive: Descend into sub-packages; ``None`` uses settings.
            aggregator: Extra aggregator fed alongside :attr:`classes`.

        Raises:
            InvalidPackageNameError: If ``package`` is not a dotted name.
        """

        package_path = package_to_path(package)
        recursive = self._settings.recursive if recursive is None else recursive
        logger = get_logger(__name__, package=package)

        with self._scanning() as loader, scan_context(scan=package):
            locations, warnings = self._locate(loader, package_path)
            logger.info(
                "scan-started",
                locations=len(locations),
                recursive=recursive,
                predicate=getattr(predicate, "__qualname__", repr(predicate)),
            )
            walker = ResourceWalker(settings=self._settings, loader=loader)
            scans = self._run(
                lambda location: self._scan_location(
                    walker,
                    loader,
                    location,
                    package,
                    predicate,
                    recursive,
                ),
                locations,
            )

        discovered: ResultAggregator[type] = ResultAggregator()
        results: list[LocationResult] = []
        for scan in scans:
            results.append(scan.result)
            warnings.extend(scan.warnings)
            for verification in scan.verifications:
                for cls in verification.matches:
                    discovered.add(cls)
                    self._classes.add(cls)
                    if aggregator is not None:
                        aggregator.add(cls)

        report = ScanReport(
            package=package,
            discovered=discovered.snapshot(),
            locations=tuple(results),
            warnings=tuple(warnings),
        )
        logger.info(
            "scan-complete",
            locations=len(results),
            candidates=report.candidate_count,
            discovered=len(report.discovered),
            warnings=len(report.warnings),
        )
        return report

    def find_in_packages(
        self,
        predicate: PluginTest,
        packages: Sequence[str],
        *,
        recursive: bool | None = None,
        aggregator: ResultAggregator[type] | None = None,
    ) -> tuple[ScanReport, ...]:
        return tuple(
            self.find_in_package(
                predicate,
                package,
                recursive=recursive,
                aggregator=aggregator,
            )
            for package in packages
        )

    def find_resources(
        self,
        test: ResourceTest,
        package: str,
        *,
        recursive: bool | None = None,
    ) -> frozenset[str]:
        """Return identifiers of entries whose logical name passes ``test``.

        The logical name is the slash-delimited path from the package root,
        e.g. ``acme/plugins/defaults.json``.
        """

        package_path = package_to_path(package)
        recursive = self._settings.recursive if recursive is None else recursive
        found: ResultAggregator[str] = ResultAggregator()

        with self._scanning() as loader, scan_context(scan=package):
            locations, _ = self._locate(loader, package_path)
            walker = ResourceWalker(settings=self._settings, loader=loader)
            for location in locations:
                for entry in walker.entries(
                    location,
                    package,
                    recursive=recursive,
                ):
                    if test(f"{package_path}/{entry.name}"):
                        found.add(entry.identifier)

        matched = found.snapshot()
        self._resources.update(matched)
        return matched

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _scanning(self) -> Iterator[LoaderContext]:
        with self._state_lock:
            self._active_scans += 1
            loader = self._loader or get_default_loader_context()
        try:
            yield loader
        finally:
            with self._state_lock:
                self._active_scans -= 1

    @staticmethod
    def _locate(
        loader: LoaderContext,
        package_path: str,
    ) -> tuple[tuple[ResourceLocation, ...], list[str]]:
        locations: list[ResourceLocation] = []
        warnings: list[str] = []
        try:
            identifiers = list(loader.find_resources(package_path))
        except OSError as exc:
            get_logger(__name__, logical_path=package_path).warning(
                "package-unreadable",
                error=str(exc),
            )
            return (), [f"{package_path}: {exc}"]

        for identifier in identifiers:
            try:
                location = ResourceLocation.parse(identifier)
            except MalformedIdentifierError as exc:
                get_logger(__name__, logical_path=package_path).warning(
                    "identifier-malformed",
                    identifier=identifier,
                    error=str(exc),
                )
                warnings.append(f"{identifier!r}: {exc}")
                continue
            if location not in locations:
                locations.append(location)
        return tuple(locations), warnings

    def _run(
        self,
        task: Callable[[ResourceLocation], LocationScan],
        locations: Sequence[ResourceLocation],
    ) -> list[LocationScan]:
        workers = self._settings.max_workers
        if workers <= 1 or len(locations) <= 1:
            return [task(location) for location in locations]

        scans: dict[int, LocationScan] = {}
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix="resolver",
        ) as executor:
            future_map = {
                executor.submit(contextvars.copy_context().run, task, location): index
                for index, location in enumerate(locations)
            }
            for future in concurrent.futures.as_completed(future_map):
                index = future_map[future]
                try:
                    scans[index] = future.result()
                except Exception as exc:  # pragma: no cover - executor path
                    location = locations[index]
                    get_logger(__name__).exception(
                        "location-thread-error",
                        location=location.raw_identifier,
                        error=str(exc),
                    )
                    scans[index] = LocationScan(
                        result=LocationResult(
                            location=location,
                            kind=ContainerKind.UNRESOLVABLE,
                            error=f"Unhandled error: {exc}",
                        )
                    )
        return [scans[index] for index in sorted(scans)]

    @staticmethod
    def _scan_location(
        walker: ResourceWalker,
        loader: LoaderContext,
        location: ResourceLocation,
        package: str,
        predicate: PluginTest,
        recursive: bool,
    ) -> LocationScan:
        logger = get_logger(__name__, location=location.raw_identifier)
        try:
            result = walker.collect(location, package, recursive=recursive)
        except Exception as exc:
            logger.exception("location-walk-error", error=str(exc))
            result = LocationResult(
                location=location,
                kind=ContainerKind.UNRESOLVABLE,
                error=f"Unhandled error: {exc}",
            )
        if not result.ok:
            logger.warning(
                "location-unreadable",
                path=location.normalized_path,
                error=result.error,
            )
            return LocationScan(result=result)

        logger.debug(
            "location-scanned",
            path=location.normalized_path,
            kind=str(result.kind),
            candidates=len(result.candidates),
        )
        verifications = tuple(
            verify(candidate, loader, predicate)
            for candidate in result.candidates
        )
        return LocationScan(result=result, verifications=verifications)
