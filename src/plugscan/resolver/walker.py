"""Classify resource locations and enumerate the modules beneath them."""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass
from enum import StrEnum
import io
from pathlib import Path, PurePosixPath
import re
from typing import Iterable, Iterator, Sequence
import zipfile
import zlib

from pathspec import PathSpec

from plugscan.core.config import ResolverSettings
from plugscan.core.logging import get_logger

from .context import LoaderContext, ResourceLister
from .errors import ResourceUnavailableError
from .locations import ProtocolFamily, ResourceLocation, package_to_path

__all__ = [
    "Candidate",
    "Classification",
    "ContainerKind",
    "LocationResult",
    "ResourceEntry",
    "ResourceWalker",
    "classify",
]

_DRIVE_RE = re.compile(r"^/[A-Za-z]:(/|$)")

# Errors surfaced by zipfile for missing, corrupt, encrypted or unsupported
# archives. Encrypted members raise RuntimeError, bad deflate data zlib.error.
_ARCHIVE_ERRORS = (
    OSError,
    EOFError,
    KeyError,
    NotImplementedError,
    RuntimeError,
    zlib.error,
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
)


class ContainerKind(StrEnum):
    """Outcome of classifying a resource location."""

    DIRECTORY = "directory"
    ARCHIVE = "archive"
    UNRESOLVABLE = "unresolvable"


@dataclass(frozen=True, slots=True)
class Classification:
    """Tagged container description produced by :func:`classify`.

    ``path`` is the package directory for directory-like locations and the
    outermost archive file for archive-like ones. ``members`` lists nested
    archives to open inside it, outermost first, and ``prefix`` is the
    in-archive directory that holds the package entries.
    """

    kind: ContainerKind
    path: Path | None = None
    members: tuple[str, ...] = ()
    prefix: str = ""

    @classmethod
    def unresolvable(cls) -> "Classification":
        return cls(kind=ContainerKind.UNRESOLVABLE)


@dataclass(frozen=True, slots=True)
class ResourceEntry:
    """An entry found beneath a package inside some container."""

    name: str
    identifier: str


@dataclass(frozen=True, slots=True)
class Candidate:
    """A module name discovered under a package, not yet imported."""

    name: str
    source: str


@dataclass(frozen=True, slots=True)
class LocationResult:
    """Per-location outcome: candidates on success, a reason on failure."""

    location: ResourceLocation
    kind: ContainerKind
    candidates: tuple[Candidate, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _has_suffix(path: str, suffixes: Sequence[str]) -> bool:
    lowered = path.rstrip("/").lower()
    return any(lowered.endswith(suffix) for suffix in suffixes)


def _host_candidates(normalized: str) -> tuple[str, ...]:
    """Return filesystem spellings worth probing for ``normalized``.

    Virtual-filesystem paths carry a leading slash even when they denote a
    drive path (``/C:/...``) or a path relative to the working directory.
    """

    trimmed = normalized.rstrip("/") or normalized
    if _DRIVE_RE.match(trimmed):
        return (trimmed[1:], trimmed)
    if trimmed.startswith("/") and len(trimmed) > 1:
        return (trimmed, trimmed[1:])
    return (trimmed,)


def _exists(path: str) -> bool:
    try:
        return Path(path).exists()
    except OSError:
        return False


def _is_dir(path: str) -> bool:
    try:
        return Path(path).is_dir()
    except OSError:
        return False


def _split_container(
    host: str,
    archive_extensions: Sequence[str],
) -> Classification | None:
    """Find the first regular file along ``host`` and treat it as an archive."""

    parts = PurePosixPath(host).parts
    for index in range(1, len(parts) + 1):
        candidate = Path(*parts[:index])
        try:
            if candidate.is_file():
                break
            if not candidate.exists():
                return None
        except OSError:
            return None
    else:
        return None

    members: list[str] = []
    pending: list[str] = []
    for segment in parts[index:]:
        pending.append(segment)
        if _has_suffix(segment, archive_extensions):
            members.append("/".join(pending))
            pending = []
    return Classification(
        kind=ContainerKind.ARCHIVE,
        path=candidate,
        members=tuple(members),
        prefix="/".join(pending),
    )


def classify(
    location: ResourceLocation,
    package_path: str,
    *,
    archive_extensions: Sequence[str] = ResolverSettings().archive_extensions,
) -> Classification:
    """Classify ``location`` as directory-like, archive-like or unresolvable.

    Heuristics run in order: an archive-boundary marker, an archive file
    extension, an existing directory, and finally the first regular file
    along a virtual-filesystem path. Anything else is unresolvable.
    """

    normalized = location.normalized_path
    if not normalized:
        return Classification.unresolvable()

    hosts = _host_candidates(normalized)
    existing = next((host for host in hosts if _exists(host)), hosts[0])

    entries = location.archive_entries
    if entries:
        *members, inner = entries
        return Classification(
            kind=ContainerKind.ARCHIVE,
            path=Path(existing),
            members=tuple(member.strip("/") for member in members),
            prefix=inner.strip("/"),
        )

    if _has_suffix(normalized, archive_extensions):
        return Classification(
            kind=ContainerKind.ARCHIVE,
            path=Path(existing),
            prefix=package_path.strip("/"),
        )

    for host in hosts:
        if _is_dir(host):
            return Classification(kind=ContainerKind.DIRECTORY, path=Path(host))

    for host in hosts:
        split = _split_container(host, archive_extensions)
        if split is not None:
            return split

    return Classification.unresolvable()


class ResourceWalker:
    """Enumerate module candidates below a package at one location.

    Example:
        >>> from plugscan.resolver.locations import ResourceLocation
        >>> walker = ResourceWalker()
        >>> location = ResourceLocation.parse("vfs:/does/not/exist/acme/")
        >>> list(walker.walk(location, "acme"))
        []
    """

    def __init__(
        self,
        *,
        settings: ResolverSettings | None = None,
        loader: LoaderContext | None = None,
    ) -> None:
        self._settings = settings or ResolverSettings()
        self._loader = loader
        self._exclude = (
            PathSpec.from_lines("gitwildmatch", self._settings.exclude)
            if self._settings.exclude
            else None
        )

    def classify(
        self,
        location: ResourceLocation,
        package: str,
    ) -> Classification:
        if self._lister_for(location) is not None:
            return Classification(kind=ContainerKind.DIRECTORY)
        return classify(
            location,
            package_to_path(package),
            archive_extensions=self._settings.archive_extensions,
        )

    # ------------------------------------------------------------------
    # Public iteration
    # ------------------------------------------------------------------
    def entries(
        self,
        location: ResourceLocation,
        package: str,
        *,
        recursive: bool = False,
    ) -> Iterator[ResourceEntry]:
        """Yield every entry under ``package``; unreadable locations yield none."""

        try:
            yield from self._iter_entries(location, package, recursive)
        except ResourceUnavailableError as exc:
            self._log_unreadable(location, exc)

    def walk(
        self,
        location: ResourceLocation,
        package: str,
        *,
        recursive: bool = False,
    ) -> Iterator[Candidate]:
        """Yield module candidates under ``package`` at ``location``."""

        try:
            yield from self._iter_candidates(location, package, recursive)
        except ResourceUnavailableError as exc:
            self._log_unreadable(location, exc)

    def collect(
        self,
        location: ResourceLocation,
        package: str,
        *,
        recursive: bool = False,
    ) -> LocationResult:
        """Walk ``location`` eagerly and report the outcome as a value."""

        kind = self.classify(location, package).kind
        try:
            candidates = tuple(
                self._iter_candidates(location, package, recursive)
            )
        except ResourceUnavailableError as exc:
            return LocationResult(location=location, kind=kind, error=str(exc))
        return LocationResult(
            location=location,
            kind=kind,
            candidates=candidates,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _iter_candidates(
        self,
        location: ResourceLocation,
        package: str,
        recursive: bool,
    ) -> Iterator[Candidate]:
        seen: set[str] = set()
        for entry in self._iter_entries(location, package, recursive):
            name = self._module_name(package, entry.name)
            if name is None or name in seen:
                continue
            seen.add(name)
            yield Candidate(name=name, source=entry.identifier)

    def _iter_entries(
        self,
        location: ResourceLocation,
        package: str,
        recursive: bool,
    ) -> Iterator[ResourceEntry]:
        package_path = package_to_path(package)
        lister = self._lister_for(location)
        if lister is not None:
            source = self._iter_listed(lister, location, package_path, recursive)
        else:
            classification = classify(
                location,
                package_path,
                archive_extensions=self._settings.archive_extensions,
            )
            path = classification.path
            if path is not None and classification.kind is ContainerKind.DIRECTORY:
                source = self._iter_directory(path, recursive=recursive)
            elif path is not None and classification.kind is ContainerKind.ARCHIVE:
                source = self._iter_archive(
                    path,
                    classification,
                    recursive=recursive,
                )
            else:
                get_logger(__name__, location=location.raw_identifier).debug(
                    "location-unresolvable",
                    path=location.normalized_path,
                )
                return

        for entry in source:
            if self._is_excluded(entry.name):
                continue
            yield entry

    def _lister_for(self, location: ResourceLocation) -> ResourceLister | None:
        if location.family is not ProtocolFamily.BUNDLE:
            return None
        if isinstance(self._loader, ResourceLister):
            return self._loader
        return None

    def _iter_listed(
        self,
        lister: ResourceLister,
        location: ResourceLocation,
        package_path: str,
        recursive: bool,
    ) -> Iterator[ResourceEntry]:
        prefix = f"{package_path}/"
        try:
            names = list(lister.list_resources(package_path, recursive=recursive))
        except OSError as exc:
            raise ResourceUnavailableError(
                f"Cannot list bundle resources under {package_path!r}: {exc}"
            ) from exc
        for name in sorted(names):
            name = name.lstrip("/")
            if name.endswith("/") or not name.startswith(prefix):
                continue
            relative = name[len(prefix):]
            if not recursive and "/" in relative:
                continue
            yield ResourceEntry(
                name=relative,
                identifier=f"{location.protocol}:/{name}",
            )

    def _iter_directory(
        self,
        root: Path,
        *,
        recursive: bool,
        relative: str = "",
    ) -> Iterator[ResourceEntry]:
        try:
            children = sorted(root.iterdir(), key=lambda path: path.name)
        except OSError as exc:
            raise ResourceUnavailableError(
                f"Cannot list directory {root}: {exc}"
            ) from exc

        for child in children:
            name = f"{relative}{child.name}"
            try:
                is_dir = child.is_dir()
            except OSError:
                continue
            if is_dir:
                if not recursive or self._is_excluded(f"{name}/"):
                    continue
                try:
                    yield from self._iter_directory(
                        child,
                        recursive=True,
                        relative=f"{name}/",
                    )
                except ResourceUnavailableError as exc:
                    get_logger(__name__, directory=str(child)).warning(
                        "directory-unreadable",
                        error=str(exc),
                    )
                continue
            yield ResourceEntry(name=name, identifier=child.absolute().as_uri())

    def _iter_archive(
        self,
        archive_path: Path,
        classification: Classification,
        *,
        recursive: bool,
    ) -> Iterator[ResourceEntry]:
        names = _read_archive_names(archive_path, classification.members)

        prefix = classification.prefix.strip("/")
        prefix = f"{prefix}/" if prefix else ""
        base = f"zip:{archive_path.absolute().as_uri()}!/"
        for member in classification.members:
            base += f"{member}!/"

        for name in sorted(names):
            if name.endswith("/") or not name.startswith(prefix):
                continue
            relative = name[len(prefix):]
            if not relative or (not recursive and "/" in relative):
                continue
            yield ResourceEntry(name=relative, identifier=f"{base}{name}")

    def _module_name(self, package: str, entry_name: str) -> str | None:
        for suffix in self._settings.module_suffixes:
            if not entry_name.lower().endswith(suffix):
                continue
            parts = entry_name[: -len(suffix)].split("/")
            if parts[-1] == "__main__":
                return None
            if parts[-1] == "__init__":
                parts = parts[:-1]
            if not all(part.isidentifier() for part in parts):
                return None
            return ".".join([package, *parts])
        return None

    def _is_excluded(self, name: str) -> bool:
        if self._exclude is None:
            return False
        return self._exclude.match_file(name)

    @staticmethod
    def _log_unreadable(
        location: ResourceLocation,
        exc: ResourceUnavailableError,
    ) -> None:
        get_logger(__name__, location=location.raw_identifier).warning(
            "location-unreadable",
            path=location.normalized_path,
            error=str(exc),
        )


def _read_archive_names(
    archive_path: Path,
    members: Iterable[str],
) -> list[str]:
    """Return the central-directory names of the innermost archive."""

    try:
        with ExitStack() as stack:
            archive = stack.enter_context(zipfile.ZipFile(archive_path))
            for member in members:
                payload = archive.read(member)
                archive = stack.enter_context(
                    zipfile.ZipFile(io.BytesIO(payload))
                )
            return archive.namelist()
    except _ARCHIVE_ERRORS as exc:
        raise ResourceUnavailableError(
            f"Cannot read archive {archive_path}: {exc}"
        ) from exc
