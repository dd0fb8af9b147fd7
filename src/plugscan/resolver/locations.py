"""Resource identifier parsing and path normalization.

Loader contexts report where a package lives as URL-like identifiers. The
shapes vary wildly by provider:

* ``file:///srv/app/plugins/acme/`` for plain directories,
* ``zip:file:///srv/app/bundle.zip!/acme/`` for archive members,
* ``vfs:/C:/deploy/app.ear/lib/core.jar/acme/`` for container virtual
  filesystems that expose nested archives as plain path segments,
* ``bundleresource:/acme/`` for module/bundle resource schemes.

:func:`extract_path` projects all of them onto one filesystem-like path
without corrupting literal characters. Only the file family is
percent-decoded, and never with ``+`` treated as an encoded space.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
import re
from urllib.parse import unquote

from .errors import InvalidPackageNameError, MalformedIdentifierError

__all__ = [
    "ARCHIVE_MARKER",
    "ProtocolFamily",
    "ResourceLocation",
    "extract_path",
    "package_to_path",
    "path_to_package",
    "protocol_family",
    "split_scheme",
]

ARCHIVE_MARKER = "!/"

# Two characters minimum so Windows drive letters are never read as schemes.
_SCHEME_RE = re.compile(r"^(?P<scheme>[A-Za-z][A-Za-z0-9+.\-]+):(?P<rest>.*)$", re.S)
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


class ProtocolFamily(StrEnum):
    """Decoding families recognized by :func:`extract_path`."""

    FILE = "file"
    VFS = "vfs"
    BUNDLE = "bundle"
    CUSTOM = "custom"


_WRAPPER_SCHEMES = frozenset({"jar", "zip", "wsjar"})
_FAMILY_BY_SCHEME: dict[str, ProtocolFamily] = {
    "file": ProtocolFamily.FILE,
    "jar": ProtocolFamily.FILE,
    "zip": ProtocolFamily.FILE,
    "wsjar": ProtocolFamily.FILE,
    "vfs": ProtocolFamily.VFS,
    "vfsfile": ProtocolFamily.VFS,
    "vfszip": ProtocolFamily.VFS,
    "vfsmemory": ProtocolFamily.VFS,
    "bundle": ProtocolFamily.BUNDLE,
    "bundleentry": ProtocolFamily.BUNDLE,
    "bundleresource": ProtocolFamily.BUNDLE,
}


def protocol_family(protocol: str) -> ProtocolFamily:
    """Return the decoding family for ``protocol``.

    Example:
        >>> protocol_family("vfszip")
        <ProtocolFamily.VFS: 'vfs'>
        >>> protocol_family("x-custom")
        <ProtocolFamily.CUSTOM: 'custom'>
    """

    return _FAMILY_BY_SCHEME.get(protocol.lower(), ProtocolFamily.CUSTOM)


def split_scheme(identifier: str) -> tuple[str | None, str]:
    """Split ``identifier`` into a lower-cased scheme and the remainder.

    Known schemes always count. Any other scheme-like prefix counts only when
    a hierarchical path (``/...``) follows it, so ``notes:readme`` is a path.

    Example:
        >>> split_scheme("VFS:/a/b")
        ('vfs', '/a/b')
        >>> split_scheme("C:/a/b")
        (None, 'C:/a/b')
        >>> split_scheme("notes:readme")
        (None, 'notes:readme')
    """

    match = _SCHEME_RE.match(identifier)
    if match is None:
        return None, identifier
    scheme, rest = match.group("scheme").lower(), match.group("rest")
    if scheme not in _FAMILY_BY_SCHEME and not rest.startswith("/"):
        return None, identifier
    return scheme, rest


def _validate(identifier: object) -> str:
    if not isinstance(identifier, str):
        raise MalformedIdentifierError(
            f"Resource identifier must be a string, got {type(identifier).__name__}"
        )
    if not identifier.strip():
        raise MalformedIdentifierError("Resource identifier is empty.")
    if _CONTROL_RE.search(identifier):
        raise MalformedIdentifierError(
            f"Resource identifier contains control characters: {identifier!r}"
        )
    return identifier.strip()


def _strip_query(text: str) -> str:
    for separator in ("?", "#"):
        index = text.find(separator)
        if index >= 0:
            text = text[:index]
    return text


def _strip_authority(text: str) -> str:
    if not text.startswith("//"):
        return text
    slash = text.find("/", 2)
    return "" if slash < 0 else text[slash:]


def _path_component(scheme: str, rest: str, identifier: str) -> str:
    path = _strip_authority(_strip_query(rest))
    if scheme not in _WRAPPER_SCHEMES:
        return path
    inner_scheme, inner_rest = split_scheme(path)
    if inner_scheme is not None:
        path = _strip_authority(inner_rest)
    if ARCHIVE_MARKER not in path and not path.endswith("!"):
        raise MalformedIdentifierError(
            f"Archive identifier lacks the {ARCHIVE_MARKER!r} marker: {identifier!r}"
        )
    return path


def _cut_marker(path: str) -> str:
    index = path.find(ARCHIVE_MARKER)
    if index > 0:
        return path[:index]
    if path.endswith("!"):
        return path[:-1]
    return path


def extract_path(identifier: str) -> str:
    """Return the protocol-independent path named by ``identifier``.

    Identifiers without a scheme are already paths and come back unchanged,
    and no result carries a scheme, so normalizing twice is the same as
    normalizing once.

    Raises:
        MalformedIdentifierError: If ``identifier`` is empty, not a string,
            carries control characters, is an archive identifier without
            an archive-boundary marker, or names a path that itself reads as
            a scheme-bearing identifier (``vfs:deploy+1:/app/``).

    Example:
        >>> extract_path("vfszip:/path+with+plus/file+name+with+plus.xml")
        '/path+with+plus/file+name+with+plus.xml'
        >>> extract_path("zip:file:///opt/my%20lib.zip!/acme/")
        '/opt/my lib.zip'
    """

    text = _validate(identifier)
    scheme, rest = split_scheme(text)
    if scheme is None:
        return text

    path = _cut_marker(_path_component(scheme, rest, text))
    if protocol_family(scheme) is ProtocolFamily.FILE:
        # ``unquote`` leaves ``+`` alone; ``unquote_plus`` would not.
        path = unquote(path)
    if split_scheme(path)[0] is not None:
        raise MalformedIdentifierError(
            f"Resource path reads as another identifier: {identifier!r}"
        )
    return path


@dataclass(frozen=True, slots=True)
class ResourceLocation:
    """A resource identifier together with its normalized path."""

    protocol: str
    raw_identifier: str
    normalized_path: str

    @classmethod
    def parse(cls, identifier: str) -> "ResourceLocation":
        """Build a location from a raw identifier.

        Raises:
            MalformedIdentifierError: When :func:`extract_path` rejects it.

        Example:
            >>> location = ResourceLocation.parse("vfs:/content/app.war/acme/")
            >>> location.protocol, location.normalized_path
            ('vfs', '/content/app.war/acme/')
        """

        normalized = extract_path(identifier)
        scheme, _ = split_scheme(identifier.strip())
        return cls(
            protocol=scheme or "file",
            raw_identifier=identifier.strip(),
            normalized_path=normalized,
        )

    @property
    def family(self) -> ProtocolFamily:
        return protocol_family(self.protocol)

    @property
    def is_archive_member(self) -> bool:
        return ARCHIVE_MARKER in self.raw_identifier

    @property
    def archive_entries(self) -> tuple[str, ...]:
        """Return the segments following each archive-boundary marker.

        The last segment is the directory inside the innermost archive; any
        earlier ones name archives nested inside their predecessor.

        Example:
            >>> ResourceLocation.parse(
            ...     "zip:file:/srv/app.war!/WEB-INF/lib/core.jar!/acme/"
            ... ).archive_entries
            ('WEB-INF/lib/core.jar', 'acme/')
        """

        if not self.is_archive_member:
            return ()
        tail = _strip_query(self.raw_identifier)
        segments = tail.split(ARCHIVE_MARKER)[1:]
        if self.family is ProtocolFamily.FILE:
            segments = [unquote(segment) for segment in segments]
        return tuple(segments)


def _validate_package(package: str) -> tuple[str, ...]:
    parts = tuple(package.strip().split("."))
    if not package.strip() or not all(part.isidentifier() for part in parts):
        raise InvalidPackageNameError(f"Invalid package name: {package!r}")
    return parts


def package_to_path(package: str) -> str:
    """Return the slash-delimited sub-path for a dotted package name.

    Example:
        >>> package_to_path("acme.plugins")
        'acme/plugins'
    """

    return "/".join(_validate_package(package))


def path_to_package(path: str) -> str:
    """Return the dotted package name for a slash-delimited sub-path.

    Example:
        >>> path_to_package("/acme/plugins/")
        'acme.plugins'
    """

    return ".".join(_validate_package(path.strip("/").replace("/", ".")))
