"""Shared pytest fixtures building throwaway plugin packages."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
import logging
from pathlib import Path
import struct
import sys
import textwrap
import uuid
import zipfile

import pytest

from plugscan.resolver import set_default_loader_context


@dataclass(frozen=True, slots=True)
class PackageSource:
    """Files making up a generated package, keyed by path below its root."""

    name: str
    files: Mapping[str, str]

    @property
    def path(self) -> str:
        return self.name.replace(".", "/")

    def members(self) -> dict[str, str]:
        """Return archive member names mapped to their source text."""

        members: dict[str, str] = {}
        parts = self.path.split("/")
        for index in range(1, len(parts) + 1):
            members[f"{'/'.join(parts[:index])}/__init__.py"] = ""
        for relative, source in self.files.items():
            members[f"{self.path}/{relative}"] = textwrap.dedent(source)
        return members


def write_tree(root: Path, source: PackageSource) -> Path:
    """Materialize ``source`` below ``root`` and return ``root``."""

    for name, text in source.members().items():
        target = root / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    return root


def write_zip(archive: Path, source: PackageSource) -> Path:
    """Write ``source`` into a fresh zip archive at ``archive``."""

    archive.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(archive, "w") as bundle:
        for name, text in source.members().items():
            bundle.writestr(name, text)
    return archive


def appender_package(name: str) -> PackageSource:
    """Return a package with one ``Appender`` subclass and some noise."""

    return PackageSource(
        name=name,
        files={
            "base.py": """
                class Appender:
                    pass
            """,
            "rolling.py": f"""
                from {name}.base import Appender


                class RollingFileAppender(Appender):
                    pass


                class _Helper:
                    pass
            """,
            "notes.txt": "not a module\n",
        },
    )


@pytest.fixture
def package_name() -> str:
    """Return a package name no other test imports."""

    return f"acme_{uuid.uuid4().hex[:10]}"


@pytest.fixture
def make_tree(tmp_path: Path) -> Callable[[PackageSource], Path]:
    """Return a factory writing a package tree into a fresh directory."""

    counter = iter(range(1_000))

    def _make(source: PackageSource) -> Path:
        return write_tree(tmp_path / f"tree{next(counter)}", source)

    return _make


@pytest.fixture
def make_zip(tmp_path: Path) -> Callable[[PackageSource], Path]:
    """Return a factory writing a package into a fresh zip archive."""

    counter = iter(range(1_000))

    def _make(source: PackageSource) -> Path:
        return write_zip(tmp_path / "archives" / f"bundle{next(counter)}.zip", source)

    return _make


@pytest.fixture(autouse=True)
def isolate_imports() -> Iterator[None]:
    """Forget generated packages and loader overrides after each test."""

    yield
    for module in [name for name in sys.modules if name.startswith("acme_")]:
        del sys.modules[module]
    set_default_loader_context(None)


@pytest.fixture(autouse=True)
def reset_root_handlers() -> Iterator[None]:
    """Drop handlers installed by CLI runs so tests do not share consoles."""

    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


@pytest.fixture
def appender_source(package_name: str) -> PackageSource:
    return appender_package(package_name)


@pytest.fixture
def package_source(package_name: str) -> Callable[..., PackageSource]:
    """Return a factory for packages named after ``package_name``."""

    def _make(files: Mapping[str, str], *, name: str | None = None) -> PackageSource:
        return PackageSource(name=name or package_name, files=files)

    return _make


def scramble_member(archive: Path, member: str) -> Path:
    """Overwrite the compressed payload of ``member`` with ``0xFF`` bytes."""

    with zipfile.ZipFile(archive) as bundle:
        info = bundle.getinfo(member)
    data = bytearray(archive.read_bytes())
    name_length, extra_length = struct.unpack_from(
        "<HH", data, info.header_offset + 26
    )
    start = info.header_offset + 30 + name_length + extra_length
    data[start : start + info.compress_size] = b"\xff" * info.compress_size
    archive.write_bytes(bytes(data))
    return archive


@pytest.fixture
def make_corrupt_ear(
    tmp_path: Path,
    make_zip: Callable[[PackageSource], Path],
) -> Callable[[PackageSource], Path]:
    """Return a factory for ``app.ear`` files whose ``lib/core.jar`` is garbage.

    The nested jar is deflated, so reading it fails inside ``zlib``.
    """

    def _make(source: PackageSource) -> Path:
        inner = make_zip(source)
        outer = tmp_path / "app.ear"
        with zipfile.ZipFile(outer, "w", compression=zipfile.ZIP_DEFLATED) as bundle:
            bundle.writestr("META-INF/MANIFEST.MF", "Manifest-Version: 1.0\n")
            bundle.writestr("lib/core.jar", inner.read_bytes())
        return scramble_member(outer, "lib/core.jar")

    return _make
