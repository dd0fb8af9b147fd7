"""Tests for :mod:`plugscan.resolver.service`."""

from __future__ import annotations

import importlib
from pathlib import Path
import threading

import pytest

from plugscan.core.config import ResolverSettings
from plugscan.resolver import (
    InvalidPackageNameError,
    LoaderContextBusyError,
    PackageResolver,
    ResultAggregator,
    SingleLocationLoaderContext,
    SysPathLoaderContext,
    load_type,
    name_endswith,
    set_default_loader_context,
    subclass_of,
)
from plugscan.resolver.walker import ContainerKind, ResourceWalker


class _FixedLoader:
    """Report a fixed list of identifiers and import through importlib."""

    def __init__(self, identifiers: list[str]) -> None:
        self.identifiers = identifiers

    def find_resources(self, logical_path: str) -> list[str]:
        return list(self.identifiers)

    def resolve(self, name: str):
        return importlib.import_module(name)


def _appender_test(loader, package: str):
    return subclass_of(load_type(loader, f"{package}.base:Appender"))


def _tree_identifier(root: Path, package_path: str) -> str:
    return (root / package_path).resolve().as_uri() + "/"


def test_directory_scan_matches_directly_resolved_type(
    monkeypatch: pytest.MonkeyPatch,
    make_tree,
    appender_source,
) -> None:
    tree = make_tree(appender_source)
    monkeypatch.syspath_prepend(str(tree))
    loader = SysPathLoaderContext(search_path=[tree])
    resolver = PackageResolver(loader=loader)

    report = resolver.find_in_package(
        _appender_test(loader, appender_source.name),
        appender_source.name,
    )

    expected = loader.resolve(f"{appender_source.name}.rolling").RollingFileAppender
    assert len(report.discovered) == 1
    (found,) = report.discovered
    assert found is expected
    assert report.warnings == ()
    assert report.candidate_count == 3
    assert resolver.classes == frozenset({expected})


def test_archive_scan_matches_directly_resolved_type(
    monkeypatch: pytest.MonkeyPatch,
    make_zip,
    appender_source,
) -> None:
    archive = make_zip(appender_source)
    monkeypatch.syspath_prepend(str(archive))
    loader = SysPathLoaderContext(search_path=[archive])
    resolver = PackageResolver(loader=loader)

    report = resolver.find_in_package(
        _appender_test(loader, appender_source.name),
        appender_source.name,
    )

    expected = loader.resolve(f"{appender_source.name}.rolling").RollingFileAppender
    assert report.discovered == frozenset({expected})
    assert report.locations[0].location.raw_identifier.startswith("zip:file:")


def test_container_location_from_single_location_context(
    monkeypatch: pytest.MonkeyPatch,
    make_zip,
    appender_source,
) -> None:
    archive = make_zip(appender_source)
    monkeypatch.syspath_prepend(str(archive))
    loader = SingleLocationLoaderContext(
        f"vfs:{archive.resolve().as_posix()}/{appender_source.path}/"
    )
    resolver = PackageResolver(loader=loader)

    report = resolver.find_in_package(
        _appender_test(loader, appender_source.name),
        appender_source.name,
    )

    assert [cls.__name__ for cls in report.discovered] == ["RollingFileAppender"]


@pytest.mark.parametrize("workers", [1, 4])
def test_same_type_from_two_locations_is_collected_once(
    monkeypatch: pytest.MonkeyPatch,
    make_tree,
    make_zip,
    appender_source,
    workers: int,
) -> None:
    tree = make_tree(appender_source)
    archive = make_zip(appender_source)
    monkeypatch.syspath_prepend(str(tree))
    loader = SysPathLoaderContext(search_path=[tree, archive])
    resolver = PackageResolver(
        loader=loader,
        settings=ResolverSettings(max_workers=workers),
    )
    aggregator: ResultAggregator[type] = ResultAggregator()

    report = resolver.find_in_package(
        _appender_test(loader, appender_source.name),
        appender_source.name,
        aggregator=aggregator,
    )

    assert len(report.locations) == 2
    assert report.locations[0].location.raw_identifier.startswith("file:")
    assert report.locations[1].location.raw_identifier.startswith("zip:")
    assert report.candidate_count == 6
    assert len(report.discovered) == 1
    assert aggregator.snapshot() == report.discovered


def test_failures_become_warnings(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    make_tree,
    package_name: str,
    package_source,
) -> None:
    source = package_source(
        {
            "base.py": """
                class Appender:
                    pass
            """,
            "boom.py": """
                raise RuntimeError("cannot import me")
            """,
            "good.py": f"""
                from {package_name}.base import Appender


                class GoodAppender(Appender):
                    pass
            """,
        }
    )
    tree = make_tree(source)
    monkeypatch.syspath_prepend(str(tree))
    broken = tmp_path / "broken.zip"
    broken.write_bytes(b"not a zip")
    loader = _FixedLoader(
        [
            _tree_identifier(tree, source.path),
            f"zip:{broken.as_uri()}!/{source.path}/",
            "jar:file:/srv/no-marker.jar",
            f"vfs:/nowhere/{source.path}/",
        ]
    )
    resolver = PackageResolver(loader=loader)

    report = resolver.find_in_package(_appender_test(loader, source.name), source.name)

    assert [cls.__name__ for cls in report.discovered] == ["GoodAppender"]
    assert len(report.locations) == 3
    assert [result.ok for result in report.locations] == [True, False, True]
    joined = "\n".join(report.warnings)
    assert "no-marker.jar" in joined
    assert "broken.zip" in joined
    assert f"{source.name}.boom: RuntimeError: cannot import me" in joined


def test_corrupt_nested_archive_does_not_abort_sequential_scan(
    monkeypatch: pytest.MonkeyPatch,
    make_tree,
    make_corrupt_ear,
    appender_source,
) -> None:
    tree = make_tree(appender_source)
    ear = make_corrupt_ear(appender_source)
    monkeypatch.syspath_prepend(str(tree))
    loader = _FixedLoader(
        [
            f"zip:{ear.as_uri()}!/lib/core.jar!/{appender_source.path}/",
            _tree_identifier(tree, appender_source.path),
        ]
    )
    resolver = PackageResolver(loader=loader)

    report = resolver.find_in_package(
        _appender_test(loader, appender_source.name),
        appender_source.name,
    )

    assert [cls.__name__ for cls in report.discovered] == ["RollingFileAppender"]
    assert [result.ok for result in report.locations] == [False, True]
    assert "app.ear" in report.warnings[0]


def test_unexpected_walker_errors_become_warnings(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _explode(self, location, package, *, recursive=False):
        raise ValueError("walker blew up")

    monkeypatch.setattr(ResourceWalker, "collect", _explode)
    resolver = PackageResolver(loader=_FixedLoader(["vfs:/srv/acme/"]))

    report = resolver.find_in_package(lambda cls: True, "acme")

    assert report.discovered == frozenset()
    assert [result.kind for result in report.locations] == [
        ContainerKind.UNRESOLVABLE
    ]
    assert report.warnings == ("vfs:/srv/acme/: Unhandled error: walker blew up",)


def test_location_the_os_rejects_yields_an_empty_scan() -> None:
    resolver = PackageResolver(
        loader=SingleLocationLoaderContext("vfs:/" + "a" * 300 + "/acme/")
    )

    report = resolver.find_in_package(lambda cls: True, "acme")

    assert report.discovered == frozenset()
    assert report.warnings == ()


def test_relative_container_archive_scan_finds_one_match(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    make_zip,
    appender_source,
) -> None:
    archive = make_zip(appender_source)
    jar = archive.rename(archive.with_name("bundle.jar"))
    monkeypatch.syspath_prepend(str(jar))
    monkeypatch.chdir(tmp_path)
    loader = SingleLocationLoaderContext(
        f"vfs:/{jar.parent.name}/bundle.jar/{appender_source.path}/"
    )
    resolver = PackageResolver(loader=loader)

    report = resolver.find_in_package(
        _appender_test(loader, appender_source.name),
        appender_source.name,
    )

    assert [cls.__name__ for cls in report.discovered] == ["RollingFileAppender"]
    assert report.warnings == ()


def test_unreadable_package_lookup_is_reported() -> None:
    class _Unreadable(_FixedLoader):
        def find_resources(self, logical_path: str) -> list[str]:
            raise PermissionError("denied")

    resolver = PackageResolver(loader=_Unreadable([]))

    report = resolver.find_in_package(lambda cls: True, "acme")

    assert report.discovered == frozenset()
    assert report.warnings == ("acme: denied",)


def test_recursive_scan_is_opt_in(
    monkeypatch: pytest.MonkeyPatch,
    make_tree,
    package_name: str,
    package_source,
) -> None:
    source = package_source(
        {
            "base.py": "class Appender:\n    pass\n",
            "sub/__init__.py": "",
            "sub/deep.py": (
                f"from {package_name}.base import Appender\n\n\n"
                "class DeepAppender(Appender):\n    pass\n"
            ),
        }
    )
    tree = make_tree(source)
    monkeypatch.syspath_prepend(str(tree))
    loader = SysPathLoaderContext(search_path=[tree])
    resolver = PackageResolver(loader=loader)
    test = _appender_test(loader, source.name)

    shallow = resolver.find_in_package(test, source.name)
    deep = resolver.find_in_package(test, source.name, recursive=True)
    configured = PackageResolver(
        loader=loader,
        settings=ResolverSettings(recursive=True),
    ).find_in_package(test, source.name)

    assert shallow.discovered == frozenset()
    assert [cls.__name__ for cls in deep.discovered] == ["DeepAppender"]
    assert configured.discovered == deep.discovered


def test_find_resources_tests_logical_names(
    make_tree,
    make_zip,
    appender_source,
) -> None:
    tree = make_tree(appender_source)
    archive = make_zip(appender_source)
    resolver = PackageResolver(loader=SysPathLoaderContext(search_path=[tree, archive]))
    seen: list[str] = []

    def _test(name: str) -> bool:
        seen.append(name)
        return name_endswith(".txt")(name)

    found = resolver.find_resources(_test, appender_source.name)

    assert len(found) == 2
    assert all(identifier.endswith("/notes.txt") for identifier in found)
    assert f"{appender_source.path}/notes.txt" in seen
    assert resolver.resources == found


def test_classes_accumulate_until_reset(
    monkeypatch: pytest.MonkeyPatch,
    make_tree,
    appender_source,
) -> None:
    tree = make_tree(appender_source)
    monkeypatch.syspath_prepend(str(tree))
    loader = SysPathLoaderContext(search_path=[tree])
    resolver = PackageResolver(loader=loader)

    resolver.find_in_packages(
        _appender_test(loader, appender_source.name),
        [appender_source.name, appender_source.name],
    )
    assert len(resolver.classes) == 1

    resolver.reset()
    assert resolver.classes == frozenset()


def test_invalid_package_name_raises() -> None:
    resolver = PackageResolver(loader=_FixedLoader([]))

    with pytest.raises(InvalidPackageNameError):
        resolver.find_in_package(lambda cls: True, "not a package")
    with pytest.raises(InvalidPackageNameError):
        resolver.locate("")


def test_locate_parses_and_deduplicates_identifiers() -> None:
    resolver = PackageResolver(
        loader=_FixedLoader(["vfs:/a/acme/", "vfs:/a/acme/", "zip:/no-marker.zip"])
    )

    locations = resolver.locate("acme")

    assert [location.raw_identifier for location in locations] == ["vfs:/a/acme/"]


def test_loader_cannot_be_swapped_mid_scan(
    monkeypatch: pytest.MonkeyPatch,
    make_tree,
    appender_source,
) -> None:
    tree = make_tree(appender_source)
    monkeypatch.syspath_prepend(str(tree))
    loader = SysPathLoaderContext(search_path=[tree])
    resolver = PackageResolver(loader=loader)
    replacement = SingleLocationLoaderContext("vfs:/elsewhere/")
    outcomes: list[str] = []

    def _swap(cls: type) -> bool:
        try:
            resolver.loader = replacement
        except LoaderContextBusyError:
            outcomes.append("busy")
        return False

    resolver.find_in_package(_swap, appender_source.name)

    assert outcomes and set(outcomes) == {"busy"}
    assert resolver.loader is loader

    resolver.loader = replacement
    assert resolver.loader is replacement


def test_resolver_falls_back_to_default_loader() -> None:
    default = SingleLocationLoaderContext("vfs:/nowhere/acme/")

    set_default_loader_context(default)
    resolver = PackageResolver()

    assert resolver.loader is default
    assert resolver.find_in_package(lambda cls: True, "acme").discovered == frozenset()


def test_parallel_scan_runs_on_worker_threads(
    monkeypatch: pytest.MonkeyPatch,
    make_tree,
    appender_source,
) -> None:
    trees = [make_tree(appender_source) for _ in range(3)]
    monkeypatch.syspath_prepend(str(trees[0]))
    loader = SysPathLoaderContext(search_path=trees)
    resolver = PackageResolver(loader=loader, settings=ResolverSettings(max_workers=3))
    threads: set[str] = set()

    def _record(cls: type) -> bool:
        threads.add(threading.current_thread().name)
        return True

    report = resolver.find_in_package(_record, appender_source.name)

    assert len(report.locations) == 3
    assert all(name.startswith("resolver") for name in threads)
    assert {cls.__name__ for cls in report.discovered} == {
        "Appender",
        "RollingFileAppender",
        "_Helper",
    }
