"""Command-line interface primitives for :mod:`plugscan`.

This module exposes the Typer application behind the ``plugscan`` console
script and wires its commands into the resolver and plugin registry.

Example:
    >>> import typer
    >>> from plugscan.cli import create_app
    >>> app = create_app()
    >>> isinstance(app, typer.Typer)
    True
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from pathlib import Path
import sys
from typing import Any, Iterable, Sequence

import typer

from plugscan.core.config import AppConfig, load_app_config, render_user_config
from plugscan.core.logging import configure_logging, get_logger
from plugscan.plugins import PluginManager, PluginRegistry, PluginType, is_plugin
from plugscan.resolver import (
    InvalidPackageNameError,
    MalformedIdentifierError,
    PackageResolver,
    ResourceWalker,
    ScanReport,
    SysPathLoaderContext,
    extract_path,
    load_type,
    subclass_of,
)

_app_help = (
    "Discover plugin classes across directories, archives and "
    "virtual filesystems."
    "\n\n"
    "Use `plugscan scan PACKAGE` to list `@plugin` classes by category."
)


@dataclass(slots=True)
class _Session:
    """Effective configuration plus the resolver built from it."""

    config: AppConfig
    resolver: PackageResolver


def _cli_overrides(
    *,
    log_level: str | None,
    recursive: bool | None,
    workers: int | None,
) -> dict[str, Any]:
    """Translate CLI flags into the top configuration layer."""

    overrides: dict[str, Any] = {}
    resolver: dict[str, Any] = {}
    if log_level:
        overrides["log_level"] = log_level
    if recursive is not None:
        resolver["recursive"] = recursive
    if workers is not None:
        resolver["max_workers"] = workers
    if resolver:
        overrides["resolver"] = resolver
    return overrides


def _prepend_search_path(entries: Iterable[Path]) -> None:
    """Make ``entries`` importable ahead of the interpreter's own path."""

    added = False
    for entry in reversed(list(entries)):
        text = str(entry.expanduser().resolve(strict=False))
        if text in sys.path:
            continue
        sys.path.insert(0, text)
        added = True
    if added:
        importlib.invalidate_caches()


def _open_session(
    *,
    config_path: Path | None,
    log_level: str | None,
    paths: Sequence[Path] | None,
    recursive: bool | None = None,
    workers: int | None = None,
) -> _Session:
    try:
        config = load_app_config(
            config_path=config_path,
            cli_overrides=_cli_overrides(
                log_level=log_level,
                recursive=recursive,
                workers=workers,
            ),
        )
    except (OSError, ValueError) as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    try:
        configure_logging(level=config.log_level, log_dir=config.log_dir)
    except ValueError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    _prepend_search_path([*(paths or ()), *config.search_path])
    resolver = PackageResolver(
        loader=SysPathLoaderContext(),
        settings=config.resolver,
    )
    return _Session(config=config, resolver=resolver)


def _emit_warnings(reports: Iterable[ScanReport]) -> int:
    count = 0
    for report in reports:
        for warning in report.warnings:
            typer.secho(f"[{report.package}] {warning}", fg=typer.colors.YELLOW)
            count += 1
    return count


def _render_plugin_line(plugin_type: PluginType) -> str:
    metadata = plugin_type.metadata
    aliases = (
        f" (aliases: {', '.join(metadata.aliases)})" if metadata.aliases else ""
    )
    return (
        f"  - {metadata.name} -> {plugin_type.qualified_name}"
        f" [{plugin_type.element_name}]{aliases}"
    )


def _config_option() -> Any:
    return typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a plugscan.toml file (defaults to PLUGSCAN_CONFIG).",
    )


def _log_level_option() -> Any:
    return typer.Option(
        None,
        "--log-level",
        "-l",
        help="Override the logging level (DEBUG/INFO/WARNING/ERROR).",
    )


def _path_option() -> Any:
    return typer.Option(
        None,
        "--path",
        "-p",
        metavar="PATH",
        help="Directory or archive to search before sys.path (repeatable).",
    )


def _recursive_option() -> Any:
    return typer.Option(
        None,
        "--recursive/--no-recursive",
        help="Descend into sub-packages (defaults to configuration).",
    )


def _workers_option() -> Any:
    return typer.Option(
        None,
        "--workers",
        "-j",
        min=1,
        help="Resource locations walked concurrently.",
    )


def create_app() -> "typer.Typer":
    """Return the Typer application powering the ``plugscan`` CLI.

    Returns:
        A configured Typer application ready to be invoked by ``plugscan``.
    """

    app = typer.Typer(
        help=_app_help,
        no_args_is_help=True,
        rich_markup_mode="rich",
        invoke_without_command=False,
        cls=typer.core.TyperGroup,
    )

    @app.callback()
    def main_callback() -> None:
        """Top-level CLI callback ensuring subcommands are dispatched."""

        return None

    @app.command("normalize", help="Print the normalized path of identifiers.")
    def normalize_command(
        identifiers: list[str] = typer.Argument(
            ...,
            metavar="IDENTIFIER...",
            help="Resource identifiers such as vfs:/... or zip:file:...!/...",
        ),
    ) -> None:
        failed = False
        for identifier in identifiers:
            try:
                typer.echo(extract_path(identifier))
            except MalformedIdentifierError as exc:
                typer.secho(
                    f"Malformed identifier {identifier!r}: {exc}",
                    fg=typer.colors.RED,
                )
                failed = True
        if failed:
            raise typer.Exit(code=1)

    @app.command("locate", help="List the locations exposing a package.")
    def locate_command(
        package: str = typer.Argument(..., help="Dotted package name."),
        config_path: Path | None = _config_option(),
        log_level: str | None = _log_level_option(),
        paths: list[Path] = _path_option(),
    ) -> None:
        session = _open_session(
            config_path=config_path,
            log_level=log_level,
            paths=paths,
        )
        resolver = session.resolver
        try:
            locations = resolver.locate(package)
        except InvalidPackageNameError as exc:
            raise typer.BadParameter(str(exc), param_hint="PACKAGE") from exc

        if not locations:
            typer.secho(
                f"No locations found for {package}.",
                fg=typer.colors.YELLOW,
            )
            return

        walker = ResourceWalker(settings=resolver.settings, loader=resolver.loader)
        typer.secho(f"Locations for {package}:", bold=True)
        for location in locations:
            classification = walker.classify(location, package)
            typer.echo(f"  - {location.raw_identifier}")
            typer.echo(f"    path: {location.normalized_path}")
            typer.echo(f"    kind: {classification.kind}")

    @app.command("find", help="List classes in a package subclassing a base.")
    def find_command(
        package: str = typer.Argument(..., help="Dotted package name."),
        subclass: str = typer.Option(
            ...,
            "--subclass-of",
            "-s",
            metavar="MODULE:CLASS",
            help="Base class every match must derive from.",
        ),
        recursive: bool | None = _recursive_option(),
        workers: int | None = _workers_option(),
        config_path: Path | None = _config_option(),
        log_level: str | None = _log_level_option(),
        paths: list[Path] = _path_option(),
    ) -> None:
        session = _open_session(
            config_path=config_path,
            log_level=log_level,
            paths=paths,
            recursive=recursive,
            workers=workers,
        )
        resolver = session.resolver
        try:
            base = load_type(resolver.loader, subclass)
        except (ImportError, AttributeError, TypeError) as exc:
            typer.secho(
                f"Cannot load base class {subclass!r}: {exc}",
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1) from exc

        try:
            report = resolver.find_in_package(subclass_of(base), package)
        except InvalidPackageNameError as exc:
            raise typer.BadParameter(str(exc), param_hint="PACKAGE") from exc

        _emit_warnings([report])
        names = sorted(f"{cls.__module__}:{cls.__qualname__}" for cls in report.discovered)
        for name in names:
            typer.echo(f"  - {name}")
        typer.secho(
            f"{len(names)} class(es) found in {package}.",
            fg=typer.colors.GREEN,
        )

    @app.command("scan", help="List @plugin classes grouped by category.")
    def scan_command(
        packages: list[str] = typer.Argument(
            None,
            metavar="[PACKAGE]...",
            help="Packages to scan (defaults to configured packages).",
        ),
        category: str | None = typer.Option(
            None,
            "--category",
            help="Only show plugins of this category.",
        ),
        recursive: bool | None = _recursive_option(),
        workers: int | None = _workers_option(),
        config_path: Path | None = _config_option(),
        log_level: str | None = _log_level_option(),
        paths: list[Path] = _path_option(),
    ) -> None:
        session = _open_session(
            config_path=config_path,
            log_level=log_level,
            paths=paths,
            recursive=recursive,
            workers=workers,
        )
        targets = list(packages or session.config.packages)
        if not targets:
            raise typer.BadParameter(
                "No packages given and none configured.",
                param_hint="PACKAGE",
            )

        resolver = session.resolver
        try:
            reports = resolver.find_in_packages(is_plugin, targets)
        except InvalidPackageNameError as exc:
            raise typer.BadParameter(str(exc), param_hint="PACKAGE") from exc

        warnings = _emit_warnings(reports)
        registry = PluginRegistry(resolver)
        index = registry.index(resolver.classes)
        if category is not None:
            wanted = category.strip().lower()
            index = {wanted: index.get(wanted, [])}

        total = 0
        for name in sorted(index):
            typer.secho(f"Category: {name}", bold=True)
            for plugin_type in index[name]:
                typer.echo(_render_plugin_line(plugin_type))
                total += 1

        get_logger(__name__, command="scan").info(
            "scan-command-complete",
            packages=targets,
            plugins=total,
            warnings=warnings,
        )
        typer.secho(
            f"{total} plugin(s) found, {warnings} warning(s).",
            fg=typer.colors.GREEN if not warnings else typer.colors.YELLOW,
        )

    @app.command("lookup", help="Resolve a plugin by name within a category.")
    def lookup_command(
        name: str = typer.Argument(..., help="Plugin name or alias."),
        packages: list[str] = typer.Argument(
            None,
            metavar="[PACKAGE]...",
            help="Packages to scan (defaults to configured packages).",
        ),
        category: str = typer.Option(
            "core",
            "--category",
            help="Plugin category to search.",
        ),
        config_path: Path | None = _config_option(),
        log_level: str | None = _log_level_option(),
        paths: list[Path] = _path_option(),
    ) -> None:
        session = _open_session(
            config_path=config_path,
            log_level=log_level,
            paths=paths,
        )
        manager = PluginManager(
            category,
            registry=PluginRegistry(session.resolver),
            packages=list(packages or session.config.packages),
        )
        if not manager.packages:
            raise typer.BadParameter(
                "No packages given and none configured.",
                param_hint="PACKAGE",
            )
        try:
            manager.collect_plugins()
        except InvalidPackageNameError as exc:
            raise typer.BadParameter(str(exc), param_hint="PACKAGE") from exc

        plugin_type = manager.get_plugin_type(name)
        if plugin_type is None:
            typer.secho(
                f"No {manager.category} plugin named {name!r}.",
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1)
        typer.echo(_render_plugin_line(plugin_type))

    @app.command("config", help="Render the effective configuration as TOML.")
    def config_command(
        write: Path | None = typer.Option(
            None,
            "--write",
            "-o",
            help="Write the rendered configuration to this path.",
        ),
        config_path: Path | None = _config_option(),
        log_level: str | None = _log_level_option(),
    ) -> None:
        try:
            config = load_app_config(
                config_path=config_path,
                cli_overrides=_cli_overrides(
                    log_level=log_level,
                    recursive=None,
                    workers=None,
                ),
            )
        except (OSError, ValueError) as exc:
            typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc

        rendered = render_user_config(config)
        if write is None:
            typer.echo(rendered, nl=False)
            return
        write.parent.mkdir(parents=True, exist_ok=True)
        write.write_text(rendered, encoding="utf-8")
        typer.secho(f"Configuration written to {write}", fg=typer.colors.GREEN)

    return app


__all__ = ["create_app"]
